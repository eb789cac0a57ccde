"""mpc_update_order_status/lambda_function.py

Step-function task that moves an order to its next state. Signature
orders own the per-address nonce lock: leaving the pending states (or
erroring out of a locking state) releases it in the same transaction as
the state change.

Input:
    {"payload": {"order_id", "next_state", "current_state"?,
                 "update_order_statement"?, "transaction_hash"?},
     "context": {...}}

Environment variables:
    ORDER_STATUS_TABLE_NAME, CACHE_TABLE_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from mpc_shared import orders
from mpc_shared.errors import (
    NotFoundError,
    OrchestrationError,
    OrderNotFoundError,
    RepositoryError,
    ValidationError,
)
from mpc_shared.model import (
    CANCELLATION_ORDER,
    ERROR,
    KEY_CREATION_ORDER,
    SIGNATURE_ORDER,
    SIGNED,
    SPEEDUP_ORDER,
    SPONSORED_ORDER,
    SUBMITTED,
    event_context,
    event_payload,
    is_locking_state,
    is_pending_state,
    parse_order_state,
)

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _load(order_id: str) -> Dict[str, Any]:
    try:
        return orders.get_order_by_id(order_id)
    except OrderNotFoundError as exc:
        raise NotFoundError(str(exc)) from exc


def _wraps_signed_sponsored(replaced: Optional[Dict[str, Any]]) -> bool:
    return (
        replaced is not None
        and replaced.get("state") == SIGNED
        and replaced.get("order_type") == SPONSORED_ORDER
    )


def _transition_to_error(
    order_id: str,
    current_state: Optional[str],
    statement: Optional[Dict[str, Any]],
    original_order_id: Optional[str] = None,
) -> None:
    # ERROR is reachable from locking and non locking states alike
    if current_state is None:
        raise ValidationError(
            "trying to transition to Error state without passing current state argument"
        )
    if is_locking_state(current_state):
        if original_order_id:
            orders.update_order_state_with_replacement_and_unlock_address(
                order_id, original_order_id, ERROR, statement
            )
        else:
            orders.update_order_state_and_unlock_address(order_id, ERROR, statement)
    elif original_order_id:
        orders.update_order_status_with_replacement_and_execution_id_non_terminal_state(
            order_id, original_order_id, ERROR, statement
        )
    else:
        orders.update_order_status_and_execution_id_non_terminal_state(order_id, ERROR, statement)


def _update(
    order: Dict[str, Any],
    replaced: Optional[Dict[str, Any]],
    next_state: str,
    current_state: Optional[str],
    statement: Optional[Dict[str, Any]],
) -> None:
    order_id = order["order_id"]
    order_type = order.get("order_type")

    if order_type == SIGNATURE_ORDER:
        if next_state == SUBMITTED and _wraps_signed_sponsored(replaced):
            orders.update_order_status_with_replacement_and_execution_id_non_terminal_state(
                order_id, replaced["order_id"], next_state, statement
            )
        elif next_state == ERROR and _wraps_signed_sponsored(replaced):
            _transition_to_error(order_id, current_state, statement, replaced["order_id"])
        elif next_state == ERROR:
            _transition_to_error(order_id, current_state, statement)
        elif is_pending_state(next_state):
            orders.update_order_status_and_execution_id_non_terminal_state(
                order_id, next_state, statement
            )
            if order.get("state") == SUBMITTED and order.get("cancellation_requested"):
                logger.info("order %s submitted with cancellation requested", order_id)
        else:
            orders.update_order_state_and_unlock_address(order_id, next_state, statement)
    elif order_type in (SPONSORED_ORDER, SPEEDUP_ORDER, CANCELLATION_ORDER):
        orders.update_order_status_and_execution_id_non_terminal_state(
            order_id, next_state, statement
        )
    elif order_type == KEY_CREATION_ORDER:
        raise OrchestrationError(f"found KeyCreation order with id {order_id}")
    else:
        raise OrchestrationError(f"unknown order type {order_type} for order {order_id}")


def lambda_handler(event: Dict[str, Any], context: Any) -> None:
    event_context(event)
    payload = event_payload(event)
    order_id = payload.get("order_id")
    if not order_id:
        raise ValidationError("payload requires order_id")
    next_state = parse_order_state(payload.get("next_state"))
    current_state = payload.get("current_state")
    if current_state is not None:
        current_state = parse_order_state(current_state)
    statement = payload.get("update_order_statement")
    if statement is None and payload.get("transaction_hash"):
        statement = orders.transaction_hash_statement(payload["transaction_hash"])

    logger.info("mpc_update_order_status: order %s -> %s", order_id, next_state)
    order = _load(order_id)
    replaced = _load(order["replaces"]) if order.get("replaces") else None

    try:
        _update(order, replaced, next_state, current_state, statement)
    except RepositoryError as exc:
        logger.error("request to update order %s failed: %s", order_id, exc, exc_info=True)
        raise OrchestrationError(str(exc)) from exc

    logger.info("order %s was marked as %s", order_id, next_state)
