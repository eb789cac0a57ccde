"""chain_listener_update_reorged_orders/lambda_function.py

EventBridge target of the chain listener for chain reorganisations. Every
order whose transaction was in a dropped block is forced into the state
the listener names (usually REORGED), whatever state it was in. An order
that cannot be updated is logged and skipped.

Event:
    {"detail": {"hashes": [...], "chainId", "newState"}}

Environment variables:
    ORDER_STATUS_TABLE_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import orders
from mpc_shared.errors import OrchestrationError, RepositoryError, ValidationError
from mpc_shared.model import parse_order_state

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> None:
    detail = event.get("detail")
    if not isinstance(detail, dict):
        raise ValidationError("event detail is required")
    try:
        new_state = parse_order_state(detail.get("newState"))
    except ValidationError as exc:
        logger.error("Unknown event type %s", detail.get("newState"))
        raise OrchestrationError(f"Unknown event type {detail.get('newState')}") from exc
    hashes = detail.get("hashes") or []

    for tx_hash in hashes:
        for order in orders.get_orders_by_transaction_hash(tx_hash):
            try:
                orders.update_order_status(order["order_id"], new_state)
            except RepositoryError as exc:
                logger.error(
                    "could not update order %s, current state %s: %s",
                    order["order_id"], order.get("state"), exc,
                )
                continue
            logger.info("order %s moved from %s to %s", order["order_id"], order.get("state"), new_state)
