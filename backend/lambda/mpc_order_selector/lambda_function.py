"""mpc_order_selector/lambda_function.py

Step-function task that picks the next order to sign for one key on one
chain. Orders are looked up through the ``KeyChainTypeIndex`` GSI and
taken in this order:

1. speedup, then cancellation orders in APPROVERS_REVIEWED (oldest first)
2. sponsored orders in APPROVERS_REVIEWED
3. nothing, while a signature order is SUBMITTED
4. a SIGNED signature order, once it is older than the age threshold
5. a SELECTED_FOR_SIGNING signature order, same rule
6. the oldest APPROVERS_REVIEWED signature order

A selected signature order takes the address lock, which is released by
its terminal transition. Replacement and sponsored orders never lock.

Input:
    {"payload": {"key_id", "chain_id"}, "context": {...}}

Output payload:
    {"order_id", "order_state", "order_type"} or {"message"}

Environment variables:
    ORDER_STATUS_TABLE_NAME, CACHE_TABLE_NAME
    ORDER_AGE_THRESHOLD_IN_SECS   default: 600
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Dict, List, Optional

from mpc_shared import cache, orders
from mpc_shared.errors import ConditionalCheckFailedError, OrchestrationError, RepositoryError, ValidationError
from mpc_shared.model import (
    APPROVERS_REVIEWED,
    CANCELLATION_ORDER,
    SELECTED_FOR_SIGNING,
    SIGNATURE_ORDER,
    SIGNED,
    SPEEDUP_ORDER,
    SPONSORED_ORDER,
    SUBMITTED,
    event_context,
    event_payload,
    order_address_and_chain_id,
)
from mpc_shared.serialization import _parse_z

logger = logging.getLogger()
logger.setLevel(logging.INFO)

ORDER_AGE_THRESHOLD_IN_SECS = int(os.environ.get("ORDER_AGE_THRESHOLD_IN_SECS", "600"))

REPLACEMENT_ORDER_TYPES = (SPEEDUP_ORDER, CANCELLATION_ORDER)


def _oldest(candidates: List[Dict[str, Any]]) -> Dict[str, Any]:
    return min(candidates, key=lambda o: o["created_at"])


def _is_old(order: Dict[str, Any]) -> bool:
    age = dt.datetime.now(dt.timezone.utc) - _parse_z(order["last_modified_at"])
    return age >= dt.timedelta(seconds=ORDER_AGE_THRESHOLD_IN_SECS)


def _selected(order: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "order_id": order["order_id"],
        "order_state": order["state"],
        "order_type": order["order_type"],
    }


def _not_selected(message: str) -> Dict[str, Any]:
    logger.info("no order selected: %s", message)
    return {"message": message}


def _lock_and_select(order: Dict[str, Any]) -> Dict[str, Any]:
    address, chain_id = order_address_and_chain_id(order)
    try:
        cache.lock_address(order["order_id"], address, chain_id)
    except ConditionalCheckFailedError:
        return _not_selected(f"address {address} on chain_id {chain_id} is locked by another order")
    logger.info("selected %s order %s", order["state"], order["order_id"])
    return _selected(order)


def _stale_or_wait(key_id: str, chain_id: int, state: str) -> Optional[Dict[str, Any]]:
    found = orders.get_orders_by_key_chain_type_state(key_id, chain_id, SIGNATURE_ORDER, state)
    if not found:
        return None
    order = _oldest(found)
    if not _is_old(order):
        return _not_selected(f"A {state} order found - not old enough with id {order['order_id']}")
    logger.warning("found an old %s order with id %s", state, order["order_id"])
    return _lock_and_select(order)


def select_order(key_id: str, chain_id: int) -> Dict[str, Any]:
    for order_type in REPLACEMENT_ORDER_TYPES + (SPONSORED_ORDER,):
        found = orders.get_orders_by_key_chain_type_state(key_id, chain_id, order_type, APPROVERS_REVIEWED)
        if found:
            order = _oldest(found)
            logger.info("selected %s %s", order_type, order["order_id"])
            return _selected(order)

    submitted = orders.get_orders_by_key_chain_type_state(key_id, chain_id, SIGNATURE_ORDER, SUBMITTED, limit=1)
    if submitted:
        return _not_selected(f"A SUBMITTED order found with id {submitted[0]['order_id']}")

    for state in (SIGNED, SELECTED_FOR_SIGNING):
        result = _stale_or_wait(key_id, chain_id, state)
        if result is not None:
            return result

    reviewed = orders.get_orders_by_key_chain_type_state(key_id, chain_id, SIGNATURE_ORDER, APPROVERS_REVIEWED)
    if not reviewed:
        return _not_selected("APPROVERS_REVIEWED orders not found")
    return _lock_and_select(_oldest(reviewed))


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    ctx = event_context(event)
    payload = event_payload(event)
    key_id = payload.get("key_id")
    if not key_id:
        raise ValidationError("payload requires key_id")
    try:
        chain_id = int(payload["chain_id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("payload requires a numeric chain_id")

    try:
        result = select_order(str(key_id), chain_id)
    except RepositoryError as exc:
        logger.error("order selection for key %s failed: %s", key_id, exc, exc_info=True)
        raise OrchestrationError(str(exc)) from exc
    return {"payload": result, "context": ctx}
