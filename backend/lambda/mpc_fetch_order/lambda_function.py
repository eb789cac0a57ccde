"""mpc_fetch_order/lambda_function.py

Order status for the caller. Speedup and cancellation orders are internal:
a client only ever sees the order it created, and once that order has
been replaced the replacement's progress is reported under the original
order id.

Routes (via API Gateway proxy):
    GET /{order_id}

Environment variables:
    ORDER_STATUS_TABLE_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import orders
from mpc_shared.errors import OrderNotFoundError, RepositoryError
from mpc_shared.http_utils import (
    RequestError,
    _client_id,
    _not_found,
    _path_param,
    _response,
    _server_error,
    _uuid4,
)
from mpc_shared.model import (
    APPROVERS_REVIEWED,
    CANCELLATION_ORDER,
    CANCELLED,
    COMPLETED,
    COMPLETED_WITH_ERROR,
    ERROR,
    NOT_SUBMITTED,
    RECEIVED,
    SIGNATURE_ORDER,
    SIGNED,
    SPEEDUP_ORDER,
    order_client_id,
    policy_approval_statuses,
)

logger = logging.getLogger()
logger.setLevel(logging.INFO)

ORDER_NOT_FOUND = "order_not_found"

_MINED_STATES = (COMPLETED, COMPLETED_WITH_ERROR)
_REPLACEMENT_PENDING_STATES = (RECEIVED, SIGNED, APPROVERS_REVIEWED)
_REPLACEMENT_FAILED_STATES = (NOT_SUBMITTED, ERROR)


def merge_replacement(original: Dict[str, Any], replacement: Dict[str, Any]) -> Dict[str, Any]:
    """The view of ``original`` once ``replacement`` has taken it over."""
    merged = dict(original)
    merged["last_modified_at"] = replacement.get("last_modified_at")
    if (
        original.get("state") in _MINED_STATES
        or replacement.get("state") in _REPLACEMENT_PENDING_STATES
        or replacement.get("state") in _REPLACEMENT_FAILED_STATES
    ):
        return merged

    state = replacement.get("state")
    if replacement.get("order_type") == CANCELLATION_ORDER and state == COMPLETED:
        state = CANCELLED
    merged["state"] = state
    merged["data"] = replacement.get("data")
    merged["transaction_hash"] = replacement.get("transaction_hash")
    return merged


def order_response(order: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in sorted((order.get("data") or {}).items()) if k != "key_id"}
    if order.get("transaction_hash"):
        data["transaction_hash"] = order["transaction_hash"]
    data["approvals"] = policy_approval_statuses(order.get("policy"))

    body: Dict[str, Any] = {
        "order_id": order["order_id"],
        "order_version": order.get("order_version"),
        "state": order.get("state"),
        "data": data,
        "created_at": order.get("created_at"),
        "order_type": order.get("order_type"),
        "last_modified_at": order.get("last_modified_at"),
    }
    if order.get("error"):
        body["error"] = order["error"]
    return body


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        order_id = _path_param(event, "order_id", _uuid4)
    except RequestError as exc:
        return exc.response

    try:
        order = orders.get_order_by_id(order_id)
        if order_client_id(order) != client_id:
            logger.warning("client %s asked for order %s it does not own", client_id, order_id)
            return _not_found(ORDER_NOT_FOUND, f"order_id {order_id} not found")
        if order.get("order_type") in (SPEEDUP_ORDER, CANCELLATION_ORDER):
            return _not_found(ORDER_NOT_FOUND, f"order_id {order_id} not found")

        if order.get("order_type") == SIGNATURE_ORDER and order.get("replaced_by"):
            replacement = orders.get_order_by_id(order["replaced_by"])
            order = merge_replacement(order, replacement)
    except OrderNotFoundError:
        return _not_found(ORDER_NOT_FOUND, f"order_id {order_id} not found")
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    return _response(200, order_response(order))
