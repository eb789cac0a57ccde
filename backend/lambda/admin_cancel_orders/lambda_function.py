"""admin_cancel_orders/lambda_function.py

Operator tool, invoked directly. Flags a batch of signature orders for
cancellation; an order already past signing (or unknown) is reported
back instead of failing the batch.

Input:
    {"order_ids": [...]}

Output:
    {"data": [cancelled ids], "errors": [ids that could not be cancelled]}

Environment variables:
    ORDER_STATUS_TABLE_NAME
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from mpc_shared import orders
from mpc_shared.errors import RepositoryError, ValidationError

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _order_ids(event: Dict[str, Any]) -> List[str]:
    raw = event.get("order_ids")
    if not isinstance(raw, list):
        raise ValidationError("request requires a list of order_ids")
    try:
        return [str(uuid.UUID(str(order_id))) for order_id in raw]
    except ValueError as exc:
        raise ValidationError(f"invalid order id: {exc}") from exc


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    cancelled: List[str] = []
    failed: List[str] = []
    for order_id in _order_ids(event):
        logger.info("admin cancelling order id %s", order_id)
        try:
            orders.request_cancellation(order_id)
        except RepositoryError as exc:
            logger.error("error trying to cancel order %s: %s", order_id, exc)
            failed.append(order_id)
            continue
        cancelled.append(order_id)
    return {"data": cancelled, "errors": failed}
