"""update_order_approver_response/lambda_function.py

Step-function task that records one approver's response on the order's
policy. The workflow fetches the order first and passes it along with the
response received from the approver's queue.

Input:
    {"fetched": {"order": {"policy": {...}}},
     "order_id", "status_reason", "approval_status", "approver_name",
     "metadata", "metadata_signature"}

Output:
    {"policy": {...}}   — the policy with the response attached
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared.errors import ValidationError
from mpc_shared.model import find_approval

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_RESPONSE_FIELDS = (
    "order_id",
    "status_reason",
    "approval_status",
    "approver_name",
    "metadata",
    "metadata_signature",
)


def _approval_response(event: Dict[str, Any]) -> Dict[str, Any]:
    missing = [f for f in _RESPONSE_FIELDS if event.get(f) is None]
    if missing:
        raise ValidationError(f"approver response is missing {', '.join(missing)}")
    response = {f: event[f] for f in _RESPONSE_FIELDS}
    try:
        response["approval_status"] = int(response["approval_status"])
    except (TypeError, ValueError):
        raise ValidationError(f"invalid approval_status: {event['approval_status']}")
    return response


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        policy = event["fetched"]["order"]["policy"]
    except (KeyError, TypeError):
        raise ValidationError("fetched order has no policy")
    if not isinstance(policy, dict):
        raise ValidationError("fetched order has no policy")

    response = _approval_response(event)
    approval = find_approval(policy, response["approver_name"])
    if approval is None:
        raise ValidationError(
            f"Order does not expect a response from approver named: {response['approver_name']}"
        )
    if approval.get("response"):
        logger.warning(
            "overwriting existing response from %s on order %s",
            response["approver_name"],
            response["order_id"],
        )
    approval["response"] = response
    logger.info(
        "recorded approval_status=%s from %s for order %s",
        response["approval_status"],
        response["approver_name"],
        response["order_id"],
    )
    return {"policy": policy}
