"""maestro_sign_request/lambda_function.py

Step-function task that submits an approved transaction to Maestro for
MPC signing. Every approver response collected on the policy is forwarded
as authorizing data; Maestro re-checks the signed metadata and either
returns the signed transaction or rejects it.

Input:
    {"payload": {"transaction", "key_id", "replacement_nonce"?, "policy"},
     "context": {...}}

Output payload, approved:
    {"transaction", "key_id", "approval_status": "approved",
     "maestro_signature", "transaction_hash"}
Output payload, rejected:
    {"transaction", "key_id", "approval_status": "rejected", "reason"}

Environment variables:
    MAESTRO_URL, MAESTRO_TENANT_NAME, SERVICE_NAME, MAESTRO_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from mpc_shared import maestro
from mpc_shared.errors import MaestroError, ValidationError
from mpc_shared.model import event_context, event_payload
from mpc_shared.transactions import parse_transaction, parse_u256, with_nonce

logger = logging.getLogger()
logger.setLevel(logging.INFO)

APPROVED = "approved"
REJECTED = "rejected"
METADATA_REJECTED_TEXT = "Metadata approval status is not equals to one."


def _authorizing_data(policy: Dict[str, Any]) -> List[Dict[str, Any]]:
    data = []
    for approval in policy.get("approvals") or []:
        response = approval.get("response")
        if not response:
            raise ValidationError(f"Response was not present for approver named: {approval.get('name')}")
        data.append(
            {
                "metadata": response["metadata"],
                "metadata_signature": response["metadata_signature"],
                "authorizing_entity": approval["name"],
                "level": approval["level"],
            }
        )
    return data


def _signed_result(status: int, text: str) -> Dict[str, str]:
    try:
        body = json.loads(text)
        signature = body["rlp_encoded_signed_transaction"]
        tx_hash = body["transaction_hash"]
        raw_hash = bytes.fromhex(tx_hash[2:] if tx_hash[:2].lower() == "0x" else tx_hash)
        if not isinstance(signature, str) or len(raw_hash) != 32:
            raise ValueError("transaction_hash")
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise MaestroError(
            f"Maestro returned an unprocessable content result. Status: {status}, Response Text: {text}"
        ) from exc
    return {"maestro_signature": signature, "transaction_hash": "0x" + raw_hash.hex()}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    ctx = event_context(event)
    payload = event_payload(event)
    try:
        key_id = payload["key_id"]
        policy = payload["policy"]
        transaction = parse_transaction(payload["transaction"])
    except KeyError as exc:
        raise ValidationError(f"payload requires {exc.args[0]}")
    replacement_nonce = parse_u256(payload.get("replacement_nonce") or 0, "replacement_nonce")

    request = {
        "key_id": key_id,
        "authorizing_data": _authorizing_data(policy),
        "transaction_payload": with_nonce(transaction, None).encode().hex(),
        "transaction_type": transaction.maestro_type,
        "replacement_nonce": replacement_nonce,
        "policies": [policy["name"]],
    }
    status, text = maestro.sign(request)

    out: Dict[str, Any] = {
        "transaction": with_nonce(transaction, replacement_nonce).to_dict(),
        "key_id": key_id,
    }
    if status == 200:
        out.update(_signed_result(status, text))
        out["approval_status"] = APPROVED
    elif status == 422 and text == METADATA_REJECTED_TEXT:
        out["approval_status"] = REJECTED
        out["reason"] = text
    elif status == 422:
        raise MaestroError(
            f"Maestro returned an unprocessable content result. Status: {status}, Response Text: {text}"
        )
    else:
        raise MaestroError(
            f"Maestro returned an unexpected result. Status: {status}, Response Text: {text}"
        )

    logger.info("order %s: signing %s", ctx["order_id"], out["approval_status"])
    return {"payload": out, "context": ctx}
