"""send_transaction/lambda_function.py

Step-function task that broadcasts the transaction Maestro signed. A node
refusing the transaction (JSON-RPC error -32000: nonce too low, fee too
low, insufficient funds) is a normal outcome the workflow branches on, not
a task failure. Any other provider error fails the task.

Input:
    {"payload": {"transaction", "key_id", "approval_status",
                 "maestro_signature", "transaction_hash"},
     "context": {...}}

Output payload:
    {"Submitted": {"tx_hash"}} or {"NotSubmitted": {"code", "message"}}

Environment variables:
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import blockchain
from mpc_shared.errors import BlockchainProviderError, OrchestrationError, RpcError, ValidationError
from mpc_shared.model import event_context, event_payload
from mpc_shared.transactions import parse_transaction

logger = logging.getLogger()
logger.setLevel(logging.INFO)

SUBMISSION_ERROR_CODE = -32000


def _signed_payload(signature: Any) -> str:
    raw = signature[2:] if isinstance(signature, str) and signature[:2].lower() == "0x" else signature
    try:
        return "0x" + bytes.fromhex(raw).hex()
    except (TypeError, ValueError) as exc:
        raise OrchestrationError("Unable to decode signature") from exc


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    ctx = event_context(event)
    payload = event_payload(event)
    try:
        transaction = parse_transaction(payload["transaction"])
        signature = payload["maestro_signature"]
        expected_hash = payload["transaction_hash"]
    except KeyError as exc:
        raise ValidationError(f"payload requires {exc.args[0]}")
    chain_id = transaction.chain_id
    raw_transaction = _signed_payload(signature)

    try:
        tx_hash = blockchain.send_raw_transaction(chain_id, raw_transaction)
    except RpcError as exc:
        if exc.code != SUBMISSION_ERROR_CODE:
            logger.error("error sending tx in chain %s with hash %s: %s", chain_id, expected_hash, exc)
            raise OrchestrationError(f"Unable to send txn: {exc}") from exc
        logger.warning("tx in chain %s with hash %s was not accepted: %s", chain_id, expected_hash, exc.message)
        result: Dict[str, Any] = {"NotSubmitted": {"code": exc.code, "message": exc.message}}
    except BlockchainProviderError as exc:
        logger.error("error sending tx in chain %s with hash %s: %s", chain_id, expected_hash, exc)
        raise OrchestrationError(f"Unable to send txn: {exc}") from exc
    else:
        logger.info("order %s: tx %s sent in chain %s", ctx["order_id"], tx_hash, chain_id)
        result = {"Submitted": {"tx_hash": tx_hash}}

    return {"payload": result, "context": ctx}
