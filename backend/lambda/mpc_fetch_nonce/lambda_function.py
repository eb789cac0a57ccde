"""mpc_fetch_nonce/lambda_function.py

Step-function task returning the nonce the order in ``context`` must sign
with. Signature orders use the address's next nonce from the nonces table
(0 for an address that never sent). Speedup and cancellation orders reuse
the nonce of the transaction they replace. Sponsored orders are forward
requests relayed by the gas pool and always get 0.

Input:
    {"payload": {"address", "chain_id"}, "context": {"order_id", ...}}

Output payload:
    {"address", "chain_id", "nonce", "created_at", "last_modified_at"}

Environment variables:
    ORDER_STATUS_TABLE_NAME, NONCES_TABLE_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import nonces, orders
from mpc_shared.errors import (
    NonceNotFoundError,
    OrchestrationError,
    OrderNotFoundError,
    RepositoryError,
    ValidationError,
)
from mpc_shared.model import (
    CANCELLATION_ORDER,
    SIGNATURE_ORDER,
    SPEEDUP_ORDER,
    SPONSORED_ORDER,
    event_context,
    event_payload,
    parse_order_type,
)
from mpc_shared.serialization import _now_z
from mpc_shared.transactions import parse_address, parse_u256

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _zero_nonce(address: str, chain_id: int) -> Dict[str, Any]:
    now = _now_z()
    return {"address": address, "chain_id": chain_id, "nonce": 0, "created_at": now, "last_modified_at": now}


def _from_nonces_table(address: str, chain_id: int) -> Dict[str, Any]:
    try:
        record = nonces.get_nonce(address, chain_id)
    except NonceNotFoundError:
        return _zero_nonce(address, chain_id)
    return {
        "address": address,
        "chain_id": chain_id,
        "nonce": int(record["nonce"]),
        "created_at": record.get("created_at"),
        "last_modified_at": record.get("last_modified_at"),
    }


def _from_original_order(order: Dict[str, Any], address: str) -> Dict[str, Any]:
    original_order_id = order.get("replaces")
    if not original_order_id:
        raise OrchestrationError("Missing order replaces")
    original = orders.get_order_by_id(original_order_id)
    if original.get("order_type") == SPONSORED_ORDER:
        raise OrchestrationError("Sponsored orders do not have a nonce")
    transaction = (original.get("data") or {}).get("transaction") or {}
    if transaction.get("nonce") is None:
        raise OrchestrationError("Error getting nonce")
    return {
        "address": address,
        "chain_id": int(transaction["chain_id"]),
        "nonce": parse_u256(transaction["nonce"], "nonce"),
        "created_at": original.get("created_at"),
        "last_modified_at": original.get("last_modified_at"),
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    ctx = event_context(event)
    payload = event_payload(event)
    address = parse_address(payload.get("address"))
    try:
        chain_id = int(payload["chain_id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("payload requires a numeric chain_id")

    try:
        order = orders.get_order_by_id(ctx["order_id"])
        order_type = parse_order_type(order.get("order_type"))
        if order_type == SIGNATURE_ORDER:
            nonce = _from_nonces_table(address, chain_id)
        elif order_type in (SPEEDUP_ORDER, CANCELLATION_ORDER):
            nonce = _from_original_order(order, address)
        elif order_type == SPONSORED_ORDER:
            nonce = _zero_nonce(address, chain_id)
        else:
            raise OrchestrationError(f"Cannot retrieve a nonce for a {order_type} order")
    except OrderNotFoundError as exc:
        raise OrchestrationError(str(exc)) from exc
    except RepositoryError as exc:
        logger.error("Error retrieving Nonce for address %s: %s", address, exc, exc_info=True)
        raise OrchestrationError(f"Error retrieving Nonce for address {address}") from exc

    logger.info("order %s gets nonce %s", ctx["order_id"], nonce["nonce"])
    return {"payload": nonce, "context": ctx}
