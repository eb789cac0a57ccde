"""mpc_transaction_bundler/lambda_function.py

Step-function task run once a sponsored order is signed. The signed
``ForwardRequest`` is wrapped in a call to the trusted forwarder's
``executeBatch``, sent as an EIP-1559 transaction from the client's gas
pool. The wrapper is a SIGNATURE_ORDER that replaces the sponsored order
and goes through the signature workflow on its own.

Running twice for the same sponsored order returns the wrapper created
the first time.

Input:
    {"payload": {"maestro_signature"?}, "context": {"order_id"}}

Output payload:
    {"order_id"}   the wrapper order

Environment variables:
    KEYS_TABLE_NAME, ORDER_STATUS_TABLE_NAME
    SIGNATURE_STATE_MACHINE_ARN
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from mpc_shared import blockchain, keys, orders
from mpc_shared.errors import (
    BlockchainProviderError,
    FeeHistoryError,
    KeyNotFoundError,
    OrchestrationError,
    RepositoryError,
    ValidationError,
)
from mpc_shared.fees import suggest_fees_from_pending
from mpc_shared.model import SIGNATURE_ORDER, SPONSORED_ORDER, event_context, event_payload, new_order, order_client_id
from mpc_shared.transactions import Eip1559Transaction, parse_address, parse_hex_bytes, parse_u256
from mpc_shared.workflows import start_execution

logger = logging.getLogger()
logger.setLevel(logging.INFO)

SIGNATURE_STATE_MACHINE_ARN = os.environ.get("SIGNATURE_STATE_MACHINE_ARN", "")

EXECUTE_BATCH = "executeBatch((address,address,uint256,uint256,uint48,bytes,bytes)[],address)"
EXECUTE_BATCH_ARGS = ["(address,address,uint256,uint256,uint48,bytes,bytes)[]", "address"]
WRAPPER_GAS = 200000
U48_MAX = 2**48 - 1


def encode_execute_batch(message: Dict[str, Any], signature: bytes, refund_receiver: str) -> bytes:
    """Calldata of a one-request ``executeBatch`` for the forwarder."""
    deadline = parse_u256(message["deadline"], "deadline")
    if deadline > U48_MAX:
        raise ValidationError("failed to convert deadline to uint48")
    request = (
        to_checksum_address(parse_address(message["from"], "from")),
        to_checksum_address(parse_address(message["to"], "to")),
        parse_u256(message["value"], "value"),
        parse_u256(message["gas"], "gas"),
        deadline,
        parse_hex_bytes(message["data"], "data"),
        signature,
    )
    return function_signature_to_4byte_selector(EXECUTE_BATCH) + encode(
        EXECUTE_BATCH_ARGS, [[request], to_checksum_address(refund_receiver)]
    )


def _signature(payload: Dict[str, Any], order: Dict[str, Any]) -> bytes:
    signature = payload.get("maestro_signature") or (order.get("data") or {}).get("maestro_signature")
    if not signature:
        raise OrchestrationError("Missing maestro signature")
    return parse_hex_bytes(signature if signature[:2].lower() == "0x" else "0x" + signature, "maestro_signature")


def _wrapper_fees(chain_id: int) -> Dict[str, int]:
    try:
        base_fee, priority_fees = blockchain.get_fees_from_pending(chain_id)
        fees = suggest_fees_from_pending(chain_id, base_fee, priority_fees)["eip1559"]
    except (BlockchainProviderError, FeeHistoryError) as exc:
        raise OrchestrationError(f"Failed to get predicted gas fees: {exc}") from exc
    return {
        "max_fee_per_gas": int(fees["max_fee_per_gas"]["high"]),
        "max_priority_fee_per_gas": int(fees["max_priority_fee_per_gas"]["high"]),
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    ctx = event_context(event)
    payload = event_payload(event)
    sponsored = orders.get_order_by_id(ctx["order_id"])

    if sponsored.get("replaced_by"):
        logger.info("sponsored order %s already wrapped by %s", ctx["order_id"], sponsored["replaced_by"])
        return {"payload": {"order_id": sponsored["replaced_by"]}, "context": ctx}
    if sponsored.get("order_type") != SPONSORED_ORDER:
        raise OrchestrationError("Order was not of type SPONSORED")

    data = sponsored.get("data") or {}
    transaction = data.get("transaction") or {}
    typed_data = transaction.get("typed_data") or {}
    chain_id = int(transaction["chain_id"])
    forwarder = (typed_data.get("domain") or {}).get("verifyingContract")
    if not forwarder:
        raise OrchestrationError("missing verifying contract")
    gas_pool = (transaction.get("sponsor_addresses") or {}).get("gas_pool_address")
    if not gas_pool:
        raise OrchestrationError("missing gas pool address")

    calldata = encode_execute_batch(typed_data["message"], _signature(payload, sponsored), data["address"])

    try:
        gas_pool_key = keys.get_key_by_address(gas_pool)
    except KeyNotFoundError as exc:
        raise OrchestrationError(f"Key not found for address {gas_pool}") from exc

    wrapper_transaction = Eip1559Transaction(
        to=parse_address(forwarder, "verifyingContract"),
        gas=WRAPPER_GAS,
        value=0,
        data=calldata,
        chain_id=chain_id,
        **_wrapper_fees(chain_id),
    )
    wrapper = new_order(
        order_client_id(sponsored),
        SIGNATURE_ORDER,
        {
            "transaction": wrapper_transaction.to_dict(),
            "address": parse_address(gas_pool, "gas_pool_address"),
            "key_id": gas_pool_key["key_id"],
        },
        replaces=ctx["order_id"],
    )
    wrapper_id = wrapper["order_id"]

    try:
        orders.create_replacement_order(wrapper)
    except RepositoryError as exc:
        raise OrchestrationError(f"Error creating wrapped order: {exc}") from exc
    start_execution(
        SIGNATURE_STATE_MACHINE_ARN,
        {"context": {"order_id": wrapper_id}, "payload": wrapper["data"]},
        wrapper_id,
    )

    logger.info("sponsored order %s wrapped by order %s", ctx["order_id"], wrapper_id)
    return {"payload": {"order_id": wrapper_id}, "context": ctx}
