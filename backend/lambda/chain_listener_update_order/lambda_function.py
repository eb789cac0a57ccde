"""chain_listener_update_order/lambda_function.py

EventBridge target of the chain listener (and of the transaction
monitor's republished events). Finishes the order whose transaction was
mined: COMPLETED when the receipt status is 1, COMPLETED_WITH_ERROR
otherwise, recording the block and releasing the address lock.

* a speedup or cancellation that got mined retires the order it
  replaced, which becomes REPLACED and gives up its lock
* a wrapper of a sponsored order finishes the sponsored order with it

Several orders can share a hash (a wrapper and the sponsored order it
carries); the SUBMITTED non-sponsored one is the order that was sent.

Event:
    {"detail": {"hash", "from", "chainId", "blockNumber", "blockHash"}}

Output:
    {"order_id"} or {} when the sender is not one of our addresses

Environment variables:
    KEYS_TABLE_NAME, ORDER_STATUS_TABLE_NAME, CACHE_TABLE_NAME
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from mpc_shared import blockchain, keys, orders
from mpc_shared.errors import KeyNotFoundError, OrchestrationError, ValidationError
from mpc_shared.model import COMPLETED, COMPLETED_WITH_ERROR, SPONSORED_ORDER, SUBMITTED
from mpc_shared.transactions import parse_address, parse_u256

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _sent_order(candidates: List[Dict[str, Any]]) -> Dict[str, Any]:
    if len(candidates) == 1:
        return candidates[0]
    submitted = [
        o for o in candidates
        if o.get("state") == SUBMITTED and o.get("order_type") != SPONSORED_ORDER
    ]
    if len(submitted) > 1:
        raise OrchestrationError("More than one submitted transaction found.")
    if not submitted:
        raise OrchestrationError("Transaction hash not found.")
    return submitted[0]


def _complete(order: Dict[str, Any], state: str, block_number: int, block_hash: str) -> None:
    order_id = order["order_id"]
    original_order_id = order.get("replaces")
    if original_order_id:
        original = orders.get_order_by_id(original_order_id)
        if original.get("order_type") != SPONSORED_ORDER:
            orders.update_order_and_replacement_with_status_block(
                order_id, original_order_id, state, block_number, block_hash
            )
            return
        if original.get("state") == SUBMITTED:
            orders.update_order_state_with_replacement_and_unlock_address(
                order_id, original_order_id, state, orders.block_number_statement(block_number, block_hash)
            )
            return
    orders.update_order_state_and_unlock_address(
        order_id, state, orders.block_number_statement(block_number, block_hash)
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    detail = event.get("detail")
    if not isinstance(detail, dict):
        raise ValidationError("event detail is required")
    tx_hash = detail.get("hash")
    if not tx_hash:
        raise ValidationError("event detail requires hash")
    sender = parse_address(detail.get("from"), "from")
    chain_id = parse_u256(detail.get("chainId"), "chainId")
    block_number = parse_u256(detail.get("blockNumber"), "blockNumber")
    block_hash = detail.get("blockHash")
    logger.info("processing tx hash %s", tx_hash)

    try:
        keys.get_key_by_address(sender)
    except KeyNotFoundError:
        logger.info("from address %s in tx %s not found", sender, tx_hash)
        return {}

    order = _sent_order(orders.get_orders_by_transaction_hash(tx_hash))
    order_id = order["order_id"]
    logger.info("tx hash %s was found in order %s with state %s", tx_hash, order_id, order.get("state"))

    if order.get("state") == COMPLETED:
        return {"order_id": order_id}
    if order.get("state") != SUBMITTED:
        raise OrchestrationError(f"Order needs to be in SUBMITTED state but is in {order.get('state')} state")

    new_state = COMPLETED if blockchain.tx_status_succeed(chain_id, tx_hash) else COMPLETED_WITH_ERROR
    logger.info("order %s will be %s in chain %s", order_id, new_state, chain_id)
    _complete(order, new_state, block_number, block_hash)
    return {"order_id": order_id}
