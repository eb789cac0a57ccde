"""mpc_nonce_writer/lambda_function.py

EventBridge target of the chain listener. Every mined transaction sent
from one of our addresses moves that address's next nonce past the
transaction's nonce; events for addresses without a key are ignored.

Event:
    {"detail": {"from", "hash", "nonce", "chainId"}}

Environment variables:
    KEYS_TABLE_NAME, NONCES_TABLE_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import keys, nonces
from mpc_shared.errors import KeyNotFoundError, ValidationError
from mpc_shared.transactions import parse_address, parse_u256

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> None:
    detail = event.get("detail")
    if not isinstance(detail, dict):
        raise ValidationError("event detail is required")
    address = parse_address(detail.get("from"), "from")
    tx_hash = detail.get("hash")
    if not tx_hash:
        raise ValidationError("event detail requires hash")
    tx_nonce = parse_u256(detail.get("nonce"), "nonce")
    chain_id = parse_u256(detail.get("chainId"), "chainId")

    try:
        keys.get_key_by_address(address)
    except KeyNotFoundError:
        logger.info("transaction %s was not sent by one of our addresses", tx_hash)
        return

    logger.info("writing tx nonce %s to address %s and chain id %s", tx_nonce, address, chain_id)
    new_nonce = nonces.increment_nonce(address, tx_nonce, tx_hash, chain_id)
    if new_nonce is not None:
        logger.info("next nonce for %s on chain %s is %s", address, chain_id, new_nonce)
