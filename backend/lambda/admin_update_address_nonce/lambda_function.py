"""admin_update_address_nonce/lambda_function.py

Operator tool, invoked directly. Resyncs the stored next nonce of an
address with the transaction count the chain reports, for when the
nonces table drifted (a transaction sent outside the system, a lost
chain-listener event).

Input:
    {"address", "chain_id"}

Output:
    {"old_nonce", "new_nonce"}

Environment variables:
    NONCES_TABLE_NAME, <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import blockchain, nonces
from mpc_shared.errors import NonceNotFoundError, ValidationError
from mpc_shared.transactions import parse_address

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    address = parse_address(event.get("address"))
    try:
        chain_id = int(event["chain_id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("request requires a numeric chain_id")

    try:
        old_nonce = int(nonces.get_nonce(address, chain_id)["nonce"])
    except NonceNotFoundError:
        old_nonce = 0
    logger.info("current DB nonce for address %s in chain %s is %s", address, chain_id, old_nonce)

    new_nonce = blockchain.get_current_nonce(chain_id, address)
    logger.info("current blockchain nonce for address %s in chain %s is %s", address, chain_id, new_nonce)

    nonces.set_nonce(address, new_nonce, None, chain_id)
    return {"old_nonce": old_nonce, "new_nonce": new_nonce}
