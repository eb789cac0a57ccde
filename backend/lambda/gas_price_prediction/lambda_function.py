"""gas_price_prediction/lambda_function.py

Suggests EIP-1559 and legacy gas prices for a chain from the priority fees
of its pending block.

Routes (via API Gateway proxy):
    GET /{chain_id}   — low / medium / high fee suggestions

Environment variables:
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME   see mpc_shared.blockchain
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import blockchain
from mpc_shared.errors import BlockchainProviderError, FeeHistoryError, ValidationError
from mpc_shared.fees import suggest_fees_from_pending
from mpc_shared.http_utils import (
    RequestError,
    _path_param,
    _response,
    _server_error,
    _validation_error,
)

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        chain_id = _path_param(event, "chain_id", int)
    except RequestError as exc:
        return exc.response
    if not blockchain.is_supported_chain(chain_id):
        return _validation_error(f"chain_id {chain_id} is not supported")

    logger.info("gas_price_prediction: chain_id=%s", chain_id)
    try:
        base_fee, priority_fees = blockchain.get_fees_from_pending(chain_id)
        return _response(200, suggest_fees_from_pending(chain_id, base_fee, priority_fees))
    except ValidationError as exc:
        return _validation_error(str(exc))
    except (BlockchainProviderError, FeeHistoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
