"""mpc_get_historical_fees/lambda_function.py

Suggests gas prices from recent fee history: the min, median and max
priority fee paid over the last ``block_count`` blocks, on top of the
median base fee.

Routes (via API Gateway proxy):
    GET /{chain_id}?block_count=N   — N defaults to 5, capped at 100

Environment variables:
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME   see mpc_shared.blockchain
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import blockchain
from mpc_shared.errors import BlockchainProviderError, FeeHistoryError, ValidationError
from mpc_shared.fees import HISTORY_PERCENTILES, parse_block_count, suggest_fees_from_history
from mpc_shared.http_utils import (
    RequestError,
    _path_param,
    _query_param,
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

    block_count = parse_block_count(_query_param(event, "block_count"))
    logger.info("mpc_get_historical_fees: chain_id=%s block_count=%s", chain_id, block_count)
    try:
        history = blockchain.get_fee_history(chain_id, block_count, HISTORY_PERCENTILES)
        return _response(200, suggest_fees_from_history(chain_id, history))
    except ValidationError as exc:
        return _validation_error(str(exc))
    except (BlockchainProviderError, FeeHistoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
