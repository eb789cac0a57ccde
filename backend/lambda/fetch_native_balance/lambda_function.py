"""fetch_native_balance/lambda_function.py

Native token balance of one of the caller's addresses.

Routes (via API Gateway proxy):
    GET /{chain_id}/{address}   — {name, symbol, chain_id, balance}

Auth:
    Cognito authorizer; ``client_id`` claim must own the address's key.

Environment variables:
    KEYS_TABLE_NAME
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME   see mpc_shared.blockchain
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import blockchain, keys
from mpc_shared.errors import BlockchainProviderError, RepositoryError, ValidationError
from mpc_shared.http_utils import (
    RequestError,
    _client_id,
    _path_param,
    _response,
    _server_error,
    _unauthorized,
    _validation_error,
)
from mpc_shared.transactions import parse_address

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        chain_id = _path_param(event, "chain_id", int)
        address = parse_address(_path_param(event, "address"))

        if not keys.client_owns_address(client_id, address):
            return _unauthorized()
        if not blockchain.is_supported_chain(chain_id):
            return _validation_error(f"chain_id {chain_id} is not supported")

        logger.info("fetch_native_balance: chain_id=%s address=%s", chain_id, address)
        return _response(200, blockchain.get_native_token_info(chain_id, address))
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))
    except (BlockchainProviderError, RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
