"""fetch_ft_balance/lambda_function.py

ERC-20 balances of one of the caller's addresses, with token metadata
read through the cache table.

Routes (via API Gateway proxy):
    POST /{chain_id}/{address}   body: {"contract_addresses": [...]} (1-100)

Response:
    {"data": [{contract_address, balance, name, symbol, logo, decimals}],
     "errors": [{contract_address, reason}]}

Environment variables:
    KEYS_TABLE_NAME, CACHE_TABLE_NAME, FT_METADATA_CACHE_TTL_SECONDS
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME   see mpc_shared.blockchain
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import blockchain, keys
from mpc_shared.errors import BlockchainProviderError, RepositoryError, ValidationError
from mpc_shared.http_utils import (
    RequestError,
    _client_id,
    _json_body,
    _path_param,
    _response,
    _server_error,
    _unauthorized,
    _validation_error,
)
from mpc_shared.transactions import parse_address

logger = logging.getLogger()
logger.setLevel(logging.INFO)

MAX_CONTRACT_ADDRESSES = 100


def _contract_addresses(body: Dict[str, Any]) -> List[str]:
    addresses = body.get("contract_addresses")
    if not isinstance(addresses, list) or not addresses:
        raise ValidationError("contract_addresses must be a non empty list")
    if len(addresses) > MAX_CONTRACT_ADDRESSES:
        raise ValidationError(
            f"contract_addresses cannot have more than {MAX_CONTRACT_ADDRESSES} items"
        )
    return [parse_address(a, "contract_address") for a in addresses]


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        chain_id = _path_param(event, "chain_id", int)
        address = parse_address(_path_param(event, "address"))
        contract_addresses = _contract_addresses(_json_body(event))

        if not keys.client_owns_address(client_id, address):
            return _unauthorized()
        if not blockchain.is_supported_chain(chain_id):
            return _validation_error(f"chain_id {chain_id} is not supported")

        logger.info(
            "fetch_ft_balance: chain_id=%s address=%s contracts=%d",
            chain_id,
            address,
            len(contract_addresses),
        )
        return _response(
            200, blockchain.get_fungible_token_info(chain_id, address, contract_addresses)
        )
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))
    except (BlockchainProviderError, RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
