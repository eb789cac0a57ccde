"""fetch_nft_balance/lambda_function.py

NFTs held by one of the caller's addresses, filtered by contract and
paginated by Alchemy page keys.

Routes (via API Gateway proxy):
    POST /{chain_id}/{address}
        body: {"contract_addresses": [...] (1-45),
               "pagination": {"page_size": 1-100 (default 10), "page_key"}?}

Response:
    {"tokens": [...], "pagination": {"page_size", "page_key"}}

Environment variables:
    KEYS_TABLE_NAME
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME   see mpc_shared.blockchain
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

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

MAX_CONTRACT_ADDRESSES = 45
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _contract_addresses(body: Dict[str, Any]) -> List[str]:
    addresses = body.get("contract_addresses")
    if not isinstance(addresses, list) or not addresses:
        raise ValidationError("contract_addresses must be a non empty list")
    if len(addresses) > MAX_CONTRACT_ADDRESSES:
        raise ValidationError(
            f"contract_addresses cannot have more than {MAX_CONTRACT_ADDRESSES} items"
        )
    return [parse_address(a, "contract_address") for a in addresses]


def _pagination(body: Dict[str, Any]) -> Tuple[int, Optional[str]]:
    pagination = body.get("pagination") or {}
    if not isinstance(pagination, dict):
        raise ValidationError("pagination must be a json object")
    page_size = pagination.get("page_size", DEFAULT_PAGE_SIZE)
    if isinstance(page_size, bool) or not isinstance(page_size, int):
        raise ValidationError("page_size must be an integer")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
    return page_size, pagination.get("page_key")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        chain_id = _path_param(event, "chain_id", int)
        address = parse_address(_path_param(event, "address"))
        body = _json_body(event)
        contract_addresses = _contract_addresses(body)
        page_size, page_key = _pagination(body)

        if not keys.client_owns_address(client_id, address):
            return _unauthorized()
        if not blockchain.is_supported_chain(chain_id):
            return _validation_error(f"chain_id {chain_id} is not supported")

        logger.info("fetch_nft_balance: chain_id=%s address=%s", chain_id, address)
        return _response(
            200,
            blockchain.get_non_fungible_token_info(
                chain_id, address, contract_addresses, page_size, page_key
            ),
        )
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))
    except (BlockchainProviderError, RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
