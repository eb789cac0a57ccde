"""update_gas_pool/lambda_function.py

Moves a client's sponsored transactions on a chain to another gas pool.
The previous gas pool is removed in the same write.

Routes (via API Gateway proxy):
    PUT /{chain_id}/{address}   body: {"gas_pool_address"}   200 {"chain_id", "gas_pool_address"}

Environment variables:
    KEYS_TABLE_NAME, SPONSOR_ADDRESS_CONFIG_TABLE_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import keys, sponsor_addresses
from mpc_shared.blockchain import is_supported_chain
from mpc_shared.errors import RepositoryError, ValidationError
from mpc_shared.http_utils import (
    RequestError,
    _client_id,
    _json_body,
    _not_found,
    _path_param,
    _response,
    _server_error,
    _validate_content_type,
    _validation_error,
)
from mpc_shared.transactions import parse_address

logger = logging.getLogger()
logger.setLevel(logging.INFO)

ADDRESS_NOT_FOUND = "address_not_found"
ADDRESS_NOT_FOUND_MESSAGE = (
    "Address to be set as gas pool was not found, create an address with WaaS "
    "to be able to set it as a gas pool."
)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        _validate_content_type(event)
        chain_id = _path_param(event, "chain_id", int)
        previous = parse_address(_path_param(event, "address"))
        gas_pool_address = parse_address(_json_body(event).get("gas_pool_address"), "gas_pool_address")
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))
    if not is_supported_chain(chain_id):
        return _validation_error(f"chain_id {chain_id} is not supported")

    try:
        if not keys.client_owns_address(client_id, gas_pool_address):
            return _not_found(ADDRESS_NOT_FOUND, ADDRESS_NOT_FOUND_MESSAGE)
        sponsor_addresses.replace_gas_pool_address(client_id, chain_id, gas_pool_address)
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    logger.info(
        "gas pool of client %s on chain %s moved from %s to %s", client_id, chain_id, previous, gas_pool_address
    )
    return _response(200, {"chain_id": chain_id, "gas_pool_address": gas_pool_address})
