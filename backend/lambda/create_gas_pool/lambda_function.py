"""create_gas_pool/lambda_function.py

Registers the address that pays for a client's sponsored transactions on
a chain. The gas pool must be one of the client's own addresses, and a
client has at most one gas pool per chain; registering the current one
again is a no-op.

Routes (via API Gateway proxy):
    POST /{chain_id}   body: {"gas_pool_address"}   201 {"chain_id", "gas_pool_address"}

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

GAS_POOL_LIMIT_PER_CLIENT = 1
ADDRESS_NOT_FOUND = "address_not_found"
ADDRESS_NOT_FOUND_MESSAGE = (
    "Address to be set as gas pool was not found, create an address with WaaS "
    "to be able to set it as a gas pool."
)
LIMIT_REACHED_MESSAGE = "Gas pool limit of 1 per client reached."


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        _validate_content_type(event)
        chain_id = _path_param(event, "chain_id", int)
        gas_pool_address = parse_address(_json_body(event).get("gas_pool_address"), "gas_pool_address")
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))
    if not is_supported_chain(chain_id):
        return _validation_error(f"chain_id {chain_id} is not supported")
    created = _response(201, {"chain_id": chain_id, "gas_pool_address": gas_pool_address})

    try:
        if not keys.client_owns_address(client_id, gas_pool_address):
            return _not_found(ADDRESS_NOT_FOUND, ADDRESS_NOT_FOUND_MESSAGE)
        current = sponsor_addresses.get_addresses(client_id, chain_id, sponsor_addresses.GAS_POOL)
        if any(item.get("address") == gas_pool_address for item in current):
            return created
        if len(current) >= GAS_POOL_LIMIT_PER_CLIENT:
            return _validation_error(LIMIT_REACHED_MESSAGE)
        sponsor_addresses.put_gas_pool_address(client_id, chain_id, gas_pool_address)
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    logger.info("gas pool %s set for client %s on chain %s", gas_pool_address, client_id, chain_id)
    return created
