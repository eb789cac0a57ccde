"""mpc_create_sponsored_order/lambda_function.py

Accepts a meta-transaction whose gas is paid by the client's gas pool.
The caller's address signs an EIP-712 ``ForwardRequest`` for the
client's trusted forwarder; the transaction bundler later wraps that
signature in a forwarder call sent from the gas pool.

Routes (via API Gateway proxy):
    POST /{address}   body: {"transaction": {"to", "value", "data", "deadline", "chain_id"}}
                      202 {"order_id"}

Both sponsor addresses must be configured for the client and chain
before any sponsored order is accepted.

Environment variables:
    KEYS_TABLE_NAME, ORDER_STATUS_TABLE_NAME, SPONSOR_ADDRESS_CONFIG_TABLE_NAME
    SIGNATURE_STATE_MACHINE_ARN
    SPONSORED_TRANSACTIONS_ENABLED   "true" to serve this route
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import keys, orders, sponsor_addresses
from mpc_shared.blockchain import is_supported_chain
from mpc_shared.errors import (
    KeyNotFoundError,
    OrchestrationError,
    RepositoryError,
    ValidationError,
)
from mpc_shared.http_utils import (
    NOT_FOUND,
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
from mpc_shared.model import SPONSORED_ORDER, new_order
from mpc_shared.transactions import (
    SponsoredTransaction,
    parse_address,
    parse_hex_bytes,
    parse_u256,
)
from mpc_shared.workflows import start_execution

logger = logging.getLogger()
logger.setLevel(logging.INFO)

SIGNATURE_STATE_MACHINE_ARN = os.environ.get("SIGNATURE_STATE_MACHINE_ARN", "")
SPONSORED_TRANSACTIONS_ENABLED = os.environ.get("SPONSORED_TRANSACTIONS_ENABLED", "false").lower() == "true"

ADDRESS_NOT_FOUND = "address_not_found"
GAS_POOL_NOT_FOUND_MESSAGE = "Gas Pool to be used in sponsored transactions needs to be set through available API"
FORWARDER_NOT_FOUND_MESSAGE = (
    "Trusted Forwarder to be used in sponsored transactions needs to be set through available API"
)
FORWARD_REQUEST_GAS = "75000"

FORWARD_REQUEST_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "string"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "ForwardRequest": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "string"},
        {"name": "gas", "type": "string"},
        {"name": "nonce", "type": "string"},
        {"name": "deadline", "type": "string"},
        {"name": "data", "type": "bytes"},
    ],
}


class SponsorNotConfigured(Exception):
    pass


def _parse_request(body: Dict[str, Any]) -> Dict[str, Any]:
    transaction = body.get("transaction")
    if not isinstance(transaction, dict):
        raise ValidationError("body requires transaction")
    for field in ("to", "value", "data", "deadline", "chain_id"):
        if transaction.get(field) is None:
            raise ValidationError(f"missing field `{field}` in transaction")
    if not isinstance(transaction["deadline"], str):
        raise ValidationError("deadline must be a string")
    return {
        "to": parse_address(transaction["to"], "to"),
        "value": parse_u256(transaction["value"], "value"),
        "data": parse_hex_bytes(transaction["data"], "data"),
        "deadline": transaction["deadline"],
        "chain_id": parse_u256(transaction["chain_id"], "chain_id"),
    }


def _sponsor(client_id: str, chain_id: int) -> Dict[str, str]:
    gas_pools = sponsor_addresses.get_addresses(client_id, chain_id, sponsor_addresses.GAS_POOL)
    if not gas_pools:
        raise SponsorNotConfigured(GAS_POOL_NOT_FOUND_MESSAGE)
    forwarders = sponsor_addresses.get_addresses(client_id, chain_id, sponsor_addresses.FORWARDER)
    if not forwarders:
        raise SponsorNotConfigured(FORWARDER_NOT_FOUND_MESSAGE)
    return {
        "gas_pool_address": gas_pools[-1]["address"],
        "forwarder_address": forwarders[-1]["address"],
        "forwarder_name": forwarders[-1]["forwarder_name"],
    }


def build_typed_data(address: str, sponsor: Dict[str, str], request: Dict[str, Any]) -> Dict[str, Any]:
    """ForwardRequest for ``address``; the forwarder checks the nonce itself."""
    return {
        "types": FORWARD_REQUEST_TYPES,
        "primaryType": "ForwardRequest",
        "domain": {
            "chainId": str(request["chain_id"]),
            "name": sponsor["forwarder_name"],
            "verifyingContract": sponsor["forwarder_address"],
            "version": "1",
        },
        "message": {
            "from": address,
            "to": request["to"],
            "value": hex(request["value"]),
            "gas": FORWARD_REQUEST_GAS,
            "nonce": "0",
            "deadline": request["deadline"],
            "data": "0x" + request["data"].hex(),
        },
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        _validate_content_type(event)
        address = parse_address(_path_param(event, "address"))
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))

    if not SPONSORED_TRANSACTIONS_ENABLED:
        return _not_found(NOT_FOUND, "Not Found")

    try:
        key = keys.get_key_by_address(address)
    except KeyNotFoundError:
        return _not_found(ADDRESS_NOT_FOUND, "address not found")
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
    if key.get("client_id") != client_id:
        logger.warning("client %s asked to sponsor for address %s it does not own", client_id, address)
        return _not_found(ADDRESS_NOT_FOUND, "address not found")

    try:
        request = _parse_request(_json_body(event))
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))
    chain_id = request["chain_id"]
    if not is_supported_chain(chain_id):
        return _validation_error(f"chain_id {chain_id} is not supported")

    try:
        sponsor = _sponsor(client_id, chain_id)
    except SponsorNotConfigured as exc:
        return _not_found(ADDRESS_NOT_FOUND, str(exc))
    except (RepositoryError, KeyError) as exc:
        return _server_error(exc)

    transaction = SponsoredTransaction(
        typed_data=build_typed_data(address, sponsor, request),
        chain_id=chain_id,
        to=request["to"],
        sponsor_addresses=sponsor,
    )
    order = new_order(
        client_id,
        SPONSORED_ORDER,
        {"transaction": transaction.to_dict(), "address": address, "key_id": key["key_id"]},
    )
    order_id = order["order_id"]

    try:
        orders.create_order(order)
        start_execution(
            SIGNATURE_STATE_MACHINE_ARN,
            {"context": {"order_id": order_id}, "payload": order["data"]},
            order_id,
        )
    except (RepositoryError, OrchestrationError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    logger.info("sponsored order %s accepted for %s", order_id, address)
    return _response(202, {"order_id": order_id})
