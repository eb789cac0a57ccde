"""mpc_create_signature_order/lambda_function.py

Accepts a transaction to be signed by the key behind one of the caller's
addresses, records the order and starts the signature workflow.

Routes (via API Gateway proxy):
    POST /{address}   body: {"transaction": {...}}   — 202 {"order_id"}

Only legacy and EIP-1559 transactions are accepted here. Sponsored (EIP-712
typed data) requests go through mpc_create_sponsored_order. Any nonce in
the request is ignored; the workflow assigns one when it takes the address
lock.

Environment variables:
    KEYS_TABLE_NAME, ORDER_STATUS_TABLE_NAME
    SIGNATURE_STATE_MACHINE_ARN
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import keys, orders
from mpc_shared.errors import (
    KeyNotFoundError,
    OrchestrationError,
    RepositoryError,
    ValidationError,
)
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
from mpc_shared.model import SIGNATURE_ORDER, new_order
from mpc_shared.transactions import (
    SponsoredTransaction,
    parse_address,
    parse_transaction,
    validate_transaction,
    with_nonce,
)
from mpc_shared.workflows import start_execution

logger = logging.getLogger()
logger.setLevel(logging.INFO)

SIGNATURE_STATE_MACHINE_ARN = os.environ.get("SIGNATURE_STATE_MACHINE_ARN", "")


def _address_not_found() -> Dict[str, Any]:
    return _not_found("address_not_found", "address not found")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        _validate_content_type(event)
        address = parse_address(_path_param(event, "address"))
        body = _json_body(event)
        if "transaction" not in body:
            return _validation_error("body requires transaction")
        transaction = with_nonce(parse_transaction(body["transaction"]), None)
        if isinstance(transaction, SponsoredTransaction):
            return _validation_error("sponsored transactions are not accepted by this endpoint")
        validate_transaction(transaction)
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))

    try:
        key = keys.get_key_by_address(address)
    except KeyNotFoundError:
        return _address_not_found()
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
    if key.get("client_id") != client_id:
        logger.warning("client %s asked to sign for address %s it does not own", client_id, address)
        return _address_not_found()

    data = {
        "transaction": transaction.to_dict(),
        "address": address,
        "key_id": key["key_id"],
    }
    order = new_order(client_id, SIGNATURE_ORDER, data)
    order_id = order["order_id"]

    try:
        orders.create_order(order)
        start_execution(
            SIGNATURE_STATE_MACHINE_ARN,
            {
                "context": {"order_id": order_id},
                "payload": order["data"],
                "client_id": client_id,
                "order_id": order_id,
            },
            order_id,
        )
    except (RepositoryError, OrchestrationError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    logger.info("signature order %s accepted for %s", order_id, address)
    return _response(202, {"order_id": order_id})
