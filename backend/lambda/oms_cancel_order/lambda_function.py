"""oms_cancel_order/lambda_function.py

Cancels a signature order. An order that has not been sent yet is only
flagged; the signature workflow stops at its next step. A SUBMITTED order
is cancelled on chain with a CANCELLATION_ORDER: a zero-value transfer
to the sender under the same nonce, paying the higher fees in the body.

Routes (via API Gateway proxy):
    POST /{order_id}   body (SUBMITTED orders only):
                       {"transaction": {"gas_price"} | {"max_fee_per_gas", "max_priority_fee_per_gas"}}
                       202 {"order_id"}  the cancelled order's id

Environment variables:
    ORDER_STATUS_TABLE_NAME
    SIGNATURE_STATE_MACHINE_ARN
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import orders
from mpc_shared.errors import (
    ConditionalCheckFailedError,
    OrchestrationError,
    OrderNotFoundError,
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
    _uuid4,
    _validation_error,
)
from mpc_shared.model import (
    CANCELLATION_ORDER,
    SUBMITTED,
    is_final_state,
    order_address_and_chain_id,
    order_client_id,
)
from mpc_shared.replacements import (
    as_cancellation,
    build_replacement_order,
    original_transaction,
    parse_replacement_request,
    validate_new_gas_values,
    validate_order_type,
    with_new_gas_values,
)
from mpc_shared.workflows import start_execution

logger = logging.getLogger()
logger.setLevel(logging.INFO)

SIGNATURE_STATE_MACHINE_ARN = os.environ.get("SIGNATURE_STATE_MACHINE_ARN", "")
ORDER_NOT_FOUND = "order_not_found"


def _cancellation_order(original: Dict[str, Any], body: Dict[str, Any]) -> Dict[str, Any]:
    validate_order_type(original)
    state = original.get("state")
    if is_final_state(state):
        raise ValidationError("can't perform this operation because the order has reached a terminal state")
    if state != SUBMITTED:
        raise ValidationError(f"can't perform this operation for an order in state {state}")
    transaction = original_transaction(original)
    address, _ = order_address_and_chain_id(original)
    gas = parse_replacement_request(body)
    validate_new_gas_values(transaction, gas)
    transaction = as_cancellation(with_new_gas_values(transaction, gas), address)
    return build_replacement_order(original, transaction, CANCELLATION_ORDER)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        order_id = _path_param(event, "order_id", _uuid4)
    except RequestError as exc:
        return exc.response

    try:
        original = orders.get_order_by_id(order_id)
    except OrderNotFoundError:
        return _not_found(ORDER_NOT_FOUND, f"order_id {order_id} not found")
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
    if order_client_id(original) != client_id:
        logger.warning("client %s asked to cancel order %s it does not own", client_id, order_id)
        return _not_found(ORDER_NOT_FOUND, f"order_id {order_id} not found")

    logger.info("cancelling order id %s", order_id)
    try:
        orders.request_cancellation(order_id)
        return _response(202, {"order_id": order_id})
    except ConditionalCheckFailedError:
        logger.info("order %s is past signing, cancelling on chain", order_id)
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    try:
        cancellation = _cancellation_order(original, _json_body(event))
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))

    try:
        orders.create_replacement_order(cancellation)
        start_execution(
            SIGNATURE_STATE_MACHINE_ARN,
            {"context": {"order_id": cancellation["order_id"]}, "payload": cancellation["data"]},
            cancellation["order_id"],
        )
    except (RepositoryError, OrchestrationError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    logger.info("cancellation order %s replaces order %s", cancellation["order_id"], order_id)
    return _response(202, {"order_id": order_id})
