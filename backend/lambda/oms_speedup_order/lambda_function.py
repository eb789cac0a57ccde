"""oms_speedup_order/lambda_function.py

Re-sends a SUBMITTED signature order's transaction with higher fees. The
new SPEEDUP_ORDER keeps the original nonce, goes through the same
approvals and, once mined, retires the order it replaced.

Routes (via API Gateway proxy):
    POST /{order_id}   body: {"transaction": {"gas_price"} | {"max_fee_per_gas", "max_priority_fee_per_gas"}}
                       202 {"order_id"}

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
    _validate_content_type,
    _validation_error,
)
from mpc_shared.model import SPEEDUP_ORDER, SUBMITTED, order_client_id
from mpc_shared.replacements import (
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


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        _validate_content_type(event)
        order_id = _path_param(event, "order_id", _uuid4)
        body = _json_body(event)
    except RequestError as exc:
        return exc.response

    try:
        original = orders.get_order_by_id(order_id)
    except OrderNotFoundError:
        return _not_found(ORDER_NOT_FOUND, f"order_id {order_id} not found")
    except (RepositoryError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
    if order_client_id(original) != client_id:
        logger.warning("client %s asked to speed up order %s it does not own", client_id, order_id)
        return _not_found(ORDER_NOT_FOUND, f"order_id {order_id} not found")

    try:
        validate_order_type(original)
        gas = parse_replacement_request(body)
        transaction = original_transaction(original)
        validate_new_gas_values(transaction, gas)
        if original.get("state") != SUBMITTED:
            raise ValidationError(f"can't perform this operation for an order in state {original.get('state')}")
        replacement = build_replacement_order(
            original, with_new_gas_values(transaction, gas), SPEEDUP_ORDER
        )
    except ValidationError as exc:
        return _validation_error(str(exc))

    new_order_id = replacement["order_id"]
    try:
        orders.create_replacement_order(replacement)
        start_execution(
            SIGNATURE_STATE_MACHINE_ARN,
            {"context": {"order_id": new_order_id}, "payload": replacement["data"]},
            new_order_id,
        )
    except (RepositoryError, OrchestrationError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)

    logger.info("speedup order %s replaces order %s", new_order_id, order_id)
    return _response(202, {"order_id": new_order_id})
