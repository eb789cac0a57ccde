"""mpc_create_key_order/lambda_function.py

Starts the key-creation workflow for one of the caller's users. The
workflow creates the order record, asks Maestro for the key and stores it.

Routes (via API Gateway proxy):
    POST /   body: {"client_user_id": "..."}   — 202 {"order_id"}

Environment variables:
    KEY_CREATION_STATE_MACHINE_ARN
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict

from mpc_shared.errors import OrchestrationError
from mpc_shared.http_utils import (
    RequestError,
    _client_id,
    _json_body,
    _response,
    _server_error,
    _validate_content_type,
    _validation_error,
)
from mpc_shared.workflows import start_execution

logger = logging.getLogger()
logger.setLevel(logging.INFO)

KEY_CREATION_STATE_MACHINE_ARN = os.environ.get("KEY_CREATION_STATE_MACHINE_ARN", "")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        client_id = _client_id(event)
        _validate_content_type(event)
        body = _json_body(event)
    except RequestError as exc:
        return exc.response

    client_user_id = body.get("client_user_id")
    if not isinstance(client_user_id, str) or not client_user_id.strip():
        return _validation_error("empty value `client_user_id`")

    order_id = str(uuid.uuid4())
    execution_input = {
        "payload": {
            "client_user_id": client_user_id,
            "owning_user_id": str(uuid.uuid4()),
            "client_id": client_id,
        },
        "context": {"order_id": order_id},
        "client_id": client_id,
        "order_id": order_id,
    }
    try:
        start_execution(KEY_CREATION_STATE_MACHINE_ARN, execution_input, order_id)
    except OrchestrationError as exc:
        return _server_error(exc)

    logger.info("key creation order %s accepted for client %s", order_id, client_id)
    return _response(202, {"order_id": order_id})
