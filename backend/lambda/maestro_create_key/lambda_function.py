"""maestro_create_key/lambda_function.py

Step-function task that asks Maestro to generate an MPC key in the
client's domain and derives the key's EVM address.

Input:   {"payload": {"client_id"}, "context": {...}}
Output:  {"payload": {"key_id", "public_key", "address"}, "context": {...}}

Environment variables:
    MAESTRO_URL, MAESTRO_TENANT_NAME, SERVICE_NAME, MAESTRO_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import maestro
from mpc_shared.errors import ValidationError
from mpc_shared.model import event_context, event_payload
from mpc_shared.transactions import address_from_public_key

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    ctx = event_context(event)
    client_id = event_payload(event).get("client_id")
    if not client_id:
        raise ValidationError("payload requires client_id")

    key = maestro.generate_key(client_id)
    address = address_from_public_key(key["public_key"])
    logger.info("order %s: created key %s (%s)", ctx["order_id"], key["key_id"], address)
    return {
        "payload": {"key_id": key["key_id"], "public_key": key["public_key"], "address": address},
        "context": ctx,
    }
