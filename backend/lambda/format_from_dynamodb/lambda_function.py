"""format_from_dynamodb/lambda_function.py

Step-function task that turns a DynamoDB item, as returned by a direct
``dynamodb:GetItem`` service integration, back into plain JSON.

Numbers are parsed as integers first and as floats otherwise. Set and
binary types are rejected.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared.errors import ValidationError
from mpc_shared.serialization import from_dynamodb_json

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Any, context: Any) -> Dict[str, Any]:
    if not isinstance(event, dict):
        raise ValidationError("input must be a DynamoDB item")
    # GetItem integrations hand over {"Item": {...}}
    item = event["Item"] if set(event) == {"Item"} else event
    return {key: from_dynamodb_json(value) for key, value in item.items()}
