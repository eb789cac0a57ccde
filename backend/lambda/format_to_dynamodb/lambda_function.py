"""format_to_dynamodb/lambda_function.py

Step-function task that turns a plain JSON object into a DynamoDB item
(attribute name -> typed attribute value), ready for a direct
``dynamodb:PutItem`` service integration.

Input:   {"order_id": "abc", "retries": 2, "tags": ["a"]}
Output:  {"order_id": {"S": "abc"}, "retries": {"N": "2"}, "tags": {"L": [{"S": "a"}]}}
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared.errors import ValidationError
from mpc_shared.serialization import to_dynamodb_json

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Any, context: Any) -> Dict[str, Any]:
    if not isinstance(event, dict):
        raise ValidationError("input must be a json object")
    return {key: to_dynamodb_json(value) for key, value in event.items()}
