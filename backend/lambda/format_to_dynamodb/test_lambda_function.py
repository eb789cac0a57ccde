"""format_to_dynamodb handler tests."""

from __future__ import annotations

import importlib.util
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

_SPEC = importlib.util.spec_from_file_location(
    "format_to_dynamodb",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
format_to_dynamodb = importlib.util.module_from_spec(_SPEC)
_SPEC.loader.exec_module(format_to_dynamodb)

from mpc_shared.errors import ValidationError


class FormatToDynamodbTests(unittest.TestCase):
    def test_item_shape(self) -> None:
        event = {
            "order_id": "abc",
            "retries": 2,
            "cancelled": False,
            "note": None,
            "tags": ["a", 1],
            "data": {"chain_id": 137},
        }
        self.assertEqual(
            format_to_dynamodb.lambda_handler(event, None),
            {
                "order_id": {"S": "abc"},
                "retries": {"N": "2"},
                "cancelled": {"BOOL": False},
                "note": {"NULL": True},
                "tags": {"L": [{"S": "a"}, {"N": "1"}]},
                "data": {"M": {"chain_id": {"N": "137"}}},
            },
        )

    def test_rejects_non_object(self) -> None:
        with self.assertRaises(ValidationError):
            format_to_dynamodb.lambda_handler(["not", "an", "object"], None)


if __name__ == "__main__":
    unittest.main()
