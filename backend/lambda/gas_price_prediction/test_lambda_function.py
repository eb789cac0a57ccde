"""gas_price_prediction handler tests."""

from __future__ import annotations

import importlib.util
import json
import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

_SPEC = importlib.util.spec_from_file_location(
    "gas_price_prediction",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
gas_price_prediction = importlib.util.module_from_spec(_SPEC)
_SPEC.loader.exec_module(gas_price_prediction)

from mpc_shared.errors import BlockchainProviderError


def _event(chain_id="1") -> dict:
    return {"httpMethod": "GET", "pathParameters": {"chain_id": chain_id}}


class GasPricePredictionTests(unittest.TestCase):
    @patch.object(gas_price_prediction.blockchain, "get_fees_from_pending")
    def test_suggestions(self, mock_pending) -> None:
        mock_pending.return_value = (100, list(range(1, 21)))

        resp = gas_price_prediction.lambda_handler(_event(), None)

        self.assertEqual(resp["statusCode"], 200)
        body = json.loads(resp["body"])
        self.assertEqual(body["chain_id"], 1)
        self.assertEqual(
            body["eip1559"]["max_priority_fee_per_gas"],
            {"low": "5", "medium": "10", "high": "19"},
        )
        self.assertEqual(
            body["eip1559"]["max_fee_per_gas"],
            {"low": "105", "medium": "110", "high": "119"},
        )
        self.assertEqual(body["legacy"]["gas_price"], body["eip1559"]["max_fee_per_gas"])
        mock_pending.assert_called_once_with(1)

    def test_non_numeric_chain(self) -> None:
        resp = gas_price_prediction.lambda_handler(_event("mainnet"), None)
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(json.loads(resp["body"])["code"], "validation")

    @patch.object(gas_price_prediction.blockchain, "get_fees_from_pending")
    def test_unsupported_chain(self, mock_pending) -> None:
        resp = gas_price_prediction.lambda_handler(_event("999"), None)
        self.assertEqual(resp["statusCode"], 400)
        mock_pending.assert_not_called()

    @patch.object(gas_price_prediction.blockchain, "get_fees_from_pending")
    def test_empty_pending_block(self, mock_pending) -> None:
        mock_pending.return_value = (100, [])
        resp = gas_price_prediction.lambda_handler(_event(), None)
        self.assertEqual(resp["statusCode"], 500)
        self.assertEqual(
            json.loads(resp["body"]),
            {"code": "server_error", "message": "internal server error"},
        )

    @patch.object(gas_price_prediction.blockchain, "get_fees_from_pending")
    def test_provider_error(self, mock_pending) -> None:
        mock_pending.side_effect = BlockchainProviderError("down")
        resp = gas_price_prediction.lambda_handler(_event(), None)
        self.assertEqual(resp["statusCode"], 500)


if __name__ == "__main__":
    unittest.main()
