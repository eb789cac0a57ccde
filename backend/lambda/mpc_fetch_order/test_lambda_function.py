"""mpc_fetch_order handler tests."""

from __future__ import annotations

import importlib.util
import json
import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

_SPEC = importlib.util.spec_from_file_location(
    "mpc_fetch_order",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
mpc_fetch_order = importlib.util.module_from_spec(_SPEC)
_SPEC.loader.exec_module(mpc_fetch_order)

from mpc_shared.errors import OrderNotFoundError

ORDER_ID = "0b6f7fa0-5c38-4d3c-9d0e-4a3f1c1b8e21"
REPLACEMENT_ID = "6a1d9a53-2f0b-4c8e-8f6d-2b7a0c9e4d13"


def _order(order_id=ORDER_ID, state="SUBMITTED", order_type="SIGNATURE_ORDER", **extra) -> dict:
    order = {
        "order_id": order_id,
        "order_version": "1",
        "state": state,
        "order_type": order_type,
        "created_at": "2024-01-01T00:00:00.000Z",
        "last_modified_at": "2024-01-01T00:00:01.000Z",
        "data": {
            "client_id": "client-1",
            "key_id": "key-1",
            "address": "0xabc",
            "transaction": {"gas": "21000"},
        },
    }
    order.update(extra)
    return order


def _event(order_id=ORDER_ID, client_id="client-1") -> dict:
    return {
        "httpMethod": "GET",
        "pathParameters": {"order_id": order_id},
        "requestContext": {"authorizer": {"claims": {"client_id": client_id}}},
    }


class MergeReplacementTests(unittest.TestCase):
    def test_replacement_takes_over(self) -> None:
        original = _order(state="REPLACED", replaced_by=REPLACEMENT_ID)
        replacement = _order(
            REPLACEMENT_ID,
            state="SUBMITTED",
            order_type="SPEEDUP_ORDER",
            transaction_hash="0xfeed",
            last_modified_at="2024-01-02T00:00:00.000Z",
        )
        replacement["data"] = dict(replacement["data"], transaction={"gas": "30000"})

        merged = mpc_fetch_order.merge_replacement(original, replacement)

        self.assertEqual(merged["order_id"], ORDER_ID)
        self.assertEqual(merged["state"], "SUBMITTED")
        self.assertEqual(merged["transaction_hash"], "0xfeed")
        self.assertEqual(merged["data"]["transaction"], {"gas": "30000"})
        self.assertEqual(merged["last_modified_at"], "2024-01-02T00:00:00.000Z")

    def test_completed_cancellation_reads_as_cancelled(self) -> None:
        original = _order(state="REPLACED")
        replacement = _order(REPLACEMENT_ID, state="COMPLETED", order_type="CANCELLATION_ORDER")
        self.assertEqual(mpc_fetch_order.merge_replacement(original, replacement)["state"], "CANCELLED")

    def test_pending_replacement_keeps_original(self) -> None:
        original = _order(state="SUBMITTED")
        replacement = _order(REPLACEMENT_ID, state="SIGNED", order_type="SPEEDUP_ORDER")
        merged = mpc_fetch_order.merge_replacement(original, replacement)
        self.assertEqual(merged["state"], "SUBMITTED")
        self.assertEqual(merged["data"], original["data"])

    def test_mined_original_keeps_original(self) -> None:
        original = _order(state="COMPLETED")
        replacement = _order(REPLACEMENT_ID, state="DROPPED", order_type="SPEEDUP_ORDER")
        self.assertEqual(mpc_fetch_order.merge_replacement(original, replacement)["state"], "COMPLETED")


class FetchOrderTests(unittest.TestCase):
    @patch.object(mpc_fetch_order.orders, "get_order_by_id")
    def test_order_view(self, mock_get) -> None:
        mock_get.return_value = _order(
            transaction_hash="0xfeed",
            policy={
                "name": "P",
                "approvals": [
                    {"name": "a", "level": "Tenant", "response": {"approval_status": 1}},
                    {"name": "b", "level": "Domain"},
                ],
            },
        )

        resp = mpc_fetch_order.lambda_handler(_event(), None)

        self.assertEqual(resp["statusCode"], 200)
        body = json.loads(resp["body"])
        self.assertEqual(body["state"], "SUBMITTED")
        self.assertNotIn("key_id", body["data"])
        self.assertEqual(body["data"]["transaction_hash"], "0xfeed")
        self.assertEqual(body["data"]["approvals"], {"a": "APPROVED", "b": "PENDING"})

    @patch.object(mpc_fetch_order.orders, "get_order_by_id")
    def test_replaced_order_is_merged(self, mock_get) -> None:
        mock_get.side_effect = [
            _order(state="REPLACED", replaced_by=REPLACEMENT_ID),
            _order(REPLACEMENT_ID, state="COMPLETED", order_type="SPEEDUP_ORDER", transaction_hash="0xbeef"),
        ]
        body = json.loads(mpc_fetch_order.lambda_handler(_event(), None)["body"])
        self.assertEqual(body["order_id"], ORDER_ID)
        self.assertEqual(body["state"], "COMPLETED")
        self.assertEqual(body["data"]["transaction_hash"], "0xbeef")

    @patch.object(mpc_fetch_order.orders, "get_order_by_id")
    def test_other_clients_order(self, mock_get) -> None:
        mock_get.return_value = _order()
        resp = mpc_fetch_order.lambda_handler(_event(client_id="client-2"), None)
        self.assertEqual(resp["statusCode"], 404)
        self.assertEqual(
            json.loads(resp["body"]),
            {"code": "order_not_found", "message": f"order_id {ORDER_ID} not found"},
        )

    @patch.object(mpc_fetch_order.orders, "get_order_by_id")
    def test_internal_orders_are_hidden(self, mock_get) -> None:
        mock_get.return_value = _order(order_type="SPEEDUP_ORDER")
        resp = mpc_fetch_order.lambda_handler(_event(), None)
        self.assertEqual(resp["statusCode"], 404)

    @patch.object(mpc_fetch_order.orders, "get_order_by_id")
    def test_order_id_must_be_uuid4(self, mock_get) -> None:
        for order_id in ("order-1", "c232ab00-9414-11ec-b3c8-9f6bdeced846"):
            resp = mpc_fetch_order.lambda_handler(_event(order_id=order_id), None)
            self.assertEqual(resp["statusCode"], 400)
            self.assertEqual(
                json.loads(resp["body"])["message"], "order_id with wrong type in request path"
            )
        mock_get.assert_not_called()

    @patch.object(mpc_fetch_order.orders, "get_order_by_id")
    def test_missing(self, mock_get) -> None:
        mock_get.side_effect = OrderNotFoundError("missing")
        resp = mpc_fetch_order.lambda_handler(_event(), None)
        self.assertEqual(resp["statusCode"], 404)


if __name__ == "__main__":
    unittest.main()
