"""chain_listener_update_order handler tests."""

from __future__ import annotations

import importlib.util
import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

_SPEC = importlib.util.spec_from_file_location(
    "chain_listener_update_order",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
update_order = importlib.util.module_from_spec(_SPEC)
_SPEC.loader.exec_module(update_order)

from mpc_shared.errors import KeyNotFoundError, OrchestrationError

ADDRESS = "0x90f8bf6a479f320ead074411a4b0e7944ea8c9c1"
TX_HASH = "0x" + "ab" * 32
BLOCK_HASH = "0x" + "cd" * 32


def _event() -> dict:
    return {
        "detail": {
            "hash": TX_HASH,
            "from": ADDRESS,
            "chainId": "0x1",
            "blockNumber": "0x10",
            "blockHash": BLOCK_HASH,
        }
    }


def _order(order_id, order_type="SIGNATURE_ORDER", state="SUBMITTED", **extra):
    return {"order_id": order_id, "order_type": order_type, "state": state, **extra}


class ChainListenerUpdateOrderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.by_id = {}
        self._patches = [
            patch.object(update_order.keys, "get_key_by_address", return_value={"key_id": "key-1"}),
            patch.object(update_order.orders, "get_orders_by_transaction_hash", return_value=[]),
            patch.object(update_order.orders, "get_order_by_id", side_effect=lambda order_id: self.by_id[order_id]),
            patch.object(update_order.orders, "update_order_state_and_unlock_address"),
            patch.object(update_order.orders, "update_order_state_with_replacement_and_unlock_address"),
            patch.object(update_order.orders, "update_order_and_replacement_with_status_block"),
            patch.object(update_order.blockchain, "tx_status_succeed", return_value=True),
        ]
        (
            self.mock_key,
            self.mock_by_hash,
            _,
            self.mock_unlock,
            self.mock_pair_unlock,
            self.mock_replaced,
            self.mock_status,
        ) = [p.start() for p in self._patches]

    def tearDown(self) -> None:
        for p in reversed(self._patches):
            p.stop()

    def test_signature_order_completes(self) -> None:
        self.mock_by_hash.return_value = [_order("order-1")]
        resp = update_order.lambda_handler(_event(), None)
        self.assertEqual(resp, {"order_id": "order-1"})
        self.mock_status.assert_called_once_with(1, TX_HASH)
        order_id, state, statement = self.mock_unlock.call_args[0]
        self.assertEqual((order_id, state), ("order-1", "COMPLETED"))
        self.assertEqual(statement["attribute_values"], {":block_number": 16, ":block_hash": BLOCK_HASH})

    def test_reverted_transaction(self) -> None:
        self.mock_by_hash.return_value = [_order("order-1")]
        self.mock_status.return_value = False
        update_order.lambda_handler(_event(), None)
        self.assertEqual(self.mock_unlock.call_args[0][1], "COMPLETED_WITH_ERROR")

    def test_mined_speedup_replaces_original(self) -> None:
        self.by_id["original"] = _order("original", state="SUBMITTED")
        self.mock_by_hash.return_value = [_order("speedup-1", order_type="SPEEDUP_ORDER", replaces="original")]
        update_order.lambda_handler(_event(), None)
        self.mock_replaced.assert_called_once_with("speedup-1", "original", "COMPLETED", 16, BLOCK_HASH)
        self.mock_unlock.assert_not_called()

    def test_wrapper_finishes_sponsored_order(self) -> None:
        self.by_id["sponsored-1"] = _order("sponsored-1", order_type="SPONSORED_ORDER")
        self.mock_by_hash.return_value = [
            _order("sponsored-1", order_type="SPONSORED_ORDER"),
            _order("wrapper-1", replaces="sponsored-1"),
        ]
        resp = update_order.lambda_handler(_event(), None)
        self.assertEqual(resp, {"order_id": "wrapper-1"})
        args = self.mock_pair_unlock.call_args[0]
        self.assertEqual(args[:3], ("wrapper-1", "sponsored-1", "COMPLETED"))
        self.mock_replaced.assert_not_called()

    def test_wrapper_of_finished_sponsored_order(self) -> None:
        self.by_id["sponsored-1"] = _order("sponsored-1", order_type="SPONSORED_ORDER", state="COMPLETED")
        self.mock_by_hash.return_value = [_order("wrapper-1", replaces="sponsored-1")]
        update_order.lambda_handler(_event(), None)
        self.assertEqual(self.mock_unlock.call_args[0][:2], ("wrapper-1", "COMPLETED"))

    def test_already_completed(self) -> None:
        self.mock_by_hash.return_value = [_order("order-1", state="COMPLETED")]
        self.assertEqual(update_order.lambda_handler(_event(), None), {"order_id": "order-1"})
        self.mock_status.assert_not_called()

    def test_wrong_state(self) -> None:
        self.mock_by_hash.return_value = [_order("order-1", state="SIGNED")]
        with self.assertRaisesRegex(OrchestrationError, "Order needs to be in SUBMITTED state but is in SIGNED state"):
            update_order.lambda_handler(_event(), None)

    def test_unknown_hash(self) -> None:
        with self.assertRaisesRegex(OrchestrationError, "Transaction hash not found."):
            update_order.lambda_handler(_event(), None)

    def test_two_submitted_orders(self) -> None:
        self.mock_by_hash.return_value = [_order("order-1"), _order("order-2")]
        with self.assertRaisesRegex(OrchestrationError, "More than one submitted transaction found."):
            update_order.lambda_handler(_event(), None)

    def test_foreign_sender_is_ignored(self) -> None:
        self.mock_key.side_effect = KeyNotFoundError("missing")
        self.assertEqual(update_order.lambda_handler(_event(), None), {})
        self.mock_by_hash.assert_not_called()


if __name__ == "__main__":
    unittest.main()
