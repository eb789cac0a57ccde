"""send_transaction handler tests."""

from __future__ import annotations

import importlib.util
import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

_SPEC = importlib.util.spec_from_file_location(
    "send_transaction",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
send_transaction = importlib.util.module_from_spec(_SPEC)
_SPEC.loader.exec_module(send_transaction)

from mpc_shared.errors import BlockchainProviderError, OrchestrationError, RpcError, ValidationError

TX_HASH = "0x" + "ab" * 32


def _event(signature="f86b0185") -> dict:
    return {
        "payload": {
            "transaction": {
                "to": "0x25DFE735C17FEC1d86A458657189060D65Be69a8",
                "gas": "21000",
                "gas_price": "1000",
                "value": "1",
                "data": "0x",
                "chain_id": 11155111,
                "nonce": "3",
            },
            "key_id": "key-1",
            "approval_status": "approved",
            "maestro_signature": signature,
            "transaction_hash": TX_HASH,
        },
        "context": {"order_id": "order-1", "execution": "abc"},
    }


class SendTransactionTests(unittest.TestCase):
    @patch.object(send_transaction.blockchain, "send_raw_transaction", return_value=TX_HASH)
    def test_submitted(self, mock_send) -> None:
        resp = send_transaction.lambda_handler(_event(), None)
        self.assertEqual(resp["payload"], {"Submitted": {"tx_hash": TX_HASH}})
        self.assertEqual(resp["context"], {"order_id": "order-1", "execution": "abc"})
        mock_send.assert_called_once_with(11155111, "0xf86b0185")

    @patch.object(send_transaction.blockchain, "send_raw_transaction", return_value=TX_HASH)
    def test_prefixed_signature(self, mock_send) -> None:
        send_transaction.lambda_handler(_event("0xF86B0185"), None)
        mock_send.assert_called_once_with(11155111, "0xf86b0185")

    @patch.object(
        send_transaction.blockchain,
        "send_raw_transaction",
        side_effect=RpcError("eth_sendRawTransaction", -32000, "nonce too low"),
    )
    def test_rejected_by_node(self, _mock_send) -> None:
        resp = send_transaction.lambda_handler(_event(), None)
        self.assertEqual(resp["payload"], {"NotSubmitted": {"code": -32000, "message": "nonce too low"}})

    @patch.object(
        send_transaction.blockchain,
        "send_raw_transaction",
        side_effect=RpcError("eth_sendRawTransaction", -32602, "invalid argument"),
    )
    def test_other_rpc_errors_fail(self, _mock_send) -> None:
        with self.assertRaises(OrchestrationError):
            send_transaction.lambda_handler(_event(), None)

    @patch.object(
        send_transaction.blockchain,
        "send_raw_transaction",
        side_effect=BlockchainProviderError("provider unreachable"),
    )
    def test_provider_unreachable(self, _mock_send) -> None:
        with self.assertRaisesRegex(OrchestrationError, "Unable to send txn"):
            send_transaction.lambda_handler(_event(), None)

    @patch.object(send_transaction.blockchain, "send_raw_transaction")
    def test_bad_signature(self, mock_send) -> None:
        with self.assertRaisesRegex(OrchestrationError, "Unable to decode signature"):
            send_transaction.lambda_handler(_event("zz"), None)
        mock_send.assert_not_called()

    def test_missing_signature(self) -> None:
        event = _event()
        del event["payload"]["maestro_signature"]
        with self.assertRaises(ValidationError):
            send_transaction.lambda_handler(event, None)


if __name__ == "__main__":
    unittest.main()
