"""test_blockchain.py — JSON-RPC and Alchemy access with the transport mocked."""

from __future__ import annotations

import io
import json
import os
import sys
import unittest
import urllib.error
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from mpc_shared import blockchain
from mpc_shared.errors import BlockchainProviderError, CacheKeyNotFoundError, ValidationError

ADDRESS = "0x90f8bf6a479f320ead074411a4b0e7944ea8c9c1"
ENDPOINTS = {1: "https://eth-mainnet.example", 1337: ""}


def _rpc_result(result):
    return {"jsonrpc": "2.0", "id": 1, "result": result}


def _http_response(payload):
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode()
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


class EndpointTests(unittest.TestCase):
    def test_plain_endpoint(self):
        with patch.dict(blockchain.CHAIN_ENDPOINTS, ENDPOINTS), \
                patch.dict(blockchain.CHAIN_API_KEY_SECRETS, {1: ""}):
            self.assertEqual(blockchain.get_evm_endpoint(1), "https://eth-mainnet.example")

    def test_endpoint_with_api_key(self):
        with patch.dict(blockchain.CHAIN_ENDPOINTS, ENDPOINTS), \
                patch.dict(blockchain.CHAIN_API_KEY_SECRETS, {1: "alchemy-key"}), \
                patch.object(blockchain, "get_secret", return_value="abc123") as secret:
            self.assertEqual(
                blockchain.get_evm_endpoint(1, "/nft"),
                "https://eth-mainnet.example/nft/v2/abc123",
            )
        secret.assert_called_once_with("alchemy-key")

    def test_unsupported_chain(self):
        with self.assertRaises(ValidationError):
            blockchain.get_evm_endpoint(999)

    def test_dev_chain_without_endpoint(self):
        with patch.dict(blockchain.CHAIN_ENDPOINTS, ENDPOINTS):
            with self.assertRaises(BlockchainProviderError) as ctx:
                blockchain.get_evm_endpoint(1337)
        self.assertEqual(str(ctx.exception), "Dev chain found but no endpoint was specified")


class TransportTests(unittest.TestCase):
    def test_retries_server_errors(self):
        error = urllib.error.HTTPError("https://x", 503, "unavailable", {}, io.BytesIO(b"busy"))
        with patch.object(blockchain.urllib.request, "urlopen",
                          side_effect=[error, _http_response(_rpc_result("0x1"))]) as urlopen, \
                patch.object(blockchain.time, "sleep") as sleep:
            body = blockchain._send(MagicMock())
        self.assertEqual(body["result"], "0x1")
        self.assertEqual(urlopen.call_count, 2)
        sleep.assert_called_once_with(0.5)

    def test_client_errors_are_not_retried(self):
        error = urllib.error.HTTPError("https://x", 400, "bad", {}, io.BytesIO(b"nope"))
        with patch.object(blockchain.urllib.request, "urlopen", side_effect=error) as urlopen, \
                patch.object(blockchain.time, "sleep"):
            with self.assertRaises(BlockchainProviderError):
                blockchain._send(MagicMock())
        self.assertEqual(urlopen.call_count, 1)

    def test_gives_up_after_last_retry(self):
        error = urllib.error.URLError("connection refused")
        with patch.object(blockchain.urllib.request, "urlopen", side_effect=error) as urlopen, \
                patch.object(blockchain.time, "sleep"):
            with self.assertRaises(BlockchainProviderError):
                blockchain._send(MagicMock())
        self.assertEqual(urlopen.call_count, 4)

    def test_rpc_error_body(self):
        with patch.dict(blockchain.CHAIN_ENDPOINTS, ENDPOINTS), \
                patch.dict(blockchain.CHAIN_API_KEY_SECRETS, {1: ""}), \
                patch.object(blockchain, "_send",
                             return_value={"error": {"code": -32000, "message": "boom"}}):
            with self.assertRaises(BlockchainProviderError) as ctx:
                blockchain._rpc(1, "eth_blockNumber", [])
        self.assertEqual(str(ctx.exception), "eth_blockNumber failed: boom")


class ProviderCallTests(unittest.TestCase):
    def setUp(self):
        self._patches = [
            patch.dict(blockchain.CHAIN_ENDPOINTS, ENDPOINTS),
            patch.dict(blockchain.CHAIN_API_KEY_SECRETS, {1: ""}),
        ]
        for p in self._patches:
            p.start()

    def tearDown(self):
        for p in reversed(self._patches):
            p.stop()

    def test_native_balance(self):
        with patch.object(blockchain, "_send", return_value=_rpc_result("0xde0b6b3a7640000")):
            info = blockchain.get_native_token_info(1, ADDRESS)
        self.assertEqual(
            info,
            {"name": "Ether", "symbol": "ETH", "chain_id": 1, "balance": "1000000000000000000"},
        )

    def test_fees_from_pending_block(self):
        block = {
            "baseFeePerGas": "0x64",
            "transactions": [
                {"maxPriorityFeePerGas": "0x3"},
                {"gasPrice": "0x10"},
                {"maxPriorityFeePerGas": "0x1"},
                "0xhash-only",
            ],
        }
        with patch.object(blockchain, "_send", return_value=_rpc_result(block)):
            base_fee, fees = blockchain.get_fees_from_pending(1)
        self.assertEqual(base_fee, 100)
        self.assertEqual(fees, [1, 3])

    def test_fee_history(self):
        history = {"baseFeePerGas": ["0xa", "0xb"], "reward": [["0x1", "0x2", "0x3"]]}
        with patch.object(blockchain, "_send", return_value=_rpc_result(history)) as send:
            result = blockchain.get_fee_history(1, 5, [0.0, 50.0, 100.0])
        self.assertEqual(result, {"base_fee_per_gas": [10, 11], "reward": [[1, 2, 3]]})
        payload = json.loads(send.call_args[0][0].data)
        self.assertEqual(payload["params"], ["0x5", "latest", [0.0, 50.0, 100.0]])

    def test_fungible_balances_use_cached_metadata(self):
        balances = {
            "tokenBalances": [
                {"contractAddress": "0xaaa", "tokenBalance": "0x0a", "error": None},
                {"contractAddress": "0xbbb", "tokenBalance": None, "error": "bad contract"},
            ]
        }
        metadata = {"name": "Token", "symbol": "TKN", "decimals": 6}
        with patch.object(blockchain, "_send", return_value=_rpc_result(balances)), \
                patch.object(blockchain.cache, "get_ft_metadata", return_value=metadata):
            result = blockchain.get_fungible_token_info(1, ADDRESS, ["0xaaa", "0xbbb"])
        self.assertEqual(
            result["data"],
            [{"contract_address": "0xaaa", "balance": "10", "name": "Token",
              "symbol": "TKN", "logo": None, "decimals": 6}],
        )
        self.assertEqual(result["errors"], [{"contract_address": "0xbbb", "reason": "bad contract"}])

    def test_metadata_cache_miss_fetches_and_stores(self):
        remote = {"name": "Token", "symbol": "TKN", "decimals": 18, "logo": "https://logo"}
        with patch.object(blockchain.cache, "get_ft_metadata",
                          side_effect=CacheKeyNotFoundError("miss")), \
                patch.object(blockchain.cache, "set_ft_metadata") as store, \
                patch.object(blockchain, "_send", return_value=_rpc_result(remote)):
            metadata = blockchain.get_fungible_token_metadata(1, "0xaaa")
        self.assertEqual(metadata, remote)
        store.assert_called_once_with("0xaaa", 1, remote)

    def test_nft_page(self):
        body = {
            "ownedNfts": [
                {
                    "contract": {"address": "0xnft"},
                    "id": {"tokenId": "0x01"},
                    "balance": "1",
                    "title": "Token #1",
                    "description": "first",
                    "contractMetadata": {"name": "Collection", "symbol": "COL"},
                    "metadata": {
                        "image": "ipfs://image",
                        "attributes": [{"value": "red", "trait_type": "color"}, "junk"],
                    },
                }
            ],
            "pageKey": "next-page",
        }
        with patch.object(blockchain, "_send", return_value=body) as send:
            result = blockchain.get_non_fungible_token_info(1, ADDRESS, ["0xnft"], 10, "prev")
        url = send.call_args[0][0].full_url
        self.assertTrue(url.startswith("https://eth-mainnet.example/nft/getNFTs?owner="))
        self.assertIn("pageKey=prev", url)
        self.assertIn("pageSize=10", url)
        self.assertEqual(result["pagination"], {"page_size": 10, "page_key": "next-page"})
        token = result["tokens"][0]
        self.assertEqual(token["token_id"], "0x01")
        self.assertEqual(token["metadata"]["attributes"], [{"value": "red", "trait_type": "color"}])

    def test_receipt_status(self):
        with patch.object(blockchain, "_send", return_value=_rpc_result({"status": "0x1"})):
            self.assertTrue(blockchain.tx_status_succeed(1, "0xhash"))
        with patch.object(blockchain, "_send", return_value=_rpc_result({"status": "0x0"})):
            self.assertFalse(blockchain.tx_status_succeed(1, "0xhash"))
        with patch.object(blockchain, "_send", return_value=_rpc_result(None)):
            with self.assertRaises(BlockchainProviderError):
                blockchain.tx_status_succeed(1, "0xhash")

    def test_current_nonce(self):
        with patch.object(blockchain, "_send", return_value=_rpc_result("0x2a")):
            self.assertEqual(blockchain.get_current_nonce(1, ADDRESS), 42)


if __name__ == "__main__":
    unittest.main()
