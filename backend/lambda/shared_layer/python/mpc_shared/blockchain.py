"""mpc_shared.blockchain — EVM JSON-RPC and Alchemy access.

Endpoints come from the environment, one per supported chain. When a
chain also names an API-key secret, the key is appended Alchemy style:
``{endpoint}{prefix}/v2/{api_key}``.

Environment variables:
    ETHEREUM_MAINNET_ENDPOINT, ETHEREUM_SEPOLIA_ENDPOINT,
    POLYGON_MAINNET_ENDPOINT, POLYGON_AMOY_ENDPOINT, GANACHE_ENDPOINT
    <CHAIN>_API_KEY_SECRET_NAME   optional, one per endpoint above
"""

from __future__ import annotations

import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional, Tuple

from mpc_shared import cache
from mpc_shared.errors import (
    BlockchainProviderError,
    CacheKeyNotFoundError,
    RepositoryError,
    RpcError,
    SecretNotFoundError,
    ValidationError,
)
from mpc_shared.secrets import get_secret

logger = logging.getLogger(__name__)

ETHEREUM_MAINNET = 1
ETHEREUM_SEPOLIA = 11155111
POLYGON_MAINNET = 137
POLYGON_AMOY = 80002
DEV_CHAIN = 1337

# chain_id -> (native token name, symbol)
SUPPORTED_CHAINS: Dict[int, Tuple[str, str]] = {
    ETHEREUM_MAINNET: ("Ether", "ETH"),
    ETHEREUM_SEPOLIA: ("Sepolia Ether", "ETH"),
    POLYGON_MAINNET: ("Polygon", "MATIC"),
    POLYGON_AMOY: ("Amoy Polygon", "MATIC"),
    DEV_CHAIN: ("Ether", "ETH"),
}

CHAIN_ENDPOINTS: Dict[int, str] = {
    ETHEREUM_MAINNET: os.environ.get("ETHEREUM_MAINNET_ENDPOINT", ""),
    ETHEREUM_SEPOLIA: os.environ.get("ETHEREUM_SEPOLIA_ENDPOINT", ""),
    POLYGON_MAINNET: os.environ.get("POLYGON_MAINNET_ENDPOINT", ""),
    POLYGON_AMOY: os.environ.get("POLYGON_AMOY_ENDPOINT", ""),
    DEV_CHAIN: os.environ.get("GANACHE_ENDPOINT", ""),
}

CHAIN_API_KEY_SECRETS: Dict[int, str] = {
    ETHEREUM_MAINNET: os.environ.get("ETHEREUM_MAINNET_API_KEY_SECRET_NAME", ""),
    ETHEREUM_SEPOLIA: os.environ.get("ETHEREUM_SEPOLIA_API_KEY_SECRET_NAME", ""),
    POLYGON_MAINNET: os.environ.get("POLYGON_MAINNET_API_KEY_SECRET_NAME", ""),
    POLYGON_AMOY: os.environ.get("POLYGON_AMOY_API_KEY_SECRET_NAME", ""),
    DEV_CHAIN: os.environ.get("GANACHE_API_KEY_SECRET_NAME", ""),
}

RPC_TIMEOUT_SECONDS = 10
_RETRY_BACKOFF_SECONDS = (0.5, 1.0, 2.0)


def is_supported_chain(chain_id: int) -> bool:
    return chain_id in SUPPORTED_CHAINS


def get_evm_endpoint(chain_id: int, prefix: str = "") -> str:
    if not is_supported_chain(chain_id):
        raise ValidationError(f"chain_id {chain_id} is not supported")
    endpoint = CHAIN_ENDPOINTS.get(chain_id) or ""
    if not endpoint:
        if chain_id == DEV_CHAIN:
            raise BlockchainProviderError("Dev chain found but no endpoint was specified")
        raise BlockchainProviderError(f"no endpoint configured for chain_id {chain_id}")
    secret_name = CHAIN_API_KEY_SECRETS.get(chain_id)
    if secret_name:
        try:
            api_key = get_secret(secret_name)
        except SecretNotFoundError as exc:
            raise BlockchainProviderError(f"api key unavailable for chain_id {chain_id}") from exc
        return f"{endpoint}{prefix}/v2/{api_key}"
    return f"{endpoint}{prefix}"


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def _send(req: urllib.request.Request) -> Any:
    """Send ``req`` and decode JSON, retrying transient failures."""
    attempts = len(_RETRY_BACKOFF_SECONDS) + 1
    for attempt in range(attempts):
        try:
            with urllib.request.urlopen(req, timeout=RPC_TIMEOUT_SECONDS) as resp:
                return json.loads(resp.read())
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            if exc.code < 500 or attempt == attempts - 1:
                raise BlockchainProviderError(f"provider returned {exc.code}: {body}") from exc
            logger.warning("provider returned %s, retrying", exc.code)
        except urllib.error.URLError as exc:
            if attempt == attempts - 1:
                raise BlockchainProviderError(f"provider unreachable: {exc.reason}") from exc
            logger.warning("provider unreachable (%s), retrying", exc.reason)
        except json.JSONDecodeError as exc:
            raise BlockchainProviderError("provider returned invalid json") from exc
        time.sleep(_RETRY_BACKOFF_SECONDS[attempt])
    raise BlockchainProviderError("provider request failed")


def _rpc(chain_id: int, method: str, params: List[Any]) -> Any:
    payload = json.dumps({"jsonrpc": "2.0", "id": 1, "method": method, "params": params}).encode()
    req = urllib.request.Request(
        get_evm_endpoint(chain_id),
        data=payload,
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )
    body = _send(req)
    if body.get("error"):
        error = body["error"]
        if isinstance(error, dict):
            raise RpcError(method, error.get("code"), str(error.get("message")))
        raise RpcError(method, None, str(error))
    return body.get("result")


def _hex_to_int(value: Optional[str]) -> int:
    if value is None or value in ("0x", ""):
        return 0
    return int(value, 16)


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------


def get_native_token_info(chain_id: int, address: str) -> Dict[str, Any]:
    name, symbol = SUPPORTED_CHAINS[chain_id]
    balance = _hex_to_int(_rpc(chain_id, "eth_getBalance", [address, "latest"]))
    return {"name": name, "symbol": symbol, "chain_id": chain_id, "balance": str(balance)}


def get_fungible_token_metadata(chain_id: int, contract_address: str) -> Dict[str, Any]:
    """Token metadata, read through the cache table."""
    try:
        return cache.get_ft_metadata(contract_address, chain_id)
    except CacheKeyNotFoundError:
        pass

    result = _rpc(chain_id, "alchemy_getTokenMetadata", [contract_address]) or {}
    metadata = {
        "name": result.get("name"),
        "symbol": result.get("symbol"),
        "decimals": result.get("decimals"),
        "logo": result.get("logo"),
    }
    try:
        cache.set_ft_metadata(contract_address, chain_id, metadata)
    except RepositoryError:
        logger.warning("could not cache metadata for %s", contract_address, exc_info=True)
    return metadata


def get_fungible_token_info(chain_id: int, address: str, contract_addresses: List[str]) -> Dict[str, Any]:
    result = _rpc(chain_id, "alchemy_getTokenBalances", [address, contract_addresses]) or {}
    data: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for token in result.get("tokenBalances") or []:
        contract_address = token.get("contractAddress")
        if token.get("error"):
            errors.append({"contract_address": contract_address, "reason": token["error"]})
            continue
        try:
            metadata = get_fungible_token_metadata(chain_id, contract_address)
        except (BlockchainProviderError, RepositoryError) as exc:
            errors.append(
                {
                    "contract_address": contract_address,
                    "reason": f"There was an issue getting metadata: {exc}",
                }
            )
            continue
        data.append(
            {
                "contract_address": contract_address,
                "balance": str(_hex_to_int(token.get("tokenBalance"))),
                "name": metadata.get("name"),
                "symbol": metadata.get("symbol"),
                "logo": metadata.get("logo"),
                "decimals": metadata.get("decimals"),
            }
        )
    return {"data": data, "errors": errors}


def _nft_entry(nft: Dict[str, Any]) -> Dict[str, Any]:
    contract_metadata = nft.get("contractMetadata") or {}
    metadata = nft.get("metadata") or {}
    attributes = metadata.get("attributes") or []
    return {
        "contract_address": (nft.get("contract") or {}).get("address"),
        "token_id": (nft.get("id") or {}).get("tokenId"),
        "name": contract_metadata.get("name"),
        "symbol": contract_metadata.get("symbol"),
        "balance": nft.get("balance"),
        "metadata": {
            "name": nft.get("title"),
            "description": nft.get("description"),
            "image": metadata.get("image"),
            "attributes": [
                {"value": a.get("value"), "trait_type": a.get("trait_type")}
                for a in attributes
                if isinstance(a, dict)
            ],
        },
    }


def get_non_fungible_token_info(
    chain_id: int,
    owner: str,
    contract_addresses: List[str],
    page_size: int,
    page_key: Optional[str] = None,
) -> Dict[str, Any]:
    query: List[Tuple[str, Any]] = [("owner", owner)]
    query.extend(("contractAddresses[]", c) for c in contract_addresses)
    query.append(("withMetadata", "true"))
    if page_key:
        query.append(("pageKey", page_key))
    query.append(("pageSize", page_size))
    url = f"{get_evm_endpoint(chain_id, '/nft')}/getNFTs?{urllib.parse.urlencode(query)}"
    body = _send(urllib.request.Request(url, method="GET", headers={"Accept": "application/json"}))
    return {
        "tokens": [_nft_entry(n) for n in body.get("ownedNfts") or []],
        "pagination": {"page_size": page_size, "page_key": body.get("pageKey")},
    }


# ---------------------------------------------------------------------------
# Fees, nonces and receipts
# ---------------------------------------------------------------------------


def get_fee_history(chain_id: int, block_count: int, percentiles: List[float]) -> Dict[str, Any]:
    result = _rpc(chain_id, "eth_feeHistory", [hex(block_count), "latest", percentiles]) or {}
    return {
        "base_fee_per_gas": [_hex_to_int(v) for v in result.get("baseFeePerGas") or []],
        "reward": [[_hex_to_int(v) for v in row] for row in result.get("reward") or []],
    }


def get_fees_from_pending(chain_id: int) -> Tuple[int, List[int]]:
    """``(base_fee, sorted priority fees)`` of the pending block."""
    block = _rpc(chain_id, "eth_getBlockByNumber", ["pending", True])
    if not block:
        raise BlockchainProviderError("pending block not available")
    base_fee = _hex_to_int(block.get("baseFeePerGas"))
    fees = sorted(
        _hex_to_int(tx["maxPriorityFeePerGas"])
        for tx in block.get("transactions") or []
        if isinstance(tx, dict) and tx.get("maxPriorityFeePerGas") is not None
    )
    return base_fee, fees


def get_tx_receipt(chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
    return _rpc(chain_id, "eth_getTransactionReceipt", [tx_hash])


def tx_status_succeed(chain_id: int, tx_hash: str) -> bool:
    receipt = get_tx_receipt(chain_id, tx_hash)
    if receipt is None:
        raise BlockchainProviderError(f"receipt for {tx_hash} not found")
    return _hex_to_int(receipt.get("status")) == 1


def get_tx_by_hash(chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
    return _rpc(chain_id, "eth_getTransactionByHash", [tx_hash])


def get_current_nonce(chain_id: int, address: str) -> int:
    return _hex_to_int(_rpc(chain_id, "eth_getTransactionCount", [address, "latest"]))


def send_raw_transaction(chain_id: int, raw_transaction: str) -> str:
    """Broadcast a signed transaction; returns its hash."""
    if not raw_transaction.startswith("0x"):
        raw_transaction = "0x" + raw_transaction
    return _rpc(chain_id, "eth_sendRawTransaction", [raw_transaction])
