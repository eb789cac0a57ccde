"""mpc_shared.cache — Key/value cache table.

Items are addressed by ``(pk, sk)`` and expire through DynamoDB TTL on
``expires_at``. Payload fields are stored as top-level attributes so they
stay readable in the console and usable in condition expressions (the
address lock's ``order_id``).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from botocore.exceptions import ClientError

from mpc_shared.aws_clients import _get_ddb
from mpc_shared.errors import CacheKeyNotFoundError, ConditionalCheckFailedError, RepositoryError
from mpc_shared.serialization import _deserialize, _now_z, _serialize, _serialize_item, _unix_now

logger = logging.getLogger(__name__)

CACHE_TABLE_NAME = os.environ.get("CACHE_TABLE_NAME", "cache")
FT_METADATA_CACHE_TTL_SECONDS = int(os.environ.get("FT_METADATA_CACHE_TTL_SECONDS", "86400"))

FT_METADATA_PK = "FT_METADATA"
ADDRESS_LOCK_PK = "ADDRESS_LOCK"

_RESERVED = ("pk", "sk", "created_at", "expires_at")


def ft_metadata_key(contract_address: str, chain_id: int) -> Dict[str, str]:
    return {"pk": FT_METADATA_PK, "sk": f"CONTRACT_ADDRESS#{contract_address}#CHAIN_ID#{chain_id}"}


def address_lock_key(address: str, chain_id: int) -> Dict[str, str]:
    return {"pk": ADDRESS_LOCK_PK, "sk": f"ADDRESS#{address.lower()}#CHAIN_ID#{chain_id}"}


def get_item(pk: str, sk: str) -> Dict[str, Any]:
    """Payload of a live cache item; expired items count as missing."""
    ddb = _get_ddb()
    try:
        resp = ddb.get_item(
            TableName=CACHE_TABLE_NAME,
            Key={"pk": _serialize(pk), "sk": _serialize(sk)},
        )
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
    raw = resp.get("Item")
    if not raw:
        raise CacheKeyNotFoundError(f"cache key {pk}/{sk} not found")
    item = _deserialize(raw)
    expires_at = item.get("expires_at")
    if expires_at is not None and int(expires_at) <= _unix_now():
        raise CacheKeyNotFoundError(f"cache key {pk}/{sk} expired")
    return {k: v for k, v in item.items() if k not in _RESERVED}


def set_item(pk: str, sk: str, data: Dict[str, Any], ttl_seconds: int) -> None:
    item = {k: v for k, v in data.items() if k not in _RESERVED}
    item.update(
        {
            "pk": pk,
            "sk": sk,
            "created_at": _now_z(),
            "expires_at": _unix_now() + ttl_seconds,
        }
    )
    ddb = _get_ddb()
    try:
        ddb.put_item(TableName=CACHE_TABLE_NAME, Item=_serialize_item(item))
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc


def get_ft_metadata(contract_address: str, chain_id: int) -> Dict[str, Any]:
    key = ft_metadata_key(contract_address, chain_id)
    return get_item(key["pk"], key["sk"])


def set_ft_metadata(contract_address: str, chain_id: int, metadata: Dict[str, Any]) -> None:
    key = ft_metadata_key(contract_address, chain_id)
    set_item(key["pk"], key["sk"], metadata, FT_METADATA_CACHE_TTL_SECONDS)


def lock_address(order_id: str, address: str, chain_id: int) -> None:
    """Take the nonce lock of ``address`` on ``chain_id`` for ``order_id``.

    Taking a lock the order already holds is a no-op; a lock held by any
    other order raises ``ConditionalCheckFailedError``. Locks do not expire:
    they are released by the order's terminal transition.
    """
    key = address_lock_key(address, chain_id)
    item = {**key, "order_id": order_id, "created_at": _now_z()}
    ddb = _get_ddb()
    try:
        ddb.put_item(
            TableName=CACHE_TABLE_NAME,
            Item=_serialize_item(item),
            ConditionExpression="attribute_not_exists(pk) OR order_id = :order_id",
            ExpressionAttributeValues={":order_id": _serialize(order_id)},
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            raise ConditionalCheckFailedError(
                f"address {address} on chain_id {chain_id} is locked by another order"
            ) from exc
        raise RepositoryError(str(exc)) from exc
