"""mpc_shared.nonces — Next-nonce bookkeeping per address and chain.

The table holds the nonce the next transaction from ``address`` on
``chain_id`` must use. Mined transactions move it forward through
``increment_nonce``, which never goes backwards: a late event for an old
transaction is ignored.

Environment variables:
    NONCES_TABLE_NAME   default: nonces
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from mpc_shared.aws_clients import _get_ddb
from mpc_shared.errors import NonceNotFoundError, RepositoryError
from mpc_shared.serialization import _deserialize, _now_z, _serialize

logger = logging.getLogger(__name__)

NONCES_TABLE_NAME = os.environ.get("NONCES_TABLE_NAME", "nonces")

_MAX_INCREMENT_ATTEMPTS = 5


def _key(address: str, chain_id: int) -> Dict[str, Any]:
    return {"address": _serialize(address.lower()), "chain_id": _serialize(int(chain_id))}


def get_nonce(address: str, chain_id: int) -> Dict[str, Any]:
    ddb = _get_ddb()
    try:
        resp = ddb.get_item(TableName=NONCES_TABLE_NAME, Key=_key(address, chain_id), ConsistentRead=True)
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
    raw = resp.get("Item")
    if not raw:
        raise NonceNotFoundError(f"nonce for address {address} and chain_id {chain_id} not found")
    return _deserialize(raw)


def _current_nonce(address: str, chain_id: int) -> int:
    try:
        return int(get_nonce(address, chain_id).get("nonce", 0))
    except NonceNotFoundError:
        return 0


def increment_nonce(address: str, tx_nonce: int, tx_hash: str, chain_id: int) -> Optional[int]:
    """Record that ``tx_nonce`` was used; returns the new nonce, or None if stale."""
    for attempt in range(_MAX_INCREMENT_ATTEMPTS):
        current = _current_nonce(address, chain_id)
        if current > tx_nonce:
            logger.info(
                "nonce %s for %s on chain %s is behind current %s, skipping",
                tx_nonce, address, chain_id, current,
            )
            return None
        new_nonce = tx_nonce + 1
        now = _now_z()
        ddb = _get_ddb()
        try:
            ddb.update_item(
                TableName=NONCES_TABLE_NAME,
                Key=_key(address, chain_id),
                UpdateExpression=(
                    "SET created_at = if_not_exists(created_at, :created_at), "
                    "last_modified_at = :last_modified_at, "
                    "transaction_hash = :transaction_hash, nonce = :new_nonce"
                ),
                ConditionExpression="nonce = :current_nonce OR attribute_not_exists(nonce)",
                ExpressionAttributeValues={
                    ":created_at": _serialize(now),
                    ":last_modified_at": _serialize(now),
                    ":transaction_hash": _serialize(tx_hash),
                    ":new_nonce": _serialize(new_nonce),
                    ":current_nonce": _serialize(current),
                },
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.warning("nonce for %s changed concurrently (attempt %s)", address, attempt + 1)
                continue
            raise RepositoryError(str(exc)) from exc
        return new_nonce
    raise RepositoryError(f"could not increment nonce for {address} on chain {chain_id}")


def set_nonce(address: str, nonce: int, tx_hash: Optional[str], chain_id: int) -> None:
    """Overwrite the nonce unconditionally (admin resync)."""
    now = _now_z()
    ddb = _get_ddb()
    try:
        ddb.update_item(
            TableName=NONCES_TABLE_NAME,
            Key=_key(address, chain_id),
            UpdateExpression=(
                "SET created_at = if_not_exists(created_at, :created_at), "
                "last_modified_at = :last_modified_at, "
                "transaction_hash = :transaction_hash, nonce = :nonce"
            ),
            ExpressionAttributeValues={
                ":created_at": _serialize(now),
                ":last_modified_at": _serialize(now),
                ":transaction_hash": _serialize(tx_hash or ""),
                ":nonce": _serialize(int(nonce)),
            },
        )
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
