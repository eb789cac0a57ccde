"""mpc_shared.keys — MPC key table persistence.

Keys are written by the key-creation state machine once Maestro returns
the public key. Handlers only read them, by address through the
``AddressIndex`` GSI.
"""

from __future__ import annotations

import os
from typing import Any, Dict

from botocore.exceptions import ClientError

from mpc_shared.aws_clients import _get_ddb
from mpc_shared.errors import KeyNotFoundError, RepositoryError
from mpc_shared.serialization import _deserialize, _serialize

KEYS_TABLE_NAME = os.environ.get("KEYS_TABLE_NAME", "keys")
ADDRESS_INDEX = "AddressIndex"


def get_key_by_address(address: str) -> Dict[str, Any]:
    ddb = _get_ddb()
    try:
        resp = ddb.query(
            TableName=KEYS_TABLE_NAME,
            IndexName=ADDRESS_INDEX,
            KeyConditionExpression="address = :address",
            ExpressionAttributeValues={":address": _serialize(address.lower())},
            Limit=1,
        )
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
    items = resp.get("Items") or []
    if not items:
        raise KeyNotFoundError(f"Key with address {address} not found")
    return _deserialize(items[0])


def client_owns_address(client_id: str, address: str) -> bool:
    """True when the key behind ``address`` belongs to ``client_id``."""
    try:
        key = get_key_by_address(address)
    except KeyNotFoundError:
        return False
    return key.get("client_id") == client_id
