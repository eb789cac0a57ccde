"""mpc_shared.sponsor_addresses — Gas pool and trusted forwarder per client.

Items live under ``pk = CLIENT#{client}#CHAIN_ID#{chain}#ADDRESS_TYPE#{type}``
with the lowercase address as ``sk``, so one partition lists every
address of a type. A client has at most one gas pool per chain.

Environment variables:
    SPONSOR_ADDRESS_CONFIG_TABLE_NAME   default: sponsor_address_config
"""

from __future__ import annotations

import os
from typing import Any, Dict, List

from botocore.exceptions import ClientError

from mpc_shared.aws_clients import _get_ddb
from mpc_shared.errors import RepositoryError
from mpc_shared.serialization import _deserialize, _now_z, _serialize, _serialize_item

SPONSOR_ADDRESS_CONFIG_TABLE_NAME = os.environ.get(
    "SPONSOR_ADDRESS_CONFIG_TABLE_NAME", "sponsor_address_config"
)

GAS_POOL = "GAS_POOL"
FORWARDER = "FORWARDER"


def sponsor_pk(client_id: str, chain_id: int, address_type: str) -> str:
    return f"CLIENT#{client_id}#CHAIN_ID#{chain_id}#ADDRESS_TYPE#{address_type}"


def get_addresses(client_id: str, chain_id: int, address_type: str) -> List[Dict[str, Any]]:
    ddb = _get_ddb()
    kwargs: Dict[str, Any] = {
        "TableName": SPONSOR_ADDRESS_CONFIG_TABLE_NAME,
        "KeyConditionExpression": "pk = :pk",
        "ExpressionAttributeValues": {":pk": _serialize(sponsor_pk(client_id, chain_id, address_type))},
    }
    items: List[Dict[str, Any]] = []
    while True:
        try:
            resp = ddb.query(**kwargs)
        except ClientError as exc:
            raise RepositoryError(str(exc)) from exc
        items.extend(_deserialize(i) for i in resp.get("Items", []))
        if "LastEvaluatedKey" not in resp:
            return items
        kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]


def _gas_pool_item(client_id: str, chain_id: int, address: str) -> Dict[str, Any]:
    address = address.lower()
    return {
        "pk": sponsor_pk(client_id, chain_id, GAS_POOL),
        "sk": address,
        "client_id": client_id,
        "chain_id": chain_id,
        "address_type": GAS_POOL,
        "address": address,
        "last_modified_at": _now_z(),
    }


def put_gas_pool_address(client_id: str, chain_id: int, address: str) -> Dict[str, Any]:
    item = _gas_pool_item(client_id, chain_id, address)
    ddb = _get_ddb()
    try:
        ddb.put_item(TableName=SPONSOR_ADDRESS_CONFIG_TABLE_NAME, Item=_serialize_item(item))
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
    return item


def replace_gas_pool_address(client_id: str, chain_id: int, address: str) -> Dict[str, Any]:
    """Swap every gas pool of the client on ``chain_id`` for ``address`` atomically."""
    item = _gas_pool_item(client_id, chain_id, address)
    actions: List[Dict[str, Any]] = [
        {
            "Delete": {
                "TableName": SPONSOR_ADDRESS_CONFIG_TABLE_NAME,
                "Key": {"pk": _serialize(existing["pk"]), "sk": _serialize(existing["sk"])},
            }
        }
        for existing in get_addresses(client_id, chain_id, GAS_POOL)
        if existing["sk"] != item["sk"]
    ]
    actions.append({"Put": {"TableName": SPONSOR_ADDRESS_CONFIG_TABLE_NAME, "Item": _serialize_item(item)}})
    ddb = _get_ddb()
    try:
        ddb.transact_write_items(TransactItems=actions)
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
    return item
