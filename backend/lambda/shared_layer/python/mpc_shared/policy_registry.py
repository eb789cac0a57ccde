"""mpc_shared.policy_registry — Address policy registry persistence.

Maps (client, chain, address) to the name of the Maestro policy that
governs transactions for it. Each client/chain partition holds at most one
``ADDRESS#DEFAULT`` row plus any number of per-address rows.

Environment variables:
    ADDRESS_POLICY_REGISTRY_TABLE_NAME   default: address_policy_registry
"""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from mpc_shared.aws_clients import _get_ddb
from mpc_shared.errors import ConditionalCheckFailedError, PolicyNotFoundError, RepositoryError
from mpc_shared.model import ADDRESS_TO, DEFAULT, PolicyMapping, registry_pk, registry_sk
from mpc_shared.serialization import _deserialize, _now_z, _serialize, _serialize_item

logger = logging.getLogger(__name__)

ADDRESS_POLICY_REGISTRY_TABLE_NAME = os.environ.get(
    "ADDRESS_POLICY_REGISTRY_TABLE_NAME", "address_policy_registry"
)
CLIENT_ID_INDEX = "client_id_index"


def _key(client_id: str, chain_id: int, mapping_type: str, address: Optional[str]) -> Dict[str, Dict[str, str]]:
    return {
        "pk": _serialize(registry_pk(client_id, chain_id)),
        "sk": _serialize(registry_sk(mapping_type, address)),
    }


def _conditional_failed(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def get_policy(
    client_id: str,
    chain_id: int,
    address: Optional[str] = None,
    mapping_type: Optional[str] = None,
) -> PolicyMapping:
    """Mapping for ``address`` (address-to by default) or the default row."""
    if mapping_type is None:
        mapping_type = ADDRESS_TO if address else DEFAULT
    ddb = _get_ddb()
    try:
        resp = ddb.get_item(
            TableName=ADDRESS_POLICY_REGISTRY_TABLE_NAME,
            Key=_key(client_id, chain_id, mapping_type, address),
        )
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
    raw = resp.get("Item")
    if not raw:
        target = address or "default"
        raise PolicyNotFoundError(
            f"policy for {target} not found for client {client_id} and chain id {chain_id}"
        )
    return PolicyMapping.from_item(_deserialize(raw))


def put_policy(mapping: PolicyMapping) -> None:
    ddb = _get_ddb()
    try:
        ddb.put_item(
            TableName=ADDRESS_POLICY_REGISTRY_TABLE_NAME,
            Item=_serialize_item(mapping.to_item()),
            ConditionExpression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
        )
    except ClientError as exc:
        if _conditional_failed(exc):
            raise ConditionalCheckFailedError("policy mapping already exists") from exc
        raise RepositoryError(str(exc)) from exc


def update_policy(mapping: PolicyMapping) -> None:
    ddb = _get_ddb()
    try:
        ddb.update_item(
            TableName=ADDRESS_POLICY_REGISTRY_TABLE_NAME,
            Key=_key(mapping.client_id, mapping.chain_id, mapping.type, mapping.address),
            UpdateExpression="SET #policy = :policy, last_modified_at = :last_modified_at",
            ConditionExpression="attribute_exists(pk) AND attribute_exists(sk)",
            ExpressionAttributeNames={"#policy": "policy"},
            ExpressionAttributeValues={
                ":policy": _serialize(mapping.policy),
                ":last_modified_at": _serialize(_now_z()),
            },
        )
    except ClientError as exc:
        if _conditional_failed(exc):
            raise PolicyNotFoundError("policy mapping not found") from exc
        raise RepositoryError(str(exc)) from exc


def delete_policy(client_id: str, chain_id: int, mapping_type: str, address: Optional[str] = None) -> None:
    ddb = _get_ddb()
    try:
        ddb.delete_item(
            TableName=ADDRESS_POLICY_REGISTRY_TABLE_NAME,
            Key=_key(client_id, chain_id, mapping_type, address),
            ConditionExpression="attribute_exists(pk) AND attribute_exists(sk)",
        )
    except ClientError as exc:
        if _conditional_failed(exc):
            raise PolicyNotFoundError("policy mapping not found") from exc
        raise RepositoryError(str(exc)) from exc


def get_all_policies(client_id: str) -> List[PolicyMapping]:
    ddb = _get_ddb()
    kwargs = {
        "TableName": ADDRESS_POLICY_REGISTRY_TABLE_NAME,
        "IndexName": CLIENT_ID_INDEX,
        "KeyConditionExpression": "client_id = :client_id",
        "ExpressionAttributeValues": {":client_id": _serialize(client_id)},
    }
    mappings: List[PolicyMapping] = []
    while True:
        try:
            resp = ddb.query(**kwargs)
        except ClientError as exc:
            raise RepositoryError(str(exc)) from exc
        mappings.extend(PolicyMapping.from_item(_deserialize(i)) for i in resp.get("Items", []))
        if "LastEvaluatedKey" not in resp:
            break
        kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]
    return mappings
