"""policy_mappings/lambda_function.py

CRUD over the caller's address policy registry. Policies themselves live
in Maestro under the client's domain; this API only maps addresses to
them, so create and update check the named policy exists first.

Routes (via API Gateway proxy):
    POST    /policies                                — create mapping (201)
    GET     /policies                                — list all mappings by chain
    GET     /policies/{chain_id}/{address|default}   — {"policy"}
    PUT     /policies/{chain_id}/{address|default}   — body {"policy"}
    DELETE  /policies/{chain_id}/{address|default}

    ``?type=address_from`` targets the sender-side mapping of an address;
    address mappings are destination-side (ADDRESS_TO) otherwise.

Create body:
    {"chain_id": 1, "address": "0x..."?, "type": "ADDRESS_TO"?, "policy": "name"}
    With no address the client's DEFAULT mapping for the chain is created.

Environment variables:
    ADDRESS_POLICY_REGISTRY_TABLE_NAME
    MAESTRO_URL, MAESTRO_TENANT_NAME, SERVICE_NAME, MAESTRO_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared import maestro, policy_registry
from mpc_shared.blockchain import is_supported_chain
from mpc_shared.errors import (
    ConditionalCheckFailedError,
    MaestroError,
    PolicyNotFoundError,
    RepositoryError,
    ValidationError,
)
from mpc_shared.http_utils import (
    RequestError,
    _client_id,
    _error,
    _json_body,
    _not_found,
    _path_method,
    _query_param,
    _response,
    _server_error,
    _validation_error,
)
from mpc_shared.model import ADDRESS_FROM, ADDRESS_TO, DEFAULT, PolicyMapping
from mpc_shared.transactions import parse_address

logger = logging.getLogger()
logger.setLevel(logging.INFO)

POLICY_NOT_FOUND = "policy_not_found"

_COLLECTION_PATTERN = re.compile(r"/policies/?$")
_ITEM_PATTERN = re.compile(r"/policies/(?P<chain_id>[^/]+)/(?P<address>[^/]+)/?$")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chain_id(raw: Any) -> int:
    try:
        chain_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid chain_id: {raw}")
    if not is_supported_chain(chain_id):
        raise ValidationError(f"chain_id {chain_id} is not supported")
    return chain_id


def _mapping_type(raw: Optional[str], address: Optional[str]) -> str:
    if raw is None:
        return ADDRESS_TO if address else DEFAULT
    value = str(raw).upper()
    if value not in (ADDRESS_TO, ADDRESS_FROM, DEFAULT):
        raise ValidationError(f"invalid type: {raw}")
    if value == DEFAULT and address:
        raise ValidationError("a DEFAULT mapping can't have an address")
    if value != DEFAULT and not address:
        raise ValidationError(f"type {raw} requires an address")
    return value


def _target(event: Dict[str, Any], match: "re.Match[str]") -> Tuple[int, str, Optional[str]]:
    """``(chain_id, type, address)`` addressed by an item route."""
    chain_id = _chain_id(match.group("chain_id"))
    raw_address = match.group("address")
    address = None if raw_address.lower() == "default" else parse_address(raw_address)
    return chain_id, _mapping_type(_query_param(event, "type"), address), address


def _policy_name(body: Dict[str, Any]) -> str:
    policy = body.get("policy")
    if not isinstance(policy, str) or not policy.strip():
        raise ValidationError("policy is required")
    return policy


def _check_policy_exists(client_id: str, policy: str) -> None:
    if not maestro.policy_exists(client_id, policy):
        raise ValidationError(f'invalid policy "{policy}"')


def _policy_not_found(chain_id: int, address: Optional[str]) -> Dict[str, Any]:
    return _not_found(
        POLICY_NOT_FOUND,
        f"policy for {address or 'default'} not found for chain_id {chain_id}",
    )


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _handle_create(client_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    chain_id = _chain_id(body.get("chain_id"))
    address = body.get("address")
    address = parse_address(address) if address else None
    mapping = PolicyMapping(
        client_id=client_id,
        chain_id=chain_id,
        policy=_policy_name(body),
        type=_mapping_type(body.get("type"), address),
        address=address,
    )
    _check_policy_exists(client_id, mapping.policy)
    try:
        policy_registry.put_policy(mapping)
    except ConditionalCheckFailedError:
        return _validation_error(
            f"a policy mapping for {address or 'default'} already exists for chain_id {chain_id}"
        )
    logger.info("created %s mapping %s -> %s", mapping.type, mapping.sk, mapping.policy)
    return _response(
        201,
        {
            "chain_id": chain_id,
            "address": mapping.address,
            "type": mapping.type,
            "policy": mapping.policy,
        },
    )


def _handle_list(client_id: str) -> Dict[str, Any]:
    chains: Dict[int, List[Dict[str, Any]]] = {}
    for mapping in policy_registry.get_all_policies(client_id):
        chains.setdefault(mapping.chain_id, []).append(
            {"address": mapping.address, "policy": mapping.policy, "type": mapping.type}
        )
    return _response(
        200,
        {
            "chains": [
                {"chain_id": chain_id, "addresses": addresses}
                for chain_id, addresses in sorted(chains.items())
            ]
        },
    )


def _handle_get(client_id: str, chain_id: int, mapping_type: str, address: Optional[str]) -> Dict[str, Any]:
    try:
        mapping = policy_registry.get_policy(client_id, chain_id, address, mapping_type)
    except PolicyNotFoundError:
        return _policy_not_found(chain_id, address)
    return _response(200, {"policy": mapping.policy})


def _handle_update(
    client_id: str,
    chain_id: int,
    mapping_type: str,
    address: Optional[str],
    body: Dict[str, Any],
) -> Dict[str, Any]:
    mapping = PolicyMapping(
        client_id=client_id,
        chain_id=chain_id,
        policy=_policy_name(body),
        type=mapping_type,
        address=address,
    )
    _check_policy_exists(client_id, mapping.policy)
    try:
        policy_registry.update_policy(mapping)
    except PolicyNotFoundError:
        return _policy_not_found(chain_id, address)
    return _response(200, {"policy": mapping.policy})


def _handle_delete(client_id: str, chain_id: int, mapping_type: str, address: Optional[str]) -> Dict[str, Any]:
    try:
        policy_registry.delete_policy(client_id, chain_id, mapping_type, address)
    except PolicyNotFoundError:
        return _policy_not_found(chain_id, address)
    return _response(200, {"deleted": True})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    method, path = _path_method(event)
    logger.info("policy_mappings: %s %s", method, path)

    try:
        client_id = _client_id(event)

        if _COLLECTION_PATTERN.search(path):
            if method == "POST":
                return _handle_create(client_id, _json_body(event))
            if method == "GET":
                return _handle_list(client_id)

        m = _ITEM_PATTERN.search(path)
        if m:
            chain_id, mapping_type, address = _target(event, m)
            if method == "GET":
                return _handle_get(client_id, chain_id, mapping_type, address)
            if method == "PUT":
                return _handle_update(client_id, chain_id, mapping_type, address, _json_body(event))
            if method == "DELETE":
                return _handle_delete(client_id, chain_id, mapping_type, address)

        return _error(404, "not_found", f"no route for {method} {path}")
    except RequestError as exc:
        return exc.response
    except ValidationError as exc:
        return _validation_error(str(exc))
    except (RepositoryError, MaestroError, ClientError, BotoCoreError) as exc:
        return _server_error(exc)
