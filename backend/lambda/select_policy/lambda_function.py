"""select_policy/lambda_function.py

Step-function task that picks the Maestro policy governing a transaction:
the mapping registered for the destination address when there is one,
the client's default mapping for the chain otherwise.

Input:   {"payload": {"client_id", "chain_id", "address"}, "context": {...}}
Output:  {"payload": {"policy_name"}, "context": {...}}

Environment variables:
    ADDRESS_POLICY_REGISTRY_TABLE_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import policy_registry
from mpc_shared.errors import NotFoundError, PolicyNotFoundError, RepositoryError, ValidationError
from mpc_shared.model import event_context, event_payload

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _select(client_id: str, chain_id: int, address: str) -> str:
    try:
        return policy_registry.get_policy(client_id, chain_id, address).policy
    except PolicyNotFoundError:
        logger.info("no policy for %s, falling back to default", address)
    except RepositoryError as exc:
        logger.error("policy lookup failed for %s", address, exc_info=True)
        raise NotFoundError(f"error looking up policy for {address}") from exc

    try:
        return policy_registry.get_policy(client_id, chain_id).policy
    except PolicyNotFoundError as exc:
        raise NotFoundError(
            f"there was no default policy configured for client {client_id} and chain id {chain_id}"
        ) from exc


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    ctx = event_context(event)
    payload = event_payload(event)
    try:
        client_id = payload["client_id"]
        chain_id = int(payload["chain_id"])
        address = payload["address"]
    except (KeyError, TypeError, ValueError):
        raise ValidationError("payload requires client_id, chain_id and address")

    policy_name = _select(client_id, chain_id, address)
    logger.info("order %s uses policy %s", ctx["order_id"], policy_name)
    return {"payload": {"policy_name": policy_name}, "context": ctx}
