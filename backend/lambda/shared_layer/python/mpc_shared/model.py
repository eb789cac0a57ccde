"""mpc_shared.model — Order, policy, key and registry domain model.

Orders and keys travel through the system as plain dicts (the shape that
is stored in DynamoDB and passed between step-function tasks); this module
holds the vocabulary and the rules that apply to them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from mpc_shared.errors import PreviousStatesNotFoundError, ValidationError
from mpc_shared.serialization import _now_z

ORDER_VERSION = "1"

# ---------------------------------------------------------------------------
# Order types
# ---------------------------------------------------------------------------

KEY_CREATION_ORDER = "KEY_CREATION_ORDER"
SIGNATURE_ORDER = "SIGNATURE_ORDER"
SPEEDUP_ORDER = "SPEEDUP_ORDER"
SPONSORED_ORDER = "SPONSORED_ORDER"
CANCELLATION_ORDER = "CANCELLATION_ORDER"

ORDER_TYPES: FrozenSet[str] = frozenset(
    {KEY_CREATION_ORDER, SIGNATURE_ORDER, SPEEDUP_ORDER, SPONSORED_ORDER, CANCELLATION_ORDER}
)

# ---------------------------------------------------------------------------
# Order states
# ---------------------------------------------------------------------------

CANCELLED = "CANCELLED"
COMPLETED = "COMPLETED"
COMPLETED_WITH_ERROR = "COMPLETED_WITH_ERROR"
APPROVERS_REVIEWED = "APPROVERS_REVIEWED"
DROPPED = "DROPPED"
ERROR = "ERROR"
NOT_SIGNED = "NOT_SIGNED"
NOT_SUBMITTED = "NOT_SUBMITTED"
RECEIVED = "RECEIVED"
REORGED = "REORGED"
REPLACED = "REPLACED"
SELECTED_FOR_SIGNING = "SELECTED_FOR_SIGNING"
SIGNED = "SIGNED"
SUBMITTED = "SUBMITTED"

ORDER_STATES: FrozenSet[str] = frozenset(
    {
        CANCELLED, COMPLETED, COMPLETED_WITH_ERROR, APPROVERS_REVIEWED, DROPPED,
        ERROR, NOT_SIGNED, NOT_SUBMITTED, RECEIVED, REORGED, REPLACED,
        SELECTED_FOR_SIGNING, SIGNED, SUBMITTED,
    }
)

PENDING_STATES: FrozenSet[str] = frozenset(
    {RECEIVED, APPROVERS_REVIEWED, SELECTED_FOR_SIGNING, SIGNED, SUBMITTED}
)

# States in which the order holds the address lock.
LOCKING_STATES: FrozenSet[str] = frozenset({SELECTED_FOR_SIGNING, SIGNED, SUBMITTED})

_PREVIOUS_STATES: Dict[str, List[str]] = {
    CANCELLED: [RECEIVED, APPROVERS_REVIEWED, SELECTED_FOR_SIGNING, SIGNED],
    COMPLETED: [REORGED, SUBMITTED],
    COMPLETED_WITH_ERROR: [REORGED, SUBMITTED],
    DROPPED: [REORGED, SUBMITTED],
    NOT_SIGNED: [SELECTED_FOR_SIGNING],
    NOT_SUBMITTED: [SIGNED],
    REPLACED: [DROPPED, REORGED, SUBMITTED],
    ERROR: [APPROVERS_REVIEWED, RECEIVED, REORGED, SELECTED_FOR_SIGNING, SIGNED, SUBMITTED],
    SUBMITTED: [SIGNED],
    RECEIVED: [],
    APPROVERS_REVIEWED: [RECEIVED],
    SELECTED_FOR_SIGNING: [APPROVERS_REVIEWED],
    SIGNED: [SELECTED_FOR_SIGNING],
    REORGED: [SUBMITTED],
}


def parse_order_state(value: Any) -> str:
    """Case-insensitive order-state parsing."""
    if not isinstance(value, str) or value.upper() not in ORDER_STATES:
        raise ValidationError(f"invalid order state: {value}")
    return value.upper()


def parse_order_type(value: Any) -> str:
    if not isinstance(value, str) or value.upper() not in ORDER_TYPES:
        raise ValidationError(f"invalid order type: {value}")
    return value.upper()


def possible_previous_states(next_state: str) -> List[str]:
    """States an order must be in to move to ``next_state``."""
    states = _PREVIOUS_STATES.get(next_state) or []
    if not states:
        raise PreviousStatesNotFoundError(f"no previous states found for {next_state}")
    return list(states)


def is_pending_state(state: str) -> bool:
    return state in PENDING_STATES


def is_locking_state(state: str) -> bool:
    return state in LOCKING_STATES


def is_final_state(state: str) -> bool:
    return state not in PENDING_STATES


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def key_chain_type(key_id: str, chain_id: int, order_type: str) -> str:
    """Partition key of the order selector index."""
    return f"key_id:{key_id}#chain_id:{chain_id}#order_type:{order_type}"


def new_order(
    client_id: str,
    order_type: str,
    data: Dict[str, Any],
    state: str = RECEIVED,
    order_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an order record; ``data`` always carries ``client_id``."""
    now = _now_z()
    order: Dict[str, Any] = {
        "order_id": order_id or str(uuid.uuid4()),
        "order_version": ORDER_VERSION,
        "state": state,
        "data": {"client_id": client_id, **data},
        "created_at": now,
        "last_modified_at": now,
        "order_type": order_type,
    }
    key_id = data.get("key_id")
    chain_id = (data.get("transaction") or {}).get("chain_id")
    if order_type != KEY_CREATION_ORDER and key_id and chain_id is not None:
        order["key_chain_type"] = key_chain_type(key_id, int(chain_id), order_type)
    order.update({k: v for k, v in extra.items() if v is not None})
    return order


def order_client_id(order: Dict[str, Any]) -> Optional[str]:
    return (order.get("data") or {}).get("client_id")


def order_address_and_chain_id(order: Dict[str, Any]) -> tuple:
    """``(address, chain_id)`` of the transaction an order signs."""
    data = order.get("data") or {}
    transaction = data.get("transaction") or {}
    address = data.get("address")
    chain_id = transaction.get("chain_id")
    if address is None or chain_id is None:
        raise ValidationError(
            f"order {order.get('order_id')} has no address or chain_id in its data"
        )
    return address, int(chain_id)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

LEVEL_DOMAIN = "Domain"
LEVEL_TENANT = "Tenant"

APPROVAL_PENDING = "PENDING"
APPROVAL_APPROVED = "APPROVED"
APPROVAL_REJECTED = "REJECTED"

APPROVED_STATUS = 1


def find_approval(policy: Dict[str, Any], approver_name: str) -> Optional[Dict[str, Any]]:
    for approval in policy.get("approvals") or []:
        if approval.get("name") == approver_name:
            return approval
    return None


def approval_status(approval: Dict[str, Any]) -> str:
    response = approval.get("response")
    if not response:
        return APPROVAL_PENDING
    if int(response.get("approval_status", 0)) == APPROVED_STATUS:
        return APPROVAL_APPROVED
    return APPROVAL_REJECTED


def policy_approval_statuses(policy: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Approver name -> PENDING / APPROVED / REJECTED."""
    if not policy:
        return {}
    return {a["name"]: approval_status(a) for a in policy.get("approvals") or []}


# ---------------------------------------------------------------------------
# Address policy registry
# ---------------------------------------------------------------------------

DEFAULT = "DEFAULT"
ADDRESS_TO = "ADDRESS_TO"
ADDRESS_FROM = "ADDRESS_FROM"

REGISTRY_TYPES: FrozenSet[str] = frozenset({DEFAULT, ADDRESS_TO, ADDRESS_FROM})


@dataclass
class PolicyMapping:
    """One row of the address policy registry."""

    client_id: str
    chain_id: int
    policy: str
    type: str = DEFAULT
    address: Optional[str] = None
    created_at: Optional[str] = None

    def __post_init__(self):
        if self.type not in REGISTRY_TYPES:
            raise ValidationError(f"invalid policy mapping type: {self.type}")
        if self.type == DEFAULT:
            self.address = None
        elif not self.address:
            raise ValidationError(f"address is required for {self.type} mappings")
        else:
            self.address = self.address.lower()

    @property
    def pk(self) -> str:
        return registry_pk(self.client_id, self.chain_id)

    @property
    def sk(self) -> str:
        return registry_sk(self.type, self.address)

    def to_item(self) -> Dict[str, Any]:
        return {
            "pk": self.pk,
            "sk": self.sk,
            "client_id": self.client_id,
            "chain_id": self.chain_id,
            "policy": self.policy,
            "address": self.address,
            "created_at": self.created_at or _now_z(),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PolicyMapping":
        return cls(
            client_id=item["client_id"],
            chain_id=int(item["chain_id"]),
            policy=item["policy"],
            type=registry_type_from_sk(item["sk"]),
            address=item.get("address"),
            created_at=item.get("created_at"),
        )


def registry_pk(client_id: str, chain_id: int) -> str:
    return f"CLIENT#{client_id}#CHAIN_ID#{chain_id}"


def registry_sk(mapping_type: str, address: Optional[str]) -> str:
    if mapping_type == DEFAULT:
        return "ADDRESS#DEFAULT"
    if mapping_type == ADDRESS_FROM:
        return f"ADDRESS_FROM#{address.lower()}"
    return f"ADDRESS#{address.lower()}"


def registry_type_from_sk(sk: str) -> str:
    if sk == "ADDRESS#DEFAULT":
        return DEFAULT
    if sk.startswith("ADDRESS_FROM#"):
        return ADDRESS_FROM
    return ADDRESS_TO


# ---------------------------------------------------------------------------
# Step-function events
# ---------------------------------------------------------------------------


def event_context(event: Dict[str, Any]) -> Dict[str, Any]:
    """The ``context`` of a step-function event; it must name an order."""
    context = event.get("context")
    if not isinstance(context, dict) or not context.get("order_id"):
        raise ValidationError("event context with order_id is required")
    return context


def event_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    payload = event.get("payload")
    if not isinstance(payload, dict):
        raise ValidationError("event payload is required")
    return payload
