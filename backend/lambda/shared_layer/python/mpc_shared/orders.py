"""mpc_shared.orders — Order status table persistence.

Every state change is a conditional write: the order must currently be in
one of the states allowed to precede the target state. Changes that touch
more than one record (a replacement pair, the address lock) are done in a
single ``transact_write_items`` call so they land together or not at all.

Environment variables:
    ORDER_STATUS_TABLE_NAME   default: order_status
    CACHE_TABLE_NAME          default: cache
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from mpc_shared.aws_clients import _get_ddb
from mpc_shared.cache import address_lock_key
from mpc_shared.errors import (
    ConditionalCheckFailedError,
    OrderNotFoundError,
    RepositoryError,
    ValidationError,
)
from mpc_shared.model import (
    APPROVERS_REVIEWED,
    RECEIVED,
    REPLACED,
    SELECTED_FOR_SIGNING,
    SIGNATURE_ORDER,
    SIGNED,
    key_chain_type,
    order_address_and_chain_id,
    possible_previous_states,
)
from mpc_shared.serialization import _deserialize, _format_z, _now_z, _serialize, _serialize_item

logger = logging.getLogger(__name__)

ORDER_STATUS_TABLE_NAME = os.environ.get("ORDER_STATUS_TABLE_NAME", "order_status")
CACHE_TABLE_NAME = os.environ.get("CACHE_TABLE_NAME", "cache")
TRANSACTION_HASH_INDEX = "TransactionHashIndex"
STATE_LAST_MODIFIED_AT_INDEX = "StateLastModifiedAtIndex"
KEY_CHAIN_TYPE_INDEX = "KeyChainTypeIndex"

# Only signature orders that have not reached the chain can be flagged.
CANCELLABLE_STATES = (SIGNED, RECEIVED, APPROVERS_REVIEWED, SELECTED_FOR_SIGNING)

__all__ = [
    "block_number_statement",
    "compose_update_expression",
    "create_order",
    "create_replacement_order",
    "empty_statement",
    "get_order_by_id",
    "get_orders_by_key_chain_type_state",
    "get_orders_by_status",
    "get_orders_by_transaction_hash",
    "request_cancellation",
    "transaction_hash_statement",
    "update_order_and_replacement_with_status_block",
    "update_order_status",
    "update_order_status_and_tx_monitor_last_update",
    "update_order_state_and_unlock_address",
    "update_order_state_with_replacement_and_unlock_address",
    "update_order_status_and_execution_id_non_terminal_state",
    "update_order_status_with_replacement_and_execution_id_non_terminal_state",
]

# ---------------------------------------------------------------------------
# Update statements
#
# A statement carries the extra attributes written alongside a state change:
#   {"assignment_pairs": {"block_number": ":block_number"},
#    "attribute_names":  {},
#    "attribute_values": {":block_number": 17}}
# ---------------------------------------------------------------------------


def empty_statement() -> Dict[str, Any]:
    return {"assignment_pairs": {}, "attribute_names": {}, "attribute_values": {}}


def block_number_statement(block_number: int, block_hash: str) -> Dict[str, Any]:
    return {
        "assignment_pairs": {"block_number": ":block_number", "block_hash": ":block_hash"},
        "attribute_names": {},
        "attribute_values": {":block_number": block_number, ":block_hash": block_hash},
    }


def transaction_hash_statement(tx_hash: str) -> Dict[str, Any]:
    return {
        "assignment_pairs": {"transaction_hash": ":transaction_hash"},
        "attribute_names": {},
        "attribute_values": {":transaction_hash": tx_hash},
    }


def compose_update_expression(statement: Optional[Dict[str, Any]] = None) -> str:
    expression = "SET #state = :state, last_modified_at = :last_modified_at"
    pairs = (statement or {}).get("assignment_pairs") or {}
    for name, value in sorted(pairs.items()):
        expression += f", {name} = {value}"
    return expression


def _state_condition(next_state: str) -> tuple:
    previous = possible_previous_states(next_state)
    placeholders = {f":state_{state.lower()}": state for state in previous}
    condition = f"#state IN ({', '.join(placeholders)})"
    return condition, placeholders


def _update_for(order_id: str, state: str, statement: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """One ``Update`` entry of a ``transact_write_items`` call."""
    statement = statement or empty_statement()
    condition, state_values = _state_condition(state)

    names = {"#state": "state", **(statement.get("attribute_names") or {})}
    values: Dict[str, Any] = {":state": state, ":last_modified_at": _now_z()}
    values.update(state_values)
    values.update(statement.get("attribute_values") or {})

    return {
        "Update": {
            "TableName": ORDER_STATUS_TABLE_NAME,
            "Key": {"order_id": _serialize(order_id)},
            "UpdateExpression": compose_update_expression(statement),
            "ConditionExpression": condition,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": {k: _serialize(v) for k, v in values.items()},
        }
    }


def _unlock_for(order_id: str, address: str, chain_id: int) -> Dict[str, Any]:
    """Delete the address lock unless another order holds it."""
    return {
        "Delete": {
            "TableName": CACHE_TABLE_NAME,
            "Key": {k: _serialize(v) for k, v in address_lock_key(address, chain_id).items()},
            "ConditionExpression": "order_id = :order_id OR attribute_not_exists(order_id)",
            "ExpressionAttributeValues": {":order_id": _serialize(order_id)},
        }
    }


def _transact(items: List[Dict[str, Any]]) -> None:
    ddb = _get_ddb()
    try:
        ddb.transact_write_items(TransactItems=items)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code")
        if code == "TransactionCanceledException":
            reasons = exc.response.get("CancellationReasons") or []
            codes = [r.get("Code") for r in reasons]
            if not codes or "ConditionalCheckFailed" in codes:
                raise ConditionalCheckFailedError(str(exc)) from exc
        logger.error("transact_write_items failed", exc_info=True)
        raise RepositoryError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Reads and inserts
# ---------------------------------------------------------------------------


def create_order(order: Dict[str, Any]) -> None:
    ddb = _get_ddb()
    try:
        ddb.put_item(
            TableName=ORDER_STATUS_TABLE_NAME,
            Item=_serialize_item(order),
            ConditionExpression="attribute_not_exists(order_id)",
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            raise ConditionalCheckFailedError(f"order {order['order_id']} already exists") from exc
        raise RepositoryError(str(exc)) from exc


def get_order_by_id(order_id: str) -> Dict[str, Any]:
    ddb = _get_ddb()
    try:
        resp = ddb.get_item(
            TableName=ORDER_STATUS_TABLE_NAME,
            Key={"order_id": _serialize(order_id)},
            ConsistentRead=True,
        )
    except ClientError as exc:
        raise RepositoryError(str(exc)) from exc
    raw = resp.get("Item")
    if not raw:
        raise OrderNotFoundError(f"Order with id {order_id} not found")
    return _deserialize(raw)


def _query_all(kwargs: Dict[str, Any], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Follow ``LastEvaluatedKey`` until exhausted or ``limit`` items are read."""
    ddb = _get_ddb()
    items: List[Dict[str, Any]] = []
    while True:
        if limit is not None:
            kwargs["Limit"] = limit - len(items)
        try:
            resp = ddb.query(**kwargs)
        except ClientError as exc:
            raise RepositoryError(str(exc)) from exc
        items.extend(_deserialize(i) for i in resp.get("Items", []))
        if "LastEvaluatedKey" not in resp or (limit is not None and len(items) >= limit):
            return items
        kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]


def get_orders_by_transaction_hash(tx_hash: str) -> List[Dict[str, Any]]:
    return _query_all(
        {
            "TableName": ORDER_STATUS_TABLE_NAME,
            "IndexName": TRANSACTION_HASH_INDEX,
            "KeyConditionExpression": "transaction_hash = :transaction_hash",
            "ExpressionAttributeValues": {":transaction_hash": _serialize(tx_hash)},
        }
    )


def get_orders_by_status(state: str, last_modified_threshold_minutes: int) -> List[Dict[str, Any]]:
    """Orders in ``state`` that have not changed for the given number of minutes."""
    threshold = dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=last_modified_threshold_minutes)
    return _query_all(
        {
            "TableName": ORDER_STATUS_TABLE_NAME,
            "IndexName": STATE_LAST_MODIFIED_AT_INDEX,
            "KeyConditionExpression": "#state = :current_state AND last_modified_at < :last_modified_at",
            "ExpressionAttributeNames": {"#state": "state"},
            "ExpressionAttributeValues": {
                ":current_state": _serialize(state),
                ":last_modified_at": _serialize(_format_z(threshold)),
            },
        }
    )


def get_orders_by_key_chain_type_state(
    key_id: str,
    chain_id: int,
    order_type: str,
    state: str,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    return _query_all(
        {
            "TableName": ORDER_STATUS_TABLE_NAME,
            "IndexName": KEY_CHAIN_TYPE_INDEX,
            "KeyConditionExpression": "key_chain_type = :key_chain_type AND #state = :state",
            "ExpressionAttributeNames": {"#state": "state"},
            "ExpressionAttributeValues": {
                ":key_chain_type": _serialize(key_chain_type(key_id, chain_id, order_type)),
                ":state": _serialize(state),
            },
        },
        limit,
    )


def request_cancellation(order_id: str) -> None:
    """Flag a signature order for cancellation before it reaches the chain."""
    ddb = _get_ddb()
    values = {f":state_{s.lower()}": s for s in CANCELLABLE_STATES}
    try:
        ddb.update_item(
            TableName=ORDER_STATUS_TABLE_NAME,
            Key={"order_id": _serialize(order_id)},
            UpdateExpression="SET cancellation_requested = :requested, last_modified_at = :last_modified_at",
            ConditionExpression=f"#state IN ({', '.join(values)}) AND #ot = :signature_order",
            ExpressionAttributeNames={"#state": "state", "#ot": "order_type"},
            ExpressionAttributeValues={
                ":requested": _serialize(True),
                ":last_modified_at": _serialize(_now_z()),
                ":signature_order": _serialize(SIGNATURE_ORDER),
                **{k: _serialize(v) for k, v in values.items()},
            },
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            raise ConditionalCheckFailedError("the order is in an uncancellable state") from exc
        raise RepositoryError(str(exc)) from exc


def create_replacement_order(order: Dict[str, Any]) -> None:
    """Insert ``order`` and point the order it replaces at it."""
    original_order_id = order.get("replaces")
    if not original_order_id:
        raise ValidationError("Missing order replaces")
    _transact(
        [
            {
                "Put": {
                    "TableName": ORDER_STATUS_TABLE_NAME,
                    "Item": _serialize_item(order),
                    "ConditionExpression": "attribute_not_exists(order_id)",
                }
            },
            {
                "Update": {
                    "TableName": ORDER_STATUS_TABLE_NAME,
                    "Key": {"order_id": _serialize(original_order_id)},
                    "UpdateExpression": "SET replaced_by = :replaced_by, last_modified_at = :last_modified_at",
                    "ConditionExpression": "attribute_exists(order_id)",
                    "ExpressionAttributeValues": {
                        ":replaced_by": _serialize(order["order_id"]),
                        ":last_modified_at": _serialize(_now_z()),
                    },
                }
            },
        ]
    )


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


def update_order_status_and_execution_id_non_terminal_state(
    order_id: str,
    state: str,
    statement: Optional[Dict[str, Any]] = None,
) -> None:
    _transact([_update_for(order_id, state, statement)])


def update_order_status_with_replacement_and_execution_id_non_terminal_state(
    order_id: str,
    original_order_id: str,
    state: str,
    statement: Optional[Dict[str, Any]] = None,
) -> None:
    """Move an order and the order it wraps to ``state`` together."""
    _transact(
        [
            _update_for(order_id, state, statement),
            _update_for(original_order_id, state, statement),
        ]
    )


def _lock_of(order_id: str) -> tuple:
    return order_address_and_chain_id(get_order_by_id(order_id))


def update_order_state_and_unlock_address(
    order_id: str,
    state: str,
    statement: Optional[Dict[str, Any]] = None,
) -> None:
    address, chain_id = _lock_of(order_id)
    _transact(
        [
            _update_for(order_id, state, statement),
            _unlock_for(order_id, address, chain_id),
        ]
    )


def update_order_state_with_replacement_and_unlock_address(
    order_id: str,
    original_order_id: str,
    state: str,
    statement: Optional[Dict[str, Any]] = None,
) -> None:
    address, chain_id = _lock_of(order_id)
    _transact(
        [
            _update_for(order_id, state, statement),
            _unlock_for(order_id, address, chain_id),
            _update_for(original_order_id, state, statement),
        ]
    )


def update_order_status(order_id: str, state: str, statement: Optional[Dict[str, Any]] = None) -> None:
    """Unconditional state change, for chain reorganisations and the monitor."""
    statement = statement or empty_statement()
    values: Dict[str, Any] = {":state": state, ":last_modified_at": _now_z()}
    values.update(statement.get("attribute_values") or {})
    ddb = _get_ddb()
    try:
        ddb.update_item(
            TableName=ORDER_STATUS_TABLE_NAME,
            Key={"order_id": _serialize(order_id)},
            UpdateExpression=compose_update_expression(statement),
            ExpressionAttributeNames={"#state": "state", **(statement.get("attribute_names") or {})},
            ExpressionAttributeValues={k: _serialize(v) for k, v in values.items()},
        )
    except ClientError as exc:
        raise RepositoryError(f"Error updating order with id: {order_id}: {exc}") from exc


def update_order_status_and_tx_monitor_last_update(order_id: str, state: str) -> None:
    update_order_status(
        order_id,
        state,
        {
            "assignment_pairs": {"tx_monitor_last_modified_at": ":last_modified_at"},
            "attribute_names": {},
            "attribute_values": {},
        },
    )


def update_order_and_replacement_with_status_block(
    mined_order_id: str,
    replaced_order_id: str,
    mined_state: str,
    block_number: int,
    block_hash: str,
) -> None:
    """A speedup or cancellation was mined: finish it, retire the original.

    The original holds the address lock, so the lock released is the
    original's.
    """
    address, chain_id = _lock_of(replaced_order_id)
    replaced_by = {
        "assignment_pairs": {"replaced_by": ":replaced_by"},
        "attribute_names": {},
        "attribute_values": {":replaced_by": mined_order_id},
    }
    _transact(
        [
            _update_for(mined_order_id, mined_state, block_number_statement(block_number, block_hash)),
            _update_for(replaced_order_id, REPLACED, replaced_by),
            _unlock_for(replaced_order_id, address, chain_id),
        ]
    )
