"""mpc_shared.replacements — speedup and cancellation orders.

A replacement order re-signs a SUBMITTED signature order's transaction
with the same nonce and higher fees, so the network drops whichever of
the two is not mined. A speedup keeps the transaction; a cancellation
sends nothing to itself.

Request body::

    {"transaction": {"gas_price"}}
    {"transaction": {"max_fee_per_gas", "max_priority_fee_per_gas"}}
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict

from mpc_shared.errors import ValidationError
from mpc_shared.model import SIGNATURE_ORDER, new_order, order_client_id
from mpc_shared.transactions import (
    Eip1559Transaction,
    LegacyTransaction,
    SponsoredTransaction,
    parse_transaction,
    parse_u256,
)

LEGACY_WITH_EIP1559 = "can't perform this operation on a legacy transaction with an EIP-1559 transaction"
EIP1559_WITH_LEGACY = "can't perform this operation on an EIP-1559 transaction with a legacy transaction"
INCOMPATIBLE_REPLACEMENT = "Error setting new gas values"


def parse_replacement_request(body: Dict[str, Any]) -> Dict[str, int]:
    """New gas values; the keys present decide the transaction type."""
    transaction = body.get("transaction")
    if not isinstance(transaction, dict):
        raise ValidationError("body requires transaction")
    if "max_fee_per_gas" in transaction and "max_priority_fee_per_gas" in transaction:
        return {
            "max_fee_per_gas": parse_u256(transaction["max_fee_per_gas"], "max_fee_per_gas"),
            "max_priority_fee_per_gas": parse_u256(
                transaction["max_priority_fee_per_gas"], "max_priority_fee_per_gas"
            ),
        }
    if "gas_price" in transaction:
        return {"gas_price": parse_u256(transaction["gas_price"], "gas_price")}
    raise ValidationError("transaction requires gas_price or max_fee_per_gas and max_priority_fee_per_gas")


def validate_order_type(order: Dict[str, Any]) -> None:
    if order.get("order_type") != SIGNATURE_ORDER:
        raise ValidationError(f"can't perform this operation for an order of type {order.get('order_type')}")


def original_transaction(order: Dict[str, Any]):
    return parse_transaction((order.get("data") or {}).get("transaction"))


def validate_new_gas_values(transaction, gas: Dict[str, int]) -> None:
    """New fees must be strictly higher than the ones already sent."""
    if isinstance(transaction, SponsoredTransaction):
        raise ValidationError("sponsored transactions can't be sped up")
    if isinstance(transaction, LegacyTransaction):
        if "gas_price" not in gas:
            raise ValidationError(LEGACY_WITH_EIP1559)
        if gas["gas_price"] <= transaction.gas_price:
            raise ValidationError(
                f"original gas price ({transaction.gas_price}) is higher than new gas price ({gas['gas_price']})"
            )
        return
    if "max_fee_per_gas" not in gas:
        raise ValidationError(EIP1559_WITH_LEGACY)
    if gas["max_fee_per_gas"] <= transaction.max_fee_per_gas:
        raise ValidationError(
            f"original max fee per gas ({transaction.max_fee_per_gas}) is higher than "
            f"new max fee per gas ({gas['max_fee_per_gas']})"
        )
    if gas["max_priority_fee_per_gas"] <= transaction.max_priority_fee_per_gas:
        raise ValidationError(
            f"original max fee priority per gas ({transaction.max_priority_fee_per_gas}) is higher than "
            f"new max priority fee per gas ({gas['max_priority_fee_per_gas']})"
        )


def with_new_gas_values(transaction, gas: Dict[str, int]):
    if isinstance(transaction, LegacyTransaction) and "gas_price" in gas:
        return replace(transaction, gas_price=gas["gas_price"])
    if isinstance(transaction, Eip1559Transaction) and "max_fee_per_gas" in gas:
        return replace(
            transaction,
            max_fee_per_gas=gas["max_fee_per_gas"],
            max_priority_fee_per_gas=gas["max_priority_fee_per_gas"],
        )
    raise ValidationError(INCOMPATIBLE_REPLACEMENT)


def as_cancellation(transaction, address: str):
    """The no-op transfer that takes the original's nonce."""
    return replace(transaction, to=address, value=0, data=b"\x00")


def build_replacement_order(original: Dict[str, Any], transaction, order_type: str) -> Dict[str, Any]:
    """RECEIVED order of ``order_type`` replacing ``original``, under the same policy."""
    data = {k: v for k, v in (original.get("data") or {}).items() if k != "client_id"}
    data["transaction"] = transaction.to_dict()
    return new_order(
        order_client_id(original),
        order_type,
        data,
        replaces=original["order_id"],
        policy=original.get("policy"),
    )
