"""mpc_shared.transactions — EVM transaction requests.

Three request shapes are accepted, told apart by their fields:

* legacy      ``{to, gas, gas_price, value, data, chain_id, nonce?}``
* EIP-1559    ``{to, gas, max_fee_per_gas, max_priority_fee_per_gas, value, data, chain_id, nonce?}``
* sponsored   ``{typed_data, chain_id, to?, sponsor_addresses?, nonce?}`` (an EIP-712
  forward request signed by the user and relayed through the gas pool)

Numeric fields accept decimal strings, ``0x`` hex strings or integers and
are written back as decimal strings. ``encode()`` returns the unsigned
signing payload Maestro expects for each type.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, ClassVar, Dict, Optional

import rlp
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from mpc_shared.blockchain import is_supported_chain
from mpc_shared.errors import ValidationError

_U256_MAX = 2**256 - 1

# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------


def parse_u256(value: Any, field: str = "value") -> int:
    if isinstance(value, bool):
        raise ValidationError(f"invalid number for {field}: {value}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value:
        try:
            if value[:2].lower() == "0x":
                number = int(value[2:], 16)
            elif value.isdigit():
                number = int(value, 10)
            else:
                raise ValueError(value)
        except ValueError:
            raise ValidationError(f"invalid number for {field}: {value}")
    else:
        raise ValidationError(f"invalid number for {field}: {value}")
    if number < 0 or number > _U256_MAX:
        raise ValidationError(f"number out of range for {field}: {value}")
    return number


def parse_hex_bytes(value: Any, field: str = "data") -> bytes:
    if not isinstance(value, str) or value[:2].lower() != "0x":
        raise ValidationError(f"{field} must be a 0x prefixed hex string")
    try:
        return bytes.fromhex(value[2:])
    except ValueError:
        raise ValidationError(f"{field} is not valid hex: {value}")


def parse_address(value: Any, field: str = "address") -> str:
    """Lowercase ``0x`` + 40 hex digits. Short hex is left padded."""
    if not isinstance(value, str) or value[:2].lower() != "0x":
        raise ValidationError(f"{field} must be a 0x prefixed hex address")
    digits = value[2:].lower()
    if not digits or len(digits) > 40:
        raise ValidationError(f"invalid {field}: {value}")
    try:
        int(digits, 16)
    except ValueError:
        raise ValidationError(f"invalid {field}: {value}")
    return "0x" + digits.rjust(40, "0")


def _parse_chain_id(value: Any) -> int:
    chain_id = parse_u256(value, "chain_id")
    if chain_id > 2**64 - 1:
        raise ValidationError(f"chain_id out of range: {value}")
    return chain_id


def _encode_to(to: Optional[str]) -> bytes:
    if to is None:
        return b""
    raw = bytes.fromhex(to[2:])
    # The zero address is the contract-creation target.
    if not any(raw):
        return b""
    return raw


# ---------------------------------------------------------------------------
# Transaction types
# ---------------------------------------------------------------------------


@dataclass
class LegacyTransaction:
    to: Optional[str]
    gas: int
    gas_price: int
    value: int
    data: bytes
    chain_id: int
    nonce: Optional[int] = None

    maestro_type: ClassVar[str] = "EvmStandard"

    def encode(self) -> bytes:
        # EIP-155 signing payload
        return rlp.encode(
            [
                self.nonce or 0,
                self.gas_price,
                self.gas,
                _encode_to(self.to),
                self.value,
                self.data,
                self.chain_id,
                0,
                0,
            ]
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "to": self.to,
            "gas": str(self.gas),
            "gas_price": str(self.gas_price),
            "value": str(self.value),
            "data": "0x" + self.data.hex(),
            "chain_id": self.chain_id,
        }
        if self.nonce is not None:
            out["nonce"] = str(self.nonce)
        return out


@dataclass
class Eip1559Transaction:
    to: Optional[str]
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    value: int
    data: bytes
    chain_id: int
    nonce: Optional[int] = None

    maestro_type: ClassVar[str] = "EvmEIP1559"

    def encode(self) -> bytes:
        return b"\x02" + rlp.encode(
            [
                self.chain_id,
                self.nonce or 0,
                self.max_priority_fee_per_gas,
                self.max_fee_per_gas,
                self.gas,
                _encode_to(self.to),
                self.value,
                self.data,
                [],
            ]
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "to": self.to,
            "gas": str(self.gas),
            "max_fee_per_gas": str(self.max_fee_per_gas),
            "max_priority_fee_per_gas": str(self.max_priority_fee_per_gas),
            "value": str(self.value),
            "data": "0x" + self.data.hex(),
            "chain_id": self.chain_id,
        }
        if self.nonce is not None:
            out["nonce"] = str(self.nonce)
        return out


@dataclass
class SponsoredTransaction:
    typed_data: Dict[str, Any]
    chain_id: int
    nonce: Optional[int] = None
    to: Optional[str] = None
    sponsor_addresses: Optional[Dict[str, Any]] = None

    maestro_type: ClassVar[str] = "EvmEIP712"

    def encode(self) -> bytes:
        """EIP-712 digest of ``typed_data``."""
        try:
            message = encode_typed_data(full_message=self.typed_data)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"invalid typed_data: {exc}") from exc
        return keccak(b"\x19" + message.version + message.header + message.body)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"typed_data": self.typed_data, "chain_id": self.chain_id}
        if self.to is not None:
            out["to"] = self.to
        if self.sponsor_addresses is not None:
            out["sponsor_addresses"] = self.sponsor_addresses
        if self.nonce is not None:
            out["nonce"] = str(self.nonce)
        return out


def _required(data: Dict[str, Any], field: str) -> Any:
    if data.get(field) is None:
        raise ValidationError(f"missing field `{field}` in transaction")
    return data[field]


def parse_transaction(data: Any):
    """Build a transaction object from its JSON request form."""
    if not isinstance(data, dict):
        raise ValidationError("transaction must be a json object")

    nonce = data.get("nonce")
    nonce = parse_u256(nonce, "nonce") if nonce is not None else None
    chain_id = _parse_chain_id(_required(data, "chain_id"))

    if "typed_data" in data:
        typed_data = data["typed_data"]
        if not isinstance(typed_data, dict):
            raise ValidationError("typed_data must be a json object")
        to = data.get("to")
        return SponsoredTransaction(
            typed_data=typed_data,
            chain_id=chain_id,
            nonce=nonce,
            to=parse_address(to, "to") if to else None,
            sponsor_addresses=data.get("sponsor_addresses"),
        )

    to = data.get("to")
    to = parse_address(to, "to") if to else None
    common = dict(
        to=to,
        gas=parse_u256(_required(data, "gas"), "gas"),
        value=parse_u256(data.get("value", 0), "value"),
        data=parse_hex_bytes(data.get("data", "0x"), "data"),
        chain_id=chain_id,
        nonce=nonce,
    )

    if "max_fee_per_gas" in data or "max_priority_fee_per_gas" in data:
        return Eip1559Transaction(
            max_fee_per_gas=parse_u256(_required(data, "max_fee_per_gas"), "max_fee_per_gas"),
            max_priority_fee_per_gas=parse_u256(
                _required(data, "max_priority_fee_per_gas"), "max_priority_fee_per_gas"
            ),
            **common,
        )
    if "gas_price" in data:
        return LegacyTransaction(gas_price=parse_u256(data["gas_price"], "gas_price"), **common)
    raise ValidationError("transaction type could not be determined")


def validate_transaction(transaction) -> None:
    """Business rules checked before an order is accepted."""
    if not is_supported_chain(transaction.chain_id):
        raise ValidationError(f"chain_id {transaction.chain_id} is not supported")
    if isinstance(transaction, SponsoredTransaction):
        return
    if transaction.to is None:
        raise ValidationError("to address cannot be empty")
    if isinstance(transaction, Eip1559Transaction):
        if transaction.max_priority_fee_per_gas > transaction.max_fee_per_gas:
            raise ValidationError(
                "max_priority_fee_per_gas cannot be bigger than max_fee_per_gas"
            )


def with_nonce(transaction, nonce: Optional[int]):
    return replace(transaction, nonce=nonce)


def transaction_hash(transaction) -> str:
    return "0x" + keccak(transaction.encode()).hex()


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def address_from_public_key(public_key: str) -> str:
    """EVM address of a compressed or uncompressed secp256k1 public key."""
    raw = public_key[2:] if public_key[:2].lower() == "0x" else public_key
    try:
        point = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), bytes.fromhex(raw))
    except ValueError as exc:
        raise ValidationError(f"invalid public key: {public_key}") from exc
    uncompressed = point.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return "0x" + keccak(uncompressed[1:])[-20:].hex()
