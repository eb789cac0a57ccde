"""mpc_shared.serialization — DynamoDB serialization/deserialization.

Two families live here:

* ``_serialize`` / ``_deserialize`` wrap boto3's TypeSerializer and
  TypeDeserializer for repository items, normalising ``Decimal`` back to
  ``int``/``float`` at every nesting level.
* ``to_dynamodb_json`` / ``from_dynamodb_json`` convert between plain JSON
  documents and DynamoDB-JSON attribute values for the format-conversion
  step-function tasks. These stay strict: only the ``NULL``, ``BOOL``,
  ``N``, ``S``, ``L`` and ``M`` types are produced or accepted.
"""

from __future__ import annotations

import datetime as dt
import math
import time
from decimal import Decimal
from typing import Any, Dict

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from mpc_shared.errors import ValidationError

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def _to_ddb_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_ddb_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_ddb_value(v) for v in value]
    return value


def _from_ddb_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _from_ddb_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_from_ddb_value(v) for v in value]
    if isinstance(value, set):
        return sorted(_from_ddb_value(v) for v in value)
    return value


def _serialize(value: Any) -> Any:
    """Serialize a Python value for DynamoDB."""
    return _SER.serialize(_to_ddb_value(value))


def _serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize every attribute of ``item``, dropping ``None`` values."""
    return {k: _serialize(v) for k, v in item.items() if v is not None}


def _deserialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain Python dict."""
    return {k: _from_ddb_value(_DESER.deserialize(v)) for k, v in item.items()}


def _format_z(moment: dt.datetime) -> str:
    """UTC timestamp, millisecond precision, with Z suffix."""
    moment = moment.astimezone(dt.timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _now_z() -> str:
    return _format_z(dt.datetime.now(dt.timezone.utc))


def _parse_z(value: str) -> dt.datetime:
    return dt.datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=dt.timezone.utc)


def _unix_now() -> int:
    """Current Unix epoch as integer."""
    return int(time.time())


# ---------------------------------------------------------------------------
# DynamoDB-JSON format conversion
# ---------------------------------------------------------------------------


def to_dynamodb_json(value: Any) -> Dict[str, Any]:
    """Convert a plain JSON value into a DynamoDB attribute value."""
    if value is None:
        return {"NULL": True}
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError(f"number {value} cannot be stored in DynamoDB")
        return {"N": str(value)}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, list):
        return {"L": [to_dynamodb_json(v) for v in value]}
    if isinstance(value, dict):
        return {"M": {k: to_dynamodb_json(v) for k, v in value.items()}}
    raise ValidationError(f"unsupported value type {type(value).__name__}")


def _parse_number(raw: str) -> Any:
    try:
        return int(raw)
    except (TypeError, ValueError):
        pass
    try:
        number = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid number value: {raw}") from exc
    if not math.isfinite(number):
        raise ValidationError(f"invalid number value: {raw}")
    return number


def from_dynamodb_json(attribute: Any) -> Any:
    """Convert a DynamoDB attribute value back into a plain JSON value."""
    if not isinstance(attribute, dict) or len(attribute) != 1:
        raise ValidationError(f"invalid DynamoDB attribute value: {attribute!r}")
    (type_name, raw), = attribute.items()
    if type_name == "NULL":
        return None
    if type_name == "BOOL":
        if not isinstance(raw, bool):
            raise ValidationError(f"invalid BOOL value: {raw!r}")
        return raw
    if type_name == "N":
        return _parse_number(raw)
    if type_name == "S":
        if not isinstance(raw, str):
            raise ValidationError(f"invalid S value: {raw!r}")
        return raw
    if type_name == "L":
        if not isinstance(raw, list):
            raise ValidationError(f"invalid L value: {raw!r}")
        return [from_dynamodb_json(v) for v in raw]
    if type_name == "M":
        if not isinstance(raw, dict):
            raise ValidationError(f"invalid M value: {raw!r}")
        return {k: from_dynamodb_json(v) for k, v in raw.items()}
    raise ValidationError(f"unsupported DynamoDB type {type_name}")
