"""
Tagged-variant codec for frozen dataclasses stored in text columns.

A variant class declares a ``kind`` ClassVar.  ``encode_variant`` emits a
JSON-safe dict carrying that discriminator; ``decode_variant`` looks the
discriminator up in a registry and rebuilds the exact dataclass, converting
Decimal, UUID, datetime, enum and nested dataclass fields from their type
hints.  Unknown kinds and unknown fields are rejected.
"""

from __future__ import annotations

import dataclasses
import json
import types
import typing
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

KIND_KEY = "kind"


def _encode_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value):
        return {
            f.name: _encode_value(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, (tuple, list)):
        return [_encode_value(v) for v in value]
    return value


def _decode_value(tp: Any, raw: Any) -> Any:
    if raw is None:
        return None
    origin = typing.get_origin(tp)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        return _decode_value(args[0], raw)
    if origin is tuple:
        args = typing.get_args(tp)
        item_type = args[0] if args else Any
        return tuple(_decode_value(item_type, v) for v in raw)
    if tp is Decimal:
        return Decimal(raw)
    if tp is UUID:
        return UUID(raw)
    if tp is datetime:
        return datetime.fromisoformat(raw)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(raw)
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return _build(tp, raw)
    return raw


def _build(cls: type, data: Mapping[str, Any]) -> Any:
    hints = typing.get_type_hints(cls)
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - names
    if unknown:
        raise ValueError(f"{cls.__name__}: unknown fields {sorted(unknown)}")
    kwargs = {name: _decode_value(hints[name], data[name]) for name in data}
    return cls(**kwargs)


def encode_variant(variant: Any) -> dict[str, Any]:
    """Encode a variant dataclass as a JSON-safe dict with its discriminator."""
    payload = _encode_value(variant)
    payload[KIND_KEY] = variant.kind
    return payload


def decode_variant(registry: Mapping[str, type], data: Mapping[str, Any]) -> Any:
    """Rebuild the variant named by ``data['kind']``.

    Raises:
        ValueError: missing or unregistered discriminator, or unknown fields.
    """
    kind = data.get(KIND_KEY)
    if kind not in registry:
        raise ValueError(f"Unknown variant kind: {kind!r}")
    body = {k: v for k, v in data.items() if k != KIND_KEY}
    return _build(registry[kind], body)


def dumps_variant(variant: Any) -> str:
    return json.dumps(encode_variant(variant), sort_keys=True)


def loads_variant(registry: Mapping[str, type], raw: str) -> Any:
    return decode_variant(registry, json.loads(raw))
