"""Shared serialization utilities for audit snapshots, payloads and events."""

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def to_dict(obj: Any) -> dict:
    """Convert a dataclass (nested ones included) to a JSON-safe dict."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: serialize_value(getattr(obj, f.name)) for f in fields(obj)}
    elif isinstance(obj, dict):
        return {k: serialize_value(v) for k, v in obj.items()}
    else:
        return {"value": str(obj)}


def snapshot(obj: Any, exclude: tuple[str, ...] = ("version",)) -> dict:
    """Immutable-by-value copy of an entity for the audit log.

    Parameters
    ----------
    obj : Any
        A dataclass instance (loan, payment, ...).
    exclude : tuple[str, ...]
        Bookkeeping fields left out of the snapshot.

    Returns
    -------
    dict
        Serialized dictionary.
    """
    data = to_dict(obj)
    for name in exclude:
        data.pop(name, None)
    return data


def serialize_value(value: Any) -> Any:
    """Serialize a value for JSON output."""
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, date):
        return value.isoformat()
    elif is_dataclass(value) and not isinstance(value, type):
        return to_dict(value)
    elif isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value
