"""Resolve same-named values from form fields and JSON bodies.

Every raw value is turned into one of ``Scalar``, ``Many`` or ``ABSENT`` when
the request is parsed, so callers never inspect list-versus-string shapes.
Form fields win over the JSON body whenever both carry the key.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final

_INDEX_SUFFIX = re.compile(r"\[\d*\]$")


@dataclass(frozen=True)
class Scalar:
    value: Any


@dataclass(frozen=True)
class Many:
    values: tuple[Any, ...]


class _Absent:
    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Final = _Absent()

FieldValue = Scalar | Many | _Absent


def normalize_field_name(name: str) -> str:
    """Drop an array index marker such as ``gallery[0]`` or ``gallery[]``."""

    return _INDEX_SUFFIX.sub("", name)


def to_field_value(raw_value: Any) -> FieldValue:
    """Wrap a raw JSON value."""

    if isinstance(raw_value, list | tuple):
        return Many(tuple(raw_value))
    return Scalar(raw_value)


def collect_form_fields(items: Iterable[tuple[str, Any]]) -> dict[str, FieldValue]:
    """Group multipart ``(name, value)`` pairs by normalized name."""

    grouped: dict[str, list[Any]] = {}
    for name, value in items:
        grouped.setdefault(normalize_field_name(name), []).append(value)

    return {
        key: Scalar(values[0]) if len(values) == 1 else Many(tuple(values))
        for key, values in grouped.items()
    }


def collect_json_fields(body: Mapping[str, Any]) -> dict[str, FieldValue]:
    return {str(key): to_field_value(value) for key, value in body.items()}


def resolve(
    form_fields: Mapping[str, FieldValue],
    json_fields: Mapping[str, FieldValue],
    key: str,
) -> FieldValue:
    if key in form_fields:
        return form_fields[key]
    if key in json_fields:
        return json_fields[key]
    return ABSENT


def single_value(field: FieldValue) -> Any:
    """Return the scalar, the last of many, or ``None``."""

    match field:
        case Scalar(value=value):
            return value
        case Many(values=values):
            return values[-1] if values else None
        case _:
            return None


def all_values(field: FieldValue) -> list[Any]:
    match field:
        case Scalar(value=value):
            return [value]
        case Many(values=values):
            return list(values)
        case _:
            return []

