# ============================================================================
# TAGGED FIELD VALUE
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Domain model - Schema-less value representation
# PURPOSE: string/number/boolean/map values for metadata and live state
# CREATED: 06 OCT 2026
# ============================================================================
"""
FieldValue

Metadata and telemetry state are schema-less. Rather than carrying raw
`Any` values around, every entry is wrapped in a FieldValue tagged with its
ValueKind. Numeric coercion only happens through `as_number()`, which the
rollup engine calls at the aggregation boundary.

    FieldValue.of(21.5)            -> kind=number
    FieldValue.of({"a": True})     -> kind=map, value={"a": FieldValue(boolean)}
    FieldValue.of([1, 2])          -> ValidationError
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, model_validator

from core.contracts import ValueKind
from core.errors import ValidationError


class FieldValue(BaseModel):
    """A single tagged value."""

    kind: ValueKind
    value: Union[bool, float, str, Dict[str, "FieldValue"]]

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_kind(self) -> "FieldValue":
        expected = {
            ValueKind.BOOLEAN: bool,
            ValueKind.NUMBER: float,
            ValueKind.STRING: str,
            ValueKind.MAP: dict,
        }[self.kind]
        value = self.value
        if not isinstance(value, expected) or (
            self.kind != ValueKind.BOOLEAN and isinstance(value, bool)
        ):
            raise ValueError(f"value {value!r} does not match kind '{self.kind.value}'")
        return self

    # ----------------------------------------------------------------
    # Construction
    # ----------------------------------------------------------------

    @classmethod
    def of(cls, raw: Any, field_name: str = "value") -> "FieldValue":
        """Wrap a raw JSON-ish value. Raises ValidationError on unsupported types."""
        if isinstance(raw, FieldValue):
            return raw
        # bool is a subclass of int, check it first
        if isinstance(raw, bool):
            return cls(kind=ValueKind.BOOLEAN, value=raw)
        if isinstance(raw, (int, float)):
            if raw != raw or raw in (float("inf"), float("-inf")):
                raise ValidationError(f"Field '{field_name}' is not a finite number")
            return cls(kind=ValueKind.NUMBER, value=float(raw))
        if isinstance(raw, str):
            return cls(kind=ValueKind.STRING, value=raw)
        if isinstance(raw, dict):
            entries = {}
            for key, item in raw.items():
                if not isinstance(key, str):
                    raise ValidationError(f"Field '{field_name}' has a non-string key {key!r}")
                entries[key] = cls.of(item, f"{field_name}.{key}")
            return cls(kind=ValueKind.MAP, value=entries)
        raise ValidationError(
            f"Field '{field_name}' has unsupported type {type(raw).__name__}"
        )

    @classmethod
    def from_tagged(cls, data: Dict[str, Any]) -> "FieldValue":
        """Inverse of model_dump(mode='json') for persisted values."""
        kind = ValueKind(data["kind"])
        if kind == ValueKind.MAP:
            return cls(
                kind=kind,
                value={k: cls.from_tagged(v) for k, v in data["value"].items()},
            )
        if kind == ValueKind.NUMBER:
            return cls(kind=kind, value=float(data["value"]))
        return cls(kind=kind, value=data["value"])

    # ----------------------------------------------------------------
    # Access
    # ----------------------------------------------------------------

    def raw(self) -> Any:
        """Unwrap to plain JSON-compatible Python."""
        if self.kind == ValueKind.MAP:
            return {k: v.raw() for k, v in self.value.items()}
        return self.value

    def as_number(self, field_name: str = "value") -> float:
        """Explicit numeric coercion. Booleans and strings are rejected."""
        if self.kind != ValueKind.NUMBER:
            raise ValidationError(
                f"Field '{field_name}' is {self.kind.value}, a number is required"
            )
        return float(self.value)


def wrap_map(raw: Optional[Dict[str, Any]], name: str = "metadata") -> Dict[str, FieldValue]:
    """Wrap every entry of a raw dict. None becomes an empty map."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError(f"'{name}' must be an object")
    return {key: FieldValue.of(value, key) for key, value in raw.items()}


def unwrap_map(values: Dict[str, FieldValue]) -> Dict[str, Any]:
    return {key: value.raw() for key, value in values.items()}


FieldValue.model_rebuild()


__all__ = ["FieldValue", "wrap_map", "unwrap_map"]
