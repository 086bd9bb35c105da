"""Base model shared by pymandi records.

Every record inherits from :class:`MandiBaseModel` which provides:

* ``alias_generator=to_camel`` so the camelCase keys used by the business
  server and the stored settings blob map to snake_case fields.
* ``populate_by_name=True`` so Python callers can use field names.
* A ``model_validator(mode="before")`` that drops ``None`` and blank
  strings so the field default is used instead of failing validation.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


class MandiBaseModel(BaseModel):
    """Base for immutable pymandi records."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return MandiBaseModel._clean_dict(values)

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
