"""
Base models and mixins for the decision engine data contracts.

This module provides:
- BaseModel: Foundation for all data contracts with versioning
- TimestampMixin: UTC timestamp handling
- SymbolMixin: Symbol/ticker validation
- utc_now: Timezone-aware "now" used as the default timestamp

Conventions:
1. Models are frozen (snapshots handed between components are never mutated)
2. Validators are defined inline using @field_validator
3. schema_version supports evolution of the contracts
"""

from datetime import datetime, timezone
from typing import Annotated
from pydantic import BaseModel as PydanticBaseModel, Field, ConfigDict, field_validator
import re


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class BaseModel(PydanticBaseModel):
    """
    Base model for all decision engine data contracts.

    Features:
    - Immutable (frozen=True)
    - Schema versioning for backward compatibility
    - JSON serialization support
    """

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        use_enum_values=False,
        arbitrary_types_allowed=False,
    )

    schema_version: Annotated[
        int,
        Field(
            default=1,
            ge=1,
            description="Schema version for backward compatibility and migration tracking"
        )
    ]


class TimestampMixin(PydanticBaseModel):
    """
    Mixin for models requiring timestamp handling.

    Timestamps are UTC timezone-aware and default to the creation time.
    """

    timestamp: Annotated[
        datetime,
        Field(
            default_factory=utc_now,
            description="UTC timestamp (ISO 8601 format, timezone-aware)"
        )
    ]

    @field_validator('timestamp')
    @classmethod
    def validate_timestamp_utc(cls, v: datetime) -> datetime:
        """Ensure timestamp is timezone-aware and normalized to UTC."""
        if v.tzinfo is None:
            raise ValueError("Timestamp must be timezone-aware (use UTC)")
        if v.tzinfo != timezone.utc:
            v = v.astimezone(timezone.utc)
        return v


SYMBOL_PATTERN = re.compile(r'^[\^]?[A-Z0-9][A-Z0-9_\-]{0,15}(?:\.[A-Z]{1,2})?$')


def normalize_symbol(v: str) -> str:
    """Upper-case and validate a ticker symbol."""
    v = v.upper().strip()
    if not SYMBOL_PATTERN.match(v):
        raise ValueError(
            f"Invalid symbol format: '{v}'. Must be 1-16 uppercase alphanumeric "
            "characters (plus '_' or '-'), optionally starting with '^' or ending with '.X'"
        )
    return v


class SymbolMixin(PydanticBaseModel):
    """
    Mixin for models requiring symbol/ticker validation.

    Symbols are normalized to uppercase. Allowed: alphanumerics, '_' and '-',
    an optional '^' prefix (indexes) and an optional '.X' suffix (share classes).
    """

    symbol: Annotated[
        str,
        Field(
            min_length=1,
            max_length=20,
            description="Security symbol/ticker"
        )
    ]

    @field_validator('symbol')
    @classmethod
    def validate_symbol_format(cls, v: str) -> str:
        """Validate and normalize symbol format."""
        return normalize_symbol(v)
