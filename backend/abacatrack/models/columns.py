"""Shared column helpers."""

from sqlalchemy import Enum as SAEnum


def enum_column(enum_cls, length: int = 40) -> SAEnum:
    """Store a str-enum by value in a plain VARCHAR (no native PG enum type)."""
    return SAEnum(
        enum_cls, native_enum=False, length=length,
        values_callable=lambda e: [m.value for m in e],
    )
