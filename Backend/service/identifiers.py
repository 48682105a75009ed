"""Guards for every identifier that is placed into generated SQL."""

import re
from uuid import UUID

from sqlalchemy.dialects.postgresql.base import RESERVED_WORDS as PG_RESERVED_WORDS
from sqlalchemy.sql.compiler import RESERVED_WORDS

from core.constants import MAX_IDENTIFIER_LENGTH, PHYSICAL_TABLE_PREFIX, SYSTEM_COLUMNS
from core.exceptions import ValidationException


TABLE_NAME_PATTERN = re.compile(rf"{PHYSICAL_TABLE_PREFIX}_[0-9a-f]{{12}}_[0-9a-f]{{16}}")
COLUMN_NAME_PATTERN = re.compile(r"[a-z][a-z0-9_]*")

RESERVED_KEYWORDS = frozenset(
    word.lower() for word in RESERVED_WORDS | PG_RESERVED_WORDS
)


def physical_table_name(company_id: UUID, table_id: UUID) -> str:
    """Deterministic storage name for a company's table."""
    return f"{PHYSICAL_TABLE_PREFIX}_{company_id.hex[:12]}_{table_id.hex[:16]}"


def is_valid_table_name(name: str) -> bool:
    return isinstance(name, str) and TABLE_NAME_PATTERN.fullmatch(name) is not None


def is_valid_column_name(name: str) -> bool:
    return (
        isinstance(name, str)
        and len(name) <= MAX_IDENTIFIER_LENGTH
        and COLUMN_NAME_PATTERN.fullmatch(name) is not None
        and name not in RESERVED_KEYWORDS
    )


def is_system_column(name: str) -> bool:
    return name in SYSTEM_COLUMNS


def ensure_table_name(name: str) -> str:
    if not is_valid_table_name(name):
        raise ValidationException(f"Invalid table name `{name}`")
    return name


def ensure_column_name(name: str, allow_system: bool = False) -> str:
    if not is_valid_column_name(name):
        raise ValidationException(
            f"Invalid column name `{name}`. Use lowercase letters, digits and "
            "underscores, starting with a letter, and avoid SQL keywords."
        )
    if not allow_system and is_system_column(name):
        raise ValidationException(f"`{name}` is a system column")
    return name
