"""SQL text helpers: identifier validation and batch placeholder rendering."""

from __future__ import annotations

import re

from schemaspine.core.errors import InvalidConfigError

LIMIT_PLACEHOLDER = "{LIMIT}"
OFFSET_PLACEHOLDER = "{OFFSET}"

# Unquoted PostgreSQL identifier, optionally schema-qualified (NAMEDATALEN - 1 = 63)
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]{0,62}(\.[A-Za-z_][A-Za-z0-9_$]{0,62})?$")

# Type names such as ``VARCHAR(255)``, ``NUMERIC(12, 2)``, ``TIMESTAMP WITH TIME ZONE``, ``TEXT[]``
_TYPE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_ ]*(\(\s*\d+\s*(,\s*\d+\s*)?\))?( ?\[\])*$")


def validate_identifier(name: str, *, field_name: str = "identifier") -> str:
    """Return ``name`` unchanged if it is a safe unquoted identifier.

    Raises:
        InvalidConfigError: If the name could alter the statement it is
            interpolated into.
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidConfigError(
            f"Invalid SQL identifier for {field_name}: {name!r}",
            field_name=field_name,
        )
    return name


def validate_identifiers(names: list[str], *, field_name: str = "identifier") -> list[str]:
    return [validate_identifier(n, field_name=field_name) for n in names]


def validate_type_name(type_name: str, *, field_name: str = "type") -> str:
    """Validate a column type expression (``BOOLEAN``, ``VARCHAR(50)`` ...)."""
    if not isinstance(type_name, str) or not _TYPE_RE.match(type_name.strip()):
        raise InvalidConfigError(
            f"Invalid column type for {field_name}: {type_name!r}",
            field_name=field_name,
        )
    return type_name.strip()


def has_batch_placeholders(sql: str) -> bool:
    """True when ``sql`` contains both ``{LIMIT}`` and ``{OFFSET}``."""
    return LIMIT_PLACEHOLDER in sql and OFFSET_PLACEHOLDER in sql


def render_batch(sql: str, limit: int, offset: int) -> str:
    """Substitute the batch placeholders with integer literals."""
    return sql.replace(LIMIT_PLACEHOLDER, str(int(limit))).replace(
        OFFSET_PLACEHOLDER, str(int(offset))
    )


__all__ = [
    "LIMIT_PLACEHOLDER",
    "OFFSET_PLACEHOLDER",
    "validate_identifier",
    "validate_identifiers",
    "validate_type_name",
    "has_batch_placeholders",
    "render_batch",
]
