"""
Database utilities for the score store.
"""

import re
from datetime import datetime, timezone
import logging

from scorestore.database.errors import InvalidInputError

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FORBIDDEN_SEQUENCES = ("'", '"', "`", "\\", "\x00", ";", "--", "/*", "*/")

_SEPARATOR_KEYWORDS = frozenset({
    "or", "and", "union", "select", "insert", "update", "delete", "drop",
    "alter", "create", "truncate", "exec", "execute", "where", "grant",
})

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def validate_string_against_injection(value: str) -> None:
    """
    Reject a free-text value that is unsafe to place in a SQL statement.

    Metric names are caller-supplied, so they go through this check before
    any query that mentions them is built, even though the value itself
    travels as a bound parameter.

    Args:
        value: The string to check

    Raises:
        InvalidInputError: If the value is empty, contains a quote, escape,
            statement separator or comment marker, or contains a standalone
            SQL keyword.
    """
    if not isinstance(value, str) or not value:
        raise InvalidInputError("Value must be a non-empty string")

    for sequence in _FORBIDDEN_SEQUENCES:
        if sequence in value:
            logger.warning(f"Rejected value containing {sequence!r}")
            raise InvalidInputError(f"Invalid character sequence {sequence!r} in '{value}'")

    for token in value.split():
        if token.lower() in _SEPARATOR_KEYWORDS:
            logger.warning(f"Rejected value containing SQL keyword {token!r}")
            raise InvalidInputError(f"SQL keyword '{token}' is not allowed in '{value}'")


def validate_identifier(value: str) -> None:
    """Reject anything other than a plain (optionally schema-qualified) SQL identifier."""
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        raise InvalidInputError(f"Invalid SQL identifier '{value}'")


def render_query(template: str, **identifiers: str) -> str:
    """
    Splice identifiers into a query template.

    This is the only place text is interpolated into SQL. Values always go
    through bound parameters; identifiers such as the table name cannot, so
    each one is validated first.

    Args:
        template: SQL with ``{placeholder}`` fields for identifiers
        **identifiers: Identifier values keyed by placeholder name

    Returns:
        The rendered SQL string
    """
    for identifier in identifiers.values():
        validate_identifier(identifier)
    return template.format(**identifiers)


def datetime_to_nanoseconds(timestamp: datetime) -> int:
    """Convert a datetime to integer nanoseconds since the Unix epoch (naive means UTC)."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    delta = timestamp - _EPOCH
    # Integer arithmetic; timestamp() would round through a float
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000
