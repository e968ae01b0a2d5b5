"""Store error taxonomy.

Only the low-level store wrappers raise these; services catch them and
degrade to empty results. "Not found" is never an exception.
"""

from __future__ import annotations

import httpx
from sqlalchemy.exc import SQLAlchemyError

# Substrings reported by the registry store when reads are suspended
BLOCKED_READ_MARKERS = ("SQL read operations are forbidden", "BLOCKED")

SCHEMA_ERROR_MARKERS = (
    "no such table",
    "no such column",
    "no such module",
    "has no column",
    "fts5",
)


class StoreError(Exception):
    """Base class for failures talking to a backing store."""


class ConfigurationMissing(StoreError):
    """The store is not configured in this environment."""


class AccessBlocked(StoreError):
    """The store explicitly refuses reads for now."""


class SchemaMismatch(StoreError):
    """The query shape is not supported by the store's current schema."""


class QueryFailure(StoreError):
    """Any other store failure."""


def is_blocked_read_message(message: str) -> bool:
    return any(marker in message for marker in BLOCKED_READ_MARKERS)


def classify_store_error(error: BaseException) -> StoreError:
    """Map a driver or transport exception onto the store taxonomy."""
    if isinstance(error, StoreError):
        return error

    message = str(error)

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code == 403 or is_blocked_read_message(message):
            return AccessBlocked(message)
        if status_code == 400 and "column" in error.response.text.lower():
            return SchemaMismatch(message)
        return QueryFailure(message)

    if is_blocked_read_message(message):
        return AccessBlocked(message)

    if isinstance(error, SQLAlchemyError):
        lowered = message.lower()
        if any(marker in lowered for marker in SCHEMA_ERROR_MARKERS):
            return SchemaMismatch(message)

    return QueryFailure(message)
