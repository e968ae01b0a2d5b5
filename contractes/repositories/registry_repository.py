"""SQL access to the corporate registry store.

Tables:
    person_summary(person_name, person_name_norm, num_companies,
        num_companies_with_nif, active_spans, total_spans)
    person_summary_fts   FTS5 index over person_summary (rowid-aligned)
    companies(id, company_name, matched_name, nif)
    admin_spans(company_id, person_name, relation_type, role_title_raw,
        role_title_code, date_start, date_end, source_pdf_start)

Older deployments lack the FTS index and the ``role_title_*`` columns.
Queries that depend on them are negotiated: the current shape is tried
first and the legacy shape only after a schema mismatch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.sql.elements import TextClause

from contractes.config import MAX_QUERY_TOKENS, REGISTRY_ROLE_KINDS
from contractes.services.errors import (
    SchemaMismatch,
    StoreError,
    classify_store_error,
)
from contractes.services.name_matching import normalize, tokenize

logger = logging.getLogger(__name__)


class QueryShape(str, Enum):
    MODERN = "modern"
    LEGACY = "legacy"
    FAILED = "failed"


@dataclass
class StoreOutcome:
    """Rows of one store call, or the classified error it failed with."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class Negotiation:
    shape: QueryShape
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: StoreError | None = None


Attempt = Callable[[], Awaitable[StoreOutcome]]


async def negotiate_query(modern: Attempt, legacy: Attempt) -> Negotiation:
    """Run the modern query shape, falling back to the legacy shape once.

    The legacy attempt only runs when the modern one failed with a schema
    mismatch; any other failure is returned as ``FAILED`` untouched.
    """
    outcome = await modern()
    if outcome.ok:
        return Negotiation(QueryShape.MODERN, outcome.rows)
    if not isinstance(outcome.error, SchemaMismatch):
        return Negotiation(QueryShape.FAILED, error=outcome.error)

    logger.warning(f"Falling back to legacy query shape: {outcome.error}")
    outcome = await legacy()
    if outcome.ok:
        return Negotiation(QueryShape.LEGACY, outcome.rows)
    return Negotiation(QueryShape.FAILED, error=outcome.error)


def build_fts_match(query: str) -> str | None:
    """AND-of-prefixes FTS5 expression, e.g. ``"LAPORTA"* AND "JOAN"*``."""
    raw = query.strip()
    if len(raw) < 2:
        return None
    tokens = tokenize(raw, max_tokens=MAX_QUERY_TOKENS)
    if not tokens:
        return None
    return " AND ".join(f'"{token}"*' for token in tokens)


def build_like_where(query: str) -> tuple[str, dict[str, str]] | None:
    """Substring fallback used when the FTS index is unavailable.

    Matches the raw query as an ordered substring, its normalized form,
    or every token in any order.
    """
    raw = query.strip()
    if len(raw) < 2:
        return None

    normalized = normalize(raw)
    tokens = tokenize(raw, max_tokens=MAX_QUERY_TOKENS)

    clauses = ["upper(person_name) LIKE upper(:raw_pattern)"]
    params = {"raw_pattern": f"%{raw}%"}

    if normalized and normalized != raw.upper():
        clauses.append("person_name_norm LIKE :norm_pattern")
        params["norm_pattern"] = f"%{normalized}%"

    if tokens:
        token_clauses = []
        for i, token in enumerate(tokens):
            token_clauses.append(f"person_name_norm LIKE :token_{i}")
            params[f"token_{i}"] = f"%{token}%"
        clauses.append(f"({' AND '.join(token_clauses)})")

    return f"({' OR '.join(clauses)})", params


_SEARCH_ORDER = (
    "ordered_match DESC, num_companies_with_nif DESC, num_companies DESC, "
    "active_spans DESC, total_spans DESC, person_name ASC"
)

_FTS_SEARCH_SQL = f"""
WITH matched AS (
    SELECT p.person_name,
           p.num_companies,
           p.num_companies_with_nif,
           p.active_spans,
           p.total_spans,
           CASE WHEN upper(p.person_name) LIKE upper(:ordered_pattern) THEN 1 ELSE 0 END AS ordered_match
    FROM person_summary p
    WHERE p.rowid IN (
        SELECT rowid FROM person_summary_fts WHERE person_summary_fts MATCH :match
    )
)
SELECT person_name,
       num_companies,
       num_companies_with_nif,
       active_spans,
       total_spans,
       count(*) OVER() AS total_matches,
       ordered_match
FROM matched
ORDER BY {_SEARCH_ORDER}
LIMIT :limit OFFSET :offset
"""

_LIKE_SEARCH_SQL = """
SELECT person_name,
       num_companies,
       num_companies_with_nif,
       active_spans,
       total_spans,
       count(*) OVER() AS total_matches,
       CASE WHEN upper(person_name) LIKE upper(:ordered_pattern) THEN 1 ELSE 0 END AS ordered_match
FROM person_summary
WHERE {where}
ORDER BY {order}
LIMIT :limit OFFSET :offset
"""

_ROLE_TITLE_COLUMNS = "s.role_title_raw, s.role_title_code"
_LEGACY_ROLE_TITLE_COLUMNS = "NULL AS role_title_raw, NULL AS role_title_code"

_PERSON_SPANS_SQL = """
SELECT s.person_name,
       c.company_name,
       c.matched_name,
       c.nif,
       s.relation_type,
       {role_title_columns},
       s.date_start,
       s.date_end,
       s.source_pdf_start AS source_pdf
FROM admin_spans s
JOIN companies c ON c.id = s.company_id
WHERE s.person_name = :person_name
  AND s.relation_type IN :kinds
ORDER BY (s.date_end IS NULL) DESC, s.date_start DESC, c.company_name ASC
"""

_COMPANY_SPANS_SQL = """
SELECT c.nif,
       c.matched_name,
       s.person_name,
       s.relation_type,
       {role_title_columns},
       s.date_start,
       s.date_end,
       s.source_pdf_start AS source_pdf
FROM companies c
JOIN admin_spans s ON s.company_id = c.id
WHERE c.nif = :nif
  AND s.relation_type IN :kinds
ORDER BY s.date_start DESC
"""


def _with_role_kinds(sql: str) -> TextClause:
    return text(sql).bindparams(bindparam("kinds", expanding=True))


class RegistryRepository:
    """Async facade over the registry SQL store.

    Statements run on a worker thread; every driver error, including the
    plain exceptions some drivers raise outside the DBAPI hierarchy, is
    re-raised as a :class:`~contractes.services.errors.StoreError`.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _execute_sync(self, statement: TextClause, params: dict[str, Any]) -> list[dict[str, Any]]:
        with self._engine.connect() as conn:
            result = conn.execute(statement, params)
            return [dict(row) for row in result.mappings().all()]

    async def _execute(self, statement: TextClause | str, params: dict[str, Any]) -> list[dict[str, Any]]:
        if isinstance(statement, str):
            statement = text(statement)
        try:
            return await asyncio.to_thread(self._execute_sync, statement, params)
        except Exception as e:
            raise classify_store_error(e) from e

    async def _attempt(self, statement: TextClause | str, params: dict[str, Any]) -> StoreOutcome:
        try:
            return StoreOutcome(rows=await self._execute(statement, params))
        except StoreError as e:
            return StoreOutcome(error=e)

    async def search_persons(self, query: str, offset: int, limit: int) -> Negotiation:
        """Search person summaries, FTS index first, substring match second."""
        raw = query.strip()
        ordered_pattern = f"%{raw}%"
        match = build_fts_match(raw)
        like_where = build_like_where(raw)
        if match is None or like_where is None:
            return Negotiation(QueryShape.MODERN)

        where_sql, where_params = like_where

        async def modern() -> StoreOutcome:
            return await self._attempt(
                _FTS_SEARCH_SQL,
                {"ordered_pattern": ordered_pattern, "match": match, "limit": limit, "offset": offset},
            )

        async def legacy() -> StoreOutcome:
            return await self._attempt(
                _LIKE_SEARCH_SQL.format(where=where_sql, order=_SEARCH_ORDER),
                {"ordered_pattern": ordered_pattern, "limit": limit, "offset": offset, **where_params},
            )

        return await negotiate_query(modern, legacy)

    async def find_person_exact(self, person_name: str) -> str | None:
        rows = await self._execute(
            "SELECT person_name FROM person_summary WHERE person_name = :name LIMIT 1",
            {"name": person_name},
        )
        return str(rows[0]["person_name"]) if rows else None

    async def find_person_normalized(self, person_name: str) -> str | None:
        """Case/accent-insensitive lookup, best-linked identity first."""
        rows = await self._execute(
            """
            SELECT person_name
            FROM person_summary
            WHERE person_name_norm = :norm OR upper(person_name) = upper(:name)
            ORDER BY num_companies_with_nif DESC, total_spans DESC
            LIMIT 1
            """,
            {"norm": normalize(person_name), "name": person_name},
        )
        return str(rows[0]["person_name"]) if rows else None

    async def fetch_person_spans(self, person_name: str) -> Negotiation:
        params = {"person_name": person_name, "kinds": list(REGISTRY_ROLE_KINDS)}

        async def modern() -> StoreOutcome:
            sql = _PERSON_SPANS_SQL.format(role_title_columns=_ROLE_TITLE_COLUMNS)
            return await self._attempt(_with_role_kinds(sql), params)

        async def legacy() -> StoreOutcome:
            sql = _PERSON_SPANS_SQL.format(role_title_columns=_LEGACY_ROLE_TITLE_COLUMNS)
            return await self._attempt(_with_role_kinds(sql), params)

        return await negotiate_query(modern, legacy)

    async def fetch_company_spans(self, registry_id: str) -> Negotiation:
        params = {"nif": registry_id, "kinds": list(REGISTRY_ROLE_KINDS)}

        async def modern() -> StoreOutcome:
            sql = _COMPANY_SPANS_SQL.format(role_title_columns=_ROLE_TITLE_COLUMNS)
            return await self._attempt(_with_role_kinds(sql), params)

        async def legacy() -> StoreOutcome:
            sql = _COMPANY_SPANS_SQL.format(role_title_columns=_LEGACY_ROLE_TITLE_COLUMNS)
            return await self._attempt(_with_role_kinds(sql), params)

        return await negotiate_query(modern, legacy)
