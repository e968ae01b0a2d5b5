"""Socrata SoQL client for the elected-office appointment feed.

The feed lists one row per appointment (``data_nomenament``) of a person
(``nom_regidor``) to an office (``carrec``) in a public body (``codi_ens``,
``nom_complert``). There is no end date: tenure ends are inferred from
successors, see :mod:`contractes.services.office_service`.

API Documentation: https://dev.socrata.com/docs/queries/
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from contractes.config import OFFICE_FEED_TIMEOUT, OFFICE_FEED_URL, SOCRATA_APP_TOKEN
from contractes.services.errors import classify_store_error
from contractes.services.name_matching import tokenize

logger = logging.getLogger(__name__)

OFFICE_ROW_FIELDS = (
    "codi_ens, nom_complert, ordre, nom_regidor, carrec, area, partit, "
    "municipi_representa, data_nomenament"
)

TIMELINE_FIELDS = "codi_ens, nom_complert, ordre, carrec, area, nom_regidor, data_nomenament"

_VOWELS = set("AEIOU")


def escape_soql(value: str) -> str:
    """Escape a value for a single-quoted SoQL string literal."""
    return value.replace("'", "''")


def _contains(field: str, value: str) -> str:
    return f"upper({field}) like upper('%{escape_soql(value)}%')"


def build_exact_where(field: str, value: str) -> str | None:
    raw = value.strip()
    if not raw:
        return None
    return f"upper({field}) = upper('{escape_soql(raw)}')"


def build_token_where(field: str, value: str, max_tokens: int = 5) -> str | None:
    """AND of substring filters, one per token of three or more characters.

    Falls back to a single substring filter on the raw value when the name
    has no usable token.
    """
    raw = value.strip()
    if not raw:
        return None
    tokens = [t for t in tokenize(raw, max_tokens=max_tokens) if len(t) >= 3]
    if not tokens:
        return _contains(field, raw)
    return " AND ".join(_contains(field, token) for token in tokens)


def build_fuzzy_token_where(field: str, value: str) -> str | None:
    """Looser filter over the first two tokens.

    Each token matches as itself, as its four-letter prefix, or as its
    consonant skeleton (``GARCIA`` -> ``%G%R%C%``), which tolerates
    transcription differences in vowels and accents.
    """
    tokens = [t for t in tokenize(value, max_tokens=None) if len(t) >= 3][:2]
    if not tokens:
        return None

    token_clauses = []
    for token in tokens:
        clauses = [_contains(field, token)]

        prefix = token[:4]
        if len(prefix) >= 3 and prefix != token:
            clauses.append(_contains(field, prefix))

        consonants = "".join(c for c in token if c not in _VOWELS)
        if len(consonants) >= 3:
            clauses.append(_contains(field, "%".join(consonants)))

        token_clauses.append(f"({' OR '.join(clauses)})")

    return " AND ".join(token_clauses)


class SocrataClient:
    """Thin async client over one Socrata dataset endpoint.

    Example usage:
        client = SocrataClient()
        rows = await client.fetch({"$where": "carrec = 'Alcalde'", "$limit": "10"})
    """

    def __init__(
        self,
        base_url: str = OFFICE_FEED_URL,
        app_token: str = SOCRATA_APP_TOKEN,
        timeout: float = OFFICE_FEED_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Dataset resource URL (``.../resource/<id>.json``).
            app_token: Optional Socrata app token for higher rate limits.
            timeout: HTTP request timeout in seconds.
            transport: Custom httpx transport, used by tests.
        """
        self._base_url = base_url
        self._app_token = app_token
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with proper headers."""
        if self._http_client is None or self._http_client.is_closed:
            headers = {"Accept": "application/json"}
            if self._app_token:
                headers["X-App-Token"] = self._app_token
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, params: dict[str, str]) -> list[dict[str, Any]]:
        """Run one SoQL query.

        Args:
            params: SoQL parameters (``$select``, ``$where``, ``$order``, ``$limit``).

        Returns:
            Decoded result rows.

        Raises:
            StoreError: Classified transport, HTTP or decoding failure.
        """
        client = await self._get_client()
        try:
            response = await client.get(self._base_url, params=params)
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Office feed API error: {e.response.status_code} {e.response.text[:200]}")
            raise classify_store_error(e) from e
        except (httpx.HTTPError, ValueError) as e:
            raise classify_store_error(e) from e

        if not isinstance(rows, list):
            raise classify_store_error(ValueError(f"Unexpected office feed payload: {type(rows).__name__}"))
        return rows
