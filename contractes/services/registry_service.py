"""Corporate registry linker.

Resolves a free-text person name to one canonical registry identity and
groups that identity's role spans per company. Every public method
degrades to an empty result or None: a missing configuration, a blocked
store or a failed query must never break the caller.

Example usage:
    service = get_registry_service()
    profile = await service.resolve_identity_profile("laporta estruch joan")
    if profile:
        for company in profile.companies:
            print(company.company_name_raw, company.active_spans)
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from contractes.config import (
    DEFAULT_SEARCH_LIMIT,
    MIN_PERSON_SEARCH_LENGTH,
    MIN_PROFILE_QUERY_LENGTH,
    PROFILE_CACHE_TTL_SECONDS,
    SEARCH_CACHE_TTL_SECONDS,
)
from contractes.models import (
    AdminSpan,
    AwardeeTargets,
    CompanyAdminHistory,
    CompanyAggregate,
    PersonProfile,
    PersonSearchPage,
    PersonSearchResult,
    RoleSpan,
    parse_iso_date,
)
from contractes.repositories.registry_repository import QueryShape, RegistryRepository
from contractes.services.cache import LookupState
from contractes.services.errors import ConfigurationMissing, StoreError
from contractes.services.name_matching import normalize

logger = logging.getLogger(__name__)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _role_span_from_row(row: dict[str, Any]) -> RoleSpan:
    return RoleSpan(
        relation_type=str(row.get("relation_type") or ""),
        role_title_raw=_optional_str(row.get("role_title_raw")),
        role_title_code=_optional_str(row.get("role_title_code")),
        start_date=parse_iso_date(row.get("date_start")),
        end_date=parse_iso_date(row.get("date_end")),
        source_ref=_optional_str(row.get("source_pdf")),
    )


def build_company_aggregates(rows: list[dict[str, Any]]) -> list[CompanyAggregate]:
    """Group span rows per company variant and rank the groups.

    The grouping key is ``(company_name, matched_name or "", nif or "")``,
    so two spellings of one company stay separate groups. Groups keep the
    row order they were fetched in and are ranked by open spans, then
    total spans (stable for ties).
    """
    groups: dict[tuple[str, str, str], CompanyAggregate] = {}
    has_open: dict[tuple[str, str, str], bool] = {}

    for row in rows:
        company_name_raw = str(row.get("company_name") or "")
        company_name_matched = _optional_str(row.get("matched_name"))
        registry_id = _optional_str(row.get("nif"))
        key = (company_name_raw, company_name_matched or "", registry_id or "")
        span = _role_span_from_row(row)

        group = groups.get(key)
        if group is None:
            group = CompanyAggregate(
                company_name_raw=company_name_raw,
                company_name_matched=company_name_matched,
                registry_id=registry_id,
            )
            groups[key] = group
            has_open[key] = False

        group.roles.append(span)
        group.num_spans += 1

        if span.end_date is None:
            group.active_spans += 1
            has_open[key] = True
            group.last_end = None
        elif not has_open[key] and (group.last_end is None or span.end_date > group.last_end):
            group.last_end = span.end_date

        if span.start_date is not None and (
            group.first_start is None or span.start_date < group.first_start
        ):
            group.first_start = span.start_date

    return sorted(groups.values(), key=lambda g: (-g.active_spans, -g.num_spans))


def get_awardee_targets(profile: PersonProfile) -> AwardeeTargets:
    """Distinct registry ids and company names linked to a profile."""
    registry_ids: dict[str, None] = {}
    names: dict[str, None] = {}

    for company in profile.companies:
        if company.registry_id:
            registry_ids[company.registry_id] = None
        for name in (company.company_name_matched, company.company_name_raw):
            if name and name.strip():
                names[name.strip()] = None

    return AwardeeTargets(registry_ids=list(registry_ids), company_names=list(names))


class RegistryService:
    """Identity search and profile assembly over the registry store."""

    def __init__(
        self,
        repository: RegistryRepository | None,
        state: LookupState | None = None,
    ) -> None:
        self._repository = repository
        self._state = state or LookupState(name="Registry store")
        self._warned_missing_config = False

    @property
    def is_configured(self) -> bool:
        return self._repository is not None

    @property
    def state(self) -> LookupState:
        return self._state

    def _can_read(self) -> bool:
        if self._repository is None:
            if not self._warned_missing_config:
                logger.warning(
                    "Registry store config missing: set REGISTRY_DATABASE_URL; registry lookups return empty results"
                )
                self._warned_missing_config = True
            return False
        return self._state.guard.allows_reads()

    def _handle_failure(self, error: StoreError, action: str) -> None:
        if self._state.guard.record_failure(error):
            return
        logger.error(f"Failed to {action}: {error}")

    async def search_identities(
        self,
        query: str,
        offset: int = 0,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> PersonSearchPage:
        """Search person identities by name.

        Args:
            query: Free-text name, any word order.
            offset: Number of ranked rows to skip.
            limit: Maximum rows to return.

        Returns:
            Page of matching identities plus the total match count.
        """
        raw = (query or "").strip()
        if len(raw) < MIN_PERSON_SEARCH_LENGTH or limit <= 0:
            return PersonSearchPage()
        offset = max(0, offset)
        if not self._can_read():
            return PersonSearchPage()

        cache_key = f"{normalize(raw)}|{offset}|{limit}"
        cached = self._state.search_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Person search cache hit: {cache_key}")
            return cached

        negotiation = await self._repository.search_persons(raw, offset, limit)
        if negotiation.shape is QueryShape.FAILED:
            self._handle_failure(negotiation.error, "search persons")
            return PersonSearchPage()

        rows = negotiation.rows
        data = [
            PersonSearchResult(
                person_name=str(row["person_name"]),
                num_companies=_to_int(row.get("num_companies")),
                num_companies_with_registry_id=_to_int(row.get("num_companies_with_nif")),
                active_spans=_to_int(row.get("active_spans")),
                total_spans=_to_int(row.get("total_spans")),
            )
            for row in rows
        ]
        total = _to_int(rows[0].get("total_matches")) if rows else 0
        page = PersonSearchPage(data=data, total=total)
        self._state.search_cache.set(cache_key, page, SEARCH_CACHE_TTL_SECONDS)
        return page

    async def _resolve_canonical_name(self, query_name: str) -> str | None:
        canonical = await self._repository.find_person_exact(query_name)
        if canonical is not None:
            return canonical
        return await self._repository.find_person_normalized(query_name)

    async def resolve_identity_profile(self, query_name: str) -> PersonProfile | None:
        """Resolve a name to its canonical identity and company aggregates.

        Returns:
            The profile, or None when no identity matches or the store
            cannot be read.
        """
        raw = (query_name or "").strip()
        if len(raw) < MIN_PROFILE_QUERY_LENGTH:
            return None
        if not self._can_read():
            return None

        cache_key = normalize(raw)
        cached = self._state.profile_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Person profile cache hit: {cache_key}")
            return cached

        try:
            canonical_name = await self._resolve_canonical_name(raw)
        except StoreError as e:
            self._handle_failure(e, "resolve canonical person name")
            return None
        if canonical_name is None:
            return None

        negotiation = await self._repository.fetch_person_spans(canonical_name)
        if negotiation.shape is QueryShape.FAILED:
            self._handle_failure(negotiation.error, "load person profile")
            return None
        if not negotiation.rows:
            return None

        companies = build_company_aggregates(negotiation.rows)
        registry_ids = {c.registry_id for c in companies if c.registry_id}
        profile = PersonProfile(
            person_name=canonical_name,
            num_companies=len(companies),
            num_companies_with_registry_id=len(registry_ids),
            total_spans=len(negotiation.rows),
            companies=companies,
        )
        self._state.profile_cache.set(cache_key, profile, PROFILE_CACHE_TTL_SECONDS)
        return profile

    async def load_company_admin_history(self, registry_id: str) -> CompanyAdminHistory | None:
        """Role spans of every person linked to one registry id, newest first."""
        normalized_id = (registry_id or "").strip().upper()
        if not normalized_id:
            return None
        if not self._can_read():
            return None

        negotiation = await self._repository.fetch_company_spans(normalized_id)
        if negotiation.shape is QueryShape.FAILED:
            self._handle_failure(negotiation.error, "load company admin history")
            return None
        if not negotiation.rows:
            return None

        first = negotiation.rows[0]
        spans = [
            AdminSpan(
                person_name=str(row.get("person_name") or ""),
                **_role_span_from_row(row).model_dump(by_alias=False, exclude={"is_active"}),
            )
            for row in negotiation.rows
        ]
        return CompanyAdminHistory(
            registry_id=str(first.get("nif") or normalized_id),
            matched_name=str(first.get("matched_name") or ""),
            spans=spans,
        )


# Singleton pattern matching other services
_registry_service: RegistryService | None = None


def get_registry_service() -> RegistryService:
    """Get the singleton RegistryService instance."""
    global _registry_service
    if _registry_service is None:
        from contractes.db.session import create_registry_engine

        try:
            repository = RegistryRepository(create_registry_engine())
        except ConfigurationMissing:
            repository = None
        except SQLAlchemyError as e:
            logger.error(f"Registry store config invalid: {e}; registry lookups return empty results")
            repository = None
        _registry_service = RegistryService(repository)
    return _registry_service
