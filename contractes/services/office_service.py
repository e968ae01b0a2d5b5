"""Office seat resolver and succession inference.

Two views are built from the appointment feed:

* **Current holders** of an organization: the organization is matched
  fuzzily among its observed spellings, then every distinguishable seat
  keeps only its most recent appointment.
* **Tenure periods**: point-in-time appointments are turned into spans by
  ending each one the day before a different person was appointed to the
  same seat.

Example usage:
    service = get_office_service()
    page = await service.resolve_current_office_holders("Ajuntament de Girona")
    if page.organization.matched:
        for holder in page.rows:
            print(holder.observation.title, holder.observation.holder_name)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from rapidfuzz import fuzz, process

from contractes.config import (
    DEFAULT_PAGE_SIZE,
    MAX_ALTERNATE_SUGGESTIONS,
    MAX_OFFICE_ROWS,
    MAX_PAGE_SIZE,
    MAX_PERSON_OFFICE_ROWS,
    MAX_POSITION_KEYS,
    MAX_TIMELINE_ROWS,
    MIN_ORG_QUERY_LENGTH,
    MIN_PAGE_SIZE,
    MIN_PROFILE_QUERY_LENGTH,
    MIN_SUGGESTION_RATIO,
    ORG_MATCH_MIN_SCORE,
    PERSON_OFFICE_MIN_SCORE,
    PROFILE_CACHE_TTL_SECONDS,
    SEARCH_CACHE_TTL_SECONDS,
    SEAT_SENTINEL,
    SUCCESSION_MAX_SCORE,
)
from contractes.models import (
    OfficeHoldersPage,
    OfficeObservation,
    OfficeSeat,
    OfficeTenures,
    OrganizationMatch,
    PublicOfficeProfile,
    SeatHolder,
    TenurePeriod,
    parse_iso_date,
)
from contractes.services.cache import LookupState
from contractes.services.errors import StoreError
from contractes.services.name_matching import (
    normalize,
    score,
    surname_pair_compatible,
    tokenize,
)
from contractes.services.socrata_client import (
    OFFICE_ROW_FIELDS,
    TIMELINE_FIELDS,
    SocrataClient,
    build_exact_where,
    build_fuzzy_token_where,
    build_token_where,
    escape_soql,
)

logger = logging.getLogger(__name__)


# --- Row parsing and seat keys ------------------------------------------


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_ordinal(value: Any) -> int | None:
    text = _clean(value)
    if text is None:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def observation_from_row(row: dict[str, Any]) -> OfficeObservation | None:
    """Build an observation from a feed row, None if it lacks org or title."""
    org_id = _clean(row.get("codi_ens"))
    org_name = _clean(row.get("nom_complert"))
    title = _clean(row.get("carrec"))
    if not org_id or not org_name or not title:
        return None
    return OfficeObservation(
        org_id=org_id,
        org_name=org_name,
        title=title,
        holder_name=_clean(row.get("nom_regidor")) or "",
        ordinal=_parse_ordinal(row.get("ordre")),
        area=_clean(row.get("area")),
        party=_clean(row.get("partit")),
        represented_municipality=_clean(row.get("municipi_representa")),
        start_date=parse_iso_date(row.get("data_nomenament")),
    )


def seat_key(observation: OfficeObservation, *, holder_fallback: bool = True) -> OfficeSeat:
    """Identify the seat an observation belongs to.

    The disambiguator is the ordinal, else the normalized area, else the
    holder's sorted name tokens, else a fixed sentinel. Succession needs
    seats that outlive their holders, so it passes ``holder_fallback=False``.
    """
    if observation.ordinal is not None:
        disambiguator = str(observation.ordinal)
    elif normalize(observation.area):
        disambiguator = normalize(observation.area)
    else:
        holder_tokens = (
            sorted(tokenize(observation.holder_name, person=True, max_tokens=None))
            if holder_fallback
            else []
        )
        disambiguator = " ".join(holder_tokens) or SEAT_SENTINEL
    return OfficeSeat(
        org_id=observation.org_id,
        title=observation.title,
        disambiguator=disambiguator,
    )


# --- Current holders ----------------------------------------------------


def is_more_recent(candidate: OfficeObservation, incumbent: OfficeObservation) -> bool:
    """Dated beats undated; later beats earlier; ties keep the incumbent."""
    if candidate.start_date is None:
        return False
    if incumbent.start_date is None:
        return True
    return candidate.start_date > incumbent.start_date


def select_current_holders(observations: list[OfficeObservation]) -> list[SeatHolder]:
    """Keep exactly one observation per seat, the most recent one."""
    current: dict[OfficeSeat, OfficeObservation] = {}
    for observation in observations:
        seat = seat_key(observation)
        incumbent = current.get(seat)
        if incumbent is None or is_more_recent(observation, incumbent):
            current[seat] = observation
    return [SeatHolder(seat=seat, observation=obs) for seat, obs in current.items()]


def _date_desc(value: date | None) -> tuple[int, int]:
    return (1, 0) if value is None else (0, -value.toordinal())


def sort_seat_holders(holders: list[SeatHolder]) -> list[SeatHolder]:
    """Newest appointment first, then title, ordinal and holder name."""

    def sort_key(holder: SeatHolder) -> tuple:
        obs = holder.observation
        ordinal = (1, 0) if obs.ordinal is None else (0, obs.ordinal)
        return (
            _date_desc(obs.start_date),
            normalize(obs.title),
            ordinal,
            normalize(obs.holder_name),
            obs.holder_name,
        )

    return sorted(holders, key=sort_key)


def clamp_pagination(total: int, page: int, page_size: int) -> tuple[int, int]:
    """Clamp page size to the allowed range and page to the valid pages."""
    page_size = min(max(page_size, MIN_PAGE_SIZE), MAX_PAGE_SIZE)
    last_page = max(1, math.ceil(total / page_size))
    page = min(max(page, 1), last_page)
    return page, page_size


# --- Organization matching ----------------------------------------------


@dataclass
class OrganizationCandidate:
    org_id: str
    org_name: str
    score: float
    observations: list[OfficeObservation] = field(default_factory=list)

    @property
    def latest_start(self) -> date | None:
        dated = [o.start_date for o in self.observations if o.start_date is not None]
        return max(dated) if dated else None


def rank_organizations(query: str, observations: list[OfficeObservation]) -> list[OrganizationCandidate]:
    """Group observations per ``(org_id, org_name)`` and rank them.

    Ranking: name score, then number of observations, then most recent
    appointment, all descending.
    """
    groups: dict[tuple[str, str], OrganizationCandidate] = {}
    for observation in observations:
        key = (observation.org_id, observation.org_name)
        group = groups.get(key)
        if group is None:
            group = OrganizationCandidate(
                org_id=observation.org_id,
                org_name=observation.org_name,
                score=score(query, observation.org_name),
            )
            groups[key] = group
        group.observations.append(observation)

    def sort_key(candidate: OrganizationCandidate) -> tuple:
        latest = candidate.latest_start
        return (
            -candidate.score,
            -len(candidate.observations),
            -(latest.toordinal() if latest else 0),
            candidate.org_name,
            candidate.org_id,
        )

    return sorted(groups.values(), key=sort_key)


def suggest_alternates(query: str, names: list[str], limit: int = MAX_ALTERNATE_SUGGESTIONS) -> list[str]:
    """Closest distinct organization names for a "did you mean" prompt."""
    choices = list(dict.fromkeys(names))
    if not choices or limit <= 0:
        return []
    matches = process.extract(
        query,
        choices,
        scorer=fuzz.token_set_ratio,
        processor=normalize,
        limit=limit,
        score_cutoff=MIN_SUGGESTION_RATIO,
    )
    return [choice for choice, _ratio, _index in matches]


@dataclass
class ResolvedOrganization:
    match: OrganizationMatch
    observations: list[OfficeObservation] = field(default_factory=list)


def match_organization(query: str, observations: list[OfficeObservation]) -> ResolvedOrganization:
    """Pick the best organization group, or report alternates below threshold."""
    candidates = rank_organizations(query, observations)
    if not candidates:
        return ResolvedOrganization(match=OrganizationMatch(query=query))

    best = candidates[0]
    if best.score < ORG_MATCH_MIN_SCORE:
        alternates = suggest_alternates(query, [c.org_name for c in candidates])
        return ResolvedOrganization(
            match=OrganizationMatch(query=query, score=best.score, alternates=alternates)
        )

    alternates = suggest_alternates(
        query, [c.org_name for c in candidates[1:] if c.org_name != best.org_name]
    )
    return ResolvedOrganization(
        match=OrganizationMatch(
            query=query,
            matched=True,
            org_id=best.org_id,
            org_name=best.org_name,
            score=best.score,
            observation_count=len(best.observations),
            alternates=alternates,
        ),
        observations=best.observations,
    )


# --- Succession inference -----------------------------------------------


def day_before(value: date) -> date:
    return value - timedelta(days=1)


def infer_tenures(
    seat: OfficeSeat,
    timeline: list[OfficeObservation],
    subjects: list[OfficeObservation] | None = None,
    threshold: float = SUCCESSION_MAX_SCORE,
    match_score: float | None = None,
) -> list[TenurePeriod]:
    """Turn appointments in one seat into tenure periods.

    Args:
        seat: The seat every observation belongs to.
        timeline: All known appointments of the seat.
        subjects: Appointments to build periods for, defaults to ``timeline``.
        threshold: A later holder scoring below this against the subject
            is a different person, and their appointment ends the subject's
            tenure.
        match_score: Score to report on every period.

    Returns:
        One period per distinct (holder, start date) subject. Undated
        subjects get ``"unknown"``; dated ones end the day before their
        nearest successor or stay ``"open"``.
    """
    subjects = timeline if subjects is None else subjects
    dated = sorted(
        (o for o in timeline if o.start_date is not None),
        key=lambda o: o.start_date,
    )
    dated_holders = {
        normalize(o.holder_name) for o in subjects if o.start_date is not None
    }

    periods: list[TenurePeriod] = []
    seen: set[tuple[str, date | None]] = set()

    for subject in subjects:
        holder_key = normalize(subject.holder_name)
        dedupe_key = (holder_key, subject.start_date)
        if dedupe_key in seen:
            continue
        seen.add(dedupe_key)

        end_date = None
        if subject.start_date is None:
            if holder_key in dated_holders:
                continue
            end_inferred_by = "unknown"
        else:
            successor = next(
                (
                    o
                    for o in dated
                    if o.start_date > subject.start_date
                    and score(subject.holder_name, o.holder_name) < threshold
                ),
                None,
            )
            if successor is not None:
                end_date = day_before(successor.start_date)
                end_inferred_by = "successor"
            else:
                end_inferred_by = "open"

        periods.append(
            TenurePeriod(
                seat=seat,
                org_name=subject.org_name,
                holder_name=subject.holder_name,
                match_score=match_score,
                start_date=subject.start_date,
                end_date=end_date,
                end_inferred_by=end_inferred_by,
                area=subject.area,
                party=subject.party,
                represented_municipality=subject.represented_municipality,
            )
        )

    return periods


def sort_periods(periods: list[TenurePeriod]) -> list[TenurePeriod]:
    """Newest start first, undated last; ties by score, title and holder."""
    return sorted(
        periods,
        key=lambda p: (
            _date_desc(p.start_date),
            -(p.match_score or 0.0),
            normalize(p.seat.title),
            p.seat.disambiguator,
            normalize(p.holder_name),
        ),
    )


# --- Service ------------------------------------------------------------


@dataclass
class _PositionGroup:
    seat: OfficeSeat
    representative: OfficeObservation
    person_name: str
    score: float
    starts: set[date] = field(default_factory=set)


@dataclass
class _MatchedPosition:
    position: _PositionGroup
    matched_names: set[str] = field(default_factory=set)


class OfficeService:
    """Lookups over the office appointment feed.

    The feed is public, so the service is always configured. Failures
    degrade to unmatched or empty results; an access-blocked response
    suspends feed reads for the guard's cooldown.
    """

    def __init__(
        self,
        client: SocrataClient | None = None,
        state: LookupState | None = None,
    ) -> None:
        self._client = client or SocrataClient()
        self._state = state or LookupState(name="Office feed")

    @property
    def is_configured(self) -> bool:
        """The appointment feed is public, no credentials needed."""
        return True

    @property
    def state(self) -> LookupState:
        return self._state

    async def close(self) -> None:
        await self._client.close()

    async def _fetch(self, params: dict[str, str], action: str) -> list[dict[str, Any]] | None:
        """Run one feed query; None when the guard is engaged or the call failed."""
        if not self._state.guard.allows_reads():
            return None
        try:
            return await self._client.fetch(params)
        except StoreError as e:
            if not self._state.guard.record_failure(e):
                logger.error(f"Failed to {action}: {e}")
            return None

    async def _fetch_org_observations(self, query: str) -> list[OfficeObservation] | None:
        """Exact organization name first, token-AND filter when that finds nothing."""
        base = {
            "$select": OFFICE_ROW_FIELDS,
            "$order": "data_nomenament DESC",
            "$limit": str(MAX_OFFICE_ROWS),
        }

        rows = await self._fetch(
            {**base, "$where": build_exact_where("nom_complert", query)},
            "fetch organization rows",
        )
        if rows is None:
            return None

        if not rows:
            token_where = build_token_where("nom_complert", query)
            rows = await self._fetch(
                {**base, "$where": token_where},
                "fetch organization rows by tokens",
            )
            if rows is None:
                return None

        observations = [observation_from_row(row) for row in rows]
        return [o for o in observations if o is not None]

    async def _resolve_organization(self, query: str) -> ResolvedOrganization | None:
        cache_key = f"org|{normalize(query)}"
        cached = self._state.search_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Organization cache hit: {cache_key}")
            return cached

        observations = await self._fetch_org_observations(query)
        if observations is None:
            return None

        resolved = match_organization(query, observations)
        self._state.search_cache.set(cache_key, resolved, SEARCH_CACHE_TTL_SECONDS)
        return resolved

    async def resolve_current_office_holders(
        self,
        org_name_query: str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> OfficeHoldersPage:
        """Current holder of every seat of the best-matching organization.

        Args:
            org_name_query: Free-text organization name.
            page: 1-based page number, clamped to the valid range.
            page_size: Rows per page, clamped to the allowed range.

        Returns:
            The organization match (with alternates when unmatched) and one
            page of seat holders.
        """
        raw = (org_name_query or "").strip()
        empty_page, empty_size = clamp_pagination(0, page, page_size)
        if len(raw) < MIN_ORG_QUERY_LENGTH:
            return OfficeHoldersPage(
                organization=OrganizationMatch(query=raw), page=empty_page, page_size=empty_size
            )

        resolved = await self._resolve_organization(raw)
        if resolved is None or not resolved.match.matched:
            match = resolved.match if resolved else OrganizationMatch(query=raw)
            return OfficeHoldersPage(organization=match, page=empty_page, page_size=empty_size)

        holders = sort_seat_holders(select_current_holders(resolved.observations))
        total = len(holders)
        page, page_size = clamp_pagination(total, page, page_size)
        start = (page - 1) * page_size
        return OfficeHoldersPage(
            organization=resolved.match,
            rows=holders[start:start + page_size],
            total=total,
            page=page,
            page_size=page_size,
        )

    async def resolve_office_tenures(self, org_name_query: str) -> OfficeTenures:
        """Historical tenure periods for every seat of the best-matching organization."""
        raw = (org_name_query or "").strip()
        if len(raw) < MIN_ORG_QUERY_LENGTH:
            return OfficeTenures(organization=OrganizationMatch(query=raw))

        resolved = await self._resolve_organization(raw)
        if resolved is None or not resolved.match.matched:
            match = resolved.match if resolved else OrganizationMatch(query=raw)
            return OfficeTenures(organization=match)

        by_seat: dict[OfficeSeat, list[OfficeObservation]] = {}
        for observation in resolved.observations:
            by_seat.setdefault(seat_key(observation, holder_fallback=False), []).append(observation)

        periods: list[TenurePeriod] = []
        for seat, observations in by_seat.items():
            periods.extend(infer_tenures(seat, observations))

        return OfficeTenures(organization=resolved.match, periods=sort_periods(periods))

    async def fetch_public_office_profile(self, person_name: str) -> PublicOfficeProfile:
        """Public offices held by a person, with inferred tenure ends.

        Matches ``person_name`` against appointees (surname-pair pre-filter,
        then token overlap), then loads the full dated timeline of every
        matched seat to find successors.
        """
        raw = (person_name or "").strip()
        if len(raw) < MIN_PROFILE_QUERY_LENGTH:
            return PublicOfficeProfile()

        cache_key = f"person|{normalize(raw)}"
        cached = self._state.profile_cache.get(cache_key)
        if cached is not None:
            return cached

        base = {
            "$select": OFFICE_ROW_FIELDS,
            "$order": "data_nomenament DESC",
            "$limit": str(MAX_PERSON_OFFICE_ROWS),
        }
        rows = await self._fetch(
            {**base, "$where": build_token_where("nom_regidor", raw)},
            "fetch office rows by person",
        )
        if rows is None:
            return PublicOfficeProfile()
        if not rows:
            fuzzy_where = build_fuzzy_token_where("nom_regidor", raw)
            if fuzzy_where:
                rows = await self._fetch({**base, "$where": fuzzy_where}, "fetch office rows by fuzzy person")
                if rows is None:
                    return PublicOfficeProfile()

        groups = self._group_person_positions(raw, rows)
        if not groups:
            profile = PublicOfficeProfile()
            self._state.profile_cache.set(cache_key, profile, PROFILE_CACHE_TTL_SECONDS)
            return profile

        matched_names = sorted(
            {g_name for g in groups for g_name in g.matched_names},
            key=lambda n: (normalize(n), n),
        )
        positions = [g.position for g in groups][:MAX_POSITION_KEYS]

        timeline = await self._fetch_timeline(positions)
        if timeline is None:
            return PublicOfficeProfile()

        periods: list[TenurePeriod] = []
        for position in positions:
            starts = sorted(position.starts) or [None]
            subjects = [
                position.representative.model_copy(
                    update={"holder_name": position.person_name, "start_date": start}
                )
                for start in starts
            ]
            periods.extend(
                infer_tenures(
                    position.seat,
                    timeline.get(position.seat, []),
                    subjects=subjects,
                    match_score=position.score,
                )
            )

        profile = PublicOfficeProfile(periods=sort_periods(periods), matched_names=matched_names)
        self._state.profile_cache.set(cache_key, profile, PROFILE_CACHE_TTL_SECONDS)
        return profile

    def _group_person_positions(self, person_name: str, rows: list[dict[str, Any]]) -> list[_MatchedPosition]:
        positions: dict[OfficeSeat, _MatchedPosition] = {}

        for row in rows:
            observation = observation_from_row(row)
            if observation is None or not observation.holder_name:
                continue
            if not surname_pair_compatible(person_name, observation.holder_name):
                continue
            row_score = score(person_name, observation.holder_name)
            if row_score < PERSON_OFFICE_MIN_SCORE:
                continue

            seat = seat_key(observation, holder_fallback=False)
            matched = positions.get(seat)
            if matched is None:
                matched = _MatchedPosition(
                    position=_PositionGroup(
                        seat=seat,
                        representative=observation,
                        person_name=observation.holder_name,
                        score=row_score,
                    )
                )
                positions[seat] = matched
            elif row_score > matched.position.score:
                matched.position.score = row_score
                matched.position.person_name = observation.holder_name

            matched.matched_names.add(observation.holder_name)
            if observation.start_date is not None:
                matched.position.starts.add(observation.start_date)

        return list(positions.values())

    async def _fetch_timeline(
        self, positions: list[_PositionGroup]
    ) -> dict[OfficeSeat, list[OfficeObservation]] | None:
        """Every dated appointment to the given seats, oldest first."""
        seat_filters = " OR ".join(
            "(codi_ens='{org_id}' AND nom_complert='{org_name}' AND carrec='{title}')".format(
                org_id=escape_soql(p.representative.org_id),
                org_name=escape_soql(p.representative.org_name),
                title=escape_soql(p.representative.title),
            )
            for p in positions
        )
        rows = await self._fetch(
            {
                "$select": TIMELINE_FIELDS,
                "$where": f"({seat_filters}) AND data_nomenament IS NOT NULL",
                "$order": "data_nomenament ASC",
                "$limit": str(MAX_TIMELINE_ROWS),
            },
            "fetch office timeline",
        )
        if rows is None:
            return None

        wanted = {p.seat for p in positions}
        timeline: dict[OfficeSeat, list[OfficeObservation]] = {}
        for row in rows:
            observation = observation_from_row(row)
            if observation is None or not observation.holder_name or observation.start_date is None:
                continue
            seat = seat_key(observation, holder_fallback=False)
            if seat in wanted:
                timeline.setdefault(seat, []).append(observation)
        return timeline


# Singleton pattern matching other services
_office_service: OfficeService | None = None


def get_office_service() -> OfficeService:
    """Get the singleton OfficeService instance."""
    global _office_service
    if _office_service is None:
        _office_service = OfficeService()
    return _office_service
