"""Pydantic models for registry identities and public office holders.

Registry spans and office observations are immutable snapshots of source
rows. Aggregates, seat holders and tenure periods are computed per
lookup and never persisted.
"""

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from contractes.services.person_names import format_display_name, to_title_case


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split("_")
    return components[0] + "".join(word.capitalize() for word in components[1:])


def parse_iso_date(value: Any) -> date | None:
    """Parse the date part of an ISO timestamp, None if missing or malformed.

    >>> parse_iso_date("2019-07-01T00:00:00.000")
    datetime.date(2019, 7, 1)
    """
    if value is None:
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()[:10]
    if len(text) != 10:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(frozen=True)


# --- Corporate registry -------------------------------------------------


class RoleSpan(FrozenCamelModel):
    """One registry observation of a person holding a role in a company.

    Attributes:
        relation_type: Role kind, one of the registry allow-list values.
        role_title_raw: Title as printed in the gazette, when the store has it.
        role_title_code: Normalized title code, when the store has it.
        start_date: Publication date of the appointment.
        end_date: Publication date of the cessation, None while open.
        source_ref: Gazette document the start was read from.
    """

    relation_type: str
    role_title_raw: str | None = None
    role_title_code: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    source_ref: str | None = None

    @computed_field
    @property
    def is_active(self) -> bool:
        return self.end_date is None


class AdminSpan(RoleSpan):
    person_name: str

    @computed_field
    @property
    def display_person_name(self) -> str:
        return to_title_case(self.person_name)


class CompanyAdminHistory(CamelModel):
    registry_id: str
    matched_name: str
    spans: list[AdminSpan] = Field(default_factory=list)


class CompanyAggregate(CamelModel):
    """All spans of one person in one company variant.

    ``last_end`` is None when any span is still open.
    """

    company_name_raw: str
    company_name_matched: str | None = None
    registry_id: str | None = None
    num_spans: int = 0
    active_spans: int = 0
    first_start: date | None = None
    last_end: date | None = None
    roles: list[RoleSpan] = Field(default_factory=list)


class PersonSearchResult(CamelModel):
    person_name: str
    num_companies: int = 0
    num_companies_with_registry_id: int = 0
    active_spans: int = 0
    total_spans: int = 0

    @computed_field
    @property
    def display_name(self) -> str:
        return format_display_name(self.person_name)


class PersonSearchPage(CamelModel):
    data: list[PersonSearchResult] = Field(default_factory=list)
    total: int = 0


class PersonProfile(CamelModel):
    """Resolved identity with its companies, most active first."""

    person_name: str
    num_companies: int = 0
    num_companies_with_registry_id: int = 0
    total_spans: int = 0
    companies: list[CompanyAggregate] = Field(default_factory=list)

    @computed_field
    @property
    def display_name(self) -> str:
        return format_display_name(self.person_name)


class AwardeeTargets(CamelModel):
    registry_ids: list[str] = Field(default_factory=list)
    company_names: list[str] = Field(default_factory=list)


class TopLinkedPerson(CamelModel):
    rank: int
    person_name: str
    total_amount_active_period: float = 0
    total_contracts_active_period: float = 0
    active_companies_with_ops: float = 0
    active_operation_days: float = 0
    main_position: str = "—"
    main_position_amount: float = 0
    companies_sample: list[str] = Field(default_factory=list)


# --- Public office feed -------------------------------------------------


class OfficeObservation(FrozenCamelModel):
    """One appointment row of the office feed.

    Attributes:
        org_id: Registry code of the public body (``codi_ens``).
        org_name: Full name of the public body (``nom_complert``).
        title: Office title (``carrec``), e.g. "Alcalde", "Regidor".
        holder_name: Appointee as written in the feed (``nom_regidor``).
        ordinal: Position number within the body (``ordre``).
        area: Portfolio or sub-area the office covers.
        party: Electoral list of the holder.
        represented_municipality: Municipality represented, for supra-municipal bodies.
        start_date: Appointment date, None when not informed.
    """

    org_id: str
    org_name: str
    title: str
    holder_name: str
    ordinal: int | None = None
    area: str | None = None
    party: str | None = None
    represented_municipality: str | None = None
    start_date: date | None = None


class OfficeSeat(FrozenCamelModel):
    org_id: str
    title: str
    disambiguator: str


class SeatHolder(CamelModel):
    seat: OfficeSeat
    observation: OfficeObservation


class OrganizationMatch(CamelModel):
    query: str
    matched: bool = False
    org_id: str | None = None
    org_name: str | None = None
    score: float = 0.0
    observation_count: int = 0
    alternates: list[str] = Field(default_factory=list)


class OfficeHoldersPage(CamelModel):
    organization: OrganizationMatch
    rows: list[SeatHolder] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 0


EndInference = Literal["successor", "open", "unknown"]


class TenurePeriod(CamelModel):
    """Reconstructed span of one holder in one seat.

    ``end_date`` is only set when a different person was appointed to the
    same seat later; it is the day before that appointment.
    """

    seat: OfficeSeat
    org_name: str
    holder_name: str
    match_score: float | None = None
    start_date: date | None = None
    end_date: date | None = None
    end_inferred_by: EndInference = "unknown"
    area: str | None = None
    party: str | None = None
    represented_municipality: str | None = None


class OfficeTenures(CamelModel):
    organization: OrganizationMatch
    periods: list[TenurePeriod] = Field(default_factory=list)


class PublicOfficeProfile(CamelModel):
    periods: list[TenurePeriod] = Field(default_factory=list)
    matched_names: list[str] = Field(default_factory=list)
