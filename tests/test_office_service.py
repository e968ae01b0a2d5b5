"""Tests for the office seat resolver and succession inference."""

from datetime import date

import pytest

from conftest import feed_row, make_observation
from contractes.models import OfficeSeat
from contractes.services.cache import LookupState
from contractes.services.errors import AccessBlocked, QueryFailure
from contractes.services.office_service import (
    OfficeService,
    clamp_pagination,
    get_office_service,
    infer_tenures,
    match_organization,
    observation_from_row,
    rank_organizations,
    seat_key,
    select_current_holders,
    sort_seat_holders,
)
from contractes.services.socrata_client import TIMELINE_FIELDS


class FakeFeed:
    """Stands in for SocrataClient; answers each query with ``responder(params)``."""

    def __init__(self, responder):
        self.responder = responder
        self.calls = []
        self.closed = False

    async def fetch(self, params):
        self.calls.append(params)
        result = self.responder(params)
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


@pytest.fixture
def state(fake_clock):
    return LookupState(clock=fake_clock, name="Office feed")


GIRONA_ROWS = [
    feed_row("Lluc Salellas i Vilar", "2023-06-17", ordinal=1, party="Guanyem Girona"),
    feed_row("Marta Madrenas i Mir", "2016-03-10", ordinal=1, party="JxCat"),
    feed_row("Gemma Geis i Carreras", "2023-06-17", title="Regidor", ordinal=2),
    feed_row("Maria Àngels Planas", "2019-06-15", title="Regidor", ordinal=2),
    feed_row("Carles Puigdemont i Casamajó", "2011-07-02", ordinal=1),
]


class TestObservationParsing:
    """Tests for observation_from_row and seat_key."""

    def test_parses_feed_row(self):
        obs = observation_from_row(feed_row("Joan Puig", "2019-06-15", ordinal=3, area="Urbanisme"))
        assert obs.ordinal == 3
        assert obs.area == "Urbanisme"
        assert obs.start_date == date(2019, 6, 15)

    def test_rejects_rows_without_title(self):
        row = feed_row("Joan Puig", "2019-06-15")
        del row["carrec"]
        assert observation_from_row(row) is None

    def test_bad_ordinal_is_dropped(self):
        row = feed_row("Joan Puig", None)
        row["ordre"] = "x"
        obs = observation_from_row(row)
        assert obs.ordinal is None
        assert obs.start_date is None

    def test_seat_key_precedence(self):
        assert seat_key(make_observation("Joan Puig", None, ordinal=3, area="Urbanisme")).disambiguator == "3"
        assert seat_key(make_observation("Joan Puig", None, area="Via Pública")).disambiguator == "VIA PUBLICA"
        assert seat_key(make_observation("Puig Joan", None)).disambiguator == "JOAN PUIG"
        assert seat_key(make_observation("Joan Puig", None), holder_fallback=False).disambiguator == "_"


class TestCurrentHolders:
    """Tests for seat deduplication and ordering."""

    def test_one_holder_per_seat_most_recent_wins(self):
        observations = [observation_from_row(r) for r in GIRONA_ROWS]
        holders = select_current_holders(observations)

        seats = [h.seat for h in holders]
        assert len(seats) == len(set(seats))
        by_seat = {(h.seat.title, h.seat.disambiguator): h.observation.holder_name for h in holders}
        assert by_seat == {
            ("Alcalde", "1"): "Lluc Salellas i Vilar",
            ("Regidor", "2"): "Gemma Geis i Carreras",
        }

    def test_dated_beats_undated_and_ties_keep_first(self):
        observations = [
            make_observation("Undated", None, ordinal=4),
            make_observation("First", "2019-06-15", ordinal=4),
            make_observation("Second", "2019-06-15", ordinal=4),
        ]
        (holder,) = select_current_holders(observations)
        assert holder.observation.holder_name == "First"

    def test_sort_order(self):
        holders = select_current_holders([
            make_observation("Old", "2015-06-13", title="Regidor", ordinal=5),
            make_observation("Zeta", "2019-06-15", title="Regidor", ordinal=3),
            make_observation("Alpha", "2019-06-15", title="Regidor", ordinal=2),
            make_observation("Mayor", "2019-06-15", title="Alcalde", ordinal=1),
            make_observation("Nodate", None, title="Alcalde", ordinal=9),
        ])
        names = [h.observation.holder_name for h in sort_seat_holders(holders)]
        assert names == ["Mayor", "Alpha", "Zeta", "Old", "Nodate"]

    @pytest.mark.parametrize(
        "total, page, page_size, expected",
        [
            (120, 1, 50, (1, 50)),
            (120, 5, 50, (3, 50)),
            (120, -2, 50, (1, 50)),
            (120, 1, 0, (1, 1)),
            (120, 1, 1000, (1, 200)),
            (0, 4, 50, (1, 50)),
        ],
    )
    def test_clamp_pagination(self, total, page, page_size, expected):
        assert clamp_pagination(total, page, page_size) == expected


class TestOrganizationMatching:
    """Tests for organization ranking and alternates."""

    def test_rank_ties_by_count_then_latest(self):
        observations = [
            make_observation("A", "2019-01-01", org_id="100"),
            make_observation("B", "2015-01-01", org_id="200"),
            make_observation("C", "2016-01-01", org_id="200"),
            make_observation("D", "2023-01-01", org_id="300"),
            make_observation("E", "2010-01-01", org_id="300"),
        ]
        ranked = rank_organizations("Ajuntament de Girona", observations)
        assert [c.org_id for c in ranked] == ["300", "200", "100"]

    def test_match_above_threshold(self):
        observations = [
            make_observation("A", "2019-01-01"),
            make_observation("B", "2019-01-01", org_name="Consell Comarcal del Gironès", org_id="9"),
        ]
        resolved = match_organization("ajuntament de girona", observations)

        assert resolved.match.matched is True
        assert resolved.match.org_id == "1707920004"
        assert resolved.match.score == 1.0
        assert resolved.match.observation_count == 1
        assert [o.holder_name for o in resolved.observations] == ["A"]

    def test_no_match_reports_alternates(self):
        observations = [
            make_observation("A", "2019-01-01", org_name="Diputació de Barcelona", org_id="1"),
            make_observation("B", "2019-01-01", org_name="Ajuntament de Tarragona", org_id="2"),
        ]
        resolved = match_organization("Diputacio Tarragona", observations)

        assert resolved.match.matched is False
        assert resolved.observations == []
        assert set(resolved.match.alternates) == {"Diputació de Barcelona", "Ajuntament de Tarragona"}

    def test_at_most_three_alternates(self):
        observations = [
            make_observation("A", "2019-01-01", org_name=f"Consell Comarcal {n}", org_id=str(n))
            for n in ("Alt Camp", "Alt Empordà", "Alt Penedès", "Alt Urgell", "Alta Ribagorça")
        ]
        resolved = match_organization("Consorci Alt", observations)
        assert resolved.match.matched is False
        assert len(resolved.match.alternates) <= 3

    def test_empty_candidates(self):
        resolved = match_organization("Ajuntament de Girona", [])
        assert resolved.match.matched is False
        assert resolved.match.alternates == []


class TestInferTenures:
    """Tests for succession inference."""

    SEAT = OfficeSeat(org_id="1707920004", title="Alcalde", disambiguator="_")

    def test_successor_ends_previous_tenure(self):
        timeline = [
            make_observation("Marta Madrenas i Mir", "2019-01-01"),
            make_observation("Lluc Salellas i Vilar", "2022-06-15"),
        ]
        first, second = infer_tenures(self.SEAT, timeline)

        assert first.holder_name == "Marta Madrenas i Mir"
        assert first.end_date == date(2022, 6, 14)
        assert first.end_inferred_by == "successor"
        assert second.end_date is None
        assert second.end_inferred_by == "open"

    def test_reappointment_is_not_a_successor(self):
        timeline = [
            make_observation("Joan Puig i Soler", "2015-06-13"),
            make_observation("Joan Puig Soler", "2019-06-15"),
            make_observation("Anna Vidal Roca", "2023-06-17"),
        ]
        periods = infer_tenures(self.SEAT, timeline)

        assert [p.end_date for p in periods] == [date(2023, 6, 16), date(2023, 6, 16), None]

    def test_undated_subject_is_unknown(self):
        (period,) = infer_tenures(self.SEAT, [make_observation("Joan Puig", None)])
        assert period.end_inferred_by == "unknown"
        assert period.start_date is None
        assert period.end_date is None

    def test_undated_duplicate_of_dated_holder_is_dropped(self):
        timeline = [make_observation("Joan Puig", None), make_observation("Joan Puig", "2019-06-15")]
        (period,) = infer_tenures(self.SEAT, timeline)
        assert period.start_date == date(2019, 6, 15)

    def test_end_never_precedes_start(self):
        timeline = [
            make_observation("A Person", "2019-06-15"),
            make_observation("Other Holder", "2019-06-16"),
            make_observation("Third Holder", "2019-06-15"),
        ]
        for period in infer_tenures(self.SEAT, timeline):
            if period.end_date is not None:
                assert period.end_date >= period.start_date


class TestOfficeService:
    """Tests for OfficeService against a fake feed."""

    @pytest.mark.asyncio
    async def test_current_holders(self, state):
        feed = FakeFeed(lambda params: GIRONA_ROWS)
        service = OfficeService(feed, state)

        page = await service.resolve_current_office_holders("Ajuntament de Girona")

        assert page.organization.matched is True
        assert page.total == 2
        assert [h.observation.holder_name for h in page.rows] == [
            "Lluc Salellas i Vilar",
            "Gemma Geis i Carreras",
        ]
        assert len(feed.calls) == 1
        assert "upper(nom_complert) = upper(" in feed.calls[0]["$where"]

    @pytest.mark.asyncio
    async def test_pagination_is_clamped_and_resolution_cached(self, state):
        feed = FakeFeed(lambda params: GIRONA_ROWS)
        service = OfficeService(feed, state)

        page = await service.resolve_current_office_holders("Ajuntament de Girona", page=99, page_size=1)

        assert page.page == 2
        assert page.page_size == 1
        assert [h.observation.holder_name for h in page.rows] == ["Gemma Geis i Carreras"]

        await service.resolve_current_office_holders("AJUNTAMENT DE GIRONA", page=1, page_size=500)
        assert len(feed.calls) == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_token_filter(self, state):
        def responder(params):
            return [] if " = upper(" in params["$where"] else GIRONA_ROWS

        feed = FakeFeed(responder)
        service = OfficeService(feed, state)

        page = await service.resolve_current_office_holders("Girona Ajuntament")

        assert page.organization.matched is True
        assert len(feed.calls) == 2
        assert "like" in feed.calls[1]["$where"]

    @pytest.mark.asyncio
    async def test_unmatched_organization(self, state):
        rows = [feed_row("A", "2019-01-01", org_name="Diputació de Barcelona", org_id="1")]
        service = OfficeService(FakeFeed(lambda params: rows), state)

        page = await service.resolve_current_office_holders("Diputacio Tarragona")

        assert page.organization.matched is False
        assert page.organization.alternates == ["Diputació de Barcelona"]
        assert page.rows == []
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_short_query_skips_feed(self, state):
        feed = FakeFeed(lambda params: GIRONA_ROWS)
        service = OfficeService(feed, state)

        page = await service.resolve_current_office_holders(" G ")

        assert page.organization.matched is False
        assert feed.calls == []

    @pytest.mark.asyncio
    async def test_access_blocked_backs_off(self, state, fake_clock):
        feed = FakeFeed(lambda params: AccessBlocked("403 Forbidden"))
        service = OfficeService(feed, state)

        first = await service.resolve_current_office_holders("Ajuntament de Girona")
        second = await service.resolve_office_tenures("Ajuntament de Girona")

        assert first.organization.matched is False
        assert second.periods == []
        assert len(feed.calls) == 1

        fake_clock.advance(120)
        await service.resolve_current_office_holders("Ajuntament de Girona")
        assert len(feed.calls) == 2

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, state):
        outcomes = [QueryFailure("timeout"), GIRONA_ROWS]
        feed = FakeFeed(lambda params: outcomes.pop(0))
        service = OfficeService(feed, state)

        failed = await service.resolve_current_office_holders("Ajuntament de Girona")
        recovered = await service.resolve_current_office_holders("Ajuntament de Girona")

        assert failed.organization.matched is False
        assert recovered.organization.matched is True

    @pytest.mark.asyncio
    async def test_office_tenures(self, state):
        service = OfficeService(FakeFeed(lambda params: GIRONA_ROWS), state)

        tenures = await service.resolve_office_tenures("Ajuntament de Girona")

        by_holder = {p.holder_name: p for p in tenures.periods}
        assert by_holder["Marta Madrenas i Mir"].end_date == date(2023, 6, 16)
        assert by_holder["Carles Puigdemont i Casamajó"].end_date == date(2016, 3, 9)
        assert by_holder["Lluc Salellas i Vilar"].end_inferred_by == "open"
        assert tenures.periods[0].start_date == date(2023, 6, 17)

    @pytest.mark.asyncio
    async def test_public_office_profile(self, state):
        person_rows = [
            feed_row("Joan Puig Soler", "2019-06-15", title="Regidor", ordinal=3, org_name="Ajuntament de Salt", org_id="7"),
            feed_row("Joan Puig Soler", "2015-06-13", title="Regidor", ordinal=3, org_name="Ajuntament de Salt", org_id="7"),
            feed_row("Pere Soler Vidal", "2019-06-15", title="Regidor", ordinal=4, org_name="Ajuntament de Salt", org_id="7"),
        ]
        timeline_rows = person_rows[:2] + [
            feed_row("Anna Vidal Roca", "2021-02-01", title="Regidor", ordinal=3, org_name="Ajuntament de Salt", org_id="7"),
        ]

        def responder(params):
            return timeline_rows if params["$select"] == TIMELINE_FIELDS else person_rows

        feed = FakeFeed(responder)
        service = OfficeService(feed, state)

        profile = await service.fetch_public_office_profile("Joan Puig Soler")

        assert profile.matched_names == ["Joan Puig Soler"]
        assert [p.start_date for p in profile.periods] == [date(2019, 6, 15), date(2015, 6, 13)]
        assert all(p.end_date == date(2021, 1, 31) for p in profile.periods)
        assert all(p.end_inferred_by == "successor" for p in profile.periods)
        assert all(p.match_score == 1.0 for p in profile.periods)
        assert "IS NOT NULL" in feed.calls[-1]["$where"]

        await service.fetch_public_office_profile("joan puig soler")
        assert len(feed.calls) == 2

    @pytest.mark.asyncio
    async def test_public_office_profile_fuzzy_fallback(self, state):
        def responder(params):
            where = params["$where"]
            if params["$select"] == TIMELINE_FIELDS:
                return []
            if " OR " in where:
                return [feed_row("Joan Puig Soler", None, title="Regidor", org_name="Ajuntament de Salt", org_id="7")]
            return []

        feed = FakeFeed(responder)
        service = OfficeService(feed, state)

        profile = await service.fetch_public_office_profile("Joan Puig Soler")

        assert len(feed.calls) == 3
        (period,) = profile.periods
        assert period.end_inferred_by == "unknown"

    @pytest.mark.asyncio
    async def test_public_office_profile_no_match(self, state):
        service = OfficeService(FakeFeed(lambda params: []), state)
        profile = await service.fetch_public_office_profile("Nobody Here")
        assert profile.periods == []
        assert profile.matched_names == []

    @pytest.mark.asyncio
    async def test_timeline_failure_degrades_to_empty(self, state):
        rows = [feed_row("Joan Puig Soler", "2019-06-15", title="Regidor", ordinal=3)]

        def responder(params):
            return QueryFailure("timeout") if params["$select"] == TIMELINE_FIELDS else rows

        service = OfficeService(FakeFeed(responder), state)
        profile = await service.fetch_public_office_profile("Joan Puig Soler")
        assert profile.periods == []

    @pytest.mark.asyncio
    async def test_close(self, state):
        feed = FakeFeed(lambda params: [])
        await OfficeService(feed, state).close()
        assert feed.closed is True

    def test_singleton_pattern(self):
        import contractes.services.office_service as os_module

        os_module._office_service = None
        assert get_office_service() is get_office_service()
