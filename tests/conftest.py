"""Pytest fixtures for the contractes linker tests.

Provides the API test client, a manually advanced clock for cache and
backoff expiry, and in-memory registry stores in the current and legacy
schema shapes.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from contractes.main import app
from contractes.models import OfficeObservation, parse_iso_date


class FakeClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


PERSONS = [
    # person_name, num_companies, num_companies_with_nif, active_spans, total_spans
    ("LAPORTA ESTRUCH JOAN", 3, 1, 2, 4),
    ("LAPORTA JOAN", 1, 0, 0, 1),
    ("GARCIA PUIG MARIA", 1, 1, 0, 1),
    ("PUIG GARCIA JOAN", 2, 2, 1, 3),
]

COMPANIES = [
    (1, "FUTBOL CLUB SL", "FUTBOL CLUB SL", "B12345678"),
    (2, "FUTBOL CLUB S.L.", "FUTBOL CLUB SL", "B12345678"),
    (3, "ESTRUCH ADVOCATS SL", None, None),
]

SPANS = [
    # company_id, person_name, relation_type, role_title_raw, role_title_code, start, end, source
    (1, "LAPORTA ESTRUCH JOAN", "ADMINISTRADOR", "Adm. Unico", "ADM_UNICO", "2015-01-10", None, "BORME-A-2015-7-08"),
    (1, "LAPORTA ESTRUCH JOAN", "APODERADO", "Apoderado", "APO", "2010-03-01", "2014-12-31", "BORME-A-2010-41-08"),
    (2, "LAPORTA ESTRUCH JOAN", "ORGANO_GOBIERNO", "Consejero", "CONS", "2018-05-05", None, "BORME-A-2018-86-08"),
    (3, "LAPORTA ESTRUCH JOAN", "SOCIO", None, None, "2005-01-01", "2009-01-01", "BORME-A-2005-2-08"),
    (3, "LAPORTA ESTRUCH JOAN", "AUDITOR", "Auditor", "AUD", "2006-01-01", None, "BORME-A-2006-3-08"),
    (1, "GARCIA PUIG MARIA", "ADMINISTRADOR", "Adm. Unico", "ADM_UNICO", "2012-01-01", "2015-01-09", "BORME-A-2012-1-08"),
]


def build_registry_engine(*, fts: bool = True, role_titles: bool = True):
    """In-memory registry store, optionally without the FTS index or title columns."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    title_columns = "role_title_raw TEXT, role_title_code TEXT," if role_titles else ""

    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE person_summary (person_name TEXT, person_name_norm TEXT, "
            "num_companies INTEGER, num_companies_with_nif INTEGER, "
            "active_spans INTEGER, total_spans INTEGER)"
        ))
        conn.execute(text(
            "CREATE TABLE companies (id INTEGER PRIMARY KEY, company_name TEXT, "
            "matched_name TEXT, nif TEXT)"
        ))
        conn.execute(text(
            f"CREATE TABLE admin_spans (company_id INTEGER, person_name TEXT, relation_type TEXT, "
            f"{title_columns} date_start TEXT, date_end TEXT, source_pdf_start TEXT)"
        ))

        for name, companies, with_nif, active, total in PERSONS:
            conn.execute(
                text("INSERT INTO person_summary VALUES (:n, :n, :c, :w, :a, :t)"),
                {"n": name, "c": companies, "w": with_nif, "a": active, "t": total},
            )
        for company in COMPANIES:
            conn.execute(
                text("INSERT INTO companies VALUES (:id, :name, :matched, :nif)"),
                dict(zip(("id", "name", "matched", "nif"), company)),
            )
        for company_id, person, kind, title_raw, title_code, start, end, source in SPANS:
            params = {
                "company_id": company_id,
                "person": person,
                "kind": kind,
                "start": start,
                "end": end,
                "source": source,
            }
            if role_titles:
                conn.execute(
                    text(
                        "INSERT INTO admin_spans VALUES (:company_id, :person, :kind, "
                        ":title_raw, :title_code, :start, :end, :source)"
                    ),
                    {**params, "title_raw": title_raw, "title_code": title_code},
                )
            else:
                conn.execute(
                    text(
                        "INSERT INTO admin_spans VALUES (:company_id, :person, :kind, "
                        ":start, :end, :source)"
                    ),
                    params,
                )

        if fts:
            try:
                conn.execute(text("CREATE VIRTUAL TABLE person_summary_fts USING fts5(person_name)"))
            except OperationalError:
                pytest.skip("SQLite build lacks FTS5")
            conn.execute(text(
                "INSERT INTO person_summary_fts(rowid, person_name) "
                "SELECT rowid, person_name_norm FROM person_summary"
            ))

    return engine


def make_observation(
    holder: str,
    start: str | None,
    *,
    title: str = "Alcalde",
    org_id: str = "1707920004",
    org_name: str = "Ajuntament de Girona",
    ordinal: int | None = None,
    area: str | None = None,
    party: str | None = None,
) -> OfficeObservation:
    return OfficeObservation(
        org_id=org_id,
        org_name=org_name,
        title=title,
        holder_name=holder,
        ordinal=ordinal,
        area=area,
        party=party,
        start_date=parse_iso_date(start),
    )


def feed_row(
    holder: str,
    start: str | None,
    *,
    title: str = "Alcalde",
    org_id: str = "1707920004",
    org_name: str = "Ajuntament de Girona",
    ordinal: int | None = None,
    area: str | None = None,
    party: str | None = None,
) -> dict:
    """Office feed row as returned by the Socrata API."""
    row = {
        "codi_ens": org_id,
        "nom_complert": org_name,
        "carrec": title,
        "nom_regidor": holder,
    }
    if ordinal is not None:
        row["ordre"] = str(ordinal)
    if area is not None:
        row["area"] = area
    if party is not None:
        row["partit"] = party
    if start is not None:
        row["data_nomenament"] = f"{start}T00:00:00.000"
    return row


@pytest.fixture
def client():
    """Create a test client for the FastAPI application.

    Returns:
        TestClient: A test client instance for making requests to the API.
    """
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def registry_engine():
    engine = build_registry_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def legacy_registry_engine():
    """Store without the FTS index and without role title columns."""
    engine = build_registry_engine(fts=False, role_titles=False)
    yield engine
    engine.dispose()
