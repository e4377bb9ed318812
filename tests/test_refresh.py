import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import FakeGateway, FixedRng
from country_api import crud, models
from country_api.errors import InternalError, SourceUnavailable
from country_api.services.image_generator import generate_summary_image
from country_api.services.refresh import RefreshOrchestrator

NOW = datetime(2025, 10, 22, 12, 0, tzinfo=timezone.utc)

COUNTRIES = [
    {"name": "Testland", "capital": "Test City", "region": "Test Region", "population": 1000,
     "flag": "http://flag", "currencies": [{"code": "TST"}]},
    {"name": "Nocurr", "capital": "None", "region": "Nowhere", "population": 500, "flag": None, "currencies": []},
    {"name": "Dollarland", "region": "Americas", "population": 1_000_000, "currencies": [{"code": "USD"}]},
    {"name": "", "population": 10},
    {"name": "Ghost", "population": None},
]


class RecordingRenderer:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, top, total, timestamp):
        self.calls.append(([c.name for c in top], total, timestamp))
        if self.error is not None:
            raise self.error
        return None


def make_orchestrator(session_factory, countries=COUNTRIES, rates=None, renderer=None, gateway=None):
    return RefreshOrchestrator(
        gateway or FakeGateway(countries, {"TST": 2.0} if rates is None else rates),
        session_factory,
        image_renderer=renderer or RecordingRenderer(),
        rng=FixedRng(1500),
        clock=lambda: NOW,
    )


def all_countries(session_factory):
    with session_factory() as db:
        return {c.name: c for c in db.query(models.Country).all()}


def make_file_db(path):
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    models.Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.mark.asyncio
async def test_refresh_inserts_records_and_metadata(session_factory):
    result = await make_orchestrator(session_factory).refresh()
    assert result == {"message": "Refresh completed", "last_refreshed_at": NOW.isoformat()}

    rows = all_countries(session_factory)
    assert set(rows) == {"Testland", "Nocurr", "Dollarland"}

    t = rows["Testland"]
    assert t.currency_code == "TST"
    assert t.exchange_rate == 2.0
    assert t.estimated_gdp == 1000 * 1500 / 2.0
    assert t.flag_url == "http://flag"

    n = rows["Nocurr"]
    assert n.currency_code is None
    assert n.exchange_rate is None
    assert n.estimated_gdp == 0

    d = rows["Dollarland"]
    assert d.currency_code == "USD"
    assert d.exchange_rate is None
    assert d.estimated_gdp is None

    # One timestamp shared by every row and the metadata
    assert {c.last_refreshed_at.replace(tzinfo=None) for c in rows.values()} == {NOW.replace(tzinfo=None)}
    with session_factory() as db:
        assert crud.get_last_refresh(db) == NOW.isoformat()


@pytest.mark.asyncio
async def test_empty_rates_store_null_rate_and_gdp(session_factory):
    countries = [{"name": "Dollarland", "population": 1_000_000, "currencies": [{"code": "USD"}]}]
    await make_orchestrator(session_factory, countries, rates={}).refresh()
    row = all_countries(session_factory)["Dollarland"]
    assert row.exchange_rate is None
    assert row.estimated_gdp is None


@pytest.mark.asyncio
async def test_refresh_twice_keeps_one_row_per_name(session_factory):
    countries = COUNTRIES + [{"name": "TESTLAND", "population": 2000, "currencies": [{"code": "TST"}]}]
    await make_orchestrator(session_factory, countries).refresh()
    await make_orchestrator(session_factory, countries).refresh()

    with session_factory() as db:
        assert crud.count_countries(db) == 3
        t = crud.get_country(db, "testland")
    # The later record in input order wins
    assert t.population == 2000


@pytest.mark.asyncio
async def test_refresh_updates_existing_row_case_insensitively(session_factory):
    with session_factory() as db:
        db.add(models.Country(name="testland", population=1, currency_code="OLD", estimated_gdp=9.0))
        db.commit()

    await make_orchestrator(session_factory).refresh()

    with session_factory() as db:
        rows = db.query(models.Country).filter(models.Country.name.ilike("testland")).all()
    assert len(rows) == 1
    assert rows[0].name == "Testland"
    assert rows[0].population == 1000
    assert rows[0].currency_code == "TST"


@pytest.mark.asyncio
async def test_source_failure_writes_nothing(session_factory):
    renderer = RecordingRenderer()
    orch = make_orchestrator(
        session_factory, renderer=renderer, gateway=FakeGateway(error=SourceUnavailable("restcountries"))
    )
    with pytest.raises(SourceUnavailable):
        await orch.refresh()

    assert all_countries(session_factory) == {}
    with session_factory() as db:
        assert crud.get_last_refresh(db) is None
    assert renderer.calls == []


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_whole_run(session_factory, monkeypatch):
    with session_factory() as db:
        db.add(models.Country(name="Prior", population=7))
        crud.set_last_refresh(db, "2020-01-01T00:00:00+00:00")
        db.commit()

    countries = [{"name": f"Country {i}", "population": i, "currencies": []} for i in range(1, 6)]
    real_upsert = crud.upsert_country
    calls = []

    def flaky_upsert(db, values):
        calls.append(values["name"])
        if len(calls) == 3:
            raise RuntimeError("disk full")
        return real_upsert(db, values)

    monkeypatch.setattr(crud, "upsert_country", flaky_upsert)
    renderer = RecordingRenderer()

    with pytest.raises(InternalError):
        await make_orchestrator(session_factory, countries, renderer=renderer).refresh()

    assert len(calls) == 3
    assert set(all_countries(session_factory)) == {"Prior"}
    with session_factory() as db:
        assert crud.get_last_refresh(db) == "2020-01-01T00:00:00+00:00"
    assert renderer.calls == []


@pytest.mark.asyncio
async def test_renderer_gets_committed_summary(session_factory):
    renderer = RecordingRenderer()
    await make_orchestrator(session_factory, renderer=renderer).refresh()
    # Dollarland has no GDP; Nocurr has 0
    assert renderer.calls == [(["Testland", "Nocurr"], 3, "2025-10-22 12:00 UTC")]


@pytest.mark.asyncio
async def test_image_failure_does_not_fail_refresh(session_factory):
    renderer = RecordingRenderer(error=OSError("read-only filesystem"))
    result = await make_orchestrator(session_factory, renderer=renderer).refresh()
    assert result["message"] == "Refresh completed"
    assert len(all_countries(session_factory)) == 3


@pytest.mark.asyncio
async def test_refresh_writes_summary_png(session_factory, tmp_path):
    out = tmp_path / "summary.png"

    def render(top, total, timestamp):
        return generate_summary_image(top, total, timestamp, path=out)

    await make_orchestrator(session_factory, renderer=render).refresh()
    assert out.exists()
    assert out.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


@pytest.mark.asyncio
async def test_refresh_twice_with_non_ascii_name(session_factory):
    countries = [{"name": "Åland Islands", "population": 28875, "currencies": [{"code": "EUR"}]}]
    await make_orchestrator(session_factory, countries, rates={"EUR": 0.92}).refresh()
    await make_orchestrator(session_factory, countries, rates={"EUR": 0.92}).refresh()

    with session_factory() as db:
        assert crud.count_countries(db) == 1
        assert crud.get_country(db, "Åland Islands").population == 28875


@pytest.mark.asyncio
async def test_concurrent_refreshes_keep_one_row_per_name(tmp_path):
    # File database so each worker thread gets its own connection
    engine, SessionLocal = make_file_db(tmp_path / "refresh.db")
    first = [{"name": f"Country {i}", "population": i, "currencies": []} for i in range(20)]
    second = [{"name": f"COUNTRY {i}", "population": i * 2, "currencies": []} for i in range(10, 30)]
    try:
        results = await asyncio.gather(
            make_orchestrator(SessionLocal, first).refresh(),
            make_orchestrator(SessionLocal, second).refresh(),
        )
        assert [r["message"] for r in results] == ["Refresh completed", "Refresh completed"]
        with SessionLocal() as db:
            names = [c.name.lower() for c in db.query(models.Country).all()]
        assert len(names) == 30
        assert len(set(names)) == 30
    finally:
        engine.dispose()


@pytest.mark.asyncio
async def test_names_are_stored_as_received(session_factory):
    countries = [{"name": " Kenya ", "population": 10, "currencies": []}]
    await make_orchestrator(session_factory, countries).refresh()
    assert set(all_countries(session_factory)) == {" Kenya "}
