# backend/tests/conftest.py
import pytest
from httpx import ASGITransport, AsyncClient

from backend.tests.fakes import FakeDB, make_fake_get_prices

FAKE_DB = FakeDB()


# ─────────────────────────────
# Pytest fixtures
# ─────────────────────────────
@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def app_module():
    """
    Patch the app's database to use the in-memory fake BEFORE the app reads it.
    """
    from backend.app import database as dbmod
    from backend.app import main

    setattr(dbmod, "db", FAKE_DB)
    setattr(main, "db", FAKE_DB)
    return main


@pytest.fixture
def live_prices():
    """Mutable SYMBOL -> price table served by the patched price fetcher."""
    return {"BTC": 110.0, "ETH": 2000.0}


@pytest.fixture(autouse=True)
def fake_env(app_module, live_prices, monkeypatch):
    """
    Fresh collections, a cold price cache and a fake price feed for every test.
    """
    FAKE_DB.clear()
    app_module.app.state.price_cache.invalidate()
    fetcher = make_fake_get_prices(live_prices)
    monkeypatch.setattr(app_module, "get_prices", fetcher)
    yield fetcher
    app_module.app.state.price_cache.invalidate()


@pytest.fixture
def fake_db():
    return FAKE_DB


@pytest.fixture
async def async_client(app_module):
    transport = ASGITransport(app=app_module.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
