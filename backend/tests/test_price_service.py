# backend/tests/test_price_service.py

import threading

import pytest

from backend.app import price_service
from backend.app.price_service import get_prices, ticker_for


class _FakeTicker:
    table = {
        "BTC-USD": ({"last_price": 110.0, "previous_close": 100.0}, {}),
        "UNI7083-USD": ({}, {"regularMarketPrice": 8.0, "regularMarketPreviousClose": 10.0}),
        "DEAD-USD": ({}, {}),
    }

    def __init__(self, ticker):
        if ticker == "BOOM-USD":
            raise RuntimeError("network down")
        self.fast_info, self.info = self.table.get(ticker, ({}, {}))


def test_ticker_for():
    assert ticker_for("btc") == "BTC-USD"
    assert ticker_for("UNI") == "UNI7083-USD"
    assert ticker_for("eth", "EUR") == "ETH-EUR"


@pytest.mark.anyio
async def test_get_prices_tolerates_per_symbol_failures(monkeypatch):
    monkeypatch.setattr(price_service.yf, "Ticker", _FakeTicker)

    out = await get_prices(["btc", "UNI", "DEAD", "BOOM"])

    assert set(out) == {"BTC", "UNI"}
    assert out["BTC"].price == 110.0
    assert out["BTC"].change_24h == pytest.approx(10.0)
    assert out["UNI"].price == 8.0
    assert out["UNI"].change_24h == pytest.approx(-20.0)


@pytest.mark.anyio
async def test_lookups_run_off_the_event_loop_thread(monkeypatch):
    seen = []

    class _RecordingTicker(_FakeTicker):
        def __init__(self, ticker):
            seen.append(threading.get_ident())
            super().__init__(ticker)

    monkeypatch.setattr(price_service.yf, "Ticker", _RecordingTicker)

    out = await get_prices(["BTC", "UNI"])

    assert set(out) == {"BTC", "UNI"}
    assert len(seen) == 2
    assert threading.get_ident() not in seen
