# frontend/tests/test_frontend_helpers.py
from datetime import datetime, timedelta, timezone

import pytest

from frontend.app import _blend, closed_fields, fmt2, fmt_date, fmt_money, fmt_price, pnl_style, trade_row


@pytest.mark.parametrize(
    "amount,expected",
    [(1234.5, "$1,234.50"), (-50, "-$50.00"), (0, "$0.00"), (None, "—")],
)
def test_fmt_money(amount, expected):
    assert fmt_money(amount) == expected


def test_fmt_money_other_currency():
    assert fmt_money(10, "EUR") == "10.00 EUR"


def test_fmt2_tolerates_junk():
    assert fmt2("3.14159") == "3.14"
    assert fmt2(None) == "0.00"
    assert fmt2("abc") == "0.00"


def test_fmt_price_keeps_small_prices_readable():
    assert fmt_price(65000) == "65,000.00"
    assert fmt_price(0.000012) == "0.000012"
    assert fmt_price(None) == "—"


def test_fmt_date():
    assert fmt_date("2024-03-10T12:00:00Z") == "2024-03-10 12:00"
    assert fmt_date(None) == "—"
    assert fmt_date("yesterday") == "yesterday"


def test_blend_endpoints():
    assert _blend("#000000", "#ffffff", 0) == "#000000"
    assert _blend("#000000", "#ffffff", 1) == "#ffffff"
    assert _blend("#000000", "#ffffff", 5) == "#ffffff"


def test_pnl_style_pivots_at_zero():
    assert "#d93025" in pnl_style(-100, -100, 50)
    assert "#34a853" in pnl_style(50, -100, 50)
    assert "#fbbc04" in pnl_style(0, -100, 50)
    assert "#e9ecef" in pnl_style(None, -100, 50)


def test_trade_row_reads_backend_valuation():
    trade = {
        "_id": "t1",
        "coin": "BTC",
        "trade_type": "LONG",
        "status": "OPEN",
        "entry_price": 100.0,
        "position_size": 1000.0,
        "leverage": 10,
        "exchange": None,
        "trade_date": "2024-03-10T12:00:00",
        "valuation": {"current_price": 110.0, "current_value": 2000.0, "pnl": 1000.0, "pnl_percent": 100.0},
    }
    row = trade_row(trade)
    assert row["Price"] == "110.00"
    assert row["Value"] == "$2,000.00"
    assert row["P&L"] == 1000.0
    assert row["P&L %"] == "100.00%"
    assert row["Exchange"] == "—"


def test_trade_row_without_valuation():
    row = trade_row({"_id": "x", "coin": "BTC", "trade_type": "LONG", "status": "OPEN", "valuation": None})
    assert row["P&L"] is None
    assert row["P&L %"] == "—"
    assert row["Value"] == "—"


def test_closed_fields_stamp_an_aware_utc_close_date():
    fields = closed_fields("2100,5", "TP_HIT")
    assert fields["status"] == "CLOSED"
    assert fields["exit_price"] == "2100,5"
    closed_at = datetime.fromisoformat(fields["close_date"])
    assert closed_at.utcoffset() == timedelta(0)
    assert abs(datetime.now(timezone.utc) - closed_at) < timedelta(minutes=1)
