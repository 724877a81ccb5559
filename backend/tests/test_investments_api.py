# backend/tests/test_investments_api.py

import pytest


async def _trade(client, **overrides):
    payload = {
        "coin": "ETH",
        "trade_type": "LONG",
        "entry_price": 10,
        "position_size": 100,
        "leverage": 5,
    }
    payload.update(overrides)
    resp = await client.post("/trades", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()["_id"]


@pytest.mark.anyio
async def test_investment_weighted_valuation(async_client, live_prices):
    live_prices["ETH"] = 30.0
    tid = await _trade(async_client)

    r1 = await async_client.post(
        f"/trades/{tid}/investments",
        json={"amount": 100, "price_at_investment": 10, "investment_date": "2024-01-01T00:00:00Z"},
    )
    r2 = await async_client.post(
        f"/trades/{tid}/investments",
        json={"amount": "200", "price_at_investment": "20,0", "investment_date": "2024-02-01T00:00:00Z",
              "notes": "dip buy"},
    )
    assert r1.status_code == 200, r1.text
    assert r2.status_code == 200, r2.text
    assert r2.json()["trade_id"] == tid

    v = (await async_client.get(f"/trades/{tid}/valuation")).json()
    assert v["mode"] == "investments"
    assert v["total_invested"] == pytest.approx(300.0)
    assert v["current_value"] == pytest.approx(600.0)
    assert v["pnl"] == pytest.approx(300.0)
    assert v["pnl_percent"] == pytest.approx(100.0)
    assert v["missed_pnl"] is None

    # newest first, each marked to the live price
    rows = (await async_client.get(f"/trades/{tid}/investments")).json()
    assert [r["notes"] for r in rows] == ["dip buy", None]
    assert [r["current_value"] for r in rows] == pytest.approx([300.0, 300.0])
    assert [r["profit_loss"] for r in rows] == pytest.approx([100.0, 200.0])

    assert (await async_client.get(f"/trades/{tid}/investments/total")).json() == pytest.approx(300.0)

    # the trade's size follows its investments
    trade = (await async_client.get(f"/trades/{tid}")).json()
    assert trade["position_size"] == pytest.approx(300.0)
    assert trade["valuation"]["mode"] == "investments"


@pytest.mark.anyio
async def test_update_and_delete_investment(async_client):
    tid = await _trade(async_client)
    inv = (await async_client.post(f"/trades/{tid}/investments", json={"amount": 50, "price_at_investment": 10})).json()
    await async_client.post(f"/trades/{tid}/investments", json={"amount": 70, "price_at_investment": 10})

    upd = await async_client.put(f"/trades/{tid}/investments/{inv['_id']}", json={"amount": 80})
    assert upd.status_code == 200
    assert upd.json()["amount"] == 80.0
    assert (await async_client.get(f"/trades/{tid}")).json()["position_size"] == pytest.approx(150.0)

    bad = await async_client.put(f"/trades/{tid}/investments/{inv['_id']}", json={"price_at_investment": 0})
    assert bad.status_code == 422

    assert (await async_client.delete(f"/trades/{tid}/investments/{inv['_id']}")).status_code == 200
    assert (await async_client.get(f"/trades/{tid}/investments/total")).json() == pytest.approx(70.0)
    assert (await async_client.delete(f"/trades/{tid}/investments/{inv['_id']}")).status_code == 404


@pytest.mark.anyio
async def test_investment_must_belong_to_trade(async_client):
    tid = await _trade(async_client)
    other = await _trade(async_client, coin="BTC")
    inv = (await async_client.post(f"/trades/{tid}/investments", json={"amount": 50, "price_at_investment": 10})).json()

    resp = await async_client.put(f"/trades/{other}/investments/{inv['_id']}", json={"amount": 1})
    assert resp.status_code == 404
    assert (await async_client.get("/trades/missing/investments")).status_code == 404
    resp = await async_client.post("/trades/missing/investments", json={"amount": 1, "price_at_investment": 1})
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_closed_trade_rejects_investment_changes(async_client):
    tid = await _trade(async_client)
    inv = (await async_client.post(f"/trades/{tid}/investments", json={"amount": 50, "price_at_investment": 10})).json()
    await async_client.patch(f"/trades/{tid}/close", json={"exit_price": 12, "close_reason": "TP_HIT"})

    resp = await async_client.post(f"/trades/{tid}/investments", json={"amount": 5, "price_at_investment": 10})
    assert resp.status_code == 409
    assert (await async_client.delete(f"/trades/{tid}/investments/{inv['_id']}")).status_code == 409


@pytest.mark.anyio
async def test_deleting_trade_removes_its_investments(async_client, fake_db):
    tid = await _trade(async_client)
    await async_client.post(f"/trades/{tid}/investments", json={"amount": 50, "price_at_investment": 10})
    await async_client.delete(f"/trades/{tid}")
    assert await fake_db.investments.find({"trade_id": tid}).to_list(None) == []


@pytest.mark.anyio
async def test_closed_trade_missed_pnl(async_client, live_prices):
    live_prices["ETH"] = 15.0
    tid = await _trade(async_client, leverage=1)
    await async_client.patch(f"/trades/{tid}/close", json={"exit_price": 12, "close_reason": "MANUAL"})

    v = (await async_client.get(f"/trades/{tid}/valuation")).json()
    assert v["price_source"] == "exit"
    assert v["pnl"] == pytest.approx(20.0)
    assert v["missed_pnl"] == pytest.approx(30.0)
