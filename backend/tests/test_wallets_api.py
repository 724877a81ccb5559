# backend/tests/test_wallets_api.py

import pytest


async def _open(client, size, exchange):
    resp = await client.post(
        "/trades",
        json={
            "coin": "BTC",
            "trade_type": "LONG",
            "entry_price": 100,
            "position_size": size,
            "leverage": 3,
            "exchange": exchange,
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["_id"]


@pytest.mark.anyio
async def test_wallet_crud_and_lookup(async_client):
    resp = await async_client.post("/wallets", json={"exchange_name": "Binance", "total_balance": "1000"})
    assert resp.status_code == 200, resp.text
    wallet = resp.json()
    wid = wallet["_id"]
    assert wallet["total_balance"] == 1000.0

    dup = await async_client.post("/wallets", json={"exchange_name": "binance", "total_balance": 5})
    assert dup.status_code == 409

    assert (await async_client.get(f"/wallets/{wid}")).json()["exchange_name"] == "Binance"
    assert (await async_client.get("/wallets/exchange/BINANCE")).json()["_id"] == wid
    assert (await async_client.get("/wallets/exchange/kraken")).status_code == 404

    upd = await async_client.put(f"/wallets/{wid}", json={"total_balance": 1500, "notes": "topped up"})
    assert upd.status_code == 200
    assert upd.json()["total_balance"] == 1500.0
    assert upd.json()["notes"] == "topped up"

    assert (await async_client.delete(f"/wallets/{wid}")).status_code == 200
    assert (await async_client.get(f"/wallets/{wid}")).status_code == 404
    assert (await async_client.delete(f"/wallets/{wid}")).status_code == 404


@pytest.mark.anyio
async def test_rename_cannot_clash(async_client):
    await async_client.post("/wallets", json={"exchange_name": "Binance", "total_balance": 1})
    bybit = (await async_client.post("/wallets", json={"exchange_name": "Bybit", "total_balance": 1})).json()
    resp = await async_client.put(f"/wallets/{bybit['_id']}", json={"exchange_name": "BINANCE"})
    assert resp.status_code == 409
    resp = await async_client.put(f"/wallets/{bybit['_id']}", json={"exchange_name": "bybit"})
    assert resp.status_code == 200


@pytest.mark.anyio
async def test_rename_to_blank_is_rejected(async_client):
    wallet = (await async_client.post("/wallets", json={"exchange_name": "Kraken", "total_balance": 1})).json()
    resp = await async_client.put(f"/wallets/{wallet['_id']}", json={"exchange_name": "   "})
    assert resp.status_code == 422
    assert (await async_client.get(f"/wallets/{wallet['_id']}")).json()["exchange_name"] == "Kraken"


@pytest.mark.anyio
async def test_wallet_summaries(async_client):
    binance = (await async_client.post("/wallets", json={"exchange_name": "Binance", "total_balance": 1000})).json()
    await async_client.post("/wallets", json={"exchange_name": "Bybit", "total_balance": 250, "notes": "alt"})

    await _open(async_client, 200, "binance")
    await _open(async_client, 150, "Binance")
    closed = await _open(async_client, 400, "Binance")
    await async_client.patch(f"/trades/{closed}/close", json={"exit_price": 101, "close_reason": "MANUAL"})

    s = (await async_client.get(f"/wallets/{binance['_id']}/summary")).json()
    assert s["used_balance"] == pytest.approx(350.0)
    assert s["available_balance"] == pytest.approx(650.0)
    assert s["open_trades_count"] == 2

    by_name = {w["exchange_name"]: w for w in (await async_client.get("/wallets/summaries")).json()}
    assert by_name["Bybit"]["used_balance"] == 0.0
    assert by_name["Bybit"]["available_balance"] == pytest.approx(250.0)

    assert (await async_client.get("/wallets/total-balance")).json() == pytest.approx(1250.0)
