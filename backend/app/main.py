# backend/app/main.py
from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .calc import missed_pnl, resolve_current_price, valuate_investment, valuate_trade
from .config import CORS_ORIGINS, LOG_LEVEL, PRICE_CACHE_TTL, PRICE_MISS_TTL
from .database import db
from .errors import InvalidTradeError, ValuationError
from .models import (
    CloseReason,
    CloseTradeRequest,
    InvestmentCreate,
    InvestmentModel,
    InvestmentUpdate,
    PortfolioSummary,
    PriceQuote,
    TradeCreate,
    TradeModel,
    TradeStatus,
    TradeType,
    TradeUpdate,
    TradeValuation,
    ValuationErrorModel,
    WalletCreate,
    WalletModel,
    WalletSummary,
    WalletUpdate,
)
from .price_cache import PriceCache
from .price_service import get_prices
from .summary import aggregate, as_utc, live_price_for, total_balance, wallet_summary

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Trade Journal Backend")
app.state.price_cache = PriceCache(ttl=PRICE_CACHE_TTL, miss_ttl=PRICE_MISS_TTL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ──────────────────────────
# Helpers
# ──────────────────────────
def _oid(s: Union[str, ObjectId]) -> Union[ObjectId, str]:
    if isinstance(s, ObjectId):
        return s
    return ObjectId(s) if ObjectId.is_valid(s) else s


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stringify_id(d: Dict[str, Any] | None) -> Dict[str, Any] | None:
    if d is None:
        return None
    out: Dict[str, Any] = dict(d)
    if "_id" in out and isinstance(out["_id"], ObjectId):
        out["_id"] = str(out["_id"])
    return out


def _plain(d: Dict[str, Any]) -> Dict[str, Any]:
    """Enum members -> their values, so documents store plain strings."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in d.items()}


def _trade_model(doc: Dict[str, Any]) -> Optional[TradeModel]:
    try:
        return TradeModel(**_stringify_id(doc))
    except ValidationError as exc:
        logger.warning("Skipping unreadable trade %s: %s", doc.get("_id"), exc)
        return None


def _investment_model(doc: Dict[str, Any]) -> InvestmentModel:
    return InvestmentModel(**_stringify_id(doc))


async def _live_quotes(symbols: List[str]) -> Dict[str, PriceQuote]:
    if not symbols:
        return {}
    try:
        return await app.state.price_cache.get_prices(symbols, get_prices)
    except Exception as exc:
        logger.warning("Live price fetch failed for %s: %s", symbols, exc)
        return {}


async def _get_trade_doc(trade_id: str) -> Dict[str, Any]:
    doc = await db.trades.find_one({"_id": _oid(trade_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Trade not found")
    return doc


async def _investments_for(trade_id: str) -> List[InvestmentModel]:
    docs = await db.investments.find({"trade_id": trade_id}).sort("investment_date", -1).to_list(None)
    return [_investment_model(d) for d in docs]


async def _sync_position_size(trade_id: str) -> None:
    # A trade scaled in through investments carries their total as its size
    investments = await _investments_for(trade_id)
    if not investments:
        return
    total = sum(float(i.amount or 0.0) for i in investments)
    await db.trades.update_one(
        {"_id": _oid(trade_id)}, {"$set": {"position_size": total, "updated_at": _now()}}
    )


def _with_valuation(
    trade: TradeModel,
    quotes: Dict[str, PriceQuote],
    investments: List[InvestmentModel] | None = None,
) -> TradeModel:
    quote = quotes.get(trade.coin)
    trade.live_price = quote.price if quote else None
    trade.change_24h = quote.change_24h if quote else None
    try:
        trade.valuation = valuate_trade(trade, investments or [], trade.live_price)
    except ValuationError as exc:
        logger.warning("Cannot value trade %s: %s", trade.id, exc.message)
        trade.valuation = None
    return trade


async def _valued_trades(docs: List[Dict[str, Any]]) -> List[TradeModel]:
    trades = [t for t in (_trade_model(d) for d in docs) if t is not None]
    quotes = await _live_quotes(sorted({t.coin for t in trades}))

    ids = [t.id for t in trades]
    inv_docs = await db.investments.find({"trade_id": {"$in": ids}}).to_list(None) if ids else []
    by_trade: Dict[str, List[InvestmentModel]] = {}
    for d in inv_docs:
        by_trade.setdefault(d["trade_id"], []).append(_investment_model(d))

    return [_with_valuation(t, quotes, by_trade.get(t.id)) for t in trades]


def _validated_trade(doc: Dict[str, Any]) -> TradeCreate:
    try:
        return TradeCreate(**doc)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


# ──────────────────────────
# Trades: collection views
# (declared before /trades/{trade_id} so the literal paths win)
# ──────────────────────────
@app.get("/trades", response_model=List[TradeModel])
async def read_trades():
    docs = await db.trades.find().sort("trade_date", -1).to_list(None)
    return await _valued_trades(docs)


@app.post("/trades", response_model=TradeModel)
async def create_trade(trade: TradeCreate):
    now = _now()
    doc = _plain(trade.model_dump())
    doc["trade_date"] = doc.get("trade_date") or now
    doc["created_at"] = now
    doc["updated_at"] = now

    res = await db.trades.insert_one(doc)
    logger.info("Created %s %s trade %s", doc["trade_type"], doc["coin"], res.inserted_id)
    new = await db.trades.find_one({"_id": res.inserted_id})
    return (await _valued_trades([new]))[0]


@app.get("/trades/summary", response_model=PortfolioSummary)
async def trades_summary():
    """
    Portfolio totals over every trade, with OPEN trades marked to live prices.
    Trades that cannot be valued are listed under ``errors``.
    """
    docs = await db.trades.find().to_list(None)
    trades: List[TradeModel] = []
    unreadable: List[ValuationErrorModel] = []
    for d in docs:
        trade = _trade_model(d)
        if trade is None:
            unreadable.append(
                ValuationErrorModel(
                    kind=InvalidTradeError.__name__,
                    message="stored trade record cannot be read",
                    trade_id=str(d.get("_id")),
                )
            )
        else:
            trades.append(trade)

    quotes = await _live_quotes(sorted({t.coin for t in trades if t.status == TradeStatus.OPEN}))
    summary = aggregate(trades, quotes)
    summary.errors.extend(unreadable)
    return summary


@app.get("/trades/coins", response_model=List[str])
async def trade_coins():
    docs = await db.trades.find().to_list(None)
    return sorted({d["coin"].upper() for d in docs if d.get("coin")})


@app.get("/trades/exchanges", response_model=List[str])
async def trade_exchanges():
    docs = await db.trades.find().to_list(None)
    return sorted({d["exchange"] for d in docs if d.get("exchange")})


@app.get("/trades/coin/{coin}", response_model=List[TradeModel])
async def trades_by_coin(coin: str):
    docs = await db.trades.find({"coin": coin.upper()}).sort("trade_date", -1).to_list(None)
    return await _valued_trades(docs)


@app.get("/trades/status/{status}", response_model=List[TradeModel])
async def trades_by_status(status: TradeStatus):
    docs = await db.trades.find({"status": status.value}).sort("trade_date", -1).to_list(None)
    return await _valued_trades(docs)


@app.get("/trades/type/{trade_type}", response_model=List[TradeModel])
async def trades_by_type(trade_type: TradeType):
    docs = await db.trades.find({"trade_type": trade_type.value}).sort("trade_date", -1).to_list(None)
    return await _valued_trades(docs)


@app.get("/trades/date-range", response_model=List[TradeModel])
async def trades_by_date_range(start_date: date = Query(...), end_date: date = Query(...)):
    """Trades opened between the two days, both days included."""
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc)
    docs = await db.trades.find().sort("trade_date", -1).to_list(None)
    docs = [d for d in docs if d.get("trade_date") and start <= as_utc(d["trade_date"]) <= end]
    return await _valued_trades(docs)


# ──────────────────────────
# Trades: single trade
# ──────────────────────────
@app.get("/trades/{trade_id}", response_model=TradeModel)
async def read_trade(trade_id: str):
    doc = await _get_trade_doc(trade_id)
    return (await _valued_trades([doc]))[0]


@app.put("/trades/{trade_id}", response_model=TradeModel)
async def update_trade(trade_id: str, patch: TradeUpdate):
    existing = await _get_trade_doc(trade_id)
    if existing.get("status") == TradeStatus.CLOSED.value:
        raise HTTPException(status_code=409, detail="Closed trades cannot be edited")

    update_doc = patch.model_dump(exclude_unset=True)
    if update_doc:
        merged = _validated_trade({**_stringify_id(existing), **update_doc})
        update_doc = _plain({k: getattr(merged, k) for k in update_doc})
        update_doc["updated_at"] = _now()
        await db.trades.update_one({"_id": _oid(trade_id)}, {"$set": update_doc})

    doc = await _get_trade_doc(trade_id)
    return (await _valued_trades([doc]))[0]


@app.delete("/trades/{trade_id}")
async def delete_trade(trade_id: str):
    res = await db.trades.delete_one({"_id": _oid(trade_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Trade not found")
    await db.investments.delete_many({"trade_id": trade_id})
    logger.info("Deleted trade %s", trade_id)
    return {"ok": True}


@app.patch("/trades/{trade_id}/close", response_model=TradeModel)
async def close_trade(trade_id: str, req: CloseTradeRequest):
    existing = await _get_trade_doc(trade_id)
    if existing.get("status") == TradeStatus.CLOSED.value:
        raise HTTPException(status_code=409, detail="Trade is already closed")

    now = _now()
    await db.trades.update_one(
        {"_id": _oid(trade_id)},
        {
            "$set": {
                "status": TradeStatus.CLOSED.value,
                "exit_price": req.exit_price,
                "close_date": now,
                "close_reason": req.close_reason.value,
                "tp_hit": req.close_reason == CloseReason.TP_HIT,
                "liquidated": req.close_reason == CloseReason.LIQUIDATED,
                "updated_at": now,
            }
        },
    )
    logger.info("Closed trade %s at %s (%s)", trade_id, req.exit_price, req.close_reason.value)
    doc = await _get_trade_doc(trade_id)
    return (await _valued_trades([doc]))[0]


@app.get("/trades/{trade_id}/valuation", response_model=TradeValuation)
async def trade_valuation(trade_id: str):
    """
    Valuation of one trade (investment-weighted when it has investments),
    plus the missed P&L of a closed trade against today's price.
    """
    trade = _trade_model(await _get_trade_doc(trade_id))
    if trade is None:
        raise HTTPException(status_code=422, detail="Trade record is unreadable")
    investments = await _investments_for(trade_id)
    live = live_price_for(await _live_quotes([trade.coin]), trade.coin)
    try:
        valuation = valuate_trade(trade, investments, live)
        valuation.missed_pnl = missed_pnl(trade, live)
    except ValuationError as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc
    return valuation


# ──────────────────────────
# Investments
# ──────────────────────────
async def _open_trade_doc(trade_id: str) -> Dict[str, Any]:
    doc = await _get_trade_doc(trade_id)
    if doc.get("status") == TradeStatus.CLOSED.value:
        raise HTTPException(status_code=409, detail="Closed trades cannot take investment changes")
    return doc


async def _get_investment_doc(trade_id: str, investment_id: str) -> Dict[str, Any]:
    doc = await db.investments.find_one({"_id": _oid(investment_id), "trade_id": trade_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Investment not found")
    return doc


@app.get("/trades/{trade_id}/investments", response_model=List[InvestmentModel])
async def read_investments(trade_id: str):
    trade = _trade_model(await _get_trade_doc(trade_id))
    investments = await _investments_for(trade_id)
    if trade is None or not investments:
        return investments

    live = live_price_for(await _live_quotes([trade.coin]), trade.coin)
    try:
        price = resolve_current_price(trade, live)
    except ValuationError:
        return investments
    for inv in investments:
        try:
            v = valuate_investment(inv, price)
        except ValuationError:
            continue
        inv.current_value = v.current_value
        inv.profit_loss = v.pnl
    return investments


@app.get("/trades/{trade_id}/investments/total", response_model=float)
async def investments_total(trade_id: str):
    await _get_trade_doc(trade_id)
    return sum(float(i.amount or 0.0) for i in await _investments_for(trade_id))


@app.post("/trades/{trade_id}/investments", response_model=InvestmentModel)
async def add_investment(trade_id: str, investment: InvestmentCreate):
    await _open_trade_doc(trade_id)
    now = _now()
    doc = investment.model_dump()
    doc["trade_id"] = trade_id
    doc["investment_date"] = doc.get("investment_date") or now
    doc["created_at"] = now

    res = await db.investments.insert_one(doc)
    await _sync_position_size(trade_id)
    return _investment_model(await db.investments.find_one({"_id": res.inserted_id}))


@app.put("/trades/{trade_id}/investments/{investment_id}", response_model=InvestmentModel)
async def update_investment(trade_id: str, investment_id: str, patch: InvestmentUpdate):
    await _open_trade_doc(trade_id)
    await _get_investment_doc(trade_id, investment_id)

    update_doc = patch.model_dump(exclude_none=True)
    if update_doc:
        await db.investments.update_one({"_id": _oid(investment_id)}, {"$set": update_doc})
        await _sync_position_size(trade_id)
    return _investment_model(await _get_investment_doc(trade_id, investment_id))


@app.delete("/trades/{trade_id}/investments/{investment_id}")
async def delete_investment(trade_id: str, investment_id: str):
    await _open_trade_doc(trade_id)
    await _get_investment_doc(trade_id, investment_id)
    await db.investments.delete_one({"_id": _oid(investment_id)})
    await _sync_position_size(trade_id)
    return {"ok": True}


# ──────────────────────────
# Exchange wallets
# ──────────────────────────
async def _find_wallet_by_name(name: str) -> Optional[Dict[str, Any]]:
    key = name.strip().lower()
    for d in await db.wallets.find().to_list(None):
        if d.get("exchange_name", "").strip().lower() == key:
            return d
    return None


async def _get_wallet_doc(wallet_id: str) -> Dict[str, Any]:
    doc = await db.wallets.find_one({"_id": _oid(wallet_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return doc


async def _open_trades() -> List[TradeModel]:
    docs = await db.trades.find({"status": TradeStatus.OPEN.value}).to_list(None)
    return [t for t in (_trade_model(d) for d in docs) if t is not None]


@app.get("/wallets", response_model=List[WalletModel])
async def read_wallets():
    docs = await db.wallets.find().to_list(None)
    return [WalletModel(**_stringify_id(d)) for d in docs]


@app.post("/wallets", response_model=WalletModel)
async def create_wallet(wallet: WalletCreate):
    if await _find_wallet_by_name(wallet.exchange_name):
        raise HTTPException(status_code=409, detail="A wallet for this exchange already exists")
    now = _now()
    doc = wallet.model_dump()
    doc["created_at"] = now
    doc["updated_at"] = now
    res = await db.wallets.insert_one(doc)
    return WalletModel(**_stringify_id(await db.wallets.find_one({"_id": res.inserted_id})))


@app.get("/wallets/summaries", response_model=List[WalletSummary])
async def wallet_summaries():
    wallets = [WalletModel(**_stringify_id(d)) for d in await db.wallets.find().to_list(None)]
    trades = await _open_trades()
    return [wallet_summary(w, trades) for w in wallets]


@app.get("/wallets/total-balance", response_model=float)
async def wallets_total_balance():
    docs = await db.wallets.find().to_list(None)
    return total_balance(WalletModel(**_stringify_id(d)) for d in docs)


@app.get("/wallets/exchange/{exchange_name}", response_model=WalletModel)
async def read_wallet_by_exchange(exchange_name: str):
    doc = await _find_wallet_by_name(exchange_name)
    if not doc:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return WalletModel(**_stringify_id(doc))


@app.get("/wallets/{wallet_id}", response_model=WalletModel)
async def read_wallet(wallet_id: str):
    return WalletModel(**_stringify_id(await _get_wallet_doc(wallet_id)))


@app.put("/wallets/{wallet_id}", response_model=WalletModel)
async def update_wallet(wallet_id: str, patch: WalletUpdate):
    await _get_wallet_doc(wallet_id)

    update_doc = patch.model_dump(exclude_none=True)
    if "exchange_name" in update_doc:
        update_doc["exchange_name"] = update_doc["exchange_name"].strip()
        clash = await _find_wallet_by_name(update_doc["exchange_name"])
        if clash and str(clash["_id"]) != wallet_id:
            raise HTTPException(status_code=409, detail="A wallet for this exchange already exists")
    if update_doc:
        update_doc["updated_at"] = _now()
        await db.wallets.update_one({"_id": _oid(wallet_id)}, {"$set": update_doc})

    return WalletModel(**_stringify_id(await _get_wallet_doc(wallet_id)))


@app.delete("/wallets/{wallet_id}")
async def delete_wallet(wallet_id: str):
    res = await db.wallets.delete_one({"_id": _oid(wallet_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return {"ok": True}


@app.get("/wallets/{wallet_id}/summary", response_model=WalletSummary)
async def read_wallet_summary(wallet_id: str):
    wallet = WalletModel(**_stringify_id(await _get_wallet_doc(wallet_id)))
    return wallet_summary(wallet, await _open_trades())


# ──────────────────────────
# Live prices
# ──────────────────────────
@app.get("/prices", response_model=Dict[str, PriceQuote])
async def read_prices(symbols: str = Query("", description="Comma-separated coin symbols")):
    wanted = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    return await _live_quotes(wanted)


@app.post("/prices/refresh")
async def refresh_prices():
    app.state.price_cache.invalidate()
    return {"ok": True}
