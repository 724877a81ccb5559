# backend/app/summary.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .calc import check_trade, realized_pnl, valuate_trade
from .errors import ValuationError
from .models import (
    PortfolioSummary,
    PriceQuote,
    TradeModel,
    TradeStatus,
    ValuationErrorModel,
    WalletModel,
    WalletSummary,
)

logger = logging.getLogger(__name__)

# Fields of PortfolioSummary that add up across disjoint trade sets
_ADDITIVE_FIELDS = (
    "total_invested",
    "open_invested",
    "closed_invested",
    "current_value",
    "open_current_value",
    "unrealized_pnl",
    "realized_pnl",
    "total_pnl",
    "today_pnl",
    "week_pnl",
    "month_pnl",
    "total_trades",
    "open_trades",
    "closed_trades",
    "winning_trades",
    "losing_trades",
    "gross_profit",
    "gross_loss",
)


def as_utc(dt: datetime) -> datetime:
    # Mongo hands back naive datetimes; they are stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def live_price_for(live_prices: Optional[Mapping[str, Any]], coin: str) -> Optional[float]:
    """
    Look up the live price of ``coin`` in a quote map.
    Values may be bare floats, PriceQuote objects or ``{"price": ...}`` dicts.
    """
    if not live_prices or not coin:
        return None
    q = live_prices.get(coin.upper())
    if q is None:
        return None
    if isinstance(q, PriceQuote):
        return q.price
    if isinstance(q, Mapping):
        return q.get("price")
    return float(q)


def period_starts(now: datetime) -> Dict[str, datetime]:
    """
    Start of the today / week / month windows for closed-trade P&L.
    The week window reaches back to the start of the day seven days ago.
    """
    today = as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "today": today,
        "week": today - timedelta(days=7),
        "month": today.replace(day=1),
    }


def _finalize(s: PortfolioSummary) -> PortfolioSummary:
    s.total_invested = s.open_invested + s.closed_invested
    s.current_value = s.open_current_value + s.closed_invested + s.realized_pnl
    s.total_pnl = s.realized_pnl
    s.total_trades = s.open_trades + s.closed_trades
    s.win_rate = (s.winning_trades / s.closed_trades * 100.0) if s.closed_trades else 0.0
    s.average_profit = (s.gross_profit / s.winning_trades) if s.winning_trades else 0.0
    s.average_loss = (s.gross_loss / s.losing_trades) if s.losing_trades else 0.0
    return s


def aggregate(
    trades: Iterable[TradeModel],
    live_prices: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> PortfolioSummary:
    """
    Fold a set of trades into portfolio totals.

    OPEN trades are valued in position mode at their live price; CLOSED
    trades contribute realized P&L at their exit price and feed the
    win/loss counts and the today/week/month buckets (by close date).
    Trades that cannot be valued are skipped and listed in ``errors``.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    starts = period_starts(now)
    end_of_today = starts["today"] + timedelta(days=1)

    s = PortfolioSummary()
    for trade in trades:
        try:
            check_trade(trade)
            if trade.status == TradeStatus.OPEN:
                v = valuate_trade(trade, (), live_price_for(live_prices, trade.coin))
            else:
                pnl = realized_pnl(trade)
        except ValuationError as exc:
            logger.warning("Excluding trade %s from summary: %s", exc.trade_id, exc.message)
            s.errors.append(ValuationErrorModel(**exc.as_dict()))
            continue

        size = float(trade.position_size)
        if trade.status == TradeStatus.OPEN:
            s.open_trades += 1
            s.open_invested += size
            s.open_current_value += v.current_value
            s.unrealized_pnl += v.pnl
            if v.stale:
                s.stale_trade_ids.append(trade.id)
            continue

        s.closed_trades += 1
        s.closed_invested += size
        s.realized_pnl += pnl
        if pnl > 0:
            s.winning_trades += 1
            s.gross_profit += pnl
        elif pnl < 0:
            s.losing_trades += 1
            s.gross_loss += pnl

        if trade.close_date is not None:
            closed_at = as_utc(trade.close_date)
            if closed_at < end_of_today:
                if closed_at >= starts["today"]:
                    s.today_pnl += pnl
                if closed_at >= starts["week"]:
                    s.week_pnl += pnl
                if closed_at >= starts["month"]:
                    s.month_pnl += pnl

    return _finalize(s)


def combine(a: PortfolioSummary, b: PortfolioSummary) -> PortfolioSummary:
    """
    Merge summaries of two disjoint trade sets.
    Ratios (win rate, averages) are recomputed from the summed counts.
    """
    merged = PortfolioSummary(**{f: getattr(a, f) + getattr(b, f) for f in _ADDITIVE_FIELDS})
    merged.stale_trade_ids = a.stale_trade_ids + b.stale_trade_ids
    merged.errors = a.errors + b.errors
    return _finalize(merged)


def wallet_summary(wallet: WalletModel, trades: Iterable[TradeModel]) -> WalletSummary:
    """
    Derived balances of an exchange wallet: what its OPEN trades tie up
    and what is left. Exchange names match case-insensitively.
    """
    name = wallet.exchange_name.strip().lower()
    open_trades: List[TradeModel] = [
        t
        for t in trades
        if t.status == TradeStatus.OPEN and (t.exchange or "").strip().lower() == name
    ]
    used = sum(float(t.position_size or 0.0) for t in open_trades)
    return WalletSummary(
        id=wallet.id,
        exchange_name=wallet.exchange_name,
        total_balance=wallet.total_balance,
        used_balance=used,
        available_balance=wallet.total_balance - used,
        open_trades_count=len(open_trades),
        notes=wallet.notes,
        updated_at=wallet.updated_at,
    )


def total_balance(wallets: Iterable[WalletModel]) -> float:
    return sum(w.total_balance for w in wallets)
