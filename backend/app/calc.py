# backend/app/calc.py

from typing import Iterable, List, Optional, Tuple

from .errors import InvalidInvestmentError, InvalidTradeError, MissingPriceError, ValuationError
from .models import (
    InvestmentModel,
    InvestmentValuation,
    PnLResult,
    TradeModel,
    TradeStatus,
    TradeType,
    TradeValuation,
    ValuationErrorModel,
)


def _positive(x) -> bool:
    return x is not None and x > 0


def _error_model(exc: ValuationError) -> ValuationErrorModel:
    return ValuationErrorModel(**exc.as_dict())


def check_trade(trade: TradeModel) -> None:
    """
    Raise InvalidTradeError unless the trade can be valued:
    positive entry price and position size, and an exit price when CLOSED.
    """
    trade_id = getattr(trade, "id", None)
    if not _positive(trade.entry_price):
        raise InvalidTradeError("entry price must be positive", trade_id=trade_id)
    if not _positive(trade.position_size):
        raise InvalidTradeError("position size must be positive", trade_id=trade_id)
    if trade.status == TradeStatus.CLOSED and not _positive(trade.exit_price):
        raise InvalidTradeError("closed trade has no exit price", trade_id=trade_id)


def resolve_price_source(
    trade: TradeModel, live_price: Optional[float] = None, *, strict: bool = False
) -> Tuple[float, str]:
    """
    Pick the price a trade is valued at, and say where it came from.

    Order: exit price for CLOSED trades, then the live quote, then the
    stored snapshot, then the entry price. With ``strict`` an OPEN trade
    without a live or stored price raises MissingPriceError instead of
    falling back to the entry price.
    """
    trade_id = getattr(trade, "id", None)
    if not _positive(trade.entry_price):
        raise InvalidTradeError("entry price must be positive", trade_id=trade_id)

    if trade.status == TradeStatus.CLOSED:
        if not _positive(trade.exit_price):
            raise InvalidTradeError("closed trade has no exit price", trade_id=trade_id)
        return float(trade.exit_price), "exit"
    if _positive(live_price):
        return float(live_price), "live"
    if _positive(trade.current_price):
        return float(trade.current_price), "stored"
    if strict:
        raise MissingPriceError(f"no price available for {trade.coin}", trade_id=trade_id)
    return float(trade.entry_price), "entry"


def resolve_current_price(
    trade: TradeModel, live_price: Optional[float] = None, *, strict: bool = False
) -> float:
    return resolve_price_source(trade, live_price, strict=strict)[0]


def compute_pnl(
    direction: TradeType,
    entry_price: float,
    current_price: float,
    position_size: float,
    leverage: int,
) -> PnLResult:
    """
    Leveraged P&L of a position.

    The price change is measured against the entry price and flipped for
    SHORT, so a falling price is a gain. Leverage multiplies the change,
    the position is revalued and P&L is the difference to the position size.
    """
    if not _positive(entry_price):
        raise InvalidTradeError("entry price must be positive")

    if TradeType(direction) == TradeType.LONG:
        change = (current_price - entry_price) / entry_price
    else:
        change = (entry_price - current_price) / entry_price

    leveraged = change * leverage
    current_value = position_size * (1 + leveraged)
    return PnLResult(
        price_change_percent=change,
        leveraged_change=leveraged,
        current_value=current_value,
        pnl=current_value - position_size,
    )


def valuate_investment(investment: InvestmentModel, current_price: float) -> InvestmentValuation:
    """
    Unleveraged value of one investment: the coins it bought at
    ``price_at_investment``, marked at ``current_price``.
    """
    inv_id = getattr(investment, "id", None)
    amount = investment.amount
    price = investment.price_at_investment
    if not _positive(amount):
        raise InvalidInvestmentError("investment amount must be positive", investment_id=inv_id)
    if not _positive(price):
        raise InvalidInvestmentError("price at investment must be positive", investment_id=inv_id)

    quantity = amount / price
    value = quantity * current_price
    return InvestmentValuation(
        investment_id=inv_id,
        amount=amount,
        price_at_investment=price,
        quantity=quantity,
        current_value=value,
        pnl=value - amount,
    )


def valuate_trade(
    trade: TradeModel,
    investments: Iterable[InvestmentModel] = (),
    live_price: Optional[float] = None,
) -> TradeValuation:
    """
    Value one trade at its resolved price.

    With valid investments the trade is valued investment by investment
    (no leverage); otherwise the trade's own position goes through
    compute_pnl. Bad investments are skipped and listed in ``errors``.
    """
    trade_id = getattr(trade, "id", None)
    price, source = resolve_price_source(trade, live_price)

    rows: List[InvestmentValuation] = []
    errors: List[ValuationErrorModel] = []
    for inv in investments:
        try:
            rows.append(valuate_investment(inv, price))
        except InvalidInvestmentError as exc:
            exc.trade_id = exc.trade_id or trade_id
            errors.append(_error_model(exc))

    if rows:
        mode = "investments"
        total_invested = sum(r.amount for r in rows)
        current_value = sum(r.current_value for r in rows)
        pnl = current_value - total_invested
    else:
        mode = "position"
        check_trade(trade)
        result = compute_pnl(
            trade.trade_type, trade.entry_price, price, trade.position_size, trade.leverage
        )
        total_invested = float(trade.position_size)
        current_value = result.current_value
        pnl = result.pnl

    fees = float(trade.fees or 0.0)
    return TradeValuation(
        total_invested=total_invested,
        current_value=current_value,
        pnl=pnl,
        pnl_percent=(pnl / total_invested * 100.0) if total_invested > 0 else 0.0,
        current_price=price,
        price_source=source,
        stale=trade.status == TradeStatus.OPEN and source == "entry",
        mode=mode,
        fees=fees,
        net_pnl=pnl - fees,
        investments=rows,
        errors=errors,
    )


def realized_pnl(trade: TradeModel) -> float:
    """P&L locked in by a CLOSED trade at its exit price."""
    check_trade(trade)
    if trade.status != TradeStatus.CLOSED:
        raise InvalidTradeError("trade is not closed", trade_id=getattr(trade, "id", None))
    return compute_pnl(
        trade.trade_type, trade.entry_price, trade.exit_price, trade.position_size, trade.leverage
    ).pnl


def missed_pnl(trade: TradeModel, live_price: Optional[float]) -> Optional[float]:
    """
    What-if for a CLOSED trade: P&L it would show if still open at the
    live price, minus what was realized. None for OPEN trades or without a quote.
    """
    if trade.status != TradeStatus.CLOSED or not _positive(live_price):
        return None
    check_trade(trade)
    still_open = compute_pnl(
        trade.trade_type, trade.entry_price, live_price, trade.position_size, trade.leverage
    )
    return still_open.pnl - realized_pnl(trade)
