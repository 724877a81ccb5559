# backend/app/models.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

MAX_LEVERAGE = 125
MAX_COIN_LENGTH = 20


def parse_decimal(value) -> Optional[float]:
    """
    Accept '28,09' or '28.09', a number, or a blank; return float or None.
    Every optional numeric field of the journal goes through here.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        s = value.strip().replace(",", ".")
        if not s:
            return None
        try:
            return float(s)
        except ValueError:
            raise ValueError(f"not a number: {value!r}") from None
    raise ValueError(f"not a number: {value!r}")


OptionalNumber = Annotated[Optional[float], BeforeValidator(parse_decimal)]


class TradeType(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, Enum):
    TP_HIT = "TP_HIT"
    LIQUIDATED = "LIQUIDATED"
    MANUAL = "MANUAL"


# ──────────────────────────
# Trades
# ──────────────────────────
class _TradeFields(BaseModel):
    coin: str
    trade_type: TradeType
    entry_price: OptionalNumber = None
    exit_price: OptionalNumber = None
    current_price: OptionalNumber = None
    position_size: OptionalNumber = None
    leverage: int = 1
    fees: OptionalNumber = None
    exchange: str | None = None
    status: TradeStatus = TradeStatus.OPEN
    notes: str | None = None
    stop_loss: OptionalNumber = None
    take_profit: OptionalNumber = None
    liquidation_price: OptionalNumber = None
    tp_hit: bool = False
    liquidated: bool = False
    close_reason: CloseReason | None = None
    trade_date: datetime | None = None
    close_date: datetime | None = None

    @field_validator("coin")
    @classmethod
    def _upper_coin(cls, v: str) -> str:
        return v.strip().upper()


class TradeCreate(_TradeFields):
    """Validated input for a new (or fully re-validated) trade."""

    @field_validator("coin")
    @classmethod
    def _upper_coin(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("coin symbol is required")
        if len(v) > MAX_COIN_LENGTH:
            raise ValueError(f"coin symbol is longer than {MAX_COIN_LENGTH} characters")
        return v

    @field_validator("entry_price", "position_size")
    @classmethod
    def _required_positive(cls, v):
        if v is None or v <= 0:
            raise ValueError("must be a positive number")
        return v

    @field_validator("exit_price", "current_price", "stop_loss", "take_profit", "liquidation_price")
    @classmethod
    def _optional_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError("must be a positive number")
        return v

    @field_validator("fees")
    @classmethod
    def _fees_non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("fees cannot be negative")
        return v

    @field_validator("leverage")
    @classmethod
    def _leverage_range(cls, v: int) -> int:
        if v < 1 or v > MAX_LEVERAGE:
            raise ValueError(f"leverage must be between 1 and {MAX_LEVERAGE}")
        return v

    @model_validator(mode="after")
    def _close_state(self):
        closing = (self.exit_price, self.close_date, self.close_reason)
        if self.status == TradeStatus.CLOSED:
            if any(v is None for v in closing):
                raise ValueError("a CLOSED trade needs exit_price, close_date and close_reason")
        elif any(v is not None for v in closing):
            raise ValueError("an OPEN trade cannot carry exit_price, close_date or close_reason")
        return self


class TradeUpdate(BaseModel):
    coin: Optional[str] = None
    trade_type: Optional[TradeType] = None
    entry_price: OptionalNumber = None
    current_price: OptionalNumber = None
    position_size: OptionalNumber = None
    leverage: Optional[int] = None
    fees: OptionalNumber = None
    exchange: Optional[str] = None
    notes: Optional[str] = None
    stop_loss: OptionalNumber = None
    take_profit: OptionalNumber = None
    liquidation_price: OptionalNumber = None
    tp_hit: Optional[bool] = None
    liquidated: Optional[bool] = None
    trade_date: Optional[datetime] = None


class CloseTradeRequest(BaseModel):
    exit_price: OptionalNumber
    close_reason: CloseReason

    @field_validator("exit_price")
    @classmethod
    def _positive(cls, v):
        if v is None or v <= 0:
            raise ValueError("exit price must be a positive number")
        return v


class TradeModel(_TradeFields):
    """A stored trade. Numeric fields are not constrained so bad rows can still be read."""

    id: str = Field(alias="_id")
    created_at: datetime | None = None
    updated_at: datetime | None = None
    live_price: float | None = None
    change_24h: float | None = None
    valuation: TradeValuation | None = None
    model_config = ConfigDict(populate_by_name=True)


# ──────────────────────────
# Investments
# ──────────────────────────
class InvestmentCreate(BaseModel):
    amount: OptionalNumber
    price_at_investment: OptionalNumber
    investment_date: datetime | None = None
    notes: str | None = None

    @field_validator("amount", "price_at_investment")
    @classmethod
    def _positive(cls, v):
        if v is None or v <= 0:
            raise ValueError("must be a positive number")
        return v


class InvestmentUpdate(BaseModel):
    amount: OptionalNumber = None
    price_at_investment: OptionalNumber = None
    investment_date: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("amount", "price_at_investment")
    @classmethod
    def _positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError("must be a positive number")
        return v


class InvestmentModel(BaseModel):
    id: str = Field(alias="_id")
    trade_id: str
    amount: OptionalNumber = None
    price_at_investment: OptionalNumber = None
    investment_date: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    current_value: float | None = None
    profit_loss: float | None = None
    model_config = ConfigDict(populate_by_name=True)


# ──────────────────────────
# Exchange wallets
# ──────────────────────────
class WalletCreate(BaseModel):
    exchange_name: str
    total_balance: OptionalNumber
    notes: str | None = None

    @field_validator("exchange_name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("exchange name is required")
        return v

    @field_validator("total_balance")
    @classmethod
    def _balance(cls, v):
        if v is None or v < 0:
            raise ValueError("balance cannot be negative")
        return v


class WalletUpdate(BaseModel):
    exchange_name: Optional[str] = None
    total_balance: OptionalNumber = None
    notes: Optional[str] = None

    @field_validator("exchange_name")
    @classmethod
    def _name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("exchange name is required")
        return v

    @field_validator("total_balance")
    @classmethod
    def _balance(cls, v):
        if v is not None and v < 0:
            raise ValueError("balance cannot be negative")
        return v


class WalletModel(BaseModel):
    id: str = Field(alias="_id")
    exchange_name: str
    total_balance: float = 0.0
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    model_config = ConfigDict(populate_by_name=True)


class WalletSummary(BaseModel):
    id: str
    exchange_name: str
    total_balance: float
    used_balance: float
    available_balance: float
    open_trades_count: int
    notes: str | None = None
    updated_at: datetime | None = None


# ──────────────────────────
# Prices
# ──────────────────────────
class PriceQuote(BaseModel):
    price: float
    change_24h: float | None = None


# ──────────────────────────
# Valuation read models
# ──────────────────────────
class ValuationErrorModel(BaseModel):
    kind: str
    message: str
    trade_id: str | None = None
    investment_id: str | None = None


class PnLResult(BaseModel):
    price_change_percent: float
    leveraged_change: float
    current_value: float
    pnl: float


class InvestmentValuation(BaseModel):
    investment_id: str | None = None
    amount: float
    price_at_investment: float
    quantity: float
    current_value: float
    pnl: float


class TradeValuation(BaseModel):
    total_invested: float
    current_value: float
    pnl: float
    pnl_percent: float
    current_price: float
    price_source: str
    stale: bool = False
    mode: str
    fees: float = 0.0
    net_pnl: float
    investments: List[InvestmentValuation] = []
    errors: List[ValuationErrorModel] = []
    missed_pnl: float | None = None


class PortfolioSummary(BaseModel):
    total_invested: float = 0.0
    open_invested: float = 0.0
    closed_invested: float = 0.0
    current_value: float = 0.0
    open_current_value: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    total_pnl: float = 0.0
    today_pnl: float = 0.0
    week_pnl: float = 0.0
    month_pnl: float = 0.0
    total_trades: int = 0
    open_trades: int = 0
    closed_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    average_profit: float = 0.0
    average_loss: float = 0.0
    stale_trade_ids: List[str] = []
    errors: List[ValuationErrorModel] = []


TradeModel.model_rebuild()
