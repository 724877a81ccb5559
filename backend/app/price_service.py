# backend/app/price_service.py

import asyncio
import logging
from typing import Dict, List, Optional

import yfinance as yf

from .config import PRICE_QUOTE_CURRENCY
from .models import PriceQuote

logger = logging.getLogger(__name__)

# Yahoo lists some coins under a disambiguated ticker
TICKER_OVERRIDES = {
    "UNI": "UNI7083",
    "APT": "APT21794",
    "ARB": "ARB11841",
    "SUI": "SUI20947",
    "TON": "TON11419",
    "PEPE": "PEPE24478",
}


def ticker_for(symbol: str, quote_currency: str = PRICE_QUOTE_CURRENCY) -> str:
    """
    Yahoo Finance ticker of a coin quoted in ``quote_currency``: BTC -> BTC-USD.
    """
    sym = symbol.strip().upper()
    return f"{TICKER_OVERRIDES.get(sym, sym)}-{quote_currency}"


def _to_float(x) -> Optional[float]:
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def _fetch_quote(sym: str) -> Optional[PriceQuote]:
    # Blocking: yfinance does its own HTTP
    try:
        t = yf.Ticker(ticker_for(sym))

        fast = getattr(t, "fast_info", None) or {}
        current = _to_float(fast.get("last_price") or fast.get("lastPrice"))
        prev = _to_float(fast.get("previous_close") or fast.get("previousClose"))

        # Fallbacks via .info
        if current is None or prev is None:
            info = getattr(t, "info", {}) or {}
            if current is None:
                current = _to_float(info.get("regularMarketPrice"))
            if prev is None:
                prev = _to_float(info.get("regularMarketPreviousClose"))
    except Exception as exc:
        logger.warning("Price lookup failed for %s: %s", sym, exc)
        return None

    if current is None or current <= 0:
        logger.warning("No live price for %s", sym)
        return None

    change_24h = ((current - prev) / prev * 100.0) if prev not in (None, 0) else None
    return PriceQuote(price=current, change_24h=change_24h)


async def get_prices(symbols: List[str]) -> Dict[str, PriceQuote]:
    """
    Return a dict keyed by uppercased coin symbol with:
      - price: last traded price in the quote currency
      - change_24h: percent change against the previous daily close (e.g. 1.27)

    Symbols without a usable price are left out; one failing symbol never
    fails the batch. Lookups run in worker threads so the event loop keeps
    serving requests.
    """
    syms = [raw.upper() for raw in symbols]
    quotes = await asyncio.gather(*(asyncio.to_thread(_fetch_quote, sym) for sym in syms))
    return {sym: q for sym, q in zip(syms, quotes) if q is not None}
