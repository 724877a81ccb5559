# backend/app/price_cache.py

import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .models import PriceQuote

Fetcher = Callable[[List[str]], Awaitable[Dict[str, PriceQuote]]]


class PriceCache:
    """
    Live quotes keyed by uppercased coin symbol, each fresh for ``ttl`` seconds.

    Symbols the feed had no quote for are remembered for ``miss_ttl``
    seconds so unknown coins are not looked up on every request.

    Owned by whoever serves prices (the API keeps one on ``app.state``);
    ``clock`` is injectable so tests can move time.
    """

    def __init__(
        self,
        ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        miss_ttl: float = 10.0,
    ):
        self.ttl = ttl
        self.miss_ttl = miss_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, PriceQuote]] = {}
        self._misses: Dict[str, float] = {}

    def get(self, symbol: str) -> Optional[PriceQuote]:
        entry = self._entries.get(symbol.upper())
        if entry is None:
            return None
        stored_at, quote = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[symbol.upper()]
            return None
        return quote

    def put(self, symbol: str, quote: PriceQuote) -> None:
        self._misses.pop(symbol.upper(), None)
        self._entries[symbol.upper()] = (self._clock(), quote)

    def is_known_miss(self, symbol: str) -> bool:
        missed_at = self._misses.get(symbol.upper())
        if missed_at is None:
            return False
        if self._clock() - missed_at >= self.miss_ttl:
            del self._misses[symbol.upper()]
            return False
        return True

    def invalidate(self, symbol: Optional[str] = None) -> None:
        """Drop one symbol, or everything when no symbol is given."""
        if symbol is None:
            self._entries.clear()
            self._misses.clear()
        else:
            self._entries.pop(symbol.upper(), None)
            self._misses.pop(symbol.upper(), None)

    async def get_prices(self, symbols: Iterable[str], fetcher: Fetcher) -> Dict[str, PriceQuote]:
        """
        Read-through lookup: cached quotes are served as is, the rest are
        fetched in one call and stored. Symbols the fetcher has no quote
        for are left out of the result.
        """
        wanted = sorted({s.upper() for s in symbols if s})
        out: Dict[str, PriceQuote] = {}
        missing: List[str] = []
        for sym in wanted:
            quote = self.get(sym)
            if quote is not None:
                out[sym] = quote
            elif not self.is_known_miss(sym):
                missing.append(sym)

        if missing:
            fetched = await fetcher(missing)
            for sym, quote in fetched.items():
                self.put(sym, quote)
                out[sym.upper()] = quote
            now = self._clock()
            for sym in missing:
                if sym not in out:
                    self._misses[sym] = now
        return out
