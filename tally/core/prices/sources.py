"""Price sources for portfolio valuation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

import requests
import yfinance as yf

from tally.core.errors import PriceUnavailableError

logger = logging.getLogger(__name__)

# Timeout for yfinance API calls (seconds)
YFINANCE_TIMEOUT = 30
COINGECKO_API = "https://api.coingecko.com/api/v3"

# Common symbol -> CoinGecko coin id
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "ADA": "cardano",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "SHIB": "shiba-inu",
    "BNB": "binancecoin",
    "USDC": "usd-coin",
    "USDT": "tether",
}


def _utcnow() -> datetime:
    """Get current UTC time as naive datetime for database compatibility."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class PriceQuote:
    """A price from one source."""

    symbol: str
    price: float
    source: str
    currency: str = "USD"
    as_of: datetime = field(default_factory=_utcnow)


class PriceSource(ABC):
    """A named source of prices for some asset types."""

    name: str = ""
    asset_types: Tuple[str, ...] = ()

    @abstractmethod
    def get_price(self, symbol: str) -> PriceQuote:
        """Quote a symbol.

        Raises:
            PriceUnavailableError: If the source has no price
        """
        pass


class YahooPriceSource(PriceSource):
    """Stocks and ETFs through yfinance."""

    name = "yahoo"
    asset_types = ("stock", "etf")

    # Shared executor for timeout handling (reused across calls)
    _executor: Optional[ThreadPoolExecutor] = None

    def __init__(self, timeout: int = YFINANCE_TIMEOUT):
        self.timeout = timeout

    @classmethod
    def _get_executor(cls) -> ThreadPoolExecutor:
        """Get or create shared executor."""
        if cls._executor is None:
            cls._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="price_data")
        return cls._executor

    def _fetch_with_timeout(self, func, *args, **kwargs):
        """Run func on the shared executor; None on timeout."""
        future = self._get_executor().submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeoutError:
            logger.warning(f"Timeout after {self.timeout}s fetching price data")
            return None

    def get_price(self, symbol: str) -> PriceQuote:
        yahoo_symbol = symbol.upper()

        def _fetch_price():
            ticker = yf.Ticker(yahoo_symbol)
            p = ticker.info.get("currentPrice") or ticker.info.get("regularMarketPrice")
            if p is None:
                hist = ticker.history(period="1d")
                if not hist.empty:
                    p = float(hist["Close"].iloc[-1])
            return p

        try:
            price = self._fetch_with_timeout(_fetch_price)
        except Exception as e:
            raise PriceUnavailableError(f"yfinance error for {symbol}: {e}") from e
        if price is None:
            raise PriceUnavailableError(f'No price found for symbol "{symbol}" via Yahoo Finance')
        return PriceQuote(symbol=symbol, price=float(price), source=self.name)


class CoinGeckoPriceSource(PriceSource):
    """Crypto through the free CoinGecko API (no key)."""

    name = "coingecko"
    asset_types = ("crypto",)

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = 15):
        self.session = session or requests.Session()
        self.timeout = timeout

    def get_price(self, symbol: str) -> PriceQuote:
        coin_id = COINGECKO_IDS.get(symbol.upper(), symbol.lower())
        response = self.session.get(
            f"{COINGECKO_API}/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
            timeout=self.timeout,
        )
        if not response.ok:
            raise PriceUnavailableError(f"CoinGecko API error: {response.status_code} {response.reason}")

        price = (response.json().get(coin_id) or {}).get("usd")
        if not price:
            raise PriceUnavailableError(
                f'No price found for "{symbol}" (CoinGecko ID: "{coin_id}"). '
                f"If this is a less common coin, set the price manually."
            )
        return PriceQuote(symbol=symbol, price=float(price), source=self.name)


class ManualPriceSource(PriceSource):
    """Keeps whatever price is already stored."""

    name = "manual"
    asset_types = ("stock", "etf", "crypto", "bond", "other")

    def __init__(self, stored_price: Optional[float] = None):
        self.stored_price = stored_price

    def get_price(self, symbol: str) -> PriceQuote:
        if self.stored_price is None:
            raise PriceUnavailableError(f"No stored price for {symbol}")
        return PriceQuote(symbol=symbol, price=self.stored_price, source=self.name)
