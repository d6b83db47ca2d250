"""Price source fallback chains per asset type."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import requests

from tally.core.errors import PriceUnavailableError, TallyError
from tally.core.prices.sources import (
    CoinGeckoPriceSource,
    ManualPriceSource,
    PriceQuote,
    PriceSource,
    YahooPriceSource,
)

logger = logging.getLogger(__name__)

FALLBACK_CHAINS: Dict[str, List[str]] = {
    "stock": ["yahoo", "manual"],
    "etf": ["yahoo", "manual"],
    "crypto": ["coingecko", "manual"],
    "bond": ["manual"],
    "other": ["manual"],
}


class PriceRegistry:
    """Tries each source in an asset type's chain until one quotes a price."""

    def __init__(self, sources: Optional[List[PriceSource]] = None):
        self._sources: Dict[str, PriceSource] = {}
        for source in sources if sources is not None else [YahooPriceSource(), CoinGeckoPriceSource()]:
            self.register(source)

    def register(self, source: PriceSource) -> None:
        self._sources[source.name] = source

    def get_price(self, symbol: str, asset_type: str, stored_price: Optional[float] = None) -> PriceQuote:
        """Quote a symbol through the fallback chain.

        The ``manual`` step returns the stored price unchanged.

        Raises:
            PriceUnavailableError: If every source in the chain fails
        """
        errors = []
        for name in FALLBACK_CHAINS.get(asset_type, ["manual"]):
            source = ManualPriceSource(stored_price) if name == "manual" else self._sources.get(name)
            if source is None:
                continue
            try:
                return source.get_price(symbol)
            except (TallyError, requests.RequestException) as e:
                errors.append(f"{name}: {e}")

        raise PriceUnavailableError(f"No price for {symbol}: {'; '.join(errors) or 'no sources'}")
