"""Price sources for holdings valuation."""

from tally.core.prices.sources import (
    PriceQuote,
    PriceSource,
    YahooPriceSource,
    CoinGeckoPriceSource,
    ManualPriceSource,
)
from tally.core.prices.registry import PriceRegistry, FALLBACK_CHAINS

__all__ = [
    "PriceQuote",
    "PriceSource",
    "YahooPriceSource",
    "CoinGeckoPriceSource",
    "ManualPriceSource",
    "PriceRegistry",
    "FALLBACK_CHAINS",
]
