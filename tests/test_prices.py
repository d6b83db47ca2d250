"""Tests for price sources and the fallback registry."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from tally.core.errors import PriceUnavailableError
from tally.core.prices import PriceRegistry
from tally.core.prices.sources import CoinGeckoPriceSource, PriceQuote, YahooPriceSource


def _source(name, price=None, error=None):
    source = Mock()
    source.name = name
    if error is not None:
        source.get_price.side_effect = error
    else:
        source.get_price.return_value = PriceQuote(symbol="X", price=price, source=name)
    return source


class TestPriceRegistry:
    """Tests for PriceRegistry fallback chains."""

    def test_first_source_wins(self):
        """The first source that quotes is used."""
        yahoo = _source("yahoo", 101.5)

        quote = PriceRegistry([yahoo]).get_price("AAPL", "stock", stored_price=90.0)

        assert (quote.price, quote.source) == (101.5, "yahoo")

    def test_falls_back_to_stored_price(self):
        """A failing live source falls back to the stored price."""
        yahoo = _source("yahoo", error=PriceUnavailableError("nope"))

        quote = PriceRegistry([yahoo]).get_price("AAPL", "stock", stored_price=90.0)

        assert (quote.price, quote.source) == (90.0, "manual")

    def test_network_errors_fall_back(self):
        """Transport errors are treated like a missing quote."""
        coingecko = _source("coingecko", error=requests.ConnectionError("down"))

        quote = PriceRegistry([coingecko]).get_price("BTC", "crypto", stored_price=60000.0)

        assert quote.source == "manual"

    def test_all_sources_fail(self):
        """With no live quote and no stored price the error names each source."""
        yahoo = _source("yahoo", error=PriceUnavailableError("rate limited"))

        with pytest.raises(PriceUnavailableError) as exc_info:
            PriceRegistry([yahoo]).get_price("AAPL", "stock")

        assert "yahoo: rate limited" in str(exc_info.value)

    def test_bonds_use_stored_price_only(self):
        """Asset types without a live source never call one."""
        yahoo = _source("yahoo", 1.0)

        quote = PriceRegistry([yahoo]).get_price("T-BILL", "bond", stored_price=99.2)

        assert quote.price == 99.2
        yahoo.get_price.assert_not_called()


class TestCoinGeckoPriceSource:
    """Tests for CoinGeckoPriceSource."""

    def test_maps_symbol_to_coin_id(self):
        """Known symbols are looked up by CoinGecko id."""
        session = MagicMock()
        session.get.return_value = Mock(ok=True, json=Mock(return_value={"bitcoin": {"usd": 65000.5}}))

        quote = CoinGeckoPriceSource(session=session).get_price("btc")

        assert quote.price == 65000.5
        assert session.get.call_args.kwargs["params"]["ids"] == "bitcoin"

    def test_unknown_coin(self):
        """An empty response raises PriceUnavailableError."""
        session = MagicMock()
        session.get.return_value = Mock(ok=True, json=Mock(return_value={}))

        with pytest.raises(PriceUnavailableError):
            CoinGeckoPriceSource(session=session).get_price("NEWCOIN")

    def test_http_error(self):
        """Non-2xx responses raise PriceUnavailableError."""
        session = MagicMock()
        session.get.return_value = Mock(ok=False, status_code=429, reason="Too Many Requests")

        with pytest.raises(PriceUnavailableError, match="429"):
            CoinGeckoPriceSource(session=session).get_price("ETH")


class TestYahooPriceSource:
    """Tests for YahooPriceSource."""

    @patch("tally.core.prices.sources.yf.Ticker")
    def test_current_price(self, mock_ticker):
        """currentPrice from ticker info is used."""
        mock_ticker.return_value.info = {"currentPrice": 187.25}

        quote = YahooPriceSource().get_price("aapl")

        assert (quote.price, quote.source) == (187.25, "yahoo")
        mock_ticker.assert_called_once_with("AAPL")

    @patch("tally.core.prices.sources.yf.Ticker")
    def test_history_fallback(self, mock_ticker):
        """Without info prices the last close is used."""
        mock_ticker.return_value.info = {}
        hist = MagicMock(empty=False)
        hist.__getitem__.return_value.iloc.__getitem__.return_value = 11.5
        mock_ticker.return_value.history.return_value = hist

        assert YahooPriceSource().get_price("VTI").price == 11.5

    @patch("tally.core.prices.sources.yf.Ticker")
    def test_no_price(self, mock_ticker):
        """Empty info and history raise PriceUnavailableError."""
        mock_ticker.return_value.info = {}
        mock_ticker.return_value.history.return_value = MagicMock(empty=True)

        with pytest.raises(PriceUnavailableError):
            YahooPriceSource().get_price("ZZZZ")
