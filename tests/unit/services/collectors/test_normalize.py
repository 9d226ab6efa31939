"""Tests for provider row normalization and override application."""

from quotestream.services.collectors.normalize import (
    COINGECKO_MAP,
    GETMIDAS_MAP,
    TV_BIST_MAP,
    TV_CRYPTO_MAP,
    apply_overrides,
    normalize_row,
    normalize_rows,
    popular_first,
)
from quotestream.services.config_store import Override
from quotestream.services.events.schemas import Quote


class TestNormalizeRow:
    """Tests for single-row mapping."""

    def test_tradingview_row(self):
        row = {
            "s": "BINANCE:BTCUSDT",
            "description": "Bitcoin / TetherUS",
            "close": 60000,
            "change": 1.5,
            "change_abs": 900,
            "volume": 1234,
            "market_cap_basic": 1.2e12,
        }
        quote = normalize_row(row, TV_CRYPTO_MAP)

        assert quote.symbol == "BINANCE:BTCUSDT"
        assert quote.name == "Bitcoin / TetherUS"
        assert quote.price == 60000
        assert quote.change == 900
        assert quote.change_pct == 1.5
        assert quote.asset_type == "CRYPTO"
        assert quote.raw == row

    def test_first_usable_field_wins(self):
        row = {"symbol": "THYAO", "lastPrice": None, "price": "n/a", "close": "250.5"}
        quote = normalize_row(row, GETMIDAS_MAP)

        assert quote.price == 250.5
        assert quote.currency == "TRY"
        assert quote.name == "THYAO"

    def test_coingecko_instrument_id(self):
        row = {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 60000}
        quote = normalize_row(row, COINGECKO_MAP)

        assert quote.instrument_id == "bitcoin"
        assert quote.currency == "USD"

    def test_rows_without_price_dropped(self):
        assert normalize_row({"s": "BIST:X", "close": 0}, TV_BIST_MAP) is None
        assert normalize_row({"s": "BIST:X", "close": -3}, TV_BIST_MAP) is None

    def test_rows_without_symbol_dropped(self):
        assert normalize_row({"close": 10}, TV_BIST_MAP) is None


class TestNormalizeRows:
    def test_dedupes_and_limits(self):
        rows = [{"s": f"BIST:S{i % 5}", "close": i + 1} for i in range(20)]
        quotes = normalize_rows(rows, TV_BIST_MAP, limit=3)

        assert [q.symbol for q in quotes] == ["BIST:S0", "BIST:S1", "BIST:S2"]

    def test_default_limit_is_100(self):
        rows = [{"s": f"BIST:S{i}", "close": 1} for i in range(150)]
        assert len(normalize_rows(rows, TV_BIST_MAP)) == 100


class TestPopularFirst:
    def test_popular_symbols_lead_in_list_order(self):
        quotes = [Quote(symbol=s, price=1) for s in ("FX:AUDNZD", "FX:GBPUSD", "FX:EURUSD")]
        ordered = popular_first(quotes, ["EURUSD", "GBPUSD"])

        assert [q.symbol for q in ordered] == ["FX:EURUSD", "FX:GBPUSD", "FX:AUDNZD"]

    def test_missing_popular_symbols_ignored(self):
        quotes = [Quote(symbol="FX:AUDNZD", price=1)]
        assert popular_first(quotes, ["EURUSD"]) == quotes


class TestApplyOverrides:
    """Tests for admin overrides on published quotes."""

    def test_percent_override_on_full_symbol(self):
        quotes = [Quote(symbol="BTCUSDT", price=100), Quote(symbol="ETHUSDT", price=10)]
        result = apply_overrides(quotes, {"BTCUSDT": Override(type="percent", value=5)})

        assert result[0].price == 105
        assert result[0].overridden is True
        assert result[1].price == 10
        assert result[1].overridden is None

    def test_matches_bare_ticker_case_insensitively(self):
        quotes = [Quote(symbol="BINANCE:BTCUSDT", price=100)]
        result = apply_overrides(quotes, {"btcusdt": Override(type="delta", value=-10)})

        assert result[0].price == 90

    def test_raw_row_untouched(self):
        raw = {"close": 100}
        quotes = [Quote(symbol="THYAO", price=100, raw=raw)]
        result = apply_overrides(quotes, {"THYAO": Override(type="set", value=1)})

        assert result[0].price == 1
        assert result[0].raw == {"close": 100}
        assert quotes[0].price == 100

    def test_non_positive_result_keeps_provider_price(self):
        quotes = [Quote(symbol="THYAO", price=100)]
        result = apply_overrides(quotes, {"THYAO": Override(type="delta", value=-500)})

        assert result[0].price == 100
        assert result[0].overridden is None

    def test_no_overrides(self):
        quotes = [Quote(symbol="THYAO", price=100)]
        assert apply_overrides(quotes, {}) is quotes
