"""Tests for market event schemas and SSE encoding."""

import json
import math

from quotestream.services.events.schemas import (
    CRYPTO_TOP100,
    MarketEvent,
    Quote,
    quotes_event,
    to_finite_float,
    to_positive_price,
    warning_event,
)


class TestNumberCoercion:
    """Tests for provider value coercion."""

    def test_finite_float_accepts_numeric_strings(self):
        assert to_finite_float("12.5") == 12.5
        assert to_finite_float(3) == 3.0

    def test_finite_float_rejects_garbage(self):
        assert to_finite_float(None) is None
        assert to_finite_float("abc") is None
        assert to_finite_float(True) is None
        assert to_finite_float(math.inf) is None
        assert to_finite_float(float("nan")) is None

    def test_positive_price_rejects_zero_and_negative(self):
        assert to_positive_price(0) is None
        assert to_positive_price(-1.5) is None
        assert to_positive_price("0.0001") == 0.0001


class TestQuote:
    """Tests for the Quote model."""

    def test_invalid_price_becomes_none(self):
        quote = Quote(symbol="BTCUSDT", price="n/a")
        assert quote.price is None

    def test_accepts_camel_case_input(self):
        quote = Quote.model_validate(
            {"symbol": "THYAO", "price": 250, "changePct": 1.2, "assetType": "STOCK"}
        )
        assert quote.change_pct == 1.2
        assert quote.asset_type == "STOCK"


class TestMarketEvent:
    """Tests for event construction and serialization."""

    def test_quotes_event_counts_data(self):
        event = quotes_event(
            CRYPTO_TOP100,
            [Quote(symbol="BTCUSDT", price=60000), Quote(symbol="ETHUSDT", price=3000)],
            source="tradingview",
        )
        assert event.count == 2
        assert event.source == "tradingview"
        assert event.is_warning is False

    def test_warning_event_shape(self):
        event = warning_event("crypto", "tradingview HTTP 502", 20000)
        payload = event.to_dict()

        assert event.type == "crypto_warning"
        assert event.is_warning is True
        assert payload["backoffMs"] == 20000
        assert payload["message"] == "tradingview HTTP 502"
        assert "data" not in payload

    def test_to_dict_uses_camel_case(self):
        event = quotes_event(
            CRYPTO_TOP100, [Quote(symbol="BTCUSDT", price=1, market_cap=10, asset_type="CRYPTO")]
        )
        payload = event.to_dict()
        quote = payload["data"][0]

        assert "lastUpdate" in payload
        assert quote["marketCap"] == 10
        assert quote["assetType"] == "CRYPTO"
        assert "market_cap" not in quote

    def test_extra_fields_survive(self):
        event = quotes_event("intl_exchanges", [Quote(symbol="AAPL", price=1)], exchanges=3)
        assert event.to_dict()["exchanges"] == 3

    def test_to_sse_without_event_name(self):
        event = quotes_event(CRYPTO_TOP100, [Quote(symbol="BTCUSDT", price=1)])
        frame = event.to_sse()

        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: "):])["type"] == CRYPTO_TOP100

    def test_to_sse_with_event_name(self):
        event = warning_event("bist", "boom", 1000)
        frame = event.to_sse("market")

        assert frame.startswith("event: market\ndata: ")

    def test_round_trip_through_dict(self):
        event = quotes_event(CRYPTO_TOP100, [Quote(symbol="BTCUSDT", price=5)], source="x")
        restored = MarketEvent.model_validate(event.to_dict())

        assert restored.type == CRYPTO_TOP100
        assert restored.ts == event.ts
        assert restored.data[0].price == 5
