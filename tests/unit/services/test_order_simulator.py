"""Tests for the order simulator."""

import pytest

from quotestream.services.events.bus import EventBus
from quotestream.services.events.schemas import (
    BIST_TOP100,
    COINGECKO_TOP100,
    CRYPTO_TOP100,
    FOREX_TOP100,
    Quote,
    quotes_event,
    warning_event,
)
from quotestream.services.trading import (
    INVALID_AMOUNT,
    INVALID_SIDE,
    NOT_FOUND,
    PRICE_UNAVAILABLE,
    SYMBOL_NOT_FOUND,
    OrderSimulator,
    resolve_price,
)


@pytest.fixture
def bus():
    bus = EventBus()
    bus.publish(
        quotes_event(
            CRYPTO_TOP100,
            [
                Quote(symbol="BTCUSDT", price=60000, asset_type="CRYPTO"),
                Quote(symbol="DEADCOIN", price=None, asset_type="CRYPTO"),
            ],
        )
    )
    bus.publish(
        quotes_event(
            BIST_TOP100,
            [Quote(symbol="THYAO", price=250.5, asset_type="STOCK", currency="TRY")],
        )
    )
    return bus


@pytest.fixture
def simulator(bus):
    return OrderSimulator(bus, clock=lambda: 1_700_000_000_000)


class TestResolvePrice:
    def test_uses_quote_price(self):
        assert resolve_price(Quote(symbol="A", price=3)) == 3

    def test_falls_back_to_raw_fields(self):
        quote = Quote(symbol="A", raw={"current_price": "12.5"})
        assert resolve_price(quote) == 12.5

    def test_none_when_nothing_usable(self):
        assert resolve_price(Quote(symbol="A", raw={"close": 0})) is None


class TestFindInstrument:
    """Tests for cache lookup."""

    def test_case_insensitive(self, simulator):
        assert simulator.find_instrument("btcusdt").symbol == "BTCUSDT"

    def test_searches_other_types_when_no_market(self, simulator):
        # Overall last event is BIST; crypto is found through the per-type cache
        assert simulator.find_instrument("BTCUSDT") is not None
        assert simulator.find_instrument("thyao").symbol == "THYAO"

    def test_market_alias_restricts_search(self, simulator):
        assert simulator.find_instrument("THYAO", market="bist") is not None
        assert simulator.find_instrument("THYAO", market="crypto") is None

    def test_matches_instrument_id(self):
        bus = EventBus()
        bus.publish(
            quotes_event(
                COINGECKO_TOP100,
                [Quote(symbol="btc", instrument_id="bitcoin", price=60000)],
            )
        )
        simulator = OrderSimulator(bus)

        assert simulator.find_instrument("BITCOIN", market="crypto").symbol == "btc"

    def test_warning_events_are_skipped(self):
        bus = EventBus()
        bus.publish(warning_event("forex", "down", 1000))
        assert OrderSimulator(bus).find_instrument("EURUSD") is None


class TestCreateOrder:
    """Tests for order placement."""

    def test_buy_fills_at_cached_price(self, simulator):
        result = simulator.create_order("btcusdt", "buy", 0.5)

        assert result.success
        order = result.order
        assert order.symbol == "BTCUSDT"
        assert order.status == "filled"
        assert order.price == 60000
        assert order.total == 30000
        assert order.market == "CRYPTO"
        assert order.filled_at == order.created_at == 1_700_000_000_000

    def test_market_argument_is_recorded(self, simulator):
        order = simulator.create_order("thyao", "sell", 10, market="bist").order
        assert order.market == "bist"
        assert order.total == 2505.0

    def test_amount_string_accepted(self, simulator):
        assert simulator.create_order("btcusdt", "buy", "2").order.amount == 2.0

    def test_invalid_side(self, simulator):
        result = simulator.create_order("btcusdt", "hold", 1)
        assert result.error == INVALID_SIDE
        assert result.status_code == 400

    def test_symbol_not_found(self, simulator):
        result = simulator.create_order("nope", "buy", 1)
        assert result.error == SYMBOL_NOT_FOUND
        assert result.status_code == 404

    def test_price_unavailable(self, simulator):
        result = simulator.create_order("deadcoin", "buy", 1)
        assert result.error == PRICE_UNAVAILABLE
        assert result.status_code == 400

    @pytest.mark.parametrize("amount", [0, -1, "abc", None])
    def test_invalid_amount(self, simulator, amount):
        assert simulator.create_order("btcusdt", "buy", amount).error == INVALID_AMOUNT

    def test_orders_listed_newest_first_with_unique_ids(self, simulator):
        first = simulator.create_order("btcusdt", "buy", 1).order
        second = simulator.create_order("thyao", "buy", 1).order

        orders = simulator.list_orders()
        assert [o.id for o in orders] == [second.id, first.id]
        assert first.id != second.id

    def test_to_dict_uses_camel_case(self, simulator):
        payload = simulator.create_order("btcusdt", "buy", 1).order.to_dict()
        assert "createdAt" in payload
        assert "filledAt" in payload
        assert "cancelledAt" not in payload


class TestCancelOrder:
    def test_unknown_order(self, simulator):
        result = simulator.cancel_order("missing")
        assert result.error == NOT_FOUND
        assert result.status_code == 404

    def test_filled_order_returned_unchanged(self, simulator):
        order = simulator.create_order("btcusdt", "buy", 1).order

        result = simulator.cancel_order(order.id)

        assert result.success
        assert result.order.status == "filled"
        assert result.order.cancelled_at is None

    def test_get_order(self, simulator):
        order = simulator.create_order("btcusdt", "buy", 1).order
        assert simulator.get_order(order.id) is order
        assert simulator.get_order("missing") is None


class TestLookupPriority:
    def test_forex_found_without_market(self):
        bus = EventBus()
        bus.publish(quotes_event(FOREX_TOP100, [Quote(symbol="EURUSD", price=1.08)]))
        bus.publish(warning_event("crypto", "down", 1000))

        result = OrderSimulator(bus).create_order("eurusd", "buy", 1000)

        assert result.success
        assert result.order.total == pytest.approx(1080.0)
