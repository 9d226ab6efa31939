"""Tests for Sentry event filtering and trace sampling."""

from quotestream.config import Settings
from quotestream.core.errors import ApiError
from quotestream.core.sentry import _before_send, _create_traces_sampler, init_sentry


def _ctx(name: str, parent=None) -> dict:
    return {"transaction_context": {"name": name}, "parent_sampled": parent}


class TestBeforeSend:
    def test_drops_client_error_exceptions(self):
        exc = ApiError(404, "order_not_found")

        assert _before_send({}, {"exc_info": (ApiError, exc, None)}) is None

    def test_drops_4xx_response_context(self):
        event = {"contexts": {"response": {"status_code": 401}}}

        assert _before_send(event, {}) is None

    def test_keeps_server_errors(self):
        event = {"contexts": {"response": {"status_code": 502}}}

        assert _before_send(event, {}) is event

    def test_keeps_plain_exceptions(self):
        exc = RuntimeError("boom")
        event = {"message": "boom"}

        assert _before_send(event, {"exc_info": (RuntimeError, exc, None)}) is event


class TestTracesSampler:
    def test_stream_never_traced(self):
        sampler = _create_traces_sampler(Settings(sentry_traces_sample_rate=1.0))

        assert sampler(_ctx("/stream")) == 0.0
        assert sampler(_ctx("/health")) == 0.0

    def test_parent_decision_respected(self):
        sampler = _create_traces_sampler(Settings(sentry_traces_sample_rate=0.5))

        assert sampler(_ctx("/trade/orders", parent=True)) == 1.0
        assert sampler(_ctx("/trade/orders", parent=False)) == 0.0

    def test_default_rate(self):
        sampler = _create_traces_sampler(Settings(sentry_traces_sample_rate=0.25))

        assert sampler(_ctx("/admin/api/config")) == 0.25


def test_init_skipped_without_dsn():
    assert init_sentry(Settings(sentry_dsn=None)) is False
