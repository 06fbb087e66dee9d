"""
Unit tests for starky/poller.py.

Tests cover:
- Bootstrap: lookback from head, explicit block, 'latest'
- Cursor pinned to the head observed at cycle start
- Continuation-token paging
- Errors and stop requests leave the cursor unchanged
- Event naming and exclusion
- run_forever keeps going after errors until stopped
"""

from __future__ import annotations

import threading

import pytest

from starky.deduplicator import TransactionDeduplicator
from starky.errors import TransientNetworkError
from starky.poller import EventPoller, PollerState
from starky.records import EVENT_KIND, FUNCTION_CALL_KIND
from starky.resolver import NameResolver

from conftest import FakeSink, FakeSource, make_event

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _poller(source, sink=None, record_factory=None, **kwargs):
    resolver = kwargs.pop("resolver", None) or NameResolver(overrides={"0x1": "Moved"})
    dedup = TransactionDeduplicator(
        source=source,
        resolver=resolver,
        record_factory=record_factory,
        fetch_delay_seconds=0,
    )
    return EventPoller(
        source=source,
        sink=sink if sink is not None else FakeSink(),
        resolver=resolver,
        deduplicator=dedup,
        record_factory=record_factory,
        interval_seconds=0,
        **kwargs,
    )


# ===========================================================================
# Bootstrap
# ===========================================================================


class TestBootstrap:
    def test_lookback_from_head(self, record_factory):
        poller = _poller(FakeSource(heads=[10000]), record_factory=record_factory, lookback_blocks=500)
        assert poller.bootstrap().block == 9500
        assert poller.state == PollerState.POLLING_PAGE

    def test_lookback_clamped_at_zero(self, record_factory):
        poller = _poller(FakeSource(heads=[50]), record_factory=record_factory, lookback_blocks=500)
        assert poller.bootstrap().block == 0

    def test_explicit_block(self, record_factory):
        source = FakeSource(heads=[10000])
        poller = _poller(source, record_factory=record_factory, from_block=1234)
        assert poller.bootstrap().block == 1234

    def test_latest(self, record_factory):
        poller = _poller(FakeSource(heads=[777]), record_factory=record_factory, from_block="latest")
        assert poller.bootstrap().block == 777

    def test_invalid_settings(self, record_factory):
        with pytest.raises(ValueError):
            _poller(FakeSource(), record_factory=record_factory, chunk_size=0)
        with pytest.raises(ValueError):
            _poller(FakeSource(), record_factory=record_factory, lookback_blocks=-1)


# ===========================================================================
# Cycles
# ===========================================================================


class TestRunCycle:
    def test_cursor_advances_to_cycle_head(self, record_factory):
        source = FakeSource(heads=[10000, 10010, 10020])
        sink = FakeSink()
        poller = _poller(source, sink, record_factory, lookback_blocks=500, addresses=["0xc1"])
        poller.bootstrap()

        poller.run_cycle()

        call = source.event_calls[0]
        assert call["from_block"] == 9500
        assert call["to_block"] == 10010
        assert call["address"] == "0xc1"
        assert call["chunk_size"] == 300
        assert poller.cursor.block == 10010
        assert poller.state == PollerState.CYCLE_IDLE

        poller.run_cycle()
        assert source.event_calls[1]["from_block"] == 10010
        assert source.event_calls[1]["to_block"] == 10020

    def test_continuation_chain_fetches_every_page(self, record_factory):
        source = FakeSource(
            heads=[100],
            pages={
                None: ([make_event(tx_hash=None)], "tok-1"),
                "tok-1": ([make_event(tx_hash=None)], None),
            },
        )
        sink = FakeSink()
        poller = _poller(source, sink, record_factory, from_block=0)

        sent = poller.run_cycle()

        assert len(source.event_calls) == 2
        assert source.event_calls[0]["continuation_token"] is None
        assert source.event_calls[1]["continuation_token"] == "tok-1"
        assert sent == 2
        assert len(sink.batches) == 1
        assert poller.cursor.continuation_token is None

    def test_no_addresses_polls_all_contracts(self, record_factory):
        source = FakeSource(heads=[5])
        poller = _poller(source, record_factory=record_factory, from_block=0)
        poller.run_cycle()
        assert source.event_calls[0]["address"] is None

    def test_one_poll_per_address(self, record_factory):
        source = FakeSource(heads=[5])
        poller = _poller(source, record_factory=record_factory, from_block=0, addresses=["0xa", "0xb"])
        poller.run_cycle()
        assert [c["address"] for c in source.event_calls] == ["0xa", "0xb"]

    def test_empty_cycle_sends_nothing(self, record_factory):
        sink = FakeSink()
        poller = _poller(FakeSource(heads=[5]), sink, record_factory, from_block=0)
        assert poller.run_cycle() == 0
        assert sink.batches == []
        assert poller.cursor.block == 5

    def test_sink_error_keeps_cursor(self, record_factory):
        source = FakeSource(heads=[100, 200], pages={None: ([make_event(tx_hash=None)], None)})
        poller = _poller(source, FakeSink(error=TransientNetworkError("503")), record_factory, from_block=50)
        with pytest.raises(TransientNetworkError):
            poller.run_cycle()
        assert poller.cursor.block == 50

    def test_stop_between_pages_keeps_cursor(self, record_factory):
        source = FakeSource(
            heads=[100],
            pages={None: ([make_event()], "tok-1"), "tok-1": ([make_event()], None)},
        )
        sink = FakeSink()
        stop = threading.Event()
        source.on_get_events = lambda _kwargs: stop.set()
        poller = _poller(source, sink, record_factory, from_block=10, stop_event=stop)

        assert poller.run_cycle() == 0

        assert len(source.event_calls) == 1
        assert sink.batches == []
        assert poller.cursor.block == 10
        assert poller.cursor.continuation_token is None


class TestRecords:
    def test_events_named_and_transactions_expanded(self, record_factory):
        source = FakeSource(
            heads=[100],
            pages={None: ([make_event("0x1", tx_hash="0xt"), make_event("0xabcdef123456", tx_hash="0xt")], None)},
            transactions={"0xt": {"type": "INVOKE", "calldata": ["0x99", "0xc1"]}},
        )
        sink = FakeSink()
        poller = _poller(source, sink, record_factory, from_block=0)
        poller.run_cycle()

        records = sink.batches[0]
        assert [r.kind for r in records] == [EVENT_KIND, EVENT_KIND, FUNCTION_CALL_KIND]
        assert records[0].resolved_name == "Moved"
        assert records[1].resolved_name == "unknown_abcdef12"
        assert source.tx_calls == ["0xt"]

    def test_event_without_keys_is_unknown(self, record_factory):
        source = FakeSource(heads=[1], pages={None: ([make_event(selector="", tx_hash=None)], None)})
        sink = FakeSink()
        _poller(source, sink, record_factory, from_block=0).run_cycle()
        assert sink.batches[0][0].resolved_name == "unknown"

    def test_excluded_events_are_dropped(self, record_factory):
        source = FakeSource(
            heads=[1],
            pages={None: ([make_event("0x1", tx_hash=None), make_event("0x2", tx_hash=None)], None)},
        )
        sink = FakeSink()
        _poller(source, sink, record_factory, from_block=0, exclude_event_names=["Moved"]).run_cycle()
        assert [r.resolved_name for r in sink.batches[0]] == ["unknown_2"]


# ===========================================================================
# run_forever
# ===========================================================================


class TestRunForever:
    def test_errors_do_not_end_loop(self, record_factory):
        source = FakeSource(heads=[100])
        stop = threading.Event()
        calls = {"n": 0}

        def flaky(_kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise TransientNetworkError("connection reset")
            stop.set()

        source.on_get_events = flaky
        poller = _poller(source, record_factory=record_factory, from_block=10, stop_event=stop)

        poller.run_forever()

        assert calls["n"] == 2
        assert poller.cursor.block == 100

    def test_unexpected_error_is_logged_and_retried(self, record_factory):
        source = FakeSource(heads=[100])
        stop = threading.Event()
        calls = {"n": 0}

        def broken(_kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise KeyError("boom")
            stop.set()

        source.on_get_events = broken
        _poller(source, record_factory=record_factory, from_block=10, stop_event=stop).run_forever()
        assert calls["n"] == 2

    def test_stop_before_start(self, record_factory):
        source = FakeSource(heads=[100])
        poller = _poller(source, record_factory=record_factory)
        poller.stop()
        poller.run_forever()
        assert source.event_calls == []


class TestMalformedTransactions:
    def test_bad_trace_does_not_stall_cursor(self, record_factory):
        source = FakeSource(
            heads=[100],
            pages={None: ([make_event("0x1", tx_hash="0xbad"), make_event("0x1", tx_hash="0xgood")], None)},
            transactions={
                "0xbad": {"type": "INVOKE", "calldata": ["0x99", "0xc1"]},
                "0xgood": {"type": "INVOKE", "calldata": ["0x99", "0xc2"]},
            },
            traces={"0xbad": {"execute_invocation": {"calls": 7}}},
        )
        sink = FakeSink()
        poller = _poller(source, sink, record_factory, from_block=10)

        poller.run_cycle()

        assert source.tx_calls == ["0xbad", "0xgood"]
        assert len(sink.batches) == 1
        assert [r.kind for r in sink.batches[0]].count(FUNCTION_CALL_KIND) == 2
        assert poller.cursor.block == 100
