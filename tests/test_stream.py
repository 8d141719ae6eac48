"""
Tests for the prefetching stream:
- one round in flight at a time
- partial failure tolerance and per-source ordering
- items appended per source as each one finishes
- refilling after every round, with backoff after empty ones
- throttled failure notice and network pre-flight
- the append-only item sequence
"""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import requests

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import SourceSettings
from filters.dedup import Deduplicator
from models import AggregationOutcome, Item, Notice, Source
from pipeline.aggregator import Aggregator
from pipeline.stream import ItemSequence, SlotState, StreamMode, StreamScheduler
from providers.base import ProviderClient
from providers.network import NetworkUnreachable
from storage.db import ContentStore, StorageUnavailable
from storage.eviction import EvictionPolicy

ALL_SOURCES = [Source.BING, Source.QIHU360, Source.PEXELS, Source.UNSPLASH]
WAIT = 5


# ──────────────────────────────────────────────
# Fakes
# ──────────────────────────────────────────────

class FakeAggregator:
    """
    Stands in for Aggregator. `behaviour` maps a source to "fail" (raises)
    or "empty" (returns nothing); anything else yields numbered items.
    Every source returns nothing for its first `empty_for` calls, and a
    source listed in `hold` blocks until its event is set.
    """

    def __init__(
        self,
        sources=None,
        behaviour=None,
        gate: threading.Event | None = None,
        empty_for: int = 0,
        hold: dict[Source, threading.Event] | None = None,
    ):
        self.sources = list(sources or ALL_SOURCES)
        self.behaviour = behaviour or {}
        self.gate = gate
        self.empty_for = empty_for
        self.hold = hold or {}
        self.calls: list[tuple[Source, int]] = []
        self._next = {s: 0 for s in self.sources}
        self._seen = {s: 0 for s in self.sources}
        self._lock = threading.Lock()

    def settings_for(self, source):
        return SourceSettings(batch_size=1, page_size=3)

    def run(self, source, force_refresh=False, batch_size=None, include_stored=True):
        if self.gate is not None:
            self.gate.wait(WAIT)
        if source in self.hold:
            self.hold[source].wait(WAIT)
        with self._lock:
            self.calls.append((source, batch_size))
            self._seen[source] += 1
            warming_up = self._seen[source] <= self.empty_for
            start = self._next[source]
            if not warming_up:
                self._next[source] += batch_size

        mode = self.behaviour.get(source)
        if mode == "fail":
            raise StorageUnavailable("database is locked")
        if mode == "empty" or warming_up:
            return AggregationOutcome(source=source, is_refreshed=True)

        accepted = [
            Item(source=source, content_url=f"https://img.example.com/{source.value}/{n}.jpg")
            for n in range(start, start + batch_size)
        ]
        return AggregationOutcome(source=source, is_refreshed=True, saved=len(accepted), accepted=accepted)


class NumberedProvider(ProviderClient):
    def __init__(self, source: Source):
        super().__init__(session=MagicMock())
        self.source = source
        self._next = 0

    def fetch(self, batch_size, timeout=30):
        items = [
            Item(source=self.source, content_url=f"https://img.example.com/{self.source.value}/{self._next + i}.jpg")
            for i in range(batch_size)
        ]
        self._next += batch_size
        return items


class TimedOutProvider(ProviderClient):
    """Goes through the real HTTP failure mapping with a session that times out."""

    def __init__(self, source: Source):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("read timed out")
        super().__init__(session=session)
        self.source = source

    def fetch(self, batch_size, timeout=30):
        self._get_json("https://api.example.com/photos", timeout)
        return []


def _scheduler(aggregator, **kwargs) -> StreamScheduler:
    kwargs.setdefault("prefetch_threshold", 0)
    kwargs.setdefault("retry_delay", 0)
    return StreamScheduler(aggregator, **kwargs)


def _wait_for(predicate, timeout: float = WAIT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ──────────────────────────────────────────────
# Single flight
# ──────────────────────────────────────────────

class TestSingleFlight:
    def test_second_load_is_noop_while_loading(self):
        gate = threading.Event()
        with _scheduler(FakeAggregator(gate=gate)) as scheduler:
            assert scheduler.load_more() is True
            assert scheduler.loading is True
            assert scheduler.load_more() is False
            assert scheduler.request_refresh() is False

            gate.set()
            assert scheduler.wait_idle(WAIT)
            assert scheduler.rounds_started == 1
            assert scheduler.loading is False
            assert len(scheduler.sequence) == 4

    def test_load_after_round_starts_new_one(self):
        with _scheduler(FakeAggregator()) as scheduler:
            scheduler.load_more()
            assert scheduler.wait_idle(WAIT)
            assert scheduler.load_more() is True
            assert scheduler.wait_idle(WAIT)
            assert scheduler.rounds_started == 2
            assert len(scheduler.sequence) == 8

    def test_slots_back_to_idle(self):
        with _scheduler(FakeAggregator()) as scheduler:
            scheduler.load_more()
            scheduler.wait_idle(WAIT)
            assert set(scheduler.slot_states().values()) == {SlotState.IDLE}


# ──────────────────────────────────────────────
# Rounds
# ──────────────────────────────────────────────

class TestRound:
    def test_partial_failure_keeps_other_sources(self):
        agg = FakeAggregator(behaviour={Source.PEXELS: "fail", Source.UNSPLASH: "fail"})
        with _scheduler(agg) as scheduler:
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)

            sources = {item.source for item in scheduler.sequence}
            assert sources == {Source.BING, Source.QIHU360}
            assert set(scheduler.last_round.failed) == {Source.PEXELS, Source.UNSPLASH}
            assert scheduler.consecutive_failures == 0

    def test_one_silent_provider_does_not_count_as_failure(self):
        agg = FakeAggregator(behaviour={Source.UNSPLASH: "empty"})
        with _scheduler(agg) as scheduler:
            scheduler.request_refresh()
            scheduler.wait_idle(WAIT)
            assert len(scheduler.sequence) == 3
            assert Source.UNSPLASH not in {i.source for i in scheduler.sequence}
            assert scheduler.consecutive_failures == 0

    def test_balanced_mode_one_per_source(self):
        agg = FakeAggregator()
        with _scheduler(agg, mode=StreamMode.BALANCED) as scheduler:
            scheduler.request_refresh()
            scheduler.wait_idle(WAIT)
            assert {batch for _, batch in agg.calls} == {1}
            assert scheduler.last_round.by_source == {s: 1 for s in ALL_SOURCES}

    def test_paged_mode_uses_page_size(self):
        agg = FakeAggregator()
        with _scheduler(agg, mode=StreamMode.PAGED) as scheduler:
            scheduler.request_refresh()
            scheduler.wait_idle(WAIT)
            assert {batch for _, batch in agg.calls} == {3}
            assert len(scheduler.sequence) == 12

    def test_per_source_order_preserved(self):
        agg = FakeAggregator()
        with _scheduler(agg, mode=StreamMode.PAGED) as scheduler:
            for _ in range(2):
                scheduler.request_refresh()
                scheduler.wait_idle(WAIT)

            for source in ALL_SOURCES:
                urls = [i.content_url for i in scheduler.sequence if i.source == source]
                assert urls == [f"https://img.example.com/{source.value}/{n}.jpg" for n in range(6)]

    def test_items_appear_while_a_source_is_still_fetching(self):
        held = threading.Event()
        agg = FakeAggregator(hold={Source.UNSPLASH: held})
        with _scheduler(agg) as scheduler:
            try:
                scheduler.request_refresh()
                assert _wait_for(lambda: len(scheduler.sequence) == 3)

                assert scheduler.loading is True
                assert Source.UNSPLASH not in {i.source for i in scheduler.sequence}
                assert scheduler.slot_states()[Source.UNSPLASH] == SlotState.FETCHING
            finally:
                held.set()

            assert scheduler.wait_idle(WAIT)
            assert len(scheduler.sequence) == 4
            assert scheduler.sequence[3].source == Source.UNSPLASH

    def test_timed_out_provider_through_real_aggregator(self, tmp_path):
        store = ContentStore(tmp_path / "test.db")
        providers = [
            NumberedProvider(Source.BING),
            NumberedProvider(Source.QIHU360),
            NumberedProvider(Source.PEXELS),
            TimedOutProvider(Source.UNSPLASH),
        ]
        aggregator = Aggregator(
            store,
            providers={p.source: p for p in providers},
            deduplicator=Deduplicator(store),
            eviction=EvictionPolicy(store),
            sources={s: SourceSettings() for s in ALL_SOURCES},
            fetch_timeout=1,
        )
        try:
            with _scheduler(aggregator) as scheduler:
                scheduler.request_refresh()
                assert scheduler.wait_idle(WAIT)

                sources = {item.source for item in scheduler.sequence}
                assert sources == {Source.BING, Source.QIHU360, Source.PEXELS}
                assert len(scheduler.sequence) == 3
                assert scheduler.last_round.by_source[Source.UNSPLASH] == 0
                assert scheduler.consecutive_failures == 0
        finally:
            store.close()

    def test_restricted_sources(self):
        agg = FakeAggregator()
        with _scheduler(agg, sources=[Source.BING]) as scheduler:
            scheduler.request_refresh()
            scheduler.wait_idle(WAIT)
            assert [s for s, _ in agg.calls] == [Source.BING]


# ──────────────────────────────────────────────
# Prefetch trigger
# ──────────────────────────────────────────────

class TestPrefetch:
    def test_report_position_respects_threshold(self):
        sequence = ItemSequence()
        sequence.extend([
            Item(source=Source.BING, content_url=f"https://img.example.com/seed/{n}.jpg")
            for n in range(10)
        ])
        with _scheduler(FakeAggregator(), prefetch_threshold=5, sequence=sequence) as scheduler:
            # 7 unread after index 2
            assert scheduler.report_position(2) is False
            assert scheduler.rounds_started == 0
            # 5 unread after index 4
            assert scheduler.report_position(4) is True
            assert scheduler.wait_idle(WAIT)

    def test_refills_until_above_threshold(self):
        with _scheduler(FakeAggregator(), prefetch_threshold=5) as scheduler:
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)
            # 4 after the first round is still <= 5, so a second round follows
            assert scheduler.rounds_started == 2
            assert len(scheduler.sequence) == 8

    def test_empty_round_retriggers_until_filled(self):
        agg = FakeAggregator(sources=[Source.BING], empty_for=2)
        with _scheduler(agg) as scheduler:
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)
            assert scheduler.rounds_started == 3
            assert len(scheduler.sequence) == 1
            assert scheduler.consecutive_failures == 0

    def test_retry_after_empty_round_backs_off(self):
        agg = FakeAggregator(sources=[Source.BING], empty_for=1)
        with _scheduler(agg, retry_delay=0.2) as scheduler:
            started = time.monotonic()
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)
            assert time.monotonic() - started >= 0.2
            assert scheduler.rounds_started == 2

    def test_productive_round_refills_without_delay(self):
        with _scheduler(FakeAggregator(), prefetch_threshold=5, retry_delay=30) as scheduler:
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)
            assert scheduler.rounds_started == 2

    def test_close_abandons_backoff(self):
        agg = FakeAggregator(sources=[Source.BING], behaviour={Source.BING: "empty"})
        scheduler = _scheduler(agg, retry_delay=30)
        scheduler.request_refresh()
        assert _wait_for(lambda: scheduler.rounds_started >= 2)

        started = time.monotonic()
        scheduler.close()
        assert time.monotonic() - started < WAIT
        assert len(agg.calls) == 1
        assert scheduler.wait_idle(0)

    def test_paused_scheduler_does_not_retry(self):
        gate = threading.Event()
        agg = FakeAggregator(sources=[Source.BING], behaviour={Source.BING: "empty"}, gate=gate)
        with _scheduler(agg) as scheduler:
            scheduler.request_refresh()
            scheduler.pause()
            gate.set()
            assert scheduler.wait_idle(WAIT)
            assert scheduler.rounds_started == 1

    def test_pause_and_resume(self):
        with _scheduler(FakeAggregator()) as scheduler:
            scheduler.pause()
            assert scheduler.paused is True
            assert scheduler.load_more() is False
            assert scheduler.rounds_started == 0

            scheduler.resume()
            assert scheduler.wait_idle(WAIT)
            assert scheduler.rounds_started == 1

    def test_closed_scheduler_refuses_rounds(self):
        scheduler = _scheduler(FakeAggregator())
        scheduler.close()
        assert scheduler.load_more() is False


# ──────────────────────────────────────────────
# Notices
# ──────────────────────────────────────────────

class TestNotices:
    def test_three_empty_rounds_raise_one_notice(self):
        notices = []
        agg = FakeAggregator(empty_for=3)
        with _scheduler(agg, failure_threshold=3, on_notice=notices.append) as scheduler:
            # One signal: the empty rounds retry on their own
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)

            assert notices == [Notice.CHECK_NETWORK]
            assert scheduler.rounds_started == 4
            assert len(scheduler.sequence) == 4
            assert scheduler.consecutive_failures == 0

    def test_notice_repeats_while_rounds_stay_empty(self):
        notices = []
        agg = FakeAggregator(sources=[Source.BING], behaviour={Source.BING: "empty"})
        with _scheduler(agg, failure_threshold=2, retry_delay=0.01, on_notice=notices.append) as scheduler:
            scheduler.request_refresh()
            assert _wait_for(lambda: len(notices) >= 2)
            assert set(notices) == {Notice.CHECK_NETWORK}

    def test_successful_round_resets_counter(self):
        notices = []
        agg = FakeAggregator(empty_for=2)
        with _scheduler(agg, failure_threshold=3, on_notice=notices.append) as scheduler:
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)
            assert scheduler.rounds_started == 3
            assert scheduler.consecutive_failures == 0
            assert notices == []

    def test_unreachable_network_skips_providers(self):
        notices = []
        probe = MagicMock()
        probe.ensure.side_effect = NetworkUnreachable("cannot reach probe")
        agg = FakeAggregator()
        with _scheduler(agg, network_probe=probe, on_notice=notices.append) as scheduler:
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)

            assert notices == [Notice.NETWORK_UNREACHABLE]
            assert agg.calls == []
            assert scheduler.last_round.network_unreachable is True
            assert scheduler.consecutive_failures == 0

    def test_reachable_network_proceeds(self):
        probe = MagicMock()
        with _scheduler(FakeAggregator(), network_probe=probe) as scheduler:
            scheduler.request_refresh()
            scheduler.wait_idle(WAIT)
            probe.ensure.assert_called_once()
            assert len(scheduler.sequence) == 4

    def test_failing_notice_handler_is_contained(self):
        agg = FakeAggregator(empty_for=1)
        handler = MagicMock(side_effect=RuntimeError("ui gone"))
        with _scheduler(agg, failure_threshold=1, on_notice=handler) as scheduler:
            scheduler.request_refresh()
            assert scheduler.wait_idle(WAIT)
            handler.assert_called_once_with(Notice.CHECK_NETWORK)
            assert scheduler.loading is False
            assert scheduler.rounds_started == 2


# ──────────────────────────────────────────────
# ItemSequence
# ──────────────────────────────────────────────

def _item(n: int) -> Item:
    return Item(source=Source.BING, content_url=f"https://img.example.com/{n}.jpg")


class TestItemSequence:
    def test_append_and_index(self):
        seq = ItemSequence()
        first = _item(1)
        assert seq.append(first) is True
        assert len(seq) == 1
        assert seq[0] is first
        assert "https://img.example.com/1.jpg" in seq

    def test_same_url_appended_once(self):
        seq = ItemSequence()
        assert seq.extend([_item(1), _item(1), _item(2)]) == 2
        assert [i.content_url for i in seq] == ["https://img.example.com/1.jpg", "https://img.example.com/2.jpg"]

    def test_observers_see_every_append(self):
        seq = ItemSequence()
        seen = []
        unsubscribe = seq.subscribe(lambda index, item: seen.append((index, item.content_url)))
        seq.extend([_item(1), _item(2)])
        unsubscribe()
        seq.append(_item(3))
        assert seen == [(0, "https://img.example.com/1.jpg"), (1, "https://img.example.com/2.jpg")]

    def test_failing_observer_does_not_block_append(self):
        seq = ItemSequence()
        seq.subscribe(MagicMock(side_effect=ValueError("bad observer")))
        assert seq.append(_item(1)) is True
        assert len(seq) == 1

    def test_set_local_path_only_once(self):
        seq = ItemSequence()
        seq.append(_item(1))
        assert seq.set_local_path(0, "/cache/a.jpg") is True
        assert seq.set_local_path(0, "/cache/b.jpg") is False
        assert seq[0].local_path == "/cache/a.jpg"
        assert seq.set_local_path(0, "/cache/p.jpg", preview=True) is True
        assert seq[0].local_preview_path == "/cache/p.jpg"

    def test_snapshot_is_a_copy(self):
        seq = ItemSequence()
        seq.append(_item(1))
        snap = seq.snapshot()
        seq.append(_item(2))
        assert len(snap) == 1

    def test_concurrent_appends(self):
        seq = ItemSequence()

        def worker(offset):
            for n in range(50):
                seq.append(_item(offset * 100 + n))

        threads = [threading.Thread(target=worker, args=(k,)) for k in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(seq) == 200
