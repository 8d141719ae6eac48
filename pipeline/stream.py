"""
Prefetching stream. Keeps a consumer-facing, append-only sequence of
wallpapers topped up in the background.

Design notes:
- One round at a time. `load_more()` while a round is in flight is a no-op.
- A round fans out to every source at once and appends each source's items
  as soon as that source finishes, not when the slowest one does.
- The round joins on all sources (wait-for-all, not fail-fast). One source
  raising or timing out never cancels the others.
- Rounds can't be cancelled. Pausing only stops new rounds from starting;
  results of an in-flight round are still appended.
- After every round the buffer is re-checked against the threshold. A round
  that follows an empty one waits out a growing backoff first; close()
  abandons a round that is still backing off.
- Only the round worker appends. Readers on other threads see a consistent
  prefix of the sequence.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator

from models import Item, Notice, Source
from pipeline.aggregator import Aggregator
from providers.network import NetworkProbe, NetworkUnreachable

log = logging.getLogger(__name__)

Observer = Callable[[int, Item], None]


class StreamMode(Enum):
    BALANCED = "balanced"   # small batch per source per round, even interleave
    PAGED = "paged"         # bigger fixed pages per source


class SlotState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    APPENDED = "appended"
    FAILED = "failed"


@dataclass
class RoundResult:
    appended: int = 0
    by_source: dict[Source, int] = field(default_factory=dict)
    failed: list[Source] = field(default_factory=list)
    network_unreachable: bool = False


class ItemSequence:
    """
    Thread-safe, append-only list of items with change notification.

    Items whose content_url is already present are ignored, so the stream
    never shows the same image twice even if the store evicted and later
    re-accepted it.
    """

    def __init__(self):
        self._items: list[Item] = []
        self._urls: set[str] = set()
        self._observers: list[Observer] = []
        self._lock = threading.Lock()

    def append(self, item: Item) -> bool:
        with self._lock:
            if item.content_url in self._urls:
                return False
            self._items.append(item)
            self._urls.add(item.content_url)
            index = len(self._items) - 1
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(index, item)
            except Exception as e:
                log.warning(f"Stream observer failed on item {index}: {e}")
        return True

    def extend(self, items: list[Item]) -> int:
        """Append in order. Returns how many were actually added."""
        return sum(1 for item in items if self.append(item))

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call `observer(index, item)` on every append. Returns an unsubscribe function."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe():
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def set_local_path(self, index: int, path: str, preview: bool = False) -> bool:
        """The one allowed in-place change: record a cache path, once."""
        with self._lock:
            item = self._items[index]
            attr = "local_preview_path" if preview else "local_path"
            if getattr(item, attr):
                return False
            setattr(item, attr, path)
            return True

    def snapshot(self) -> list[Item]:
        with self._lock:
            return list(self._items)

    def __contains__(self, content_url: object) -> bool:
        with self._lock:
            return content_url in self._urls

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __getitem__(self, index: int) -> Item:
        with self._lock:
            return self._items[index]

    def __iter__(self) -> Iterator[Item]:
        return iter(self.snapshot())


class StreamScheduler:
    def __init__(
        self,
        aggregator: Aggregator,
        sources: list[Source] | None = None,
        mode: StreamMode = StreamMode.BALANCED,
        prefetch_threshold: int = 5,
        failure_threshold: int = 3,
        network_probe: NetworkProbe | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        sequence: ItemSequence | None = None,
        retry_delay: float = 2.0,
        max_retry_delay: float = 30.0,
    ):
        self._aggregator = aggregator
        self._sources = list(sources) if sources is not None else aggregator.sources
        self.mode = mode
        self.prefetch_threshold = prefetch_threshold
        self.failure_threshold = failure_threshold
        self._probe = network_probe
        self._on_notice = on_notice
        self.sequence = sequence if sequence is not None else ItemSequence()
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._loading = False
        self._paused = False
        self._closed = False
        self._position = -1
        self._consecutive_failures = 0
        self._slots = {source: SlotState.IDLE for source in self._sources}
        self._idle = threading.Event()
        self._idle.set()

        self.last_round: RoundResult | None = None
        self.rounds_started = 0

        self._round_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stream-round")
        self._fetch_executor = ThreadPoolExecutor(
            max_workers=max(1, len(self._sources)), thread_name_prefix="stream-fetch"
        )

    # ── State ──

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._loading

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def slot_states(self) -> dict[Source, SlotState]:
        with self._lock:
            return dict(self._slots)

    def _remaining_locked(self) -> int:
        return len(self.sequence) - self._position - 1

    # ── Triggers ──

    def report_position(self, index: int) -> bool:
        """
        The consumer is now looking at `index`. Starts a round when the
        unread buffer is at or below the prefetch threshold.
        Returns True if a round was started.
        """
        with self._lock:
            self._position = index
            if self._remaining_locked() > self.prefetch_threshold:
                return False
        return self.load_more()

    def request_refresh(self) -> bool:
        """Explicit load: manual refresh or empty state at startup."""
        return self.load_more()

    def load_more(self) -> bool:
        """Start a round in the background. No-op if one is running or paused."""
        with self._lock:
            if self._loading or self._paused or self._closed:
                return False
            self._start_round_locked()
        return True

    def _start_round_locked(self, delay: float = 0):
        self._loading = True
        self._idle.clear()
        self.rounds_started += 1
        self._round_executor.submit(self._run_round, delay)

    def pause(self):
        """Stop scheduling new rounds. An in-flight round still completes."""
        with self._lock:
            self._paused = True

    def resume(self):
        with self._lock:
            self._paused = False
            position = self._position
        self.report_position(position)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no round is in flight or scheduled. False on timeout."""
        return self._idle.wait(timeout)

    def close(self):
        with self._lock:
            self._closed = True
        self._stop.set()
        self._round_executor.shutdown(wait=True)
        self._fetch_executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ── Round ──

    def _batch_size(self, source: Source) -> int:
        settings = self._aggregator.settings_for(source)
        return settings.page_size if self.mode == StreamMode.PAGED else settings.batch_size

    def _set_slot(self, source: Source, state: SlotState):
        with self._lock:
            self._slots[source] = state

    def _run_round(self, delay: float = 0):
        if delay > 0 and self._stop.wait(delay):
            # Closed while backing off
            with self._lock:
                self._loading = False
                self._idle.set()
            return

        result = RoundResult()
        try:
            result = self._round()
        except Exception as e:
            log.error(f"Stream round crashed: {e}")
        finally:
            self._round_finished(result)

    def _round(self) -> RoundResult:
        result = RoundResult()

        if self._probe is not None:
            try:
                self._probe.ensure()
            except NetworkUnreachable as e:
                log.warning(f"Skipping round: {e}")
                result.network_unreachable = True
                return result

        futures = {}
        for source in self._sources:
            self._set_slot(source, SlotState.FETCHING)
            future = self._fetch_executor.submit(
                self._aggregator.run,
                source,
                force_refresh=True,
                batch_size=self._batch_size(source),
                include_stored=False,
            )
            futures[future] = source

        for future in as_completed(futures):
            source = futures[future]
            try:
                outcome = future.result()
            except Exception as e:
                log.warning(f"{source.value}: round fetch failed: {e}")
                result.failed.append(source)
                self._set_slot(source, SlotState.FAILED)
                continue

            added = self.sequence.extend(outcome.accepted)
            result.by_source[source] = added
            result.appended += added
            self._set_slot(source, SlotState.APPENDED if added else SlotState.FAILED)
            log.debug(f"{source.value}: appended {added} (stream size {len(self.sequence)})")

        log.info(
            f"Round done: {result.appended} appended from "
            f"{len(self._sources) - len(result.failed)}/{len(self._sources)} sources"
        )
        return result

    def _round_finished(self, result: RoundResult):
        notice = None
        with self._lock:
            self.last_round = result
            for source in self._slots:
                self._slots[source] = SlotState.IDLE

            if result.network_unreachable:
                notice = Notice.NETWORK_UNREACHABLE
            elif result.appended > 0:
                self._consecutive_failures = 0
            else:
                self._consecutive_failures += 1
                log.warning(f"Empty round ({self._consecutive_failures} in a row)")
                if self._consecutive_failures >= self.failure_threshold:
                    notice = Notice.CHECK_NETWORK
                    self._consecutive_failures = 0

        if notice is not None:
            self._notify(notice)

        with self._lock:
            self._loading = False
            # The consumer may have reached the end while we were loading
            if (
                not result.network_unreachable
                and not self._paused
                and not self._closed
                and self._remaining_locked() <= self.prefetch_threshold
            ):
                self._start_round_locked(self._backoff_locked(result))
            else:
                self._idle.set()

    def _backoff_locked(self, result: RoundResult) -> float:
        """Delay before the next round: none after a productive round."""
        if result.appended > 0:
            return 0
        streak = max(1, self._consecutive_failures)
        return min(self.retry_delay * streak, self.max_retry_delay)

    def _notify(self, notice: Notice):
        if self._on_notice is None:
            log.warning(f"Notice: {notice.value}")
            return
        try:
            self._on_notice(notice)
        except Exception as e:
            log.warning(f"Notice handler failed for {notice.value}: {e}")
