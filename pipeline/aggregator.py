"""
Aggregation run: fetch -> dedup -> persist -> evict, for one source.

Provider failures are absorbed here. A provider that raises, times out
or is rate limited simply contributes zero items. Storage failures are
not absorbed: they are the run's error and propagate to the caller.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable

from config.settings import SourceSettings
from filters.dedup import Deduplicator
from models import AggregationOutcome, Item, Source
from providers.base import ProviderClient, ProviderUnavailable
from storage.db import ContentStore, StorageUnavailable
from storage.eviction import EvictionPolicy

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Aggregator:
    def __init__(
        self,
        store: ContentStore,
        providers: dict[Source, ProviderClient],
        deduplicator: Deduplicator,
        eviction: EvictionPolicy,
        sources: dict[Source, SourceSettings] | None = None,
        fetch_timeout: float = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._providers = providers
        self._dedup = deduplicator
        self._eviction = eviction
        self._sources = sources or {}
        self._fetch_timeout = fetch_timeout
        self._clock = clock

    @property
    def sources(self) -> list[Source]:
        """Sources that have a provider configured."""
        return list(self._providers)

    def settings_for(self, source: Source) -> SourceSettings:
        return self._sources.get(source) or SourceSettings()

    def should_refresh(self, source: Source) -> bool:
        """True if the source hasn't produced anything within its refresh interval."""
        last = self._store.last_added_at(source)
        if last is None:
            return True
        elapsed = self._clock() - last
        return elapsed >= self.settings_for(source).refresh_interval

    def run(
        self,
        source: Source,
        force_refresh: bool = False,
        batch_size: int | None = None,
        include_stored: bool = True,
    ) -> AggregationOutcome:
        """
        One aggregation run for `source`.

        Raises:
            ValueError: no provider configured for `source`.
            StorageUnavailable: the store failed; inserts already committed stay.
        """
        provider = self._providers.get(source)
        if provider is None:
            raise ValueError(f"No provider configured for {source.value}")

        outcome = AggregationOutcome(source=source)

        if not force_refresh and not self.should_refresh(source):
            log.info(f"{source.value}: refreshed recently, using stored items")
            outcome.stored = self._store.query(source=source)
            outcome.total = self._store.count()
            outcome.total_by_source = self._store.count_by_source()
            return outcome

        if batch_size is None:
            batch_size = self.settings_for(source).page_size

        candidates = self._fetch(provider, batch_size)

        try:
            result = self._dedup.filter(candidates, source)
            outcome.fetched = len(candidates) - len(result.invalid)
            outcome.new = len(result.unique)
            outcome.duplicates = len(result.duplicates)
            if result.invalid:
                log.debug(f"{source.value}: dropped {len(result.invalid)} items without a content URL")

            outcome.accepted = self._store.insert_new(result.unique)
            outcome.saved = len(outcome.accepted)

            if outcome.saved:
                outcome.evicted = self._eviction.enforce(source).total

            outcome.total = self._store.count()
            outcome.total_by_source = self._store.count_by_source()
            if include_stored:
                outcome.stored = self._store.query(source=source)
        except StorageUnavailable as e:
            log.error(f"{source.value}: aggregation aborted, storage unavailable: {e}")
            raise

        outcome.is_refreshed = True
        log.info(outcome.summary())
        return outcome

    def run_many(
        self,
        sources: list[Source] | None = None,
        force_refresh: bool = False,
        concurrent: bool = True,
    ) -> dict[Source, AggregationOutcome]:
        """
        Run several sources. A source whose run raises is logged and left out
        of the result; the others still complete.
        """
        sources = sources if sources is not None else self.sources
        outcomes: dict[Source, AggregationOutcome] = {}

        if not concurrent or len(sources) <= 1:
            for source in sources:
                try:
                    outcomes[source] = self.run(source, force_refresh=force_refresh)
                except (StorageUnavailable, ValueError) as e:
                    log.error(f"{source.value}: run failed: {e}")
            return outcomes

        with ThreadPoolExecutor(max_workers=len(sources)) as executor:
            future_to_source = {
                executor.submit(self.run, source, force_refresh): source
                for source in sources
            }
            for future in as_completed(future_to_source):
                source = future_to_source[future]
                try:
                    outcomes[source] = future.result()
                except (StorageUnavailable, ValueError) as e:
                    log.error(f"{source.value}: run failed: {e}")
        return outcomes

    def _fetch(self, provider: ProviderClient, batch_size: int) -> list[Item]:
        """Call the provider; any failure means zero items."""
        try:
            items = provider.fetch(batch_size, timeout=self._fetch_timeout)
        except ProviderUnavailable as e:
            log.warning(f"{provider.name()} unavailable: {e}")
            return []
        except Exception as e:
            log.warning(f"{provider.name()} failed unexpectedly: {e}")
            return []
        return list(items or [])
