"""
Retention limits. Two caps, applied in order after every insert that grew
the store:

1. per-source cap: keeps one fast-refreshing source from crowding out the rest
2. global cap: bounds total rows regardless of the source mix

Pinned items are never deleted and never counted. If pinned items alone
exceed a cap, the cap is simply not met.
"""

import logging
from dataclasses import dataclass

from models import Source
from storage.db import ContentStore

log = logging.getLogger(__name__)


@dataclass
class EvictionReport:
    per_source: int = 0
    global_: int = 0

    @property
    def total(self) -> int:
        return self.per_source + self.global_


class EvictionPolicy:
    def __init__(
        self,
        store: ContentStore,
        per_source_cap: int = 100,
        global_cap: int = 200,
        enabled: bool = True,
    ):
        if per_source_cap < 0 or global_cap < 0:
            raise ValueError("retention caps must be >= 0")
        self._store = store
        self.per_source_cap = per_source_cap
        self.global_cap = global_cap
        self.enabled = enabled

    def enforce(self, source: Source) -> EvictionReport:
        """Trim `source` to its cap, then the whole store. Safe to call redundantly."""
        report = EvictionReport()
        if not self.enabled:
            return report

        report.per_source = self._store.delete_oldest(source, keep=self.per_source_cap)
        if report.per_source:
            log.info(f"Evicted {report.per_source} old {source.value} items (cap={self.per_source_cap})")

        if self._store.count(pinned=False) > self.global_cap:
            report.global_ = self._store.delete_oldest(keep=self.global_cap)
            if report.global_:
                log.info(f"Evicted {report.global_} items over global cap ({self.global_cap})")

        return report
