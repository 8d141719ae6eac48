from filters.dedup import Deduplicator, DedupResult, dedupe, drop_invalid

__all__ = ["Deduplicator", "DedupResult", "dedupe", "drop_invalid"]
