from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .components import AddressRecord, ConfidenceTier, IncomingRecord, MatchMethod, MatchResult
from .config import LinkageConfig
from .engine import AddressResolver
from .errors import GeoLinkageError, IndexNotBuiltError
from .spatial import SpatialIndex

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class BatchStats:
    processed: int = 0
    matched: int = 0
    no_match: int = 0
    errors: int = 0
    cancelled: bool = False
    by_tier: Counter = field(default_factory=Counter)
    by_method: Counter = field(default_factory=Counter)
    results: List[MatchResult] = field(default_factory=list)

    def record(self, result: MatchResult) -> None:
        self.processed += 1
        self.results.append(result)
        self.by_tier[result.confidence_tier] += 1
        self.by_method[result.method] += 1
        if result.matched:
            self.matched += 1
        else:
            self.no_match += 1

    def record_error(self, record: IncomingRecord, error: Exception) -> None:
        # Unmatchable records are classified no_match in the breakdowns but
        # counted under ``errors`` rather than ``no_match``.
        self.processed += 1
        self.errors += 1
        result = MatchResult.no_match(
            record.external_id,
            error=type(error).__name__,
            detail=str(error),
        )
        self.results.append(result)
        self.by_tier[result.confidence_tier] += 1
        self.by_method[result.method] += 1

    def merge(self, other: "BatchStats") -> "BatchStats":
        self.processed += other.processed
        self.matched += other.matched
        self.no_match += other.no_match
        self.errors += other.errors
        self.cancelled = self.cancelled or other.cancelled
        self.by_tier.update(other.by_tier)
        self.by_method.update(other.by_method)
        self.results.extend(other.results)
        return self

    @property
    def high_confidence(self) -> int:
        return self.by_tier[ConfidenceTier.HIGH]

    @property
    def medium_confidence(self) -> int:
        return self.by_tier[ConfidenceTier.MEDIUM]

    @property
    def low_confidence(self) -> int:
        return self.by_tier[ConfidenceTier.LOW] + self.by_tier[ConfidenceTier.VERY_LOW]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "matched": self.matched,
            "no_match": self.no_match,
            "errors": self.errors,
            "cancelled": self.cancelled,
            "high_confidence": self.high_confidence,
            "medium_confidence": self.medium_confidence,
            "low_confidence": self.low_confidence,
            "by_tier": {tier.value: self.by_tier[tier] for tier in ConfidenceTier},
            "by_method": {method.value: self.by_method[method] for method in MatchMethod},
        }


class _Progress:
    """Thread-safe processed-record counter that fires the callback."""

    def __init__(self, total: int, every: int, callback: Optional[ProgressCallback]) -> None:
        self.total = total
        self.every = every
        self.callback = callback
        self.done = 0
        self._last_reported = 0
        self._lock = threading.Lock()

    def tick(self) -> None:
        with self._lock:
            self.done += 1
            if self.done % self.every == 0:
                self._report()

    def finish(self) -> None:
        with self._lock:
            if self.done != self._last_reported:
                self._report()

    def _report(self) -> None:
        self._last_reported = self.done
        percent = round(self.done / self.total * 100) if self.total else 100
        logger.info("Progress: %d/%d (%d%%)", self.done, self.total, percent)
        if self.callback is not None:
            self.callback(self.done, self.total)


class BatchLinkageRunner:
    """Resolve a collection of incoming records and aggregate the outcome.

    A failure on one record (invalid coordinate, blank text, or any other
    exception raised while resolving it) is counted in ``errors`` and the run
    continues. Only :class:`IndexNotBuiltError` propagates. Cancellation is
    checked before each record.
    """

    def __init__(
        self,
        resolver: AddressResolver,
        progress_every: int = 10,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        if progress_every < 1:
            raise ValueError("progress_every must be at least 1")
        self.resolver = resolver
        self.progress_every = progress_every
        self.on_progress = on_progress
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self.cancel_event.set()

    def _process_shard(self, shard: Sequence[IncomingRecord], progress: _Progress) -> BatchStats:
        stats = BatchStats()
        for record in shard:
            if self.cancel_event.is_set():
                stats.cancelled = True
                break
            try:
                result = self.resolver.resolve_strict(record)
            except IndexNotBuiltError:
                raise
            except GeoLinkageError as exc:
                logger.warning("Skipping record %r: %s", record.external_id, exc)
                stats.record_error(record, exc)
            except Exception as exc:
                logger.exception("Failed to resolve record %r", record.external_id)
                stats.record_error(record, exc)
            else:
                stats.record(result)
            progress.tick()
        return stats

    def run(self, records: Sequence[IncomingRecord]) -> BatchStats:
        records = list(records)
        logger.info("Resolving %d records", len(records))
        progress = _Progress(len(records), self.progress_every, self.on_progress)
        stats = self._process_shard(records, progress)
        progress.finish()
        self._log_summary(stats)
        return stats

    def run_parallel(self, records: Sequence[IncomingRecord], workers: int = 4) -> BatchStats:
        """Shard ``records`` across ``workers`` threads and merge their stats.

        Shards are contiguous, so merged results keep the input order.
        """
        records = list(records)
        if workers <= 1 or len(records) <= 1:
            return self.run(records)

        size = math.ceil(len(records) / workers)
        shards = [records[start : start + size] for start in range(0, len(records), size)]
        logger.info("Resolving %d records in %d shards", len(records), len(shards))
        progress = _Progress(len(records), self.progress_every, self.on_progress)

        with ThreadPoolExecutor(max_workers=len(shards)) as executor:
            shard_stats = list(executor.map(lambda shard: self._process_shard(shard, progress), shards))

        stats = BatchStats()
        for partial in shard_stats:
            stats.merge(partial)
        progress.finish()
        self._log_summary(stats)
        return stats

    def _log_summary(self, stats: BatchStats) -> None:
        logger.info(
            "Batch finished: processed=%d matched=%d no_match=%d errors=%d cancelled=%s",
            stats.processed,
            stats.matched,
            stats.no_match,
            stats.errors,
            stats.cancelled,
        )


def run_batch(
    incoming_records: Sequence[IncomingRecord],
    index: SpatialIndex,
    registry: Optional[Mapping[Any, AddressRecord]] = None,
    config: LinkageConfig | None = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> BatchStats:
    config = config or LinkageConfig()
    resolver = AddressResolver(index, config.resolver, registry)
    runner = BatchLinkageRunner(
        resolver,
        progress_every=config.batch.progress_every,
        on_progress=on_progress,
        cancel_event=cancel_event,
    )
    if config.batch.workers > 1:
        return runner.run_parallel(incoming_records, workers=config.batch.workers)
    return runner.run(incoming_records)
