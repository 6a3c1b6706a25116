import threading

import pytest

from geo_linkage.batch import BatchLinkageRunner, BatchStats, run_batch
from geo_linkage.components import (
    AddressRecord,
    ConfidenceTier,
    Coordinate,
    IncomingRecord,
    MatchMethod,
)
from geo_linkage.config import BatchConfig, LinkageConfig
from geo_linkage.engine import AddressResolver
from geo_linkage.errors import IndexNotBuiltError
from geo_linkage.spatial import SpatialIndex

ORIGIN = Coordinate(55.0, 82.9)
FAR_AWAY = Coordinate(56.0, 84.0)


def build_index():
    return SpatialIndex.build(
        [
            AddressRecord(address_id=1, canonical_text="Lenina 10", coordinate=ORIGIN),
            AddressRecord(address_id=2, canonical_text="Sovetskaya 5", coordinate=Coordinate(55.01, 82.9)),
        ]
    )


def build_incoming(count, text="Lenina 10", coordinate=ORIGIN):
    return [
        IncomingRecord(external_id=f"listing-{idx}", raw_text=text, coordinate=coordinate)
        for idx in range(count)
    ]


def test_batch_survives_invalid_coordinate():
    records = build_incoming(99)
    records.insert(42, IncomingRecord(external_id="broken", raw_text="Lenina 10", coordinate=Coordinate(float("nan"), 82.9)))

    stats = BatchLinkageRunner(AddressResolver(build_index())).run(records)

    assert stats.processed == 100
    assert stats.errors == 1
    assert stats.matched == 99
    assert stats.no_match == 0
    assert stats.by_method[MatchMethod.EXACT_GEO] == 99
    assert stats.by_method[MatchMethod.NO_MATCH] == 1
    assert stats.by_tier[ConfidenceTier.NONE] == 1
    assert stats.results[42].record_id == "broken"
    assert stats.results[42].diagnostics["error"] == "InvalidCoordinateError"


def test_blank_text_counts_as_error():
    records = build_incoming(3) + build_incoming(1, text="  ")
    stats = BatchLinkageRunner(AddressResolver(build_index())).run(records)
    assert stats.processed == 4
    assert stats.errors == 1
    assert stats.results[-1].diagnostics["error"] == "EmptyTextError"


def test_unexpected_failure_is_isolated():
    class FlakyResolver:
        def __init__(self, inner):
            self.inner = inner

        def resolve_strict(self, record):
            if record.external_id == "listing-2":
                raise RuntimeError("boom")
            return self.inner.resolve_strict(record)

    runner = BatchLinkageRunner(FlakyResolver(AddressResolver(build_index())))
    stats = runner.run(build_incoming(5))

    assert stats.processed == 5
    assert stats.errors == 1
    assert stats.matched == 4
    assert stats.results[2].diagnostics["error"] == "RuntimeError"


def test_unbuilt_index_propagates():
    runner = BatchLinkageRunner(AddressResolver(SpatialIndex()))
    with pytest.raises(IndexNotBuiltError):
        runner.run(build_incoming(2))


def test_no_match_and_tier_counts():
    records = build_incoming(2) + build_incoming(3, text="zzzz qqqq", coordinate=FAR_AWAY)
    stats = BatchLinkageRunner(AddressResolver(build_index())).run(records)

    assert stats.matched == 2
    assert stats.no_match == 3
    assert stats.high_confidence == 2
    assert stats.medium_confidence == 0
    assert stats.low_confidence == 0
    summary = stats.as_dict()
    assert summary["by_tier"]["none"] == 3
    assert summary["by_method"]["exact_geo"] == 2
    assert summary["processed"] == 5


def test_progress_callback_every_n_records():
    calls = []
    runner = BatchLinkageRunner(
        AddressResolver(build_index()),
        progress_every=10,
        on_progress=lambda done, total: calls.append((done, total)),
    )
    runner.run(build_incoming(25))
    assert calls == [(10, 25), (20, 25), (25, 25)]


def test_cancellation_is_checked_per_record():
    cancel = threading.Event()

    def on_progress(done, total):
        if done == 10:
            cancel.set()

    runner = BatchLinkageRunner(
        AddressResolver(build_index()),
        progress_every=5,
        on_progress=on_progress,
        cancel_event=cancel,
    )
    stats = runner.run(build_incoming(50))

    assert stats.cancelled
    assert stats.processed == 10


def test_parallel_run_matches_sequential():
    records = build_incoming(20) + build_incoming(15, text="Sovetskaya 5", coordinate=Coordinate(55.0101, 82.9))
    records += [IncomingRecord(external_id="broken", raw_text="x", coordinate=Coordinate(100.0, 0.0))]
    resolver = AddressResolver(build_index())

    sequential = BatchLinkageRunner(resolver).run(records)
    parallel = BatchLinkageRunner(resolver).run_parallel(records, workers=4)

    assert parallel.as_dict() == sequential.as_dict()
    assert [r.record_id for r in parallel.results] == [r.external_id for r in records]
    assert [r.matched_address_id for r in parallel.results] == [
        r.matched_address_id for r in sequential.results
    ]


def test_run_batch_uses_config():
    calls = []
    config = LinkageConfig(batch=BatchConfig(progress_every=4, workers=2))
    stats = run_batch(
        build_incoming(8),
        build_index(),
        registry=None,
        config=config,
        on_progress=lambda done, total: calls.append(done),
    )
    assert stats.processed == 8
    assert stats.matched == 8
    assert calls == [4, 8]


def test_stats_merge():
    left = BatchStats(processed=2, matched=1, no_match=1)
    left.by_method[MatchMethod.EXACT_GEO] += 1
    right = BatchStats(processed=3, errors=1, cancelled=True)
    right.by_method[MatchMethod.EXACT_GEO] += 2

    merged = left.merge(right)
    assert merged.processed == 5
    assert merged.errors == 1
    assert merged.cancelled
    assert merged.by_method[MatchMethod.EXACT_GEO] == 3


def test_progress_every_must_be_positive():
    with pytest.raises(ValueError):
        BatchLinkageRunner(AddressResolver(build_index()), progress_every=0)
