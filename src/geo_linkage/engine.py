from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from .components import AddressRecord, IncomingRecord, MatchResult
from .config import ResolverConfig
from .errors import EmptyTextError, InvalidCoordinateError
from .normalize import normalize_address
from .spatial import SpatialIndex
from .strategies import DEFAULT_STAGES, ResolutionStage, StageQuery

logger = logging.getLogger(__name__)


@dataclass
class ResolutionContext:
    """The registry snapshot a resolution runs against.

    ``registry`` maps address ids to records. When given, only ids present in
    it are eligible and records are read from it; otherwise the index's own
    records are used.
    """

    index: SpatialIndex
    registry: Optional[Mapping[Any, AddressRecord]] = None
    config: ResolverConfig = field(default_factory=ResolverConfig)


class AddressResolver:
    def __init__(
        self,
        index: SpatialIndex,
        config: ResolverConfig | None = None,
        registry: Optional[Mapping[Any, AddressRecord]] = None,
        stages: Sequence[ResolutionStage] = DEFAULT_STAGES,
    ) -> None:
        self.index = index
        self.config = config or ResolverConfig()
        self.registry = registry
        self.stages = tuple(stages)
        self._normalized: Dict[Any, str] = {}

    @classmethod
    def from_context(cls, context: ResolutionContext) -> "AddressResolver":
        return cls(context.index, context.config, context.registry)

    def _record_for(self, record: AddressRecord) -> AddressRecord:
        if self.registry is None:
            return record
        return self.registry.get(record.address_id, record)

    def _normalized_text_of(self, record: AddressRecord) -> str:
        key = record.address_id
        cached = self._normalized.get(key)
        if cached is None:
            cached = normalize_address(self._record_for(record).canonical_text)
            self._normalized[key] = cached
        return cached

    def _is_eligible(self, record: AddressRecord) -> bool:
        return self.registry is None or record.address_id in self.registry

    def resolve_strict(self, record: IncomingRecord) -> MatchResult:
        """Resolve ``record``, raising on an invalid coordinate or blank text."""
        if record.coordinate is None or not record.coordinate.is_valid():
            raise InvalidCoordinateError(
                f"record {record.external_id!r} has invalid coordinate {record.coordinate!r}"
            )
        if not (record.raw_text or "").strip():
            raise EmptyTextError(f"record {record.external_id!r} has no address text")
        return self._run_stages(record)

    def resolve(self, record: IncomingRecord) -> MatchResult:
        if record.coordinate is None or not record.coordinate.is_valid():
            logger.debug("Record %r has invalid coordinate %r", record.external_id, record.coordinate)
            return MatchResult.no_match(record.external_id, error="invalid_coordinate")
        return self._run_stages(record)

    def _run_stages(self, record: IncomingRecord) -> MatchResult:
        query = StageQuery(
            record=record,
            normalized_text=normalize_address(record.raw_text),
            index=self.index,
            config=self.config,
            normalized_text_of=self._normalized_text_of,
            is_eligible=self._is_eligible,
        )

        for stage in self.stages:
            result = stage.resolve(query)
            if result is not None:
                result.diagnostics["selected_stage"] = stage.name
                result.diagnostics["selected_score"] = f"{result.composite_score:.3f}"
                logger.debug(
                    "Record %r -> %r via %s (%s, %.0fm)",
                    record.external_id,
                    result.matched_address_id,
                    result.method.value,
                    result.confidence_tier.value,
                    result.distance_meters,
                )
                return result

        logger.debug("Record %r: no match", record.external_id)
        result = MatchResult.no_match(record.external_id, **query.trace)
        result.diagnostics["selected_stage"] = "none"
        result.diagnostics["selected_score"] = "0"
        return result


def resolve(
    incoming: IncomingRecord,
    index: SpatialIndex,
    registry: Optional[Mapping[Any, AddressRecord]] = None,
    config: ResolverConfig | None = None,
) -> MatchResult:
    return AddressResolver(index, config, registry).resolve(incoming)
