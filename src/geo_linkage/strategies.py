from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .components import ConfidenceTier, IncomingRecord, MatchCandidate, MatchMethod, MatchResult
from .config import ResolverConfig
from .scorer import composite_text_similarity, geo_text_score
from .spatial import Neighbor, SpatialIndex


@dataclass
class StageQuery:
    """Everything a stage needs to look at one incoming record."""

    record: IncomingRecord
    normalized_text: str
    index: SpatialIndex
    config: ResolverConfig
    normalized_text_of: Callable[[Any], str]
    is_eligible: Callable[[Any], bool] = lambda record: True
    trace: Dict[str, str] = field(default_factory=dict)


class ResolutionStage(ABC):
    name: str
    method: MatchMethod

    @abstractmethod
    def resolve(self, query: StageQuery) -> Optional[MatchResult]:
        raise NotImplementedError

    def neighbors(self, query: StageQuery) -> List[Neighbor]:
        radius = self.radius(query.config)
        center = query.record.coordinate
        if radius is None:
            found: Iterable[Neighbor] = query.index.neighbors_of_all(center)
        else:
            found = query.index.query_radius_with_distance(center, radius)
        return [n for n in found if query.is_eligible(n.record)]

    def radius(self, config: ResolverConfig) -> Optional[float]:
        return None

    def score(self, query: StageQuery, neighbors: Iterable[Neighbor]) -> List[MatchCandidate]:
        """Score neighbors with the shared geo/text formula, best first."""
        config = query.config
        candidates = []
        for neighbor in neighbors:
            similarity = composite_text_similarity(
                query.normalized_text, query.normalized_text_of(neighbor.record)
            )
            candidates.append(
                MatchCandidate(
                    address=neighbor.record,
                    distance_meters=neighbor.distance_meters,
                    text_similarity=similarity,
                    composite_score=geo_text_score(
                        similarity,
                        neighbor.distance_meters,
                        distance_scale=config.distance_scale_m,
                        weights=config.ranking_weights,
                    ),
                    order=neighbor.order,
                    stage=self.name,
                )
            )
        return sorted(candidates, key=MatchCandidate.sort_key)

    def build_result(
        self,
        query: StageQuery,
        candidate: MatchCandidate,
        tier: ConfidenceTier,
        composite_score: Optional[float] = None,
    ) -> MatchResult:
        return MatchResult(
            record_id=query.record.external_id,
            matched_address_id=candidate.address.address_id,
            confidence_tier=tier,
            method=self.method,
            distance_meters=candidate.distance_meters,
            text_similarity=candidate.text_similarity,
            composite_score=candidate.composite_score if composite_score is None else composite_score,
            diagnostics=dict(query.trace),
        )


class ExactGeoStage(ResolutionStage):
    """Accept the only registry point within the exact radius.

    Two or more points inside the radius are a tie this stage does not
    break; resolution continues with the text-aware stages.
    """

    name = "exact"
    method = MatchMethod.EXACT_GEO

    def radius(self, config: ResolverConfig) -> Optional[float]:
        return config.exact_radius_m

    def resolve(self, query: StageQuery) -> Optional[MatchResult]:
        found = self.neighbors(query)
        query.trace[f"{self.name}_candidates"] = str(len(found))
        if len(found) != 1:
            return None
        candidate = self.score(query, found)[0]
        return self.build_result(query, candidate, ConfidenceTier.HIGH, composite_score=1.0)


class TextGeoStage(ResolutionStage):
    """Rank neighbors and promote the best one if its text is similar enough."""

    @abstractmethod
    def threshold(self, config: ResolverConfig) -> float:
        raise NotImplementedError

    @abstractmethod
    def tier_for(self, similarity: float, config: ResolverConfig) -> ConfidenceTier:
        raise NotImplementedError

    def resolve(self, query: StageQuery) -> Optional[MatchResult]:
        found = self.neighbors(query)
        query.trace[f"{self.name}_candidates"] = str(len(found))
        if not found:
            return None

        best = self.score(query, found)[0]
        query.trace[f"{self.name}_best_similarity"] = f"{best.text_similarity:.3f}"
        if best.text_similarity < self.threshold(query.config):
            return None
        return self.build_result(query, best, self.tier_for(best.text_similarity, query.config))


class NearGeoTextStage(TextGeoStage):
    name = "near"
    method = MatchMethod.NEAR_GEO_TEXT

    def radius(self, config: ResolverConfig) -> Optional[float]:
        return config.near_radius_m

    def threshold(self, config: ResolverConfig) -> float:
        return config.high_similarity

    def tier_for(self, similarity: float, config: ResolverConfig) -> ConfidenceTier:
        return ConfidenceTier.HIGH


class ExtendedGeoTextStage(TextGeoStage):
    name = "extended"
    method = MatchMethod.EXTENDED_GEO_TEXT

    def radius(self, config: ResolverConfig) -> Optional[float]:
        return config.extended_radius_m

    def threshold(self, config: ResolverConfig) -> float:
        return config.medium_similarity

    def tier_for(self, similarity: float, config: ResolverConfig) -> ConfidenceTier:
        if similarity >= config.high_similarity:
            return ConfidenceTier.HIGH
        return ConfidenceTier.MEDIUM


class GlobalTextStage(TextGeoStage):
    """Search the whole registry regardless of distance."""

    name = "global"
    method = MatchMethod.GLOBAL_TEXT

    def threshold(self, config: ResolverConfig) -> float:
        return config.low_similarity

    def tier_for(self, similarity: float, config: ResolverConfig) -> ConfidenceTier:
        return ConfidenceTier.VERY_LOW


DEFAULT_STAGES = (ExactGeoStage(), NearGeoTextStage(), ExtendedGeoTextStage(), GlobalTextStage())
