from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Type, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ResolverConfig:
    """Search radii (meters), similarity thresholds and ranking weights."""

    exact_radius_m: float = 30.0
    near_radius_m: float = 100.0
    extended_radius_m: float = 300.0

    high_similarity: float = 0.85
    medium_similarity: float = 0.65
    low_similarity: float = 0.40

    text_weight: float = 0.6
    distance_weight: float = 0.4
    distance_scale_m: float = 300.0

    def __post_init__(self) -> None:
        if not 0 < self.exact_radius_m < self.near_radius_m < self.extended_radius_m:
            raise ValueError("search radii must be positive and strictly increasing")
        for name in ("high_similarity", "medium_similarity", "low_similarity"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.text_weight < 0 or self.distance_weight < 0:
            raise ValueError("ranking weights must be non-negative")
        if abs(self.text_weight + self.distance_weight - 1.0) > 1e-9:
            raise ValueError("ranking weights must sum to 1")
        if self.distance_scale_m <= 0:
            raise ValueError("distance_scale_m must be positive")

    @property
    def ranking_weights(self) -> Dict[str, float]:
        return {"text": self.text_weight, "distance": self.distance_weight}


@dataclass(frozen=True)
class BatchConfig:
    progress_every: int = 10
    workers: int = 1

    def __post_init__(self) -> None:
        if self.progress_every < 1:
            raise ValueError("progress_every must be at least 1")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")


@dataclass(frozen=True)
class LinkageConfig:
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "LinkageConfig":
        unknown = set(raw) - {"resolver", "batch"}
        if unknown:
            raise ValueError(f"unknown config sections: {sorted(unknown)}")
        return cls(
            resolver=_section(ResolverConfig, raw.get("resolver", {})),
            batch=_section(BatchConfig, raw.get("batch", {})),
        )


def _section(kind: Type[T], raw: Mapping[str, Any]) -> T:
    known = {f.name: f.type for f in fields(kind)}
    unknown = set(raw) - set(known)
    if unknown:
        raise ValueError(f"unknown {kind.__name__} keys: {sorted(unknown)}")
    converted = {}
    for key, value in raw.items():
        converted[key] = int(value) if known[key] == "int" else float(value)
    return kind(**converted)


def load_config(path: str | Path) -> LinkageConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    return LinkageConfig.from_dict(raw)
