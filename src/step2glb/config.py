"""Export settings for the STEP to GLB pipeline."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

from glbscene.accumulator import DEFAULT_COLOR, EdgeSampling


@dataclass(frozen=True)
class ExportSettings:
    """Tolerances and switches for one export run."""

    # Tessellation
    linear_deflection: float = 0.01
    angular_deflection: float = 0.10
    parallel_meshing: bool = True

    # Edge polylines: base deflection is linear_deflection * edge_deflection_factor
    edge_deflection_factor: float = 8.0
    short_edge_length: float = 5.0
    short_edge_scale: float = 0.25
    medium_edge_length: float = 50.0
    medium_edge_scale: float = 0.5
    fallback_edge_length: float = 10.0

    default_color: Tuple[float, float, float, float] = tuple(DEFAULT_COLOR)

    # Output
    output_dir: Optional[str] = None
    assembly_only: bool = False
    print_stats: bool = False
    validate: bool = False

    def __post_init__(self) -> None:
        if self.linear_deflection <= 0:
            raise ValueError(f"linear_deflection must be positive, got {self.linear_deflection}")
        if self.angular_deflection <= 0:
            raise ValueError(f"angular_deflection must be positive, got {self.angular_deflection}")
        if self.edge_deflection_factor <= 0:
            raise ValueError("edge_deflection_factor must be positive")
        if not 0 < self.short_edge_length <= self.medium_edge_length:
            raise ValueError("Edge length thresholds must satisfy 0 < short <= medium")
        if len(self.default_color) != 4:
            raise ValueError("default_color must have 4 channels")

    @property
    def edge_sampling(self) -> EdgeSampling:
        return EdgeSampling(
            deflection_factor=self.edge_deflection_factor,
            short_length=self.short_edge_length,
            short_scale=self.short_edge_scale,
            medium_length=self.medium_edge_length,
            medium_scale=self.medium_edge_scale,
            fallback_length=self.fallback_edge_length,
        )

    def with_overrides(self, **overrides: Any) -> "ExportSettings":
        """Copy with the given fields replaced; ``None`` values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
