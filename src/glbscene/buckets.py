"""Geometry bucket model for GLB assembly.

Buckets group vertices, normals and indices per material so that each
material becomes one glTF primitive. The material palette deduplicates
colors by their 8-bit quantized value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Tuple

Vec3 = Tuple[float, float, float]


class Color(NamedTuple):
    """RGBA color with channels in [0, 1]."""

    r: float
    g: float
    b: float
    a: float = 1.0

    @property
    def luminance(self) -> float:
        """Perceptual brightness (ITU-R BT.601 weights)."""
        return 0.299 * self.r + 0.587 * self.g + 0.114 * self.b

    @property
    def is_black(self) -> bool:
        return self.r == 0.0 and self.g == 0.0 and self.b == 0.0


def _quantize_channel(value: float) -> int:
    value = min(max(value, 0.0), 1.0)
    # Half away from zero; value is never negative here
    return int(math.floor(value * 255.0 + 0.5))


def quantize_color(color: Color) -> int:
    """Pack a color into a 32-bit key, one byte per channel (RGBA order)."""
    r, g, b, a = (_quantize_channel(c) for c in color)
    return (r << 24) | (g << 16) | (b << 8) | a


class MaterialPalette:
    """Append-only list of unique material colors."""

    def __init__(self) -> None:
        self._lookup: Dict[int, int] = {}
        self._colors: List[Color] = []

    def get_or_create(self, color: Color) -> int:
        """Return the material index for ``color``, appending it if new.

        Colors that quantize to the same 8-bit channels share one index; the
        first color seen for a key is the one stored.
        """
        color = Color(*color)
        key = quantize_color(color)
        index = self._lookup.get(key)
        if index is None:
            index = len(self._colors)
            self._colors.append(color)
            self._lookup[key] = index
        return index

    def snapshot(self) -> Tuple[Color, ...]:
        """Current colors in index order."""
        return tuple(self._colors)

    def __len__(self) -> int:
        return len(self._colors)

    def __getitem__(self, index: int) -> Color:
        return self._colors[index]


@dataclass
class TriangleBucket:
    """Triangle-list geometry for one material."""

    vertices: List[Vec3] = field(default_factory=list)
    normals: List[Vec3] = field(default_factory=list)
    indices: List[int] = field(default_factory=list)
    material_index: Optional[int] = None

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    def is_empty(self) -> bool:
        return not self.vertices


@dataclass
class EdgeBucket:
    """Line-list geometry for one material."""

    vertices: List[Vec3] = field(default_factory=list)
    indices: List[int] = field(default_factory=list)
    material_index: Optional[int] = None

    @property
    def segment_count(self) -> int:
        return len(self.indices) // 2

    def is_empty(self) -> bool:
        return not self.vertices


class BucketSet:
    """Arena of triangle and edge buckets addressed by material index.

    Buckets are stored contiguously in creation order; a separate mapping
    resolves a material index to its slot. Asking for a material that has no
    bucket yet creates an empty one tagged with that index.
    """

    def __init__(self) -> None:
        self._triangles: List[TriangleBucket] = []
        self._triangle_slots: Dict[int, int] = {}
        self._edges: List[EdgeBucket] = []
        self._edge_slots: Dict[int, int] = {}

    @staticmethod
    def _check_index(material_index: int) -> None:
        if material_index < 0:
            raise ValueError(f"Material index must be non-negative, got {material_index}")

    def triangle_bucket(self, material_index: int) -> TriangleBucket:
        self._check_index(material_index)
        slot = self._triangle_slots.get(material_index)
        if slot is None:
            slot = len(self._triangles)
            self._triangles.append(TriangleBucket(material_index=material_index))
            self._triangle_slots[material_index] = slot
        return self._triangles[slot]

    def edge_bucket(self, material_index: int) -> EdgeBucket:
        self._check_index(material_index)
        slot = self._edge_slots.get(material_index)
        if slot is None:
            slot = len(self._edges)
            self._edges.append(EdgeBucket(material_index=material_index))
            self._edge_slots[material_index] = slot
        return self._edges[slot]

    def triangle_buckets(self) -> List[TriangleBucket]:
        """Triangle buckets ordered by material index."""
        return [self._triangles[self._triangle_slots[i]] for i in sorted(self._triangle_slots)]

    def edge_buckets(self) -> List[EdgeBucket]:
        """Edge buckets ordered by material index."""
        return [self._edges[self._edge_slots[i]] for i in sorted(self._edge_slots)]

    def has_geometry(self) -> bool:
        return any(not b.is_empty() for b in self._triangles) or any(
            not b.is_empty() for b in self._edges
        )


@dataclass(frozen=True)
class ExportStats:
    """Statistics for one written GLB container."""

    vertices: int = 0
    triangles: int = 0
    lines: int = 0
    materials: int = 0
    primitives: int = 0
    buffer_bytes: int = 0
    json_bytes: int = 0
    total_bytes: int = 0
    elapsed_sec: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {
            "vertices": self.vertices,
            "triangles": self.triangles,
            "lines": self.lines,
            "materials": self.materials,
            "primitives": self.primitives,
            "buffer_bytes": self.buffer_bytes,
            "json_bytes": self.json_bytes,
            "total_bytes": self.total_bytes,
            "elapsed_sec": self.elapsed_sec,
        }

    def to_table(self, title: str = "Export Statistics"):
        """Render as a rich table."""
        from rich.table import Table

        table = Table(title=title)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Vertices", str(self.vertices))
        table.add_row("Triangles", str(self.triangles))
        table.add_row("Edges", str(self.lines))
        table.add_row("Materials", str(self.materials))
        table.add_row("Primitives", str(self.primitives))
        table.add_row("BIN size", f"{self.buffer_bytes / 1024.0:.2f} KB")
        table.add_row("JSON size", f"{self.json_bytes / 1024.0:.2f} KB")
        table.add_row("Total GLB", f"{self.total_bytes / 1024.0:.2f} KB")
        table.add_row("Elapsed", f"{self.elapsed_sec:.2f} seconds")
        return table
