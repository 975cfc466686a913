"""Mesh accumulation from tessellated CAD shapes into material buckets.

A tessellated shape is anything that yields surface patches (triangulated
faces) and curve segments (edges that can be sampled under a deflection).
``kernel.tessellation`` adapts Open CASCADE shapes to this interface; the
in-memory ``MeshShape`` is used for tests and for pre-meshed input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
import structlog

from .buckets import BucketSet, Color, EdgeBucket, MaterialPalette, TriangleBucket

logger = structlog.get_logger(__name__)

DEFAULT_COLOR = Color(0.7, 0.7, 0.7, 1.0)
DARK_EDGE_COLOR = Color(0.1, 0.1, 0.1, 1.0)
LIGHT_EDGE_COLOR = Color(0.9, 0.9, 0.9, 1.0)

DEFAULT_LINEAR_DEFLECTION = 0.01
DEGENERATE_NORMAL_EPS = 1e-12


@runtime_checkable
class SurfacePatch(Protocol):
    """One triangulated face as delivered by the tessellator."""

    def nodes(self) -> Any:
        """Node positions in local coordinates, shape (n, 3)."""

    def triangles(self) -> Any:
        """Zero-based node index triples, shape (m, 3)."""

    def transform(self) -> Optional[Any]:
        """Local-to-world 4x4 (or 3x4) matrix, None for identity."""

    def is_reversed(self) -> bool:
        """True when the face orientation requires flipped winding."""


@runtime_checkable
class CurveSegment(Protocol):
    """One edge curve."""

    def length(self) -> float:
        ...

    def sample(self, deflection: float) -> Any:
        """Points along the curve, shape (k, 3)."""


@runtime_checkable
class TessellatedShape(Protocol):
    def faces(self) -> Iterable[SurfacePatch]:
        ...

    def edges(self) -> Iterable[CurveSegment]:
        ...


@dataclass
class MeshPatch:
    """In-memory surface patch."""

    node_array: Sequence[Sequence[float]]
    triangle_array: Sequence[Sequence[int]]
    matrix: Optional[Sequence[Sequence[float]]] = None
    reversed: bool = False

    def nodes(self) -> Any:
        return self.node_array

    def triangles(self) -> Any:
        return self.triangle_array

    def transform(self) -> Optional[Any]:
        return self.matrix

    def is_reversed(self) -> bool:
        return self.reversed


@dataclass
class PolylineCurve:
    """Edge that is already discretized; sampling returns its points."""

    points: Sequence[Sequence[float]]

    def length(self) -> float:
        pts = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)
        if len(pts) < 2:
            return 0.0
        return float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())

    def sample(self, deflection: float) -> Any:
        return self.points


@dataclass
class MeshShape:
    """In-memory tessellated shape."""

    patches: List[SurfacePatch] = field(default_factory=list)
    curves: List[CurveSegment] = field(default_factory=list)

    def faces(self) -> Iterable[SurfacePatch]:
        return iter(self.patches)

    def edges(self) -> Iterable[CurveSegment]:
        return iter(self.curves)


@dataclass(frozen=True)
class EdgeSampling:
    """Deflection policy for edge polylines.

    Shorter curves get a tighter deflection so small features keep their
    shape.
    """

    deflection_factor: float = 8.0
    short_length: float = 5.0
    short_scale: float = 0.25
    medium_length: float = 50.0
    medium_scale: float = 0.5
    fallback_length: float = 10.0

    def deflection_for(self, linear_deflection: float, length: float) -> float:
        deflection = linear_deflection * self.deflection_factor
        if length < self.short_length:
            deflection *= self.short_scale
        elif length < self.medium_length:
            deflection *= self.medium_scale
        return deflection


@dataclass
class AccumulationReport:
    """Outcome of one ``accumulate_shape`` call."""

    surface_material: int
    edge_material: int
    faces_added: int = 0
    faces_skipped: int = 0
    faces_failed: int = 0
    edges_added: int = 0
    edges_skipped: int = 0
    edges_failed: int = 0


def resolve_surface_color(color: Color, default_color: Color = DEFAULT_COLOR) -> Color:
    """Replace pure black (an unset color) with the default gray."""
    color = Color(*color)
    return Color(*default_color) if color.is_black else color


def edge_color_for(surface_color: Color) -> Color:
    """Dark lines on light surfaces, light lines on dark ones."""
    return DARK_EDGE_COLOR if surface_color.luminance > 0.5 else LIGHT_EDGE_COLOR


def _to_world(nodes: np.ndarray, matrix: Optional[Any]) -> np.ndarray:
    if matrix is None:
        return nodes
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape not in ((4, 4), (3, 4)):
        raise ValueError(f"Expected a 4x4 or 3x4 transform, got shape {m.shape}")
    return nodes @ m[:3, :3].T + m[:3, 3]


def _normalize_rows(vectors: np.ndarray) -> np.ndarray:
    magnitude = np.linalg.norm(vectors, axis=1)
    valid = magnitude > DEGENERATE_NORMAL_EPS
    result = np.zeros_like(vectors)
    result[valid] = vectors[valid] / magnitude[valid, None]
    return result


def _append_patch(patch: SurfacePatch, bucket: TriangleBucket) -> bool:
    """Append one face to ``bucket``. Returns False for empty tessellations."""
    nodes = np.asarray(patch.nodes(), dtype=np.float64).reshape(-1, 3)
    triangles = np.asarray(patch.triangles(), dtype=np.int64).reshape(-1, 3)
    if len(nodes) < 3 or len(triangles) < 1:
        return False
    if triangles.min() < 0 or triangles.max() >= len(nodes):
        raise ValueError(
            f"Triangle references node outside 0..{len(nodes) - 1}"
        )

    world = _to_world(nodes, patch.transform())
    if patch.is_reversed():
        triangles = triangles[:, [0, 2, 1]]

    p1 = world[triangles[:, 0]]
    p2 = world[triangles[:, 1]]
    p3 = world[triangles[:, 2]]
    face_normals = _normalize_rows(np.cross(p2 - p1, p3 - p1))

    # Scratch accumulator scoped to this face; unweighted sum of face normals
    accumulated = np.zeros_like(world)
    for corner in range(3):
        np.add.at(accumulated, triangles[:, corner], face_normals)
    vertex_normals = _normalize_rows(accumulated)

    base = len(bucket.vertices)
    bucket.vertices.extend(tuple(v) for v in world.astype(np.float32).tolist())
    bucket.normals.extend(tuple(n) for n in vertex_normals.astype(np.float32).tolist())
    bucket.indices.extend((triangles.reshape(-1) + base).tolist())
    return True


def _append_curve(
    curve: CurveSegment,
    bucket: EdgeBucket,
    linear_deflection: float,
    sampling: EdgeSampling,
) -> bool:
    """Append one sampled edge to ``bucket``. Returns False when too short."""
    try:
        length = float(curve.length())
    except Exception as e:
        logger.debug("Edge length query failed, using fallback", error=str(e))
        length = sampling.fallback_length

    deflection = sampling.deflection_for(linear_deflection, length)
    points = np.asarray(curve.sample(deflection), dtype=np.float64).reshape(-1, 3)
    if len(points) < 2:
        return False

    base = len(bucket.vertices)
    bucket.vertices.extend(tuple(p) for p in points.astype(np.float32).tolist())
    for i in range(len(points) - 1):
        bucket.indices.append(base + i)
        bucket.indices.append(base + i + 1)
    return True


def accumulate_shape(
    shape: TessellatedShape,
    color: Color,
    palette: MaterialPalette,
    buckets: BucketSet,
    linear_deflection: float = DEFAULT_LINEAR_DEFLECTION,
    sampling: Optional[EdgeSampling] = None,
    default_color: Color = DEFAULT_COLOR,
) -> AccumulationReport:
    """Append the faces and edges of ``shape`` into ``buckets``.

    Faces go to the triangle bucket of the surface color, edges to the edge
    bucket of the derived edge color. A face or edge that fails is logged and
    skipped; the rest of the shape is still accumulated.

    Args:
        shape: Tessellated shape (faces + edges)
        color: Base RGBA color for the whole shape
        palette: Palette the material indices are taken from
        buckets: Bucket set receiving the geometry
        linear_deflection: Tessellation tolerance, also the base for edge sampling
        sampling: Edge deflection policy
        default_color: Substitute used when ``color`` is pure black

    Returns:
        AccumulationReport with the material indices and per-element counts
    """
    sampling = sampling or EdgeSampling()

    surface_color = resolve_surface_color(color, default_color)
    edge_color = edge_color_for(surface_color)

    surface_material = palette.get_or_create(surface_color)
    tri_bucket = buckets.triangle_bucket(surface_material)
    edge_material = palette.get_or_create(edge_color)
    edge_bucket = buckets.edge_bucket(edge_material)

    report = AccumulationReport(surface_material=surface_material, edge_material=edge_material)

    for face_number, patch in enumerate(shape.faces()):
        try:
            if _append_patch(patch, tri_bucket):
                report.faces_added += 1
            else:
                report.faces_skipped += 1
        except Exception as e:
            report.faces_failed += 1
            logger.warning("Skipping bad face", face=face_number, error=str(e))

    for edge_number, curve in enumerate(shape.edges()):
        try:
            if _append_curve(curve, edge_bucket, linear_deflection, sampling):
                report.edges_added += 1
            else:
                report.edges_skipped += 1
        except Exception as e:
            report.edges_failed += 1
            logger.warning("Skipping bad edge", edge=edge_number, error=str(e))

    logger.debug(
        "Shape accumulated",
        surface_material=surface_material,
        edge_material=edge_material,
        faces=report.faces_added,
        edges=report.edges_added,
        failed=report.faces_failed + report.edges_failed,
    )
    return report
