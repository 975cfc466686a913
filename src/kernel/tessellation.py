"""Open CASCADE tessellation adapter.

Meshes a TopoDS_Shape with BRepMesh and exposes its faces and edges through
the surface patch / curve segment interface used by
``glbscene.accumulator``. Geometry is read lazily so that a malformed face
or edge raises inside the accumulator, where it is skipped individually.
"""

from __future__ import annotations

from typing import Any, Iterator, List, Optional

import numpy as np
import structlog

from .occt_io import OCCTNotAvailableError

logger = structlog.get_logger(__name__)


class TessellationError(Exception):
    """Raised when a shape cannot be meshed."""

    pass


def _trsf_matrix(trsf: Any) -> np.ndarray:
    """gp_Trsf to a 4x4 numpy matrix."""
    matrix = np.eye(4)
    for row in range(3):
        for col in range(4):
            matrix[row, col] = trsf.Value(row + 1, col + 1)
    return matrix


class OccFacePatch:
    """Triangulation of one TopoDS_Face."""

    def __init__(self, face: Any) -> None:
        self._face = face
        self._triangulation: Any = None
        self._location: Any = None
        self._loaded = False

    def _load(self) -> None:
        if self._loaded:
            return
        from OCC.Core.BRep import BRep_Tool
        from OCC.Core.TopLoc import TopLoc_Location

        self._location = TopLoc_Location()
        self._triangulation = BRep_Tool.Triangulation(self._face, self._location)
        self._loaded = True

    def nodes(self) -> np.ndarray:
        self._load()
        tri = self._triangulation
        if tri is None:
            return np.zeros((0, 3))
        points = []
        for i in range(1, tri.NbNodes() + 1):
            p = tri.Node(i)
            points.append((p.X(), p.Y(), p.Z()))
        return np.asarray(points, dtype=np.float64).reshape(-1, 3)

    def triangles(self) -> np.ndarray:
        self._load()
        tri = self._triangulation
        if tri is None:
            return np.zeros((0, 3), dtype=np.int64)
        triples = []
        for i in range(1, tri.NbTriangles() + 1):
            n1, n2, n3 = tri.Triangle(i).Get()
            triples.append((n1 - 1, n2 - 1, n3 - 1))
        return np.asarray(triples, dtype=np.int64).reshape(-1, 3)

    def transform(self) -> Optional[np.ndarray]:
        self._load()
        if self._location is None or self._location.IsIdentity():
            return None
        return _trsf_matrix(self._location.Transformation())

    def is_reversed(self) -> bool:
        from OCC.Core.TopAbs import TopAbs_REVERSED

        return self._face.Orientation() == TopAbs_REVERSED


class OccEdgeCurve:
    """Curve of one TopoDS_Edge."""

    def __init__(self, edge: Any) -> None:
        self._edge = edge
        self._curve: Any = None

    def _adaptor(self) -> Any:
        if self._curve is None:
            from OCC.Core.BRepAdaptor import BRepAdaptor_Curve

            self._curve = BRepAdaptor_Curve(self._edge)
        return self._curve

    def length(self) -> float:
        from OCC.Core.GCPnts import GCPnts_AbscissaPoint

        return float(GCPnts_AbscissaPoint.Length(self._adaptor()))

    def sample(self, deflection: float) -> np.ndarray:
        from OCC.Core.GCPnts import GCPnts_UniformDeflection

        sampler = GCPnts_UniformDeflection(self._adaptor(), deflection)
        if not sampler.IsDone():
            return np.zeros((0, 3))
        points = []
        for i in range(1, sampler.NbPoints() + 1):
            p = sampler.Value(i)
            points.append((p.X(), p.Y(), p.Z()))
        return np.asarray(points, dtype=np.float64).reshape(-1, 3)


class OccTessellatedShape:
    """A meshed TopoDS_Shape."""

    def __init__(self, shape: Any) -> None:
        self.shape = shape

    def _explore(self, kind: Any, cast: Any) -> List[Any]:
        from OCC.Core.TopExp import TopExp_Explorer

        found = []
        explorer = TopExp_Explorer(self.shape, kind)
        while explorer.More():
            found.append(cast(explorer.Current()))
            explorer.Next()
        return found

    def faces(self) -> Iterator[OccFacePatch]:
        from OCC.Core.TopAbs import TopAbs_FACE
        from OCC.Core.TopoDS import topods

        for face in self._explore(TopAbs_FACE, topods.Face):
            yield OccFacePatch(face)

    def edges(self) -> Iterator[OccEdgeCurve]:
        from OCC.Core.TopAbs import TopAbs_EDGE
        from OCC.Core.TopoDS import topods

        for edge in self._explore(TopAbs_EDGE, topods.Edge):
            yield OccEdgeCurve(edge)


def tessellate(
    shape: Any,
    linear_deflection: float = 0.01,
    angular_deflection: float = 0.10,
    parallel: bool = True,
) -> OccTessellatedShape:
    """Mesh ``shape`` in place and wrap it for accumulation.

    Args:
        shape: TopoDS_Shape to mesh
        linear_deflection: Maximum chordal deviation
        angular_deflection: Maximum angular deviation in radians
        parallel: Let OCCT mesh faces in parallel

    Returns:
        OccTessellatedShape exposing faces and edges

    Raises:
        OCCTNotAvailableError: If pythonocc-core is not installed
        TessellationError: If the shape is null or meshing fails
    """
    try:
        from OCC.Core.BRepMesh import BRepMesh_IncrementalMesh
    except ImportError as e:
        raise OCCTNotAvailableError(
            "pythonocc-core is required for tessellation:\n"
            "  conda install -c conda-forge pythonocc-core"
        ) from e

    if shape is None or shape.IsNull():
        raise TessellationError("Cannot tessellate a null shape")

    try:
        mesh = BRepMesh_IncrementalMesh(shape, linear_deflection, False, angular_deflection, parallel)
        mesh.Perform()
    except Exception as e:
        raise TessellationError(f"Meshing failed: {e}") from e

    logger.debug(
        "Shape tessellated",
        linear_deflection=linear_deflection,
        angular_deflection=angular_deflection,
        parallel=parallel,
    )
    return OccTessellatedShape(shape)
