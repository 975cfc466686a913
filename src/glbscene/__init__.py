"""GLB scene assembly package.

This package provides material buckets, mesh accumulation from tessellated
CAD shapes, and GLB container writing and reading.
"""

from .buckets import BucketSet, Color, EdgeBucket, ExportStats, MaterialPalette, TriangleBucket
from .accumulator import AccumulationReport, MeshPatch, MeshShape, PolylineCurve, accumulate_shape
from .builder import ContainerWriteError, EmptySceneError, ExportError, GlbBuilder
from .reader import GlbDocument, GlbFormatError, read_glb, validate_glb

__version__ = "0.1.0"
__all__ = [
    "BucketSet", "Color", "EdgeBucket", "ExportStats", "MaterialPalette", "TriangleBucket",
    "AccumulationReport", "MeshPatch", "MeshShape", "PolylineCurve", "accumulate_shape",
    "ContainerWriteError", "EmptySceneError", "ExportError", "GlbBuilder",
    "GlbDocument", "GlbFormatError", "read_glb", "validate_glb",
]
