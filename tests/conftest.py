"""Pytest configuration and shared fixtures.

Provides common test fixtures and configuration for the step2glb test suite.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import structlog

from glbscene.accumulator import MeshPatch, MeshShape, PolylineCurve
from glbscene.buckets import BucketSet, Color, EdgeBucket, MaterialPalette, TriangleBucket
from glbscene.builder import GlbBuilder
from kernel.occt_io import get_occt_info


# Configure test logging
LOG_CAPTURE = structlog.testing.LogCapture()

structlog.configure(
    processors=[LOG_CAPTURE],
    logger_factory=structlog.testing.ReturnLoggerFactory(),
    cache_logger_on_first_use=False,
)


@pytest.fixture
def log_output() -> structlog.testing.LogCapture:
    """Captured structlog events, cleared for each test."""
    LOG_CAPTURE.entries.clear()
    return LOG_CAPTURE


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_step_file(temp_dir: Path) -> Path:
    """Create a minimal STEP file for validation tests."""
    step_file = temp_dir / "test.step"
    step_file.write_text(
        "ISO-10303-21;\nHEADER;\nFILE_SCHEMA(('AUTOMOTIVE_DESIGN'));\nENDSEC;\n"
        "DATA;\nENDSEC;\nEND-ISO-10303-21;\n",
        encoding="utf-8",
    )
    return step_file


@pytest.fixture
def quad_patch() -> MeshPatch:
    """Unit square in the XY plane split along its diagonal, facing +Z."""
    return MeshPatch(
        node_array=[(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (1.0, 1.0, 0.0), (0.0, 1.0, 0.0)],
        triangle_array=[(0, 1, 2), (0, 2, 3)],
    )


@pytest.fixture
def quad_shape(quad_patch: MeshPatch) -> MeshShape:
    """Quad face with its four boundary edges."""
    corners = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (1.0, 1.0, 0.0), (0.0, 1.0, 0.0)]
    edges = [PolylineCurve([corners[i], corners[(i + 1) % 4]]) for i in range(4)]
    return MeshShape(patches=[quad_patch], curves=edges)


@pytest.fixture
def quad_buckets() -> tuple[list[TriangleBucket], list[EdgeBucket], list[Color]]:
    """One triangle bucket with a split quad on material 0, no edges."""
    bucket = TriangleBucket(
        vertices=[(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (1.0, 1.0, 0.0), (0.0, 1.0, 0.0)],
        normals=[(0.0, 0.0, 1.0)] * 4,
        indices=[0, 1, 2, 0, 2, 3],
        material_index=0,
    )
    return [bucket], [EdgeBucket(material_index=0)], [Color(0.8, 0.2, 0.2, 1.0)]


@pytest.fixture
def quad_builder(quad_buckets) -> GlbBuilder:
    """Builder holding the quad buckets."""
    builder = GlbBuilder()
    builder.add_buckets(*quad_buckets)
    return builder


@pytest.fixture
def accumulated_quad(quad_shape: MeshShape) -> tuple[MaterialPalette, BucketSet]:
    """Palette and buckets after accumulating the quad shape in red."""
    from glbscene.accumulator import accumulate_shape

    palette = MaterialPalette()
    buckets = BucketSet()
    accumulate_shape(quad_shape, Color(0.8, 0.1, 0.1, 1.0), palette, buckets)
    return palette, buckets


@pytest.fixture
def skip_if_no_occt():
    """Skip test if pythonocc-core is not available."""
    if not get_occt_info()["pythonOCC_available"]:
        pytest.skip("No OCCT binding available (pythonocc-core required)")
