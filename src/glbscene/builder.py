"""GLB container assembly.

Collects material buckets from one or more accumulation passes and writes
them as a single glTF 2.0 binary file: a 12-byte header, a JSON chunk and a
BIN chunk holding positions, normals and indices.
"""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import orjson
import structlog

from .buckets import Color, EdgeBucket, ExportStats, TriangleBucket

logger = structlog.get_logger(__name__)

GLB_MAGIC = 0x46546C67  # "glTF"
GLB_VERSION = 2
CHUNK_JSON = 0x4E4F534A  # "JSON"
CHUNK_BIN = 0x004E4942  # "BIN\0"

GENERATOR = "step2glb"

COMPONENT_FLOAT = 5126
COMPONENT_UINT = 5125
TARGET_ARRAY_BUFFER = 34962
TARGET_ELEMENT_ARRAY_BUFFER = 34963
MODE_LINES = 1
MODE_TRIANGLES = 4

BOUND_SNAP_EPS = 1e-9


class ExportError(Exception):
    """Raised when a GLB container cannot be produced."""
    pass


class EmptySceneError(ExportError):
    """Raised when there is no geometry to write."""
    pass


class ContainerWriteError(ExportError):
    """Raised when the destination file cannot be written."""
    pass


def pad4(n: int) -> int:
    return (n + 3) & ~3


def position_bounds(vertices: Sequence[Tuple[float, float, float]]) -> Tuple[List[float], List[float]]:
    """Per-axis min/max of ``vertices``; near-zero values snap to 0."""
    if not vertices:
        return [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]
    arr = np.asarray(vertices, dtype=np.float32).reshape(-1, 3)
    lo = arr.min(axis=0)
    hi = arr.max(axis=0)

    def snap(values: np.ndarray) -> List[float]:
        return [0.0 if abs(float(v)) < BOUND_SNAP_EPS else float(v) for v in values]

    return snap(lo), snap(hi)


@dataclass
class _Layout:
    """Buffer views, accessors and primitives accumulated while packing."""

    payload: bytearray
    buffer_views: List[Dict[str, Any]]
    accessors: List[Dict[str, Any]]
    primitives: List[Dict[str, Any]]

    def add_view(self, data: bytes, target: int) -> int:
        offset = len(self.payload)
        self.payload.extend(data)
        self.buffer_views.append({
            "buffer": 0,
            "byteOffset": offset,
            "byteLength": len(data),
            "target": target,
        })
        return len(self.buffer_views) - 1

    def add_accessor(
        self,
        view: int,
        component_type: int,
        count: int,
        kind: str,
        bounds: Optional[Tuple[List[float], List[float]]] = None,
    ) -> int:
        accessor: Dict[str, Any] = {
            "bufferView": view,
            "componentType": component_type,
            "count": count,
            "type": kind,
        }
        if bounds is not None:
            accessor["min"] = bounds[0]
            accessor["max"] = bounds[1]
        self.accessors.append(accessor)
        return len(self.accessors) - 1


def _vec3_bytes(values: Sequence[Tuple[float, float, float]]) -> bytes:
    return np.asarray(values, dtype="<f4").reshape(-1, 3).tobytes()


def _index_bytes(values: Sequence[int]) -> bytes:
    return np.asarray(values, dtype="<u4").tobytes()


class GlbBuilder:
    """Accumulates buckets and materials, then writes one GLB container.

    ``add_buckets`` may be called several times, each with its own palette;
    material references are shifted by the palette size at the time of the
    call so they keep pointing at their original colors.
    """

    def __init__(self, generator: str = GENERATOR) -> None:
        self._generator = generator
        self._triangle_buckets: List[TriangleBucket] = []
        self._edge_buckets: List[EdgeBucket] = []
        self._materials: List[Color] = []

    @property
    def materials(self) -> Tuple[Color, ...]:
        return tuple(self._materials)

    @property
    def triangle_buckets(self) -> Tuple[TriangleBucket, ...]:
        return tuple(self._triangle_buckets)

    @property
    def edge_buckets(self) -> Tuple[EdgeBucket, ...]:
        return tuple(self._edge_buckets)

    def is_empty(self) -> bool:
        return not self._triangle_buckets and not self._edge_buckets

    def add_buckets(
        self,
        triangle_buckets: Iterable[TriangleBucket],
        edge_buckets: Iterable[EdgeBucket],
        materials: Iterable[Color],
    ) -> None:
        """Merge one accumulation pass into the running container state."""
        offset = len(self._materials)
        self._materials.extend(Color(*m) for m in materials)

        def remap(material_index: Optional[int]) -> Optional[int]:
            return None if material_index is None else material_index + offset

        # Copies own their lists; later accumulation into the source buckets
        # must not reach the container
        for bucket in triangle_buckets:
            if bucket.is_empty():
                continue
            self._triangle_buckets.append(
                replace(
                    bucket,
                    vertices=list(bucket.vertices),
                    normals=list(bucket.normals),
                    indices=list(bucket.indices),
                    material_index=remap(bucket.material_index),
                )
            )

        for bucket in edge_buckets:
            if bucket.is_empty():
                continue
            self._edge_buckets.append(
                replace(
                    bucket,
                    vertices=list(bucket.vertices),
                    indices=list(bucket.indices),
                    material_index=remap(bucket.material_index),
                )
            )

        logger.debug(
            "Buckets merged",
            material_offset=offset,
            materials=len(self._materials),
            triangle_buckets=len(self._triangle_buckets),
            edge_buckets=len(self._edge_buckets),
        )

    def _material_for(self, material_index: Optional[int]) -> int:
        if material_index is None or not 0 <= material_index < len(self._materials):
            return 0
        return material_index

    def _layout(self) -> _Layout:
        layout = _Layout(bytearray(), [], [], [])

        for bucket in self._triangle_buckets:
            if not bucket.vertices or not bucket.indices:
                continue
            pos_view = layout.add_view(_vec3_bytes(bucket.vertices), TARGET_ARRAY_BUFFER)
            nrm_view = layout.add_view(_vec3_bytes(bucket.normals), TARGET_ARRAY_BUFFER)
            idx_view = layout.add_view(_index_bytes(bucket.indices), TARGET_ELEMENT_ARRAY_BUFFER)

            pos_acc = layout.add_accessor(
                pos_view, COMPONENT_FLOAT, len(bucket.vertices), "VEC3",
                position_bounds(bucket.vertices),
            )
            # Unit normals by construction
            nrm_acc = layout.add_accessor(
                nrm_view, COMPONENT_FLOAT, len(bucket.normals), "VEC3",
                ([-1.0, -1.0, -1.0], [1.0, 1.0, 1.0]),
            )
            idx_acc = layout.add_accessor(idx_view, COMPONENT_UINT, len(bucket.indices), "SCALAR")

            layout.primitives.append({
                "attributes": {"POSITION": pos_acc, "NORMAL": nrm_acc},
                "indices": idx_acc,
                "material": self._material_for(bucket.material_index),
                "mode": MODE_TRIANGLES,
            })

        for bucket in self._edge_buckets:
            if not bucket.vertices or not bucket.indices:
                continue
            pos_view = layout.add_view(_vec3_bytes(bucket.vertices), TARGET_ARRAY_BUFFER)
            idx_view = layout.add_view(_index_bytes(bucket.indices), TARGET_ELEMENT_ARRAY_BUFFER)

            pos_acc = layout.add_accessor(
                pos_view, COMPONENT_FLOAT, len(bucket.vertices), "VEC3",
                position_bounds(bucket.vertices),
            )
            idx_acc = layout.add_accessor(idx_view, COMPONENT_UINT, len(bucket.indices), "SCALAR")

            layout.primitives.append({
                "attributes": {"POSITION": pos_acc},
                "indices": idx_acc,
                "material": self._material_for(bucket.material_index),
                "mode": MODE_LINES,
            })

        layout.payload.extend(b"\x00" * (pad4(len(layout.payload)) - len(layout.payload)))
        return layout

    def _document(self, layout: _Layout) -> Dict[str, Any]:
        materials = [
            {
                "pbrMetallicRoughness": {
                    "baseColorFactor": [float(c.r), float(c.g), float(c.b), float(c.a)],
                    "metallicFactor": 0.0,
                    "roughnessFactor": 1.0,
                },
                "doubleSided": True,
            }
            for c in self._materials
        ]
        return {
            "asset": {"version": "2.0", "generator": self._generator},
            "scene": 0,
            "scenes": [{"nodes": [0]}],
            "nodes": [{"mesh": 0}],
            "materials": materials,
            "meshes": [{"primitives": layout.primitives}],
            "buffers": [{"byteLength": len(layout.payload)}],
            "bufferViews": layout.buffer_views,
            "accessors": layout.accessors,
        }

    def build(self) -> Tuple[bytes, ExportStats]:
        """Assemble the container in memory.

        Returns:
            Tuple of (glb_bytes, stats)

        Raises:
            EmptySceneError: If no buckets have been added
        """
        if self.is_empty():
            raise EmptySceneError("No geometry to write")

        started = time.perf_counter()

        layout = self._layout()
        json_bytes = orjson.dumps(self._document(layout))
        json_bytes += b" " * (pad4(len(json_bytes)) - len(json_bytes))
        payload = bytes(layout.payload)

        total_length = 12 + 8 + len(json_bytes) + 8 + len(payload)

        parts = [
            struct.pack("<III", GLB_MAGIC, GLB_VERSION, total_length),
            struct.pack("<II", len(json_bytes), CHUNK_JSON),
            json_bytes,
            # BIN chunk header is written even for an empty payload
            struct.pack("<II", len(payload), CHUNK_BIN),
            payload,
        ]
        data = b"".join(parts)

        stats = ExportStats(
            vertices=sum(len(b.vertices) for b in self._triangle_buckets),
            triangles=sum(b.triangle_count for b in self._triangle_buckets),
            lines=sum(b.segment_count for b in self._edge_buckets),
            materials=len(self._materials),
            primitives=len(layout.primitives),
            buffer_bytes=len(payload),
            json_bytes=len(json_bytes),
            total_bytes=total_length,
            elapsed_sec=time.perf_counter() - started,
        )
        return data, stats

    def to_bytes(self) -> bytes:
        data, _ = self.build()
        return data

    def write(self, path: Union[str, Path], print_stats: bool = False) -> ExportStats:
        """Write the container to ``path``.

        Args:
            path: Destination GLB file
            print_stats: Print a statistics table to the console

        Returns:
            ExportStats for the written file

        Raises:
            EmptySceneError: If no buckets have been added
            ContainerWriteError: If the file cannot be opened or written
        """
        started = time.perf_counter()
        path = Path(path)

        try:
            data, stats = self.build()
        except EmptySceneError:
            logger.error("No geometry to write", path=str(path))
            raise

        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error("Cannot open output file", path=str(path), error=str(e))
            raise ContainerWriteError(f"Cannot write GLB file {path}: {e}") from e

        stats = replace(stats, elapsed_sec=time.perf_counter() - started)

        if print_stats:
            from rich.console import Console

            Console().print(stats.to_table(title=f"Export Statistics {path.name}"))

        logger.info("GLB written", path=str(path), **stats.as_dict())
        return stats
