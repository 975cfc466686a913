"""GLB container parsing and structural validation."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
import orjson
import structlog

from .builder import (
    CHUNK_BIN,
    CHUNK_JSON,
    COMPONENT_FLOAT,
    COMPONENT_UINT,
    GLB_MAGIC,
    GLB_VERSION,
    MODE_LINES,
    MODE_TRIANGLES,
)

logger = structlog.get_logger(__name__)

COMPONENT_SIZES = {5120: 1, 5121: 1, 5122: 2, 5123: 2, COMPONENT_UINT: 4, COMPONENT_FLOAT: 4}
TYPE_COMPONENTS = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4, "MAT4": 16}


class GlbFormatError(Exception):
    """Raised when bytes are not a well-formed GLB container."""
    pass


@dataclass
class GlbDocument:
    """A parsed GLB container."""

    version: int
    total_length: int
    json: Dict[str, Any]
    binary: bytes
    json_chunk_length: int

    @property
    def primitives(self) -> List[Dict[str, Any]]:
        meshes = self.json.get("meshes") or []
        return [p for mesh in meshes for p in mesh.get("primitives", [])]

    def accessor_bytes(self, accessor_index: int) -> bytes:
        """Raw bytes covered by one accessor."""
        accessor = self.json["accessors"][accessor_index]
        view = self.json["bufferViews"][accessor["bufferView"]]
        start = view.get("byteOffset", 0) + accessor.get("byteOffset", 0)
        size = (
            accessor["count"]
            * COMPONENT_SIZES[accessor["componentType"]]
            * TYPE_COMPONENTS[accessor["type"]]
        )
        return self.binary[start:start + size]

    def accessor_array(self, accessor_index: int) -> np.ndarray:
        """Accessor contents as a numpy array (float32 or uint32)."""
        accessor = self.json["accessors"][accessor_index]
        dtype = "<f4" if accessor["componentType"] == COMPONENT_FLOAT else "<u4"
        values = np.frombuffer(self.accessor_bytes(accessor_index), dtype=dtype)
        components = TYPE_COMPONENTS[accessor["type"]]
        return values.reshape(-1, components) if components > 1 else values


def read_glb(source: Union[str, Path, bytes]) -> GlbDocument:
    """Parse a GLB container from a path or from raw bytes.

    Raises:
        GlbFormatError: If the header or chunk layout is invalid
    """
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    else:
        data = Path(source).read_bytes()

    if len(data) < 12:
        raise GlbFormatError("File is shorter than the 12-byte GLB header")

    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLB_MAGIC:
        raise GlbFormatError(f"Bad magic 0x{magic:08X}")
    if version != GLB_VERSION:
        raise GlbFormatError(f"Unsupported GLB version {version}")
    if total_length != len(data):
        raise GlbFormatError(
            f"Header length {total_length} does not match file size {len(data)}"
        )

    offset = 12
    chunks = []
    while offset < len(data):
        if offset + 8 > len(data):
            raise GlbFormatError(f"Truncated chunk header at byte {offset}")
        length, chunk_type = struct.unpack_from("<II", data, offset)
        offset += 8
        if offset + length > len(data):
            raise GlbFormatError(f"Chunk at byte {offset - 8} runs past end of file")
        chunks.append((chunk_type, data[offset:offset + length]))
        offset += length

    if not chunks or chunks[0][0] != CHUNK_JSON:
        raise GlbFormatError("First chunk is not a JSON chunk")

    json_chunk = chunks[0][1]
    try:
        document = orjson.loads(json_chunk.rstrip(b" "))
    except orjson.JSONDecodeError as e:
        raise GlbFormatError(f"Invalid JSON chunk: {e}") from e

    binary = b""
    if len(chunks) > 1:
        if chunks[1][0] != CHUNK_BIN:
            raise GlbFormatError(f"Second chunk has type 0x{chunks[1][0]:08X}, expected BIN")
        binary = chunks[1][1]

    return GlbDocument(
        version=version,
        total_length=total_length,
        json=document,
        binary=binary,
        json_chunk_length=len(json_chunk),
    )


def validate_glb(document: GlbDocument) -> List[str]:
    """Check the structural invariants of a parsed container.

    Returns:
        List of problems; empty when the container is consistent
    """
    problems: List[str] = []
    doc = document.json
    views = doc.get("bufferViews", [])
    accessors = doc.get("accessors", [])
    materials = doc.get("materials", [])

    if document.json_chunk_length % 4:
        problems.append("JSON chunk is not 4-byte aligned")
    if len(document.binary) % 4:
        problems.append("BIN chunk is not 4-byte aligned")

    buffers = doc.get("buffers", [])
    if buffers and buffers[0].get("byteLength") != len(document.binary):
        problems.append(
            f"Buffer byteLength {buffers[0].get('byteLength')} != BIN chunk {len(document.binary)}"
        )

    for i, view in enumerate(views):
        start = view.get("byteOffset", 0)
        length = view.get("byteLength")
        if not isinstance(length, int):
            problems.append(f"bufferView {i} has no byteLength")
            continue
        end = start + length
        if start % 4:
            problems.append(f"bufferView {i} offset {start} is not 4-byte aligned")
        if end > len(document.binary):
            problems.append(f"bufferView {i} ends at {end}, past BIN length {len(document.binary)}")

    counted = {i for i, accessor in enumerate(accessors) if isinstance(accessor.get("count"), int)}
    # Accessors whose bytes cannot be read safely
    unreadable = set()
    for i, accessor in enumerate(accessors):
        count = accessor.get("count")
        if not isinstance(count, int):
            problems.append(f"accessor {i} has no count")
            unreadable.add(i)
            continue
        view_index = accessor.get("bufferView")
        if view_index is None or not 0 <= view_index < len(views):
            problems.append(f"accessor {i} references missing bufferView {view_index}")
            unreadable.add(i)
            continue
        component_size = COMPONENT_SIZES.get(accessor.get("componentType"))
        components = TYPE_COMPONENTS.get(accessor.get("type"))
        if component_size is None or components is None:
            problems.append(f"accessor {i} has unknown component or element type")
            unreadable.add(i)
            continue
        view = views[view_index]
        view_length = view.get("byteLength")
        if not isinstance(view_length, int):
            unreadable.add(i)
            continue
        needed = count * component_size * components
        if view.get("byteOffset", 0) + view_length > len(document.binary):
            unreadable.add(i)
        if needed > view_length:
            unreadable.add(i)
            problems.append(
                f"accessor {i} needs {needed} bytes, bufferView {view_index} has {view_length}"
            )

    for p, primitive in enumerate(document.primitives):
        attributes = primitive.get("attributes", {})
        position = attributes.get("POSITION")
        if position is None or not 0 <= position < len(accessors) or position not in counted:
            problems.append(f"primitive {p} has no valid POSITION accessor")
            continue
        vertex_count = accessors[position]["count"]

        normal = attributes.get("NORMAL")
        if normal is not None and (not 0 <= normal < len(accessors) or normal not in counted):
            problems.append(f"primitive {p} has an invalid NORMAL accessor")
        elif normal is not None and accessors[normal]["count"] != vertex_count:
            problems.append(f"primitive {p} NORMAL count differs from POSITION count")

        material = primitive.get("material")
        if material is not None and not 0 <= material < max(len(materials), 1):
            problems.append(f"primitive {p} references missing material {material}")

        index_accessor = primitive.get("indices")
        if index_accessor is None:
            continue
        if not 0 <= index_accessor < len(accessors):
            problems.append(f"primitive {p} references missing index accessor {index_accessor}")
            continue
        index_count = accessors[index_accessor].get("count")
        if not isinstance(index_count, int):
            continue
        mode = primitive.get("mode", MODE_TRIANGLES)
        if mode == MODE_TRIANGLES and index_count % 3:
            problems.append(f"primitive {p} triangle index count {index_count} is not a multiple of 3")
        if mode == MODE_LINES and index_count % 2:
            problems.append(f"primitive {p} line index count {index_count} is not even")

        if index_accessor in unreadable:
            continue
        indices = document.accessor_array(index_accessor)
        if len(indices) and int(indices.max()) >= vertex_count:
            problems.append(
                f"primitive {p} index {int(indices.max())} out of range for {vertex_count} vertices"
            )

    if problems:
        logger.warning("GLB validation found problems", count=len(problems))
    return problems
