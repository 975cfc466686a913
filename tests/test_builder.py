"""Tests for GLB container assembly."""

from __future__ import annotations

import struct
from pathlib import Path

import orjson
import pytest

from glbscene.accumulator import accumulate_shape
from glbscene.buckets import BucketSet, Color, EdgeBucket, MaterialPalette, TriangleBucket
from glbscene.builder import (
    CHUNK_BIN,
    CHUNK_JSON,
    GLB_MAGIC,
    ContainerWriteError,
    EmptySceneError,
    GlbBuilder,
    pad4,
    position_bounds,
)


def _split(data: bytes):
    """Header fields, JSON document and BIN payload of a container."""
    magic, version, total = struct.unpack_from("<III", data, 0)
    json_len, json_type = struct.unpack_from("<II", data, 12)
    json_bytes = data[20:20 + json_len]
    bin_len, bin_type = struct.unpack_from("<II", data, 20 + json_len)
    payload = data[28 + json_len:28 + json_len + bin_len]
    return {
        "magic": magic,
        "version": version,
        "total": total,
        "json_len": json_len,
        "json_type": json_type,
        "json_bytes": json_bytes,
        "bin_len": bin_len,
        "bin_type": bin_type,
        "payload": payload,
        "doc": orjson.loads(json_bytes),
    }


class TestPadding:
    def test_pad4(self):
        assert [pad4(n) for n in range(9)] == [0, 4, 4, 4, 4, 8, 8, 8, 8]


class TestPositionBounds:
    def test_min_max_per_axis(self):
        lo, hi = position_bounds([(1.0, -2.0, 3.0), (-1.0, 5.0, 0.5)])

        assert lo == [-1.0, -2.0, 0.5]
        assert hi == [1.0, 5.0, 3.0]

    def test_tiny_values_snap_to_zero(self):
        lo, hi = position_bounds([(1e-12, -1e-10, 2.0), (1.0, 1.0, 2.0)])

        assert lo[0] == 0.0
        assert lo[1] == 0.0

    def test_empty(self):
        assert position_bounds([]) == ([0.0, 0.0, 0.0], [0.0, 0.0, 0.0])


class TestQuadScenario:
    """One triangle bucket of a split quad on material 0, no edges."""

    def test_single_triangle_primitive(self, quad_builder: GlbBuilder):
        data, stats = quad_builder.build()
        doc = _split(data)["doc"]
        primitives = doc["meshes"][0]["primitives"]

        assert len(primitives) == 1
        assert primitives[0]["mode"] == 4
        assert not [p for p in primitives if p["mode"] == 1]
        assert stats.triangles == 2
        assert stats.vertices == 4
        assert stats.lines == 0
        assert stats.primitives == 1
        assert stats.materials == 1

    def test_header_and_chunks(self, quad_builder: GlbBuilder):
        data = quad_builder.to_bytes()
        parts = _split(data)

        assert parts["magic"] == GLB_MAGIC
        assert data[:4] == b"glTF"
        assert parts["version"] == 2
        assert parts["json_type"] == CHUNK_JSON
        assert parts["bin_type"] == CHUNK_BIN
        assert parts["total"] == len(data)
        assert parts["total"] == 12 + 8 + parts["json_len"] + 8 + parts["bin_len"]
        assert parts["json_len"] % 4 == 0
        assert parts["bin_len"] % 4 == 0

    def test_payload_layout(self, quad_builder: GlbBuilder):
        parts = _split(quad_builder.to_bytes())
        doc = parts["doc"]

        # 4 positions + 4 normals (12 bytes each) + 6 uint32 indices
        assert parts["bin_len"] == 48 + 48 + 24
        assert doc["buffers"] == [{"byteLength": 120}]
        assert [v["byteOffset"] for v in doc["bufferViews"]] == [0, 48, 96]
        assert [v["target"] for v in doc["bufferViews"]] == [34962, 34962, 34963]

        indices = struct.unpack_from("<6I", parts["payload"], 96)
        assert indices == (0, 1, 2, 0, 2, 3)

    def test_accessors(self, quad_builder: GlbBuilder):
        doc = _split(quad_builder.to_bytes())["doc"]
        position, normal, index = doc["accessors"]

        assert position["componentType"] == 5126
        assert position["type"] == "VEC3"
        assert position["count"] == 4
        assert position["min"] == [0.0, 0.0, 0.0]
        assert position["max"] == [1.0, 1.0, 0.0]
        assert normal["min"] == [-1.0, -1.0, -1.0]
        assert normal["max"] == [1.0, 1.0, 1.0]
        assert index["componentType"] == 5125
        assert index["type"] == "SCALAR"
        assert index["count"] == 6
        assert "min" not in index

    def test_scene_and_material(self, quad_builder: GlbBuilder):
        doc = _split(quad_builder.to_bytes())["doc"]

        assert doc["asset"] == {"version": "2.0", "generator": "step2glb"}
        assert doc["scene"] == 0
        assert doc["scenes"] == [{"nodes": [0]}]
        assert doc["nodes"] == [{"mesh": 0}]
        material = doc["materials"][0]
        assert material["pbrMetallicRoughness"]["baseColorFactor"] == pytest.approx([0.8, 0.2, 0.2, 1.0])
        assert material["pbrMetallicRoughness"]["metallicFactor"] == 0.0
        assert material["pbrMetallicRoughness"]["roughnessFactor"] == 1.0
        assert material["doubleSided"] is True

    def test_json_padding_is_spaces(self, quad_builder: GlbBuilder):
        parts = _split(quad_builder.to_bytes())
        stripped = parts["json_bytes"].rstrip(b" ")

        assert set(parts["json_bytes"][len(stripped):]) <= {0x20}


class TestEdges:
    def test_line_primitive_without_normals(self, accumulated_quad):
        palette, buckets = accumulated_quad
        builder = GlbBuilder()
        builder.add_buckets(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())
        data, stats = builder.build()
        primitives = _split(data)["doc"]["meshes"][0]["primitives"]

        lines = [p for p in primitives if p["mode"] == 1]
        assert len(lines) == 1
        assert "NORMAL" not in lines[0]["attributes"]
        assert stats.lines == 4
        assert stats.primitives == 2

    def test_triangles_precede_lines(self, accumulated_quad):
        palette, buckets = accumulated_quad
        builder = GlbBuilder()
        builder.add_buckets(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())
        primitives = _split(builder.to_bytes())["doc"]["meshes"][0]["primitives"]

        assert [p["mode"] for p in primitives] == [4, 1]


class TestMerge:
    """Test cases for merging several accumulation passes."""

    def test_palette_sizes_add_up(self, quad_shape):
        builder = GlbBuilder()
        colors = [Color(0.9, 0.1, 0.1), Color(0.1, 0.9, 0.1)]
        palette_sizes = []
        for color in colors:
            palette = MaterialPalette()
            buckets = BucketSet()
            accumulate_shape(quad_shape, color, palette, buckets)
            palette_sizes.append(len(palette))
            builder.add_buckets(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())

        assert len(builder.materials) == sum(palette_sizes)

    def test_materials_resolve_to_original_colors(self, quad_shape):
        builder = GlbBuilder()
        expected = []
        for color in [Color(0.9, 0.1, 0.1), Color(0.95, 0.95, 0.95)]:
            palette = MaterialPalette()
            buckets = BucketSet()
            report = accumulate_shape(quad_shape, color, palette, buckets)
            expected.append((color, palette[report.edge_material]))
            builder.add_buckets(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())

        surface_colors = [builder.materials[b.material_index] for b in builder.triangle_buckets]
        edge_colors = [builder.materials[b.material_index] for b in builder.edge_buckets]

        assert surface_colors == [expected[0][0], expected[1][0]]
        assert edge_colors == [expected[0][1], expected[1][1]]

        doc = _split(builder.to_bytes())["doc"]
        factors = [doc["materials"][p["material"]]["pbrMetallicRoughness"]["baseColorFactor"]
                   for p in doc["meshes"][0]["primitives"] if p["mode"] == 4]
        assert factors[0] == pytest.approx(list(expected[0][0]))
        assert factors[1] == pytest.approx(list(expected[1][0]))

    def test_empty_buckets_dropped(self):
        builder = GlbBuilder()
        builder.add_buckets(
            [TriangleBucket(material_index=0)],
            [EdgeBucket(material_index=1)],
            [Color(0.5, 0.5, 0.5), Color(0.1, 0.1, 0.1)],
        )

        assert builder.is_empty()
        assert len(builder.materials) == 2

    def test_input_buckets_not_mutated(self, quad_buckets):
        tris, edges, materials = quad_buckets
        builder = GlbBuilder()
        builder.add_buckets([], [], [Color(0.0, 0.0, 1.0)])
        builder.add_buckets(tris, edges, materials)

        assert tris[0].material_index == 0
        assert builder.triangle_buckets[0].material_index == 1
        assert builder.triangle_buckets[0].vertices is not tris[0].vertices
        assert builder.triangle_buckets[0].normals is not tris[0].normals
        assert builder.triangle_buckets[0].indices is not tris[0].indices

    def test_merged_buckets_independent_of_source(self, quad_shape):
        palette = MaterialPalette()
        buckets = BucketSet()
        accumulate_shape(quad_shape, Color(0.8, 0.1, 0.1), palette, buckets)
        builder = GlbBuilder()
        builder.add_buckets(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())
        before = builder.to_bytes()

        # Keep accumulating into the same bucket set after the merge
        accumulate_shape(quad_shape, Color(0.8, 0.1, 0.1), palette, buckets)
        data, stats = builder.build()

        assert stats.vertices == 4
        assert stats.triangles == 2
        assert stats.lines == 4
        assert data == before

    def test_unset_material_stays_unset_and_clamps(self):
        bucket = TriangleBucket(
            vertices=[(0, 0, 0), (1, 0, 0), (0, 1, 0)],
            normals=[(0, 0, 1)] * 3,
            indices=[0, 1, 2],
            material_index=None,
        )
        builder = GlbBuilder()
        builder.add_buckets([], [], [Color(0.3, 0.3, 0.3)])
        builder.add_buckets([bucket], [], [])

        assert builder.triangle_buckets[0].material_index is None
        primitive = _split(builder.to_bytes())["doc"]["meshes"][0]["primitives"][0]
        assert primitive["material"] == 0

    def test_out_of_range_material_clamps_to_zero(self):
        bucket = EdgeBucket(vertices=[(0, 0, 0), (1, 0, 0)], indices=[0, 1], material_index=7)
        builder = GlbBuilder()
        builder.add_buckets([], [bucket], [Color(0.3, 0.3, 0.3)])

        primitive = _split(builder.to_bytes())["doc"]["meshes"][0]["primitives"][0]
        assert primitive["material"] == 0


class TestBinChunk:
    def test_bin_header_written_for_empty_payload(self):
        """A bucket with vertices but no indices emits no primitive."""
        bucket = TriangleBucket(vertices=[(0, 0, 0)], normals=[(0, 0, 1)], material_index=0)
        builder = GlbBuilder()
        builder.add_buckets([bucket], [], [Color(0.5, 0.5, 0.5)])
        data, stats = builder.build()
        parts = _split(data)

        assert stats.primitives == 0
        assert parts["bin_len"] == 0
        assert parts["bin_type"] == CHUNK_BIN
        assert len(data) == 12 + 8 + parts["json_len"] + 8


class TestWrite:
    """Test cases for writing containers to disk."""

    def test_write_matches_build(self, quad_builder: GlbBuilder, temp_dir: Path):
        path = temp_dir / "quad.glb"
        stats = quad_builder.write(path)

        assert path.read_bytes() == quad_builder.to_bytes()
        assert stats.total_bytes == path.stat().st_size
        assert stats.elapsed_sec >= 0.0

    def test_write_twice_identical(self, accumulated_quad, temp_dir: Path):
        palette, buckets = accumulated_quad
        builder = GlbBuilder()
        builder.add_buckets(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())

        builder.write(temp_dir / "a.glb")
        builder.write(temp_dir / "b.glb")

        assert (temp_dir / "a.glb").read_bytes() == (temp_dir / "b.glb").read_bytes()

    def test_empty_builder_raises_and_writes_nothing(self, temp_dir: Path):
        path = temp_dir / "empty.glb"

        with pytest.raises(EmptySceneError, match="No geometry"):
            GlbBuilder().write(path)
        assert not path.exists()

    def test_unwritable_destination(self, quad_builder: GlbBuilder, temp_dir: Path):
        path = temp_dir / "missing" / "quad.glb"

        with pytest.raises(ContainerWriteError, match="Cannot write GLB file"):
            quad_builder.write(path)
        assert not path.exists()

    def test_print_stats(self, quad_builder: GlbBuilder, temp_dir: Path, capsys):
        quad_builder.write(temp_dir / "quad.glb", print_stats=True)

        assert "Triangles" in capsys.readouterr().out
