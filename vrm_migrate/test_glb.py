import struct
import tempfile
import unittest
from pathlib import Path

import numpy as np

from vrm_migrate import glb
from vrm_migrate.accessors import FLOAT, UNSIGNED_SHORT, AccessorData, read_accessor, write_accessor
from vrm_migrate.errors import MalformedInputError


class GlbCodecTests(unittest.TestCase):
    def test_build_then_parse_keeps_payload_and_bin(self) -> None:
        payload = {"asset": {"version": "2.0"}, "extensions": {"VRM": {"meta": {"title": "ö"}}}}
        data = glb.build_glb(payload, b"\x01\x02\x03")

        self.assertTrue(glb.looks_like_glb(data))
        self.assertEqual(len(data) % 4, 0)
        parsed, bin_chunk = glb.parse_glb(data)
        self.assertEqual(parsed, payload)
        self.assertEqual(bin_chunk, b"\x01\x02\x03\x00")

    def test_bin_chunk_omitted_when_empty(self) -> None:
        data = glb.build_glb({"asset": {"version": "2.0"}}, b"")
        _, _, total_length = struct.unpack_from("<III", data, 0)
        json_length, chunk_type = struct.unpack_from("<II", data, 12)
        self.assertEqual(chunk_type, glb.JSON_CHUNK_TYPE)
        self.assertEqual(total_length, 20 + json_length)
        self.assertEqual(glb.parse_glb(data)[1], b"")

    def test_parse_rejects_bad_magic(self) -> None:
        data = bytearray(glb.build_glb({"asset": {"version": "2.0"}}, b""))
        data[0:4] = b"nope"
        with self.assertRaises(MalformedInputError):
            glb.parse_glb(bytes(data))

    def test_parse_rejects_truncated_file(self) -> None:
        data = glb.build_glb({"asset": {"version": "2.0"}}, b"\x00" * 16)
        with self.assertRaises(MalformedInputError):
            glb.parse_glb(data[:-8])

    def test_parse_rejects_non_object_json(self) -> None:
        json_bytes = b"[1,2,3] "
        data = struct.pack("<III", glb.GLTF_MAGIC, 2, 20 + len(json_bytes))
        data += struct.pack("<II", len(json_bytes), glb.JSON_CHUNK_TYPE) + json_bytes
        with self.assertRaises(MalformedInputError):
            glb.parse_glb(data)

    def test_append_buffer_view_aligns_offsets(self) -> None:
        views = []
        blob = bytearray()
        first = glb.append_buffer_view(views, blob, b"abc")
        second = glb.append_buffer_view(views, blob, b"defg", target=glb.ARRAY_BUFFER)

        self.assertEqual((first, second), (0, 1))
        self.assertEqual(views[1]["byteOffset"], 4)
        self.assertEqual(views[1]["target"], glb.ARRAY_BUFFER)
        self.assertEqual(glb.buffer_view_bytes({"bufferViews": views}, bytes(blob), 1), b"defg")

    def test_buffer_view_outside_bin_is_malformed(self) -> None:
        payload = {"bufferViews": [{"buffer": 0, "byteOffset": 8, "byteLength": 8}]}
        with self.assertRaises(MalformedInputError):
            glb.buffer_view_bytes(payload, b"\x00" * 12, 0)

    def test_write_glb_file_replaces_target(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "out" / "model.vrm"
            glb.write_glb_file(path, b"first")
            glb.write_glb_file(path, b"second")
            self.assertEqual(glb.read_glb_file(path), b"second")
            self.assertEqual([p.name for p in path.parent.iterdir()], ["model.vrm"])


class AccessorTests(unittest.TestCase):
    def test_write_then_read_float_vec3(self) -> None:
        accessors, views, blob = [], [], bytearray()
        values = np.array([[1.0, 2.0, 3.0], [-4.0, 5.0, 6.5]], dtype=np.float32)
        index = write_accessor(accessors, views, blob, AccessorData(values, FLOAT, "VEC3"), with_bounds=True)

        self.assertEqual(accessors[index]["min"], [-4.0, 2.0, 3.0])
        self.assertEqual(accessors[index]["max"], [1.0, 5.0, 6.5])
        data = read_accessor({"accessors": accessors, "bufferViews": views}, bytes(blob), index)
        np.testing.assert_array_equal(data.values, values)
        data.values[0, 0] = 9.0
        self.assertEqual(float(data.values[0, 0]), 9.0)

    def test_read_strided_view(self) -> None:
        raw = np.array([[1, 2, 99], [3, 4, 99], [5, 6, 99]], dtype=np.uint16)
        payload = {
            "bufferViews": [{"buffer": 0, "byteOffset": 0, "byteLength": raw.nbytes, "byteStride": 6}],
            "accessors": [{"bufferView": 0, "componentType": UNSIGNED_SHORT, "count": 3, "type": "VEC2"}],
        }
        data = read_accessor(payload, raw.tobytes(), 0)
        np.testing.assert_array_equal(data.values, [[1, 2], [3, 4], [5, 6]])

    def test_read_sparse_accessor_without_buffer_view(self) -> None:
        indices = np.array([1], dtype=np.uint16).tobytes() + b"\x00\x00"
        values = np.array([0.5, 0.25, -1.0], dtype=np.float32).tobytes()
        payload = {
            "bufferViews": [
                {"buffer": 0, "byteOffset": 0, "byteLength": 4},
                {"buffer": 0, "byteOffset": 4, "byteLength": 12},
            ],
            "accessors": [
                {
                    "componentType": FLOAT,
                    "count": 3,
                    "type": "VEC3",
                    "sparse": {
                        "count": 1,
                        "indices": {"bufferView": 0, "componentType": UNSIGNED_SHORT},
                        "values": {"bufferView": 1},
                    },
                }
            ],
        }
        data = read_accessor(payload, indices + values, 0)
        np.testing.assert_array_equal(data.values, [[0, 0, 0], [0.5, 0.25, -1.0], [0, 0, 0]])

    def test_unknown_component_type_is_malformed(self) -> None:
        payload = {"accessors": [{"componentType": 1234, "count": 1, "type": "SCALAR"}]}
        with self.assertRaises(MalformedInputError):
            read_accessor(payload, b"", 0)


if __name__ == "__main__":
    unittest.main()
