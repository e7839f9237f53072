"""
GLB container codec.

A GLB file is a 12-byte header followed by a JSON chunk and an optional BIN
chunk. Parsing returns the decoded JSON object and the raw BIN bytes; building
serializes the JSON compactly and pads both chunks to 4-byte boundaries.
"""

from __future__ import annotations

import json
import struct
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import MalformedInputError

GLTF_MAGIC = 0x46546C67
JSON_CHUNK_TYPE = 0x4E4F534A
BIN_CHUNK_TYPE = 0x004E4942

ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963


def looks_like_glb(data: bytes) -> bool:
    if len(data) < 20:
        return False
    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLTF_MAGIC or version != 2:
        return False
    return 0 < total_length <= len(data)


def align4(value: int) -> int:
    return (value + 3) & ~3


def build_glb(payload: Dict[str, Any], binary_blob: bytes) -> bytes:
    json_bytes = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    json_pad = align4(len(json_bytes)) - len(json_bytes)
    if json_pad:
        json_bytes += b" " * json_pad

    bin_pad = align4(len(binary_blob)) - len(binary_blob)
    if bin_pad:
        binary_blob += b"\x00" * bin_pad

    total_length = 12 + 8 + len(json_bytes)
    if binary_blob:
        total_length += 8 + len(binary_blob)

    out = bytearray()
    out += struct.pack("<III", GLTF_MAGIC, 2, total_length)
    out += struct.pack("<II", len(json_bytes), JSON_CHUNK_TYPE)
    out += json_bytes
    if binary_blob:
        out += struct.pack("<II", len(binary_blob), BIN_CHUNK_TYPE)
        out += binary_blob
    return bytes(out)


def parse_glb(data: bytes) -> Tuple[Dict[str, Any], bytes]:
    if len(data) < 20:
        raise MalformedInputError("GLB too small")

    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLTF_MAGIC:
        raise MalformedInputError("Invalid GLB magic")
    if version != 2:
        raise MalformedInputError(f"Unsupported GLB version: {version}")
    if total_length > len(data):
        raise MalformedInputError("GLB truncated")

    offset = 12
    json_chunk: Optional[bytes] = None
    bin_chunk = b""

    while offset + 8 <= total_length:
        chunk_len, chunk_type = struct.unpack_from("<II", data, offset)
        offset += 8
        chunk_end = offset + chunk_len
        if chunk_end > total_length:
            raise MalformedInputError("GLB chunk exceeds file size")

        chunk_data = data[offset:chunk_end]
        offset = chunk_end

        if chunk_type == JSON_CHUNK_TYPE and json_chunk is None:
            json_chunk = chunk_data
        elif chunk_type == BIN_CHUNK_TYPE and not bin_chunk:
            bin_chunk = chunk_data

    if json_chunk is None:
        raise MalformedInputError("GLB missing JSON chunk")

    try:
        payload = json.loads(json_chunk.decode("utf-8").rstrip(" \t\r\n\x00"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedInputError(f"GLB JSON chunk is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedInputError("GLB JSON root is not an object")

    return payload, bin_chunk


def append_buffer_view(
    buffer_views: List[Dict[str, Any]],
    binary_blob: bytearray,
    data: bytes,
    target: Optional[int] = None,
) -> int:
    aligned_offset = align4(len(binary_blob))
    if aligned_offset > len(binary_blob):
        binary_blob.extend(b"\x00" * (aligned_offset - len(binary_blob)))

    byte_offset = len(binary_blob)
    binary_blob.extend(data)

    view: Dict[str, Any] = {
        "buffer": 0,
        "byteOffset": byte_offset,
        "byteLength": len(data),
    }
    if target is not None:
        view["target"] = target
    buffer_views.append(view)
    return len(buffer_views) - 1


def buffer_view_bytes(payload: Dict[str, Any], bin_chunk: bytes, view_index: int) -> bytes:
    buffer_views = payload.get("bufferViews")
    if not isinstance(buffer_views, list) or not 0 <= view_index < len(buffer_views):
        raise MalformedInputError(f"bufferView {view_index} does not exist")
    view = buffer_views[view_index]
    if not isinstance(view, dict):
        raise MalformedInputError(f"bufferView {view_index} is not an object")
    if view.get("buffer", 0) != 0:
        raise MalformedInputError(f"bufferView {view_index} references an external buffer")
    byte_offset = int(view.get("byteOffset", 0))
    byte_length = int(view.get("byteLength", 0))
    if byte_offset < 0 or byte_length < 0 or byte_offset + byte_length > len(bin_chunk):
        raise MalformedInputError(f"bufferView {view_index} outside BIN chunk")
    return bin_chunk[byte_offset : byte_offset + byte_length]


def read_glb_file(path: Path) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def write_glb_file(path: Path, data: bytes) -> None:
    # Written next to the target first so a failed write never leaves a
    # half-written file under the final name.
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
