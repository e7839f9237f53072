"""
Rebuild glTF geometry records from a converted scene model.

The output BIN chunk is assembled from scratch: converted geometry is encoded
into new buffer views, and every other buffer view still referenced by the
payload (images, animation inputs and so on) is copied byte-for-byte from the
input chunk. The input chunk itself is only read.

VRM 0.x exporters commonly let every primitive of a mesh share one vertex
buffer. Such primitives are split here: each one receives the slice of the
shared attributes covering its own index range, with indices rebased to it.
Primitives with an empty index buffer are dropped, and a mesh left without
any primitive is rejected as malformed.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .accessors import AccessorData, write_accessor
from .errors import MalformedInputError
from .glb import ARRAY_BUFFER, ELEMENT_ARRAY_BUFFER, append_buffer_view, buffer_view_bytes
from .jsontree import get_index, get_list, get_object
from .model import (
    IDENTITY_ROTATION,
    IDENTITY_SCALE,
    IDENTITY_TRANSLATION,
    SceneModel,
    SceneNode,
    Submesh,
    transform_samplers,
)


def vertex_range(indices: np.ndarray) -> Tuple[int, int]:
    """Return the inclusive (min, max) vertex index referenced by ``indices``."""
    flat = np.asarray(indices).reshape(-1)
    if flat.size == 0:
        raise ValueError("vertex range of an empty index buffer is undefined")
    return int(flat.min()), int(flat.max())


class _Writer:
    def __init__(self, payload: Dict[str, Any], bin_chunk: bytes) -> None:
        self.source_payload = payload
        self.source_bin = bin_chunk
        self.accessors: List[Dict[str, Any]] = []
        self.buffer_views: List[Dict[str, Any]] = []
        self.blob = bytearray()
        self._copied_views: Dict[int, int] = {}
        self._copied_accessors: Dict[int, int] = {}

    def copy_view(self, view_index: int) -> int:
        if view_index not in self._copied_views:
            source = get_object(self.source_payload, "bufferViews", view_index) or {}
            data = buffer_view_bytes(self.source_payload, self.source_bin, view_index)
            new_index = append_buffer_view(self.buffer_views, self.blob, data, target=source.get("target"))
            if isinstance(source.get("byteStride"), int):
                self.buffer_views[new_index]["byteStride"] = source["byteStride"]
            for key in ("name", "extras"):
                if key in source:
                    self.buffer_views[new_index][key] = source[key]
            self._copied_views[view_index] = new_index
        return self._copied_views[view_index]

    def copy_accessor(self, accessor_index: int) -> int:
        if accessor_index not in self._copied_accessors:
            accessor = copy.deepcopy(get_list(self.source_payload, "accessors")[accessor_index])
            view_index = get_index(accessor, "bufferView")
            if view_index is not None:
                accessor["bufferView"] = self.copy_view(view_index)
            sparse = get_object(accessor, "sparse")
            if sparse is not None:
                for part in ("indices", "values"):
                    sparse_view = get_index(sparse, part, "bufferView")
                    if sparse_view is not None:
                        sparse[part]["bufferView"] = self.copy_view(sparse_view)
            self.accessors.append(accessor)
            self._copied_accessors[accessor_index] = len(self.accessors) - 1
        return self._copied_accessors[accessor_index]

    def write(self, data: AccessorData, target: Optional[int] = None, with_bounds: bool = False) -> int:
        return write_accessor(self.accessors, self.buffer_views, self.blob, data, target=target, with_bounds=with_bounds)


def _write_stream(
    writer: _Writer,
    stream: Dict[str, AccessorData],
    start: int,
    stop: Optional[int],
    cache: Dict[Tuple[int, int, Optional[int]], int],
) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for name, data in stream.items():
        key = (id(data), start, stop)
        if key not in cache:
            sliced = data if start == 0 and stop is None else data.sliced(start, stop)
            cache[key] = writer.write(sliced, target=ARRAY_BUFFER, with_bounds=(name == "POSITION"))
        out[name] = cache[key]
    return out


def _rebuild_primitive(
    writer: _Writer,
    submesh: Submesh,
    shared: bool,
    cache: Dict[Tuple[int, int, Optional[int]], int],
) -> Optional[Dict[str, Any]]:
    primitive = {
        key: copy.deepcopy(value)
        for key, value in submesh.primitive.items()
        if key not in ("attributes", "indices", "targets")
    }

    start, stop = 0, None
    indices = submesh.indices
    if indices is not None:
        if indices.count == 0:
            return None
        if shared:
            low, high = vertex_range(indices.values)
            start, stop = low, high + 1
            rebased = (indices.values.astype(np.int64) - low).astype(indices.values.dtype)
            indices = AccessorData(
                values=rebased,
                component_type=indices.component_type,
                accessor_type=indices.accessor_type,
            )
        primitive["indices"] = writer.write(indices, target=ELEMENT_ARRAY_BUFFER)

    primitive["attributes"] = _write_stream(writer, submesh.attributes, start, stop, cache)
    if submesh.targets:
        primitive["targets"] = [_write_stream(writer, target, start, stop, cache) for target in submesh.targets]
    return primitive


def _write_node(node_json: Dict[str, Any], node: SceneNode) -> None:
    if node.matrix is not None:
        node_json["matrix"] = [float(v) for v in node.matrix.T.reshape(16)]
        for key in ("translation", "rotation", "scale"):
            node_json.pop(key, None)
        return
    for key, value, identity in (
        ("translation", node.translation, IDENTITY_TRANSLATION),
        ("rotation", node.rotation, IDENTITY_ROTATION),
        ("scale", node.scale, IDENTITY_SCALE),
    ):
        values = [float(v) for v in value]
        if key in node_json or values != list(identity):
            node_json[key] = values


def rebuild(payload: Dict[str, Any], model: SceneModel, bin_chunk: bytes) -> Tuple[Dict[str, Any], bytearray]:
    """Return a new payload and BIN chunk encoding ``model``'s geometry."""
    out = copy.deepcopy(payload)
    writer = _Writer(payload, bin_chunk)

    for node, node_json in zip(model.nodes, get_list(out, "nodes")):
        _write_node(node_json, node)

    for mesh in model.meshes:
        mesh_json = get_list(out, "meshes")[mesh.index]
        shared_keys = mesh.shared_keys()
        cache: Dict[Tuple[int, int, Optional[int]], int] = {}
        primitives = []
        for submesh in mesh.submeshes:
            primitive = _rebuild_primitive(writer, submesh, submesh.attribute_key in shared_keys, cache)
            if primitive is None:
                logging.debug("Dropping empty primitive %d of mesh %d", submesh.primitive_index, mesh.index)
                continue
            primitives.append(primitive)
        if not primitives:
            raise MalformedInputError(f"mesh {mesh.index} has no primitive with indices left")
        if shared_keys:
            logging.debug("Split shared vertex buffer of mesh %d into %d primitives", mesh.index, len(primitives))
        mesh_json["primitives"] = primitives

    for skin in model.skins:
        skin_json = get_list(out, "skins")[skin.index]
        if skin.inverse_bind_matrices is not None:
            skin_json["inverseBindMatrices"] = writer.write(skin.inverse_bind_matrices)

    converted_outputs = {output.accessor_index: output for output in model.animation_outputs}
    written_outputs: Dict[int, int] = {}
    for animation in get_list(out, "animations"):
        converted_samplers = transform_samplers(animation)
        for sampler_index, sampler in enumerate(get_list(animation, "samplers")):
            for key in ("input", "output"):
                index = get_index(sampler, key)
                if index is None:
                    continue
                if key == "output" and sampler_index in converted_samplers and index in converted_outputs:
                    if index not in written_outputs:
                        written_outputs[index] = writer.write(converted_outputs[index].data)
                    sampler[key] = written_outputs[index]
                else:
                    sampler[key] = writer.copy_accessor(index)

    for image in get_list(out, "images"):
        view_index = get_index(image, "bufferView")
        if view_index is not None:
            image["bufferView"] = writer.copy_view(view_index)

    out["accessors"] = writer.accessors
    out["bufferViews"] = writer.buffer_views
    out["buffers"] = [{"byteLength": len(writer.blob)}]
    if not writer.accessors:
        out.pop("accessors")
    if not writer.buffer_views:
        out.pop("bufferViews")
    return out, writer.blob
