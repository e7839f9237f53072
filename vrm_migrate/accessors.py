"""
Typed access to glTF accessors backed by numpy arrays.

Accessor values are always returned as a 2-D ``(count, components)`` array in
the accessor's own component type. Strided buffer views and sparse accessors
are resolved into dense arrays; writing always produces tightly packed data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from .errors import MalformedInputError
from .glb import append_buffer_view, buffer_view_bytes
from .jsontree import get_index, get_list, get_object

BYTE = 5120
UNSIGNED_BYTE = 5121
SHORT = 5122
UNSIGNED_SHORT = 5123
UNSIGNED_INT = 5125
FLOAT = 5126

COMPONENT_DTYPES: Dict[int, np.dtype] = {
    BYTE: np.dtype("<i1"),
    UNSIGNED_BYTE: np.dtype("<u1"),
    SHORT: np.dtype("<i2"),
    UNSIGNED_SHORT: np.dtype("<u2"),
    UNSIGNED_INT: np.dtype("<u4"),
    FLOAT: np.dtype("<f4"),
}

TYPE_COMPONENTS: Dict[str, int] = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}


@dataclass
class AccessorData:
    values: np.ndarray
    component_type: int
    accessor_type: str
    normalized: bool = False

    @property
    def count(self) -> int:
        return int(self.values.shape[0])

    def sliced(self, start: int, stop: int) -> "AccessorData":
        return AccessorData(
            values=self.values[start:stop].copy(),
            component_type=self.component_type,
            accessor_type=self.accessor_type,
            normalized=self.normalized,
        )


def _dtype_for(component_type: int) -> np.dtype:
    dtype = COMPONENT_DTYPES.get(component_type)
    if dtype is None:
        raise MalformedInputError(f"Unsupported accessor componentType: {component_type}")
    return dtype


def _read_dense(
    payload: Dict[str, Any],
    bin_chunk: bytes,
    view_index: int,
    byte_offset: int,
    count: int,
    dtype: np.dtype,
    components: int,
    byte_stride: Optional[int] = None,
) -> np.ndarray:
    view_data = buffer_view_bytes(payload, bin_chunk, view_index)
    element_size = dtype.itemsize * components
    stride = byte_stride or element_size
    if count == 0:
        return np.zeros((0, components), dtype=dtype)
    end = byte_offset + stride * (count - 1) + element_size
    if byte_offset < 0 or end > len(view_data):
        raise MalformedInputError(f"Accessor data exceeds bufferView {view_index}")

    raw = np.frombuffer(view_data, dtype=np.uint8)
    if stride == element_size:
        rows = raw[byte_offset:end].reshape(count, element_size)
    else:
        rows = np.lib.stride_tricks.as_strided(
            raw[byte_offset:],
            shape=(count, element_size),
            strides=(stride, 1),
            writeable=False,
        )
    return rows.copy().view(dtype).reshape(count, components)


def read_accessor(payload: Dict[str, Any], bin_chunk: bytes, accessor_index: int) -> AccessorData:
    accessors = get_list(payload, "accessors")
    if not 0 <= accessor_index < len(accessors) or not isinstance(accessors[accessor_index], dict):
        raise MalformedInputError(f"accessor {accessor_index} does not exist")
    accessor = accessors[accessor_index]

    component_type = accessor.get("componentType")
    accessor_type = accessor.get("type")
    count = accessor.get("count")
    if accessor_type not in TYPE_COMPONENTS or not isinstance(count, int) or count < 0:
        raise MalformedInputError(f"accessor {accessor_index} has an invalid type or count")
    dtype = _dtype_for(component_type)
    components = TYPE_COMPONENTS[accessor_type]

    view_index = get_index(accessor, "bufferView")
    if view_index is None:
        values = np.zeros((count, components), dtype=dtype)
    else:
        view = get_object(payload, "bufferViews", view_index) or {}
        byte_stride = view.get("byteStride")
        values = _read_dense(
            payload,
            bin_chunk,
            view_index,
            int(accessor.get("byteOffset", 0)),
            count,
            dtype,
            components,
            byte_stride if isinstance(byte_stride, int) else None,
        )

    sparse = get_object(accessor, "sparse")
    if sparse is not None:
        values = values.copy()
        sparse_count = int(sparse.get("count", 0))
        indices_info = get_object(sparse, "indices") or {}
        values_info = get_object(sparse, "values") or {}
        indices_view = get_index(indices_info, "bufferView")
        values_view = get_index(values_info, "bufferView")
        if indices_view is None or values_view is None:
            raise MalformedInputError(f"accessor {accessor_index} has an incomplete sparse block")
        sparse_indices = _read_dense(
            payload,
            bin_chunk,
            indices_view,
            int(indices_info.get("byteOffset", 0)),
            sparse_count,
            _dtype_for(indices_info.get("componentType")),
            1,
        ).reshape(-1)
        sparse_values = _read_dense(
            payload,
            bin_chunk,
            values_view,
            int(values_info.get("byteOffset", 0)),
            sparse_count,
            dtype,
            components,
        )
        if sparse_count and int(sparse_indices.max()) >= count:
            raise MalformedInputError(f"accessor {accessor_index} sparse index out of range")
        values[sparse_indices.astype(np.int64)] = sparse_values

    return AccessorData(
        values=values,
        component_type=component_type,
        accessor_type=accessor_type,
        normalized=bool(accessor.get("normalized", False)),
    )


def write_accessor(
    accessors: List[Dict[str, Any]],
    buffer_views: List[Dict[str, Any]],
    binary_blob: bytearray,
    data: AccessorData,
    target: Optional[int] = None,
    with_bounds: bool = False,
) -> int:
    dtype = _dtype_for(data.component_type)
    values = np.ascontiguousarray(data.values, dtype=dtype)
    view_index = append_buffer_view(buffer_views, binary_blob, values.tobytes(), target=target)

    accessor: Dict[str, Any] = {
        "bufferView": view_index,
        "componentType": data.component_type,
        "count": data.count,
        "type": data.accessor_type,
    }
    if data.normalized:
        accessor["normalized"] = True
    if with_bounds and data.count:
        cast = float if data.component_type == FLOAT else int
        accessor["min"] = [cast(v) for v in values.min(axis=0)]
        accessor["max"] = [cast(v) for v in values.max(axis=0)]
    accessors.append(accessor)
    return len(accessors) - 1
