"""
Scene model read from a glTF payload.

The model holds node transforms and decoded geometry so coordinate conversion
can operate on numpy arrays instead of raw JSON. Primitives that reference the
same attribute accessors share the same ``AccessorData`` objects, which lets the
mesh rebuilder detect shared vertex buffers and lets the converter touch every
array exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np

from .accessors import AccessorData, read_accessor
from .errors import MalformedInputError
from .jsontree import get_index, get_list, get_numbers, get_object

VRM0 = "vrm0"
VRM1 = "vrm1"

IDENTITY_TRANSLATION = (0.0, 0.0, 0.0)
IDENTITY_ROTATION = (0.0, 0.0, 0.0, 1.0)
IDENTITY_SCALE = (1.0, 1.0, 1.0)


@dataclass
class SceneNode:
    index: int
    name: str
    translation: np.ndarray
    rotation: np.ndarray
    scale: np.ndarray
    matrix: Optional[np.ndarray] = None  # row-major 4x4
    children: List[int] = field(default_factory=list)


@dataclass
class Submesh:
    primitive_index: int
    primitive: Dict[str, Any]
    attributes: Dict[str, AccessorData]
    attribute_key: Tuple[Tuple[str, int], ...]
    indices: Optional[AccessorData] = None
    targets: List[Dict[str, AccessorData]] = field(default_factory=list)


@dataclass
class SceneMesh:
    index: int
    submeshes: List[Submesh] = field(default_factory=list)

    def shared_keys(self) -> set:
        seen: Dict[Tuple[Tuple[str, int], ...], int] = {}
        for submesh in self.submeshes:
            seen[submesh.attribute_key] = seen.get(submesh.attribute_key, 0) + 1
        return {key for key, count in seen.items() if count > 1}


@dataclass
class SceneSkin:
    index: int
    inverse_bind_matrices: Optional[AccessorData] = None


@dataclass
class AnimationOutput:
    accessor_index: int
    data: AccessorData


@dataclass
class SceneModel:
    coordinates: str
    nodes: List[SceneNode] = field(default_factory=list)
    meshes: List[SceneMesh] = field(default_factory=list)
    skins: List[SceneSkin] = field(default_factory=list)
    animation_outputs: List[AnimationOutput] = field(default_factory=list)


def _vector(node: Dict[str, Any], key: str, default: Tuple[float, ...]) -> np.ndarray:
    values = get_numbers(node, key, length=len(default))
    return np.array(values if values is not None else default, dtype=np.float64)


def _read_node(index: int, node: Dict[str, Any], node_count: int) -> SceneNode:
    matrix_values = get_numbers(node, "matrix", length=16)
    matrix = None
    if matrix_values is not None:
        # glTF stores matrices column-major.
        matrix = np.array(matrix_values, dtype=np.float64).reshape(4, 4).T
    children = [child for child in get_list(node, "children") if isinstance(child, int) and 0 <= child < node_count]
    return SceneNode(
        index=index,
        name=node.get("name") if isinstance(node.get("name"), str) else f"node{index}",
        translation=_vector(node, "translation", IDENTITY_TRANSLATION),
        rotation=_vector(node, "rotation", IDENTITY_ROTATION),
        scale=_vector(node, "scale", IDENTITY_SCALE),
        matrix=matrix,
        children=children,
    )


def transform_samplers(animation: Any) -> Set[int]:
    """Indices of the samplers driven by a translation or rotation channel."""
    samplers = get_list(animation, "samplers")
    found: Set[int] = set()
    for channel in get_list(animation, "channels"):
        path = (get_object(channel, "target") or {}).get("path")
        sampler_index = get_index(channel, "sampler", count=len(samplers))
        if path in ("translation", "rotation") and sampler_index is not None:
            found.add(sampler_index)
    return found


def read_model(payload: Dict[str, Any], bin_chunk: bytes, coordinates: str) -> SceneModel:
    """Build a scene model from a parsed glTF payload and its BIN chunk."""
    cache: Dict[int, AccessorData] = {}

    def accessor(index: Any) -> AccessorData:
        if not isinstance(index, int):
            raise MalformedInputError(f"invalid accessor reference: {index!r}")
        if index not in cache:
            cache[index] = read_accessor(payload, bin_chunk, index)
        return cache[index]

    json_meshes = get_list(payload, "meshes")
    json_skins = get_list(payload, "skins")
    json_nodes = get_list(payload, "nodes")
    model = SceneModel(coordinates=coordinates)

    for index, node in enumerate(json_nodes):
        if not isinstance(node, dict):
            raise MalformedInputError(f"node {index} is not an object")
        model.nodes.append(_read_node(index, node, len(json_nodes)))

    for mesh_index, mesh in enumerate(json_meshes):
        scene_mesh = SceneMesh(index=mesh_index)
        for primitive_index, primitive in enumerate(get_list(mesh, "primitives")):
            attributes_json = get_object(primitive, "attributes")
            if attributes_json is None:
                raise MalformedInputError(f"mesh {mesh_index} primitive {primitive_index} has no attributes")
            attributes = {name: accessor(value) for name, value in attributes_json.items()}
            targets = [
                {name: accessor(value) for name, value in target.items()}
                for target in get_list(primitive, "targets")
                if isinstance(target, dict)
            ]
            indices_index = primitive.get("indices")
            scene_mesh.submeshes.append(
                Submesh(
                    primitive_index=primitive_index,
                    primitive=primitive,
                    attributes=attributes,
                    attribute_key=tuple(sorted(attributes_json.items())),
                    indices=accessor(indices_index) if indices_index is not None else None,
                    targets=targets,
                )
            )
        model.meshes.append(scene_mesh)

    for skin_index, skin in enumerate(json_skins):
        ibm_index = skin.get("inverseBindMatrices") if isinstance(skin, dict) else None
        model.skins.append(
            SceneSkin(
                index=skin_index,
                inverse_bind_matrices=accessor(ibm_index) if ibm_index is not None else None,
            )
        )

    seen_outputs = set()
    for animation in get_list(payload, "animations"):
        samplers = get_list(animation, "samplers")
        for sampler_index in sorted(transform_samplers(animation)):
            output_index = get_index(samplers[sampler_index], "output")
            if output_index is None or output_index in seen_outputs:
                continue
            seen_outputs.add(output_index)
            model.animation_outputs.append(AnimationOutput(accessor_index=output_index, data=accessor(output_index)))

    return model
