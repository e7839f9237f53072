"""
Coordinate conversion between the VRM 0.x and VRM 1.0 conventions.

VRM 0.x avatars face -Z while VRM 1.0 avatars face +Z, so the two spaces are
related by a 180 degree rotation about +Y, R = diag(-1, 1, -1). Positions and
directions map as (x, y, z) -> (-x, y, -z), quaternions are conjugated by R
which gives (x, y, z, w) -> (-x, y, -z, w), and matrices become R M R. R is a
proper rotation, so triangle winding and tangent handedness are unchanged.
Applying the conversion twice yields the original data.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Set

import numpy as np

from .accessors import AccessorData
from .errors import MalformedInputError
from .model import VRM0, VRM1, SceneModel, SceneNode

AXIS_SIGNS = np.array([-1.0, 1.0, -1.0], dtype=np.float64)
MATRIX_SIGNS = np.outer([-1.0, 1.0, -1.0, 1.0], [-1.0, 1.0, -1.0, 1.0])

# Vertex attributes holding positions or directions. TANGENT keeps its w sign.
DIRECTIONAL_ATTRIBUTES = ("POSITION", "NORMAL", "TANGENT")


def rotate_y180_translation(translation: Sequence[float]) -> np.ndarray:
    return np.asarray(translation, dtype=np.float64) * AXIS_SIGNS


def rotate_y180_rotation(rotation: Sequence[float]) -> np.ndarray:
    x, y, z, w = rotation
    return np.array([-x, y, -z, w], dtype=np.float64)


def rotate_y180_matrix(matrix: np.ndarray) -> np.ndarray:
    return matrix * MATRIX_SIGNS


def rotate_y180_node(node: SceneNode) -> None:
    node.translation = rotate_y180_translation(node.translation)
    node.rotation = rotate_y180_rotation(node.rotation)
    if node.matrix is not None:
        node.matrix = rotate_y180_matrix(node.matrix)


def reverse_x(vector: Sequence[float]) -> List[float]:
    """Map a vector stored in the VRM 0.x authoring space into VRM 1.0 space.

    VRM 0.x writes collider offsets, gravity directions and the first-person
    offset in the left-handed authoring space, which differs from the VRM 0.x
    glTF space by a Z flip. Composed with the 180 degree turn above, only the X
    component changes sign.
    """
    x, y, z = vector
    return [-x, y, z]


def _rotate_y180_stream(data: AccessorData) -> None:
    if data.values.dtype.kind == "u":
        raise MalformedInputError("cannot mirror an unsigned vertex attribute")
    # Components 0 and 2 are x and z for VEC3 directions, VEC4 tangents and
    # xyzw quaternions alike.
    for column in (0, 2):
        if data.values.dtype.kind == "i":
            # Normalized -128 and -32768 both decode to -1.0 and have no positive twin.
            limit = np.iinfo(data.values.dtype).max
            data.values[:, column] = np.clip(data.values[:, column], -limit, limit)
        data.values[:, column] *= -1


def _rotate_y180_matrices(data: AccessorData) -> None:
    # Column-major flat layout; MATRIX_SIGNS is symmetric so the order of the
    # flattening does not matter.
    data.values[:] = data.values * MATRIX_SIGNS.reshape(16).astype(data.values.dtype)


def convert_coordinates(model: SceneModel, target: str) -> SceneModel:
    """Convert ``model`` in place into the ``target`` convention."""
    if model.coordinates == target:
        return model
    if {model.coordinates, target} != {VRM0, VRM1}:
        raise ValueError(f"unsupported coordinate conversion: {model.coordinates} -> {target}")

    for node in model.nodes:
        rotate_y180_node(node)

    visited: Set[int] = set()

    def convert_once(data: AccessorData, convert) -> None:
        if id(data) in visited:
            return
        visited.add(id(data))
        convert(data)

    for mesh in model.meshes:
        for submesh in mesh.submeshes:
            streams = [submesh.attributes] + list(submesh.targets)
            for stream in streams:
                for name in DIRECTIONAL_ATTRIBUTES:
                    data = stream.get(name)
                    if data is not None:
                        convert_once(data, _rotate_y180_stream)

    for skin in model.skins:
        if skin.inverse_bind_matrices is not None:
            convert_once(skin.inverse_bind_matrices, _rotate_y180_matrices)

    for output in model.animation_outputs:
        convert_once(output.data, _rotate_y180_stream)

    logging.debug(
        "Converted %d nodes, %d meshes, %d skins from %s to %s",
        len(model.nodes),
        len(model.meshes),
        len(model.skins),
        model.coordinates,
        target,
    )
    model.coordinates = target
    return model


def _node_scale(node: SceneNode) -> np.ndarray:
    if node.matrix is not None:
        return np.linalg.norm(node.matrix[:3, :3], axis=0)
    return node.scale


def _has_rotation(node: SceneNode, epsilon: float) -> bool:
    if node.matrix is not None:
        basis = node.matrix[:3, :3]
        norms = np.linalg.norm(basis, axis=0)
        norms[norms == 0.0] = 1.0
        return not np.allclose(basis / norms, np.eye(3), atol=epsilon)
    x, y, z, _w = node.rotation
    return max(abs(x), abs(y), abs(z)) > epsilon


def find_unnormalized(model: SceneModel, epsilon: float = 1e-5) -> List[str]:
    """List ``parent>child`` pairs whose composed transform carries skew."""
    offenders: List[str] = []
    for node in model.nodes:
        scale = _node_scale(node)
        if np.allclose(scale, scale[0], atol=epsilon):
            continue
        for child_index in node.children:
            child = model.nodes[child_index]
            if _has_rotation(child, epsilon):
                offenders.append(f"{node.name}>{child.name}")
    return offenders

