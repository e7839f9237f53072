"""Lookup from glTF mesh index to the node that instantiates it."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from .jsontree import get_index, get_list


class MeshToNodeResolver:
    """Resolves a mesh index to the first node referencing that mesh.

    VRM 0.x binds expressions and first-person annotations to meshes, while
    VRM 1.0 binds them to nodes.
    """

    def __init__(self, mesh_to_node: Dict[int, int]) -> None:
        self._mesh_to_node = dict(mesh_to_node)

    @classmethod
    def from_nodes(cls, nodes: Iterable[Any]) -> "MeshToNodeResolver":
        mapping: Dict[int, int] = {}
        for node_index, node in enumerate(nodes):
            mesh_index = get_index(node, "mesh")
            if mesh_index is not None and mesh_index not in mapping:
                mapping[mesh_index] = node_index
        return cls(mapping)

    @classmethod
    def from_gltf(cls, payload: Dict[str, Any]) -> "MeshToNodeResolver":
        return cls.from_nodes(get_list(payload, "nodes"))

    def lookup(self, mesh_index: int) -> Optional[int]:
        return self._mesh_to_node.get(mesh_index)
