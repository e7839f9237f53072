"""
VRM 0.x ``secondaryAnimation`` to ``VRMC_springBone``.

Colliders of every V0 collider group are flattened into one list and collider
group ``i`` keeps index ``i``. A V0 bone group names root bones only; each
root is expanded into chains by walking the node hierarchy, following the
first child and starting a new spring at every additional child.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set

from .coordinates import reverse_x
from .jsontree import get_float, get_index, get_list, get_str, get_vec3

SPEC_VERSION = "1.0"


def _children(nodes: List[Any], index: int) -> List[int]:
    out: List[int] = []
    for child in get_list(nodes, index, "children"):
        if isinstance(child, int) and not isinstance(child, bool) and 0 <= child < len(nodes):
            out.append(child)
    return out


def joint_chains(nodes: List[Any], root: int) -> List[List[int]]:
    """Split the hierarchy below ``root`` into chains of node indices."""
    chains: List[List[int]] = []
    visited: Set[int] = set()
    pending = [root]
    while pending:
        current: Optional[int] = pending.pop(0)
        chain: List[int] = []
        while current is not None and current not in visited:
            visited.add(current)
            chain.append(current)
            children = [child for child in _children(nodes, current) if child not in visited]
            current = children[0] if children else None
            pending.extend(children[1:])
        if chain:
            chains.append(chain)
    return chains


def _migrate_colliders(secondary_animation: Dict[str, Any], node_count: int):
    colliders: List[Dict[str, Any]] = []
    collider_groups: List[Dict[str, Any]] = []
    for group_index, group in enumerate(get_list(secondary_animation, "colliderGroups")):
        node = get_index(group, "node", count=node_count)
        indices: List[int] = []
        if node is None:
            logging.debug("Collider group %d has no valid node", group_index)
        else:
            for collider in get_list(group, "colliders"):
                offset = get_vec3(collider, "offset") or (0.0, 0.0, 0.0)
                colliders.append(
                    {
                        "node": node,
                        "shape": {
                            "sphere": {
                                "offset": reverse_x(offset),
                                "radius": get_float(collider, "radius", default=0.0),
                            }
                        },
                    }
                )
                indices.append(len(colliders) - 1)
        collider_groups.append({"name": f"colliderGroup{group_index}", "colliders": indices})
    return colliders, collider_groups


def _joint(node: int, bone_group: Dict[str, Any]) -> Dict[str, Any]:
    gravity_dir = get_vec3(bone_group, "gravityDir") or (0.0, -1.0, 0.0)
    return {
        "node": node,
        "hitRadius": get_float(bone_group, "hitRadius", default=0.02),
        "stiffness": get_float(bone_group, "stiffiness", default=1.0),
        "gravityPower": get_float(bone_group, "gravityPower", default=0.0),
        "gravityDir": reverse_x(gravity_dir),
        "dragForce": get_float(bone_group, "dragForce", default=0.4),
    }


def migrate_spring_bone(
    gltf: Dict[str, Any],
    secondary_animation: Dict[str, Any],
    notes: Optional[List[str]] = None,
) -> Dict[str, Any]:
    nodes = get_list(gltf, "nodes")
    colliders, collider_groups = _migrate_colliders(secondary_animation, len(nodes))

    springs: List[Dict[str, Any]] = []
    for group_index, bone_group in enumerate(get_list(secondary_animation, "boneGroups")):
        group_refs = [
            index
            for index in (
                get_index(ref, count=len(collider_groups)) for ref in get_list(bone_group, "colliderGroups")
            )
            if index is not None
        ]
        center = get_index(bone_group, "center", count=len(nodes))
        name = get_str(bone_group, "comment")

        for root_value in get_list(bone_group, "bones"):
            root = get_index(root_value, count=len(nodes))
            if root is None:
                logging.debug("Bone group %d references invalid root %r", group_index, root_value)
                if notes is not None:
                    notes.append(f"springBone: group {group_index} has invalid root {root_value!r}")
                continue
            for chain in joint_chains(nodes, root):
                spring: Dict[str, Any] = {"joints": [_joint(node, bone_group) for node in chain]}
                if name:
                    spring["name"] = name
                if group_refs:
                    spring["colliderGroups"] = list(group_refs)
                if center is not None:
                    spring["center"] = center
                springs.append(spring)

    out: Dict[str, Any] = {"specVersion": SPEC_VERSION}
    if colliders:
        out["colliders"] = colliders
    if collider_groups:
        out["colliderGroups"] = collider_groups
    if springs:
        out["springs"] = springs
    return out
