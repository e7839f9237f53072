"""
Consistency checks between a VRM 0.x source and its migrated VRM 1.0 output.

Each check re-reads the V0 JSON independently of the migrators and compares
the result with what was written. Any mismatch raises ``ConsistencyError``.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

from .coordinates import reverse_x
from .errors import MigrationError
from .expression import expression_key, morph_weight
from .humanoid import migrate_bone_name
from .jsontree import get, get_float, get_index, get_list, get_object, get_str, get_vec3
from .meta import AVATAR_PERMISSIONS
from .resolver import MeshToNodeResolver

TOLERANCE = 1e-6


class ConsistencyError(MigrationError):
    pass


def _expect(condition: bool, message: str) -> None:
    if not condition:
        raise ConsistencyError(message)


def _close(a: Sequence[float], b: Sequence[float]) -> bool:
    return len(a) == len(b) and all(
        (math.isnan(x) and math.isnan(y)) or math.isclose(x, y, rel_tol=TOLERANCE, abs_tol=TOLERANCE)
        for x, y in zip(a, b)
    )


def check_meta(vrm0: Dict[str, Any], meta: Dict[str, Any]) -> None:
    title = get_str(vrm0, "meta", "title")
    if title:
        _expect(meta.get("name") == title, f"meta.name {meta.get('name')!r} != title {title!r}")
    author = get_str(vrm0, "meta", "author")
    if author:
        authors = meta.get("authors") or []
        _expect(authors[:1] == [author], f"meta.authors {authors!r} does not start with {author!r}")

    allowed = get_str(vrm0, "meta", "allowedUserName")
    if allowed is not None:
        expected = AVATAR_PERMISSIONS.get(allowed, allowed)
        _expect(
            meta.get("avatarPermission") == expected,
            f"meta.avatarPermission {meta.get('avatarPermission')!r} != {expected!r}",
        )

    for vrm0_key, vrm1_key in (
        ("violentUssageName", "allowExcessivelyViolentUsage"),
        ("sexualUssageName", "allowExcessivelySexualUsage"),
    ):
        expected_flag = get_str(vrm0, "meta", vrm0_key) == "Allow"
        _expect(meta.get(vrm1_key) is expected_flag, f"meta.{vrm1_key} should be {expected_flag}")


def check_humanoid(vrm0: Dict[str, Any], humanoid: Dict[str, Any]) -> None:
    expected: Dict[str, int] = {}
    for entry in get_list(vrm0, "humanoid", "humanBones"):
        bone = get_str(entry, "bone")
        node = get_index(entry, "node")
        if bone is None or node is None:
            continue
        expected.setdefault(migrate_bone_name(bone), node)

    human_bones = humanoid.get("humanBones") or {}
    for bone, value in human_bones.items():
        _expect(bone in expected, f"humanoid bone {bone!r} has no VRM 0.x source")
        node = get_index(value, "node")
        _expect(node == expected[bone], f"humanoid bone {bone!r}: node {node} != {expected[bone]}")


def _expected_morph_binds(group: Dict[str, Any], resolver: MeshToNodeResolver) -> List[Dict[str, Any]]:
    binds = []
    for bind in get_list(group, "binds"):
        mesh = get_index(bind, "mesh")
        index = get_index(bind, "index")
        node = resolver.lookup(mesh) if mesh is not None else None
        if node is None or index is None:
            continue
        binds.append({"node": node, "index": index, "weight": morph_weight(get_float(bind, "weight", default=100.0))})
    return binds


def check_expressions(
    vrm0: Dict[str, Any],
    expressions: Optional[Dict[str, Any]],
    resolver: MeshToNodeResolver,
) -> None:
    blend_shape_master = get_object(vrm0, "blendShapeMaster")
    if blend_shape_master is None:
        _expect(expressions is None, "expressions written without a blendShapeMaster")
        return
    _expect(expressions is not None, "blendShapeMaster was not migrated")

    seen = set()
    for group in get_list(blend_shape_master, "blendShapeGroups"):
        key = expression_key(get_str(group, "presetName"), get_str(group, "name"))
        if key in seen:
            continue
        seen.add(key)
        table = expressions.get("custom" if key.is_custom else "preset") or {}
        clip = table.get(key.slot)
        _expect(clip is not None, f"expression {key.slot!r} is missing")

        expected = _expected_morph_binds(group, resolver)
        actual = clip.get("morphTargetBinds") or []
        _expect(len(actual) == len(expected), f"expression {key.slot!r}: bind count {len(actual)} != {len(expected)}")
        for want, got in zip(expected, actual):
            _expect(
                got.get("node") == want["node"]
                and got.get("index") == want["index"]
                and _close([got.get("weight", 0.0)], [want["weight"]]),
                f"expression {key.slot!r}: bind {got!r} != {want!r}",
            )


def check(vrm0: Dict[str, Any], vrmc_vrm: Dict[str, Any], resolver: MeshToNodeResolver) -> None:
    check_meta(vrm0, vrmc_vrm.get("meta") or {})
    check_humanoid(vrm0, vrmc_vrm.get("humanoid") or {})
    check_expressions(vrm0, vrmc_vrm.get("expressions"), resolver)


def check_spring_bone(vrm0: Dict[str, Any], vrmc_spring_bone: Dict[str, Any]) -> None:
    expected = []
    for group in get_list(vrm0, "secondaryAnimation", "colliderGroups"):
        if get_index(group, "node") is None:
            continue
        for collider in get_list(group, "colliders"):
            offset = get_vec3(collider, "offset") or (0.0, 0.0, 0.0)
            expected.append((reverse_x(offset), get_float(collider, "radius", default=0.0)))

    colliders = get_list(vrmc_spring_bone, "colliders")
    _expect(len(colliders) == len(expected), f"collider count {len(colliders)} != {len(expected)}")
    for index, (collider, (offset, radius)) in enumerate(zip(colliders, expected)):
        sphere = get(collider, "shape", "sphere")
        _expect(_close(get_list(sphere, "offset"), offset), f"collider {index}: offset mismatch")
        _expect(_close([get_float(sphere, "radius", default=0.0)], [radius]), f"collider {index}: radius mismatch")


def validate(vrm0: Dict[str, Any], extensions: Any, resolver: MeshToNodeResolver) -> None:
    """Validator hook for ``MigrationOptions``: runs every check above."""
    check(vrm0, extensions.to_vrmc_vrm(), resolver)
    if extensions.spring_bone is not None:
        check_spring_bone(vrm0, extensions.spring_bone)
