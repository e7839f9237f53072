"""VRM 0.x ``firstPerson`` to VRMC_vrm ``lookAt`` and ``firstPerson``."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .coordinates import reverse_x
from .jsontree import get_float, get_index, get_list, get_object, get_str, get_vec3, lower_camel
from .resolver import MeshToNodeResolver

FIRST_PERSON_TYPES = ("auto", "both", "thirdPersonOnly", "firstPersonOnly")

LOOK_AT_TYPES: Dict[str, str] = {
    "Bone": "bone",
    "BlendShape": "expression",
}

# VRM 0.x degree map name -> VRM 1.0 range map name
RANGE_MAPS = (
    ("lookAtHorizontalInner", "rangeMapHorizontalInner"),
    ("lookAtHorizontalOuter", "rangeMapHorizontalOuter"),
    ("lookAtVerticalDown", "rangeMapVerticalDown"),
    ("lookAtVerticalUp", "rangeMapVerticalUp"),
)

DEFAULT_INPUT_MAX_VALUE = 90.0
DEFAULT_OUTPUT_SCALE = 10.0


def _range_map(degree_map: Optional[Dict[str, Any]]) -> Dict[str, float]:
    return {
        "inputMaxValue": get_float(degree_map, "xRange", default=DEFAULT_INPUT_MAX_VALUE),
        "outputScale": get_float(degree_map, "yRange", default=DEFAULT_OUTPUT_SCALE),
    }


def _mesh_annotations(
    vrm0_first_person: Dict[str, Any],
    resolver: MeshToNodeResolver,
    notes: Optional[List[str]],
) -> List[Dict[str, Any]]:
    annotations: List[Dict[str, Any]] = []
    for annotation in get_list(vrm0_first_person, "meshAnnotations"):
        mesh = get_index(annotation, "mesh")
        node = resolver.lookup(mesh) if mesh is not None else None
        if node is None:
            logging.debug("Dropping first person annotation without a node: %r", annotation)
            continue
        flag = lower_camel(get_str(annotation, "firstPersonFlag") or "Auto")
        if flag not in FIRST_PERSON_TYPES:
            logging.warning("Unrecognized firstPersonFlag %r kept as is", flag)
            if notes is not None:
                notes.append(f"firstPerson: unrecognized flag {flag!r}")
        annotations.append({"node": node, "type": flag})
    return annotations


def migrate_look_at_and_first_person(
    gltf: Dict[str, Any],
    vrm0_first_person: Dict[str, Any],
    resolver: MeshToNodeResolver,
    notes: Optional[List[str]] = None,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split the combined VRM 0.x object into ``(lookAt, firstPerson)``."""
    first_person = {"meshAnnotations": _mesh_annotations(vrm0_first_person, resolver, notes)}

    look_at: Dict[str, Any] = {}
    offset = get_vec3(vrm0_first_person, "firstPersonBoneOffset")
    if offset is not None:
        look_at["offsetFromHeadBone"] = reverse_x(offset)

    type_name = get_str(vrm0_first_person, "lookAtTypeName")
    if type_name is None:
        look_at["type"] = "bone"
    elif type_name in LOOK_AT_TYPES:
        look_at["type"] = LOOK_AT_TYPES[type_name]
    else:
        logging.warning("Unrecognized lookAtTypeName %r kept as is", type_name)
        if notes is not None:
            notes.append(f"lookAt: unrecognized type {type_name!r}")
        look_at["type"] = lower_camel(type_name)

    for vrm0_name, vrm1_name in RANGE_MAPS:
        look_at[vrm1_name] = _range_map(get_object(vrm0_first_person, vrm0_name))

    return look_at, first_person
