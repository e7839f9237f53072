"""VRM 0.x ``humanoid`` to VRMC_vrm ``humanoid``."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .jsontree import get_index, get_list, get_str

HUMAN_BONES = frozenset(
    [
        "hips", "spine", "chest", "upperChest", "neck", "head", "leftEye", "rightEye", "jaw",
        "leftUpperLeg", "leftLowerLeg", "leftFoot", "leftToes",
        "rightUpperLeg", "rightLowerLeg", "rightFoot", "rightToes",
        "leftShoulder", "leftUpperArm", "leftLowerArm", "leftHand",
        "rightShoulder", "rightUpperArm", "rightLowerArm", "rightHand",
    ]
    + [
        f"{side}{finger}{segment}"
        for side in ("left", "right")
        for finger, segments in (
            ("Thumb", ("Metacarpal", "Proximal", "Distal")),
            ("Index", ("Proximal", "Intermediate", "Distal")),
            ("Middle", ("Proximal", "Intermediate", "Distal")),
            ("Ring", ("Proximal", "Intermediate", "Distal")),
            ("Little", ("Proximal", "Intermediate", "Distal")),
        )
        for segment in segments
    ]
)

# VRM 1.0 renamed the thumb segments to match the anatomical bones.
BONE_RENAMES: Dict[str, str] = {
    "leftThumbProximal": "leftThumbMetacarpal",
    "leftThumbIntermediate": "leftThumbProximal",
    "rightThumbProximal": "rightThumbMetacarpal",
    "rightThumbIntermediate": "rightThumbProximal",
}


def migrate_bone_name(bone: str) -> str:
    return BONE_RENAMES.get(bone, bone)


def migrate_humanoid(
    vrm0_humanoid: Dict[str, Any],
    node_count: int,
    notes: Optional[List[str]] = None,
) -> Dict[str, Any]:
    human_bones: Dict[str, Dict[str, int]] = {}
    for entry in get_list(vrm0_humanoid, "humanBones"):
        bone = get_str(entry, "bone")
        node = get_index(entry, "node", count=node_count)
        if bone is None or node is None:
            logging.debug("Skipping humanoid entry without a valid bone/node: %r", entry)
            continue
        bone = migrate_bone_name(bone)
        if bone not in HUMAN_BONES:
            logging.warning("Unrecognized humanoid bone %r kept as is", bone)
            if notes is not None:
                notes.append(f"humanoid: unrecognized bone {bone!r}")
        if bone in human_bones:
            continue
        human_bones[bone] = {"node": node}
    return {"humanBones": human_bones}
