"""
VRM 0.x ``blendShapeMaster`` to VRMC_vrm ``expressions``.

Several V0 preset tags may map to the same V1 preset and several groups may
share a name. The first group encountered in source order keeps the slot;
later ones are dropped.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .jsontree import get_bool, get_float, get_index, get_list, get_str
from .material import migrate_material_value_binds
from .resolver import MeshToNodeResolver

CUSTOM = "custom"

PRESETS: Dict[str, str] = {
    "joy": "happy",
    "angry": "angry",
    "sorrow": "sad",
    "fun": "relaxed",
    "a": "aa",
    "i": "ih",
    "u": "ou",
    "e": "ee",
    "o": "oh",
    "blink": "blink",
    "blink_l": "blinkLeft",
    "blink_r": "blinkRight",
    "lookup": "lookUp",
    "lookdown": "lookDown",
    "lookleft": "lookLeft",
    "lookright": "lookRight",
    "neutral": "neutral",
}

OVERRIDE_NONE = "none"


@dataclass(frozen=True)
class ExpressionKey:
    preset: str
    name: Optional[str] = None

    @property
    def is_custom(self) -> bool:
        return self.preset == CUSTOM

    @property
    def slot(self) -> str:
        return self.name if self.is_custom and self.name is not None else self.preset


@dataclass
class ExpressionClip:
    morph_target_binds: List[Dict[str, Any]] = field(default_factory=list)
    material_color_binds: List[Dict[str, Any]] = field(default_factory=list)
    texture_transform_binds: List[Dict[str, Any]] = field(default_factory=list)
    is_binary: bool = False
    override_blink: str = OVERRIDE_NONE
    override_look_at: str = OVERRIDE_NONE
    override_mouth: str = OVERRIDE_NONE

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.morph_target_binds:
            out["morphTargetBinds"] = [dict(bind) for bind in self.morph_target_binds]
        if self.material_color_binds:
            out["materialColorBinds"] = [dict(bind) for bind in self.material_color_binds]
        if self.texture_transform_binds:
            out["textureTransformBinds"] = [dict(bind) for bind in self.texture_transform_binds]
        out["isBinary"] = self.is_binary
        out["overrideBlink"] = self.override_blink
        out["overrideLookAt"] = self.override_look_at
        out["overrideMouth"] = self.override_mouth
        return out


class Expressions:
    """Preset and custom expression tables with first-writer-wins insertion."""

    def __init__(self) -> None:
        self.preset: "OrderedDict[str, ExpressionClip]" = OrderedDict()
        self.custom: "OrderedDict[str, ExpressionClip]" = OrderedDict()

    def add(self, key: ExpressionKey, clip: ExpressionClip) -> bool:
        table = self.custom if key.is_custom else self.preset
        if key.slot in table:
            logging.debug("Expression %r already set, dropping later definition", key.slot)
            return False
        table[key.slot] = clip
        return True

    def get(self, key: ExpressionKey) -> Optional[ExpressionClip]:
        table = self.custom if key.is_custom else self.preset
        return table.get(key.slot)

    def __len__(self) -> int:
        return len(self.preset) + len(self.custom)

    def to_json(self) -> Dict[str, Any]:
        return {
            "preset": {name: clip.to_json() for name, clip in self.preset.items()},
            "custom": {name: clip.to_json() for name, clip in self.custom.items()},
        }


def expression_key(preset_name: Optional[str], group_name: Optional[str]) -> ExpressionKey:
    preset = PRESETS.get((preset_name or "").lower())
    if preset is not None:
        return ExpressionKey(preset)
    return ExpressionKey(CUSTOM, group_name or preset_name or "")


def morph_weight(weight: float) -> float:
    return min(max(weight / 100.0, 0.0), 1.0)


def _morph_target_binds(group: Dict[str, Any], resolver: MeshToNodeResolver) -> List[Dict[str, Any]]:
    binds: List[Dict[str, Any]] = []
    for bind in get_list(group, "binds"):
        mesh = get_index(bind, "mesh")
        index = get_index(bind, "index")
        node = resolver.lookup(mesh) if mesh is not None else None
        if node is None or index is None:
            logging.debug("Dropping unresolvable morph target bind %r", bind)
            continue
        weight = get_float(bind, "weight", default=100.0)
        binds.append({"node": node, "index": index, "weight": morph_weight(weight)})
    return binds


def migrate_expressions(
    gltf: Dict[str, Any],
    blend_shape_master: Dict[str, Any],
    resolver: MeshToNodeResolver,
    notes: Optional[List[str]] = None,
) -> Iterator[Tuple[ExpressionKey, ExpressionClip]]:
    """Yield ``(key, clip)`` for every blend shape group in source order."""
    for group in get_list(blend_shape_master, "blendShapeGroups"):
        if not isinstance(group, dict):
            continue
        preset_name = get_str(group, "presetName")
        group_name = get_str(group, "name")
        key = expression_key(preset_name, group_name)
        if key.is_custom and preset_name not in (None, "", "unknown"):
            logging.warning("Unrecognized blend shape preset %r, migrated as custom %r", preset_name, key.name)
            if notes is not None:
                notes.append(f"expression: unrecognized preset {preset_name!r}")

        color_binds, transform_binds = migrate_material_value_binds(gltf, get_list(group, "materialValues"), notes)
        clip = ExpressionClip(
            morph_target_binds=_morph_target_binds(group, resolver),
            material_color_binds=color_binds,
            texture_transform_binds=transform_binds,
            is_binary=get_bool(group, "isBinary"),
        )
        yield key, clip


def build_expressions(
    gltf: Dict[str, Any],
    blend_shape_master: Dict[str, Any],
    resolver: MeshToNodeResolver,
    notes: Optional[List[str]] = None,
) -> Expressions:
    expressions = Expressions()
    for key, clip in migrate_expressions(gltf, blend_shape_master, resolver, notes):
        expressions.add(key, clip)
    return expressions
