"""
VRM 0.x to VRM 1.0 migration pipeline.

Parse -> build scene model -> normalization check -> convert coordinates ->
rebuild mesh records -> field migrators -> assemble -> repackage.

``meta`` and ``humanoid`` are required; a missing one aborts the migration.
The expression, lookAt/firstPerson and springBone migrators only run when the
V0 source subtree exists, and a failure in one of them is logged and leaves
that extension out of the output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .coordinates import convert_coordinates, find_unnormalized
from .errors import MalformedInputError, MigrationError, MissingRequiredFieldError, NotNormalizedError
from .expression import Expressions, build_expressions
from .glb import build_glb, parse_glb
from .humanoid import migrate_humanoid
from .jsontree import get_list, get_object
from .lookat import migrate_look_at_and_first_person
from .material import migrate_materials
from .mesh_updater import rebuild
from .meta import migrate_meta
from .model import VRM0, VRM1, read_model
from .resolver import MeshToNodeResolver
from .springbone import migrate_spring_bone

VRM0_EXTENSION = "VRM"
VRMC_VRM = "VRMC_vrm"
VRMC_SPRING_BONE = "VRMC_springBone"
SPEC_VERSION = "1.0"


@dataclass
class MigratedExtensions:
    meta: Dict[str, Any]
    humanoid: Dict[str, Any]
    expressions: Optional[Expressions] = None
    look_at: Optional[Dict[str, Any]] = None
    first_person: Optional[Dict[str, Any]] = None
    spring_bone: Optional[Dict[str, Any]] = None

    def to_vrmc_vrm(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "specVersion": SPEC_VERSION,
            "meta": self.meta,
            "humanoid": self.humanoid,
        }
        if self.first_person is not None:
            out["firstPerson"] = self.first_person
        if self.look_at is not None:
            out["lookAt"] = self.look_at
        if self.expressions is not None:
            out["expressions"] = self.expressions.to_json()
        return out


Validator = Callable[[Dict[str, Any], MigratedExtensions, MeshToNodeResolver], None]


@dataclass
class MigrationOptions:
    allow_unnormalized: bool = False
    remap_texture_channels: bool = True
    validator: Optional[Validator] = None


@dataclass
class MigrationReport:
    notes: List[str] = field(default_factory=list)
    unnormalized_nodes: List[str] = field(default_factory=list)
    extensions_used: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _collect_extensions(node: Any, found: Set[str]) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "extensions" and isinstance(value, dict):
                found.update(value.keys())
            _collect_extensions(value, found)
    elif isinstance(node, list):
        for item in node:
            _collect_extensions(item, found)


def _update_extension_lists(out: Dict[str, Any]) -> List[str]:
    in_use: Set[str] = set()
    for key, value in out.items():
        if key not in ("extensionsUsed", "extensionsRequired"):
            _collect_extensions({key: value}, in_use)

    used = [name for name in get_list(out, "extensionsUsed") if isinstance(name, str) and name in in_use]
    used.extend(sorted(in_use.difference(used)))
    if used:
        out["extensionsUsed"] = used
    else:
        out.pop("extensionsUsed", None)

    required = [name for name in get_list(out, "extensionsRequired") if isinstance(name, str) and name in in_use]
    if required:
        out["extensionsRequired"] = required
    else:
        out.pop("extensionsRequired", None)
    return used


class VrmMigrator:
    def __init__(self, options: Optional[MigrationOptions] = None) -> None:
        self.options = options or MigrationOptions()

    def migrate(self, data: bytes) -> bytes:
        return self.migrate_with_report(data)[0]

    def migrate_with_report(self, data: bytes) -> Tuple[bytes, MigrationReport]:
        gltf, bin_chunk = parse_glb(data)
        return self._migrate(gltf, bin_chunk)

    def migrate_data(self, gltf: Dict[str, Any], bin_chunk: bytes) -> bytes:
        return self._migrate(gltf, bin_chunk)[0]

    def _optional(self, report: MigrationReport, label: str, migrate: Callable[[], Any]) -> Any:
        try:
            return migrate()
        except (MigrationError, ValueError, TypeError, KeyError, IndexError) as exc:
            logging.error("%s migration failed, extension omitted: %s", label, exc)
            report.notes.append(f"{label}: migration failed ({exc})")
            report.skipped.append(label)
            return None

    def _migrate(self, gltf: Dict[str, Any], bin_chunk: bytes) -> Tuple[bytes, MigrationReport]:
        report = MigrationReport()
        notes = report.notes

        vrm0 = get_object(gltf, "extensions", VRM0_EXTENSION)
        if vrm0 is None:
            raise MalformedInputError("glTF has no extensions.VRM object")
        vrm0_meta = get_object(vrm0, "meta")
        if vrm0_meta is None:
            raise MissingRequiredFieldError("meta")
        vrm0_humanoid = get_object(vrm0, "humanoid")
        if vrm0_humanoid is None:
            raise MissingRequiredFieldError("humanoid")

        model = read_model(gltf, bin_chunk, VRM0)
        offenders = find_unnormalized(model)
        if offenders:
            if not self.options.allow_unnormalized:
                raise NotNormalizedError(offenders)
            logging.warning("Model is not normalized: %s", ", ".join(offenders))
            report.unnormalized_nodes.extend(offenders)
            notes.append(f"not normalized: {', '.join(offenders)}")

        convert_coordinates(model, VRM1)
        out, blob = rebuild(gltf, model, bin_chunk)
        resolver = MeshToNodeResolver.from_gltf(out)

        extensions = MigratedExtensions(
            meta=migrate_meta(out, vrm0_meta, notes),
            humanoid=migrate_humanoid(vrm0_humanoid, len(get_list(out, "nodes")), notes),
        )

        blend_shape_master = get_object(vrm0, "blendShapeMaster")
        if blend_shape_master is not None:
            extensions.expressions = self._optional(
                report, "expressions", lambda: build_expressions(out, blend_shape_master, resolver, notes)
            )

        vrm0_first_person = get_object(vrm0, "firstPerson")
        if vrm0_first_person is not None:
            pair = self._optional(
                report,
                "lookAt/firstPerson",
                lambda: migrate_look_at_and_first_person(out, vrm0_first_person, resolver, notes),
            )
            if pair is not None:
                extensions.look_at, extensions.first_person = pair

        secondary_animation = get_object(vrm0, "secondaryAnimation")
        if secondary_animation is not None:
            extensions.spring_bone = self._optional(
                report, "springBone", lambda: migrate_spring_bone(out, secondary_animation, notes)
            )

        migrate_materials(out, vrm0, blob, self.options.remap_texture_channels, notes)

        if self.options.validator is not None:
            self.options.validator(vrm0, extensions, resolver)

        root_extensions = out.setdefault("extensions", {})
        root_extensions.pop(VRM0_EXTENSION, None)
        root_extensions[VRMC_VRM] = extensions.to_vrmc_vrm()
        if extensions.spring_bone is not None:
            root_extensions[VRMC_SPRING_BONE] = extensions.spring_bone
        report.extensions_used = _update_extension_lists(out)

        if blob:
            out["buffers"] = [{"byteLength": len(blob)}]
        else:
            out.pop("buffers", None)

        logging.debug("Migrated model with extensions: %s", ", ".join(report.extensions_used))
        return build_glb(out, bytes(blob)), report


def migrate(data: bytes, options: Optional[MigrationOptions] = None) -> bytes:
    return VrmMigrator(options).migrate(data)


def migrate_data(gltf: Dict[str, Any], bin_chunk: bytes, options: Optional[MigrationOptions] = None) -> bytes:
    return VrmMigrator(options).migrate_data(gltf, bin_chunk)


def is_vrm0(gltf: Dict[str, Any]) -> bool:
    return get_object(gltf, "extensions", VRM0_EXTENSION) is not None
