"""
VRM 0.x ``materialProperties`` to VRM 1.0 material extensions.

MToon 0.x parameters are ported to ``VRMC_materials_mtoon``; the VRM unlit
shaders become ``KHR_materials_unlit``. glTF materials exported with
``VRM_USE_GLTFSHADER`` and unknown shaders pass through unchanged.

Colors stored in ``vectorProperties`` are sRGB and are linearized for the
glTF factors. ``_MainTex_ST`` (Unity, bottom-left UV origin) becomes a
``KHR_texture_transform`` on every texture slot.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence, Tuple

from PIL import Image

from .errors import MalformedInputError
from .glb import append_buffer_view, buffer_view_bytes
from .jsontree import get_float, get_index, get_list, get_numbers, get_object, get_str

MTOON_EXTENSION = "VRMC_materials_mtoon"
UNLIT_EXTENSION = "KHR_materials_unlit"
TEXTURE_TRANSFORM_EXTENSION = "KHR_texture_transform"

MTOON_SHADER = "VRM/MToon"
GLTF_SHADER = "VRM_USE_GLTFSHADER"
UNLIT_SHADERS: Dict[str, str] = {
    "VRM/UnlitTexture": "OPAQUE",
    "VRM/UnlitCutout": "MASK",
    "VRM/UnlitTransparent": "BLEND",
    "VRM/UnlitTransparentZWrite": "BLEND",
}

MATERIAL_COLOR_BINDS: Dict[str, str] = {
    "_Color": "color",
    "_EmissionColor": "emissionColor",
    "_ShadeColor": "shadeColor",
    "_RimColor": "rimColor",
    "_OutlineColor": "outlineColor",
}
TEXTURE_TRANSFORM_PROPERTIES = ("_MainTex_ST", "_MainTex_ST_S", "_MainTex_ST_T")

OUTLINE_WIDTH_MODES = ("none", "worldCoordinates", "screenCoordinates")

# MToon 0.x samples these masks from the red channel, MToon 1.0 from G and B.
OUTLINE_WIDTH_CHANNEL = 1
UV_ANIMATION_MASK_CHANNEL = 2


def gamma_to_linear(value: float) -> float:
    return value ** 2.2 if value > 0.0 else value


def linear_color(values: Sequence[float], size: int = 4) -> List[float]:
    out = [gamma_to_linear(v) for v in values[:3]]
    if size == 4:
        out.append(values[3] if len(values) > 3 else 1.0)
    return out


def convert_texture_transform(st: Sequence[float]) -> Tuple[List[float], List[float]]:
    """Convert Unity ``(scaleX, scaleY, offsetX, offsetY)`` into glTF (scale, offset)."""
    scale_x, scale_y, offset_x, offset_y = st
    return [scale_x, scale_y], [offset_x, 1.0 - offset_y - scale_y]


def _material_index_by_name(gltf: Dict[str, Any]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for index, material in enumerate(get_list(gltf, "materials")):
        name = get_str(material, "name")
        if name is not None and name not in out:
            out[name] = index
    return out


def migrate_material_value_binds(
    gltf: Dict[str, Any],
    material_values: List[Any],
    notes: Optional[List[str]] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Convert blend shape ``materialValues`` into color and texture transform binds."""
    by_name = _material_index_by_name(gltf)
    color_binds: List[Dict[str, Any]] = []
    transform_binds: Dict[int, Dict[str, Any]] = {}

    for value in material_values:
        material_name = get_str(value, "materialName")
        property_name = get_str(value, "propertyName")
        target = get_numbers(value, "targetValue")
        material = by_name.get(material_name) if material_name is not None else None
        if material is None or property_name is None or target is None or len(target) < 4:
            logging.debug("Skipping material value bind %r", value)
            continue

        if property_name in MATERIAL_COLOR_BINDS:
            color_binds.append(
                {
                    "material": material,
                    "type": MATERIAL_COLOR_BINDS[property_name],
                    "targetValue": linear_color(target),
                }
            )
        elif property_name in TEXTURE_TRANSFORM_PROPERTIES:
            if property_name == "_MainTex_ST_S":
                target = [target[0], 1.0, target[2], 0.0]
            elif property_name == "_MainTex_ST_T":
                target = [1.0, target[1], 0.0, target[3]]
            scale, offset = convert_texture_transform(target[:4])
            if material in transform_binds:
                continue
            transform_binds[material] = {"material": material, "scale": scale, "offset": offset}
        else:
            logging.warning("Unsupported material value property %r on %r", property_name, material_name)
            if notes is not None:
                notes.append(f"expression: unsupported material property {property_name!r}")

    return color_binds, list(transform_binds.values())


class _TextureChannelRemapper:
    """Re-encodes textures so that the red channel lands in another channel."""

    def __init__(self, gltf: Dict[str, Any], blob: bytearray, notes: Optional[List[str]]) -> None:
        self.gltf = gltf
        self.blob = blob
        self.notes = notes
        self._done: Dict[Tuple[int, int], int] = {}

    def remap(self, texture_index: int, channel: int) -> int:
        key = (texture_index, channel)
        if key not in self._done:
            self._done[key] = self._remap(texture_index, channel)
        return self._done[key]

    def _remap(self, texture_index: int, channel: int) -> int:
        texture = get_object(self.gltf, "textures", texture_index)
        source = get_index(texture, "source") if texture is not None else None
        image = get_object(self.gltf, "images", source) if source is not None else None
        view_index = get_index(image, "bufferView") if image is not None else None
        if view_index is None:
            logging.warning("Texture %d is not embedded, channel remap skipped", texture_index)
            return texture_index

        try:
            blob = buffer_view_bytes(self.gltf, bytes(self.blob), view_index)
            with Image.open(BytesIO(blob)) as img:
                rgba = img.convert("RGBA")
                bands = list(rgba.split())
                bands[channel] = bands[0]
                out = BytesIO()
                Image.merge("RGBA", bands).save(out, format="PNG")
        except (OSError, ValueError, MalformedInputError) as exc:
            logging.warning("Cannot remap channels of texture %d: %s", texture_index, exc)
            if self.notes is not None:
                self.notes.append(f"material: texture {texture_index} channel remap failed ({exc})")
            return texture_index

        buffer_views = self.gltf.setdefault("bufferViews", [])
        new_view = append_buffer_view(buffer_views, self.blob, out.getvalue())
        images = self.gltf["images"]
        images.append({"bufferView": new_view, "mimeType": "image/png", "name": f"{image.get('name', 'image')}_mtoon1"})
        new_texture = {key: value for key, value in texture.items() if key != "extensions"}
        new_texture["source"] = len(images) - 1
        textures = self.gltf["textures"]
        textures.append(new_texture)
        logging.debug("Remapped texture %d red channel into channel %d", texture_index, channel)
        return len(textures) - 1


def _texture_info(
    props: Dict[str, Any],
    name: str,
    texture_count: int,
    transform: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    index = get_index(props, "textureProperties", name, count=texture_count)
    if index is None:
        return None
    info: Dict[str, Any] = {"index": index}
    if transform is not None:
        info["extensions"] = {TEXTURE_TRANSFORM_EXTENSION: dict(transform)}
    return info


def _main_texture_transform(props: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    st = get_numbers(props, "vectorProperties", "_MainTex_ST")
    if st is None or len(st) < 4 or st[:4] == [1.0, 1.0, 0.0, 0.0]:
        return None
    scale, offset = convert_texture_transform(st[:4])
    return {"scale": scale, "offset": offset}


def _color(props: Dict[str, Any], name: str, default: Sequence[float], size: int) -> List[float]:
    values = get_numbers(props, "vectorProperties", name)
    if values is None or len(values) < 3:
        values = list(default)
    return linear_color(values, size=size)


def _apply_alpha(material: Dict[str, Any], blend_mode: int, props: Dict[str, Any]) -> None:
    material.pop("alphaCutoff", None)
    if blend_mode == 1:
        material["alphaMode"] = "MASK"
        material["alphaCutoff"] = get_float(props, "floatProperties", "_Cutoff", default=0.5)
    elif blend_mode in (2, 3):
        material["alphaMode"] = "BLEND"
    else:
        material["alphaMode"] = "OPAQUE"


def _migrate_mtoon(
    material: Dict[str, Any],
    props: Dict[str, Any],
    gltf: Dict[str, Any],
    remapper: Optional[_TextureChannelRemapper],
) -> None:
    def number(name: str, default: float) -> float:
        return get_float(props, "floatProperties", name, default=default)

    texture_count = len(get_list(gltf, "textures"))
    transform = _main_texture_transform(props)

    def texture(name: str) -> Optional[Dict[str, Any]]:
        return _texture_info(props, name, texture_count, transform)

    blend_mode = int(number("_BlendMode", 0.0))
    is_transparent = blend_mode in (2, 3)
    transparent_with_zwrite = is_transparent and number("_ZWrite", 0.0) == 1.0
    _apply_alpha(material, blend_mode, props)
    material["doubleSided"] = int(number("_CullMode", 2.0)) == 0

    pbr = material.setdefault("pbrMetallicRoughness", {})
    pbr["baseColorFactor"] = _color(props, "_Color", (1.0, 1.0, 1.0, 1.0), 4)
    base_texture = texture("_MainTex")
    if base_texture is not None:
        pbr["baseColorTexture"] = base_texture
    else:
        pbr.pop("baseColorTexture", None)

    material["emissiveFactor"] = _color(props, "_EmissionColor", (0.0, 0.0, 0.0), 3)
    emissive_texture = texture("_EmissionMap")
    if emissive_texture is not None:
        material["emissiveTexture"] = emissive_texture
    normal_texture = texture("_BumpMap")
    if normal_texture is not None:
        normal_texture["scale"] = number("_BumpScale", 1.0)
        material["normalTexture"] = normal_texture

    render_queue = props.get("renderQueue")
    offset = 0
    if is_transparent and isinstance(render_queue, int):
        if transparent_with_zwrite:
            offset = min(max(render_queue - 2501, 0), 9)
        else:
            offset = min(max(render_queue - 3000, -9), 0)

    shade_shift = number("_ShadeShift", 0.0)
    shade_toony = number("_ShadeToony", 0.9)
    shading_toony = shade_toony + (1.0 - shade_toony) * (0.5 + 0.5 * shade_shift)
    outline_mode_index = int(number("_OutlineWidthMode", 0.0))
    outline_mode = OUTLINE_WIDTH_MODES[outline_mode_index] if 0 <= outline_mode_index < 3 else "none"
    outline_color_mode = int(number("_OutlineColorMode", 0.0))

    mtoon: Dict[str, Any] = {
        "specVersion": "1.0",
        "transparentWithZWrite": transparent_with_zwrite,
        "renderQueueOffsetNumber": offset,
        "shadeColorFactor": _color(props, "_ShadeColor", (0.97, 0.81, 0.86), 3),
        "shadingShiftFactor": -shade_shift - (1.0 - shading_toony),
        "shadingToonyFactor": shading_toony,
        "giEqualizationFactor": 1.0 - number("_IndirectLightIntensity", 0.1),
        "matcapFactor": [1.0, 1.0, 1.0] if texture("_SphereAdd") is not None else [0.0, 0.0, 0.0],
        "parametricRimColorFactor": _color(props, "_RimColor", (0.0, 0.0, 0.0), 3),
        "rimLightingMixFactor": number("_RimLightingMix", 0.0),
        "parametricRimFresnelPowerFactor": number("_RimFresnelPower", 1.0),
        "parametricRimLiftFactor": number("_RimLift", 0.0),
        "outlineWidthMode": outline_mode,
        "outlineWidthFactor": number("_OutlineWidth", 0.0) * 0.01,
        "outlineColorFactor": _color(props, "_OutlineColor", (0.0, 0.0, 0.0), 3),
        "outlineLightingMixFactor": number("_OutlineLightingMix", 1.0) if outline_color_mode == 1 else 0.0,
        "uvAnimationScrollXSpeedFactor": number("_UvAnimScrollX", 0.0),
        "uvAnimationScrollYSpeedFactor": -number("_UvAnimScrollY", 0.0),
        "uvAnimationRotationSpeedFactor": number("_UvAnimRotation", 0.0),
    }

    for key, name in (
        ("shadeMultiplyTexture", "_ShadeTexture"),
        ("matcapTexture", "_SphereAdd"),
        ("rimMultiplyTexture", "_RimTexture"),
        ("outlineWidthMultiplyTexture", "_OutlineWidthTexture"),
        ("uvAnimationMaskTexture", "_UvAnimMaskTexture"),
    ):
        info = texture(name)
        if info is None:
            continue
        if remapper is not None and key == "outlineWidthMultiplyTexture":
            info["index"] = remapper.remap(info["index"], OUTLINE_WIDTH_CHANNEL)
        elif remapper is not None and key == "uvAnimationMaskTexture":
            info["index"] = remapper.remap(info["index"], UV_ANIMATION_MASK_CHANNEL)
        mtoon[key] = info

    extensions = material.setdefault("extensions", {})
    extensions.pop(UNLIT_EXTENSION, None)
    extensions[MTOON_EXTENSION] = mtoon


def _migrate_unlit(material: Dict[str, Any], props: Dict[str, Any], shader: str, gltf: Dict[str, Any]) -> None:
    texture_count = len(get_list(gltf, "textures"))
    transform = _main_texture_transform(props)
    alpha_mode = UNLIT_SHADERS[shader]
    material.pop("alphaCutoff", None)
    material["alphaMode"] = alpha_mode
    if alpha_mode == "MASK":
        material["alphaCutoff"] = get_float(props, "floatProperties", "_Cutoff", default=0.5)

    pbr = material.setdefault("pbrMetallicRoughness", {})
    pbr["baseColorFactor"] = _color(props, "_Color", (1.0, 1.0, 1.0, 1.0), 4)
    base_texture = _texture_info(props, "_MainTex", texture_count, transform)
    if base_texture is not None:
        pbr["baseColorTexture"] = base_texture
    material.setdefault("extensions", {})[UNLIT_EXTENSION] = {}


def migrate_materials(
    gltf: Dict[str, Any],
    vrm0: Dict[str, Any],
    blob: bytearray,
    remap_texture_channels: bool = True,
    notes: Optional[List[str]] = None,
) -> None:
    """Rewrite ``gltf["materials"]`` in place."""
    properties = get_list(vrm0, "materialProperties")
    by_name: Dict[str, Dict[str, Any]] = {}
    for props in properties:
        name = get_str(props, "name")
        if name is not None and name not in by_name:
            by_name[name] = props

    remapper = _TextureChannelRemapper(gltf, blob, notes) if remap_texture_channels else None
    for index, material in enumerate(get_list(gltf, "materials")):
        if not isinstance(material, dict):
            continue
        props = by_name.get(get_str(material, "name") or "")
        if props is None and index < len(properties) and isinstance(properties[index], dict):
            props = properties[index]
        if props is None:
            continue

        shader = get_str(props, "shader")
        if shader == MTOON_SHADER:
            _migrate_mtoon(material, props, gltf, remapper)
        elif shader in UNLIT_SHADERS:
            _migrate_unlit(material, props, shader, gltf)
        elif shader != GLTF_SHADER:
            logging.warning("Material %d uses unknown shader %r, kept unchanged", index, shader)
            if notes is not None:
                notes.append(f"material {index}: unknown shader {shader!r}")
