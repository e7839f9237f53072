"""
Small synthetic VRM 0.x avatar used by the test modules.

The model is tiny but exercises every migrator: a skinned body mesh whose two
primitives share one vertex buffer, a face mesh with a morph target, an
embedded PNG texture, duplicate blink presets, first-person annotations, a
hair spring with a branch and a sphere collider, plus MToon and unlit
materials.
"""

from __future__ import annotations

import copy
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image

from .accessors import FLOAT, UNSIGNED_SHORT, AccessorData, write_accessor
from .glb import ARRAY_BUFFER, ELEMENT_ARRAY_BUFFER, append_buffer_view, build_glb

COLLIDER_OFFSET = {"x": -0.0359970331, "y": -0.0188314915, "z": 0.00566166639}

BODY_POSITIONS = np.array(
    [
        [0.0, 0.0, 0.0],
        [0.1, 0.0, 0.0],
        [0.0, 0.1, 0.2],
        [0.3, 1.0, -0.1],
        [0.4, 1.0, -0.1],
        [0.3, 1.2, 0.4],
    ],
    dtype=np.float32,
)
FACE_POSITIONS = np.array([[0.0, 1.5, 0.1], [0.05, 1.5, 0.1], [0.0, 1.55, 0.12]], dtype=np.float32)
FACE_MORPH = np.array([[0.0, 0.0, 0.01], [0.0, -0.01, 0.0], [0.02, 0.0, 0.0]], dtype=np.float32)


def png_bytes(color: Tuple[int, int, int] = (200, 10, 20), size: Tuple[int, int] = (2, 2)) -> bytes:
    out = BytesIO()
    Image.new("RGB", size, color).save(out, format="PNG")
    return out.getvalue()


def _translation_matrix(x: float, y: float, z: float) -> List[float]:
    # Column-major, as stored in glTF.
    return [1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, x, y, z, 1.0]


class _Builder:
    def __init__(self) -> None:
        self.accessors: List[Dict[str, Any]] = []
        self.buffer_views: List[Dict[str, Any]] = []
        self.blob = bytearray()

    def add(self, values: np.ndarray, component_type: int, accessor_type: str, target: Optional[int] = None,
            with_bounds: bool = False) -> int:
        data = AccessorData(values=values, component_type=component_type, accessor_type=accessor_type)
        return write_accessor(self.accessors, self.buffer_views, self.blob, data, target=target, with_bounds=with_bounds)


def _vrm0_extension() -> Dict[str, Any]:
    degree_map = {"curve": [0, 0, 0, 1, 1, 1, 1, 0], "xRange": 90.0, "yRange": 10.0}
    return {
        "exporterVersion": "UniVRM-0.99.0",
        "specVersion": "0.0",
        "meta": {
            "title": "Sample",
            "version": "1.0",
            "author": "vrm-migrate",
            "contactInformation": "https://example.com/contact",
            "reference": "https://example.com/reference",
            "texture": 0,
            "allowedUserName": "Everyone",
            "violentUssageName": "Disallow",
            "sexualUssageName": "Allow",
            "commercialUssageName": "Allow",
            "licenseName": "CC_BY",
            "otherPermissionUrl": "",
            "otherLicenseUrl": "",
        },
        "humanoid": {
            "humanBones": [
                {"bone": "hips", "node": 1, "useDefaultValues": True},
                {"bone": "head", "node": 2, "useDefaultValues": True},
                {"bone": "leftThumbProximal", "node": 6, "useDefaultValues": True},
                {"bone": "leftThumbIntermediate", "node": 8, "useDefaultValues": True},
                {"bone": "hips", "node": 3, "useDefaultValues": True},
                {"bone": "neck", "node": -1, "useDefaultValues": True},
            ],
            "armStretch": 0.05,
            "legStretch": 0.05,
        },
        "blendShapeMaster": {
            "blendShapeGroups": [
                {
                    "name": "Blink",
                    "presetName": "blink",
                    "binds": [{"mesh": 1, "index": 0, "weight": 100}],
                    "materialValues": [
                        {"materialName": "body_mtoon", "propertyName": "_Color", "targetValue": [1, 0, 0, 1]},
                    ],
                    "isBinary": False,
                },
                {
                    "name": "Blink_Duplicate",
                    "presetName": "blink",
                    "binds": [{"mesh": 1, "index": 0, "weight": 40}],
                    "materialValues": [],
                    "isBinary": True,
                },
                {
                    "name": "Joy",
                    "presetName": "joy",
                    "binds": [{"mesh": 1, "index": 0, "weight": 60}],
                    "materialValues": [],
                    "isBinary": False,
                },
                {
                    "name": "Surprised",
                    "presetName": "unknown",
                    "binds": [
                        {"mesh": 1, "index": 0, "weight": 250},
                        {"mesh": 9, "index": 0, "weight": 10},
                    ],
                    "materialValues": [
                        {
                            "materialName": "body_mtoon",
                            "propertyName": "_MainTex_ST",
                            "targetValue": [2, 1, 0, 0.5],
                        },
                    ],
                    "isBinary": False,
                },
            ]
        },
        "firstPerson": {
            "firstPersonBone": 2,
            "firstPersonBoneOffset": {"x": 0.01, "y": 0.06, "z": 0.02},
            "meshAnnotations": [
                {"mesh": 0, "firstPersonFlag": "Auto"},
                {"mesh": 1, "firstPersonFlag": "ThirdPersonOnly"},
                {"mesh": 7, "firstPersonFlag": "Both"},
            ],
            "lookAtTypeName": "Bone",
            "lookAtHorizontalInner": dict(degree_map),
            "lookAtHorizontalOuter": dict(degree_map),
            "lookAtVerticalDown": dict(degree_map),
            "lookAtVerticalUp": {"curve": [0, 0, 0, 1, 1, 1, 1, 0], "xRange": 45.0, "yRange": 7.0},
        },
        "secondaryAnimation": {
            "boneGroups": [
                {
                    "comment": "hair",
                    "stiffiness": 0.8,
                    "gravityPower": 0.1,
                    "gravityDir": {"x": 0.2, "y": -1.0, "z": 0.0},
                    "dragForce": 0.3,
                    "center": -1,
                    "hitRadius": 0.05,
                    "bones": [3],
                    "colliderGroups": [0],
                }
            ],
            "colliderGroups": [
                {"node": 2, "colliders": [{"offset": dict(COLLIDER_OFFSET), "radius": 0.05}]},
            ],
        },
        "materialProperties": [
            {
                "name": "body_mtoon",
                "shader": "VRM/MToon",
                "renderQueue": 2000,
                "floatProperties": {
                    "_BlendMode": 0,
                    "_CullMode": 2,
                    "_ShadeShift": 0.0,
                    "_ShadeToony": 0.9,
                    "_IndirectLightIntensity": 0.1,
                    "_OutlineWidthMode": 1,
                    "_OutlineWidth": 0.5,
                    "_OutlineColorMode": 1,
                    "_OutlineLightingMix": 1.0,
                    "_UvAnimScrollY": 0.5,
                    "_BumpScale": 1.0,
                },
                "vectorProperties": {
                    "_Color": [1, 1, 1, 1],
                    "_ShadeColor": [0.5, 0.5, 0.5, 1],
                    "_EmissionColor": [0, 0, 0, 1],
                    "_OutlineColor": [0, 0, 0, 1],
                    "_MainTex_ST": [1, 1, 0, 0],
                },
                "textureProperties": {"_MainTex": 0, "_OutlineWidthTexture": 1},
                "keywordMap": {},
                "tagMap": {"RenderType": "Opaque"},
            },
            {
                "name": "body_unlit",
                "shader": "VRM/UnlitCutout",
                "renderQueue": 2450,
                "floatProperties": {"_Cutoff": 0.3},
                "vectorProperties": {"_Color": [1, 1, 1, 1]},
                "textureProperties": {"_MainTex": 0},
                "keywordMap": {},
                "tagMap": {},
            },
        ],
    }


def sample_vrm0() -> Tuple[Dict[str, Any], bytearray]:
    """Return the JSON payload and BIN chunk of the sample avatar."""
    builder = _Builder()

    body_position = builder.add(BODY_POSITIONS, FLOAT, "VEC3", ARRAY_BUFFER, with_bounds=True)
    body_normal = builder.add(np.tile(np.array([[0.0, 0.0, 1.0]], dtype=np.float32), (6, 1)), FLOAT, "VEC3", ARRAY_BUFFER)
    body_tangent = builder.add(np.tile(np.array([[1.0, 0.0, 0.0, 1.0]], dtype=np.float32), (6, 1)), FLOAT, "VEC4", ARRAY_BUFFER)
    joints = np.zeros((6, 4), dtype=np.uint16)
    joints[3:, 0] = 1
    body_joints = builder.add(joints, UNSIGNED_SHORT, "VEC4", ARRAY_BUFFER)
    weights = np.zeros((6, 4), dtype=np.float32)
    weights[:, 0] = 1.0
    body_weights = builder.add(weights, FLOAT, "VEC4", ARRAY_BUFFER)
    upper_indices = builder.add(np.array([[0], [1], [2]], dtype=np.uint16), UNSIGNED_SHORT, "SCALAR", ELEMENT_ARRAY_BUFFER)
    lower_indices = builder.add(np.array([[3], [4], [5]], dtype=np.uint16), UNSIGNED_SHORT, "SCALAR", ELEMENT_ARRAY_BUFFER)

    face_position = builder.add(FACE_POSITIONS, FLOAT, "VEC3", ARRAY_BUFFER, with_bounds=True)
    face_morph = builder.add(FACE_MORPH, FLOAT, "VEC3", ARRAY_BUFFER, with_bounds=True)
    face_indices = builder.add(np.array([[0], [1], [2]], dtype=np.uint16), UNSIGNED_SHORT, "SCALAR", ELEMENT_ARRAY_BUFFER)

    ibm = np.array([_translation_matrix(0.0, -1.0, 0.0), _translation_matrix(0.0, -1.5, 0.0)], dtype=np.float32)
    inverse_bind_matrices = builder.add(ibm, FLOAT, "MAT4")

    image_view = append_buffer_view(builder.buffer_views, builder.blob, png_bytes())

    body_attributes = {
        "POSITION": body_position,
        "NORMAL": body_normal,
        "TANGENT": body_tangent,
        "JOINTS_0": body_joints,
        "WEIGHTS_0": body_weights,
    }
    gltf: Dict[str, Any] = {
        "asset": {"version": "2.0", "generator": "vrm-migrate fixtures"},
        "scene": 0,
        "scenes": [{"nodes": [0]}],
        "nodes": [
            {"name": "root", "children": [1, 4, 5]},
            {"name": "hips", "translation": [0.0, 1.0, 0.0], "children": [2]},
            {"name": "head", "translation": [0.0, 0.5, 0.0], "children": [3]},
            {"name": "hair", "translation": [0.1, 0.0, -0.1], "rotation": [0.0, 0.38268343, 0.0, 0.92387953], "children": [6, 7]},
            {"name": "body", "mesh": 0, "skin": 0},
            {"name": "face", "mesh": 1},
            {"name": "hair_a", "translation": [0.0, -0.1, 0.0]},
            {"name": "hair_b", "translation": [0.0, -0.1, 0.05], "children": [8]},
            {"name": "hair_b_end", "translation": [0.0, -0.1, 0.0]},
        ],
        "meshes": [
            {
                "name": "body",
                "primitives": [
                    {"attributes": dict(body_attributes), "indices": upper_indices, "material": 0, "mode": 4},
                    {"attributes": dict(body_attributes), "indices": lower_indices, "material": 1, "mode": 4},
                ],
            },
            {
                "name": "face",
                "primitives": [
                    {
                        "attributes": {"POSITION": face_position},
                        "indices": face_indices,
                        "material": 0,
                        "targets": [{"POSITION": face_morph}],
                    }
                ],
                "extras": {"targetNames": ["blink"]},
            },
        ],
        "skins": [{"joints": [1, 2], "inverseBindMatrices": inverse_bind_matrices, "skeleton": 1}],
        "images": [{"name": "body", "bufferView": image_view, "mimeType": "image/png"}],
        "samplers": [{"magFilter": 9729, "minFilter": 9729}],
        "textures": [{"source": 0, "sampler": 0}, {"source": 0, "sampler": 0}],
        "materials": [
            {
                "name": "body_mtoon",
                "pbrMetallicRoughness": {"baseColorTexture": {"index": 0}},
                "extensions": {"KHR_materials_unlit": {}},
            },
            {"name": "body_unlit", "pbrMetallicRoughness": {"baseColorTexture": {"index": 0}}},
        ],
        "accessors": builder.accessors,
        "bufferViews": builder.buffer_views,
        "buffers": [{"byteLength": len(builder.blob)}],
        "extensionsUsed": ["VRM", "KHR_materials_unlit"],
        "extensions": {"VRM": _vrm0_extension()},
    }
    return gltf, builder.blob


def sample_vrm0_glb(mutate: Optional[Callable[[Dict[str, Any]], None]] = None) -> bytes:
    """Build the sample avatar as GLB bytes, optionally editing its JSON first."""
    gltf, blob = sample_vrm0()
    if mutate is not None:
        gltf = copy.deepcopy(gltf)
        mutate(gltf)
    return build_glb(gltf, bytes(blob))
