import unittest
from io import BytesIO

from PIL import Image

from vrm_migrate.fixtures import sample_vrm0
from vrm_migrate.glb import buffer_view_bytes
from vrm_migrate.material import (
    MTOON_EXTENSION,
    TEXTURE_TRANSFORM_EXTENSION,
    UNLIT_EXTENSION,
    convert_texture_transform,
    gamma_to_linear,
    migrate_materials,
)


def _migrate(remap=True, edit=None):
    gltf, blob = sample_vrm0()
    vrm0 = gltf["extensions"]["VRM"]
    if edit is not None:
        edit(vrm0["materialProperties"][0])
    migrate_materials(gltf, vrm0, blob, remap_texture_channels=remap)
    return gltf, blob


class MToonTests(unittest.TestCase):
    def test_sample_mtoon_material(self) -> None:
        gltf, _ = _migrate()
        material = gltf["materials"][0]
        mtoon = material["extensions"][MTOON_EXTENSION]

        self.assertNotIn(UNLIT_EXTENSION, material["extensions"])
        self.assertEqual(material["alphaMode"], "OPAQUE")
        self.assertFalse(material["doubleSided"])
        self.assertEqual(material["pbrMetallicRoughness"]["baseColorTexture"], {"index": 0})
        self.assertEqual(material["pbrMetallicRoughness"]["baseColorFactor"], [1.0, 1.0, 1.0, 1.0])

        self.assertEqual(mtoon["specVersion"], "1.0")
        self.assertAlmostEqual(mtoon["shadingToonyFactor"], 0.95)
        self.assertAlmostEqual(mtoon["shadingShiftFactor"], -0.05)
        self.assertAlmostEqual(mtoon["giEqualizationFactor"], 0.9)
        self.assertAlmostEqual(mtoon["shadeColorFactor"][0], 0.5 ** 2.2)
        self.assertEqual(mtoon["outlineWidthMode"], "worldCoordinates")
        self.assertAlmostEqual(mtoon["outlineWidthFactor"], 0.005)
        self.assertEqual(mtoon["outlineLightingMixFactor"], 1.0)
        self.assertEqual(mtoon["uvAnimationScrollYSpeedFactor"], -0.5)
        self.assertEqual(mtoon["matcapFactor"], [0.0, 0.0, 0.0])
        self.assertEqual(mtoon["renderQueueOffsetNumber"], 0)
        self.assertFalse(mtoon["transparentWithZWrite"])

    def test_outline_width_texture_red_channel_moves_to_green(self) -> None:
        gltf, blob = _migrate()
        mtoon = gltf["materials"][0]["extensions"][MTOON_EXTENSION]
        texture_index = mtoon["outlineWidthMultiplyTexture"]["index"]

        self.assertEqual(texture_index, 2)
        self.assertEqual(len(gltf["textures"]), 3)
        image = gltf["images"][gltf["textures"][texture_index]["source"]]
        self.assertEqual(image["mimeType"], "image/png")
        data = buffer_view_bytes(gltf, bytes(blob), image["bufferView"])
        with Image.open(BytesIO(data)) as img:
            self.assertEqual(img.convert("RGBA").getpixel((0, 0)), (200, 200, 20, 255))
        # The shared source texture is left untouched for the other slots.
        self.assertEqual(gltf["textures"][1], {"source": 0, "sampler": 0})

    def test_texture_remap_can_be_disabled(self) -> None:
        gltf, _ = _migrate(remap=False)
        mtoon = gltf["materials"][0]["extensions"][MTOON_EXTENSION]
        self.assertEqual(mtoon["outlineWidthMultiplyTexture"], {"index": 1})
        self.assertEqual(len(gltf["images"]), 1)

    def test_main_texture_transform(self) -> None:
        def edit(props):
            props["vectorProperties"]["_MainTex_ST"] = [2, 2, 0.1, 0.2]

        gltf, _ = _migrate(edit=edit)
        info = gltf["materials"][0]["pbrMetallicRoughness"]["baseColorTexture"]
        transform = info["extensions"][TEXTURE_TRANSFORM_EXTENSION]
        self.assertEqual(transform["scale"], [2.0, 2.0])
        self.assertAlmostEqual(transform["offset"][0], 0.1)
        self.assertAlmostEqual(transform["offset"][1], -1.2)

    def test_transparent_with_zwrite(self) -> None:
        def edit(props):
            props["floatProperties"].update({"_BlendMode": 3, "_ZWrite": 1, "_CullMode": 0})
            props["renderQueue"] = 2505

        gltf, _ = _migrate(edit=edit)
        material = gltf["materials"][0]
        mtoon = material["extensions"][MTOON_EXTENSION]
        self.assertEqual(material["alphaMode"], "BLEND")
        self.assertTrue(material["doubleSided"])
        self.assertTrue(mtoon["transparentWithZWrite"])
        self.assertEqual(mtoon["renderQueueOffsetNumber"], 4)

    def test_transparent_render_queue_offset_is_clamped(self) -> None:
        def edit(props):
            props["floatProperties"]["_BlendMode"] = 2
            props["renderQueue"] = 2900

        gltf, _ = _migrate(edit=edit)
        self.assertEqual(gltf["materials"][0]["extensions"][MTOON_EXTENSION]["renderQueueOffsetNumber"], -9)

    def test_cutout(self) -> None:
        def edit(props):
            props["floatProperties"].update({"_BlendMode": 1, "_Cutoff": 0.25})

        gltf, _ = _migrate(edit=edit)
        self.assertEqual(gltf["materials"][0]["alphaMode"], "MASK")
        self.assertEqual(gltf["materials"][0]["alphaCutoff"], 0.25)


class UnlitAndPassThroughTests(unittest.TestCase):
    def test_unlit_cutout(self) -> None:
        gltf, _ = _migrate()
        material = gltf["materials"][1]
        self.assertEqual(material["extensions"], {UNLIT_EXTENSION: {}})
        self.assertEqual(material["alphaMode"], "MASK")
        self.assertEqual(material["alphaCutoff"], 0.3)

    def test_gltf_shader_and_unknown_shader_are_unchanged(self) -> None:
        gltf = {"materials": [{"name": "a", "alphaMode": "BLEND"}, {"name": "b"}]}
        vrm0 = {
            "materialProperties": [
                {"name": "a", "shader": "VRM_USE_GLTFSHADER"},
                {"name": "b", "shader": "Standard"},
            ]
        }
        notes = []
        with self.assertLogs(level="WARNING"):
            migrate_materials(gltf, vrm0, bytearray(), notes=notes)
        self.assertEqual(gltf["materials"], [{"name": "a", "alphaMode": "BLEND"}, {"name": "b"}])
        self.assertEqual(len(notes), 1)

    def test_external_image_is_not_remapped(self) -> None:
        gltf = {
            "images": [{"uri": "outline.png"}],
            "textures": [{"source": 0}],
            "materials": [{"name": "m"}],
        }
        vrm0 = {
            "materialProperties": [
                {"name": "m", "shader": "VRM/MToon", "textureProperties": {"_OutlineWidthTexture": 0}},
            ]
        }
        with self.assertLogs(level="WARNING"):
            migrate_materials(gltf, vrm0, bytearray())
        mtoon = gltf["materials"][0]["extensions"][MTOON_EXTENSION]
        self.assertEqual(mtoon["outlineWidthMultiplyTexture"], {"index": 0})


class ConversionHelperTests(unittest.TestCase):
    def test_gamma_to_linear(self) -> None:
        self.assertEqual(gamma_to_linear(0.0), 0.0)
        self.assertEqual(gamma_to_linear(1.0), 1.0)
        self.assertAlmostEqual(gamma_to_linear(0.5), 0.217637640824031)

    def test_texture_transform_flips_v_origin(self) -> None:
        self.assertEqual(convert_texture_transform([1.0, 1.0, 0.0, 0.0]), ([1.0, 1.0], [0.0, 0.0]))
        self.assertEqual(convert_texture_transform([1.0, 0.5, 0.0, 0.25]), ([1.0, 0.5], [0.0, 0.25]))


if __name__ == "__main__":
    unittest.main()
