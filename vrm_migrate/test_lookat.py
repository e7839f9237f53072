import unittest

from vrm_migrate.fixtures import sample_vrm0
from vrm_migrate.lookat import migrate_look_at_and_first_person
from vrm_migrate.resolver import MeshToNodeResolver


class LookAtFirstPersonTests(unittest.TestCase):
    def test_sample_first_person_and_look_at(self) -> None:
        gltf, _ = sample_vrm0()
        vrm0 = gltf["extensions"]["VRM"]
        look_at, first_person = migrate_look_at_and_first_person(
            gltf, vrm0["firstPerson"], MeshToNodeResolver.from_gltf(gltf)
        )

        self.assertEqual(
            first_person,
            {"meshAnnotations": [{"node": 4, "type": "auto"}, {"node": 5, "type": "thirdPersonOnly"}]},
        )
        self.assertEqual(look_at["type"], "bone")
        self.assertEqual(look_at["offsetFromHeadBone"], [-0.01, 0.06, 0.02])
        self.assertEqual(look_at["rangeMapHorizontalInner"], {"inputMaxValue": 90.0, "outputScale": 10.0})
        self.assertEqual(look_at["rangeMapVerticalUp"], {"inputMaxValue": 45.0, "outputScale": 7.0})
        self.assertNotIn("curve", look_at["rangeMapVerticalDown"])

    def test_blend_shape_look_at_becomes_expression(self) -> None:
        look_at, first_person = migrate_look_at_and_first_person(
            {}, {"lookAtTypeName": "BlendShape"}, MeshToNodeResolver({})
        )
        self.assertEqual(look_at["type"], "expression")
        self.assertNotIn("offsetFromHeadBone", look_at)
        self.assertEqual(first_person, {"meshAnnotations": []})

    def test_unknown_values_pass_through_lower_camel(self) -> None:
        notes = []
        vrm0_first_person = {
            "lookAtTypeName": "Eyes",
            "meshAnnotations": [{"mesh": 0, "firstPersonFlag": "MirrorOnly"}],
        }
        with self.assertLogs(level="WARNING"):
            look_at, first_person = migrate_look_at_and_first_person(
                {}, vrm0_first_person, MeshToNodeResolver({0: 3}), notes
            )
        self.assertEqual(look_at["type"], "eyes")
        self.assertEqual(first_person["meshAnnotations"], [{"node": 3, "type": "mirrorOnly"}])
        self.assertEqual(len(notes), 2)


if __name__ == "__main__":
    unittest.main()
