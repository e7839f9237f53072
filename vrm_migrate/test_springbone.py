import unittest

from vrm_migrate.fixtures import sample_vrm0
from vrm_migrate.springbone import joint_chains, migrate_spring_bone


class JointChainTests(unittest.TestCase):
    def test_chain_follows_first_child_and_branches(self) -> None:
        nodes = [{"children": [1, 3]}, {"children": [2]}, {}, {"children": [4]}, {}]
        self.assertEqual(joint_chains(nodes, 0), [[0, 1, 2], [3, 4]])

    def test_cycles_terminate(self) -> None:
        nodes = [{"children": [1]}, {"children": [0, 7]}]
        self.assertEqual(joint_chains(nodes, 0), [[0, 1]])


class SpringBoneTests(unittest.TestCase):
    def test_sample_spring_bone(self) -> None:
        gltf, _ = sample_vrm0()
        spring_bone = migrate_spring_bone(gltf, gltf["extensions"]["VRM"]["secondaryAnimation"])

        self.assertEqual(spring_bone["specVersion"], "1.0")
        self.assertEqual(
            spring_bone["colliders"],
            [
                {
                    "node": 2,
                    "shape": {"sphere": {"offset": [0.0359970331, -0.0188314915, 0.00566166639], "radius": 0.05}},
                }
            ],
        )
        self.assertEqual(spring_bone["colliderGroups"], [{"name": "colliderGroup0", "colliders": [0]}])

        springs = spring_bone["springs"]
        self.assertEqual([[joint["node"] for joint in spring["joints"]] for spring in springs], [[3, 6], [7, 8]])
        first = springs[0]
        self.assertEqual(first["name"], "hair")
        self.assertEqual(first["colliderGroups"], [0])
        self.assertNotIn("center", first)
        joint = first["joints"][0]
        self.assertEqual(joint["stiffness"], 0.8)
        self.assertEqual(joint["dragForce"], 0.3)
        self.assertEqual(joint["gravityPower"], 0.1)
        self.assertEqual(joint["hitRadius"], 0.05)
        self.assertEqual(joint["gravityDir"], [-0.2, -1.0, 0.0])

    def test_collider_group_indices_are_kept(self) -> None:
        gltf = {"nodes": [{}, {}]}
        secondary = {
            "colliderGroups": [
                {"node": 9, "colliders": [{"offset": {"x": 1, "y": 0, "z": 0}, "radius": 0.1}]},
                {"node": 1, "colliders": [{"offset": {"x": 1, "y": 2, "z": 3}, "radius": 0.2}]},
            ],
            "boneGroups": [{"bones": [0, 5], "colliderGroups": [1, 4], "center": 1}],
        }
        notes = []
        spring_bone = migrate_spring_bone(gltf, secondary, notes)

        self.assertEqual(spring_bone["colliderGroups"][0]["colliders"], [])
        self.assertEqual(spring_bone["colliderGroups"][1]["colliders"], [0])
        self.assertEqual(spring_bone["colliders"][0]["shape"]["sphere"]["offset"], [-1.0, 2.0, 3.0])
        self.assertEqual(spring_bone["springs"], [
            {
                "joints": [
                    {
                        "node": 0,
                        "hitRadius": 0.02,
                        "stiffness": 1.0,
                        "gravityPower": 0.0,
                        "gravityDir": [-0.0, -1.0, 0.0],
                        "dragForce": 0.4,
                    }
                ],
                "colliderGroups": [1],
                "center": 1,
            }
        ])
        self.assertEqual(len(notes), 1)

    def test_empty_secondary_animation(self) -> None:
        self.assertEqual(migrate_spring_bone({"nodes": []}, {}), {"specVersion": "1.0"})


if __name__ == "__main__":
    unittest.main()
