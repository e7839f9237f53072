import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from vrm_migrate import cli
from vrm_migrate.fixtures import sample_vrm0_glb
from vrm_migrate.glb import parse_glb


def _unnormalize(gltf):
    gltf["nodes"][1]["scale"] = [1.0, 2.0, 1.0]
    gltf["nodes"][2]["rotation"] = [0.0, 0.0, 0.38268343, 0.92387953]


def _plain_gltf(gltf):
    del gltf["extensions"]["VRM"]
    gltf["extensionsUsed"] = ["KHR_materials_unlit"]


class BatchTests(unittest.TestCase):
    def _populate(self, root: Path) -> None:
        (root / "sub").mkdir()
        (root / "a.vrm").write_bytes(sample_vrm0_glb())
        (root / "sub" / "b.vrm").write_bytes(sample_vrm0_glb(_unnormalize))
        (root / "c.vrm").write_bytes(sample_vrm0_glb(_plain_gltf))
        (root / "broken.vrm").write_bytes(b"\x00" * 32)
        (root / "notes.txt").write_text("ignored")

    def test_batch_warns_on_not_normalized_and_continues(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            self._populate(root)
            report_path = root / "report.json"

            with self.assertLogs(level="WARNING") as logs:
                code = cli.main([str(root), "--report", str(report_path), "--check"])

            self.assertEqual(code, 1)
            self.assertTrue(any("[Not Normalized]" in line and "sub/b.vrm" in line for line in logs.output))
            self.assertTrue((root / "vrm1" / "a.vrm").is_file())
            self.assertFalse((root / "vrm1" / "sub" / "b.vrm").exists())
            migrated, _ = parse_glb((root / "vrm1" / "a.vrm").read_bytes())
            self.assertIn("VRMC_vrm", migrated["extensions"])

            report = json.loads(report_path.read_text(encoding="utf-8"))
            statuses = {entry["path"]: entry["status"] for entry in report["files"]}
            self.assertEqual(
                statuses,
                {"a.vrm": "ok", "broken.vrm": "failed", "c.vrm": "skipped", "sub/b.vrm": "not_normalized"},
            )
            self.assertEqual(report["files_total"], 4)
            self.assertEqual(report["files_not_normalized"], 1)

    def test_allow_unnormalized_migrates_everything(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "b.vrm").write_bytes(sample_vrm0_glb(_unnormalize))
            out_dir = root / "out"

            with self.assertLogs(level="INFO"):
                code = cli.main([str(root / "b.vrm"), "--out-dir", str(out_dir), "--allow-unnormalized", "--no-texture-remap"])

            self.assertEqual(code, 0)
            migrated, _ = parse_glb((out_dir / "b.vrm").read_bytes())
            self.assertEqual(len(migrated["images"]), 1)

    def test_unexpected_error_fails_only_that_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "a.vrm").write_bytes(sample_vrm0_glb())
            (root / "b.vrm").write_bytes(sample_vrm0_glb())
            report_path = root / "report.json"

            boom = RuntimeError("decoder exploded")
            with mock.patch("vrm_migrate.migration.VrmMigrator.migrate_with_report", side_effect=boom):
                with self.assertLogs(level="ERROR"):
                    code = cli.main([str(root), "--report", str(report_path)])

            self.assertEqual(code, 1)
            report = json.loads(report_path.read_text(encoding="utf-8"))
            self.assertEqual([entry["status"] for entry in report["files"]], ["failed", "failed"])
            self.assertIn("RuntimeError: decoder exploded", report["files"][0]["notes"])

    def test_missing_input_path(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            with self.assertLogs(level="ERROR"):
                code = cli.main([str(Path(temp_dir) / "nope")])
        self.assertEqual(code, 2)


class ArgumentTests(unittest.TestCase):
    def test_input_defaults_to_environment(self) -> None:
        with mock.patch.dict(os.environ, {cli.ENV_TEST_MODELS: "/models"}):
            args = cli.parse_args([])
        self.assertEqual(args.input_path, Path("/models"))
        self.assertTrue(args.texture_remap)
        self.assertFalse(args.allow_unnormalized)

    def test_input_is_required_without_environment(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(SystemExit), mock.patch("sys.stderr"):
                cli.parse_args([])

    def test_find_vrm_files_is_recursive_and_sorted(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "B").mkdir()
            for name in ("z.vrm", "B/a.vrm", "a.glb"):
                (root / name).write_bytes(b"")
            found = [path.relative_to(root).as_posix() for path in cli.find_vrm_files(root)]
        self.assertEqual(found, ["B/a.vrm", "z.vrm"])


if __name__ == "__main__":
    unittest.main()
