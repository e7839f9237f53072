"""
Batch-migrate VRM 0.x avatars to VRM 1.0.

Behavior:
- Input can be a `.vrm` file or a directory (scanned recursively).
- Input defaults to the `VRM_TEST_MODELS` environment variable.
- Outputs go to `--out-dir` (default: `vrm1` next to the input), keeping the
  relative layout of the input directory.
- Models that are not normalized are reported with a warning and skipped;
  `--allow-unnormalized` migrates them anyway.
- `--report` writes a JSON summary of every file processed.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .check import validate
from .errors import MalformedInputError, MigrationError, NotNormalizedError
from .glb import looks_like_glb, parse_glb, read_glb_file, write_glb_file
from .migration import MigrationOptions, VrmMigrator, is_vrm0

ENV_TEST_MODELS = "VRM_TEST_MODELS"


@dataclass
class FileReport:
    rel_path: Path
    status: str = "pending"
    output_path: Optional[Path] = None
    unnormalized_nodes: List[str] = field(default_factory=list)
    extensions_used: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


@dataclass
class RunReport:
    files_total: int = 0
    files_ok: int = 0
    files_failed: int = 0
    files_not_normalized: int = 0
    files_skipped: int = 0
    files: List[FileReport] = field(default_factory=list)


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Migrate VRM 0.x avatars (.vrm) to VRM 1.0.",
    )
    parser.add_argument(
        "input_path",
        type=Path,
        nargs="?",
        default=os.getenv(ENV_TEST_MODELS),
        help=f"VRM file or directory containing VRM files (default: env {ENV_TEST_MODELS}).",
    )
    parser.add_argument(
        "--out-dir",
        type=Path,
        default=None,
        help="Output directory (default: <input dir>/vrm1).",
    )
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Write a JSON report of the run to this path.",
    )
    parser.add_argument(
        "--allow-unnormalized",
        action="store_true",
        help="Migrate models whose node transforms are not normalized.",
    )
    parser.add_argument(
        "--texture-remap",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Re-encode MToon mask textures into the channels VRM 1.0 samples (default: true).",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Verify every migrated model against its VRM 0.x source.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    args = parser.parse_args(list(argv))
    if args.input_path is None:
        parser.error(f"input path is required (or set {ENV_TEST_MODELS})")
    args.input_path = Path(args.input_path)
    return args


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    logging.getLogger("PIL").setLevel(logging.WARNING)


def find_vrm_files(input_path: Path) -> List[Path]:
    if input_path.is_file():
        return [input_path]
    return sorted(input_path.rglob("*.vrm"), key=lambda p: p.as_posix().lower())


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def build_report_payload(run_report: RunReport) -> Dict[str, Any]:
    return {
        "files_total": run_report.files_total,
        "files_ok": run_report.files_ok,
        "files_failed": run_report.files_failed,
        "files_not_normalized": run_report.files_not_normalized,
        "files_skipped": run_report.files_skipped,
        "files": [
            {
                "path": report.rel_path.as_posix(),
                "status": report.status,
                "output": report.output_path.as_posix() if report.output_path is not None else None,
                "unnormalized_nodes": report.unnormalized_nodes,
                "extensions_used": report.extensions_used,
                "notes": report.notes,
            }
            for report in run_report.files
        ],
    }


def process_vrm(vrm_path: Path, rel_path: Path, out_dir: Path, migrator: VrmMigrator) -> FileReport:
    report = FileReport(rel_path=rel_path)
    try:
        data = read_glb_file(vrm_path)
        if not looks_like_glb(data):
            raise MalformedInputError("not a GLB container")
        gltf, _ = parse_glb(data)
        if not is_vrm0(gltf):
            report.status = "skipped"
            report.notes.append("not a VRM 0.x model")
            return report

        output, migration_report = migrator.migrate_with_report(data)
        report.output_path = out_dir / rel_path
        write_glb_file(report.output_path, output)
        report.status = "ok"
        report.unnormalized_nodes = migration_report.unnormalized_nodes
        report.extensions_used = migration_report.extensions_used
        report.notes.extend(migration_report.notes)
    except NotNormalizedError as exc:
        report.status = "not_normalized"
        report.unnormalized_nodes = exc.nodes
        report.notes.append(str(exc))
    except (MigrationError, OSError) as exc:
        report.status = "failed"
        report.notes.append(f"{type(exc).__name__}: {exc}")
    except Exception as exc:  # noqa: BLE001
        logging.exception("Unexpected error while migrating %s", rel_path.as_posix())
        report.status = "failed"
        report.notes.append(f"{type(exc).__name__}: {exc}")
    return report


def aggregate(run_report: RunReport, file_report: FileReport) -> None:
    run_report.files_total += 1
    run_report.files.append(file_report)
    if file_report.status == "ok":
        run_report.files_ok += 1
    elif file_report.status == "not_normalized":
        run_report.files_not_normalized += 1
    elif file_report.status == "skipped":
        run_report.files_skipped += 1
    else:
        run_report.files_failed += 1


def main(argv: Iterable[str]) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    input_path = args.input_path.resolve()
    if not input_path.exists():
        logging.error("Input path does not exist: %s", input_path)
        return 2

    base_dir = input_path.parent if input_path.is_file() else input_path
    out_dir = (args.out_dir or base_dir / "vrm1").resolve()
    vrm_files = [path for path in find_vrm_files(input_path) if out_dir not in path.parents]
    if not vrm_files:
        logging.warning("No .vrm files found under %s", input_path)
        return 0

    logging.info("Input: %s", input_path)
    logging.info("Out dir: %s", out_dir)
    logging.info("Found %d VRM file(s)", len(vrm_files))

    migrator = VrmMigrator(
        MigrationOptions(
            allow_unnormalized=args.allow_unnormalized,
            remap_texture_channels=args.texture_remap,
            validator=validate if args.check else None,
        )
    )

    run_report = RunReport()
    for vrm_path in vrm_files:
        rel_path = vrm_path.relative_to(base_dir)
        logging.info("Processing %s", rel_path.as_posix())
        report = process_vrm(vrm_path, rel_path, out_dir, migrator)
        aggregate(run_report, report)
        if report.status == "ok":
            logging.info("%s: ok (%s)", rel_path.as_posix(), ", ".join(report.extensions_used))
        elif report.status == "not_normalized":
            logging.warning("[Not Normalized] %s: %s", rel_path.as_posix(), ", ".join(report.unnormalized_nodes))
        elif report.status == "skipped":
            logging.info("%s: skipped (%s)", rel_path.as_posix(), "; ".join(report.notes))
        else:
            logging.error("%s: failed (%s)", rel_path.as_posix(), "; ".join(report.notes) or "unknown")

    if args.report is not None:
        write_json(args.report, build_report_payload(run_report))

    logging.info("---- Summary ----")
    logging.info(
        "Files: %d total | %d ok | %d failed | %d not normalized | %d skipped",
        run_report.files_total,
        run_report.files_ok,
        run_report.files_failed,
        run_report.files_not_normalized,
        run_report.files_skipped,
    )

    return 1 if run_report.files_failed else 0


def main_entry() -> None:
    sys.exit(main(sys.argv[1:]))
