#!/usr/bin/env python3
"""
Batch PHYS text dumps -> .tri / .vphys.

Scans a directory for PHYS block text renderings (one per map, named after
the map, e.g. de_dust2.vphys) and runs each through phys_to_tri. A broken
file is reported and skipped; the rest of the batch still runs.

Outputs under --output-dir:
- tri/<name>.tri
- vphys/<name>.vphys
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import phys_to_tri as p2t

DEFAULT_PATTERN = "*.vphys"


@dataclass
class BatchStats:
    files_found: int = 0
    files_ok: int = 0
    files_failed: int = 0
    tri_written: int = 0
    vphys_written: int = 0
    triangles: int = 0
    failed_shapes: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)


def is_under(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def find_inputs(
    input_dir: Path,
    pattern: str,
    recursive: bool,
    exclude: Sequence[Path] = (),
) -> List[Path]:
    if not input_dir.is_dir():
        raise ValueError(f"Input directory not found: {input_dir}")
    found = input_dir.rglob(pattern) if recursive else input_dir.glob(pattern)
    # Earlier runs' outputs under the input tree are not inputs.
    return sorted(p for p in found if p.is_file() and not any(is_under(p, d) for d in exclude))


def convert(args: argparse.Namespace) -> BatchStats:
    input_dir = Path(args.input_dir)
    out_dir = Path(args.output_dir)
    output_subdirs = [out_dir / p2t.TRI_SUBDIR, out_dir / p2t.VPHYS_SUBDIR]
    inputs = find_inputs(input_dir, args.pattern, bool(args.recursive), exclude=output_subdirs)

    stats = BatchStats(files_found=len(inputs))
    if not inputs:
        return stats

    tri_dir, vphys_dir = p2t.output_dirs(out_dir, args.format)

    claimed: Dict[str, Path] = {}
    for input_path in inputs:
        name = p2t.default_entity_name(input_path)
        if name in claimed:
            # Same output name as an earlier file; writing would overwrite it.
            stats.files_failed += 1
            stats.errors.append((str(input_path), f"output name {name!r} already used by {claimed[name]}"))
            continue
        claimed[name] = input_path

        try:
            phys_text = p2t.read_phys_text(input_path)
            file_stats, written = p2t.process_phys_text(phys_text, name, tri_dir, vphys_dir)
        except Exception as exc:
            stats.files_failed += 1
            stats.errors.append((str(input_path), str(exc)))
            continue

        p2t.report_warnings(file_stats, prefix=f"{name}: ")
        stats.files_ok += 1
        stats.triangles += file_stats.total_triangles
        stats.failed_shapes += file_stats.hulls_failed + file_stats.meshes_failed
        if "tri" in written:
            stats.tri_written += 1
        if "vphys" in written:
            stats.vphys_written += 1
    return stats


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Convert a directory of CS2 PHYS block text dumps to .tri/.vphys files."
    )
    p.add_argument("--input-dir", required=True, help="Directory holding PHYS text dumps")
    p.add_argument("--pattern", default=DEFAULT_PATTERN, help="Glob for input files (default: *.vphys)")
    p.add_argument("--recursive", action="store_true", help="Search --input-dir recursively")
    p.add_argument("--output-dir", default=p2t.DEFAULT_OUTPUT_DIR, help="Output directory")
    p.add_argument(
        "--format",
        default=p2t.DEFAULT_FORMAT,
        choices=list(p2t.OUTPUT_FORMATS),
        help="both: .tri and .vphys, tri: triangles only, vphys: raw text only",
    )
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        stats = convert(args)
    except Exception as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    for path, message in stats.errors:
        print(f"[error] {path}: {message}", file=sys.stderr)

    print(
        "[ok] phys_batch "
        f"files={stats.files_found} "
        f"converted={stats.files_ok} "
        f"failed={stats.files_failed} "
        f"tri={stats.tri_written} "
        f"vphys={stats.vphys_written} "
        f"failed_shapes={stats.failed_shapes} "
        f"triangles={stats.triangles}"
    )
    return 1 if stats.files_failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
