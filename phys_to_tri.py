#!/usr/bin/env python3
"""
CS2 PHYS block text -> .tri collision triangle soup (and/or raw .vphys dump).

Input is the textual rendering of one resource PHYS block (KV3 text with
#[..] byte blobs), as produced by an external resource decoder.

Geometry sources, both under m_parts[0].m_rnShape:
- m_hulls[i]:  convex hulls, half-edge topology, triangulated as fans
- m_meshes[i]: explicit triangle meshes

Only shapes whose m_nCollisionAttributeIndex points at a solid collision
group ("default" or "0") are exported.

.tri layout: 9 little endian float32 per triangle (p1.xyz p2.xyz p3.xyz),
no header, triangle count = file size / 36.
"""

from __future__ import annotations

import argparse
import struct
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

try:
    from srctools.math import Vec
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "Missing dependency: srctools. Install with: python3 -m pip install srctools"
    ) from exc

from kv3_text import KV3Document
from phys_blob import Edge, parse_bytes, parse_edges, parse_float_vectors, parse_int32_array


DEFAULT_OUTPUT_DIR = "out"
DEFAULT_FORMAT = "both"
OUTPUT_FORMATS = ("both", "tri", "vphys")
TRI_SUBDIR = "tri"
VPHYS_SUBDIR = "vphys"

SHAPE_ROOT = "m_parts[0].m_rnShape"
ATTRIBUTE_GROUP_PATH = "m_collisionAttributes[{index}].m_CollisionGroupString"
SOLID_GROUP_NAMES = {"default"}
SOLID_GROUP_LITERALS = {"0"}
FALLBACK_SOLID_INDEX = 0

# Upper bound on edges visited per hull face; guards against cyclic or
# corrupt half-edge tables that never return to the start edge.
MAX_FACE_WALK_STEPS = 1000

TRI_RECORD = struct.Struct("<9f")


@dataclass
class Triangle:
    p1: Vec
    p2: Vec
    p3: Vec

    def floats(self) -> Tuple[float, ...]:
        return (
            self.p1.x, self.p1.y, self.p1.z,
            self.p2.x, self.p2.y, self.p2.z,
            self.p3.x, self.p3.y, self.p3.z,
        )


@dataclass(frozen=True)
class HullShape:
    vertices: List[Vec]
    faces: bytes
    edges: List[Edge]


@dataclass(frozen=True)
class MeshShape:
    vertices: List[Vec]
    indices: List[int]


@dataclass
class FaceWalk:
    start: int
    steps: List[Tuple[int, int]] = field(default_factory=list)
    closed: bool = False
    truncated: bool = False
    broken: bool = False


@dataclass
class ExtractionStats:
    solid_attributes: int = 0
    hulls_seen: int = 0
    hulls_processed: int = 0
    hulls_filtered: int = 0
    hulls_failed: int = 0
    hull_triangles: int = 0
    truncated_faces: int = 0
    meshes_seen: int = 0
    meshes_processed: int = 0
    meshes_filtered: int = 0
    meshes_failed: int = 0
    mesh_triangles: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def total_triangles(self) -> int:
        return self.hull_triangles + self.mesh_triangles


class MeshIndexError(IndexError):
    pass


def clean_group_name(raw: str) -> str:
    return raw.strip().strip('"').strip()


def is_solid_group(name: str) -> bool:
    cleaned = clean_group_name(name)
    return cleaned.lower() in SOLID_GROUP_NAMES or cleaned in SOLID_GROUP_LITERALS


def solid_attribute_indices(doc: KV3Document) -> Set[int]:
    indices: Set[int] = set()
    index = 0
    while True:
        group = doc.resolve(ATTRIBUTE_GROUP_PATH.format(index=index))
        if not group:
            break
        if is_solid_group(group):
            indices.add(index)
        index += 1

    if not indices:
        # No recognised group: assume the engine default slot.
        indices.add(FALLBACK_SOLID_INDEX)
    return indices


def parse_attribute_index(raw: str) -> Optional[int]:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def walk_face(edges: Sequence[Edge], start: int, max_steps: int = MAX_FACE_WALK_STEPS) -> FaceWalk:
    """Follow the `next` ring of a hull face from its start edge.

    Each step is an (edge, next_edge) pair. The walk ends when the ring gets
    back to `start` (closed), when `max_steps` is reached (truncated), or
    when an edge index falls outside the table (broken).
    """
    walk = FaceWalk(start=start)
    if not 0 <= start < len(edges):
        walk.broken = True
        return walk

    edge = edges[start].next
    while edge != start:
        if len(walk.steps) >= max_steps:
            walk.truncated = True
            return walk
        if edge >= len(edges):
            walk.broken = True
            return walk
        nxt = edges[edge].next
        if nxt >= len(edges):
            walk.broken = True
            return walk
        walk.steps.append((edge, nxt))
        edge = nxt

    walk.closed = True
    return walk


def hull_triangles(
    hull: HullShape,
    max_steps: int = MAX_FACE_WALK_STEPS,
    stats: Optional[ExtractionStats] = None,
) -> List[Triangle]:
    vertices = hull.vertices
    edges = hull.edges
    out: List[Triangle] = []

    for start in hull.faces:
        if start >= len(edges):
            continue
        walk = walk_face(edges, start, max_steps)
        if walk.truncated and stats is not None:
            stats.truncated_faces += 1

        anchor = edges[start].origin
        if anchor >= len(vertices):
            continue
        for edge, nxt in walk.steps:
            a = edges[edge].origin
            b = edges[nxt].origin
            if a >= len(vertices) or b >= len(vertices):
                continue
            out.append(Triangle(vertices[anchor].copy(), vertices[a].copy(), vertices[b].copy()))
    return out


def mesh_triangles(mesh: MeshShape) -> List[Triangle]:
    vertices = mesh.vertices
    indices = mesh.indices
    count = len(vertices)
    out: List[Triangle] = []

    for k in range(0, len(indices) - len(indices) % 3, 3):
        tri = indices[k : k + 3]
        for idx in tri:
            if not 0 <= idx < count:
                raise MeshIndexError(
                    f"triangle {k // 3} references vertex {idx} (mesh has {count} vertices)"
                )
        out.append(Triangle(vertices[tri[0]].copy(), vertices[tri[1]].copy(), vertices[tri[2]].copy()))
    return out


def load_hull(doc: KV3Document, index: int) -> Optional[HullShape]:
    base = f"{SHAPE_ROOT}.m_hulls[{index}].m_Hull"
    vertex_blob = doc.resolve(f"{base}.m_VertexPositions") or doc.resolve(f"{base}.m_Vertices")
    if not vertex_blob:
        return None

    vertices = parse_float_vectors(vertex_blob)
    faces = parse_bytes(doc.resolve(f"{base}.m_Faces"))
    edges = parse_edges(doc.resolve(f"{base}.m_Edges"))
    if not vertices or not faces or not edges:
        return None
    return HullShape(vertices=vertices, faces=faces, edges=edges)


def load_mesh(doc: KV3Document, index: int) -> Optional[MeshShape]:
    base = f"{SHAPE_ROOT}.m_meshes[{index}].m_Mesh"
    indices = parse_int32_array(doc.resolve(f"{base}.m_Triangles"))
    vertices = parse_float_vectors(doc.resolve(f"{base}.m_Vertices"))
    if not vertices or not indices:
        return None
    return MeshShape(vertices=vertices, indices=indices)


def collect_hull_triangles(doc: KV3Document, solid: Set[int], stats: ExtractionStats) -> List[Triangle]:
    out: List[Triangle] = []
    index = 0
    while True:
        raw_attr = doc.resolve(f"{SHAPE_ROOT}.m_hulls[{index}].m_nCollisionAttributeIndex")
        if not raw_attr:
            break
        stats.hulls_seen += 1

        attr = parse_attribute_index(raw_attr)
        if attr is None or attr not in solid:
            stats.hulls_filtered += 1
            index += 1
            continue

        try:
            hull = load_hull(doc, index)
            if hull is not None:
                tris = hull_triangles(hull, stats=stats)
                out.extend(tris)
                stats.hull_triangles += len(tris)
                stats.hulls_processed += 1
        except Exception as exc:
            stats.hulls_failed += 1
            stats.warnings.append(f"hull {index}: {exc}")
        index += 1
    return out


def collect_mesh_triangles(doc: KV3Document, solid: Set[int], stats: ExtractionStats) -> List[Triangle]:
    out: List[Triangle] = []
    index = 0
    while True:
        raw_attr = doc.resolve(f"{SHAPE_ROOT}.m_meshes[{index}].m_nCollisionAttributeIndex")
        if not raw_attr:
            break
        stats.meshes_seen += 1

        attr = parse_attribute_index(raw_attr)
        if attr is None or attr not in solid:
            stats.meshes_filtered += 1
            index += 1
            continue

        try:
            mesh = load_mesh(doc, index)
            if mesh is not None:
                tris = mesh_triangles(mesh)
                out.extend(tris)
                stats.mesh_triangles += len(tris)
                stats.meshes_processed += 1
        except Exception as exc:
            stats.meshes_failed += 1
            stats.warnings.append(f"mesh {index}: {exc}")
        index += 1
    return out


def extract_triangles(doc: KV3Document, stats: Optional[ExtractionStats] = None) -> List[Triangle]:
    if stats is None:
        stats = ExtractionStats()
    solid = solid_attribute_indices(doc)
    stats.solid_attributes = len(solid)

    triangles = collect_hull_triangles(doc, solid, stats)
    triangles.extend(collect_mesh_triangles(doc, solid, stats))
    return triangles


def pack_triangles(triangles: Iterable[Triangle]) -> bytes:
    return b"".join(TRI_RECORD.pack(*tri.floats()) for tri in triangles)


def unpack_triangles(data: bytes) -> List[Triangle]:
    usable = len(data) - len(data) % TRI_RECORD.size
    out: List[Triangle] = []
    for vals in TRI_RECORD.iter_unpack(data[:usable]):
        out.append(Triangle(Vec(*vals[0:3]), Vec(*vals[3:6]), Vec(*vals[6:9])))
    return out


def write_tri_file(triangles: Sequence[Triangle], out_path: Path) -> int:
    out_path.write_bytes(pack_triangles(triangles))
    return len(triangles)


def read_tri_file(path: Path) -> List[Triangle]:
    return unpack_triangles(path.read_bytes())


def read_phys_text(path: Path) -> str:
    with path.open("r", encoding="utf-8", newline="") as f:
        return f.read()


def write_vphys_file(phys_text: str, out_path: Path) -> None:
    # Keep the text byte-for-byte: no newline translation, no BOM.
    with out_path.open("w", encoding="utf-8", newline="") as f:
        f.write(phys_text)


def entity_name_from_resource_path(resource_path: str) -> str:
    """Map name for a world_physics entry, e.g. maps/de_dust2/world_physics.vmdl_c -> de_dust2."""
    normalized = resource_path.replace("\\", "/")
    directory, _, file_name = normalized.rpartition("/")
    parts = [p for p in directory.split("/") if p]
    if parts:
        for i, part in enumerate(parts):
            if part.lower() == "maps" and i + 1 < len(parts):
                return parts[i + 1]
        return parts[-1]
    return file_name.replace("world_physics", "").replace(".vmdl_c", "").strip("_.")


def default_entity_name(input_path: Path) -> str:
    name = input_path.name
    for suffix in (".txt", ".vphys"):
        if name.lower().endswith(suffix):
            name = name[: -len(suffix)]
    return name or input_path.stem


def output_dirs(out_dir: Path, output_format: str) -> Tuple[Optional[Path], Optional[Path]]:
    if output_format not in OUTPUT_FORMATS:
        raise ValueError(f"Unsupported output format: {output_format}")
    tri_dir = out_dir / TRI_SUBDIR if output_format in ("both", "tri") else None
    vphys_dir = out_dir / VPHYS_SUBDIR if output_format in ("both", "vphys") else None
    for d in (tri_dir, vphys_dir):
        if d is not None:
            d.mkdir(parents=True, exist_ok=True)
    return tri_dir, vphys_dir


def process_phys_text(
    phys_text: str,
    name: str,
    tri_dir: Optional[Path],
    vphys_dir: Optional[Path],
) -> Tuple[ExtractionStats, Dict[str, str]]:
    stats = ExtractionStats()
    written: Dict[str, str] = {}

    if vphys_dir is not None:
        vphys_path = vphys_dir / f"{name}.vphys"
        write_vphys_file(phys_text, vphys_path)
        written["vphys"] = str(vphys_path)

    if tri_dir is None:
        return stats, written

    if not phys_text.strip():
        stats.warnings.append(f"PHYS data is empty for {name}")
        return stats, written

    triangles = extract_triangles(KV3Document.parse(phys_text), stats)
    if not triangles:
        stats.warnings.append(f"No collision triangles found for {name}")
        return stats, written

    tri_path = tri_dir / f"{name}.tri"
    write_tri_file(triangles, tri_path)
    written["tri"] = str(tri_path)
    return stats, written


def convert(args: argparse.Namespace) -> Tuple[ExtractionStats, Dict[str, str]]:
    input_path = Path(args.input)
    phys_text = read_phys_text(input_path)

    if args.name.strip():
        name = args.name.strip()
    elif args.resource_path.strip():
        name = entity_name_from_resource_path(args.resource_path.strip())
    else:
        name = default_entity_name(input_path)
    if not name:
        raise ValueError(f"Could not derive an output name for {input_path}")

    tri_dir, vphys_dir = output_dirs(Path(args.output_dir), args.format)
    return process_phys_text(phys_text, name, tri_dir, vphys_dir)


def report_warnings(stats: ExtractionStats, prefix: str = "") -> None:
    for warning in stats.warnings:
        print(f"[warn] {prefix}{warning}", file=sys.stderr)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Extract solid collision triangles from a CS2 PHYS block text dump."
    )
    p.add_argument("--input", required=True, help="PHYS block text rendering (UTF-8)")
    p.add_argument("--output-dir", default=DEFAULT_OUTPUT_DIR, help="Output directory")
    p.add_argument("--name", default="", help="Output base name (default: derived from --resource-path or input)")
    p.add_argument(
        "--resource-path",
        default="",
        help="Package entry path of the source resource, e.g. maps/de_dust2/world_physics.vmdl_c",
    )
    p.add_argument(
        "--format",
        default=DEFAULT_FORMAT,
        choices=list(OUTPUT_FORMATS),
        help="both: .tri and .vphys, tri: triangles only, vphys: raw text only",
    )
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        stats, written = convert(args)
    except Exception as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    report_warnings(stats)
    print(
        "[ok] phys "
        f"tri={written.get('tri', '')} "
        f"vphys={written.get('vphys', '')} "
        f"solid_attributes={stats.solid_attributes} "
        f"hulls={stats.hulls_processed}/{stats.hulls_seen} "
        f"meshes={stats.meshes_processed}/{stats.meshes_seen} "
        f"failed_shapes={stats.hulls_failed + stats.meshes_failed} "
        f"truncated_faces={stats.truncated_faces} "
        f"triangles={stats.total_triangles}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
