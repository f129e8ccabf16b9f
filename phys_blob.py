"""
Decoders for the #[ .. ] byte blobs found in PHYS text renderings.

Blobs are whitespace separated two digit hex bytes. Typed views:
- float32 triples (little endian) -> srctools Vec
- int32 (little endian)
- half-edge records: next, twin, origin, face (one byte each)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Union

try:
    from srctools.math import Vec
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "Missing dependency: srctools. Install with: python3 -m pip install srctools"
    ) from exc

HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

VEC3_STRUCT = struct.Struct("<3f")
INT32_STRUCT = struct.Struct("<i")
EDGE_STRUCT = struct.Struct("<4B")

BlobInput = Union[str, bytes, bytearray]


@dataclass(frozen=True)
class Edge:
    next: int
    twin: int
    origin: int
    face: int


def is_hex_byte(token: str) -> bool:
    return len(token) == 2 and all(c in HEX_DIGITS for c in token)


def parse_bytes(blob: str) -> bytes:
    data = blob.strip()
    if data.startswith("#[") and data.endswith("]"):
        data = data[2:-1]
    # Tokens that are not exactly two hex digits are dropped, which shifts
    # every value decoded after them.
    return bytes(int(tok, 16) for tok in data.split() if is_hex_byte(tok))


def _as_bytes(blob: BlobInput) -> bytes:
    if isinstance(blob, str):
        return parse_bytes(blob)
    return bytes(blob)


def _whole_chunks(data: bytes, size: int) -> bytes:
    return data[: len(data) - len(data) % size]


def parse_float_vectors(blob: BlobInput) -> List[Vec]:
    data = _whole_chunks(_as_bytes(blob), VEC3_STRUCT.size)
    return [Vec(x, y, z) for x, y, z in VEC3_STRUCT.iter_unpack(data)]


def parse_int32_array(blob: BlobInput) -> List[int]:
    data = _whole_chunks(_as_bytes(blob), INT32_STRUCT.size)
    return [v for (v,) in INT32_STRUCT.iter_unpack(data)]


def parse_edges(blob: BlobInput) -> List[Edge]:
    data = _whole_chunks(_as_bytes(blob), EDGE_STRUCT.size)
    return [
        Edge(next=nxt, twin=twin, origin=origin, face=face)
        for nxt, twin, origin, face in EDGE_STRUCT.iter_unpack(data)
    ]
