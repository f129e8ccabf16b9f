"""
KV3 text -> generic value tree, plus dotted/indexed path queries.

Only the subset found in PHYS block text renderings is understood:
- objects:      { key = value ... }
- arrays:       [ value, value ... ]
- quoted strings and bare tokens (numbers, names, flags)
- byte blobs:   #[ 00 01 ff ... ]  (kept verbatim, decoded by phys_blob)

Parsing is forgiving: unbalanced braces or stray tokens never raise, the
tree built from the consumed prefix is returned instead.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

SINGLE_CHAR_TOKENS = frozenset("{}[]=,")
WHITESPACE = frozenset(" \t\r\n")
ABSENT = ""

# Deepest object/array nesting the builder descends into; anything below it
# is dropped and the prefix tree is returned.
MAX_NESTING_DEPTH = 256

SEGMENT_RX = re.compile(r"([^\[\]]+)\[(\d+)\]")
HEADER_RX = re.compile(r"^\s*<!--.*?-->", re.DOTALL)


@dataclass(frozen=True)
class KVObject:
    items: Dict[str, "Node"] = field(default_factory=dict)


@dataclass(frozen=True)
class KVArray:
    items: List["Node"] = field(default_factory=list)


@dataclass(frozen=True)
class KVScalar:
    text: str
    quoted: bool = False


@dataclass(frozen=True)
class KVBytes:
    text: str


Node = Union[KVObject, KVArray, KVScalar, KVBytes]


@dataclass(frozen=True)
class PathSegment:
    key: str
    index: Optional[int] = None


PathExpr = List[PathSegment]


def strip_header(text: str) -> str:
    """Drop the <!-- kv3 ... --> header and anything else before the first '{'."""
    m = HEADER_RX.match(text)
    if m:
        text = text[m.end():]
    start = text.find("{")
    if start < 0:
        return ""
    return text[start:]


def strip_comments(text: str) -> str:
    # '//' only starts a comment outside quoted strings and byte blobs.
    out: List[str] = []
    i = 0
    n = len(text)
    in_string = False
    in_blob = False
    while i < n:
        c = text[i]
        if in_string:
            out.append(c)
            if c == '"' and text[i - 1] != "\\":
                in_string = False
        elif in_blob:
            out.append(c)
            if c == "]":
                in_blob = False
        elif c == '"':
            in_string = True
            out.append(c)
        elif c == "#" and text.startswith("#[", i):
            in_blob = True
            out.append(c)
        elif c == "/" and text.startswith("//", i):
            eol = text.find("\n", i)
            if eol < 0:
                break
            i = eol
            continue
        else:
            out.append(c)
        i += 1
    return "".join(out)


def tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    current: List[str] = []
    in_string = False
    in_blob = False

    def flush() -> None:
        token = "".join(current).strip()
        if token:
            tokens.append(token)
        current.clear()

    for i, c in enumerate(text):
        if in_string:
            current.append(c)
            if c == '"' and (i == 0 or text[i - 1] != "\\"):
                in_string = False
                tokens.append("".join(current))
                current.clear()
        elif in_blob:
            current.append(c)
            if c == "]":
                in_blob = False
                tokens.append("".join(current))
                current.clear()
        elif c == '"':
            flush()
            current.append(c)
            in_string = True
        elif c == "#" and text.startswith("#[", i):
            flush()
            current.append(c)
            in_blob = True
        elif c in SINGLE_CHAR_TOKENS:
            flush()
            tokens.append(c)
        elif c in WHITESPACE:
            flush()
        else:
            current.append(c)

    # Unterminated strings and blobs keep whatever was read.
    flush()
    return tokens


def is_quoted(token: str) -> bool:
    return len(token) >= 2 and token.startswith('"') and token.endswith('"')


def unquote(text: str) -> str:
    if is_quoted(text):
        return text[1:-1]
    return text


def _parse_value(tokens: Sequence[str], pos: int, depth: int = 0) -> Tuple[Optional[Node], int]:
    if pos >= len(tokens):
        return None, pos
    token = tokens[pos]
    if token in ("{", "[") and depth >= MAX_NESTING_DEPTH:
        return None, len(tokens)
    if token == "{":
        return _parse_object(tokens, pos, depth + 1)
    if token == "[":
        return _parse_array(tokens, pos, depth + 1)
    if token.startswith("#["):
        inner = token[2:-1] if token.endswith("]") else token[2:]
        return KVBytes(inner), pos + 1
    if is_quoted(token):
        return KVScalar(token[1:-1], quoted=True), pos + 1
    return KVScalar(token), pos + 1


def _parse_object(tokens: Sequence[str], pos: int, depth: int = 0) -> Tuple[KVObject, int]:
    obj = KVObject()
    if pos >= len(tokens) or tokens[pos] != "{":
        return obj, pos
    pos += 1

    while pos < len(tokens) and tokens[pos] != "}":
        if tokens[pos] == ",":
            pos += 1
            continue

        key = tokens[pos].strip('"')
        pos += 1
        if pos < len(tokens) and tokens[pos] == "=":
            pos += 1

        value, pos = _parse_value(tokens, pos, depth)
        obj.items[key] = value if value is not None else KVScalar("")

    if pos < len(tokens) and tokens[pos] == "}":
        pos += 1
    return obj, pos


def _parse_array(tokens: Sequence[str], pos: int, depth: int = 0) -> Tuple[KVArray, int]:
    arr = KVArray()
    if pos >= len(tokens) or tokens[pos] != "[":
        return arr, pos
    pos += 1

    while pos < len(tokens) and tokens[pos] != "]":
        if tokens[pos] == ",":
            pos += 1
            continue
        value, pos = _parse_value(tokens, pos, depth)
        if value is not None:
            arr.items.append(value)

    if pos < len(tokens) and tokens[pos] == "]":
        pos += 1
    return arr, pos


def parse_kv3(text: str) -> KVObject:
    body = strip_comments(strip_header(text))
    if not body:
        return KVObject()
    root, _ = _parse_object(tokenize(body), 0)
    return root


def parse_path(path: str) -> PathExpr:
    segments: PathExpr = []
    for raw in path.split("."):
        m = SEGMENT_RX.fullmatch(raw)
        if m:
            segments.append(PathSegment(m.group(1), int(m.group(2))))
        else:
            segments.append(PathSegment(raw))
    return segments


def scalar_text(node: Optional[Node]) -> str:
    """String form of a leaf with at most one pair of enclosing quotes removed."""
    if isinstance(node, KVScalar):
        return unquote(node.text)
    if isinstance(node, KVBytes):
        return unquote(node.text)
    # Containers (and missing nodes) have no scalar form.
    return ABSENT


class KV3Document:
    """A parsed PHYS text rendering. The tree is never modified after parsing."""

    def __init__(self, root: KVObject, text: str = "") -> None:
        self.root = root
        self.text = text

    @classmethod
    def parse(cls, text: str) -> "KV3Document":
        return cls(parse_kv3(text), text)

    def find(self, path: Union[str, Sequence[PathSegment]]) -> Optional[Node]:
        segments = parse_path(path) if isinstance(path, str) else path
        current: Optional[Node] = self.root
        for seg in segments:
            if not isinstance(current, KVObject):
                return None
            current = current.items.get(seg.key)
            if current is None:
                return None
            if seg.index is None:
                continue
            if not isinstance(current, KVArray):
                return None
            if not 0 <= seg.index < len(current.items):
                return None
            current = current.items[seg.index]
        return current

    def resolve(self, path: Union[str, Sequence[PathSegment]]) -> str:
        return scalar_text(self.find(path))
