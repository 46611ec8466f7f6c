"""
STL mesh parsing and geometry statistics.

Supports both STL encodings:
    Binary: 80-byte header, uint32 triangle count, 50 bytes per triangle
            (normal + 3 vertices as float32, uint16 attribute)
    ASCII:  "solid <name>" ... "facet normal" / "vertex x y z" ... "endsolid"

Only statistics are kept; vertices are discarded after analysis.
"""

from __future__ import annotations

import math
import re
import struct
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field

Vertex = tuple[float, float, float]
Triangle = tuple[Vertex, Vertex, Vertex]

HEADER_SIZE = 80
TRIANGLE_SIZE = 50
_TRIANGLE = struct.Struct("<12fH")

_VERTEX_RE = re.compile(
    rb"vertex\s+([-+0-9.eE]+)\s+([-+0-9.eE]+)\s+([-+0-9.eE]+)", re.IGNORECASE
)

# Coordinates are welded at this precision for the watertight check
_WELD_DIGITS = 5


@dataclass
class MeshStats:
    """Geometry statistics of one mesh (model units, normally mm)."""

    triangle_count: int
    dimensions: dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0, "z": 0.0})
    volume: float | None = None  # None unless the mesh is watertight
    surface_area: float = 0.0
    is_watertight: bool = False
    header_text: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "triangle_count": self.triangle_count,
            "dimensions": dict(self.dimensions),
            "volume": self.volume,
            "surface_area": self.surface_area,
            "is_watertight": self.is_watertight,
            "header_text": self.header_text,
        }


def parse_header_text(data: bytes) -> str | None:
    """
    Extract readable text from the first 80 bytes.

    For ASCII files this is the solid name; for binary files the header
    is returned if it looks meaningful (three or more printable chars).
    """
    header = data[:HEADER_SIZE].split(b"\x00", 1)[0]
    text = "".join(chr(b) for b in header if 32 <= b < 127).strip()
    if text.startswith("solid"):
        name = text[5:].strip()
        # ASCII files run past the first line within 80 bytes
        name = name.split("facet", 1)[0].strip()
        return name or None
    if len(text) < 3:
        return None
    return text


def is_binary_stl(data: bytes) -> bool:
    """Binary STL if the declared triangle count matches the file length."""
    if len(data) < HEADER_SIZE + 4:
        return False
    (count,) = struct.unpack_from("<I", data, HEADER_SIZE)
    return len(data) == HEADER_SIZE + 4 + count * TRIANGLE_SIZE


def iter_triangles(data: bytes) -> Iterator[Triangle]:
    """
    Yield triangles from binary or ASCII STL data.

    Raises:
        ValueError: If the data is neither valid binary nor ASCII STL
    """
    if is_binary_stl(data):
        (count,) = struct.unpack_from("<I", data, HEADER_SIZE)
        offset = HEADER_SIZE + 4
        for _ in range(count):
            values = _TRIANGLE.unpack_from(data, offset)
            offset += TRIANGLE_SIZE
            yield (values[3:6], values[6:9], values[9:12])  # type: ignore[misc]
        return

    if not data.lstrip()[:5].lower() == b"solid":
        raise ValueError("Not an STL file (bad header or truncated binary data)")

    vertices: list[Vertex] = []
    for match in _VERTEX_RE.finditer(data):
        try:
            vertices.append((float(match[1]), float(match[2]), float(match[3])))
        except ValueError as e:
            raise ValueError(f"Malformed vertex in ASCII STL: {match[0]!r}") from e
    if not vertices or len(vertices) % 3:
        raise ValueError(f"ASCII STL has {len(vertices)} vertices, expected a multiple of 3")
    for i in range(0, len(vertices), 3):
        yield (vertices[i], vertices[i + 1], vertices[i + 2])


def _sub(a: Vertex, b: Vertex) -> Vertex:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def _cross(a: Vertex, b: Vertex) -> Vertex:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def _dot(a: Vertex, b: Vertex) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def _weld(v: Vertex) -> Vertex:
    return (round(v[0], _WELD_DIGITS), round(v[1], _WELD_DIGITS), round(v[2], _WELD_DIGITS))


def analyze_stl(data: bytes) -> MeshStats:
    """
    Compute geometry statistics for STL data.

    Volume is the absolute signed volume of tetrahedra against the origin
    and is only reported for watertight meshes (every welded edge shared
    by exactly two triangles).

    Raises:
        ValueError: If the data cannot be parsed or has no triangles
    """
    lo = [math.inf, math.inf, math.inf]
    hi = [-math.inf, -math.inf, -math.inf]
    signed_volume = 0.0
    surface_area = 0.0
    edges: Counter[tuple[Vertex, Vertex]] = Counter()
    count = 0

    for a, b, c in iter_triangles(data):
        count += 1
        for v in (a, b, c):
            for axis in range(3):
                lo[axis] = min(lo[axis], v[axis])
                hi[axis] = max(hi[axis], v[axis])

        signed_volume += _dot(a, _cross(b, c)) / 6
        n = _cross(_sub(b, a), _sub(c, a))
        surface_area += math.sqrt(_dot(n, n)) * 0.5

        wa, wb, wc = _weld(a), _weld(b), _weld(c)
        for p, q in ((wa, wb), (wb, wc), (wc, wa)):
            edges[(p, q) if p < q else (q, p)] += 1

    if count == 0:
        raise ValueError("STL contains no triangles")

    is_watertight = all(n == 2 for n in edges.values())
    return MeshStats(
        triangle_count=count,
        dimensions={
            "x": round(hi[0] - lo[0], 2),
            "y": round(hi[1] - lo[1], 2),
            "z": round(hi[2] - lo[2], 2),
        },
        volume=round(abs(signed_volume), 2) if is_watertight else None,
        surface_area=round(surface_area, 2),
        is_watertight=is_watertight,
        header_text=parse_header_text(data),
    )
