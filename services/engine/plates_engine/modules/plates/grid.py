from __future__ import annotations

import logging
import math
from functools import lru_cache

import numpy as np
from scipy.spatial import cKDTree

from ...errors import GridConstructionError

logger = logging.getLogger(__name__)

MAX_SUBDIVISIONS = 7

_PHI = (1.0 + math.sqrt(5.0)) / 2.0

_ICOSAHEDRON_VERTICES = [
    [-1, _PHI, 0], [1, _PHI, 0], [-1, -_PHI, 0], [1, -_PHI, 0],
    [0, -1, _PHI], [0, 1, _PHI], [0, -1, -_PHI], [0, 1, -_PHI],
    [_PHI, 0, -1], [_PHI, 0, 1], [-_PHI, 0, -1], [-_PHI, 0, 1],
]

_ICOSAHEDRON_FACES = [
    [0, 11, 5], [0, 5, 1], [0, 1, 7], [0, 7, 10], [0, 10, 11],
    [1, 5, 9], [5, 11, 4], [11, 10, 2], [10, 7, 6], [7, 1, 8],
    [3, 9, 4], [3, 4, 2], [3, 2, 6], [3, 6, 8], [3, 8, 9],
    [4, 9, 5], [2, 4, 11], [6, 2, 10], [8, 6, 7], [9, 8, 1],
]


def _icosphere(subdivisions: int) -> tuple[np.ndarray, list[tuple[int, int, int]]]:
    vertices = [np.asarray(v, dtype=np.float64) / np.linalg.norm(v) for v in _ICOSAHEDRON_VERTICES]
    faces = [tuple(face) for face in _ICOSAHEDRON_FACES]
    middle_point_cache: dict[tuple[int, int], int] = {}

    def middle_point(a: int, b: int) -> int:
        key = (a, b) if a < b else (b, a)
        cached = middle_point_cache.get(key)
        if cached is not None:
            return cached
        midpoint = vertices[a] + vertices[b]
        vertices.append(midpoint / np.linalg.norm(midpoint))
        middle_point_cache[key] = len(vertices) - 1
        return len(vertices) - 1

    for _ in range(subdivisions):
        next_faces = []
        for v1, v2, v3 in faces:
            a = middle_point(v1, v2)
            b = middle_point(v2, v3)
            c = middle_point(v3, v1)
            next_faces.extend([(v1, a, c), (v2, b, a), (v3, c, b), (a, b, c)])
        faces = next_faces
        middle_point_cache.clear()

    return np.vstack(vertices), faces


def _ordered_adjacency(positions: np.ndarray, faces: list[tuple[int, int, int]]) -> list[tuple[int, ...]]:
    neighbours: list[set[int]] = [set() for _ in range(len(positions))]
    for a, b, c in faces:
        neighbours[a].update((b, c))
        neighbours[b].update((a, c))
        neighbours[c].update((a, b))

    ordered: list[tuple[int, ...]] = []
    for idx, adjacent in enumerate(neighbours):
        center = positions[idx]
        ids = sorted(adjacent)
        ref = positions[ids[0]] - center
        tangent = ref - np.dot(ref, center) * center
        tangent /= np.linalg.norm(tangent)
        bitangent = np.cross(center, tangent)
        angles = []
        for adj_id in ids:
            vec = positions[adj_id] - center
            angles.append((math.atan2(float(np.dot(vec, bitangent)), float(np.dot(vec, tangent))), adj_id))
        angles.sort()
        ordered.append(tuple(adj_id for _, adj_id in angles))
    return ordered


class Grid:
    """
    Geodesic sphere of fields shared by every plate.

    Field ids, unit-sphere positions and adjacency never change after
    construction. Two nearest-field indexes are kept: an exact k-d tree and an
    approximate equirectangular table that caches the k-d tree answer for every
    sample, so lookups cost O(1) at the price of spatial resolution.
    """

    def __init__(self, subdivisions: int, lookup_width: int | None = None, optimized: bool = True):
        if not isinstance(subdivisions, int) or subdivisions < 0 or subdivisions > MAX_SUBDIVISIONS:
            raise GridConstructionError(f"subdivisions must be an integer in [0, {MAX_SUBDIVISIONS}], got {subdivisions!r}")
        if lookup_width is None:
            lookup_width = max(64, 32 * 2**subdivisions)
        if lookup_width <= 0 or lookup_width % 2:
            raise GridConstructionError(f"lookup width must be a positive even number, got {lookup_width!r}")

        self.subdivisions = subdivisions
        self.optimized = optimized
        positions, faces = _icosphere(subdivisions)
        positions.setflags(write=False)
        self.positions = positions
        self.adjacency = _ordered_adjacency(positions, faces)
        self.field_diameter = self._calc_field_diameter()
        self._tree = cKDTree(positions)
        self.lookup_width = lookup_width
        self.lookup_height = lookup_width // 2
        self._lookup = self._build_lookup_table()
        logger.info(
            "Grid ready: %d fields, subdivisions=%d, lookup=%dx%d",
            self.size,
            subdivisions,
            self.lookup_width,
            self.lookup_height,
        )

    @property
    def size(self) -> int:
        return len(self.positions)

    def position(self, field_id: int) -> np.ndarray:
        return self.positions[field_id]

    def neighbours(self, field_id: int) -> tuple[int, ...]:
        return self.adjacency[field_id]

    def neighbours_count(self, field_id: int) -> int:
        return len(self.adjacency[field_id])

    def _calc_field_diameter(self) -> float:
        total = 0.0
        count = 0
        for idx, adjacent in enumerate(self.adjacency):
            for adj_id in adjacent:
                total += float(np.linalg.norm(self.positions[idx] - self.positions[adj_id]))
                count += 1
        return total / count

    def _build_lookup_table(self) -> np.ndarray:
        width, height = self.lookup_width, self.lookup_height
        lon = -math.pi + (np.arange(width) + 0.5) * (2.0 * math.pi / width)
        lat = -math.pi / 2.0 + (np.arange(height) + 0.5) * (math.pi / height)
        lon_grid, lat_grid = np.meshgrid(lon, lat)
        samples = np.stack(
            [
                np.cos(lat_grid) * np.cos(lon_grid),
                np.cos(lat_grid) * np.sin(lon_grid),
                np.sin(lat_grid),
            ],
            axis=-1,
        ).reshape(-1, 3)
        _, ids = self._tree.query(samples)
        return ids.astype(np.int32).reshape(height, width)

    def _approximate_id(self, point: np.ndarray) -> int:
        x, y, z = float(point[0]), float(point[1]), float(point[2])
        norm = math.sqrt(x * x + y * y + z * z)
        if norm == 0:
            return int(self._lookup[0, 0])
        lat = math.asin(max(-1.0, min(1.0, z / norm)))
        lon = math.atan2(y, x)
        xi = int((lon + math.pi) / (2.0 * math.pi) * self.lookup_width) % self.lookup_width
        yi = min(self.lookup_height - 1, max(0, int((lat + math.pi / 2.0) / math.pi * self.lookup_height)))
        return int(self._lookup[yi, xi])

    def nearest_field_id(self, point: np.ndarray, exact: bool | None = None) -> int:
        use_exact = (not self.optimized) if exact is None else exact
        if use_exact:
            _, idx = self._tree.query(np.asarray(point, dtype=np.float64))
            return int(idx)
        return self._approximate_id(point)

    def nearest_field_ids(self, points: np.ndarray) -> np.ndarray:
        _, ids = self._tree.query(np.asarray(points, dtype=np.float64).reshape(-1, 3))
        return np.asarray(ids, dtype=np.int64)

    def nearest_fields(self, point: np.ndarray, count: int = 1) -> list[tuple[int, float]]:
        dists, ids = self._tree.query(np.asarray(point, dtype=np.float64), k=count)
        if count == 1:
            return [(int(ids), float(dists))]
        return [(int(i), float(d)) for i, d in zip(ids, dists)]


@lru_cache(maxsize=8)
def build_grid(subdivisions: int, lookup_width: int | None = None, optimized: bool = True) -> Grid:
    return Grid(subdivisions, lookup_width=lookup_width, optimized=optimized)
