from __future__ import annotations

import numpy as np
import pytest

from plates_engine.errors import GridConstructionError
from plates_engine.modules.plates.grid import Grid, build_grid


@pytest.mark.parametrize("subdivisions", [0, 1, 2, 3])
def test_icosphere_cell_count_and_pentagons(subdivisions):
    grid = build_grid(subdivisions)

    assert grid.size == 10 * 4**subdivisions + 2
    counts = [grid.neighbours_count(field_id) for field_id in range(grid.size)]
    assert counts.count(5) == 12
    assert all(count in (5, 6) for count in counts)
    assert np.allclose(np.linalg.norm(grid.positions, axis=1), 1.0)


def test_adjacency_is_symmetric_and_ordered_around_the_cell():
    grid = build_grid(2)

    for field_id in range(grid.size):
        neighbours = grid.neighbours(field_id)
        assert len(set(neighbours)) == len(neighbours)
        for adj_id in neighbours:
            assert field_id in grid.neighbours(adj_id)
        # Consecutive neighbours form a ring.
        for idx, adj_id in enumerate(neighbours):
            following = neighbours[(idx + 1) % len(neighbours)]
            assert following in grid.neighbours(adj_id)


def test_exact_index_returns_own_cell_and_approximate_index_stays_close():
    grid = build_grid(2)

    for field_id in range(grid.size):
        assert grid.nearest_field_id(grid.position(field_id), exact=True) == field_id

    rng = np.random.default_rng(3)
    points = rng.normal(size=(500, 3))
    points /= np.linalg.norm(points, axis=1, keepdims=True)
    exact_ids = grid.nearest_field_ids(points)
    matches = 0
    for point, exact_id in zip(points, exact_ids):
        approx_id = grid.nearest_field_id(point, exact=False)
        if approx_id == exact_id:
            matches += 1
        else:
            assert approx_id in grid.neighbours(int(exact_id))
    assert matches / len(points) > 0.8


def test_default_index_follows_optimized_flag():
    exact = Grid(1, optimized=False)
    approx = Grid(1, optimized=True)
    point = np.array([0.3, -0.2, 0.93])
    point /= np.linalg.norm(point)

    assert exact.nearest_field_id(point) == exact.nearest_field_id(point, exact=True)
    assert approx.nearest_field_id(point) == approx.nearest_field_id(point, exact=False)


def test_nearest_fields_sorted_by_distance():
    grid = build_grid(2)
    result = grid.nearest_fields(grid.position(10), count=4)

    assert result[0] == (10, pytest.approx(0.0))
    distances = [dist for _, dist in result]
    assert distances == sorted(distances)


def test_field_diameter_is_mean_edge_length():
    coarse = build_grid(1)
    fine = build_grid(2)

    assert 0.15 < fine.field_diameter < 0.4
    assert fine.field_diameter < coarse.field_diameter


def test_build_grid_is_cached():
    assert build_grid(2) is build_grid(2)


@pytest.mark.parametrize("subdivisions", [-1, 8])
def test_invalid_subdivisions_fail_fast(subdivisions):
    with pytest.raises(GridConstructionError):
        Grid(subdivisions)


def test_invalid_lookup_width_fails_fast():
    with pytest.raises(GridConstructionError):
        Grid(1, lookup_width=33)
