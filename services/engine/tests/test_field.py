from __future__ import annotations

import numpy as np
import pytest

from plates_engine.models import SimulationConfig
from plates_engine.modules.plates.field import TRENCH_ELEVATION, FieldType
from plates_engine.modules.plates.forces import OROGENIC_DRAG_FACTOR
from plates_engine.modules.plates.model import Model
from plates_engine.modules.plates.orogeny import Orogeny
from plates_engine.modules.plates.subduction import Subduction
from plates_engine.modules.plates.volcanic import VolcanicActivity


def _build_model(**overrides) -> Model:
    config = SimulationConfig(subdivisions=2, **overrides)
    return Model(config)


def _build_plate(model: Model, plate_id: int = 0, field_ids=None, field_type=FieldType.ocean, **props):
    plate = model.create_plate(id=plate_id, **props)
    for field_id in field_ids if field_ids is not None else range(model.grid.size):
        plate.create_field(field_id, type=field_type)
    return plate


def test_ocean_field_at_max_age_has_base_elevation():
    model = _build_model()
    plate = _build_plate(model, field_ids=[5])
    field = plate.fields[5]
    field.age = model.config.max_field_age

    assert field.orogeny is None and field.subduction is None and not field.trench
    assert field.elevation == field.base_elevation


def test_fresh_ocean_field_sits_at_ridge_elevation():
    model = _build_model()
    field = _build_plate(model, field_ids=[5]).fields[5]

    assert field.age == 0
    assert field.elevation == pytest.approx(model.config.oceanicRidgeElevation)
    assert field.crust_thickness == 0
    assert field.lithosphere_thickness == 0


def test_ocean_elevation_blends_linearly_with_age():
    model = _build_model()
    field = _build_plate(model, field_ids=[5]).fields[5]
    field.age = model.config.max_field_age * 0.25

    expected = field.base_elevation + (model.config.oceanicRidgeElevation - field.base_elevation) * 0.75
    assert field.elevation == pytest.approx(expected)


def test_subduction_pulls_ocean_floor_down():
    model = _build_model()
    field = _build_plate(model, field_ids=[5]).fields[5]
    field.age = model.config.max_field_age
    field.subduction = Subduction(field)
    field.subduction.dist = field.subduction.max_dist

    assert field.subduction.progress == 1
    assert field.elevation == pytest.approx(field.base_elevation + model.config.subductionMinElevation)


def test_trench_elevation_and_thickness_are_fixed():
    model = _build_model()
    field = _build_plate(model, field_ids=[5]).fields[5]
    field.trench = True

    assert field.elevation == TRENCH_ELEVATION
    assert field.crust_thickness == pytest.approx(0.1)


def test_elevation_never_exceeds_one():
    model = _build_model()
    field = _build_plate(model, field_ids=[5], field_type=FieldType.continent).fields[5]
    field.base_elevation = 0.9
    field.orogeny = Orogeny(field)
    field.orogeny.max_folding_stress = 1.0
    field.volcanic_act = VolcanicActivity(field)
    field.volcanic_act.value = 1.0

    assert field.mountain_elevation == pytest.approx(0.4)
    assert field.elevation == 1.0
    # Mountain roots.
    assert field.crust_thickness == pytest.approx(field.base_crust_thickness + 0.8)


def test_field_type_defaults_per_variant():
    model = _build_model()
    plate = _build_plate(model, field_ids=[1, 2, 3])
    ocean, continent, island = plate.fields[1], plate.fields[2], plate.fields[3]
    continent.set_type(FieldType.continent)
    island.set_type("island")

    assert ocean.base_elevation == 0.0 and ocean.base_crust_thickness == pytest.approx(0.2)
    assert continent.base_elevation == pytest.approx(0.55)
    assert continent.base_crust_thickness == pytest.approx(0.55)
    assert island.continental_crust and not island.oceanic_crust


def test_set_type_resets_geology():
    model = _build_model()
    field = _build_plate(model, field_ids=[7], field_type=FieldType.continent).fields[7]
    field.orogeny = Orogeny(field)
    field.base_elevation = 0.8

    field.set_type(FieldType.ocean)

    assert field.orogeny is None
    assert field.base_elevation == 0.0


def test_mass_uses_crust_density():
    model = _build_model()
    plate = _build_plate(model, field_ids=[1, 2])
    plate.fields[2].set_type(FieldType.continent)

    ratio = plate.fields[2].mass / plate.fields[1].mass
    assert ratio == pytest.approx(model.config.continentDensity / model.config.oceanDensity)


def test_force_opposes_motion_and_torque_is_cross_product():
    model = _build_model()
    plate = _build_plate(model, field_ids=[0], angular_velocity=np.array([0.1, 0.2, 0.3]))
    field = plate.fields[0]

    assert np.dot(field.force, field.linear_velocity) < 0
    assert np.allclose(field.torque, np.cross(field.absolute_pos, field.force))


def test_orogenic_drag_pulls_towards_dragging_plate_velocity():
    model = _build_model()
    plate = _build_plate(model, plate_id=0, field_ids=[0])
    other = _build_plate(model, plate_id=1, field_ids=[1], angular_velocity=np.array([0.3, -0.1, 0.2]))
    field = plate.fields[0]
    field.dragging_plate_id = other.id

    expected = other.linear_velocity_at(field.absolute_pos) * (OROGENIC_DRAG_FACTOR * field.area)
    assert np.allclose(field.force, expected)


def test_geological_processes_age_field_by_travelled_distance():
    model = _build_model()
    plate = _build_plate(model, field_ids=[4], angular_velocity=np.array([0.0, 0.0, 0.1]))
    field = plate.fields[4]
    expected = float(np.linalg.norm(field.linear_velocity)) * 0.5

    field.perform_geological_processes(0.5)

    assert field.age == pytest.approx(expected)


def test_neighbours_only_include_same_plate_fields():
    model = _build_model()
    grid = model.grid
    adjacent = grid.neighbours(0)
    plate = _build_plate(model, plate_id=0, field_ids=[0, adjacent[0]])
    _build_plate(model, plate_id=1, field_ids=list(adjacent[1:]))
    field = plate.fields[0]

    assert [neighbour.id for neighbour in field.neighbours()] == [adjacent[0]]
    assert field.neighbours_count() == 1
    assert field.is_boundary()
    assert field.any_neighbour(lambda other: other.id == adjacent[0])
    assert field.avg_neighbour(lambda other: other.age) == 0


def test_neighbour_along_vector_finds_adjacent_field():
    model = _build_model()
    plate = _build_plate(model)
    field = plate.fields[0]
    target = plate.fields[model.grid.neighbours(0)[0]]

    found = field.neighbour_along_vector(target.absolute_pos - field.absolute_pos)

    assert found is target


def test_trench_needs_boundary_and_subducting_field_underneath():
    model = _build_model()
    top = _build_plate(model, plate_id=0, field_ids=[0], field_type=FieldType.continent)
    bottom = _build_plate(model, plate_id=1, field_ids=[1])
    field = top.fields[0]
    under = bottom.fields[1]
    under.subduction = Subduction(under)
    field.boundary = True
    field.volcanic_act = VolcanicActivity(field)
    field.volcanic_act.set_collision(under)

    field.perform_geological_processes(0.1)
    assert field.trench
    assert field.subducting_field_underneath is under

    field.orogeny = Orogeny(field)
    field.perform_geological_processes(0.1)
    assert not field.trench


def test_clone_keeps_overlays_and_relinks_them():
    model = _build_model()
    field = _build_plate(model, field_ids=[3]).fields[3]
    field.subduction = Subduction(field)
    field.subduction.dist = 0.05
    field.dragging_plate_id = 4

    clone = field.clone()

    assert clone is not field
    assert clone.serialize() == field.serialize()
    assert clone.subduction.field is clone
    assert clone.dragging_plate_id == 4


def test_authoring_helpers_see_continental_share():
    model = _build_model()
    plate = _build_plate(model, field_ids=[0, *model.grid.neighbours(0)])
    visited = []
    plate.fields[0].for_each_neighbour(visited.append)
    for field in visited[:2]:
        field.set_type(FieldType.continent)
    visited[2].set_type(FieldType.island)

    assert len(visited) == model.grid.neighbours_count(0)
    assert visited[2].is_island
    assert plate.continental_ratio() == pytest.approx(3 / plate.size)
    assert visited[0].crust_can_be_stretched
    assert not visited[2].crust_can_be_stretched
    assert not plate.fields[0].crust_can_be_stretched
