from __future__ import annotations

import numpy as np
import pytest

from plates_engine.models import SimulationConfig
from plates_engine.modules.plates.earthquake import Earthquake
from plates_engine.modules.plates.field import FieldType
from plates_engine.modules.plates.model import Model
from plates_engine.modules.plates.orogeny import Orogeny
from plates_engine.modules.plates.subduction import Subduction
from plates_engine.modules.plates.volcanic import VolcanicActivity, VolcanicEruption


class _AlwaysRng:
    """Generator stand-in that always rolls the lowest value."""

    def random(self, size=None):
        return 0.0


def _build_pair(subdivisions: int = 2):
    model = Model(SimulationConfig(subdivisions=subdivisions, earthquakes=True, volcanicEruptions=True))
    bottom = model.create_plate(id=0, density=3.0, angular_velocity=np.array([0.1, 0.2, 0.05]))
    top = model.create_plate(id=1, density=1.0)
    return model, bottom, top


def test_subduction_progress_grows_with_relative_velocity():
    model, bottom, top = _build_pair()
    field = bottom.create_field(3)
    other = top.create_field(3, type=FieldType.continent)
    field.subduction = Subduction(field)

    history = []
    for _ in range(5):
        field.subduction.set_collision(other)
        field.subduction.update(0.1)
        history.append(field.subduction.progress)

    assert field.subduction.dist > 0
    assert history == sorted(history)
    assert field.alive


def test_subduction_past_max_dist_kills_field_once():
    model, bottom, top = _build_pair()
    field = bottom.create_field(3)
    other = top.create_field(3, type=FieldType.continent)
    field.subduction = Subduction(field)
    field.subduction.dist = field.subduction.max_dist + 1e-6
    field.subduction.set_collision(other)

    field.perform_geological_processes(0.1)
    assert not field.alive
    field.kill()
    assert not field.alive

    assert bottom.remove_dead_fields() == 1
    assert 3 not in bottom.fields


def test_subduction_without_collision_reverts_and_is_removed():
    model, bottom, _ = _build_pair()
    field = bottom.create_field(3)
    field.subduction = Subduction(field)
    field.subduction.dist = 0.01

    field.perform_geological_processes(0.1)

    assert field.subduction is None
    assert field.alive


def test_subduction_is_clamped_by_neighbouring_progress():
    model, bottom, top = _build_pair()
    grid = model.grid
    field = bottom.create_field(0)
    for adj_id in grid.neighbours(0):
        bottom.create_field(adj_id)
    other = top.create_field(0, type=FieldType.continent)
    field.subduction = Subduction(field)
    field.subduction.set_collision(other)
    field.subduction.relative_velocity = np.array([10.0, 0.0, 0.0])

    field.subduction.update(1.0)

    assert field.subduction.dist == pytest.approx(grid.field_diameter)


def test_orogeny_stress_never_decreases_and_spreads_weaker():
    model = Model(SimulationConfig(subdivisions=4))
    grid = model.grid
    plate = model.create_plate(id=0)
    center = plate.create_field(0, type=FieldType.continent)
    adjacent = grid.neighbours(0)
    plate.create_field(adjacent[0], type=FieldType.ocean)
    for adj_id in adjacent[1:]:
        plate.create_field(adj_id, type=FieldType.continent)
    center.orogeny = Orogeny(center)

    center.orogeny.set_folding_stress(0.9)
    center.orogeny.set_folding_stress(0.2)

    assert center.orogeny.max_folding_stress == 0.9
    assert plate.fields[adjacent[0]].orogeny is None
    for adj_id in adjacent[1:]:
        neighbour = plate.fields[adj_id]
        assert neighbour.orogeny is not None
        assert 0 < neighbour.orogeny.max_folding_stress < center.orogeny.max_folding_stress


def test_orogeny_stress_grows_with_force():
    model = Model(SimulationConfig(subdivisions=2))
    plate = model.create_plate(id=0, angular_velocity=np.array([0.2, 0.1, 0.3]))
    field = plate.create_field(0, type=FieldType.continent)
    field.orogeny = Orogeny(field)

    field.orogeny.calc_folding_stress(np.zeros(3))
    assert field.orogeny.max_folding_stress == 0
    field.orogeny.calc_folding_stress(np.array([100.0, 0.0, 0.0]))
    assert field.orogeny.max_folding_stress == 1.0


def test_volcanic_activity_rises_above_slab_and_decays_without_it():
    model, bottom, top = _build_pair()
    slab = bottom.create_field(3)
    slab.subduction = Subduction(slab)
    slab.subduction.dist = slab.subduction.max_dist * 0.8
    field = top.create_field(3, type=FieldType.continent)
    field.volcanic_act = VolcanicActivity(field)
    field.volcanic_act.set_collision(slab)

    field.volcanic_act.update(0.5)
    risen = field.volcanic_act.value
    assert risen > 0
    assert field.subducting_field_underneath is slab

    field.volcanic_act.reset_collision()
    field.volcanic_act.update(0.5)
    assert field.volcanic_act.value < risen

    field.volcanic_act.update(100.0)
    assert field.volcanic_act.value == 0
    assert not field.volcanic_act.active


def test_events_need_a_random_source():
    model, bottom, top = _build_pair()
    slab = bottom.create_field(3)
    slab.subduction = Subduction(slab)
    slab.subduction.dist = slab.subduction.max_dist * 0.5
    slab.subduction.set_collision(top.create_field(3, type=FieldType.continent))

    slab.perform_geological_processes(0.01)
    assert slab.earthquake is None

    slab.subduction.set_collision(top.fields[3])
    slab.perform_geological_processes(0.01, _AlwaysRng())
    assert slab.earthquake is not None
    assert 0 < slab.earthquake.magnitude <= 9.0
    assert slab.earthquake.lifespan == model.config.earthquakeLifespan


def test_events_respect_config_switches():
    model = Model(SimulationConfig(subdivisions=2, earthquakes=False, volcanicEruptions=False))
    plate = model.create_plate(id=0)
    field = plate.create_field(0)
    field.boundary = True

    field.perform_geological_processes(0.01, _AlwaysRng())

    assert field.earthquake is None
    assert field.volcanic_eruption is None


def test_ridge_eruption_on_young_boundary_field():
    model, bottom, _ = _build_pair()
    field = bottom.create_field(5)
    field.boundary = True

    assert VolcanicEruption.should_create(field, _AlwaysRng())
    field.age = model.config.max_field_age
    assert not VolcanicEruption.should_create(field, _AlwaysRng())


def test_events_expire_after_lifespan():
    model, bottom, _ = _build_pair()
    field = bottom.create_field(5)
    field.age = model.config.max_field_age
    field.earthquake = Earthquake(field, lifespan=0.3, magnitude=4.0)
    field.volcanic_eruption = VolcanicEruption(field, lifespan=0.5)

    field.perform_geological_processes(0.2)
    assert field.earthquake is not None and field.volcanic_eruption is not None

    field.perform_geological_processes(0.2)
    assert field.earthquake is None
    assert field.volcanic_eruption is not None

    field.perform_geological_processes(0.2)
    assert field.volcanic_eruption is None


def test_overlay_serialization_omits_transient_state():
    model, bottom, top = _build_pair()
    field = bottom.create_field(3)
    field.subduction = Subduction(field)
    field.subduction.dist = 0.02
    field.subduction.set_collision(top.create_field(3))

    assert field.subduction.serialize() == {"dist": 0.02}
    restored = Subduction.deserialize({"dist": 0.02}, field)
    assert restored.top_plate_id is None
    assert restored.relative_velocity is None
