from __future__ import annotations

import logging
import math

import numpy as np
from scipy.spatial import cKDTree

from ...models import PlatePreset, SimulationConfig
from .field import FieldType
from .grid import Grid
from .model import Model
from .plate import HotSpot, Plate
from .vectors import normalize

logger = logging.getLogger(__name__)

CONTINENTAL_PLATE_PROBABILITY = 0.7
# Angular radius of the continent grown around a continental plate's seed.
CONTINENT_RADIUS = 0.55
MIN_ANGULAR_SPEED = 0.05
MAX_ANGULAR_SPEED = 0.15
HOT_SPOT_FORCE_PER_FIELD = 0.004
HOT_SPOT_LIFESPAN = 50.0
COLLISION_SPEED = 0.1
COLLISION_OCEAN_DENSITY = 1.0
COLLISION_CONTINENT_DENSITY = 2.0


def _random_unit_vectors(rng: np.random.Generator, count: int) -> np.ndarray:
    vectors = rng.normal(size=(count, 3))
    return vectors / np.linalg.norm(vectors, axis=1, keepdims=True)


def _tangent(position: np.ndarray, direction: np.ndarray) -> np.ndarray:
    return normalize(direction - np.dot(direction, position) * position)


def _spread(low_high: tuple[float, float], count: int) -> list[float]:
    # Distinct densities, so every collision has a well defined top plate.
    low, high = low_high
    if count == 1:
        return [low]
    return [low + (high - low) * idx / (count - 1) for idx in range(count)]


def voronoi_plates(model: Model, rng: np.random.Generator) -> None:
    config = model.config
    grid = model.grid
    count = min(config.plateCount, grid.size)
    seeds = _random_unit_vectors(rng, count)
    _, owner = cKDTree(seeds).query(grid.positions)
    continental = rng.random(count) < CONTINENTAL_PLATE_PROBABILITY

    continental_densities = iter(_spread(config.continentalPlateDensity, int(continental.sum())))
    oceanic_densities = iter(_spread(config.oceanicPlateDensity, int(count - continental.sum())))
    for idx in range(count):
        density = next(continental_densities) if continental[idx] else next(oceanic_densities)
        axis = _random_unit_vectors(rng, 1)[0]
        speed = rng.uniform(MIN_ANGULAR_SPEED, MAX_ANGULAR_SPEED)
        plate = model.create_plate(
            id=idx,
            density=density,
            hue=int(idx * 360 / count),
            angular_velocity=axis * speed,
        )
        for field_id in np.flatnonzero(owner == idx):
            position = grid.position(int(field_id))
            on_continent = continental[idx] and math.acos(
                max(-1.0, min(1.0, float(np.dot(position, seeds[idx]))))
            ) < CONTINENT_RADIUS
            plate.create_field(int(field_id), type=FieldType.continent if on_continent else FieldType.ocean)
        _add_hot_spot(plate, seeds[idx], rng)


def _add_hot_spot(plate: Plate, position: np.ndarray, rng: np.random.Generator) -> None:
    if not plate.fields:
        return
    direction = _tangent(position, _random_unit_vectors(rng, 1)[0])
    force = direction * HOT_SPOT_FORCE_PER_FIELD * plate.size
    plate.hot_spot = HotSpot(position, force, HOT_SPOT_LIFESPAN)


def collision_plates(model: Model, rng: np.random.Generator) -> None:
    """An oceanic plate on the western hemisphere rotating east into a resting continental plate."""
    config = model.config
    grid = model.grid
    ocean = model.create_plate(
        id=0,
        density=COLLISION_OCEAN_DENSITY,
        hue=210,
        angular_velocity=np.array([0.0, 0.0, COLLISION_SPEED]),
    )
    continent = model.create_plate(id=1, density=COLLISION_CONTINENT_DENSITY, hue=30)
    for field_id in range(grid.size):
        if grid.position(field_id)[1] < 0:
            ocean.create_field(field_id, type=FieldType.ocean, age=config.max_field_age)
        else:
            continent.create_field(field_id, type=FieldType.continent)


PRESETS = {
    PlatePreset.voronoi: voronoi_plates,
    PlatePreset.collision: collision_plates,
}


def build_model(config: SimulationConfig, grid: Grid | None = None) -> Model:
    model = Model(config, grid=grid)
    # Preset layout draws from its own stream so the step RNG starts from the seed as well.
    rng = np.random.default_rng([config.seed, 1])
    PRESETS[PlatePreset(config.preset)](model, rng)
    logger.info(
        "Model built: preset=%s, %d plates, %d fields",
        PlatePreset(config.preset).value,
        len(model.plates),
        model.field_count,
    )
    return model
