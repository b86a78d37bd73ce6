from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from .serialization import deserialize_props, serialize_props

if TYPE_CHECKING:
    from .field import Field

SUBDUCTION_PROBABILITY = 0.03
COLLISION_PROBABILITY = 0.01
RIDGE_PROBABILITY = 0.005
MAX_MAGNITUDE = 9.0


class Earthquake:
    """Short-lived event placed along divergent and convergent boundaries."""

    SERIALIZABLE_PROPS = (
        ("lifespan", "lifespan"),
        ("magnitude", "magnitude"),
        ("depth", "depth"),
    )

    def __init__(self, field: "Field", lifespan: float, magnitude: float = 0.0, depth: float = 0.0):
        self.field = field
        self.lifespan = lifespan
        self.magnitude = magnitude
        self.depth = depth

    @classmethod
    def create(cls, field: "Field", rng: np.random.Generator) -> "Earthquake":
        lifespan = field.config.earthquakeLifespan
        if field.subduction is not None:
            # Deep earthquakes follow the slab.
            depth = field.subduction.progress * (1.0 + 0.2 * rng.random())
            magnitude = 5.0 + 4.0 * rng.random() * field.subduction.progress
        else:
            depth = 0.1 * rng.random()
            magnitude = 2.0 + 4.0 * rng.random()
        return cls(field, lifespan, min(MAX_MAGNITUDE, magnitude), depth)

    @staticmethod
    def should_create(field: "Field", rng: np.random.Generator) -> bool:
        if field.subduction is not None:
            return rng.random() < SUBDUCTION_PROBABILITY * (0.5 + field.subduction.progress)
        if field.colliding:
            return rng.random() < COLLISION_PROBABILITY
        if field.oceanic_crust and field.boundary and field.divergent_boundary_zone:
            return rng.random() < RIDGE_PROBABILITY
        return False

    @property
    def active(self) -> bool:
        return self.lifespan > 0

    def serialize(self) -> dict[str, Any]:
        return serialize_props(self, self.SERIALIZABLE_PROPS)

    @classmethod
    def deserialize(cls, props: dict[str, Any], field: "Field") -> "Earthquake":
        return deserialize_props(cls(field, 0.0), cls.SERIALIZABLE_PROPS, props)

    def update(self, timestep: float) -> None:
        self.lifespan -= timestep
