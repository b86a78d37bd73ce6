from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from .serialization import deserialize_props, serialize_props

if TYPE_CHECKING:
    from .field import Field

MAGMA_RISE_SPEED = 0.6
MAGMA_DECAY_SPEED = 0.15
RISING_MAGMA_THRESHOLD = 0.15
# Subduction needs to reach some depth before magma starts to rise.
MIN_SUBDUCTION_PROGRESS = 0.05

SUBDUCTION_ERUPTION_PROBABILITY = 0.1
RIDGE_ERUPTION_PROBABILITY = 0.01


class VolcanicActivity:
    """
    Magma rising above a subducting slab, owned by a field of the overriding plate.

    `value` grows while a subducting field is underneath and decays otherwise.
    The colliding field is kept as a (plate id, field id) pair and reset every step.
    """

    SERIALIZABLE_PROPS = (("value", "value"),)

    def __init__(self, field: "Field"):
        self.field = field
        self.value = 0.0
        self.colliding: tuple[int, int] | None = None

    def serialize(self) -> dict[str, Any]:
        return serialize_props(self, self.SERIALIZABLE_PROPS)

    @classmethod
    def deserialize(cls, props: dict[str, Any], field: "Field") -> "VolcanicActivity":
        return deserialize_props(cls(field), cls.SERIALIZABLE_PROPS, props)

    @property
    def colliding_field(self) -> "Field | None":
        if self.colliding is None:
            return None
        plate_id, field_id = self.colliding
        plate = self.field.plate.lookup_plate(plate_id)
        if plate is None:
            return None
        return plate.fields.get(field_id)

    @property
    def subducting_field(self) -> "Field | None":
        other = self.colliding_field
        if other is not None and other.subduction is not None:
            return other
        return None

    @property
    def rising_magma(self) -> bool:
        return self.value > RISING_MAGMA_THRESHOLD and self.subducting_field is not None

    @property
    def active(self) -> bool:
        return self.value > 0 or self.colliding is not None

    def set_collision(self, other: "Field") -> None:
        self.colliding = (other.plate.id, other.id)

    def reset_collision(self) -> None:
        self.colliding = None

    def update(self, timestep: float) -> None:
        subducting = self.subducting_field
        if subducting is not None and subducting.subduction.progress > MIN_SUBDUCTION_PROGRESS:
            self.value = min(1.0, self.value + subducting.subduction.progress * MAGMA_RISE_SPEED * timestep)
        else:
            self.value = max(0.0, self.value - MAGMA_DECAY_SPEED * timestep)


class VolcanicEruption:
    """A visible eruption. Lives for a fixed time, then disappears."""

    SERIALIZABLE_PROPS = (("lifespan", "lifespan"),)

    def __init__(self, field: "Field", lifespan: float):
        self.field = field
        self.lifespan = lifespan

    @staticmethod
    def should_create(field: "Field", rng: np.random.Generator) -> bool:
        if field.rising_magma:
            return rng.random() < SUBDUCTION_ERUPTION_PROBABILITY
        if field.oceanic_crust and field.boundary and field.divergent_boundary_volcanic_zone:
            return rng.random() < RIDGE_ERUPTION_PROBABILITY
        return False

    @property
    def active(self) -> bool:
        return self.lifespan > 0

    def serialize(self) -> dict[str, Any]:
        return serialize_props(self, self.SERIALIZABLE_PROPS)

    @classmethod
    def deserialize(cls, props: dict[str, Any], field: "Field") -> "VolcanicEruption":
        return deserialize_props(cls(field, 0.0), cls.SERIALIZABLE_PROPS, props)

    def update(self, timestep: float) -> None:
        self.lifespan -= timestep
