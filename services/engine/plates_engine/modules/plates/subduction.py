from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

import numpy as np

from .serialization import deserialize_props, serialize_props
from .vectors import angle_between, normalize

if TYPE_CHECKING:
    from .field import Field
    from .plate import Plate

# When the subducting area is pulled the other way and nothing covers it anymore, subduction reverts at this speed.
REVERT_SUBDUCTION_SPEED = 10.0

MIN_PROGRESS_TO_DETACH = 0.3
MIN_SPEED_TO_DETACH = 0.0005
MIN_ANGLE_TO_DETACH = math.pi * 0.55
# Fewer subducting neighbours than this make the slab gradient unreliable.
MIN_GRADIENT_SAMPLES = 5


class Subduction:
    """
    Subduction state of a single oceanic field.

    `dist` is the distance travelled under the overriding plate. `top_plate_id`
    and `relative_velocity` describe the current collision only; they are reset
    at the beginning of every step and never persisted.
    """

    SERIALIZABLE_PROPS = (("dist", "dist"),)

    def __init__(self, field: "Field"):
        self.field = field
        self.dist = 0.0
        self.top_plate_id: int | None = None
        self.relative_velocity: np.ndarray | None = None
        self._reverted = False

    def serialize(self) -> dict[str, Any]:
        return serialize_props(self, self.SERIALIZABLE_PROPS)

    @classmethod
    def deserialize(cls, props: dict[str, Any], field: "Field") -> "Subduction":
        return deserialize_props(cls(field), cls.SERIALIZABLE_PROPS, props)

    @property
    def max_dist(self) -> float:
        return self.field.config.max_subduction_dist

    @property
    def progress(self) -> float:
        return min(1.0, (self.dist / self.max_dist) ** 2)

    @property
    def active(self) -> bool:
        return not self._reverted

    @property
    def top_plate(self) -> "Plate | None":
        if self.top_plate_id is None:
            return None
        return self.field.plate.lookup_plate(self.top_plate_id)

    @property
    def avg_progress(self) -> float:
        total = 0.0
        count = 0
        for other in self.subducting_neighbours():
            total += other.subduction.progress
            count += 1
        if count > 0:
            return total / count
        return 0.0

    def subducting_neighbours(self) -> list["Field"]:
        return [neighbour for neighbour in self.field.neighbours() if neighbour.subduction is not None]

    def calc_slab_gradient(self) -> np.ndarray | None:
        count = 0
        gradient = np.zeros(3)
        own_avg = self.avg_progress
        own_pos = self.field.absolute_pos
        for other in self.subducting_neighbours():
            progress_diff = other.subduction.avg_progress - own_avg
            gradient += (other.absolute_pos - own_pos) * progress_diff
            count += 1
        if count < MIN_GRADIENT_SAMPLES:
            return None
        return normalize(gradient)

    def set_collision(self, other: "Field") -> None:
        self.top_plate_id = other.plate.id
        self.relative_velocity = self.field.linear_velocity - other.linear_velocity

    def reset_collision(self) -> None:
        # Starts the opposite process. A collision in this step overwrites it again.
        self.top_plate_id = None
        self.relative_velocity = None

    def min_neighbouring_dist(self) -> float:
        result = math.inf
        for neighbour in self.field.neighbours():
            dist = neighbour.subduction.dist if neighbour.subduction is not None else 0.0
            if dist < result:
                result = dist
        return result

    def update(self, timestep: float) -> None:
        if self.dist > self.max_dist:
            self.field.kill()
            return
        if self.relative_velocity is not None:
            diff = float(np.linalg.norm(self.relative_velocity)) * timestep
        else:
            diff = -REVERT_SUBDUCTION_SPEED * timestep
        new_dist = self.dist + diff
        if not self.field.in_subplate:
            # Keep progress close to the neighbouring fields, e.g. next to transform-like boundaries.
            new_dist = min(self.min_neighbouring_dist() + self.field.grid.field_diameter, new_dist)
        if new_dist < 0:
            self.dist = 0.0
            self._reverted = True
            return
        self.dist = new_dist
        if self.dist > self.max_dist:
            self.field.kill()
            return
        # Neighbouring fields may not be updated yet in this step; the effect on detachment is negligible.
        self.try_to_detach_from_plate()

    def try_to_detach_from_plate(self) -> None:
        # Happens when the relative motion turns against the slab, e.g. the plate reversed its direction.
        if self.top_plate_id is None or self.field.in_subplate or self.progress < MIN_PROGRESS_TO_DETACH:
            return
        if self.relative_velocity is None or float(np.linalg.norm(self.relative_velocity)) <= MIN_SPEED_TO_DETACH:
            return
        slab_gradient = self.calc_slab_gradient()
        if slab_gradient is None or angle_between(slab_gradient, self.relative_velocity) <= MIN_ANGLE_TO_DETACH:
            return
        top_plate = self.top_plate
        neighbours = self.subducting_neighbours()
        self.move_to_top_plate(top_plate)
        # Keep slab fragments coherent.
        for neighbour in neighbours:
            neighbour.subduction.move_to_top_plate(top_plate)

    def move_to_top_plate(self, top_plate: "Plate | None" = None) -> None:
        if top_plate is None:
            top_plate = self.top_plate
        if top_plate is None or self.field.in_subplate or not self.field.alive:
            return
        # Sink with the last known relative velocity while being part of the top plate's subplate.
        if self.relative_velocity is None:
            self.relative_velocity = self.field.linear_velocity - top_plate.linear_velocity_at(self.field.absolute_pos)
        top_plate.add_to_subplate(self.field)
