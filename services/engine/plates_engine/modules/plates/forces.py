from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .field import Field
    from .plate import Plate

# Drag of the asthenosphere, proportional to field velocity and area.
BASIC_DRAG_FACTOR = 0.0000002
# Drag between two colliding continents. Much stronger than basic drag, so plates slow down quickly.
OROGENIC_DRAG_FACTOR = 0.00003


def basic_drag(field: "Field") -> np.ndarray:
    return field.linear_velocity * (-BASIC_DRAG_FACTOR * field.area)


def orogenic_drag(field: "Field", dragging_plate: "Plate") -> np.ndarray:
    relative_velocity = dragging_plate.linear_velocity_at(field.absolute_pos) - field.linear_velocity
    return relative_velocity * (OROGENIC_DRAG_FACTOR * field.area)
