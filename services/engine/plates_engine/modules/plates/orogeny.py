from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from .serialization import deserialize_props, serialize_props

if TYPE_CHECKING:
    from .field import Field

FOLDING_STRESS_FACTOR = 500000
STRESS_SPREADING_FACTOR = 6
MIN_SPREAD_STRESS = 0.1


class Orogeny:
    """Folding stress accumulated by a field at a convergent continental boundary."""

    SERIALIZABLE_PROPS = (("maxFoldingStress", "max_folding_stress"),)

    def __init__(self, field: "Field"):
        self.field = field
        self.max_folding_stress = 0.0

    def serialize(self) -> dict[str, Any]:
        return serialize_props(self, self.SERIALIZABLE_PROPS)

    @classmethod
    def deserialize(cls, props: dict[str, Any], field: "Field") -> "Orogeny":
        return deserialize_props(cls(field), cls.SERIALIZABLE_PROPS, props)

    def set_collision(self, other: "Field") -> None:
        self.calc_folding_stress(self.field.force)
        # Spread stress on both sides of the boundary: the denser plate pushes it onto the lighter one.
        if self.field.density > other.density and other.orogeny is not None:
            other.orogeny.set_folding_stress(self.max_folding_stress)

    def calc_folding_stress(self, force: np.ndarray | None) -> None:
        if force is None:
            return
        stress = min(1.0, float(np.linalg.norm(force)) * FOLDING_STRESS_FACTOR / self.field.area)
        self.set_folding_stress(stress)

    def set_folding_stress(self, folding_stress: float) -> None:
        if self.max_folding_stress < folding_stress:
            self.max_folding_stress = folding_stress
            self.spread_folding_stress()

    def spread_folding_stress(self) -> None:
        adj_stress = self.max_folding_stress - self.field.grid.field_diameter * STRESS_SPREADING_FACTOR
        if adj_stress < MIN_SPREAD_STRESS:
            return
        for neighbour in self.field.neighbours():
            if neighbour.oceanic_crust:
                continue
            if neighbour.orogeny is None:
                neighbour.orogeny = Orogeny(neighbour)
            neighbour.orogeny.set_folding_stress(adj_stress)
