from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import numpy as np

from ...errors import InvariantViolation, SimulationError
from ...models import SimulationConfig
from .field import FieldType
from .grid import Grid, build_grid
from .plate import Plate

logger = logging.getLogger(__name__)


class StepPhase(str, Enum):
    rotate = "rotate"
    collide = "collide"
    process = "process"


class Model:
    """
    Ordered plates plus the step counter.

    A step is three barrier-separated phases: every plate rotates, then every
    ordered plate pair is checked for collisions (and forces are integrated),
    then every field runs its geological processes against the final
    collision state of the step.
    """

    def __init__(self, config: SimulationConfig, grid: Grid | None = None, step_idx: int = 0):
        self.config = config
        self.grid = grid if grid is not None else build_grid(
            config.subdivisions, config.lookupWidth, config.optimizedCollisions
        )
        self.plates: list[Plate] = []
        self.step_idx = step_idx
        self.rng = np.random.default_rng(config.seed)
        self.last_phase: StepPhase | None = None
        self._registry: dict[int, Plate] = {}

    def __repr__(self) -> str:
        return f"Model(step_idx={self.step_idx}, plates={len(self.plates)})"

    def add_plate(self, plate: Plate) -> Plate:
        if plate.id in self._registry:
            raise ValueError(f"Duplicate plate id: {plate.id}")
        plate.registry = self._registry
        self._registry[plate.id] = plate
        self.plates.append(plate)
        return plate

    def get_plate(self, plate_id: int) -> Plate:
        plate = self._registry.get(plate_id)
        if plate is None:
            raise ValueError(f"Unknown plate id: {plate_id}")
        return plate

    def get_field(self, plate_id: int, field_id: int):
        field = self.get_plate(plate_id).fields.get(field_id)
        if field is None:
            raise ValueError(f"Unknown field id {field_id} on plate {plate_id}")
        return field

    def create_plate(self, **props: Any) -> Plate:
        return self.add_plate(Plate(grid=self.grid, config=self.config, **props))

    @property
    def field_count(self) -> int:
        return sum(plate.size for plate in self.plates)

    # Phases

    def rotate_plates(self, timestep: float) -> None:
        for plate in self.plates:
            plate.rotate(timestep)
        self.last_phase = StepPhase.rotate

    def handle_collisions(self, timestep: float) -> dict[tuple[int, int], dict[int, str]]:
        for plate in self.plates:
            plate.update_fields()
        result: dict[tuple[int, int], dict[int, str]] = {}
        for plate in self.plates:
            for other in self.plates:
                if plate is not other:
                    result[(plate.id, other.id)] = plate.detect_collision_with(other)
        if self.config.integrateForces:
            # All accelerations come from the same collision state.
            accelerations = [plate.angular_acceleration() for plate in self.plates]
            for plate, acceleration in zip(self.plates, accelerations):
                plate.update_velocity(timestep, acceleration)
        self.last_phase = StepPhase.collide
        return result

    def perform_geological_processes(self, timestep: float, rng: np.random.Generator | None = None) -> int:
        # Snapshot first: detachment moves fields between plates during the loop.
        fields = [field for plate in self.plates for field in plate.all_fields()]
        for field in fields:
            if field.alive:
                field.perform_geological_processes(timestep, rng)
        removed = sum(plate.remove_dead_fields() for plate in self.plates)
        if removed:
            logger.debug("Step %d: removed %d subducted fields", self.step_idx, removed)
        self.last_phase = StepPhase.process
        return removed

    def generate_new_fields(self) -> int:
        """Fills grid cells left uncovered by diverging plates with fresh oceanic crust."""
        if not self.plates:
            return 0
        owner = np.full(self.grid.size, -1, dtype=np.int64)
        for idx, plate in enumerate(self.plates):
            if plate.fields:
                owner[self.grid.nearest_field_ids(plate.absolute_positions())] = idx
        created = 0
        for cell_id in np.flatnonzero(owner < 0):
            counts: dict[int, int] = {}
            for adj_id in self.grid.neighbours(int(cell_id)):
                plate_idx = int(owner[adj_id])
                if plate_idx >= 0:
                    counts[plate_idx] = counts.get(plate_idx, 0) + 1
            if not counts:
                continue
            plate = self.plates[max(sorted(counts), key=lambda idx: counts[idx])]
            local_id = self.grid.nearest_field_id(plate.local_pos(self.grid.position(int(cell_id))), exact=True)
            if local_id in plate.fields:
                continue
            plate.create_field(local_id, type=FieldType.ocean, age=0.0)
            created += 1
        if created:
            logger.debug("Step %d: generated %d new oceanic fields", self.step_idx, created)
        return created

    def check_invariants(self) -> None:
        owners: dict[int, int] = {}
        for plate in self.plates:
            plate.check_invariants()
            for field in plate.all_fields():
                previous = owners.setdefault(id(field), plate.id)
                if previous != plate.id:
                    raise InvariantViolation(f"{field!r} is owned by plates {previous} and {plate.id}")

    def step(self, timestep: float | None = None) -> None:
        if timestep is None:
            timestep = self.config.timestep
        self.last_phase = None
        try:
            with np.errstate(invalid="raise"):
                self._run_phases(timestep)
        except FloatingPointError as exc:
            raise SimulationError(f"step {self.step_idx} failed: {exc}") from exc
        self.step_idx += 1

    def _run_phases(self, timestep: float) -> None:
        self.rotate_plates(timestep)
        self.handle_collisions(timestep)
        self.perform_geological_processes(timestep, self.rng)
        if self.config.generateNewCrust:
            self.generate_new_fields()
        if self.config.checkInvariants:
            self.check_invariants()

    # Serialization

    def serialize(self) -> dict[str, Any]:
        return {
            "config": self.config.model_dump(mode="json"),
            "stepIdx": self.step_idx,
            "plates": [plate.serialize() for plate in self.plates],
            "rngState": self.rng.bit_generator.state,
        }

    @classmethod
    def deserialize(
        cls, props: dict[str, Any], config: SimulationConfig | None = None, grid: Grid | None = None
    ) -> "Model":
        if config is None:
            config = SimulationConfig.model_validate(props["config"])
        model = cls(config, grid=grid, step_idx=props.get("stepIdx", 0))
        for plate_props in props.get("plates", []):
            model.add_plate(Plate.deserialize(plate_props, model.grid, config))
        if "rngState" in props:
            model.rng.bit_generator.state = props["rngState"]
        return model
