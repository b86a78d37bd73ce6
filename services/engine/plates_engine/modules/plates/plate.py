from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Iterator

import numpy as np

from ...errors import InvariantViolation, SimulationError
from .field import Field, FieldType
from .serialization import deserialize_props, serialize_props
from .vectors import IDENTITY_QUATERNION, integrate_orientation, is_degenerate_quaternion, rotation_matrix

if TYPE_CHECKING:
    from ...models import SimulationConfig
    from .grid import Grid

logger = logging.getLogger(__name__)


class HotSpot:
    """Mantle plume pushing the plate above it. Position and force are in the absolute frame."""

    SERIALIZABLE_PROPS = (
        ("position", "position"),
        ("force", "force"),
        ("lifespan", "lifespan"),
    )

    def __init__(self, position: np.ndarray, force: np.ndarray, lifespan: float):
        self.position = np.asarray(position, dtype=np.float64)
        self.force = np.asarray(force, dtype=np.float64)
        self.lifespan = lifespan

    @property
    def active(self) -> bool:
        return self.lifespan > 0

    @property
    def torque(self) -> np.ndarray:
        return np.cross(self.position, self.force)

    def update(self, timestep: float) -> None:
        self.lifespan -= timestep

    def serialize(self) -> dict[str, Any]:
        return serialize_props(self, self.SERIALIZABLE_PROPS)

    @classmethod
    def deserialize(cls, props: dict[str, Any]) -> "HotSpot":
        hot_spot = deserialize_props(cls(np.zeros(3), np.zeros(3), 0.0), cls.SERIALIZABLE_PROPS, props)
        hot_spot.position = np.asarray(hot_spot.position, dtype=np.float64)
        hot_spot.force = np.asarray(hot_spot.force, dtype=np.float64)
        return hot_spot


class Subplate:
    """
    Fields taken over from a subducting plate. They move with the parent plate,
    keep sinking with their last relative velocity and never collide.
    """

    def __init__(self, plate: "Plate"):
        self.plate = plate
        self.fields: dict[int, Field] = {}

    def __len__(self) -> int:
        return len(self.fields)

    def add(self, field: Field) -> None:
        self.fields[field.id] = field

    def remove_dead_fields(self) -> int:
        dead = [field_id for field_id, field in self.fields.items() if not field.alive]
        for field_id in dead:
            del self.fields[field_id]
        return len(dead)


class Plate:
    SERIALIZABLE_PROPS = (
        ("id", "id"),
        ("quaternion", "quaternion"),
        ("angularVelocity", "angular_velocity"),
        ("density", "density"),
        ("hue", "hue"),
    )

    def __init__(
        self,
        *,
        id: int,
        grid: "Grid",
        config: "SimulationConfig",
        density: float = 1.0,
        hue: int = 0,
        quaternion: np.ndarray | None = None,
        angular_velocity: np.ndarray | None = None,
    ):
        self.id = id
        self.grid = grid
        self.config = config
        self.density = density
        self.hue = hue
        self.angular_velocity = (
            np.zeros(3) if angular_velocity is None else np.asarray(angular_velocity, dtype=np.float64)
        )
        self.quaternion = IDENTITY_QUATERNION.copy() if quaternion is None else np.asarray(quaternion, dtype=np.float64)
        self.fields: dict[int, Field] = {}
        self.subplate = Subplate(self)
        self.hot_spot: HotSpot | None = None
        # Plates known to the model, by id. Collision records refer to other plates through it.
        self.registry: dict[int, Plate] = {id: self}

    def __repr__(self) -> str:
        return f"Plate(id={self.id}, fields={len(self.fields)})"

    @property
    def quaternion(self) -> np.ndarray:
        return self._quaternion

    @quaternion.setter
    def quaternion(self, value: np.ndarray) -> None:
        value = np.asarray(value, dtype=np.float64)
        self._quaternion = value
        self.rotation = rotation_matrix(value)

    @property
    def size(self) -> int:
        return len(self.fields)

    def lookup_plate(self, plate_id: int) -> "Plate | None":
        return self.registry.get(plate_id)

    def all_fields(self) -> Iterator[Field]:
        yield from self.fields.values()
        yield from self.subplate.fields.values()

    # Geometry

    def local_pos(self, absolute_pos: np.ndarray) -> np.ndarray:
        return self.rotation.T @ absolute_pos

    def absolute_positions(self) -> np.ndarray:
        ids = np.fromiter(self.fields.keys(), dtype=np.int64, count=len(self.fields))
        return self.grid.positions[ids] @ self.rotation.T

    def linear_velocity_at(self, absolute_pos: np.ndarray) -> np.ndarray:
        return np.cross(self.angular_velocity, absolute_pos)

    def field_at_absolute_pos(self, absolute_pos: np.ndarray) -> Field | None:
        field_id = self.grid.nearest_field_id(self.local_pos(absolute_pos))
        return self.fields.get(field_id)

    def neighbourhood(self, field_id: int, depth: int) -> list[Field]:
        """Fields of this plate reachable from `field_id` in at most `depth` adjacency hops."""
        if field_id not in self.fields:
            return []
        visited = {field_id}
        result = [self.fields[field_id]]
        queue = deque([(field_id, 0)])
        while queue:
            current, dist = queue.popleft()
            if dist >= depth:
                continue
            for adj_id in self.grid.neighbours(current):
                if adj_id in visited or adj_id not in self.fields:
                    continue
                visited.add(adj_id)
                result.append(self.fields[adj_id])
                queue.append((adj_id, dist + 1))
        return result

    # Ownership

    def add_field(self, field: Field) -> None:
        field.plate = self
        field.in_subplate = False
        self.fields[field.id] = field

    def create_field(self, field_id: int, **props: Any) -> Field:
        field = Field(id=field_id, plate=self, **props)
        self.fields[field_id] = field
        return field

    def remove_field(self, field: Field) -> None:
        container = self.subplate.fields if field.in_subplate else self.fields
        if container.get(field.id) is field:
            del container[field.id]

    def add_to_subplate(self, field: Field) -> None:
        old_plate = field.plate
        absolute_pos = field.absolute_pos
        old_plate.remove_field(field)
        new_id = self.grid.nearest_field_id(self.local_pos(absolute_pos), exact=True)
        if new_id in self.subplate.fields:
            # The slot is taken by another sinking field; the slab merges.
            field.kill()
            logger.debug("Field %d of plate %d merged into subplate of plate %d", field.id, old_plate.id, self.id)
            return
        if field.original_hue is None:
            field.original_hue = old_plate.hue
        field.id = new_id
        field.plate = self
        field.in_subplate = True
        field.boundary = False
        field.trench = False
        self.subplate.add(field)
        logger.debug("Field %d moved from plate %d to subplate of plate %d", new_id, old_plate.id, self.id)

    def remove_dead_fields(self) -> int:
        dead = [field_id for field_id, field in self.fields.items() if not field.alive]
        for field_id in dead:
            del self.fields[field_id]
        return len(dead) + self.subplate.remove_dead_fields()

    # Step

    def rotate(self, timestep: float) -> None:
        quaternion = integrate_orientation(self.quaternion, self.angular_velocity, timestep)
        if is_degenerate_quaternion(quaternion) or not np.all(np.isfinite(self.angular_velocity)):
            raise SimulationError(f"plate {self.id} orientation became degenerate: {quaternion.tolist()}")
        self.quaternion = quaternion

    def update_fields(self) -> None:
        for field in self.fields.values():
            field.boundary = field.is_boundary()
            field.continent_buffer = field.oceanic_crust and field.any_neighbour(lambda other: other.continental_crust)
            field.reset_collisions()

    def boundary_fields(self) -> list[Field]:
        return [field for field in self.fields.values() if field.boundary]

    def collision_candidates(self) -> list[Field]:
        # Boundary fields plus the ring right behind an active slab, so subduction can advance inland.
        candidates = {field.id: field for field in self.fields.values() if field.boundary}
        for field in self.fields.values():
            if field.subduction is None:
                continue
            for neighbour in field.neighbours():
                candidates.setdefault(neighbour.id, neighbour)
        return [candidates[field_id] for field_id in sorted(candidates)]

    def detect_collision_with(self, other: "Plate") -> dict[int, str]:
        """Classifies every candidate field overlapping `other`. Returns field id -> collision type."""
        result: dict[int, str] = {}
        for field in self.collision_candidates():
            other_field = other.field_at_absolute_pos(field.absolute_pos)
            if other_field is None:
                continue
            result[field.id] = field.collide_with(other_field).value
        return result

    def hot_spot_torque(self) -> np.ndarray:
        if self.hot_spot is None or not self.hot_spot.active:
            return np.zeros(3)
        if self.field_at_absolute_pos(self.hot_spot.position) is None:
            return np.zeros(3)
        return self.hot_spot.torque

    def total_torque(self) -> np.ndarray:
        torque = np.zeros(3)
        for field in self.fields.values():
            torque += field.torque
        return torque + self.hot_spot_torque()

    def inertia_tensor(self) -> np.ndarray:
        tensor = np.zeros((3, 3))
        identity = np.eye(3)
        for field in self.fields.values():
            pos = field.absolute_pos
            tensor += field.mass * (float(np.dot(pos, pos)) * identity - np.outer(pos, pos))
        return tensor

    def angular_acceleration(self) -> np.ndarray:
        if not self.fields:
            return np.zeros(3)
        # Small plates can have a singular tensor, pinv handles that.
        return np.linalg.pinv(self.inertia_tensor()) @ self.total_torque()

    def update_velocity(self, timestep: float, angular_acceleration: np.ndarray | None = None) -> None:
        if angular_acceleration is None:
            angular_acceleration = self.angular_acceleration()
        self.angular_velocity = self.angular_velocity + angular_acceleration * timestep
        if self.hot_spot is not None:
            self.hot_spot.update(timestep)
            if not self.hot_spot.active:
                self.hot_spot = None

    def check_invariants(self) -> None:
        for container, in_subplate in ((self.fields, False), (self.subplate.fields, True)):
            for field_id, field in container.items():
                if field.plate is not self or field.id != field_id or field.in_subplate != in_subplate:
                    raise InvariantViolation(f"{field!r} is stored under plate {self.id} slot {field_id} but points elsewhere")
                field.check_invariants()

    # Serialization

    def serialize(self) -> dict[str, Any]:
        props = serialize_props(self, self.SERIALIZABLE_PROPS)
        props["fields"] = [field.serialize() for field in self.fields.values()]
        if self.subplate.fields:
            props["subplate"] = [field.serialize() for field in self.subplate.fields.values()]
        if self.hot_spot is not None:
            props["hotSpot"] = self.hot_spot.serialize()
        return props

    @classmethod
    def deserialize(cls, props: dict[str, Any], grid: "Grid", config: "SimulationConfig") -> "Plate":
        plate = cls(id=props["id"], grid=grid, config=config)
        deserialize_props(plate, cls.SERIALIZABLE_PROPS, props)
        plate.quaternion = np.asarray(plate.quaternion, dtype=np.float64)
        plate.angular_velocity = np.asarray(plate.angular_velocity, dtype=np.float64)
        for field_props in props.get("fields", []):
            field = Field.deserialize(field_props, plate)
            plate.fields[field.id] = field
        for field_props in props.get("subplate", []):
            field = Field.deserialize(field_props, plate, in_subplate=True)
            plate.subplate.add(field)
        if "hotSpot" in props:
            plate.hot_spot = HotSpot.deserialize(props["hotSpot"])
        return plate

    def continental_ratio(self) -> float:
        if not self.fields:
            return 0.0
        continental = sum(1 for field in self.fields.values() if field.type is not FieldType.ocean)
        return continental / len(self.fields)
