from __future__ import annotations

import logging
import math
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

import numpy as np

from ...errors import InvariantViolation
from .earthquake import Earthquake
from .forces import basic_drag, orogenic_drag
from .orogeny import Orogeny
from .serialization import deserialize_props, serialize_props
from .subduction import Subduction
from .vectors import set_length
from .volcanic import VolcanicActivity, VolcanicEruption

if TYPE_CHECKING:
    from ...models import SimulationConfig
    from .grid import Grid
    from .plate import Plate

logger = logging.getLogger(__name__)

# A continent splitting along a divergent boundary thins down to this value before oceanic crust replaces it.
MIN_CONTINENTAL_CRUST_THICKNESS = 0.45
# Scales field mass so the simulation behaves well with the configured force values.
MASS_MODIFIER = 0.000005
TRENCH_ELEVATION = -1.5
TRENCH_CRUST_THICKNESS = 0.1
MOUNTAIN_ELEVATION_SCALE = 0.4
LITHOSPHERE_THICKNESS = 0.7


class FieldType(str, Enum):
    ocean = "ocean"
    continent = "continent"
    island = "island"

    @property
    def continental_crust(self) -> bool:
        return self is not FieldType.ocean

    @property
    def default_elevation(self) -> float:
        # Sea level is 0.5.
        return 0.0 if self is FieldType.ocean else 0.55

    def default_crust_thickness(self, base_elevation: float) -> float:
        return 0.2 if self is FieldType.ocean else base_elevation


class CollisionType(str, Enum):
    orogeny = "orogeny"
    subduction = "subduction"
    overriding = "overriding"


def classify_collision(field: "Field", other: "Field") -> CollisionType:
    """Decides what happens to `field` when it overlaps `other` from another plate."""
    if field.continental_crust and other.continental_crust:
        return CollisionType.orogeny
    if field.oceanic_crust and other.continental_crust:
        # Shelf next to a continent can't be dragged under another continent.
        return CollisionType.orogeny if field.continent_buffer else CollisionType.subduction
    if field.continental_crust and other.oceanic_crust:
        return CollisionType.orogeny if other.continent_buffer else CollisionType.overriding
    if field.density > other.density:
        return CollisionType.subduction
    if field.density < other.density:
        return CollisionType.overriding
    return CollisionType.orogeny


class Field:
    """
    One grid cell owned by a plate.

    Derived quantities (elevation, crust thickness, mass, force) are computed
    from the current state on every access. Overlays are optional and at most
    one instance of each kind is attached at a time.
    """

    SERIALIZABLE_PROPS = (
        ("id", "id"),
        ("boundary", "boundary"),
        ("age", "age"),
        ("type", "type"),
        ("baseElevation", "base_elevation"),
        ("baseCrustThickness", "base_crust_thickness"),
        ("trench", "trench"),
        ("marked", "marked"),
        ("originalHue", "original_hue"),
    )

    def __init__(
        self,
        *,
        id: int,
        plate: "Plate",
        age: float = 0.0,
        type: FieldType | str = FieldType.ocean,
        elevation: float | None = None,
        crust_thickness: float | None = None,
        original_hue: int | None = None,
        marked: bool = False,
        in_subplate: bool = False,
    ):
        self.id = id
        self.plate = plate
        self.type = FieldType(type)
        self.age = age
        self.base_elevation = elevation if elevation is not None else self.default_elevation
        self.base_crust_thickness = (
            crust_thickness if crust_thickness is not None else self.type.default_crust_thickness(self.base_elevation)
        )
        self.boundary = False
        self.trench = False
        # Set when the field was moved from one plate to another; used to render the original plate color.
        self.original_hue = original_hue
        self.marked = marked
        self.in_subplate = in_subplate

        self.orogeny: Orogeny | None = None
        self.subduction: Subduction | None = None
        self.volcanic_act: VolcanicActivity | None = None
        # An active and visible eruption, not just rising magma.
        self.volcanic_eruption: VolcanicEruption | None = None
        self.earthquake: Earthquake | None = None

        # Not serialized, derived from model state every step.
        self.alive = True
        self.colliding = False
        self.dragging_plate_id: int | None = None
        self.continent_buffer = False

    def __repr__(self) -> str:
        return f"Field(id={self.id}, plate={self.plate.id}, type={self.type.value})"

    # Serialization

    def serialize(self) -> dict[str, Any]:
        props = serialize_props(self, self.SERIALIZABLE_PROPS)
        for key, overlay in (
            ("orogeny", self.orogeny),
            ("subduction", self.subduction),
            ("volcanicAct", self.volcanic_act),
            ("volcanicEruption", self.volcanic_eruption),
            ("earthquake", self.earthquake),
        ):
            if overlay is not None:
                props[key] = overlay.serialize()
        return props

    @classmethod
    def deserialize(cls, props: dict[str, Any], plate: "Plate", in_subplate: bool = False) -> "Field":
        field = cls(id=props["id"], plate=plate, in_subplate=in_subplate)
        deserialize_props(field, cls.SERIALIZABLE_PROPS, props)
        field.type = FieldType(field.type)
        if "orogeny" in props:
            field.orogeny = Orogeny.deserialize(props["orogeny"], field)
        if "subduction" in props:
            field.subduction = Subduction.deserialize(props["subduction"], field)
        if "volcanicAct" in props:
            field.volcanic_act = VolcanicActivity.deserialize(props["volcanicAct"], field)
        if "volcanicEruption" in props:
            field.volcanic_eruption = VolcanicEruption.deserialize(props["volcanicEruption"], field)
        if "earthquake" in props:
            field.earthquake = Earthquake.deserialize(props["earthquake"], field)
        return field

    def clone(self) -> "Field":
        clone = Field.deserialize(self.serialize(), self.plate, in_subplate=self.in_subplate)
        clone.dragging_plate_id = self.dragging_plate_id
        return clone

    # Environment

    @property
    def config(self) -> "SimulationConfig":
        return self.plate.config

    @property
    def grid(self) -> "Grid":
        return self.plate.grid

    @property
    def area(self) -> float:
        # km^2
        radius = self.config.earthRadiusKm
        return 4.0 * math.pi * radius * radius / self.grid.size

    @property
    def local_pos(self) -> np.ndarray:
        return self.grid.position(self.id)

    @property
    def absolute_pos(self) -> np.ndarray:
        return self.plate.rotation @ self.local_pos

    @property
    def linear_velocity(self) -> np.ndarray:
        return self.plate.linear_velocity_at(self.absolute_pos)

    def displacement(self, timestep: float) -> np.ndarray:
        return self.linear_velocity * timestep

    @property
    def density(self) -> float:
        return self.plate.density

    # Crust type

    @property
    def is_ocean(self) -> bool:
        return self.type is FieldType.ocean

    @property
    def is_continent(self) -> bool:
        return self.type is FieldType.continent

    @property
    def is_island(self) -> bool:
        return self.type is FieldType.island

    @property
    def oceanic_crust(self) -> bool:
        return self.is_ocean

    @property
    def continental_crust(self) -> bool:
        return self.type.continental_crust

    @property
    def default_elevation(self) -> float:
        return self.type.default_elevation

    @property
    def default_crust_thickness(self) -> float:
        return self.type.default_crust_thickness(self.base_elevation)

    def set_type(self, value: FieldType | str) -> None:
        self.type = FieldType(value)
        self.set_default_props()

    def set_default_props(self) -> None:
        self.base_elevation = self.default_elevation
        self.base_crust_thickness = self.default_crust_thickness
        self.orogeny = None
        self.volcanic_act = None
        self.subduction = None

    # Physics

    @property
    def mass(self) -> float:
        density = self.config.continentDensity if self.continental_crust else self.config.oceanDensity
        return MASS_MODIFIER * self.area * density

    @property
    def dragging_plate(self) -> "Plate | None":
        if self.dragging_plate_id is None:
            return None
        return self.plate.lookup_plate(self.dragging_plate_id)

    @property
    def force(self) -> np.ndarray:
        force = basic_drag(self)
        dragging_plate = self.dragging_plate
        if dragging_plate is not None:
            force = force + orogenic_drag(self, dragging_plate)
        return force

    @property
    def torque(self) -> np.ndarray:
        return np.cross(self.absolute_pos, self.force)

    # Geology

    @property
    def normalized_age(self) -> float:
        return min(1.0, self.age / self.config.max_field_age)

    @property
    def divergent_boundary_zone(self) -> bool:
        # Earthquakes happen around the oceanic ridge.
        return self.normalized_age < 0.5

    @property
    def divergent_boundary_volcanic_zone(self) -> bool:
        # Eruptions happen as close to the ridge as possible.
        return self.normalized_age < 0.2

    @property
    def subducting_field_underneath(self) -> "Field | None":
        # Only the volcanic collision record is used here; `colliding` marks any kind of collision.
        if self.volcanic_act is None:
            return None
        return self.volcanic_act.subducting_field

    @property
    def rising_magma(self) -> bool:
        return self.volcanic_act is not None and self.volcanic_act.rising_magma

    @property
    def mountain_elevation(self) -> float:
        if not self.continental_crust:
            return 0.0
        volcanic = self.volcanic_act.value if self.volcanic_act is not None else 0.0
        mountain = self.orogeny.max_folding_stress if self.orogeny is not None else 0.0
        return MOUNTAIN_ELEVATION_SCALE * max(volcanic, mountain)

    @property
    def elevation(self) -> float:
        """
        Range: [TRENCH_ELEVATION, 1]. 0.5 is sea level, [0, 1] maps the deepest
        ocean floor to the highest mountain, negative values mean subduction.
        """
        if self.trench:
            return TRENCH_ELEVATION
        modifier = 0.0
        if self.is_ocean:
            if self.subduction is not None:
                modifier = self.config.subductionMinElevation * self.subduction.progress
            elif self.normalized_age < 1:
                # age = 0 => ridge elevation, age = max => base elevation.
                modifier = (self.config.oceanicRidgeElevation - self.base_elevation) * (1 - self.normalized_age)
        else:
            modifier = self.mountain_elevation
        return min(1.0, self.base_elevation + modifier)

    @property
    def crust_thickness(self) -> float:
        if self.trench:
            return TRENCH_CRUST_THICKNESS
        if self.is_ocean:
            return self.base_crust_thickness * self.normalized_age
        # Mountain roots.
        return self.base_crust_thickness + self.mountain_elevation * 2

    @property
    def lithosphere_thickness(self) -> float:
        if self.trench:
            return TRENCH_CRUST_THICKNESS
        if self.is_ocean:
            return LITHOSPHERE_THICKNESS * self.normalized_age
        return LITHOSPHERE_THICKNESS

    @property
    def crust_can_be_stretched(self) -> bool:
        return self.is_continent and self.crust_thickness > MIN_CONTINENTAL_CRUST_THICKNESS

    # Neighbourhood

    @property
    def container(self) -> dict[int, "Field"]:
        return self.plate.subplate.fields if self.in_subplate else self.plate.fields

    @property
    def adjacent_ids(self) -> tuple[int, ...]:
        return self.grid.neighbours(self.id)

    def neighbours(self) -> list["Field"]:
        """Adjacent fields that belong to the same plate."""
        container = self.container
        result = []
        for adj_id in self.adjacent_ids:
            other = container.get(adj_id)
            if other is not None:
                result.append(other)
        return result

    def for_each_neighbour(self, callback: Callable[["Field"], None]) -> None:
        for other in self.neighbours():
            callback(other)

    def any_neighbour(self, condition: Callable[["Field"], bool]) -> bool:
        return any(condition(other) for other in self.neighbours())

    def avg_neighbour(self, getter: Callable[["Field"], float]) -> float:
        values = [getter(other) for other in self.neighbours()]
        if not values:
            return 0.0
        return sum(values) / len(values)

    def neighbours_count(self) -> int:
        return len(self.neighbours())

    def is_boundary(self) -> bool:
        container = self.container
        return any(adj_id not in container for adj_id in self.adjacent_ids)

    def neighbour_along_vector(self, direction: np.ndarray) -> "Field | None":
        pos = self.absolute_pos + set_length(direction, self.grid.field_diameter)
        return self.plate.field_at_absolute_pos(pos)

    # Step

    def kill(self) -> None:
        if self.alive:
            self.alive = False
            logger.debug("%r subducted past the maximum width", self)

    def collide_with(self, other: "Field") -> CollisionType:
        self.colliding = True
        collision = classify_collision(self, other)
        if collision is CollisionType.orogeny:
            self.dragging_plate_id = other.plate.id
            if self.orogeny is None:
                self.orogeny = Orogeny(self)
            self.orogeny.set_collision(other)
        elif collision is CollisionType.subduction:
            if self.subduction is None:
                self.subduction = Subduction(self)
            self.subduction.set_collision(other)
        else:
            if self.volcanic_act is None:
                self.volcanic_act = VolcanicActivity(self)
            self.volcanic_act.set_collision(other)
        return collision

    def reset_collisions(self) -> None:
        self.colliding = False
        self.dragging_plate_id = None
        if self.subduction is not None:
            self.subduction.reset_collision()
        if self.volcanic_act is not None:
            self.volcanic_act.reset_collision()

    def perform_geological_processes(self, timestep: float, rng: np.random.Generator | None = None) -> None:
        if self.subduction is not None:
            self.subduction.update(timestep)
            if not self.subduction.active:
                # Don't keep reverted subductions around.
                self.subduction = None
        if not self.alive:
            return

        if self.volcanic_act is not None:
            self.volcanic_act.update(timestep)
            if not self.volcanic_act.active:
                self.volcanic_act = None

        trench_possible = self.boundary and self.subducting_field_underneath is not None and self.orogeny is None
        # The trench disappears when the field stops being a boundary, or when continents collide and fold.
        self.trench = trench_possible

        if self.earthquake is not None:
            self.earthquake.update(timestep)
            if not self.earthquake.active:
                self.earthquake = None
        elif rng is not None and self.config.earthquakes and Earthquake.should_create(self, rng):
            self.earthquake = Earthquake.create(self, rng)

        if self.volcanic_eruption is not None:
            self.volcanic_eruption.update(timestep)
            if not self.volcanic_eruption.active:
                self.volcanic_eruption = None
        elif rng is not None and self.config.volcanicEruptions and VolcanicEruption.should_create(self, rng):
            self.volcanic_eruption = VolcanicEruption(self, self.config.volcanicEruptionLifespan)

        # Age is a travelled distance in fact.
        self.age += float(np.linalg.norm(self.displacement(timestep)))

    def check_invariants(self) -> None:
        if not self.alive:
            raise InvariantViolation(f"{self!r} is dead but still owned by a plate")
        if self.age < 0:
            raise InvariantViolation(f"{self!r} has negative age {self.age}")
        if self.subduction is not None and self.subduction.dist < 0:
            raise InvariantViolation(f"{self!r} has negative subduction distance {self.subduction.dist}")
        for overlay in (self.orogeny, self.subduction, self.volcanic_act, self.volcanic_eruption, self.earthquake):
            if overlay is not None and overlay.field is not self:
                raise InvariantViolation(f"{self!r} holds an overlay linked to {overlay.field!r}")
