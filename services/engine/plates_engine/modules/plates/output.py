from __future__ import annotations

import math
from pathlib import Path
from typing import Any

import numpy as np
from PIL import Image

from ...models import RenderProps
from .field import Field
from .model import Model
from .plate import Plate
from .vectors import great_circle_points, to_cartesian

# Absent original hue. Integer columns have no native missing value.
NO_HUE = -1


def should_update(step_idx: int, interval: int, offset: int) -> bool:
    return (step_idx + offset) % interval == 0


def plate_output(plate: Plate, props: RenderProps, step_idx: int, forced_update: bool) -> dict[str, Any]:
    config = plate.config
    result: dict[str, Any] = {
        "id": plate.id,
        "quaternion": plate.quaternion.copy(),
        "angularVelocity": plate.angular_velocity.copy(),
        "hue": plate.hue,
        "density": plate.density,
    }
    if props.renderHotSpots and plate.hot_spot is not None:
        result["hotSpot"] = plate.hot_spot.serialize()
    if not (forced_update or should_update(step_idx, config.fieldsUpdateInterval, config.fieldsUpdateOffset)):
        return result

    size = plate.size
    fields: dict[str, np.ndarray] = {
        "id": np.zeros(size, dtype=np.uint32),
        "elevation": np.zeros(size, dtype=np.float32),
    }
    if props.renderBoundaries:
        fields["boundary"] = np.zeros(size, dtype=np.int8)
    if props.renderForces:
        fields["forceX"] = np.zeros(size, dtype=np.float32)
        fields["forceY"] = np.zeros(size, dtype=np.float32)
        fields["forceZ"] = np.zeros(size, dtype=np.float32)
    if props.colormap == "plate":
        fields["originalHue"] = np.full(size, NO_HUE, dtype=np.int16)

    for idx, field in enumerate(plate.fields.values()):
        fields["id"][idx] = field.id
        fields["elevation"][idx] = field.elevation
        if props.renderBoundaries:
            fields["boundary"][idx] = field.boundary
        if props.renderForces:
            force = field.force
            fields["forceX"][idx] = force[0]
            fields["forceY"][idx] = force[1]
            fields["forceZ"][idx] = force[2]
        if props.colormap == "plate" and field.original_hue is not None:
            fields["originalHue"][idx] = field.original_hue
    result["fields"] = fields
    return result


def model_output(model: Model | None, props: RenderProps | None = None, forced_update: bool = False) -> dict[str, Any]:
    """
    Snapshot sent to consumers after a step. Per-field columns and the
    cross-section are throttled separately so heavy payloads are spread over
    different steps; `forced_update` bypasses both throttles.
    """
    if model is None:
        return {"stepIdx": 0, "plates": []}
    if props is None:
        props = RenderProps()
    config = model.config
    result: dict[str, Any] = {
        "stepIdx": model.step_idx,
        "plates": [plate_output(plate, props, model.step_idx, forced_update) for plate in model.plates],
    }
    if (
        props.showCrossSectionView
        and props.crossSectionPoint1 is not None
        and props.crossSectionPoint2 is not None
        and (
            forced_update
            or should_update(model.step_idx, config.crossSectionUpdateInterval, config.crossSectionUpdateOffset)
        )
    ):
        points = [props.crossSectionPoint1, props.crossSectionPoint2]
        if props.crossSection3d and props.crossSectionPoint3 is not None and props.crossSectionPoint4 is not None:
            points += [props.crossSectionPoint3, props.crossSectionPoint4]
        result["crossSection"] = cross_section_bundle(model, points, swapped=props.crossSectionSwapped)
    return result


def cross_section_bundle(
    model: Model, points: list[tuple[float, float]], swapped: bool = False
) -> dict[str, list[dict[str, Any]]]:
    if len(points) == 2:
        p1, p2 = points
        p3 = p4 = None
    else:
        p1, p2, p3, p4 = points
    if swapped:
        p1, p2 = p2, p1
        if p3 is not None:
            p3, p4 = p4, p3
    result = {"dataFront": get_cross_section(model, p1, p2)}
    if p3 is not None and p4 is not None:
        result["dataRight"] = get_cross_section(model, p2, p3)
        result["dataBack"] = get_cross_section(model, p3, p4)
        result["dataLeft"] = get_cross_section(model, p4, p1)
    return result


def _top_field(model: Model, absolute_pos: np.ndarray) -> Field | None:
    # Overlapping plates: the field that is not sinking is the visible one.
    found = []
    for plate in model.plates:
        field = plate.field_at_absolute_pos(absolute_pos)
        if field is not None:
            found.append(field)
    if not found:
        return None
    for field in found:
        if field.subduction is None:
            return field
    return found[0]


def get_cross_section(model: Model, start: tuple[float, float], end: tuple[float, float]) -> list[dict[str, Any]]:
    """Samples the visible field every half field diameter along the great circle from `start` to `end`."""
    radius = model.config.earthRadiusKm
    start_pos = to_cartesian(*start)
    step = model.grid.field_diameter * 0.5
    result = []
    for point in great_circle_points(start_pos, to_cartesian(*end), step):
        field = _top_field(model, point)
        if field is None:
            continue
        dist = math.acos(max(-1.0, min(1.0, float(np.dot(start_pos, point))))) * radius
        result.append(
            {
                "dist": dist,
                "elevation": field.elevation,
                "crustThickness": field.crust_thickness,
                "lithosphereThickness": field.lithosphere_thickness,
                "plateId": field.plate.id,
                "fieldId": field.id,
                "fieldType": field.type.value,
                "subduction": field.subduction.progress if field.subduction is not None else 0.0,
            }
        )
    return result


def sample_elevation(model: Model, width: int, height: int) -> np.ndarray:
    """Equirectangular elevation raster; cells not covered by any plate stay at 0."""
    lon = np.radians(-180.0 + (np.arange(width) + 0.5) * 360.0 / width)
    lat = np.radians(90.0 - (np.arange(height) + 0.5) * 180.0 / height)
    lon_grid, lat_grid = np.meshgrid(lon, lat)
    points = np.stack(
        [np.cos(lat_grid) * np.cos(lon_grid), np.cos(lat_grid) * np.sin(lon_grid), np.sin(lat_grid)],
        axis=-1,
    ).reshape(-1, 3)

    elevation = np.full(points.shape[0], -np.inf, dtype=np.float64)
    for plate in model.plates:
        if not plate.fields:
            continue
        lookup = np.full(model.grid.size, np.nan, dtype=np.float64)
        for field_id, field in plate.fields.items():
            lookup[field_id] = field.elevation
        # Row vectors: local = absolute @ R.
        ids = model.grid.nearest_field_ids(points @ plate.rotation)
        values = lookup[ids]
        covered = ~np.isnan(values)
        elevation[covered] = np.maximum(elevation[covered], values[covered])
    elevation[np.isinf(elevation)] = 0.0
    return elevation.reshape(height, width)


def export_heightmap(model: Model, path: Path, width: int, height: int) -> Path:
    terrain = np.clip(sample_elevation(model, width, height), 0.0, 1.0)
    arr = np.clip(terrain * 65535.0, 0, 65535).astype(np.uint16)
    image = Image.fromarray(arr)
    image.save(path, format="PNG")
    return path
