from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from plates_engine.models import PlatePreset, RenderProps, SimulationConfig
from plates_engine.modules.plates import build_model, export_heightmap, get_cross_section, model_output
from plates_engine.modules.plates.output import NO_HUE, cross_section_bundle, sample_elevation


def _build_model():
    return build_model(SimulationConfig(preset=PlatePreset.collision, subdivisions=2))


def _section_props(**overrides) -> RenderProps:
    return RenderProps(
        showCrossSectionView=True,
        crossSectionPoint1=(0.0, -60.0),
        crossSectionPoint2=(0.0, 60.0),
        **overrides,
    )


def test_empty_model_output():
    assert model_output(None) == {"stepIdx": 0, "plates": []}


def test_field_columns_are_throttled():
    model = _build_model()

    first = model_output(model)
    assert all("fields" in plate for plate in first["plates"])

    model.step_idx = 3
    throttled = model_output(model)
    assert all("fields" not in plate for plate in throttled["plates"])
    assert [plate["id"] for plate in throttled["plates"]] == [0, 1]

    forced = model_output(model, forced_update=True)
    assert all("fields" in plate for plate in forced["plates"])

    model.step_idx = 10
    assert all("fields" in plate for plate in model_output(model)["plates"])


def test_cross_section_uses_its_own_offset():
    model = _build_model()
    props = _section_props()

    assert "crossSection" not in model_output(model, props)
    model.step_idx = 5
    result = model_output(model, props)
    assert "crossSection" in result
    assert all("fields" not in plate for plate in result["plates"])
    model.step_idx = 7
    assert "crossSection" in model_output(model, props, forced_update=True)


def test_field_columns_use_compact_dtypes():
    model = _build_model()
    for plate in model.plates:
        plate.update_fields()
    ocean = model.get_plate(0)
    marked = next(iter(ocean.fields.values()))
    marked.original_hue = 123
    props = RenderProps(renderBoundaries=True, renderForces=True, renderHotSpots=True, colormap="plate")

    result = model_output(model, props)
    fields = result["plates"][0]["fields"]

    assert fields["id"].dtype == np.uint32
    assert fields["elevation"].dtype == np.float32
    assert fields["boundary"].dtype == np.int8
    assert fields["forceX"].dtype == np.float32
    assert fields["originalHue"].dtype == np.int16
    assert len(fields["id"]) == ocean.size
    assert fields["originalHue"][0] == 123
    assert set(fields["originalHue"][1:].tolist()) == {NO_HUE}
    assert fields["boundary"].sum() == len(ocean.boundary_fields())
    # The ocean plate spins, so drag acts on it.
    assert np.any(fields["forceZ"] != 0) or np.any(fields["forceX"] != 0)


def test_optional_columns_are_omitted_by_default():
    model = _build_model()
    fields = model_output(model)["plates"][0]["fields"]

    assert set(fields) == {"id", "elevation"}


def test_cross_section_follows_great_circle():
    model = _build_model()

    section = get_cross_section(model, (0.0, -60.0), (0.0, 60.0))

    assert len(section) > 2
    dists = [point["dist"] for point in section]
    assert dists[0] == pytest.approx(0.0)
    assert dists == sorted(dists)
    assert dists[-1] == pytest.approx(120.0 / 180.0 * np.pi * model.config.earthRadiusKm, rel=1e-6)
    assert {point["fieldType"] for point in section} == {"ocean", "continent"}
    assert {point["plateId"] for point in section} == {0, 1}


def test_four_point_cross_section_has_all_sides():
    model = _build_model()
    points = [(10.0, -20.0), (10.0, 20.0), (-10.0, 20.0), (-10.0, -20.0)]

    bundle = cross_section_bundle(model, points)
    assert set(bundle) == {"dataFront", "dataRight", "dataBack", "dataLeft"}
    assert all(bundle[key] for key in bundle)

    swapped = cross_section_bundle(model, points[:2], swapped=True)
    assert set(swapped) == {"dataFront"}
    assert swapped["dataFront"][0]["fieldId"] == bundle["dataFront"][-1]["fieldId"]


def test_sample_elevation_covers_raster():
    model = _build_model()

    raster = sample_elevation(model, 32, 16)

    assert raster.shape == (16, 32)
    assert np.all(np.isfinite(raster))
    assert raster.max() <= 1.0


def test_export_heightmap_writes_16_bit_png(tmp_path):
    model = _build_model()
    path = export_heightmap(model, tmp_path / "heightmap.png", 64, 32)

    with Image.open(path) as image:
        assert image.size == (64, 32)
        assert image.mode in ("I;16", "I")
