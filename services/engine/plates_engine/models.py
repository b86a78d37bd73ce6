from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from .utils import utc_now_iso


class PlatePreset(str, Enum):
    voronoi = "voronoi"
    collision = "collision"


class SimulationConfig(BaseModel):
    seed: int = 42
    preset: PlatePreset = PlatePreset.voronoi
    plateCount: int = 6
    # Icosphere subdivision level: 10 * 4**n + 2 fields.
    subdivisions: int = 4
    # Width of the approximate lookup table; None picks one from the subdivision level.
    lookupWidth: int | None = None
    optimizedCollisions: bool = True
    timestep: float = 0.2

    earthRadiusKm: float = 6371.0
    oceanicRidgeWidthKm: float = 2000.0
    subductionWidthKm: float = 1800.0
    oceanicRidgeElevation: float = 0.32
    subductionMinElevation: float = -0.3
    continentDensity: float = 2.7
    oceanDensity: float = 3.0
    continentalPlateDensity: tuple[float, float] = (1.0, 1.5)
    oceanicPlateDensity: tuple[float, float] = (2.0, 3.0)

    earthquakes: bool = True
    volcanicEruptions: bool = True
    earthquakeLifespan: float = 1.5
    volcanicEruptionLifespan: float = 3.0

    integrateForces: bool = True
    generateNewCrust: bool = True
    checkInvariants: bool = True

    fieldsUpdateInterval: int = 10
    fieldsUpdateOffset: int = 0
    crossSectionUpdateInterval: int = 10
    crossSectionUpdateOffset: int = 5

    @model_validator(mode="after")
    def validate_ranges(self) -> "SimulationConfig":
        if self.subdivisions < 0 or self.subdivisions > 7:
            raise ValueError("subdivisions must be between 0 and 7")
        if self.lookupWidth is not None and (self.lookupWidth <= 0 or self.lookupWidth % 2):
            raise ValueError("lookupWidth must be a positive even number")
        if self.timestep <= 0:
            raise ValueError("timestep must be positive")
        if self.plateCount < 1 or self.plateCount > 32:
            raise ValueError("plateCount must be between 1 and 32")
        if self.oceanicRidgeWidthKm <= 0 or self.subductionWidthKm <= 0:
            raise ValueError("ridge and subduction widths must be positive")
        if self.subductionMinElevation > 0:
            raise ValueError("subductionMinElevation must not be positive")
        if self.fieldsUpdateInterval <= 0 or self.crossSectionUpdateInterval <= 0:
            raise ValueError("update intervals must be positive")
        return self

    @property
    def max_field_age(self) -> float:
        # Age is a travelled distance on the unit sphere.
        return self.oceanicRidgeWidthKm / self.earthRadiusKm

    @property
    def max_subduction_dist(self) -> float:
        return self.subductionWidthKm / self.earthRadiusKm


class RenderProps(BaseModel):
    renderBoundaries: bool = False
    renderForces: bool = False
    renderHotSpots: bool = False
    colormap: Literal["topo", "plate", "age"] = "topo"
    crossSectionPoint1: tuple[float, float] | None = None
    crossSectionPoint2: tuple[float, float] | None = None
    crossSectionPoint3: tuple[float, float] | None = None
    crossSectionPoint4: tuple[float, float] | None = None
    crossSectionSwapped: bool = False
    crossSection3d: bool = False
    showCrossSectionView: bool = False


class SessionStatus(str, Enum):
    idle = "idle"
    running = "running"
    stopped = "stopped"
    failed = "failed"


class SessionSummary(BaseModel):
    sessionId: str
    name: str
    config: SimulationConfig
    status: SessionStatus = SessionStatus.idle
    stepIdx: int = 0
    plateCount: int = 0
    fieldCount: int = 0
    createdAt: str = Field(default_factory=utc_now_iso)
    error: str | None = None


class SessionCreateRequest(BaseModel):
    name: str = Field(default="Untitled Planet")
    config: SimulationConfig = Field(default_factory=SimulationConfig)


class StepRequest(BaseModel):
    steps: int = Field(default=1, ge=1, le=1000)
    props: RenderProps = Field(default_factory=RenderProps)


class CrossSectionRequest(BaseModel):
    # (lat, lon) pairs in degrees.
    points: list[tuple[float, float]]

    @model_validator(mode="after")
    def validate_point_count(self) -> "CrossSectionRequest":
        if len(self.points) not in (2, 4):
            raise ValueError("cross-section needs two or four points")
        return self


class CrossSectionPoint(BaseModel):
    dist: float
    elevation: float
    crustThickness: float
    lithosphereThickness: float
    plateId: int
    fieldId: int
    fieldType: str
    subduction: float = 0.0


class FieldTypeRequest(BaseModel):
    type: Literal["ocean", "continent", "island"]


class SnapshotSummary(BaseModel):
    snapshotId: str
    sessionId: str
    stepIdx: int
    checksum: str
    createdAt: str = Field(default_factory=utc_now_iso)


class HeightmapExportRequest(BaseModel):
    width: int = Field(default=1024, ge=16, le=8192)
    height: int = Field(default=512, ge=8, le=4096)


class ExportArtifact(BaseModel):
    artifactId: str
    type: Literal["heightmap"] = "heightmap"
    format: Literal["png16"] = "png16"
    width: int
    height: int
    bitDepth: int = 16
    path: str
    checksum: str


class OutputResponse(BaseModel):
    stepIdx: int
    plates: list[dict[str, Any]] = Field(default_factory=list)
    crossSection: dict[str, list[CrossSectionPoint]] | None = None
