from .field import CollisionType, Field, FieldType, classify_collision
from .grid import Grid, build_grid
from .model import Model, StepPhase
from .output import export_heightmap, get_cross_section, model_output
from .plate import HotSpot, Plate, Subplate
from .presets import build_model

__all__ = [
    "CollisionType",
    "Field",
    "FieldType",
    "classify_collision",
    "Grid",
    "build_grid",
    "Model",
    "StepPhase",
    "export_heightmap",
    "get_cross_section",
    "model_output",
    "HotSpot",
    "Plate",
    "Subplate",
    "build_model",
]
