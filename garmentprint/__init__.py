"""Boundary texture pipeline for placing artwork on garment meshes."""
from garmentprint.types import (
    FinishKind,
    PlacementState,
    Mesh,
    GeometryConstants,
    PaletteEntry,
    QuantizeResult,
    PlacementData,
    ImagePartInfo,
    QuantizeConfig,
    HullConfig,
    PlacementConfig,
    GarmentPrintError,
    GeometryError,
    ConfigurationError,
    ResourceMismatchError,
    QuantizationError,
    ImageLoadError,
    ReadinessTimeoutError,
)

__version__ = "0.1.0"

__all__ = [
    "FinishKind",
    "PlacementState",
    "Mesh",
    "GeometryConstants",
    "PaletteEntry",
    "QuantizeResult",
    "PlacementData",
    "ImagePartInfo",
    "QuantizeConfig",
    "HullConfig",
    "PlacementConfig",
    "GarmentPrintError",
    "GeometryError",
    "ConfigurationError",
    "ResourceMismatchError",
    "QuantizationError",
    "ImageLoadError",
    "ReadinessTimeoutError",
]
