"""Core types for the boundary texture pipeline."""
import math
import warnings
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Tuple

import numpy as np

# Type aliases
ImageArray = np.ndarray  # (H, W, 4) uint8 RGBA
RGB = Tuple[int, int, int]


class FinishKind(Enum):
    """Material finish applied to one palette color."""
    MATTE = "Matte"
    METALLIC = "Metallic"
    GLITTER = "Glitter"
    CRYSTALS = "Crystals"

    @classmethod
    def parse(cls, value) -> "FinishKind":
        """Accept an enum member or its display value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        for kind in cls:
            if kind.value.lower() == str(value).lower() or kind.name.lower() == str(value).lower():
                return kind
        raise ValueError(f"Unknown finish kind: {value!r}")


class PlacementState(Enum):
    """Lifecycle of one boundary's artwork placement."""
    EMPTY = auto()
    LOADING = auto()
    EDITABLE = auto()
    LOCKED = auto()


@dataclass
class Mesh:
    """Minimal mesh description handed over by the scene collaborator."""
    name: str
    positions: np.ndarray  # (N, 3) local-space vertex positions
    uvs: np.ndarray  # (N, 2) UV coordinates
    faces: Optional[np.ndarray] = None  # (M, 3) vertex indices
    visible: bool = True

    def __post_init__(self):
        self.positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        self.uvs = np.asarray(self.uvs, dtype=np.float64).reshape(-1, 2)
        if self.faces is not None:
            self.faces = np.asarray(self.faces, dtype=np.int64).reshape(-1, 3)


@dataclass(frozen=True, eq=False)
class GeometryConstants:
    """Per-boundary constants derived once at model load."""
    aspect_ratio: float
    hull_polygon_uv: np.ndarray  # (P, 2) clip polygon in [0, 1] UV space
    uv_center: np.ndarray  # (3,) local-space bounding-box center
    surface_normal: np.ndarray  # (3,) unit vector
    uv_normal: np.ndarray  # (2,) unit vector
    bigger_side: float
    smaller_side: float

    @property
    def texture_repeat(self) -> Tuple[float, float]:
        """Repeat/flip applied to every texture mapped on this boundary."""
        sx = 1.0 if self.uv_normal[0] >= 0 else -1.0
        sy = 1.0 if self.uv_normal[1] >= 0 else -1.0
        return (sx, -sy)


@dataclass
class PaletteEntry:
    """One retained palette color and its pixel-density fraction."""
    rgb: RGB
    density: float

    @property
    def hex(self) -> str:
        return "#{:02x}{:02x}{:02x}".format(*self.rgb)


@dataclass
class QuantizeResult:
    """Output of the color quantizer."""
    pixels: ImageArray  # recolored RGBA image
    palette: List[PaletteEntry]

    @property
    def colors(self) -> np.ndarray:
        """Palette as a (K, 3) uint8 array."""
        if not self.palette:
            return np.zeros((0, 3), dtype=np.uint8)
        return np.array([entry.rgb for entry in self.palette], dtype=np.uint8)

    @property
    def densities(self) -> List[float]:
        return [entry.density for entry in self.palette]


@dataclass
class PlacementData:
    """Exported placement parameters of one boundary."""
    x_ratio: float
    y_ratio: float
    size_ratio: float
    wh_ratio: float
    rotation: float

    def to_dict(self) -> dict:
        return {
            "xRatio": self.x_ratio,
            "yRatio": self.y_ratio,
            "sizeRatio": self.size_ratio,
            "whRatio": self.wh_ratio,
            "rotation": self.rotation,
        }


@dataclass
class ImagePartInfo:
    """One decomposed color layer as reported to callers."""
    uri: str
    color: str  # "#rrggbb"
    finish_kind: FinishKind = FinishKind.MATTE

    @property
    def texture_option(self) -> FinishKind:
        return self.finish_kind


@dataclass
class QuantizeConfig:
    """Configuration for palette extraction."""
    # Palette size and filtering
    limit: int = 4
    min_density: float = 0.05

    # Pixel handling
    alpha_cutoff: int = 10
    remove_threshold: float = 2.0  # Delta E for colors_to_remove

    # Clustering
    random_state: int = 42
    max_exact_colors: int = 20000  # above this, MiniBatchKMeans is used

    def __post_init__(self):
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")
        if not 0 <= self.alpha_cutoff <= 255:
            raise ValueError(f"alpha_cutoff must be in [0, 255], got {self.alpha_cutoff}")


@dataclass
class HullConfig:
    """Configuration for deriving the UV clip polygon."""
    scale: float = 1000.0
    concavity: float = 120.0  # math.inf gives the plain convex hull
    method: str = "hull"  # "hull" or "loop"

    def __post_init__(self):
        if self.method not in ("hull", "loop"):
            raise ValueError(f"method must be 'hull' or 'loop', got {self.method!r}")
        if self.concavity <= 0:
            raise ValueError(f"concavity must be positive, got {self.concavity}")


@dataclass
class PlacementConfig:
    """Configuration for artwork placement, compositing and synthesis timing."""
    # Canvas geometry
    working_canvas_size: int = 300
    internal_canvas_ratio: int = 4
    clip_margin: int = 20

    # Interactive constraints
    min_visibility: float = 0.3
    min_scale: float = 0.02

    # Scheduling windows (seconds)
    notify_window: float = 0.3
    render_window: float = 0.02
    finalize_window: float = 2.0
    settle_delay: float = 0.1

    # Readiness
    readiness_poll: float = 0.1
    readiness_timeout: Optional[float] = 30.0

    # Finish detail tiling
    detail_repeat: float = 6.0

    # Quantization / hull settings used by boundaries
    quantize: QuantizeConfig = field(default_factory=QuantizeConfig)
    hull: HullConfig = field(default_factory=HullConfig)

    def __post_init__(self):
        if not 0.0 < self.min_visibility <= 1.0:
            raise ValueError(f"min_visibility must be in (0, 1], got {self.min_visibility}")
        if self.internal_canvas_ratio < 1:
            raise ValueError(f"internal_canvas_ratio must be >= 1, got {self.internal_canvas_ratio}")
        if self.working_canvas_size <= 2 * self.clip_margin:
            raise ValueError("working_canvas_size must exceed twice the clip margin")
        if self.finalize_window < self.render_window:
            warnings.warn(
                f"finalize_window ({self.finalize_window}s) is shorter than render_window "
                f"({self.render_window}s); every preview will trigger a full decomposition."
            )
        if self.readiness_timeout is not None and not math.isfinite(self.readiness_timeout):
            self.readiness_timeout = None

    @property
    def internal_canvas_size(self) -> int:
        return self.working_canvas_size * self.internal_canvas_ratio


class GarmentPrintError(Exception):
    """Base exception for the boundary texture pipeline."""
    pass


class GeometryError(GarmentPrintError):
    """Missing tech-pack counterpart or degenerate UV geometry."""
    pass


class ConfigurationError(GarmentPrintError):
    """Invalid tuning parameter; recovered by substituting a default."""
    pass


class ResourceMismatchError(GarmentPrintError):
    """Two images that must share dimensions do not."""
    pass


class QuantizationError(GarmentPrintError):
    """Color quantization could not run on the given pixels."""
    pass


class ImageLoadError(GarmentPrintError):
    """Artwork could not be fetched or decoded."""
    pass


class ReadinessTimeoutError(GarmentPrintError):
    """A boundary did not settle within the caller-supplied timeout."""
    pass
