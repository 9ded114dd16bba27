"""
Immutable surface descriptors and the resources behind them.

Textures, materials and surfaces are frozen and rebuilt on every synthesis
pass. Each pass allocates into its own ResourceArena; dropping a pass means
disposing its arena. Finish detail images (glitter and crystal maps) live in a
FinishAssetPool that is created once and injected where needed.
"""
import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
from scipy import ndimage

from garmentprint.image_io import load_image
from garmentprint.types import RGB, FinishKind, ImageArray, ImageLoadError

logger = logging.getLogger(__name__)

_resource_ids = itertools.count(1)


@dataclass(frozen=True, eq=False)
class Texture:
    """An image sampled with repeat wrapping."""
    image: ImageArray
    repeat: Tuple[float, float] = (1.0, 1.0)
    name: str = ""
    id: int = field(default_factory=lambda: next(_resource_ids))

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height) in pixels."""
        return (self.image.shape[1], self.image.shape[0])


@dataclass(frozen=True, eq=False)
class Material:
    """Shading parameters of one surface."""
    finish: FinishKind
    shading: str = "basic"  # "basic" ignores lighting, "standard" is metal/rough
    color: RGB = (255, 255, 255)
    map: Optional[Texture] = None
    alpha_map: Optional[Texture] = None
    normal_map: Optional[Texture] = None
    roughness_map: Optional[Texture] = None
    metalness: float = 0.0
    roughness: float = 1.0
    emissive: RGB = (0, 0, 0)
    emissive_intensity: float = 0.0
    alpha_test: float = 0.0
    opacity: float = 1.0
    transparent: bool = True
    id: int = field(default_factory=lambda: next(_resource_ids))

    @property
    def textures(self) -> List[Texture]:
        return [t for t in (self.map, self.alpha_map, self.normal_map, self.roughness_map) if t is not None]


@dataclass(frozen=True, eq=False)
class Surface:
    """A material bound to a target mesh."""
    name: str
    target: str
    material: Material
    color: Optional[str] = None  # "#rrggbb" of the palette entry, if any

    def mirrored(self, target: str) -> "Surface":
        """Same material on another mesh (the tech-pack twin)."""
        return Surface(name=f"{self.name}-techpack", target=target, material=self.material, color=self.color)


class ResourceArena:
    """Owns every texture and material allocated during one synthesis pass."""

    def __init__(self, label: str = ""):
        self.label = label
        self._textures: List[Texture] = []
        self._materials: List[Material] = []
        self.disposed = False

    def texture(self, image: ImageArray, repeat: Tuple[float, float] = (1.0, 1.0), name: str = "") -> Texture:
        self._check_live()
        texture = Texture(image=image, repeat=repeat, name=name)
        self._textures.append(texture)
        return texture

    def material(self, finish: FinishKind, **params) -> Material:
        self._check_live()
        material = Material(finish=finish, **params)
        self._materials.append(material)
        return material

    @property
    def textures(self) -> List[Texture]:
        return list(self._textures)

    @property
    def materials(self) -> List[Material]:
        return list(self._materials)

    def owns(self, resource) -> bool:
        return any(resource is r for r in itertools.chain(self._textures, self._materials))

    def __len__(self) -> int:
        return len(self._textures) + len(self._materials)

    def dispose(self) -> None:
        if self.disposed:
            return
        count = len(self)
        self._textures.clear()
        self._materials.clear()
        self.disposed = True
        logger.debug(f"Disposed arena {self.label!r} ({count} resources)")

    def _check_live(self) -> None:
        if self.disposed:
            raise RuntimeError(f"Arena {self.label!r} is already disposed")


def height_to_normal_map(height: np.ndarray, strength: float = 2.0) -> ImageArray:
    """Encode a height field as an RGBA tangent-space normal map."""
    dy, dx = np.gradient(height.astype(np.float64))
    normals = np.stack([-dx * strength, -dy * strength, np.ones_like(height, dtype=np.float64)], axis=-1)
    normals /= np.linalg.norm(normals, axis=-1, keepdims=True)
    out = np.empty(height.shape + (4,), dtype=np.uint8)
    out[..., :3] = np.round((normals * 0.5 + 0.5) * 255).astype(np.uint8)
    out[..., 3] = 255
    return out


def _gray_rgba(values: np.ndarray) -> ImageArray:
    v = np.clip(np.round(values * 255), 0, 255).astype(np.uint8)
    return np.stack([v, v, v, np.full_like(v, 255)], axis=-1)


class FinishAssetPool:
    """
    Detail images shared by every glitter and crystals material.

    Glitter uses a (normal, roughness) pair, crystals a (normal, alpha) pair.
    """

    ASSET_FILES = {
        "glitter_normal": "glitter_normal.png",
        "glitter_roughness": "glitter_roughness.png",
        "crystal_normal": "crystals_normal.png",
        "crystal_alpha": "crystals_alpha.png",
    }

    def __init__(
        self,
        glitter_normal: ImageArray,
        glitter_roughness: ImageArray,
        crystal_normal: ImageArray,
        crystal_alpha: ImageArray,
    ):
        self.glitter_normal = glitter_normal
        self.glitter_roughness = glitter_roughness
        self.crystal_normal = crystal_normal
        self.crystal_alpha = crystal_alpha

    @classmethod
    def procedural(cls, size: int = 128, seed: int = 7, flake_density: float = 0.08, cells: int = 4) -> "FinishAssetPool":
        """
        Generate detail maps without external files.

        Glitter: sparse random flakes blurred into bumps, with per-flake
        roughness variation. Crystals: a grid of hemispherical domes whose
        footprint doubles as the alpha mask.
        """
        rng = np.random.default_rng(seed)

        flakes = (rng.random((size, size)) < flake_density).astype(np.float64)
        flakes *= rng.random((size, size))
        bumps = ndimage.gaussian_filter(flakes, sigma=1.0, mode="wrap")
        bumps /= max(bumps.max(), 1e-9)
        glitter_normal = height_to_normal_map(bumps, strength=4.0)
        roughness = 0.9 - 0.6 * ndimage.maximum_filter(flakes, size=3, mode="wrap")
        glitter_roughness = _gray_rgba(roughness)

        cell = size / cells
        coords = (np.arange(size) + 0.5) % cell / cell * 2.0 - 1.0
        xx, yy = np.meshgrid(coords, coords)
        radius_sq = xx ** 2 + yy ** 2
        dome = np.sqrt(np.clip(1.0 - radius_sq / 0.81, 0.0, 1.0))
        crystal_normal = height_to_normal_map(dome, strength=6.0)
        crystal_alpha = _gray_rgba((radius_sq < 0.81).astype(np.float64))

        return cls(glitter_normal, glitter_roughness, crystal_normal, crystal_alpha)

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "FinishAssetPool":
        """
        Load detail maps from image files.

        Raises:
            ImageLoadError: If any asset is missing or unreadable
        """
        directory = Path(directory)
        images = {}
        for key, filename in cls.ASSET_FILES.items():
            path = directory / filename
            if not path.is_file():
                raise ImageLoadError(f"Finish asset not found: {path}")
            images[key] = load_image(path)
        logger.info(f"Loaded finish assets from {directory}")
        return cls(**images)
