"""Texture synthesis: turn a composited canvas into finished, mirrored surfaces."""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from garmentprint.color_space import rgb_to_hex
from garmentprint.decomposer import decompose, generate_alpha_map, merge_alpha_maps, tile_to_size
from garmentprint.image_io import to_pil
from garmentprint.materials import FinishAssetPool, Material, ResourceArena, Surface
from garmentprint.types import RGB, FinishKind, ImageArray, PlacementConfig

logger = logging.getLogger(__name__)


class FinishAssignments:
    """Palette color -> finish kind, matched by hex ignoring case and '#'."""

    def __init__(self, entries: Optional[Dict[str, FinishKind]] = None):
        self._entries: Dict[str, Tuple[str, FinishKind]] = {}
        for color, kind in (entries or {}).items():
            self.set(color, kind)

    @staticmethod
    def _key(color: str) -> str:
        return color.strip().lstrip("#").lower()

    def set(self, color: str, kind) -> None:
        self._entries[self._key(color)] = (color, FinishKind.parse(kind))

    def get(self, color: str) -> FinishKind:
        entry = self._entries.get(self._key(color))
        return entry[1] if entry else FinishKind.MATTE

    def clear(self) -> None:
        self._entries.clear()

    def replace(self, entries: Dict[str, FinishKind]) -> None:
        self.clear()
        for color, kind in entries.items():
            self.set(color, kind)

    def copy(self) -> "FinishAssignments":
        clone = FinishAssignments()
        clone._entries = dict(self._entries)
        return clone

    def to_list(self) -> List[dict]:
        return [{"color": color, "textureOption": kind.value} for color, kind in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, color: str) -> bool:
        return self._key(color) in self._entries


@dataclass
class SynthesisResult:
    """Surfaces produced by one synthesis pass, plus the arena that owns them."""
    arena: ResourceArena
    surfaces: List[Surface] = field(default_factory=list)
    techpack_surfaces: List[Surface] = field(default_factory=list)
    parts: List[ImageArray] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)


class TextureSynthesizer:
    """
    Builds per-color surfaces from a composited canvas.

    Each call allocates a fresh ResourceArena. Callers hand results back
    through `release()` when they are replaced, which disposes the arena.
    """

    def __init__(self, assets: Optional[FinishAssetPool] = None, config: Optional[PlacementConfig] = None):
        self.assets = assets or FinishAssetPool.procedural()
        self.config = config or PlacementConfig()
        self._live: List[ResourceArena] = []

    @property
    def live_arenas(self) -> int:
        return len(self._live)

    def _new_arena(self, label: str) -> ResourceArena:
        arena = ResourceArena(label)
        self._live.append(arena)
        return arena

    def release(self, result: Optional[SynthesisResult]) -> None:
        """Dispose the resources of a result that is being replaced."""
        if result is None:
            return
        result.arena.dispose()
        self._live = [a for a in self._live if a is not result.arena]

    def preview(
        self,
        composite: ImageArray,
        target: str,
        techpack_target: str,
        repeat: Tuple[float, float],
    ) -> SynthesisResult:
        """Single unlit surface straight from the composite, shown while edits settle."""
        arena = self._new_arena(f"{target}:preview")
        texture = arena.texture(composite, repeat, name=f"{target}_preview")
        material = arena.material(FinishKind.MATTE, shading="basic", map=texture, transparent=True)
        surface = Surface(name=f"boundary_preview_{target}", target=target, material=material)
        return SynthesisResult(arena=arena, surfaces=[surface], techpack_surfaces=[surface.mirrored(techpack_target)])

    def synthesize(
        self,
        composite: ImageArray,
        palette: Sequence[RGB],
        assignments: FinishAssignments,
        target: str,
        techpack_target: str,
        repeat: Tuple[float, float],
        show_original: bool = False,
        parts: Optional[List[ImageArray]] = None,
    ) -> SynthesisResult:
        """
        Produce the final surfaces for one boundary.

        Args:
            composite: High-resolution RGBA canvas
            palette: Palette colors, one surface each
            assignments: Finish per palette color
            target: Boundary mesh name
            techpack_target: Tech-pack mesh name
            repeat: Texture repeat/flip of the boundary
            show_original: Emit a single surface from the composite instead
            parts: Layers already decomposed from the composite, one per
                palette color; decomposed here when omitted

        Returns:
            SynthesisResult whose tech-pack surfaces share the live materials
        """
        arena = self._new_arena(target)
        result = SynthesisResult(arena=arena)

        if show_original or len(palette) == 0:
            texture = arena.texture(composite, repeat, name=f"{target}_original")
            material = arena.material(FinishKind.MATTE, shading="basic", map=texture, transparent=True)
            result.surfaces.append(Surface(name=f"boundary_copy_{target}_0", target=target, material=material))
        else:
            result.parts = list(parts) if parts is not None else decompose(composite, palette)
            for index, (part, rgb) in enumerate(zip(result.parts, palette)):
                color = rgb_to_hex(rgb)
                kind = assignments.get(color)
                material = self._build_material(arena, kind, part, tuple(int(c) for c in rgb), repeat, f"{target}_{index}")
                result.colors.append(color)
                result.surfaces.append(
                    Surface(name=f"boundary_copy_{target}_{index}", target=target, material=material, color=color)
                )

        result.techpack_surfaces = [s.mirrored(techpack_target) for s in result.surfaces]
        logger.info(f"Synthesized {len(result.surfaces)} surface(s) for {target}")
        return result

    def _build_material(
        self,
        arena: ResourceArena,
        kind: FinishKind,
        part: ImageArray,
        rgb: RGB,
        repeat: Tuple[float, float],
        name: str,
    ) -> Material:
        if kind == FinishKind.METALLIC:
            return self._metallic(arena, part, rgb, repeat, name)
        if kind == FinishKind.GLITTER:
            return self._glitter(arena, part, rgb, repeat, name)
        if kind == FinishKind.CRYSTALS:
            return self._crystals(arena, part, rgb, repeat, name)
        return self._matte(arena, part, repeat, name)

    def _detail_repeat(self, repeat: Tuple[float, float]) -> Tuple[float, float]:
        factor = self.config.detail_repeat
        return (repeat[0] * factor, repeat[1] * factor)

    def _matte(self, arena, part, repeat, name) -> Material:
        texture = arena.texture(part, repeat, name=name)
        return arena.material(FinishKind.MATTE, shading="basic", map=texture, alpha_test=0.5, transparent=True)

    def _metallic(self, arena, part, rgb, repeat, name) -> Material:
        texture = arena.texture(part, repeat, name=name)
        return arena.material(
            FinishKind.METALLIC,
            shading="standard",
            color=rgb,
            map=texture,
            metalness=0.7,
            roughness=0.35,
            emissive=rgb,
            emissive_intensity=0.25,
        )

    def _glitter(self, arena, part, rgb, repeat, name) -> Material:
        detail = self._detail_repeat(repeat)
        roughness = arena.texture(self.assets.glitter_roughness, detail, name=f"{name}_glitter_roughness")
        normal = arena.texture(self.assets.glitter_normal, detail, name=f"{name}_glitter_normal")
        alpha = arena.texture(generate_alpha_map(part), repeat, name=f"{name}_alpha")
        return arena.material(
            FinishKind.GLITTER,
            shading="standard",
            map=roughness,
            roughness_map=roughness,
            normal_map=normal,
            alpha_map=alpha,
            metalness=0.8,
            roughness=0.9,
            emissive=rgb,
            emissive_intensity=0.25,
        )

    def _crystals(self, arena, part, rgb, repeat, name) -> Material:
        detail = self._detail_repeat(repeat)
        height, width = part.shape[:2]
        factor = self.config.detail_repeat
        cell = (max(1, int(math.ceil(width / factor))), max(1, int(math.ceil(height / factor))))
        crystal_alpha = np.array(to_pil(self.assets.crystal_alpha).resize(cell, Image.NEAREST))
        merged = merge_alpha_maps(generate_alpha_map(part), tile_to_size(crystal_alpha, height, width))

        texture = arena.texture(part, repeat, name=name)
        normal = arena.texture(self.assets.crystal_normal, detail, name=f"{name}_crystal_normal")
        alpha = arena.texture(merged, repeat, name=f"{name}_alpha")
        return arena.material(
            FinishKind.CRYSTALS,
            shading="standard",
            color=rgb,
            map=texture,
            normal_map=normal,
            alpha_map=alpha,
            metalness=0.7,
            roughness=0.35,
            emissive=rgb,
            emissive_intensity=0.25,
        )
