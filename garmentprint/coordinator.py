"""Registry of boundaries for a loaded model, with bulk operations and exports."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from garmentprint.boundary import Boundary, ImageLoader
from garmentprint.image_io import encode_data_uri
from garmentprint.materials import FinishAssetPool
from garmentprint.naming import (
    get_display_name_if_changeable_group,
    is_boundary_name,
    is_techpack_changeable_group_name_valid,
    sanitize_export_name,
)
from garmentprint.scene import SceneCollaborator
from garmentprint.synthesizer import TextureSynthesizer
from garmentprint.types import GeometryError, PlacementConfig
from garmentprint.uv_region import analyze

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Naming and geometry findings for a loaded model."""
    boundaries: List[str] = field(default_factory=list)
    techpack_boundaries: List[str] = field(default_factory=list)
    layers: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def all_found(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "boundaries": list(self.boundaries),
            "techpackBoundaries": list(self.techpack_boundaries),
            "layers": list(self.layers),
            "errors": list(self.errors),
            "allFound": self.all_found,
        }


class BoundaryCoordinator:
    """
    Owns the Boundary instances of the current model.

    Lookups of unknown names return None/False rather than raising.
    """

    def __init__(
        self,
        scene: SceneCollaborator,
        config: Optional[PlacementConfig] = None,
        synthesizer: Optional[TextureSynthesizer] = None,
        assets: Optional[FinishAssetPool] = None,
        image_loader: Optional[ImageLoader] = None,
    ):
        self.scene = scene
        self.config = config or PlacementConfig()
        self.synthesizer = synthesizer or TextureSynthesizer(assets or FinishAssetPool.procedural(), self.config)
        self._image_loader = image_loader
        self._boundaries: Dict[str, Boundary] = {}
        self.load_errors: List[str] = []
        self.developer_mode = False
        self.selected: Optional[Boundary] = None
        self._listener: Optional[Callable[[dict], Any]] = None

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def boundaries(self) -> List[Boundary]:
        return list(self._boundaries.values())

    def __len__(self) -> int:
        return len(self._boundaries)

    def load_model(self) -> List[Boundary]:
        """
        Build a Boundary for every boundary mesh in the scene.

        A mesh without a tech-pack twin or with degenerate UVs is skipped and
        recorded in `load_errors`; the remaining boundaries still load.
        """
        for boundary in self._boundaries.values():
            boundary.dispose()
        self._boundaries = {}
        self.load_errors = []
        self.selected = None

        for name in self.scene.mesh_names():
            if not is_boundary_name(name):
                continue
            mesh = self.scene.find_mesh_by_name(name)
            techpack = self.scene.find_techpack_equivalent(name)
            if techpack is None:
                message = f"could not find flat version of {name}"
                logger.warning(message)
                self.load_errors.append(message)
                continue
            try:
                geometry = analyze(mesh, techpack, self.config.hull)
            except GeometryError as e:
                logger.error(f"Failed to build boundary {name}: {e}")
                self.load_errors.append(f"{name}: {e}")
                continue
            self.add_boundary(
                Boundary(
                    mesh,
                    techpack,
                    geometry,
                    self.synthesizer,
                    self.config,
                    on_dirty=self.scene.mark_dirty,
                    image_loader=self._image_loader,
                )
            )

        logger.info(f"Loaded {len(self._boundaries)} boundaries ({len(self.load_errors)} errors)")
        return self.boundaries

    def add_boundary(self, boundary: Boundary) -> Boundary:
        self._boundaries[boundary.name] = boundary
        if self.developer_mode:
            boundary.set_developer_mode(True)
        if self._listener is not None:
            boundary.update_listener(self._listener)
        return boundary

    def find_by_name(self, name: str) -> Optional[Boundary]:
        return self._boundaries.get(name)

    def find_by_techpack_name(self, techpack_name: str) -> Optional[Boundary]:
        for boundary in self._boundaries.values():
            if boundary.techpack_name == techpack_name:
                return boundary
        return None

    def validate_all_exist(self, names: Iterable[str]) -> bool:
        """True when every name refers to a loaded boundary."""
        return all(name in self._boundaries for name in names)

    # ------------------------------------------------------------------
    # Per-boundary operations
    # ------------------------------------------------------------------

    async def change_artwork(self, boundary_name: str, params: dict, disable_editing: bool = False) -> Optional[Boundary]:
        """
        Apply artwork to one boundary.

        Args:
            boundary_name: Target boundary
            params: Keyword arguments for Boundary.add_artwork (must include "url")
            disable_editing: Lock the placement against interactive edits

        Returns:
            The boundary, or None if no boundary has that name
        """
        boundary = self.find_by_name(boundary_name)
        if boundary is None:
            return None
        await boundary.add_artwork(disable_editing=disable_editing, **params)
        return boundary

    async def remove_artwork(self, boundary_name: str) -> bool:
        boundary = self.find_by_name(boundary_name)
        if boundary is None:
            return False
        await boundary.reset_boundary()
        return True

    async def apply_texture_finish(self, boundary_name: str, color: str, finish_kind) -> bool:
        boundary = self.find_by_name(boundary_name)
        if boundary is None:
            return False
        await boundary.change_texture_finish(color, finish_kind)
        return True

    async def reset_texture_finish(self, boundary_name: str) -> bool:
        boundary = self.find_by_name(boundary_name)
        if boundary is None:
            return False
        await boundary.reset_texture_finish()
        return True

    def select(self, boundary_name: str) -> Optional[Boundary]:
        self.selected = self.find_by_name(boundary_name)
        return self.selected

    def unselect(self) -> None:
        self.selected = None

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def set_developer_mode(self, value: bool) -> None:
        """Show or hide tech-pack mirrors and debug helpers on every boundary."""
        self.developer_mode = value
        for boundary in self._boundaries.values():
            boundary.set_developer_mode(value)

    def update_listener(self, callback: Optional[Callable[[dict], Any]]) -> None:
        self._listener = callback
        for boundary in self._boundaries.values():
            boundary.update_listener(callback)

    def export_all_placements(self) -> List[dict]:
        return [boundary.export_placement() for boundary in self._boundaries.values()]

    async def reset_all(self) -> None:
        await asyncio.gather(*(b.reset_boundary() for b in self._boundaries.values()))

    async def remove_all_artworks(self) -> None:
        await asyncio.gather(*(b.reset_boundary() for b in self._boundaries.values() if b.has_artwork))

    async def change_all_artworks(self, url, **params) -> None:
        """Apply the same artwork to every boundary."""
        await asyncio.gather(*(b.add_artwork(url, **params) for b in self._boundaries.values()))

    # ------------------------------------------------------------------
    # Reports and exports
    # ------------------------------------------------------------------

    def build_validation_report(
        self,
        layers: Optional[Iterable[str]] = None,
        boundaries: Optional[Iterable[str]] = None,
    ) -> ValidationReport:
        """
        Summarise what the loaded model provides.

        Args:
            layers: Changeable-group names the caller expects
            boundaries: Boundary names the caller expects

        Returns:
            ValidationReport; `all_found` is False when any entry failed
        """
        report = ValidationReport()
        names = self.scene.mesh_names()
        report.boundaries = sorted(self._boundaries)
        report.techpack_boundaries = sorted(b.techpack_name for b in self._boundaries.values())
        report.layers = sorted(
            n for n in names
            if get_display_name_if_changeable_group(n) and not is_techpack_changeable_group_name_valid(n)
        )
        report.errors.extend(self.load_errors)

        for name in boundaries or []:
            if name not in self._boundaries:
                report.errors.append(f"could not find boundary {name}")
        for name in layers or []:
            if name not in report.layers:
                report.errors.append(f"could not find layer {name}")
            elif self.scene.find_techpack_equivalent(name) is None:
                report.errors.append(f"could not find flat version of {name}")
        return report

    async def export_techpack(self, timeout: Optional[float] = None) -> List[dict]:
        """
        Images for the tech-pack document.

        Waits for every boundary with artwork to settle, then returns
        `{"name", "image"}` entries: "whole" first when the scene can render
        the flattened garment, then one per boundary named by its sanitised
        display name.

        Raises:
            ReadinessTimeoutError: If a boundary does not settle within `timeout`
        """
        timeout = self.config.readiness_timeout if timeout is None else timeout
        with_artwork = [b for b in self._boundaries.values() if b.has_artwork]
        await asyncio.gather(*(b.prepare_for_screenshot(timeout) for b in with_artwork))

        entries = []
        whole = self.scene.render_techpack()
        if whole is not None:
            entries.append({"name": "whole", "image": encode_data_uri(whole)})
        for boundary in with_artwork:
            image = await boundary.export_image(timeout)
            entries.append({"name": sanitize_export_name(boundary.display_name), "image": image})
        logger.info(f"Exported {len(entries)} tech-pack images")
        return entries
