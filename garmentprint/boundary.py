"""
One artwork boundary: placement, quantized artwork, synthesized surfaces and readiness.

Edits flow through three throttles. Placement changes reach the external
listener at most once per notify window. Each change re-composites the
internal canvas at most once per render window and shows it as a preview
surface. The full decomposition into finished surfaces runs once the edits
have been quiet for the finalize window; readiness is signalled a short
settle delay after that.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

import numpy as np

from garmentprint.compositor import render_internal
from garmentprint.decomposer import decompose
from garmentprint.image_io import encode_data_uri, load_image_async
from garmentprint.naming import get_display_name_if_boundary
from garmentprint.placement import ArtworkPlacementState
from garmentprint.quantizer import ColorQuantizer, to_rgba
from garmentprint.scheduling import ReadinessSignal, Throttle
from garmentprint.synthesizer import FinishAssignments, SynthesisResult, TextureSynthesizer
from garmentprint.types import (
    GeometryConstants,
    GeometryError,
    ImageArray,
    ImagePartInfo,
    Mesh,
    PaletteEntry,
    PlacementConfig,
    PlacementData,
    PlacementState,
)

logger = logging.getLogger(__name__)

ArtworkSource = Union[str, np.ndarray]
ImageLoader = Callable[[Any], Awaitable[ImageArray]]


@dataclass
class ArrowHelper:
    """Debug arrow drawn from the mesh origin."""
    direction: np.ndarray
    length: float
    color: str
    visible: bool = False


class Boundary:
    """
    A named placement region of the garment and its tech-pack twin.

    Args:
        mesh: Visible boundary mesh
        techpack_mesh: Flattened twin of the mesh
        geometry: Constants derived by the UV analysis
        synthesizer: Shared texture synthesizer
        config: Placement and timing configuration
        on_dirty: Called after every mutation that needs a re-render
        image_loader: Coroutine turning a source into RGBA pixels
        quantizer: Color quantizer (defaults to one built from config)

    Raises:
        GeometryError: If the tech-pack twin is missing
    """

    def __init__(
        self,
        mesh: Mesh,
        techpack_mesh: Mesh,
        geometry: GeometryConstants,
        synthesizer: TextureSynthesizer,
        config: Optional[PlacementConfig] = None,
        on_dirty: Optional[Callable[[], None]] = None,
        image_loader: Optional[ImageLoader] = None,
        quantizer: Optional[ColorQuantizer] = None,
    ):
        if techpack_mesh is None:
            raise GeometryError(f"could not find flat version of {mesh.name}")
        self.config = config or PlacementConfig()
        self.name = mesh.name
        self.techpack_name = techpack_mesh.name
        self.display_name = get_display_name_if_boundary(mesh.name) or mesh.name
        self.geometry = geometry
        self.synthesizer = synthesizer
        self.quantizer = quantizer or ColorQuantizer(self.config.quantize)
        self._on_dirty = on_dirty
        self._image_loader = image_loader or load_image_async

        self.placement = ArtworkPlacementState(
            geometry.aspect_ratio,
            geometry.hull_polygon_uv,
            self.config,
            on_change=self._on_placement_changed,
        )
        self.finishes = FinishAssignments()
        self.readiness = ReadinessSignal(ready=True)

        self._notify = Throttle(self._emit_artwork_changed, self.config.notify_window, name=f"{self.name}.notify")
        self._render = Throttle(self._render_canvas, self.config.render_window, name=f"{self.name}.render")
        self._finalize = Throttle(self._finalize_canvas, self.config.finalize_window, name=f"{self.name}.finalize")

        self._listener: Optional[Callable[[dict], Any]] = None
        self._source: Optional[ArtworkSource] = None
        self._artwork: Optional[ImageArray] = None
        self._palette: List[PaletteEntry] = []
        self._show_original = False
        self._composite: Optional[ImageArray] = None
        self._preview: Optional[SynthesisResult] = None
        self._result: Optional[SynthesisResult] = None
        self._revision = 0
        self._load_token = 0

        self.developer_mode = False
        self.normal_helper = ArrowHelper(geometry.surface_normal, geometry.bigger_side + 1, "yellow")
        self.uv_normal_helper = ArrowHelper(
            np.append(geometry.uv_normal, 0.0), geometry.bigger_side + 2, "purple"
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def aspect_ratio(self) -> float:
        return self.geometry.aspect_ratio

    @property
    def texture_repeat(self):
        return self.geometry.texture_repeat

    @property
    def state(self) -> PlacementState:
        return self.placement.state

    @property
    def has_artwork(self) -> bool:
        return self._artwork is not None

    @property
    def artwork_url(self) -> Optional[ArtworkSource]:
        return self._source

    @property
    def palette(self) -> List[PaletteEntry]:
        return list(self._palette)

    @property
    def composite(self) -> Optional[ImageArray]:
        return self._composite

    @property
    def is_ready_for_screenshot(self) -> bool:
        return self.readiness.is_set

    @property
    def surfaces(self):
        current = self._result or self._preview
        return list(current.surfaces) if current else []

    @property
    def techpack_surfaces(self):
        current = self._result or self._preview
        return list(current.techpack_surfaces) if current else []

    @property
    def techpack_visible(self) -> bool:
        return self.developer_mode

    # ------------------------------------------------------------------
    # Artwork lifecycle
    # ------------------------------------------------------------------

    async def add_artwork(
        self,
        url: ArtworkSource,
        x_ratio: float = 0.5,
        y_ratio: float = 0.5,
        rotation: float = 0.0,
        size_ratio: float = 1.0,
        size_ratio_limit: Optional[float] = None,
        sensitivity: Optional[float] = None,
        color_limit: Optional[int] = None,
        show_original: bool = False,
        colors_to_remove: Optional[Sequence[Sequence[int]]] = None,
        disable_editing: bool = False,
        on_artwork_changed: Optional[Callable[[dict], Any]] = None,
        min_density: Optional[float] = None,
    ) -> None:
        """
        Load, quantize and place artwork, replacing any previous placement.

        Loading and quantization finish before any state changes, so a
        failure leaves the previous artwork in place. A newer call started
        while this one is loading supersedes it; this call then returns
        without applying anything.

        Args:
            url: Path, URL, data URI or an RGBA array
            x_ratio: Center x within the clip region
            y_ratio: Center y within the clip region
            rotation: Degrees, clockwise
            size_ratio: Dominant-axis size relative to the clip region
            size_ratio_limit: Upper bound for size_ratio
            sensitivity: Minimum palette density in percent (5 -> 0.05)
            color_limit: Maximum palette size
            show_original: Skip quantization and show the artwork as-is
            colors_to_remove: RGB colors cleared from the artwork
            disable_editing: Lock the placement against interactive edits
            on_artwork_changed: Listener for coalesced placement updates
            min_density: Minimum palette density as a fraction; overrides sensitivity
        """
        self._load_token += 1
        token = self._load_token
        self._revision += 1
        self.readiness.reset()
        self.placement.begin_loading()

        try:
            pixels = await self._load(url)
            if show_original:
                artwork, palette = pixels, []
            else:
                if min_density is None and sensitivity is not None:
                    min_density = sensitivity / 100
                result = await asyncio.to_thread(
                    self.quantizer.quantize,
                    pixels,
                    limit=color_limit,
                    min_density=min_density,
                    colors_to_remove=colors_to_remove,
                )
                artwork, palette = result.pixels, result.palette
        except Exception:
            if token == self._load_token:
                self.placement.cancel_loading()
                self._restore_readiness()
            raise

        if token != self._load_token:
            logger.debug(f"{self.name}: artwork load {token} superseded by {self._load_token}")
            return

        self._cancel_pending()
        self._release_surfaces()
        self.placement.reset()
        self.finishes.clear()

        self._source = url if isinstance(url, str) else None
        self._artwork = artwork
        self._palette = list(palette)
        self._show_original = show_original
        if on_artwork_changed is not None:
            self._listener = on_artwork_changed

        height, width = artwork.shape[:2]
        self.placement.place(
            width,
            height,
            x_ratio,
            y_ratio,
            rotation,
            size_ratio,
            size_ratio_limit=size_ratio_limit,
            editable=not disable_editing,
        )
        self._revision += 1
        await self._render_canvas()
        logger.info(f"{self.name}: artwork applied with {len(self._palette)} palette colors")

    async def _load(self, source: ArtworkSource) -> ImageArray:
        if isinstance(source, np.ndarray):
            return to_rgba(source)
        return await self._image_loader(source)

    async def reset_boundary(self) -> None:
        """Drop the artwork, its finishes and every synthesized surface."""
        self._load_token += 1
        self._revision += 1
        self._cancel_pending()
        self._release_surfaces()
        self.placement.reset()
        self.finishes.clear()
        self._source = None
        self._artwork = None
        self._palette = []
        self._show_original = False
        self._composite = None
        self.readiness.set()
        self._mark_dirty()

    remove_artwork = reset_boundary

    def dispose(self) -> None:
        """Release resources without notifying; used when the model is replaced."""
        self._load_token += 1
        self._cancel_pending()
        self._release_surfaces()
        self.placement.reset()

    def set_editable(self, editable: bool) -> None:
        self.placement.set_editable(editable)

    # ------------------------------------------------------------------
    # Finishes
    # ------------------------------------------------------------------

    async def change_texture_finish(self, color: str, finish_kind) -> None:
        """Assign a finish to one palette color and re-synthesize."""
        self.finishes.set(color, finish_kind)
        await self._resynthesize()

    async def reset_texture_finish(self) -> None:
        """Return every palette color to the default matte finish."""
        self.finishes.clear()
        await self._resynthesize()

    async def _resynthesize(self) -> None:
        if self._artwork is None:
            self._mark_dirty()
            return
        await self._render.flush()
        self._finalize.cancel()
        self._revision += 1
        self.readiness.reset()
        if self._composite is None:
            self._composite = await asyncio.to_thread(
                render_internal, self.placement, self._artwork, self.placement.internal_transform
            )
        await self._finalize_canvas(self._revision)

    async def get_decomposed_image_parts(self) -> List[ImagePartInfo]:
        """One entry per palette color: PNG data URI, hex color and assigned finish."""
        if self._artwork is None or self._show_original:
            return []
        colors = [entry.rgb for entry in self._palette]
        parts = await asyncio.to_thread(decompose, self._artwork, colors)
        return [
            ImagePartInfo(uri=encode_data_uri(part), color=entry.hex, finish_kind=self.finishes.get(entry.hex))
            for part, entry in zip(parts, self._palette)
        ]

    get_image_parts = get_decomposed_image_parts

    # ------------------------------------------------------------------
    # Interactive edits
    # ------------------------------------------------------------------

    def on_moving(self, left: float, top: float) -> bool:
        return self.placement.on_moving(left, top)

    def on_scaling(self, scale_x: float, scale_y: Optional[float] = None) -> bool:
        return self.placement.on_scaling(scale_x, scale_y)

    def on_rotating(self, angle: float) -> bool:
        return self.placement.on_rotating(angle)

    def set_placement(self, **ratios) -> bool:
        return self.placement.set_placement(**ratios)

    def center_horizontally(self) -> bool:
        return self.placement.center_horizontally()

    def center_vertically(self) -> bool:
        return self.placement.center_vertically()

    def update_listener(self, callback: Optional[Callable[[dict], Any]]) -> None:
        self._listener = callback

    def _on_placement_changed(self, data: PlacementData) -> None:
        self._notify(data)
        self._request_render()

    def _emit_artwork_changed(self, data: PlacementData):
        if self._listener is None or data is None:
            return None
        payload = {"forBoundary": self.name}
        payload.update(data.to_dict())
        return self._listener(payload)

    # ------------------------------------------------------------------
    # Rendering pipeline
    # ------------------------------------------------------------------

    def _request_render(self) -> None:
        self._revision += 1
        self.readiness.reset()
        self._render()

    async def _render_canvas(self) -> None:
        if self._artwork is None:
            return
        revision = self._revision
        artwork = self._artwork
        composite = await asyncio.to_thread(
            render_internal, self.placement, artwork, self.placement.internal_transform
        )
        # A newer edit has already queued its own render
        if revision != self._revision or artwork is not self._artwork:
            return
        self._composite = composite
        preview = self.synthesizer.preview(composite, self.name, self.techpack_name, self.texture_repeat)
        self.synthesizer.release(self._preview)
        self._preview = preview
        self._mark_dirty()
        self._finalize(revision)

    async def _finalize_canvas(self, revision: int) -> None:
        if revision != self._revision or self._composite is None:
            return
        composite = self._composite
        palette = [entry.rgb for entry in self._palette]
        parts = None
        if not self._show_original and palette:
            parts = await asyncio.to_thread(decompose, composite, palette)
            if revision != self._revision:
                return
        result = self.synthesizer.synthesize(
            composite,
            palette,
            self.finishes.copy(),
            self.name,
            self.techpack_name,
            self.texture_repeat,
            show_original=self._show_original,
            parts=parts,
        )
        self.synthesizer.release(self._result)
        self.synthesizer.release(self._preview)
        self._result = result
        self._preview = None
        self._mark_dirty()

        await asyncio.sleep(self.config.settle_delay)
        if revision == self._revision:
            self.readiness.set()
            logger.debug(f"{self.name}: ready (revision {revision})")

    def _restore_readiness(self) -> None:
        if self._artwork is not None:
            self._request_render()
        else:
            self.readiness.set()

    def _cancel_pending(self) -> None:
        self._notify.cancel()
        self._render.cancel()
        self._finalize.cancel()

    def _release_surfaces(self) -> None:
        self.synthesizer.release(self._preview)
        self.synthesizer.release(self._result)
        self._preview = None
        self._result = None

    def _mark_dirty(self) -> None:
        if self._on_dirty is not None:
            self._on_dirty()

    # ------------------------------------------------------------------
    # Readiness and export
    # ------------------------------------------------------------------

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Await the settled state; raises ReadinessTimeoutError after `timeout` seconds."""
        return await self.readiness.wait(timeout)

    async def prepare_for_screenshot(self, timeout: Optional[float] = None) -> None:
        if self.has_artwork:
            await self.wait_until_ready(timeout)

    async def export_image(self, timeout: Optional[float] = None) -> Optional[str]:
        """Composited internal canvas as a PNG data URI, once settled."""
        if not self.has_artwork:
            return None
        await self.wait_until_ready(timeout)
        return encode_data_uri(self._composite)

    def export_placement(self) -> dict:
        data = self.placement.export()
        return {"boundaryName": self.name, "data": data.to_dict() if data else None}

    def set_developer_mode(self, value: bool) -> None:
        self.developer_mode = value
        self.normal_helper.visible = value
        self._mark_dirty()
