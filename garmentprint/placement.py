"""
Artwork placement state for one boundary.

Placement is expressed as ratios of the clip region (center position,
dominant-axis size, rotation) and realised on two canvases at once: a
small working canvas that receives interactive edits and a larger
internal canvas used for compositing. The internal transform is always
the working transform scaled by `internal_canvas_ratio`.
"""
import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

import numpy as np

from garmentprint.types import PlacementConfig, PlacementData, PlacementState

logger = logging.getLogger(__name__)

Rect = Tuple[float, float, float, float]  # (left, top, right, bottom)


@dataclass(frozen=True)
class CanvasLayout:
    """Canvas size and the centered clip rectangle inside it."""
    canvas_width: float
    canvas_height: float
    clip_width: float
    clip_height: float
    width_padding: float
    height_padding: float

    @property
    def clip_rect(self) -> Rect:
        return (
            self.width_padding,
            self.height_padding,
            self.width_padding + self.clip_width,
            self.height_padding + self.clip_height,
        )

    def scaled(self, factor: float) -> "CanvasLayout":
        return CanvasLayout(
            canvas_width=self.canvas_width * factor,
            canvas_height=self.canvas_height * factor,
            clip_width=self.clip_width * factor,
            clip_height=self.clip_height * factor,
            width_padding=self.width_padding * factor,
            height_padding=self.height_padding * factor,
        )

    def clip_polygon(self, hull_uv: Optional[np.ndarray]) -> np.ndarray:
        """
        Map a UV polygon onto the clip rectangle.

        The polygon is normalised to its own bounding box, stretched over the
        clip rectangle and flipped vertically (UV v grows upwards, canvas y
        grows downwards). Without a polygon the clip rectangle itself is used.
        """
        left, top, right, bottom = self.clip_rect
        if hull_uv is None or len(hull_uv) < 3:
            return np.array([[left, top], [right, top], [right, bottom], [left, bottom]], dtype=np.float64)
        hull_uv = np.asarray(hull_uv, dtype=np.float64)
        lo = hull_uv.min(axis=0)
        span = hull_uv.max(axis=0) - lo
        span[span == 0] = 1.0
        unit = (hull_uv - lo) / span
        xs = left + unit[:, 0] * self.clip_width
        ys = top + (1.0 - unit[:, 1]) * self.clip_height
        return np.stack([xs, ys], axis=1)


def compute_layout(canvas_width: float, canvas_height: float, aspect_ratio: float, margin: float = 20) -> CanvasLayout:
    """
    Fit a clip rectangle of the given width/height ratio inside a canvas.

    The rectangle spans the canvas minus `margin` along its limiting axis;
    the other axis is derived from the ratio and floored to whole units.
    """
    if aspect_ratio <= 0:
        raise ValueError(f"aspect_ratio must be positive, got {aspect_ratio}")
    if aspect_ratio > canvas_width / canvas_height:
        clip_width = canvas_width - margin
        clip_height = math.floor((canvas_width - margin) / aspect_ratio)
    else:
        clip_width = math.floor((canvas_height - margin) * aspect_ratio)
        clip_height = canvas_height - margin
    return CanvasLayout(
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        clip_width=clip_width,
        clip_height=clip_height,
        width_padding=(canvas_width - clip_width) / 2,
        height_padding=(canvas_height - clip_height) / 2,
    )


@dataclass(frozen=True)
class ArtworkTransform:
    """Center-origin transform of the artwork image on a canvas."""
    left: float
    top: float
    scale_x: float
    scale_y: float
    angle: float  # degrees, clockwise
    width: int  # natural image size
    height: int

    @property
    def scaled_width(self) -> float:
        return self.width * self.scale_x

    @property
    def scaled_height(self) -> float:
        return self.height * self.scale_y

    def bounding_rect(self) -> Rect:
        """Axis-aligned bounds of the rotated, scaled image."""
        theta = math.radians(self.angle)
        cos, sin = abs(math.cos(theta)), abs(math.sin(theta))
        w, h = self.scaled_width, self.scaled_height
        half_w = (w * cos + h * sin) / 2
        half_h = (w * sin + h * cos) / 2
        return (self.left - half_w, self.top - half_h, self.left + half_w, self.top + half_h)

    def scaled_by(self, factor: float) -> "ArtworkTransform":
        return replace(
            self,
            left=self.left * factor,
            top=self.top * factor,
            scale_x=self.scale_x * factor,
            scale_y=self.scale_y * factor,
        )


def overlap_fraction(rect: Rect, clip: Rect) -> float:
    """Fraction of `rect`'s area that lies inside `clip`."""
    area = (rect[2] - rect[0]) * (rect[3] - rect[1])
    if area <= 0:
        return 0.0
    ix = max(0.0, min(rect[2], clip[2]) - max(rect[0], clip[0]))
    iy = max(0.0, min(rect[3], clip[3]) - max(rect[1], clip[1]))
    return (ix * iy) / area


class ArtworkPlacementState:
    """
    Owns one boundary's placement and mediates interactive edits.

    Interactive handlers (`on_moving`, `on_scaling`, `on_rotating`) enforce
    the minimum-visibility constraint and report whether the proposal was
    accepted. Programmatic setters apply values as given.
    """

    def __init__(
        self,
        aspect_ratio: float,
        hull_polygon_uv: Optional[np.ndarray] = None,
        config: Optional[PlacementConfig] = None,
        on_change: Optional[Callable[[PlacementData], None]] = None,
    ):
        self.config = config or PlacementConfig()
        self.aspect_ratio = aspect_ratio
        self.on_change = on_change
        self.working_layout = compute_layout(
            self.config.working_canvas_size,
            self.config.working_canvas_size,
            aspect_ratio,
            self.config.clip_margin,
        )
        self.internal_layout = self.working_layout.scaled(self.config.internal_canvas_ratio)
        self.working_clip_polygon = self.working_layout.clip_polygon(hull_polygon_uv)
        self.internal_clip_polygon = self.working_clip_polygon * self.config.internal_canvas_ratio
        self._clear()

    def _clear(self) -> None:
        self.state = PlacementState.EMPTY
        self._settled_state = PlacementState.EMPTY
        self.x_ratio = 0.5
        self.y_ratio = 0.5
        self.size_ratio = 1.0
        self.rotation = 0.0
        self.size_ratio_limit: Optional[float] = None
        self.use_width_to_scale = False
        self._transform: Optional[ArtworkTransform] = None
        self._last_good: Optional[ArtworkTransform] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def has_artwork(self) -> bool:
        return self._transform is not None

    @property
    def is_editable(self) -> bool:
        return self.state == PlacementState.EDITABLE

    def begin_loading(self) -> None:
        self.state = PlacementState.LOADING

    def cancel_loading(self) -> None:
        """Return to the state held before loading began."""
        self.state = self._settled_state

    def reset(self) -> None:
        """Drop the placement; any state returns to EMPTY."""
        self._clear()

    def set_editable(self, editable: bool) -> None:
        if self._transform is None:
            return
        self._settled_state = PlacementState.EDITABLE if editable else PlacementState.LOCKED
        # A load in flight keeps LOADING until it settles or is cancelled
        if self.state != PlacementState.LOADING:
            self.state = self._settled_state

    def place(
        self,
        image_width: int,
        image_height: int,
        x_ratio: float,
        y_ratio: float,
        rotation: float,
        size_ratio: float,
        size_ratio_limit: Optional[float] = None,
        editable: bool = True,
    ) -> None:
        """
        Position freshly loaded artwork on both canvases.

        Args:
            image_width: Natural width of the artwork in pixels
            image_height: Natural height of the artwork in pixels
            x_ratio: Center x as a fraction of the clip width
            y_ratio: Center y as a fraction of the clip height
            rotation: Degrees, clockwise
            size_ratio: Dominant-axis size relative to the clip region
            size_ratio_limit: Upper bound for `size_ratio` (defaults to the
                ratio that lets the artwork span the larger clip side)
            editable: Whether interactive edits are accepted
        """
        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Artwork has no pixels ({image_width}x{image_height})")
        layout = self.working_layout
        self.use_width_to_scale = image_width / layout.clip_width > image_height / layout.clip_height
        if size_ratio_limit is None:
            size_ratio_limit = max(layout.clip_width, layout.clip_height) / self._scale_side
        self.size_ratio_limit = size_ratio_limit

        self.x_ratio = x_ratio
        self.y_ratio = y_ratio
        self.rotation = rotation
        self.size_ratio = min(size_ratio, size_ratio_limit)
        self._transform = self._build_transform(image_width, image_height)
        self._last_good = self._transform
        self.state = PlacementState.EDITABLE if editable else PlacementState.LOCKED
        self._settled_state = self.state
        logger.debug(
            f"Placed {image_width}x{image_height} artwork at ({x_ratio:.3f}, {y_ratio:.3f}), "
            f"size {self.size_ratio:.3f}, rotation {rotation}"
        )

    @property
    def _scale_side(self) -> float:
        layout = self.working_layout
        return layout.clip_width if self.use_width_to_scale else layout.clip_height

    def _build_transform(self, width: int, height: int) -> ArtworkTransform:
        layout = self.working_layout
        if self.use_width_to_scale:
            scale = layout.clip_width * self.size_ratio / width
        else:
            scale = layout.clip_height * self.size_ratio / height
        return ArtworkTransform(
            left=layout.clip_width * self.x_ratio + layout.width_padding,
            top=layout.clip_height * self.y_ratio + layout.height_padding,
            scale_x=scale,
            scale_y=scale,
            angle=self.rotation,
            width=width,
            height=height,
        )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def working_transform(self) -> Optional[ArtworkTransform]:
        return self._transform

    @property
    def internal_transform(self) -> Optional[ArtworkTransform]:
        if self._transform is None:
            return None
        return self._transform.scaled_by(self.config.internal_canvas_ratio)

    @property
    def max_scale(self) -> Tuple[float, float]:
        """(max_scale_x, max_scale_y) allowed on the working canvas."""
        if self._transform is None or self.size_ratio_limit is None:
            return (math.inf, math.inf)
        max_size = self._scale_side * self.size_ratio_limit
        return (max_size / self._transform.width, max_size / self._transform.height)

    def visibility(self, transform: Optional[ArtworkTransform] = None) -> float:
        """Fraction of the artwork's bounding box inside the working clip rectangle."""
        transform = transform or self._transform
        if transform is None:
            return 0.0
        return overlap_fraction(transform.bounding_rect(), self.working_layout.clip_rect)

    def _is_visible(self, transform: ArtworkTransform) -> bool:
        return self.visibility(transform) >= self.config.min_visibility

    # ------------------------------------------------------------------
    # Interactive handlers
    # ------------------------------------------------------------------

    def on_moving(self, left: float, top: float) -> bool:
        """
        Drag the artwork center to (left, top) on the working canvas.

        A position that would violate minimum visibility is clamped to the
        furthest compliant point on the segment from the last compliant
        position. Returns False when the move was refused entirely.
        """
        if not self.is_editable:
            return False
        proposed = replace(self._transform, left=left, top=top)
        if not self._is_visible(proposed):
            proposed = self._clamp_move(proposed)
            if proposed is None:
                return False
        self._commit(proposed)
        return True

    def _clamp_move(self, proposed: ArtworkTransform) -> Optional[ArtworkTransform]:
        start = self._last_good or self._transform
        if not self._is_visible(start):
            # Nothing compliant to fall back on: only allow moves that help.
            if self.visibility(proposed) >= self.visibility(self._transform):
                return proposed
            return None

        # Overlap along a segment is log-concave, so the compliant part is an interval.
        lo, hi = 0.0, 1.0
        for _ in range(32):
            mid = (lo + hi) / 2
            candidate = replace(
                proposed,
                left=start.left + (proposed.left - start.left) * mid,
                top=start.top + (proposed.top - start.top) * mid,
            )
            if self._is_visible(candidate):
                lo = mid
            else:
                hi = mid
        clamped = replace(
            proposed,
            left=start.left + (proposed.left - start.left) * lo,
            top=start.top + (proposed.top - start.top) * lo,
        )
        logger.debug(f"Move clamped to {lo:.3f} of the requested distance")
        return clamped

    def on_scaling(self, scale_x: float, scale_y: Optional[float] = None) -> bool:
        """
        Scale the artwork on the working canvas.

        Refused (and reverted to the last compliant scale) when the scale is
        below the minimum, reaches the size limit, or would leave less than
        the minimum visible fraction.
        """
        if not self.is_editable:
            return False
        scale_y = scale_x if scale_y is None else scale_y
        if scale_x < self.config.min_scale or scale_y < self.config.min_scale:
            self._revert()
            return False
        max_x, max_y = self.max_scale
        if scale_x >= max_x or scale_y >= max_y:
            self._revert()
            return False
        proposed = replace(self._transform, scale_x=scale_x, scale_y=scale_y)
        if not self._is_visible(proposed):
            self._revert()
            return False
        self._commit(proposed)
        return True

    def on_rotating(self, angle: float) -> bool:
        """Rotate the artwork; refused if the rotated bounds break visibility."""
        if not self.is_editable:
            return False
        proposed = replace(self._transform, angle=angle)
        if not self._is_visible(proposed):
            return False
        self._commit(proposed)
        return True

    def _revert(self) -> None:
        if self._last_good is None or self._last_good == self._transform:
            return
        self._transform = self._last_good
        self._sync_ratios()
        self._notify()

    def _commit(self, transform: ArtworkTransform) -> None:
        self._transform = transform
        if self._is_visible(transform):
            self._last_good = transform
        self._sync_ratios()
        self._notify()

    def _sync_ratios(self) -> None:
        t = self._transform
        layout = self.working_layout
        self.rotation = t.angle
        self.x_ratio = (t.left - layout.width_padding) / layout.clip_width
        self.y_ratio = (t.top - layout.height_padding) / layout.clip_height
        if self.use_width_to_scale:
            self.size_ratio = t.scaled_width / layout.clip_width
        else:
            self.size_ratio = t.scaled_height / layout.clip_height

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.export())

    # ------------------------------------------------------------------
    # Programmatic edits
    # ------------------------------------------------------------------

    def set_placement(
        self,
        x_ratio: Optional[float] = None,
        y_ratio: Optional[float] = None,
        size_ratio: Optional[float] = None,
        rotation: Optional[float] = None,
    ) -> bool:
        """Apply ratios as given, without visibility clamping."""
        if self._transform is None:
            return False
        if x_ratio is not None:
            self.x_ratio = x_ratio
        if y_ratio is not None:
            self.y_ratio = y_ratio
        if size_ratio is not None:
            self.size_ratio = size_ratio
        if rotation is not None:
            self.rotation = rotation
        self._transform = self._build_transform(self._transform.width, self._transform.height)
        if self._is_visible(self._transform):
            self._last_good = self._transform
        self._notify()
        return True

    def center_horizontally(self) -> bool:
        return self.set_placement(x_ratio=0.5)

    def center_vertically(self) -> bool:
        return self.set_placement(y_ratio=0.5)

    def export(self) -> Optional[PlacementData]:
        if self._transform is None:
            return None
        return PlacementData(
            x_ratio=self.x_ratio,
            y_ratio=self.y_ratio,
            size_ratio=self.size_ratio,
            wh_ratio=self.aspect_ratio,
            rotation=self.rotation,
        )
