"""Rasterise placed artwork onto a transparent canvas clipped to the boundary polygon."""
import logging
from typing import Optional

import numpy as np
from PIL import Image, ImageDraw

from garmentprint.image_io import to_pil
from garmentprint.placement import ArtworkPlacementState, ArtworkTransform
from garmentprint.types import ImageArray

logger = logging.getLogger(__name__)


def clip_mask(width: int, height: int, polygon: np.ndarray) -> np.ndarray:
    """(H, W) uint8 mask, 255 inside the polygon."""
    mask = Image.new("L", (width, height), 0)
    draw = ImageDraw.Draw(mask)
    draw.polygon([(float(x), float(y)) for x, y in polygon], fill=255)
    return np.array(mask)


def composite(
    artwork: ImageArray,
    transform: ArtworkTransform,
    canvas_width: int,
    canvas_height: int,
    clip_polygon: Optional[np.ndarray] = None,
) -> ImageArray:
    """
    Draw artwork with a center-origin transform onto a transparent canvas.

    Args:
        artwork: (H, W, 4) uint8 RGBA image
        transform: Placement of the artwork on this canvas
        canvas_width: Output width in pixels
        canvas_height: Output height in pixels
        clip_polygon: Optional (P, 2) polygon; pixels outside become transparent

    Returns:
        (canvas_height, canvas_width, 4) uint8 RGBA canvas
    """
    canvas = Image.new("RGBA", (canvas_width, canvas_height), (0, 0, 0, 0))
    width = max(1, int(round(transform.scaled_width)))
    height = max(1, int(round(transform.scaled_height)))

    img = to_pil(artwork).convert("RGBA").resize((width, height), Image.LANCZOS)
    if transform.angle % 360:
        # PIL rotates counter-clockwise
        img = img.rotate(-transform.angle, resample=Image.BICUBIC, expand=True)

    layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    offset = (int(round(transform.left - img.width / 2)), int(round(transform.top - img.height / 2)))
    layer.paste(img, offset)
    canvas = Image.alpha_composite(canvas, layer)

    out = np.array(canvas)
    if clip_polygon is not None:
        mask = clip_mask(canvas_width, canvas_height, clip_polygon)
        out[..., 3] = (out[..., 3].astype(np.uint16) * mask // 255).astype(np.uint8)
        out[out[..., 3] == 0] = 0
    return out


def render_internal(
    placement: ArtworkPlacementState,
    artwork: ImageArray,
    transform: Optional[ArtworkTransform] = None,
) -> ImageArray:
    """
    Composite the artwork on the high-resolution internal canvas.

    `transform` overrides the placement's current internal transform, so a
    snapshot taken on the event loop can be rendered from a worker thread.
    """
    layout = placement.internal_layout
    transform = transform or placement.internal_transform
    if transform is None:
        raise ValueError("Placement has no artwork to render")
    return composite(
        artwork,
        transform,
        int(round(layout.canvas_width)),
        int(round(layout.canvas_height)),
        placement.internal_clip_polygon,
    )


def render_working(placement: ArtworkPlacementState, artwork: ImageArray) -> ImageArray:
    """Composite the artwork on the interactive working canvas."""
    layout = placement.working_layout
    transform = placement.working_transform
    if transform is None:
        raise ValueError("Placement has no artwork to render")
    return composite(
        artwork,
        transform,
        int(round(layout.canvas_width)),
        int(round(layout.canvas_height)),
        placement.working_clip_polygon,
    )
