"""Split a quantized image into one layer per palette color, plus alpha-map helpers."""
import logging
from typing import List, Sequence

import numpy as np

from garmentprint.color_space import nearest_color_index, rgb_to_lab
from garmentprint.types import ImageArray, QuantizationError, ResourceMismatchError

logger = logging.getLogger(__name__)


def decompose(
    pixels: ImageArray,
    palette: Sequence[Sequence[int]],
    preserve_alpha: bool = False,
) -> List[ImageArray]:
    """
    Produce one RGBA layer per palette color.

    Each opaque pixel is assigned to exactly one layer, the one whose palette
    color is perceptually nearest. Inside its layer the pixel takes that
    palette color; every other layer is transparent there.

    Args:
        pixels: (H, W, 4) uint8 RGBA image
        palette: Ordered RGB colors, one layer each
        preserve_alpha: Keep the source alpha instead of forcing 255

    Returns:
        List of (H, W, 4) uint8 layers, in palette order
    """
    pixels = np.asarray(pixels)
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise QuantizationError(f"Expected (H, W, 4) RGBA pixels, got shape {pixels.shape}")

    palette = np.asarray(palette, dtype=np.uint8).reshape(-1, 3)
    layers = [np.zeros_like(pixels, dtype=np.uint8) for _ in range(len(palette))]
    if len(palette) == 0:
        return layers

    opaque = pixels[..., 3] > 0
    if not np.any(opaque):
        return layers

    colors, inverse = np.unique(pixels[opaque][:, :3], axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    color_index = nearest_color_index(rgb_to_lab(palette.astype(np.float64)),
                                      rgb_to_lab(colors.astype(np.float64)))
    pixel_index = color_index[inverse]
    source_alpha = pixels[opaque][:, 3]
    rows, cols = np.nonzero(opaque)

    for i, layer in enumerate(layers):
        hit = pixel_index == i
        values = np.zeros((int(hit.sum()), 4), dtype=np.uint8)
        values[:, :3] = palette[i]
        values[:, 3] = source_alpha[hit] if preserve_alpha else 255
        layer[rows[hit], cols[hit]] = values

    logger.debug(f"Decomposed {int(opaque.sum())} opaque pixels into {len(layers)} layers")
    return layers


def generate_alpha_map(layer: ImageArray) -> ImageArray:
    """
    Turn a layer into a black/white coverage mask.

    Pixels with alpha above 1 become opaque white, the rest opaque black.
    """
    layer = np.asarray(layer)
    covered = layer[..., 3] > 1
    out = np.zeros(layer.shape[:2] + (4,), dtype=np.uint8)
    out[..., 3] = 255
    out[covered, :3] = 255
    return out


def merge_alpha_maps(first: ImageArray, second: ImageArray) -> ImageArray:
    """
    Intersect two alpha masks.

    A pixel is white only where both inputs have a red channel above 200.

    Raises:
        ResourceMismatchError: If the inputs differ in size
    """
    first = np.asarray(first)
    second = np.asarray(second)
    if first.shape[:2] != second.shape[:2]:
        raise ResourceMismatchError(
            f"Alpha maps differ in size: {first.shape[1]}x{first.shape[0]} "
            f"vs {second.shape[1]}x{second.shape[0]}"
        )
    both = (first[..., 0] > 200) & (second[..., 0] > 200)
    out = np.zeros(first.shape[:2] + (4,), dtype=np.uint8)
    out[..., 3] = 255
    out[both, :3] = 255
    return out


def tile_to_size(image: ImageArray, height: int, width: int) -> ImageArray:
    """Repeat an image until it covers (height, width), then crop."""
    image = np.asarray(image)
    reps_y = -(-height // image.shape[0])
    reps_x = -(-width // image.shape[1])
    tiled = np.tile(image, (reps_y, reps_x, 1))
    return tiled[:height, :width]
