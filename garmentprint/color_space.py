"""Perceptual color math: RGB <-> LAB, delta E and nearest-color lookup."""
from typing import Sequence, Union

import numpy as np
from skimage import color

ColorLike = Union[Sequence[float], np.ndarray]


def rgb_to_lab(rgb: ColorLike) -> np.ndarray:
    """
    Convert 8-bit sRGB values to CIELAB (D65 white, 2 degree observer).

    Args:
        rgb: Array-like with a trailing axis of 3, values in [0, 255]

    Returns:
        LAB array with the same leading shape
    """
    rgb = np.asarray(rgb, dtype=np.float64)
    return color.rgb2lab(rgb / 255.0, illuminant="D65", observer="2")


def lab_to_rgb(lab: ColorLike) -> np.ndarray:
    """
    Convert CIELAB back to 8-bit sRGB, clipped to [0, 255].

    Args:
        lab: Array-like with a trailing axis of 3

    Returns:
        Float RGB array in [0, 255]
    """
    lab = np.asarray(lab, dtype=np.float64)
    rgb = color.lab2rgb(lab, illuminant="D65", observer="2")
    return np.clip(rgb, 0.0, 1.0) * 255.0


def delta_e(lab_reference: ColorLike, lab_sample: ColorLike) -> np.ndarray:
    """
    Perceptual distance between LAB colors.

    Uses the CIE94 graphic-arts weighting: squared differences of L,
    chroma and hue, with chroma and hue scaled by factors derived from the
    reference color's chroma. The metric is not symmetric; palette colors
    are always passed as the reference.

    Args:
        lab_reference: LAB color(s) used for the chroma weighting
        lab_sample: LAB color(s) compared against the reference

    Returns:
        Broadcast array of distances (non-negative)
    """
    return color.deltaE_ciede94(
        np.asarray(lab_reference, dtype=np.float64),
        np.asarray(lab_sample, dtype=np.float64),
    )


def distance_matrix(lab_palette: np.ndarray, lab_colors: np.ndarray) -> np.ndarray:
    """Delta E from every color (rows) to every palette entry (columns)."""
    lab_palette = np.asarray(lab_palette, dtype=np.float64).reshape(1, -1, 3)
    lab_colors = np.asarray(lab_colors, dtype=np.float64).reshape(-1, 1, 3)
    return delta_e(lab_palette, lab_colors)


def nearest_color_index(lab_palette: np.ndarray, lab_colors: np.ndarray) -> np.ndarray:
    """
    Index of the perceptually closest palette entry for each color.

    Ties resolve to the lowest palette index.

    Args:
        lab_palette: (K, 3) LAB palette
        lab_colors: (N, 3) LAB colors to classify

    Returns:
        (N,) int array of palette indices
    """
    lab_palette = np.asarray(lab_palette, dtype=np.float64).reshape(-1, 3)
    if len(lab_palette) == 0:
        raise ValueError("Cannot look up nearest color in an empty palette")
    return np.argmin(distance_matrix(lab_palette, lab_colors), axis=1)


def rgb_to_hex(rgb: ColorLike) -> str:
    """Format an RGB triple as lowercase '#rrggbb'."""
    r, g, b = [int(min(255, max(0, round(float(c))))) for c in rgb]
    return f"#{r:02x}{g:02x}{b:02x}"


def hex_to_rgb(value: str) -> tuple:
    """Parse '#rrggbb', 'rrggbb' or '#rgb' into an RGB tuple."""
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) != 6:
        raise ValueError(f"Invalid hex color: {value!r}")
    return tuple(int(text[i:i + 2], 16) for i in (0, 2, 4))


def hex_match(first: str, second: str) -> bool:
    """Case-insensitive hex comparison that ignores a leading '#'."""
    return first.strip().lstrip("#").lower() == second.strip().lstrip("#").lower()
