"""Density-filtered palette extraction and nearest-color recoloring."""
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.cluster import KMeans, MiniBatchKMeans

from garmentprint.color_space import distance_matrix, nearest_color_index, rgb_to_lab
from garmentprint.types import (
    ConfigurationError,
    ImageArray,
    PaletteEntry,
    QuantizationError,
    QuantizeConfig,
    QuantizeResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_DENSITY = 0.05


def validate_min_density(min_density: float) -> float:
    """
    Check that a density threshold lies in [0, 1).

    Raises:
        ConfigurationError: If the value is outside the range
    """
    try:
        value = float(min_density)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"min_density must be a number, got {min_density!r}") from e
    if not 0.0 <= value < 1.0:
        raise ConfigurationError(f"min_density must be in [0, 1), got {value}")
    return value


def to_rgba(pixels: np.ndarray) -> ImageArray:
    """Return a uint8 RGBA copy of an RGB, RGBA or grayscale array."""
    pixels = np.asarray(pixels)
    if pixels.size == 0:
        raise QuantizationError("Cannot quantize empty image")
    if pixels.dtype != np.uint8:
        if pixels.max() <= 1.0:
            pixels = pixels * 255.0
        pixels = np.clip(np.round(pixels), 0, 255).astype(np.uint8)
    if pixels.ndim == 2:
        pixels = np.stack([pixels] * 3, axis=-1)
    if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
        raise QuantizationError(f"Expected (H, W, 3|4) pixels, got shape {pixels.shape}")
    if pixels.shape[2] == 3:
        alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
        return np.concatenate([pixels, alpha], axis=-1)
    return pixels.copy()


def extract_seed_colors(
    rgb: np.ndarray,
    limit: int,
    random_state: int = 42,
    max_exact_colors: int = 20000,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Find up to `limit` representative colors weighted by pixel density.

    Clustering runs in LAB space over the distinct colors of the image,
    each weighted by how many pixels carry it. Every cluster is represented
    by its most frequent actual color (not the centroid), so an image that
    already holds `limit` colors or fewer yields exactly those colors.

    Args:
        rgb: (N, 3) uint8 opaque pixel colors
        limit: Maximum number of seeds
        random_state: Seed for the clustering
        max_exact_colors: Distinct-color count above which MiniBatchKMeans is used

    Returns:
        Tuple of (seeds, densities):
        - seeds: (K, 3) uint8 colors ordered by decreasing density
        - densities: (K,) fraction of pixels in each seed's cluster
    """
    colors, counts = np.unique(rgb.reshape(-1, 3), axis=0, return_counts=True)
    total = counts.sum()

    if len(colors) <= limit:
        order = np.argsort(-counts, kind="stable")
        return colors[order], counts[order] / total

    lab = rgb_to_lab(colors)
    if len(colors) > max_exact_colors:
        logger.debug(f"Using MiniBatchKMeans for {len(colors)} distinct colors")
        kmeans = MiniBatchKMeans(
            n_clusters=limit,
            random_state=random_state,
            n_init=3,
            batch_size=10000,
            max_iter=100,
        )
    else:
        kmeans = KMeans(n_clusters=limit, random_state=random_state, n_init=10)
    labels = kmeans.fit_predict(lab, sample_weight=counts)

    seeds = []
    weights = []
    for cluster in range(limit):
        members = np.flatnonzero(labels == cluster)
        if len(members) == 0:
            continue
        representative = members[np.argmax(counts[members])]
        seeds.append(colors[representative])
        weights.append(counts[members].sum())

    seeds = np.array(seeds, dtype=np.uint8)
    weights = np.array(weights, dtype=np.float64)
    order = np.argsort(-weights, kind="stable")
    return seeds[order], weights[order] / total


class ColorQuantizer:
    """Reduce artwork to a small palette of perceptually distinct colors."""

    def __init__(self, config: Optional[QuantizeConfig] = None):
        self.config = config or QuantizeConfig()

    def quantize(
        self,
        pixels: np.ndarray,
        limit: Optional[int] = None,
        min_density: Optional[float] = None,
        colors_to_remove: Optional[Sequence[Sequence[int]]] = None,
    ) -> QuantizeResult:
        """
        Quantize an image to at most `limit` colors.

        Pixels with alpha below the cutoff become transparent. Opaque pixels
        close to a color in `colors_to_remove` (delta E <= remove_threshold)
        are cleared; every other opaque pixel is recolored to its nearest seed.
        Seeds whose density over non-transparent pixels falls below
        `min_density` are dropped and their pixels reassigned to the nearest
        retained seed.

        Args:
            pixels: (H, W, 3|4) image
            limit: Maximum palette size (defaults to config)
            min_density: Density threshold in [0, 1); invalid values fall
                back to 0.05 with a warning
            colors_to_remove: RGB colors to clear from the artwork

        Returns:
            QuantizeResult with recolored RGBA pixels and the retained palette

        Raises:
            QuantizationError: If the image is empty or fully transparent
        """
        limit = self.config.limit if limit is None else int(limit)
        if limit < 1:
            raise QuantizationError(f"limit must be >= 1, got {limit}")
        min_density = self._resolve_min_density(
            self.config.min_density if min_density is None else min_density
        )

        rgba = to_rgba(pixels)
        rgba[rgba[..., 3] < self.config.alpha_cutoff, 3] = 0
        opaque = rgba[..., 3] > 0
        if not np.any(opaque):
            raise QuantizationError("Image has no opaque pixels to quantize")

        opaque_rgb = rgba[opaque][:, :3]
        seeds, _ = extract_seed_colors(
            opaque_rgb,
            limit,
            random_state=self.config.random_state,
            max_exact_colors=self.config.max_exact_colors,
        )
        seed_lab = rgb_to_lab(seeds.astype(np.float64))

        # Work on distinct colors, then scatter back to pixels
        colors, inverse = np.unique(opaque_rgb, axis=0, return_inverse=True)
        inverse = inverse.reshape(-1)
        colors_lab = rgb_to_lab(colors.astype(np.float64))

        removed = self._removal_mask(colors_lab, colors_to_remove)
        assignment = nearest_color_index(seed_lab, colors_lab)

        kept_pixels = ~removed[inverse]
        pixel_seed = assignment[inverse]
        counts = np.bincount(pixel_seed[kept_pixels], minlength=len(seeds))
        total_kept = int(kept_pixels.sum())

        if total_kept == 0:
            logger.warning("All opaque pixels matched colors_to_remove; palette is empty")
            out = rgba.copy()
            out[opaque] = 0
            return QuantizeResult(pixels=out, palette=[])

        densities = counts / total_kept
        retained = np.flatnonzero(densities >= min_density)
        if len(retained) == 0:
            retained = np.array([int(np.argmax(densities))])
            logger.warning(
                f"No seed reached min_density={min_density}; keeping the densest color only"
            )

        # Second nearest-neighbor pass: dropped seeds fold into retained ones
        seed_to_final = nearest_color_index(seed_lab[retained], seed_lab)
        final_index = seed_to_final[pixel_seed]
        final_colors = seeds[retained]

        final_counts = np.bincount(final_index[kept_pixels], minlength=len(retained))
        final_densities = final_counts / total_kept

        out = rgba.copy()
        opaque_values = out[opaque]
        opaque_values[:, :3] = final_colors[final_index]
        opaque_values[~kept_pixels] = 0
        out[opaque] = opaque_values

        palette = [
            PaletteEntry(rgb=tuple(int(c) for c in final_colors[i]), density=float(final_densities[i]))
            for i in range(len(retained))
        ]
        logger.info(
            f"Quantized to {len(palette)} colors "
            f"({len(seeds) - len(retained)} dropped below density {min_density})"
        )
        return QuantizeResult(pixels=out, palette=palette)

    def _resolve_min_density(self, min_density: float) -> float:
        try:
            return validate_min_density(min_density)
        except ConfigurationError as e:
            logger.warning(f"{e}. Using default value {DEFAULT_MIN_DENSITY}.")
            return DEFAULT_MIN_DENSITY

    def _removal_mask(
        self,
        colors_lab: np.ndarray,
        colors_to_remove: Optional[Sequence[Sequence[int]]],
    ) -> np.ndarray:
        if not colors_to_remove:
            return np.zeros(len(colors_lab), dtype=bool)
        remove_lab = rgb_to_lab(np.asarray(colors_to_remove, dtype=np.float64).reshape(-1, 3))
        distances = distance_matrix(remove_lab, colors_lab)
        return np.any(distances <= self.config.remove_threshold, axis=1)


def quantize(
    pixels: np.ndarray,
    limit: int = 4,
    min_density: float = DEFAULT_MIN_DENSITY,
    colors_to_remove: Optional[List[Sequence[int]]] = None,
) -> QuantizeResult:
    """Quantize with a default-configured ColorQuantizer."""
    return ColorQuantizer().quantize(
        pixels,
        limit=limit,
        min_density=min_density,
        colors_to_remove=colors_to_remove,
    )
