"""Tests for image decomposition and alpha maps."""
import numpy as np
import pytest

from conftest import BLUE, RED
from garmentprint.decomposer import decompose, generate_alpha_map, merge_alpha_maps, tile_to_size
from garmentprint.quantizer import quantize
from garmentprint.types import ResourceMismatchError


class TestDecompose:
    """Test one-layer-per-color decomposition."""

    def test_parts_cover_source_exactly_once(self, noise_image):
        """Union of part masks equals the source mask; parts are disjoint."""
        result = quantize(noise_image, limit=4)
        parts = decompose(result.pixels, result.colors)

        masks = np.stack([part[..., 3] > 0 for part in parts])
        source_mask = result.pixels[..., 3] > 0

        np.testing.assert_array_equal(masks.any(axis=0), source_mask)
        assert np.all(masks.sum(axis=0) <= 1)

    def test_part_pixels_take_palette_color(self, two_color_image):
        result = quantize(two_color_image, limit=4)
        parts = decompose(result.pixels, result.colors)

        assert len(parts) == 2
        red_part, blue_part = parts
        assert np.all(red_part[:60, :, :3] == RED)
        assert np.all(red_part[60:, :, 3] == 0)
        assert np.all(blue_part[60:, :, :3] == BLUE)
        assert np.all(blue_part[60:, :, 3] == 255)

    def test_caller_palette_is_honoured(self, two_color_image):
        """A single-color palette absorbs every opaque pixel."""
        parts = decompose(two_color_image, [RED])
        assert len(parts) == 1
        assert np.all(parts[0][..., 3] == 255)
        assert np.all(parts[0][..., :3] == RED)

    def test_preserve_alpha(self, two_color_image):
        image = two_color_image.copy()
        image[..., 3] = 90
        parts = decompose(image, [RED, BLUE], preserve_alpha=True)
        assert np.all(parts[0][:60, :, 3] == 90)

    def test_empty_palette(self, two_color_image):
        assert decompose(two_color_image, []) == []


class TestAlphaMaps:
    """Test alpha map generation and merging."""

    def test_generate_alpha_map(self):
        layer = np.zeros((1, 3, 4), dtype=np.uint8)
        layer[0, :, 3] = [0, 1, 2]

        alpha = generate_alpha_map(layer)

        np.testing.assert_array_equal(alpha[0, :, 0], [0, 0, 255])
        assert np.all(alpha[..., 3] == 255)

    def test_merge_is_intersection(self):
        a = np.zeros((2, 2, 4), dtype=np.uint8)
        b = np.zeros((2, 2, 4), dtype=np.uint8)
        a[0, :, :3] = 255
        b[:, 0, :3] = 255

        merged = merge_alpha_maps(a, b)

        np.testing.assert_array_equal(merged[..., 0], [[255, 0], [0, 0]])

    def test_merge_size_mismatch(self):
        with pytest.raises(ResourceMismatchError):
            merge_alpha_maps(np.zeros((2, 2, 4), np.uint8), np.zeros((3, 2, 4), np.uint8))

    def test_tile_to_size(self):
        tile = np.arange(4, dtype=np.uint8).reshape(2, 2, 1)
        tiled = tile_to_size(tile, 3, 5)
        assert tiled.shape == (3, 5, 1)
        assert tiled[2, 4, 0] == tile[0, 0, 0]
