"""Tests for finish policies and surface synthesis."""
import numpy as np
import pytest

from conftest import BLUE, RED
from garmentprint.synthesizer import FinishAssignments, TextureSynthesizer
from garmentprint.types import FinishKind, PlacementConfig

REPEAT = (1.0, -1.0)


@pytest.fixture
def synthesizer(assets):
    return TextureSynthesizer(assets, PlacementConfig())


def run(synthesizer, image, assignments=None, **kwargs):
    return synthesizer.synthesize(
        image,
        [RED, BLUE],
        assignments or FinishAssignments(),
        "front",
        "front_flat",
        REPEAT,
        **kwargs,
    )


class TestFinishAssignments:
    """Test color keyed finish lookup."""

    def test_lookup_ignores_case_and_hash(self):
        assignments = FinishAssignments({"#C81E1E": FinishKind.METALLIC})
        assert assignments.get("c81e1e") == FinishKind.METALLIC
        assert "#c81e1e" in assignments

    def test_default_is_matte(self):
        assert FinishAssignments().get("#123456") == FinishKind.MATTE

    def test_accepts_display_names(self):
        assignments = FinishAssignments()
        assignments.set("#ffffff", "glitter")
        assert assignments.to_list() == [{"color": "#ffffff", "textureOption": "Glitter"}]

    def test_copy_is_independent(self):
        assignments = FinishAssignments({"#ffffff": FinishKind.CRYSTALS})
        clone = assignments.copy()
        assignments.clear()
        assert len(assignments) == 0
        assert clone.get("#ffffff") == FinishKind.CRYSTALS

    def test_unknown_finish(self):
        with pytest.raises(ValueError):
            FinishAssignments().set("#ffffff", "velvet")


class TestSynthesize:
    """Test surface generation per palette color."""

    def test_one_surface_per_color(self, synthesizer, two_color_image):
        result = run(synthesizer, two_color_image)

        assert [s.name for s in result.surfaces] == ["boundary_copy_front_0", "boundary_copy_front_1"]
        assert result.colors == ["#c81e1e", "#3585c9"]
        assert all(s.target == "front" for s in result.surfaces)
        assert all(s.material.finish == FinishKind.MATTE for s in result.surfaces)

    def test_techpack_surfaces_share_materials(self, synthesizer, two_color_image):
        result = run(synthesizer, two_color_image)

        assert len(result.techpack_surfaces) == len(result.surfaces)
        for surface, twin in zip(result.surfaces, result.techpack_surfaces):
            assert twin.target == "front_flat"
            assert twin.material is surface.material

    def test_show_original(self, synthesizer, two_color_image):
        result = run(synthesizer, two_color_image, show_original=True)

        assert len(result.surfaces) == 1
        assert result.surfaces[0].material.map.image is two_color_image
        assert result.parts == []

    def test_empty_palette_falls_back_to_original(self, synthesizer, two_color_image):
        result = synthesizer.synthesize(two_color_image, [], FinishAssignments(), "front", "front_flat", REPEAT)
        assert len(result.surfaces) == 1

    def test_textures_carry_repeat(self, synthesizer, two_color_image):
        result = run(synthesizer, two_color_image)
        assert result.surfaces[0].material.map.repeat == REPEAT


class TestFinishPolicies:
    """Test the material parameters of each finish."""

    def test_matte(self, synthesizer, two_color_image):
        material = run(synthesizer, two_color_image).surfaces[0].material

        assert material.shading == "basic"
        assert material.alpha_test == 0.5
        assert material.normal_map is None

    def test_metallic(self, synthesizer, two_color_image):
        assignments = FinishAssignments({"#c81e1e": FinishKind.METALLIC})
        material = run(synthesizer, two_color_image, assignments).surfaces[0].material

        assert material.finish == FinishKind.METALLIC
        assert material.color == RED
        assert material.emissive == RED
        assert (material.metalness, material.roughness) == (0.7, 0.35)
        assert material.emissive_intensity == 0.25

    def test_glitter(self, synthesizer, assets, two_color_image):
        assignments = FinishAssignments({"#3585c9": FinishKind.GLITTER})
        result = run(synthesizer, two_color_image, assignments)
        material = result.surfaces[1].material

        assert material.color == (255, 255, 255)
        assert material.emissive == BLUE
        assert (material.metalness, material.roughness) == (0.8, 0.9)
        assert material.map is material.roughness_map
        assert material.roughness_map.image is assets.glitter_roughness
        assert material.normal_map.image is assets.glitter_normal
        assert material.normal_map.repeat == (6.0, -6.0)
        # Alpha map is white exactly where the blue layer is opaque.
        alpha = material.alpha_map.image
        assert np.all(alpha[60:, :, 0] == 255)
        assert np.all(alpha[:60, :, 0] == 0)

    def test_crystals(self, synthesizer, assets, two_color_image):
        assignments = FinishAssignments({"#c81e1e": FinishKind.CRYSTALS})
        material = run(synthesizer, two_color_image, assignments).surfaces[0].material

        assert material.finish == FinishKind.CRYSTALS
        assert material.color == RED
        assert material.normal_map.image is assets.crystal_normal
        alpha = material.alpha_map.image
        assert alpha.shape == two_color_image.shape
        # Crystal footprint punches holes in the red layer, never outside it.
        assert np.all(alpha[60:, :, 0] == 0)
        red_alpha = alpha[:60, :, 0]
        assert red_alpha.any()
        assert not red_alpha.all()

    def test_mixed_finishes(self, synthesizer, two_color_image):
        assignments = FinishAssignments({"#c81e1e": FinishKind.METALLIC, "#3585c9": FinishKind.GLITTER})
        result = run(synthesizer, two_color_image, assignments)
        assert [s.material.finish for s in result.surfaces] == [FinishKind.METALLIC, FinishKind.GLITTER]


class TestArenaLifecycle:
    """Test that replaced results are disposed."""

    def test_release(self, synthesizer, two_color_image):
        first = run(synthesizer, two_color_image)
        second = run(synthesizer, two_color_image)
        assert synthesizer.live_arenas == 2

        synthesizer.release(first)

        assert first.arena.disposed
        assert not second.arena.disposed
        assert synthesizer.live_arenas == 1

    def test_release_none(self, synthesizer):
        synthesizer.release(None)
        assert synthesizer.live_arenas == 0

    def test_preview(self, synthesizer, two_color_image):
        result = synthesizer.preview(two_color_image, "front", "front_flat", REPEAT)

        assert len(result.surfaces) == 1
        assert result.techpack_surfaces[0].material is result.surfaces[0].material
        assert synthesizer.live_arenas == 1
