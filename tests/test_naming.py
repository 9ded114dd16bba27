"""Tests for the mesh naming convention."""
import pytest

from garmentprint.naming import (
    capitalize,
    form_techpack_name,
    get_display_name_if_boundary,
    get_display_name_if_changeable_group,
    is_boundary_name,
    is_techpack_boundary_name_valid,
    is_techpack_changeable_group_name_valid,
    sanitize_export_name,
)


class TestBoundaryNames:
    """Test boundary display names."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Tee_boundary_front", "Front"),
            ("Tee_boundary_left_sleeve", "Left sleeve"),
            ("boundary_back", "Back"),
            ("NoMatch", None),
        ],
    )
    def test_display_name(self, name, expected):
        assert get_display_name_if_boundary(name) == expected

    def test_boundary_excludes_techpack_twin(self):
        assert is_boundary_name("Tee_boundary_front")
        assert not is_boundary_name("Tee_boundary_front_flat")
        assert not is_boundary_name("Tee_changeable_group_1_collar")

    def test_techpack_boundary(self):
        assert is_techpack_boundary_name_valid("Tee_boundary_front_flat")
        assert not is_techpack_boundary_name_valid("Tee_boundary_front")


class TestChangeableGroupNames:
    """Test changeable group display names."""

    def test_display_name_and_group(self):
        assert get_display_name_if_changeable_group("Tee_changeable_group_2_collar") == ("Collar", "changeable_group_2")

    def test_no_match(self):
        assert get_display_name_if_changeable_group("Tee_boundary_front") is None

    def test_techpack_group(self):
        assert is_techpack_changeable_group_name_valid("Tee_changeable_group_12_cuff_flat")
        assert not is_techpack_changeable_group_name_valid("Tee_changeable_group_12_cuff")


class TestHelpers:
    def test_form_techpack_name(self):
        assert form_techpack_name("Tee_boundary_front") == "Tee_boundary_front_flat"

    def test_sanitize(self):
        assert sanitize_export_name("Left sleeve") == "left_sleeve"

    def test_capitalize(self):
        assert capitalize("left sleeve") == "Left sleeve"
        assert capitalize("") == ""
