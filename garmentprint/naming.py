"""Mesh naming convention for boundaries, changeable groups and their tech-pack twins."""
import re
from typing import Optional, Tuple

TECHPACK_SUFFIX = "_flat"

CHANGEABLE_GROUP = re.compile(r"changeable_group_\d{1,2}")
BOUNDARY = re.compile(r"\w*_?boundary_[a-zA-Z]+")
BOUNDARY_TECHPACK = re.compile(r"\w*_?boundary_[a-zA-Z]+_flat")
CHANGEABLE_GROUP_NAME = re.compile(r"\w*_?changeable_group_\d{1,2}_[a-zA-Z]+")
CHANGEABLE_GROUP_TECHPACK = re.compile(r"\w*_?changeable_group_\d{1,2}_[a-zA-Z]+_flat")


def capitalize(text: str) -> str:
    """Upper-case the first character only."""
    return text[:1].upper() + text[1:]


def is_boundary_name(name: str) -> bool:
    """A visible boundary mesh: matches the boundary pattern and is not a tech-pack twin."""
    return bool(BOUNDARY.search(name)) and not is_techpack_boundary_name_valid(name)


def is_techpack_boundary_name_valid(name: str) -> bool:
    return bool(BOUNDARY_TECHPACK.search(name))


def is_techpack_changeable_group_name_valid(name: str) -> bool:
    return bool(CHANGEABLE_GROUP_TECHPACK.search(name))


def get_display_name_if_boundary(name: str) -> Optional[str]:
    """
    Human-readable name of a boundary mesh.

    "Tee_boundary_front" -> "Front", "Tee_boundary_left_sleeve" -> "Left sleeve".
    Returns None when the name does not follow the boundary convention.
    """
    if not BOUNDARY.search(name):
        return None
    parts = name.split("boundary")
    if len(parts) == 1:
        return None
    tail = parts[-1]
    if tail.startswith("_") and len(tail) > 1:
        tail = tail[1:]
    return capitalize(" ".join(tail.split("_")))


def get_display_name_if_changeable_group(name: str) -> Optional[Tuple[str, str]]:
    """
    (display_name, group_name) of a changeable-group mesh, or None.

    "Tee_changeable_group_2_collar" -> ("Collar", "changeable_group_2").
    """
    if not CHANGEABLE_GROUP_NAME.search(name):
        return None
    match = CHANGEABLE_GROUP.search(name)
    if match is None:
        return None
    group_name = match.group(0)
    rest = name[match.start():].replace(f"{group_name}_", "", 1).replace("_", " ", 1)
    return capitalize(rest), group_name


def form_techpack_name(name: str) -> str:
    return f"{name}{TECHPACK_SUFFIX}"


def sanitize_export_name(name: str) -> str:
    """Lower-case a display name and replace spaces with underscores."""
    return name.lower().replace(" ", "_")
