"""Shared fixtures: synthetic meshes, artwork and fast timing configuration."""
import numpy as np
import pytest

from garmentprint.materials import FinishAssetPool
from garmentprint.scene import MeshScene
from garmentprint.types import Mesh, PlacementConfig

RED = (200, 30, 30)
BLUE = (53, 133, 201)
GREEN = (40, 180, 60)


def grid_mesh(name, width, height, nx=5, ny=5, z=1.0, uv_min=0.1, uv_max=0.9):
    """Triangulated nx-by-ny grid in the XY plane with a rectangular UV patch."""
    xs = np.linspace(-width / 2, width / 2, nx)
    ys = np.linspace(-height / 2, height / 2, ny)
    gx, gy = np.meshgrid(xs, ys)
    positions = np.stack([gx.ravel(), gy.ravel(), np.full(gx.size, z)], axis=1)

    us = np.linspace(uv_min, uv_max, nx)
    vs = np.linspace(uv_min, uv_max, ny)
    gu, gv = np.meshgrid(us, vs)
    uvs = np.stack([gu.ravel(), gv.ravel()], axis=1)

    faces = []
    for j in range(ny - 1):
        for i in range(nx - 1):
            a = j * nx + i
            b = a + 1
            c = a + nx
            d = c + 1
            faces.append((a, b, d))
            faces.append((a, d, c))
    return Mesh(name=name, positions=positions, uvs=uvs, faces=np.array(faces))


@pytest.fixture
def mesh_pair():
    """Factory for a (boundary, tech-pack) mesh pair."""
    def make(name="Tee_boundary_front", width=2.0, height=1.0, techpack_width=3.0, techpack_height=1.5):
        boundary = grid_mesh(name, width, height)
        techpack = grid_mesh(f"{name}_flat", techpack_width, techpack_height, z=0.0)
        return boundary, techpack
    return make


@pytest.fixture
def two_color_image():
    """100x100 RGBA artwork: 60 rows of RED above 40 rows of BLUE."""
    image = np.zeros((100, 100, 4), dtype=np.uint8)
    image[:60, :, :3] = RED
    image[60:, :, :3] = BLUE
    image[..., 3] = 255
    return image


@pytest.fixture
def three_color_image():
    """100x100 RGBA artwork: 70% RED, 28% BLUE, 2% GREEN."""
    image = np.zeros((100, 100, 4), dtype=np.uint8)
    image[:70, :, :3] = RED
    image[70:98, :, :3] = BLUE
    image[98:, :, :3] = GREEN
    image[..., 3] = 255
    return image


@pytest.fixture
def noise_image():
    """Fully opaque 32x32 image of random colors."""
    rng = np.random.default_rng(0)
    image = np.empty((32, 32, 4), dtype=np.uint8)
    image[..., :3] = rng.integers(0, 256, size=(32, 32, 3), dtype=np.uint8)
    image[..., 3] = 255
    return image


@pytest.fixture
def fast_config():
    """Small canvases and millisecond windows so async tests finish quickly."""
    return PlacementConfig(
        working_canvas_size=100,
        notify_window=0.05,
        render_window=0.005,
        finalize_window=0.02,
        settle_delay=0.005,
        readiness_timeout=5.0,
    )


@pytest.fixture
def assets():
    return FinishAssetPool.procedural(size=32)


@pytest.fixture
def scene(mesh_pair):
    """Scene with front and back boundaries plus a changeable group layer."""
    front, front_flat = mesh_pair("Tee_boundary_front")
    back, back_flat = mesh_pair("Tee_boundary_back", width=1.0, height=2.0)
    collar = grid_mesh("Tee_changeable_group_1_collar", 1.0, 1.0)
    collar_flat = grid_mesh("Tee_changeable_group_1_collar_flat", 1.0, 1.0, z=0.0)
    return MeshScene([front, front_flat, back, back_flat, collar, collar_flat])
