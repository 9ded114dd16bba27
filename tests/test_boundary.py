"""Tests for the boundary lifecycle: loading, edits, synthesis and readiness."""
import asyncio
import logging
import threading

import numpy as np
import pytest

from conftest import BLUE, RED
from garmentprint.boundary import Boundary
from garmentprint.image_io import load_image
from garmentprint.synthesizer import TextureSynthesizer
from garmentprint.types import (
    FinishKind,
    GeometryError,
    ImageLoadError,
    PlacementConfig,
    PlacementState,
    QuantizationError,
    ReadinessTimeoutError,
)
from garmentprint.uv_region import analyze


@pytest.fixture
def make_boundary(mesh_pair, fast_config, assets):
    """Factory for a boundary on the default mesh pair, counting dirty notifications."""
    def make(config=None, loader=None):
        config = config or fast_config
        mesh, techpack = mesh_pair()
        geometry = analyze(mesh, techpack, config.hull)
        dirty = []
        boundary = Boundary(
            mesh,
            techpack,
            geometry,
            TextureSynthesizer(assets, config),
            config,
            on_dirty=lambda: dirty.append(1),
            image_loader=loader,
        )
        boundary.dirty = dirty
        return boundary
    return make


def fake_loader(images, delays=None):
    async def load(source):
        await asyncio.sleep((delays or {}).get(source, 0))
        if source not in images:
            raise ImageLoadError(f"no such image {source}")
        return images[source]
    return load


class TestConstruction:
    def test_missing_techpack_twin(self, mesh_pair, fast_config, assets):
        mesh, techpack = mesh_pair()
        geometry = analyze(mesh, techpack, fast_config.hull)

        with pytest.raises(GeometryError, match="could not find flat version of Tee_boundary_front"):
            Boundary(mesh, None, geometry, TextureSynthesizer(assets, fast_config), fast_config)


class TestAddArtwork:
    """Test loading, quantizing and placing artwork."""

    def test_export_awaits_settled_composite(self, make_boundary, two_color_image):
        """Exporting right after adding artwork returns the composited frame."""
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            assert not boundary.is_ready_for_screenshot
            uri = await boundary.export_image(timeout=5)
            return uri

        uri = asyncio.run(scenario())
        image = load_image(uri)

        assert boundary.is_ready_for_screenshot
        assert image.shape == (400, 400, 4)
        assert image[150, 200, 3] == 255
        assert image[150, 200, 0] > 150
        assert image[260, 200, 2] > 150
        assert image[5, 5, 3] == 0
        assert [s.name for s in boundary.surfaces] == [
            "boundary_copy_Tee_boundary_front_0",
            "boundary_copy_Tee_boundary_front_1",
        ]

    def test_palette_and_state(self, make_boundary, two_color_image):
        boundary = make_boundary()
        asyncio.run(boundary.add_artwork(two_color_image, color_limit=4))

        assert [entry.rgb for entry in boundary.palette] == [RED, BLUE]
        assert boundary.state == PlacementState.EDITABLE
        assert boundary.has_artwork
        assert boundary.dirty

    def test_url_source_is_kept(self, make_boundary, two_color_image):
        boundary = make_boundary(loader=fake_loader({"art.png": two_color_image}))
        asyncio.run(boundary.add_artwork("art.png"))
        assert boundary.artwork_url == "art.png"

    def test_disable_editing(self, make_boundary, two_color_image):
        boundary = make_boundary()
        asyncio.run(boundary.add_artwork(two_color_image, disable_editing=True))

        assert boundary.state == PlacementState.LOCKED
        assert not boundary.on_moving(40, 50)
        boundary.set_editable(True)
        assert boundary.on_moving(40, 50)

    def test_sensitivity_is_percent(self, make_boundary, two_color_image):
        boundary = make_boundary()
        asyncio.run(boundary.add_artwork(two_color_image, sensitivity=50))
        assert [entry.rgb for entry in boundary.palette] == [RED]

    def test_invalid_sensitivity_falls_back(self, make_boundary, two_color_image, caplog):
        boundary = make_boundary()
        with caplog.at_level(logging.WARNING, logger="garmentprint.quantizer"):
            asyncio.run(boundary.add_artwork(two_color_image, sensitivity=150))

        assert len(boundary.palette) == 2
        assert "Using default value 0.05" in caplog.text

    def test_show_original(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image, show_original=True)
            await boundary.wait_until_ready(5)
            return await boundary.get_image_parts()

        parts = asyncio.run(scenario())

        assert parts == []
        assert boundary.palette == []
        assert len(boundary.surfaces) == 1

    def test_quantization_error_propagates(self, make_boundary):
        boundary = make_boundary()
        with pytest.raises(QuantizationError):
            asyncio.run(boundary.add_artwork(np.zeros((10, 10, 4), dtype=np.uint8)))

        assert not boundary.has_artwork
        assert boundary.state == PlacementState.EMPTY
        assert boundary.is_ready_for_screenshot


class TestLoadFailure:
    """Test that failed loads leave the previous artwork intact."""

    def test_previous_artwork_survives(self, make_boundary, two_color_image):
        boundary = make_boundary(loader=fake_loader({"first.png": two_color_image}))

        async def scenario():
            await boundary.add_artwork("first.png", x_ratio=0.25)
            with pytest.raises(ImageLoadError):
                await boundary.add_artwork("missing.png")
            return await boundary.wait_until_ready(5)

        assert asyncio.run(scenario())
        assert boundary.artwork_url == "first.png"
        assert boundary.state == PlacementState.EDITABLE
        assert boundary.export_placement()["data"]["xRatio"] == 0.25
        assert len(boundary.palette) == 2

    def test_failure_on_empty_boundary(self, make_boundary):
        boundary = make_boundary(loader=fake_loader({}))
        with pytest.raises(ImageLoadError):
            asyncio.run(boundary.add_artwork("missing.png"))

        assert boundary.state == PlacementState.EMPTY
        assert boundary.is_ready_for_screenshot

    def test_failed_load_after_superseded_load_restores_state(self, make_boundary, two_color_image, noise_image):
        """A failing load started while an older one is still pending keeps the settled state."""
        loader = fake_loader({"first.png": two_color_image, "slow.png": noise_image}, delays={"slow.png": 0.1})
        boundary = make_boundary(loader=loader)

        async def scenario():
            await boundary.add_artwork("first.png")
            slow = asyncio.ensure_future(boundary.add_artwork("slow.png"))
            await asyncio.sleep(0)
            with pytest.raises(ImageLoadError):
                await boundary.add_artwork("missing.png")
            await slow
            await boundary.wait_until_ready(5)

        asyncio.run(scenario())

        assert boundary.artwork_url == "first.png"
        assert boundary.state == PlacementState.EDITABLE
        assert boundary.on_moving(40, 50)

    def test_locked_state_survives_failed_load(self, make_boundary, two_color_image):
        boundary = make_boundary(loader=fake_loader({"first.png": two_color_image}))

        async def scenario():
            await boundary.add_artwork("first.png", disable_editing=True)
            with pytest.raises(ImageLoadError):
                await boundary.add_artwork("missing.png")

        asyncio.run(scenario())
        assert boundary.state == PlacementState.LOCKED

    def test_newer_call_supersedes_slow_load(self, make_boundary, two_color_image, noise_image):
        loader = fake_loader({"slow.png": noise_image, "fast.png": two_color_image}, delays={"slow.png": 0.1})
        boundary = make_boundary(loader=loader)

        async def scenario():
            slow = asyncio.ensure_future(boundary.add_artwork("slow.png"))
            await asyncio.sleep(0)
            await boundary.add_artwork("fast.png")
            await slow
            await boundary.wait_until_ready(5)

        asyncio.run(scenario())

        assert boundary.artwork_url == "fast.png"
        assert boundary.placement.working_transform.width == 100
        assert [entry.rgb for entry in boundary.palette] == [RED, BLUE]


class TestEdits:
    """Test notification coalescing and resource bounds under edits."""

    def test_burst_of_moves_notifies_once_with_last_values(self, make_boundary, two_color_image):
        boundary = make_boundary()
        received = []

        async def scenario():
            await boundary.add_artwork(two_color_image, on_artwork_changed=received.append)
            for i in range(10):
                assert boundary.on_moving(30 + 2 * i, 50)
            await asyncio.sleep(0.2)

        asyncio.run(scenario())

        assert len(received) == 1
        assert received[0]["forBoundary"] == "Tee_boundary_front"
        assert received[0]["xRatio"] == pytest.approx(0.475)
        assert received[0]["whRatio"] == pytest.approx(2.0)

    def test_update_listener_replaces_callback(self, make_boundary, two_color_image):
        boundary = make_boundary()
        first, second = [], []

        async def scenario():
            await boundary.add_artwork(two_color_image, on_artwork_changed=first.append)
            boundary.update_listener(second.append)
            boundary.center_horizontally()
            await asyncio.sleep(0.2)

        asyncio.run(scenario())
        assert first == []
        assert len(second) == 1

    def test_arenas_stay_bounded(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            for i in range(20):
                boundary.on_moving(40 + i, 50)
                await asyncio.sleep(0.01)
            await boundary.wait_until_ready(5)

        asyncio.run(scenario())
        assert boundary.synthesizer.live_arenas == 1

    def test_edit_clears_readiness(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.wait_until_ready(5)
            boundary.on_scaling(0.3)
            assert not boundary.is_ready_for_screenshot
            await boundary.wait_until_ready(5)

        asyncio.run(scenario())
        assert boundary.is_ready_for_screenshot

    def test_readiness_timeout(self, make_boundary, two_color_image):
        config = PlacementConfig(working_canvas_size=100, render_window=0.005, finalize_window=10.0)
        boundary = make_boundary(config=config)

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.wait_until_ready(0.05)

        with pytest.raises(ReadinessTimeoutError):
            asyncio.run(scenario())

    def test_compositing_and_decomposition_run_off_the_event_loop(self, make_boundary, two_color_image, monkeypatch):
        import garmentprint.boundary as boundary_module

        threads = {"render": set(), "decompose": set()}
        real_render, real_decompose = boundary_module.render_internal, boundary_module.decompose

        def render(*args, **kwargs):
            threads["render"].add(threading.get_ident())
            return real_render(*args, **kwargs)

        def split(*args, **kwargs):
            threads["decompose"].add(threading.get_ident())
            return real_decompose(*args, **kwargs)

        monkeypatch.setattr(boundary_module, "render_internal", render)
        monkeypatch.setattr(boundary_module, "decompose", split)
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.wait_until_ready(5)
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())

        assert threads["render"] and loop_thread not in threads["render"]
        assert threads["decompose"] and loop_thread not in threads["decompose"]
        assert len(boundary.surfaces) == 2


class TestFinishes:
    """Test per-color finish changes."""

    def test_changed_finish_is_reported_in_parts(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.change_texture_finish("#3585c9", FinishKind.METALLIC)
            return await boundary.get_image_parts()

        parts = asyncio.run(scenario())

        by_color = {part.color: part for part in parts}
        assert by_color["#3585c9"].texture_option == FinishKind.METALLIC
        assert by_color["#c81e1e"].texture_option == FinishKind.MATTE
        assert all(part.uri.startswith("data:image/png;base64,") for part in parts)
        assert boundary.is_ready_for_screenshot
        assert [s.material.finish for s in boundary.surfaces] == [FinishKind.MATTE, FinishKind.METALLIC]

    def test_techpack_surfaces_follow_finish(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.change_texture_finish("#c81e1e", "Glitter")

        asyncio.run(scenario())

        for surface, twin in zip(boundary.surfaces, boundary.techpack_surfaces):
            assert twin.target == "Tee_boundary_front_flat"
            assert twin.material is surface.material

    def test_reset_texture_finish(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.change_texture_finish("#c81e1e", FinishKind.CRYSTALS)
            await boundary.reset_texture_finish()

        asyncio.run(scenario())
        assert all(s.material.finish == FinishKind.MATTE for s in boundary.surfaces)
        assert len(boundary.finishes) == 0

    def test_new_artwork_clears_finishes(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.change_texture_finish("#c81e1e", FinishKind.METALLIC)
            await boundary.add_artwork(two_color_image)

        asyncio.run(scenario())
        assert len(boundary.finishes) == 0

    def test_finish_without_artwork(self, make_boundary):
        boundary = make_boundary()
        asyncio.run(boundary.change_texture_finish("#c81e1e", FinishKind.METALLIC))
        assert boundary.surfaces == []
        assert boundary.dirty


class TestReset:
    """Test removal and disposal."""

    def test_reset_releases_everything(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            await boundary.wait_until_ready(5)
            arena = boundary._result.arena
            await boundary.reset_boundary()
            return arena, await boundary.export_image()

        arena, exported = asyncio.run(scenario())

        assert arena.disposed
        assert boundary.synthesizer.live_arenas == 0
        assert boundary.surfaces == []
        assert boundary.state == PlacementState.EMPTY
        assert boundary.export_placement() == {"boundaryName": "Tee_boundary_front", "data": None}
        assert exported is None

    def test_dispose(self, make_boundary, two_color_image):
        boundary = make_boundary()

        async def scenario():
            await boundary.add_artwork(two_color_image)
            boundary.dispose()

        asyncio.run(scenario())
        assert boundary.synthesizer.live_arenas == 0


class TestDeveloperMode:
    def test_toggle(self, make_boundary):
        boundary = make_boundary()
        boundary.set_developer_mode(True)

        assert boundary.techpack_visible
        assert boundary.normal_helper.visible
        assert boundary.dirty

        boundary.set_developer_mode(False)
        assert not boundary.techpack_visible
