"""
Tests for LensRelayController overlay handling.
"""

import asyncio
from io import BytesIO

import numpy as np
from PIL import Image

from lensrelay.capture.artifact import CapturedArtifact
from lensrelay.inference.correlator import PredictionCorrelator
from lensrelay.main import LensRelayController
from lensrelay.overlay.renderer import OverlayRenderer

PAYLOAD = {
    "detections": [
        {"box": {"xMin": 0.1, "xMax": 0.3, "yMin": 0.2, "yMax": 0.5}, "label": "person", "score": 0.9}
    ]
}


def jpeg_artifact(sequence: int = 1) -> CapturedArtifact:
    buf = BytesIO()
    Image.fromarray(np.full((100, 200, 3), 90, dtype=np.uint8)).save(buf, "JPEG")
    return CapturedArtifact.image(buf.getvalue(), user_id="u1", sequence=sequence)


def make_controller() -> LensRelayController:
    controller = LensRelayController()
    controller._renderer = OverlayRenderer()
    controller._correlator = PredictionCorrelator()
    controller._correlator.on_correlated(controller._handle_correlated)
    controller._correlator.on_error(controller._handle_prediction_error)
    controller._correlator.on_reset(controller._handle_prediction_reset)
    return controller


async def settle(controller: LensRelayController) -> None:
    while controller._background_tasks:
        await asyncio.gather(*controller._background_tasks)


class TestOverlayUpdates:
    """Overlay rendering off the event loop and reset handling."""

    def test_prediction_renders_overlay(self):
        controller = make_controller()
        artifact = jpeg_artifact()

        async def scenario():
            controller._main_loop = asyncio.get_running_loop()
            controller._correlator.set_image(artifact)
            controller._correlator.receive(PAYLOAD)
            # Rendering is deferred to a task, not done inside receive()
            assert controller.latest_overlay is None
            await settle(controller)

        asyncio.run(scenario())

        assert controller.latest_overlay[:2] == b"\xff\xd8"
        assert Image.open(BytesIO(controller.latest_overlay)).size == (200, 100)

    def test_error_renders_panel(self):
        controller = make_controller()
        artifact = jpeg_artifact()

        async def scenario():
            controller._main_loop = asyncio.get_running_loop()
            controller._correlator.set_image(artifact)
            controller._correlator.receive_error({"statusCode": 500})
            await settle(controller)

        asyncio.run(scenario())

        assert Image.open(BytesIO(controller.latest_overlay)).size == (200, 100)

    def test_reset_clears_overlay(self):
        controller = make_controller()

        async def scenario():
            controller._main_loop = asyncio.get_running_loop()
            controller._correlator.set_image(jpeg_artifact())
            controller._correlator.receive(PAYLOAD)
            await settle(controller)
            assert controller.latest_overlay is not None

            controller._correlator.reset()

        asyncio.run(scenario())

        assert controller.latest_overlay is None

    def test_render_finishing_after_retake_is_discarded(self):
        controller = make_controller()

        async def scenario():
            controller._main_loop = asyncio.get_running_loop()
            controller._correlator.set_image(jpeg_artifact())
            controller._correlator.receive(PAYLOAD)
            controller._correlator.reset()
            await settle(controller)

        asyncio.run(scenario())

        assert controller.latest_overlay is None

    def test_undecodable_image_is_logged(self):
        controller = make_controller()

        async def scenario():
            controller._main_loop = asyncio.get_running_loop()
            controller._correlator.set_image(
                CapturedArtifact.image(b"\xff\xd8\xff", user_id="u1", sequence=1)
            )
            controller._correlator.receive(PAYLOAD)
            await settle(controller)

        asyncio.run(scenario())

        assert controller.latest_overlay is None
