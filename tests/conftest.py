"""Shared fakes: a capture device that records property writes, a manual
clock, and synthetic frames with a single coloured blob."""

from __future__ import annotations

import time
from typing import List, Optional, Tuple

import cv2
import numpy as np
import pytest

from vision_pipeline.camera import CameraValues, VideoMode
from vision_pipeline.channels import TableStore, UIBroadcaster
from vision_pipeline.common import DeviceSetFailure
from vision_pipeline.config import CameraConfig, CoordinatorConfig, PipelineSettings
from vision_pipeline.settings import CameraProfile, SettingsStore

WIDTH, HEIGHT = 320, 240

GREEN_PIPELINE = PipelineSettings(
    nickname="green",
    exposure=40.0,
    brightness=60.0,
    hue=(50, 70),
    saturation=(100, 255),
    value=(100, 255),
)


class FakeCamera:
    def __init__(
        self,
        name: str = "cam0",
        width: int = WIDTH,
        height: int = HEIGHT,
        fps: int = 30,
        hfov: float = 60.0,
    ) -> None:
        self.name = name
        self.config = CameraConfig(
            name=name, width=width, height=height, fps_request=fps, horizontal_fov_deg=hfov
        )
        self.opened = True
        self.exposure: Optional[float] = None
        self.brightness: Optional[float] = None
        self.calls: List[Tuple[str, float]] = []
        self.fail_exposure = False

    def is_opened(self) -> bool:
        return self.opened

    def open(self) -> bool:
        self.opened = True
        return True

    def read(self):
        return time.time(), None

    def release(self) -> None:
        self.opened = False

    def set_exposure(self, value: float) -> Optional[DeviceSetFailure]:
        self.calls.append(("exposure", value))
        if self.fail_exposure:
            return DeviceSetFailure("exposure", value, "driver said no")
        self.exposure = value
        return None

    def set_brightness(self, value: float) -> Optional[DeviceSetFailure]:
        self.calls.append(("brightness", value))
        self.brightness = value
        return None

    @property
    def video_mode(self) -> VideoMode:
        return VideoMode(self.config.width, self.config.height, self.config.fps_request)

    def camera_values(self) -> CameraValues:
        return CameraValues(self.config.width, self.config.height, self.config.horizontal_fov_deg)


class ManualClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


def blob_frame(
    top_left: Tuple[int, int] = (100, 100),
    size: Tuple[int, int] = (40, 20),
    color: Tuple[int, int, int] = (0, 255, 0),
) -> np.ndarray:
    frame = np.zeros((HEIGHT, WIDTH, 3), dtype=np.uint8)
    x, y = top_left
    w, h = size
    cv2.rectangle(frame, (x, y), (x + w - 1, y + h - 1), color, -1)
    return frame


@pytest.fixture
def camera() -> FakeCamera:
    return FakeCamera()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def three_pipelines() -> dict:
    return {
        0: GREEN_PIPELINE,
        1: PipelineSettings(nickname="one", exposure=10.0, brightness=20.0),
        2: PipelineSettings(nickname="two", exposure=70.0, brightness=80.0),
    }


@pytest.fixture
def store(camera: FakeCamera, three_pipelines: dict) -> SettingsStore:
    st = SettingsStore()
    st.add_profile(CameraProfile(camera.name, three_pipelines, 0))
    return st


@pytest.fixture
def tables() -> TableStore:
    return TableStore()


@pytest.fixture
def ui_messages() -> list:
    return []


@pytest.fixture
def ui(ui_messages: list) -> UIBroadcaster:
    bc = UIBroadcaster()
    bc.subscribe(ui_messages.append)
    return bc


@pytest.fixture
def coord_cfg() -> CoordinatorConfig:
    return CoordinatorConfig(settings_reload_interval_s=0.0, idle_sleep_s=0.0)
