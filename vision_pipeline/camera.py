# camera.py
"""Thin VideoCapture wrapper with V4L2 exposure/brightness control, the
device trigonometry used for pitch/yaw, and a latest-frame-wins grabber."""

from __future__ import annotations

import math
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from vision_pipeline.common import DeviceSetFailure
from vision_pipeline.config import CameraConfig


@dataclass(frozen=True)
class VideoMode:
    width: int
    height: int
    fps: int


class CameraValues:
    """Sensor center and pixel → angle converters for one video mode."""

    def __init__(self, width: int, height: int, horizontal_fov_deg: float) -> None:
        self.image_width = width
        self.image_height = height
        self.horizontal_fov_deg = horizontal_fov_deg
        self.vertical_fov_deg = vertical_fov(width, height, horizontal_fov_deg)

        self.center_x = width / 2.0 - 0.5 if width else 0.0
        self.center_y = height / 2.0 - 0.5 if height else 0.0
        self.horizontal_focal_length = _focal_length(width, self.horizontal_fov_deg)
        self.vertical_focal_length = _focal_length(height, self.vertical_fov_deg)

    def calculate_yaw(self, pixel_x: float, center_x: float) -> float:
        if self.horizontal_focal_length == 0:
            return 0.0
        return math.degrees(math.atan((pixel_x - center_x) / self.horizontal_focal_length))

    def calculate_pitch(self, pixel_y: float, center_y: float) -> float:
        # Image y grows downwards; pitch is positive up
        if self.vertical_focal_length == 0:
            return 0.0
        return -math.degrees(math.atan((pixel_y - center_y) / self.vertical_focal_length))

    def __repr__(self) -> str:
        return (
            f"<CameraValues {self.image_width}x{self.image_height} "
            f"HFOV={self.horizontal_fov_deg:.1f} VFOV={self.vertical_fov_deg:.1f}>"
        )


def vertical_fov(width: int, height: int, horizontal_fov_deg: float) -> float:
    if width > 0 and height > 0 and horizontal_fov_deg > 0:
        hfov_rad = math.radians(horizontal_fov_deg)
        return math.degrees(2 * math.atan((height / width) * math.tan(hfov_rad / 2.0)))
    return 0.0


def _focal_length(size: int, fov_deg: float) -> float:
    if size <= 0 or fov_deg <= 0:
        return 0.0
    return size / (2.0 * math.tan(math.radians(fov_deg) / 2.0))


class Camera:
    def __init__(self, config: CameraConfig) -> None:
        self.config = config
        self.name = config.name
        self.cap: Optional[cv2.VideoCapture] = None

        # Exposed runtime-queryable values
        self.actual_width: int = 0
        self.actual_height: int = 0
        self.actual_fps: float = 0.0
        self.actual_fourcc_str: str = ""

    # ------------------------------------------------------------------ #
    #   I N T E R N A L   H E L P E R S
    # ------------------------------------------------------------------ #
    @staticmethod
    def _get_fourcc_str(fourcc_val: int) -> str:
        if fourcc_val == 0:
            return ""
        return "".join(chr((fourcc_val >> (8 * i)) & 0xFF) for i in range(4))

    @staticmethod
    def _set_v4l2_ctrl(dev: int | str, name: str, value: int | float) -> Optional[str]:
        """
        Fallback when OpenCV refuses a property. Returns an error string or
        ``None`` on success.
        """
        node = f"/dev/video{dev}" if isinstance(dev, int) else str(dev)
        cmd = ["v4l2-ctl", "-d", node, "--set-ctrl", f"{name}={value}"]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except FileNotFoundError:
            return "v4l2-ctl not installed"
        except subprocess.CalledProcessError as exc:
            return exc.stderr.decode(errors="replace").strip()
        print(f"[Camera] v4l2-ctl set-ctrl {name}={value}")
        return None

    def _set_prop(
        self, prop: int, v4l2_name: str, label: str, value: float
    ) -> Optional[DeviceSetFailure]:
        if not self.is_opened():
            return DeviceSetFailure(label, value, "device not open")
        try:
            ok = self.cap.set(prop, value)
        except cv2.error as exc:
            return DeviceSetFailure(label, value, str(exc))
        if ok:
            return None
        if not self.config.use_v4l2:
            return DeviceSetFailure(label, value, "rejected by driver")
        err = self._set_v4l2_ctrl(self.config.device_index, v4l2_name, int(value))
        return DeviceSetFailure(label, value, err) if err else None

    # ------------------------------------------------------------------ #
    #   P U B L I C   A P I
    # ------------------------------------------------------------------ #
    def open(self) -> bool:
        """Open camera and apply resolution/fps."""
        backend = cv2.CAP_V4L2 if self.config.use_v4l2 else 0
        self.cap = cv2.VideoCapture(self.config.device_index, backend)
        if not self.cap or not self.cap.isOpened():
            print(f"[Camera] Could not open device {self.config.device_index}")
            self.cap = None
            return False

        if self.config.fourcc_str:
            self.cap.set(
                cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*self.config.fourcc_str)
            )
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        if self.config.fps_request > 0:
            self.cap.set(cv2.CAP_PROP_FPS, self.config.fps_request)
        # Keep the driver queue short; we only ever want the newest frame
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        time.sleep(0.1)  # Let driver settle

        self.actual_fourcc_str = self._get_fourcc_str(
            int(self.cap.get(cv2.CAP_PROP_FOURCC))
        )
        self.actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.actual_fps = self.cap.get(cv2.CAP_PROP_FPS)

        print(
            f"[Camera] {self.name}: {self.actual_width}x{self.actual_height}"
            f"@{self.actual_fps:.1f} FPS (FOURCC='{self.actual_fourcc_str}')"
        )
        if self.actual_width == 0 or self.actual_height == 0:
            print("[Camera] Error: camera returned zero resolution", file=sys.stderr)
            self.release()
            return False
        return True

    def read(self) -> Tuple[float, Optional[np.ndarray]]:
        if not self.is_opened():
            return time.time(), None
        ts = time.time()
        ret, frame = self.cap.read()
        return (ts, frame) if ret and frame is not None else (ts, None)

    def is_opened(self) -> bool:
        return bool(self.cap and self.cap.isOpened())

    def release(self) -> None:
        if self.cap:
            print(f"[Camera] Releasing capture device {self.name}")
            self.cap.release()
            self.cap = None

    def set_exposure(self, value: float) -> Optional[DeviceSetFailure]:
        # 1 = manual on V4L2; must come *before* the absolute value
        if self.is_opened():
            self.cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, 1)
        return self._set_prop(
            cv2.CAP_PROP_EXPOSURE, "exposure_time_absolute", "exposure", value
        )

    def set_brightness(self, value: float) -> Optional[DeviceSetFailure]:
        return self._set_prop(cv2.CAP_PROP_BRIGHTNESS, "brightness", "brightness", value)

    @property
    def video_mode(self) -> VideoMode:
        width = self.actual_width or self.config.width
        height = self.actual_height or self.config.height
        fps = int(round(self.actual_fps)) if self.actual_fps > 0 else self.config.fps_request
        return VideoMode(width, height, fps)

    def camera_values(self) -> CameraValues:
        mode = self.video_mode
        return CameraValues(mode.width, mode.height, self.config.horizontal_fov_deg)


class FrameGrabber:
    """
    Reads the camera on its own thread. Only the newest frame is kept; a
    frame that was not consumed is overwritten. The processed output frame
    is handed back here for streaming.
    """

    def __init__(self, camera) -> None:
        self.camera = camera
        self._lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None
        self._latest_ts = 0.0
        self._output: Optional[np.ndarray] = None
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.frames_grabbed = 0

    def start(self) -> "FrameGrabber":
        self._stopped.clear()
        self._thread = threading.Thread(
            target=self._update, name=f"grab-{self.camera.name}", daemon=True
        )
        self._thread.start()
        return self

    def _update(self) -> None:
        while not self._stopped.is_set():
            ts, frame = self.camera.read()
            if frame is None:
                time.sleep(0.01)
                continue
            self.push(ts, frame)

    def push(self, ts: float, frame: np.ndarray) -> None:
        with self._lock:
            self._latest = frame
            self._latest_ts = ts
            self.frames_grabbed += 1

    def latest(self) -> Tuple[float, Optional[np.ndarray]]:
        """Return ``(capture_ts, copy_of_frame)``; the copy is the caller's."""
        with self._lock:
            if self._latest is None:
                return self._latest_ts, None
            return self._latest_ts, self._latest.copy()

    def update_output(self, frame: np.ndarray) -> None:
        with self._lock:
            self._output = frame

    def latest_output(self) -> Optional[np.ndarray]:
        with self._lock:
            return None if self._output is None else self._output.copy()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
