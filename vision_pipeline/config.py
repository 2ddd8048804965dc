# config.py
"""Typed configuration blobs for the whole system."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Tuple

from vision_pipeline.stages import GROUP_POLICIES, INTERSECTION_POLICIES, SORT_POLICIES


# ---------------------- Camera ----------------------
@dataclass
class CameraConfig:
    name: str = "camera0"
    device_index: int = 0
    width: int = 320
    height: int = 240
    fps_request: int = 30
    use_v4l2: bool = True
    fourcc_str: str = "MJPG"
    horizontal_fov_deg: float = 60.8  # From camera data-sheet


# -------------------- Coordinator -------------------
@dataclass
class CoordinatorConfig:
    table_root: str = "/chameleon-vision"
    fps_slack_ms: float = 3.0          # scheduling overhead on top of 1000/fps
    ui_fps_interval_ms: float = 500.0
    driver_exposure: float = 25.0
    driver_brightness: float = 15.0
    settings_reload_interval_s: float = 1.0
    idle_sleep_s: float = 0.001        # poll period of the rate gate
    show_window: bool = False


# --------------------- Pipeline ---------------------
Range = Tuple[float, float]


@dataclass(frozen=True)
class PipelineSettings:
    """One selectable configuration. Replaced wholesale on edit."""

    nickname: str = "New Pipeline"
    orientation: str = "Normal"        # "Normal" | "Inverted"
    exposure: float = 50.0
    brightness: float = 50.0
    hue: Tuple[int, int] = (50, 180)
    saturation: Tuple[int, int] = (50, 255)
    value: Tuple[int, int] = (50, 255)
    erode: bool = False
    dilate: bool = False
    is_binary: bool = False
    area: Range = (0.0, 100.0)         # percent of frame area
    ratio: Range = (0.0, 20.0)         # bounding box width / height
    extent: Range = (0.0, 100.0)       # percent of rotated-rect area
    target_group: str = "Single"
    target_intersection: str = "Up"
    sort_mode: str = "Largest"
    is_calibrated: bool = False
    M: float = 1.0
    B: float = 0.0

    def __post_init__(self) -> None:
        for name, registry in (
            ("target_group", GROUP_POLICIES),
            ("target_intersection", INTERSECTION_POLICIES),
            ("sort_mode", SORT_POLICIES),
        ):
            val = getattr(self, name)
            if val not in registry:
                raise ValueError(f"unknown {name} {val!r}, expected one of {sorted(registry)}")

    @property
    def hsv_lower(self) -> Tuple[int, int, int]:
        return (self.hue[0], self.saturation[0], self.value[0])

    @property
    def hsv_upper(self) -> Tuple[int, int, int]:
        return (self.hue[1], self.saturation[1], self.value[1])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineSettings":
        """Build from a JSON-style dict; unknown keys are ignored."""
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            val = data[f.name]
            # JSON has no tuples
            if isinstance(val, list):
                val = tuple(val)
            kwargs[f.name] = val
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        for key, val in out.items():
            if isinstance(val, tuple):
                out[key] = list(val)
        return out


def default_pipelines() -> Dict[int, PipelineSettings]:
    return {0: PipelineSettings()}
