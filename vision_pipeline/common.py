# common.py
"""Objects that are shared across multiple modules."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Tuple

import cv2
import numpy as np


@dataclass(frozen=True)
class Target:
    """
    A rotated rectangle in *pixel* space, as returned by ``cv2.minAreaRect``.
    """
    center: Tuple[float, float]
    size: Tuple[float, float]
    angle: float = 0.0

    @classmethod
    def from_points(cls, points: np.ndarray) -> "Target":
        (cx, cy), (w, h), angle = cv2.minAreaRect(points)
        return cls((float(cx), float(cy)), (float(w), float(h)), float(angle))

    @property
    def area(self) -> float:
        return self.size[0] * self.size[1]

    def as_rotated_rect(self) -> Tuple[Tuple[float, float], Tuple[float, float], float]:
        return self.center, self.size, self.angle

    def points(self) -> np.ndarray:
        return cv2.boxPoints(self.as_rotated_rect())


@dataclass(frozen=True)
class PipelineResult:
    """
    Outcome of one processed frame. Lives for a single publish cycle.
    """
    valid: bool = False
    raw_point: Optional[Target] = None
    calibrated_x: float = 0.0
    calibrated_y: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0

    @classmethod
    def invalid(cls) -> "PipelineResult":
        return cls()


class SwitchOutcome(Enum):
    APPLIED = auto()
    REJECTED = auto()


@dataclass(frozen=True)
class DeviceSetFailure:
    """Returned (not raised) when the capture driver refuses a property."""
    prop: str
    value: float
    reason: str = ""

    def __str__(self) -> str:
        msg = f"could not set {self.prop}={self.value}"
        return f"{msg}: {self.reason}" if self.reason else msg
