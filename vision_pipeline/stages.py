# stages.py
"""OpenCV implementation of the per-frame vision stages.

Every method is a pure function of its arguments; nothing is kept between
calls. Grouping, intersection and sort rules live in name-keyed registries
so a pipeline selects them by the string stored in its settings.
"""
from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from vision_pipeline.common import Target

Contour = np.ndarray
Point = Tuple[float, float]
Range = Tuple[float, float]

_KERNEL = cv2.getStructuringElement(cv2.MORPH_RECT, (5, 5))


# ---------------------------------------------------------------------------
#   Intersection policies: does the pair (a, b) form one composite target?
# ---------------------------------------------------------------------------
def _fit_line(contour: Contour) -> Tuple[float, float, float, float]:
    vx, vy, x0, y0 = cv2.fitLine(contour, cv2.DIST_L2, 0, 0.01, 0.01).flatten()
    return float(vx), float(vy), float(x0), float(y0)


def line_intersection(a: Contour, b: Contour) -> Optional[Point]:
    """Intersection of the two contours' fitted lines, ``None`` if parallel."""
    if len(a) < 2 or len(b) < 2:
        return None
    avx, avy, ax, ay = _fit_line(a)
    bvx, bvy, bx, by = _fit_line(b)
    denom = avx * bvy - avy * bvx
    if abs(denom) < 1e-9:
        return None
    t = ((bx - ax) * bvy - (by - ay) * bvx) / denom
    return ax + t * avx, ay + t * avy


def _mean_center(a: Contour, b: Contour) -> Point:
    (ax, ay), _, _ = cv2.minAreaRect(a)
    (bx, by), _, _ = cv2.minAreaRect(b)
    return (ax + bx) / 2.0, (ay + by) / 2.0


def _intersects(side: Callable[[Point, Point], bool]) -> Callable[[Contour, Contour], bool]:
    def check(a: Contour, b: Contour) -> bool:
        point = line_intersection(a, b)
        if point is None:
            return False
        return side(point, _mean_center(a, b))
    return check


INTERSECTION_POLICIES: Dict[str, Callable[[Contour, Contour], bool]] = {
    "None": lambda a, b: True,
    # Image y grows downwards
    "Up": _intersects(lambda p, c: p[1] < c[1]),
    "Down": _intersects(lambda p, c: p[1] > c[1]),
    "Left": _intersects(lambda p, c: p[0] < c[0]),
    "Right": _intersects(lambda p, c: p[0] > c[0]),
}


# ---------------------------------------------------------------------------
#   Group policies
# ---------------------------------------------------------------------------
def _group_single(contours: Sequence[Contour], _paired: Callable) -> List[Target]:
    return [Target.from_points(c) for c in contours]


def _group_dual(
    contours: Sequence[Contour], paired: Callable[[Contour, Contour], bool]
) -> List[Target]:
    ordered = sorted(contours, key=lambda c: cv2.minAreaRect(c)[0][0])
    out: List[Target] = []
    i = 0
    while i < len(ordered) - 1:
        a, b = ordered[i], ordered[i + 1]
        if paired(a, b):
            out.append(Target.from_points(np.vstack((a, b))))
            i += 2
        else:
            i += 1
    return out


GROUP_POLICIES: Dict[str, Callable[[Sequence[Contour], Callable], List[Target]]] = {
    "Single": _group_single,
    "Dual": _group_dual,
}


# ---------------------------------------------------------------------------
#   Sort policies: pick exactly one target
# ---------------------------------------------------------------------------
def _centermost(targets: Sequence[Target], center: Optional[Point]) -> Target:
    if center is None:
        center = (
            sum(t.center[0] for t in targets) / len(targets),
            sum(t.center[1] for t in targets) / len(targets),
        )
    cx, cy = center
    return min(targets, key=lambda t: math.hypot(t.center[0] - cx, t.center[1] - cy))


SORT_POLICIES: Dict[str, Callable[[Sequence[Target], Optional[Point]], Target]] = {
    "Largest": lambda ts, _c: max(ts, key=lambda t: t.area),
    "Smallest": lambda ts, _c: min(ts, key=lambda t: t.area),
    "Highest": lambda ts, _c: min(ts, key=lambda t: t.center[1]),
    "Lowest": lambda ts, _c: max(ts, key=lambda t: t.center[1]),
    "Leftmost": lambda ts, _c: min(ts, key=lambda t: t.center[0]),
    "Rightmost": lambda ts, _c: max(ts, key=lambda t: t.center[0]),
    "Centermost": _centermost,
}


def _in_range(val: float, bounds: Range) -> bool:
    return bounds[0] <= val <= bounds[1]


class StageRunner:
    """The six vision operations consumed by the coordinator."""

    @staticmethod
    def correct_orientation(frame: np.ndarray, orientation: str) -> np.ndarray:
        if orientation == "Normal":
            return frame
        return cv2.flip(frame, -1)

    @staticmethod
    def threshold(
        frame: np.ndarray,
        lower_hsv: Sequence[int],
        upper_hsv: Sequence[int],
        erode: bool = False,
        dilate: bool = False,
    ) -> np.ndarray:
        hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
        mask = cv2.inRange(
            hsv, np.array(lower_hsv, dtype=np.uint8), np.array(upper_hsv, dtype=np.uint8)
        )
        if erode:
            mask = cv2.erode(mask, _KERNEL)
        if dilate:
            mask = cv2.dilate(mask, _KERNEL)
        return mask

    @staticmethod
    def mask_to_display(mask: np.ndarray) -> np.ndarray:
        return cv2.cvtColor(mask, cv2.COLOR_GRAY2BGR)

    @staticmethod
    def extract_shapes(mask: np.ndarray) -> List[Contour]:
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        return list(contours)

    @staticmethod
    def filter_shapes(
        contours: Sequence[Contour],
        area: Range,
        ratio: Range,
        extent: Range,
        image_area: Optional[float] = None,
    ) -> List[Contour]:
        """
        ``area`` is a percentage of ``image_area`` when given, pixels
        otherwise. ``ratio`` is bounding-box width/height and ``extent`` the
        percentage of the rotated rectangle filled by the contour.
        """
        kept: List[Contour] = []
        for c in contours:
            c_area = cv2.contourArea(c)
            area_val = c_area / image_area * 100.0 if image_area else c_area
            if not _in_range(area_val, area):
                continue

            _, _, w, h = cv2.boundingRect(c)
            if h == 0 or not _in_range(w / h, ratio):
                continue

            _, (rw, rh), _ = cv2.minAreaRect(c)
            rect_area = rw * rh
            extent_val = c_area / rect_area * 100.0 if rect_area > 0 else 0.0
            if not _in_range(extent_val, extent):
                continue
            kept.append(c)
        return kept

    @staticmethod
    def group_shapes(
        contours: Sequence[Contour], intersection: str, group: str
    ) -> List[Target]:
        paired = INTERSECTION_POLICIES[intersection]
        return GROUP_POLICIES[group](contours, paired)

    @staticmethod
    def select_target(
        targets: Sequence[Target], sort_mode: str, frame_center: Optional[Point] = None
    ) -> Optional[Target]:
        if not targets:
            return None
        return SORT_POLICIES[sort_mode](targets, frame_center)
