# calibration.py
"""Calibrated reference point and pitch/yaw for a selected target."""
from __future__ import annotations

from typing import Tuple

from vision_pipeline.camera import CameraValues
from vision_pipeline.common import PipelineResult, Target
from vision_pipeline.config import PipelineSettings


def calibrate(
    target: Target, settings: PipelineSettings, cam_vals: CameraValues
) -> Tuple[float, float]:
    """
    Uncalibrated pipelines aim at the sensor center. Calibrated ones use the
    inverse of the linear map ``y = M*x + B``; note the axes swap.
    """
    if not settings.is_calibrated:
        return cam_vals.center_x, cam_vals.center_y
    x, y = target.center
    if settings.M == 0:
        return cam_vals.center_x, cam_vals.center_y
    return (y - settings.B) / settings.M, x * settings.M + settings.B


def compute_angles(
    target: Target, calibrated: Tuple[float, float], cam_vals: CameraValues
) -> Tuple[float, float]:
    """Returns ``(pitch, yaw)`` in degrees."""
    x, y = target.center
    cal_x, cal_y = calibrated
    pitch = cam_vals.calculate_pitch(y, cal_y)
    yaw = cam_vals.calculate_yaw(x, cal_x)
    return pitch, yaw


def build_result(
    target: Target, settings: PipelineSettings, cam_vals: CameraValues
) -> PipelineResult:
    cal_x, cal_y = calibrate(target, settings, cam_vals)
    pitch, yaw = compute_angles(target, (cal_x, cal_y), cam_vals)
    return PipelineResult(
        valid=True,
        raw_point=target,
        calibrated_x=cal_x,
        calibrated_y=cal_y,
        pitch=pitch,
        yaw=yaw,
    )
