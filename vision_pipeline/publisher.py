# publisher.py
"""Per-cycle output: numeric fields to the table, a summary to the UI."""
from __future__ import annotations

from typing import Any, Dict, Optional

from vision_pipeline.channels import KeyValueTable, UIBroadcaster
from vision_pipeline.common import PipelineResult

VALID_KEY = "Valid"
YAW_KEY = "Yaw"
PITCH_KEY = "Pitch"
TIMESTAMP_KEY = "TimeStamp"
DISTANCE_KEY = "Distance"  # reserved, never written


class ResultPublisher:
    def __init__(
        self, camera_name: str, table: KeyValueTable, ui: Optional[UIBroadcaster] = None
    ) -> None:
        self.camera_name = camera_name
        self.table = table
        self.ui = ui

    def publish(
        self,
        result: PipelineResult,
        timestamp: float,
        ui_fps: float,
        active_camera: str,
    ) -> None:
        self.table.put(VALID_KEY, result.valid)
        if result.valid:
            # Invalid cycles leave the last good angles in place
            self.table.put(YAW_KEY, result.yaw)
            self.table.put(PITCH_KEY, result.pitch)
        self.table.put(TIMESTAMP_KEY, timestamp)

        if self.ui is not None and active_camera == self.camera_name:
            self.ui.broadcast(ui_message(result, ui_fps))


def ui_message(result: PipelineResult, ui_fps: float) -> Dict[str, Any]:
    if result.valid and result.raw_point is not None:
        raw = [result.raw_point.center[0], result.raw_point.center[1]]
        point = {"pitch": result.pitch, "yaw": result.yaw}
    else:
        raw = [0.0, 0.0]
        point = {"pitch": 0, "yaw": 0}
    point["fps"] = ui_fps
    return {"point": point, "raw_point": raw}
