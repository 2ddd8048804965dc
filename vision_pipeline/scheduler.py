# scheduler.py
"""Frame-rate gate and smoothed FPS estimate."""
from __future__ import annotations

from typing import Optional

FRAME_SLACK_MS = 3.0
UI_FPS_INTERVAL_MS = 500.0


def frame_interval_ms(target_fps: float, slack_ms: float = FRAME_SLACK_MS) -> float:
    if target_fps <= 0:
        return 0.0
    return 1000.0 / target_fps + slack_ms


def should_admit_frame(
    now: float,
    last_frame_end: Optional[float],
    target_fps: float,
    slack_ms: float = FRAME_SLACK_MS,
) -> bool:
    """
    True when at least ``1000/target_fps + slack_ms`` milliseconds passed
    since the previous cycle ended. Times are seconds on a monotonic clock.
    """
    if last_frame_end is None:
        return True
    return (now - last_frame_end) * 1000.0 >= frame_interval_ms(target_fps, slack_ms)


class FrameScheduler:
    def __init__(
        self,
        target_fps: float,
        slack_ms: float = FRAME_SLACK_MS,
        ui_interval_ms: float = UI_FPS_INTERVAL_MS,
    ) -> None:
        self.target_fps = target_fps
        self.slack_ms = slack_ms
        self.ui_interval_ms = ui_interval_ms

        self.last_frame_end: Optional[float] = None
        self.last_fps_update: Optional[float] = None
        self.fps = 0.0       # unclamped, from the last cycle
        self.ui_fps = 0.0    # clamped to target_fps, refreshed every ui_interval_ms

    def should_admit(self, now: float) -> bool:
        return should_admit_frame(now, self.last_frame_end, self.target_fps, self.slack_ms)

    def refresh_ui_fps(self, now: float) -> float:
        if (
            self.last_fps_update is None
            or (now - self.last_fps_update) * 1000.0 >= self.ui_interval_ms
        ):
            if self.target_fps > 0:
                self.ui_fps = min(self.fps, float(self.target_fps))
            else:
                self.ui_fps = self.fps
            self.last_fps_update = now
        return self.ui_fps

    def finish_cycle(self, start: float, end: float) -> None:
        self.last_frame_end = end
        elapsed_ms = (end - start) * 1000.0
        if elapsed_ms > 0:
            self.fps = 1000.0 / elapsed_ms

    def __repr__(self) -> str:
        return f"<FrameScheduler target={self.target_fps} fps={self.fps:.1f} ui={self.ui_fps:.1f}>"
