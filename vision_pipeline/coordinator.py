# coordinator.py
"""Glue logic that wires frame grabber → stages → table / UI for one camera."""
from __future__ import annotations

import sys
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Callable, Optional

import cv2
import numpy as np

from vision_pipeline.calibration import build_result
from vision_pipeline.camera import FrameGrabber
from vision_pipeline.channels import TableStore, UIBroadcaster
from vision_pipeline.common import PipelineResult, Target
from vision_pipeline.config import CoordinatorConfig
from vision_pipeline.control import (
    DRIVER_MODE_KEY,
    PIPELINE_KEY,
    ActiveSettings,
    ModeController,
    PipelineSelector,
    SnapshotSlot,
    apply_device_settings,
    initial_snapshot,
)
from vision_pipeline.publisher import ResultPublisher
from vision_pipeline.scheduler import FrameScheduler
from vision_pipeline.settings import SettingsStore
from vision_pipeline.stages import StageRunner

_CONTOUR_COLOR = (255, 0, 0)


@dataclass
class CycleBuffers:
    """Frames owned by a single cycle; dropped on every exit path."""
    input: Optional[np.ndarray] = None
    mask: Optional[np.ndarray] = None
    output: Optional[np.ndarray] = None

    def release(self) -> None:
        self.input = None
        self.mask = None
        self.output = None


class PipelineCoordinator:
    """The per-camera run loop."""

    def __init__(
        self,
        camera,
        store: SettingsStore,
        tables: TableStore,
        ui: Optional[UIBroadcaster] = None,
        cfg: Optional[CoordinatorConfig] = None,
        *,
        runner: Optional[StageRunner] = None,
        grabber: Optional[FrameGrabber] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = cfg or CoordinatorConfig()
        self.camera = camera
        self.name = camera.name
        self.store = store
        self.profile = store.profile(self.name)
        self.table = tables.table(self.name)
        self.ui = ui
        self.runner = runner or StageRunner()
        self.grabber = grabber or FrameGrabber(camera)
        self.clock = clock

        self.cam_vals = camera.camera_values()
        self.scheduler = FrameScheduler(
            camera.video_mode.fps, self.cfg.fps_slack_ms, self.cfg.ui_fps_interval_ms
        )

        # Reconfiguration: listeners publish snapshots, the loop reads them
        self.slot = SnapshotSlot(initial_snapshot(self.profile))
        self.selector = PipelineSelector(
            camera,
            self.profile,
            self.slot,
            self.table,
            ui,
            full_settings=lambda: self.store.full_settings(self.name),
        )
        self.modes = ModeController(camera, self.profile, self.slot, self.table, self.cfg)
        self.publisher = ResultPublisher(self.name, self.table, ui)

        self._stop = threading.Event()
        self._listening = False
        self._settings_version = store.version
        self._last_settings_check = 0.0

        self.total_frames = 0
        self.last_result: Optional[PipelineResult] = None

    # ---------------------------------------------------------------------
    #                         Setup / teardown
    # ---------------------------------------------------------------------
    def setup(self) -> bool:
        """Open camera, advertise table entries, start grabbing."""
        if not self.camera.is_opened() and not self.camera.open():
            return False

        mode = self.camera.video_mode
        self.scheduler.target_fps = mode.fps
        self.cam_vals = self.camera.camera_values()

        snap = self.slot.read()
        apply_device_settings(self.camera, snap.exposure, snap.brightness)

        self.modes.advertise()
        self.selector.advertise()
        if not self._listening:
            self.table.add_listener(PIPELINE_KEY, self.selector.on_table_update)
            self.table.add_listener(DRIVER_MODE_KEY, self.modes.on_table_update)
            self._listening = True

        self.grabber.start()
        print(
            f"[Coordinator] {self.name}: {mode.width}x{mode.height}@{mode.fps} "
            f"pipeline={snap.pipeline_index} – setup complete"
        )
        return True

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def cleanup(self) -> None:
        print(f"[Coordinator] {self.name}: cleaning up...")
        self.grabber.stop()
        self.camera.release()
        if self.cfg.show_window:
            cv2.destroyAllWindows()
        print(f"[Coordinator] {self.name}: exited. Total frames: {self.total_frames}")

    # ---------------------------------------------------------------------
    #                        Drawing / UI helpers
    # ---------------------------------------------------------------------
    @staticmethod
    def _draw_overlay(img: np.ndarray, target: Target) -> None:
        box = np.round(target.points()).astype(np.int32)
        cv2.drawContours(img, [box], 0, _CONTOUR_COLOR, 3)
        cx, cy = target.center
        cv2.circle(img, (int(round(cx)), int(round(cy))), 3, _CONTOUR_COLOR)

    def _show_preview(self) -> None:
        out = self.grabber.latest_output()
        if out is not None:
            cv2.imshow(self.name, out)
        if (cv2.waitKey(1) & 0xFF) == ord("q"):
            self.stop()

    def _maybe_reload_settings(self, now: float) -> None:
        if now - self._last_settings_check < self.cfg.settings_reload_interval_s:
            return
        self._last_settings_check = now
        self.store.maybe_reload()
        if self.store.version != self._settings_version:
            self._settings_version = self.store.version
            self.selector.refresh()

    # ---------------------------------------------------------------------
    #                          Per-frame stages
    # ---------------------------------------------------------------------
    def process_frame(self, buffers: CycleBuffers, snapshot: ActiveSettings) -> PipelineResult:
        """Run the vision stages on ``buffers.input``; fills ``buffers.output``."""
        pipe = snapshot.pipeline
        if pipe is not None:
            buffers.input = self.runner.correct_orientation(buffers.input, pipe.orientation)
        frame = buffers.input

        if snapshot.driver_mode or pipe is None:
            buffers.output = frame.copy()
            return PipelineResult.invalid()

        buffers.mask = self.runner.threshold(
            frame, pipe.hsv_lower, pipe.hsv_upper, pipe.erode, pipe.dilate
        )
        if pipe.is_binary:
            buffers.output = self.runner.mask_to_display(buffers.mask)
        else:
            buffers.output = frame.copy()

        found = self.runner.extract_shapes(buffers.mask)
        if not found:
            return PipelineResult.invalid()

        h, w = frame.shape[:2]
        filtered = self.runner.filter_shapes(
            found, pipe.area, pipe.ratio, pipe.extent, image_area=float(w * h)
        )
        if not filtered:
            return PipelineResult.invalid()

        grouped = self.runner.group_shapes(
            filtered, pipe.target_intersection, pipe.target_group
        )
        if not grouped:
            return PipelineResult.invalid()

        target = self.runner.select_target(
            grouped, pipe.sort_mode, (self.cam_vals.center_x, self.cam_vals.center_y)
        )
        if target is None:
            return PipelineResult.invalid()

        result = build_result(target, pipe, self.cam_vals)
        self._draw_overlay(buffers.output, target)
        return result

    def run_cycle(self) -> Optional[PipelineResult]:
        """
        One gated cycle. Returns ``None`` when nothing was processed (gate
        closed or no frame yet), the published result otherwise.
        """
        start = self.clock()
        if not self.scheduler.should_admit(start):
            return None
        self.scheduler.refresh_ui_fps(start)
        self._maybe_reload_settings(start)

        snapshot = self.slot.read()
        buffers = CycleBuffers()
        try:
            ts, buffers.input = self.grabber.latest()
            if buffers.input is None or buffers.input.size == 0:
                return None

            try:
                result = self.process_frame(buffers, snapshot)
            except Exception:
                # Failed frames are reported invalid
                self.publisher.publish(
                    PipelineResult.invalid(), ts, self.scheduler.ui_fps,
                    active_camera=self.store.curr_camera,
                )
                raise
            self.publisher.publish(
                result, ts, self.scheduler.ui_fps, active_camera=self.store.curr_camera
            )
            self.grabber.update_output(buffers.output)
        finally:
            buffers.release()

        self.total_frames += 1
        self.last_result = result
        self.scheduler.finish_cycle(start, self.clock())
        return result

    # ---------------------------------------------------------------------
    #                             Public run()
    # ---------------------------------------------------------------------
    def run(self) -> None:
        if not self.setup():
            self.cleanup()
            return

        try:
            while not self._stop.is_set():
                try:
                    self.run_cycle()
                except Exception as exc:  # noqa: BLE001
                    print(f"[Coordinator] {self.name}: cycle error: {exc}", file=sys.stderr)
                    traceback.print_exc()
                if self.cfg.show_window:
                    self._show_preview()
                else:
                    time.sleep(self.cfg.idle_sleep_s)
        except KeyboardInterrupt:
            print(f"\n[Coordinator] {self.name}: stopped by user.")
        finally:
            self.cleanup()
