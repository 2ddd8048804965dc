# control.py
"""Runtime reconfiguration: pipeline switching and driver/vision mode.

Both controllers run on the notification thread. They never touch the
coordinator directly; each change is published as a complete, immutable
:class:`ActiveSettings` snapshot that the coordinator picks up at the start
of its next cycle.
"""
from __future__ import annotations

import re
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from vision_pipeline.channels import KeyValueTable, UIBroadcaster
from vision_pipeline.common import DeviceSetFailure, SwitchOutcome
from vision_pipeline.config import CoordinatorConfig, PipelineSettings
from vision_pipeline.settings import CameraProfile

PIPELINE_KEY = "Pipeline"
DRIVER_MODE_KEY = "Driver_Mode"

_PIPELINE_RE = re.compile(r"^\s*pipeline(\d+)\s*$")


def pipeline_key(index: int) -> str:
    """Canonical string form advertised on the table."""
    return f"pipeline{index}"


def parse_pipeline_request(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        m = _PIPELINE_RE.match(value)
        if m:
            return int(m.group(1))
    return None


@dataclass(frozen=True)
class ActiveSettings:
    camera: str
    pipeline_index: int
    pipeline: Optional[PipelineSettings]
    driver_mode: bool
    exposure: float
    brightness: float


class SnapshotSlot:
    """
    Single-slot handoff. Writers serialise on :attr:`write_lock` for the
    whole read-modify-publish sequence; the reader only ever swaps out a
    reference and never waits on a writer's device I/O.
    """

    def __init__(self, initial: ActiveSettings) -> None:
        self.write_lock = threading.RLock()
        self._ref_lock = threading.Lock()
        self._snapshot = initial
        self.version = 0

    def publish(self, snapshot: ActiveSettings) -> None:
        with self._ref_lock:
            self._snapshot = snapshot
            self.version += 1

    def read(self) -> ActiveSettings:
        with self._ref_lock:
            return self._snapshot


def apply_device_settings(
    device, exposure: float, brightness: float
) -> List[DeviceSetFailure]:
    """Push exposure then brightness; failures are logged and returned."""
    failures = []
    for setter, value in ((device.set_exposure, exposure), (device.set_brightness, brightness)):
        failure = setter(value)
        if failure is not None:
            print(f"[Camera] {device.name}: {failure}", file=sys.stderr)
            failures.append(failure)
    return failures


def initial_snapshot(profile: CameraProfile) -> ActiveSettings:
    pipe = profile.current_pipeline
    return ActiveSettings(
        camera=profile.name,
        pipeline_index=profile.current_index,
        pipeline=pipe,
        driver_mode=False,
        exposure=pipe.exposure,
        brightness=pipe.brightness,
    )


class PipelineSelector:
    """Validates and applies pipeline switch requests for one camera."""

    def __init__(
        self,
        device,
        profile: CameraProfile,
        slot: SnapshotSlot,
        table: KeyValueTable,
        ui: Optional[UIBroadcaster] = None,
        full_settings: Optional[Callable[[], Dict[str, Any]]] = None,
    ) -> None:
        self.device = device
        self.profile = profile
        self.slot = slot
        self.table = table
        self.ui = ui
        self.full_settings = full_settings

    @property
    def current_index(self) -> int:
        return self.profile.current_index

    def advertise(self) -> None:
        self.table.put(PIPELINE_KEY, pipeline_key(self.profile.current_index))

    def on_table_update(self, _key: str, value: Any) -> None:
        self.request_switch(value)

    def request_switch(self, requested: Any) -> SwitchOutcome:
        index = parse_pipeline_request(requested)
        with self.slot.write_lock:
            pipe = self.profile.select(index) if index is not None else None
            if pipe is None:
                print(
                    f"[Selector] {self.profile.name}: no pipeline for {requested!r}, "
                    f"staying on {self.profile.current_index}"
                )
                self.advertise()
                return SwitchOutcome.REJECTED

            current = self.slot.read()
            if current.driver_mode:
                exposure, brightness = current.exposure, current.brightness
            else:
                exposure, brightness = pipe.exposure, pipe.brightness
                apply_device_settings(self.device, exposure, brightness)

            self.slot.publish(
                ActiveSettings(
                    camera=self.profile.name,
                    pipeline_index=index,
                    pipeline=pipe,
                    driver_mode=current.driver_mode,
                    exposure=exposure,
                    brightness=brightness,
                )
            )
            self.advertise()

        print(f"[Selector] {self.profile.name}: switched to pipeline {index} ({pipe.nickname})")
        if self.ui is not None:
            self.ui.broadcast({"curr_pipeline": index})
            self.ui.send_full_settings(self.full_settings() if self.full_settings else None)
        return SwitchOutcome.APPLIED

    def refresh(self) -> None:
        """Re-read the profile after its mapping was replaced (settings reload)."""
        with self.slot.write_lock:
            current = self.slot.read()
            pipe = self.profile.current_pipeline
            if pipe == current.pipeline and self.profile.current_index == current.pipeline_index:
                return
            exposure, brightness = current.exposure, current.brightness
            if not current.driver_mode:
                exposure, brightness = pipe.exposure, pipe.brightness
                if (exposure, brightness) != (current.exposure, current.brightness):
                    apply_device_settings(self.device, exposure, brightness)
            self.slot.publish(
                ActiveSettings(
                    camera=self.profile.name,
                    pipeline_index=self.profile.current_index,
                    pipeline=pipe,
                    driver_mode=current.driver_mode,
                    exposure=exposure,
                    brightness=brightness,
                )
            )


class ModeController:
    """Driver mode: fixed dim exposure for a human viewer, no vision."""

    def __init__(
        self,
        device,
        profile: CameraProfile,
        slot: SnapshotSlot,
        table: KeyValueTable,
        cfg: Optional[CoordinatorConfig] = None,
    ) -> None:
        cfg = cfg or CoordinatorConfig()
        self.device = device
        self.profile = profile
        self.slot = slot
        self.table = table
        self.driver_exposure = cfg.driver_exposure
        self.driver_brightness = cfg.driver_brightness

    @property
    def driver_mode(self) -> bool:
        return self.slot.read().driver_mode

    def advertise(self) -> None:
        self.table.put(DRIVER_MODE_KEY, self.driver_mode)

    def on_table_update(self, _key: str, value: Any) -> None:
        if not isinstance(value, bool):
            print(f"[Mode] {self.profile.name}: ignoring non-boolean {value!r}")
            self.advertise()
            return
        self.set_driver_mode(value)

    def set_driver_mode(self, enabled: bool) -> None:
        with self.slot.write_lock:
            current = self.slot.read()
            if enabled:
                exposure, brightness = self.driver_exposure, self.driver_brightness
            else:
                pipe = self.profile.current_pipeline
                exposure, brightness = pipe.exposure, pipe.brightness
            apply_device_settings(self.device, exposure, brightness)
            self.slot.publish(
                ActiveSettings(
                    camera=current.camera,
                    pipeline_index=current.pipeline_index,
                    pipeline=current.pipeline,
                    driver_mode=enabled,
                    exposure=exposure,
                    brightness=brightness,
                )
            )
        print(f"[Mode] {self.profile.name}: {'driver' if enabled else 'vision'} mode")
