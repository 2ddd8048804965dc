# settings.py
"""Per-camera pipeline mappings, persisted as JSON and hot-reloaded."""
from __future__ import annotations

import json
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from vision_pipeline.config import PipelineSettings, default_pipelines


class CameraProfile:
    """
    Ordered ``index -> PipelineSettings`` mapping plus the current index.

    Every mutator refuses (returns ``False``) an update that would leave the
    current index pointing at a missing entry. Check and update happen under
    one lock, so switches and settings reloads from different threads cannot
    interleave.
    """

    def __init__(
        self,
        name: str,
        pipelines: Optional[Mapping[int, PipelineSettings]] = None,
        current_index: Optional[int] = None,
    ) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._pipelines: Dict[int, PipelineSettings] = dict(
            sorted((pipelines or default_pipelines()).items())
        )
        if not self._pipelines:
            raise ValueError(f"camera {name!r} needs at least one pipeline")
        if current_index is None:
            current_index = next(iter(self._pipelines))
        if current_index not in self._pipelines:
            raise ValueError(f"camera {name!r}: no pipeline {current_index}")
        self._current = current_index

    # ---------------- accessors ----------------
    @property
    def current_index(self) -> int:
        return self._current

    @property
    def current_pipeline(self) -> PipelineSettings:
        with self._lock:
            return self._pipelines[self._current]

    @property
    def pipelines(self) -> Dict[int, PipelineSettings]:
        with self._lock:
            return dict(self._pipelines)

    def has_pipeline(self, index: int) -> bool:
        return index in self._pipelines

    def get_pipeline(self, index: int) -> Optional[PipelineSettings]:
        return self._pipelines.get(index)

    # ---------------- mutators -----------------
    def set_current_index(self, index: int) -> bool:
        return self.select(index) is not None

    def select(self, index: int) -> Optional[PipelineSettings]:
        """Make ``index`` current and return its settings, ``None`` if missing."""
        with self._lock:
            pipe = self._pipelines.get(index)
            if pipe is not None:
                self._current = index
            return pipe

    def put_pipeline(self, index: int, settings: PipelineSettings) -> bool:
        with self._lock:
            pipelines = dict(self._pipelines)
            pipelines[index] = settings
            self._pipelines = dict(sorted(pipelines.items()))
        return True

    def add_pipeline(self, settings: Optional[PipelineSettings] = None) -> int:
        with self._lock:
            index = max(self._pipelines) + 1
            self.put_pipeline(index, settings or PipelineSettings())
        return index

    def duplicate_pipeline(self, index: int) -> Optional[int]:
        with self._lock:
            src = self._pipelines.get(index)
            if src is None:
                return None
            return self.add_pipeline(replace(src, nickname=f"{src.nickname} (Copy)"))

    def remove_pipeline(self, index: int) -> bool:
        with self._lock:
            if index == self._current or index not in self._pipelines:
                return False
            pipelines = dict(self._pipelines)
            del pipelines[index]
            self._pipelines = pipelines
        return True

    def replace_pipelines(self, pipelines: Mapping[int, PipelineSettings]) -> bool:
        with self._lock:
            if self._current not in pipelines:
                return False
            self._pipelines = dict(sorted(pipelines.items()))
        return True

    # ---------------- (de)serialisation --------
    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "current_pipeline": self._current,
                "pipelines": {str(i): p.to_dict() for i, p in self._pipelines.items()},
            }

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "CameraProfile":
        pipelines = {
            int(idx): PipelineSettings.from_dict(raw)
            for idx, raw in data.get("pipelines", {}).items()
        }
        return cls(name, pipelines or None, data.get("current_pipeline"))

    def __repr__(self) -> str:
        return (
            f"<CameraProfile {self.name!r} current={self._current} "
            f"pipelines={list(self._pipelines)}>"
        )


class SettingsStore:
    """
    Holds every camera's profile plus the camera currently shown in the UI.

    When backed by a file, :meth:`maybe_reload` re-reads it after an
    external edit; profiles whose new mapping lacks the current index keep
    their old mapping.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser().resolve() if path else None
        self._stamp: Tuple[float, int] = (0.0, -1)  # (mtime, size)
        self._lock = threading.RLock()
        self._profiles: Dict[str, CameraProfile] = {}
        self._curr_camera = ""
        self.version = 0  # bumped on every successful (re)load
        if self.path is not None:
            print(f"[Settings] Watching: {self.path}")
            self._load(initial=True)

    # ------------------------------------------------------------------
    #   Internal helpers
    # ------------------------------------------------------------------
    def _load(self, *, initial: bool = False) -> bool:
        try:
            with self.path.open("r", encoding="utf-8") as fp:
                data = json.load(fp)
            stat = self.path.stat()
            self._stamp = (stat.st_mtime, stat.st_size)
        except FileNotFoundError:
            if initial:
                print(f"[Settings] {self.path} not found – using defaults.")
            else:
                print(f"[Settings] {self.path} was deleted – keeping old settings.")
            return False
        except json.JSONDecodeError as exc:
            print(f"[Settings] JSON error in {self.path}: {exc}")
            return False

        try:
            self._apply(data, initial=initial)
        except (KeyError, TypeError, ValueError) as exc:
            print(f"[Settings] Invalid settings in {self.path}: {exc}")
            return False
        self.version += 1
        if not initial:
            print(f"[Settings] Reloaded settings from {self.path}")
        return True

    def _apply(self, data: Mapping[str, Any], *, initial: bool) -> None:
        loaded = {
            name: CameraProfile.from_dict(name, raw)
            for name, raw in data.get("cameras", {}).items()
        }
        with self._lock:
            self._curr_camera = str(data.get("curr_camera", self._curr_camera))
            for name, profile in loaded.items():
                existing = self._profiles.get(name)
                if existing is None or initial:
                    self._profiles[name] = profile
                elif not existing.replace_pipelines(profile.pipelines):
                    print(
                        f"[Settings] {name}: reload dropped current pipeline "
                        f"{existing.current_index} – change rejected"
                    )

    # ------------------------------------------------------------------
    #   Public API
    # ------------------------------------------------------------------
    def maybe_reload(self) -> bool:
        """
        If the backing file changed since the last call reload it and
        return **True**, else return **False**.
        """
        if self.path is None:
            return False
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return False

        mtime, fsize = self._stamp
        # Coarse filesystem timestamps: any size change or a >=1 s bump counts
        if stat.st_size != fsize or stat.st_mtime - mtime >= 1.0:
            return self._load()
        return False

    def profile(self, camera_name: str) -> CameraProfile:
        """Return the camera's profile, creating a default one on first use."""
        with self._lock:
            prof = self._profiles.get(camera_name)
            if prof is None:
                prof = CameraProfile(camera_name)
                self._profiles[camera_name] = prof
                if not self._curr_camera:
                    self._curr_camera = camera_name
            return prof

    def add_profile(self, profile: CameraProfile) -> None:
        with self._lock:
            self._profiles[profile.name] = profile
            if not self._curr_camera:
                self._curr_camera = profile.name

    @property
    def camera_names(self) -> List[str]:
        with self._lock:
            return list(self._profiles)

    @property
    def curr_camera(self) -> str:
        with self._lock:
            return self._curr_camera

    @curr_camera.setter
    def curr_camera(self, name: str) -> None:
        with self._lock:
            self._curr_camera = name

    def full_settings(self, camera_name: str) -> Dict[str, Any]:
        """The payload the UI gets on a full-settings resend."""
        with self._lock:
            prof = self.profile(camera_name)
            return {
                "curr_camera": self._curr_camera,
                "camera": camera_name,
                "cameras": self.camera_names,
                **prof.to_dict(),
            }

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "curr_camera": self._curr_camera,
                "cameras": {n: p.to_dict() for n, p in self._profiles.items()},
            }

    def save(self, path: str | Path | None = None) -> Path:
        target = Path(path).expanduser().resolve() if path else self.path
        if target is None:
            raise ValueError("no settings path configured")
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as fp:
            json.dump(self.to_dict(), fp, indent=2)
        if target == self.path:
            stat = target.stat()
            self._stamp = (stat.st_mtime, stat.st_size)
        print(f"[Settings] Saved to {target}")
        return target
