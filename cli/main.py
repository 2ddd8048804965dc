# main.py
"""
Entry-point for the vision pipeline coordinator.

Live settings
-------------
Pipelines live in a JSON file (``--settings``, default ``settings.json``).
Edit it while the program is running and the new values take effect at the
start of the next cycle. A change that removes the pipeline currently in use
is rejected for that camera.

Controller side
---------------
Switch pipelines by writing ``"pipeline<N>"`` to the camera's ``Pipeline``
entry, toggle driver mode through ``Driver_Mode``. Results appear under
``Valid``, ``Pitch``, ``Yaw`` and ``TimeStamp``.
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path

from vision_pipeline.camera import Camera
from vision_pipeline.channels import TableStore, UIBroadcaster
from vision_pipeline.config import CameraConfig, CoordinatorConfig
from vision_pipeline.coordinator import PipelineCoordinator
from vision_pipeline.settings import SettingsStore


def _parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Single-camera vision pipeline")
    ap.add_argument("--settings", default="settings.json", help="pipeline settings JSON")
    ap.add_argument("--name", default="camera0", help="camera name / table namespace")
    ap.add_argument("--device", type=int, default=0, help="capture device index")
    ap.add_argument("--width", type=int, default=320)
    ap.add_argument("--height", type=int, default=240)
    ap.add_argument("--fps", type=int, default=30)
    ap.add_argument("--fov", type=float, default=60.8, help="horizontal FOV in degrees")
    ap.add_argument("--show", action="store_true", help="open a preview window ('q' quits)")
    ap.add_argument("--print-ui", action="store_true", help="echo UI messages to stdout")
    return ap.parse_args()


# ────────────────────────────────────────────────────────────────────────────
#   M A I N
# ────────────────────────────────────────────────────────────────────────────
def main() -> None:
    args = _parse_args()
    print("Initializing vision pipeline…")

    # -------------------- Config blobs --------------------
    cam_cfg = CameraConfig(
        name=args.name,
        device_index=args.device,
        width=args.width,
        height=args.height,
        fps_request=args.fps,
        horizontal_fov_deg=args.fov,
    )
    coord_cfg = CoordinatorConfig(show_window=args.show)

    store = SettingsStore(Path(args.settings))
    if not Path(args.settings).exists():
        store.profile(cam_cfg.name)
        store.save()

    ui = UIBroadcaster()
    if args.print_ui:
        ui.subscribe(lambda msg: print(f"[UI] {json.dumps(msg)}"))
    tables = TableStore(coord_cfg.table_root)

    # ------------------------ Banner ----------------------
    profile = store.profile(cam_cfg.name)
    print(
        f"Camera: {cam_cfg.name} idx={cam_cfg.device_index}, "
        f"{cam_cfg.width}x{cam_cfg.height}@{cam_cfg.fps_request} FPS, "
        f"HFOV={cam_cfg.horizontal_fov_deg}°"
    )
    print(
        f"Pipelines: {sorted(profile.pipelines)}, current={profile.current_index} "
        f"({profile.current_pipeline.nickname})"
    )
    print(f"Table: {coord_cfg.table_root}/{cam_cfg.name}")

    # ------------------------ Run -------------------------
    PipelineCoordinator(Camera(cam_cfg), store, tables, ui, coord_cfg).run()
    print("Main program finished.")


if __name__ == "__main__":
    main()
