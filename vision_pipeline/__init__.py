"""Vision pipeline coordinator – re-export high-level API."""
from .coordinator import PipelineCoordinator                  # noqa: F401
from .config import (                                         # noqa: F401
    CameraConfig, CoordinatorConfig, PipelineSettings,
)
from .common import PipelineResult, SwitchOutcome, Target     # noqa: F401
from .settings import CameraProfile, SettingsStore            # noqa: F401
from .channels import TableStore, UIBroadcaster               # noqa: F401
