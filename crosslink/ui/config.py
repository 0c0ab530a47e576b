from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from crosslink.config.model import GlobalConfig
from crosslink.services.session_service import FrameCache, LinkSessionManager


@dataclass
class AppConfig:
    """
    Shared state for the Dash app, passed into layout + callback registration
    functions instead of module-level globals.
    """
    config_root: Path
    global_config: GlobalConfig
    dataset_names: List[str] = field(default_factory=list)
    frames: Optional[FrameCache] = None
    sessions: Optional[LinkSessionManager] = None

    def validate(self) -> None:
        """Ensure all required services are attached before the app starts."""
        if self.sessions is None:
            raise RuntimeError("AppConfig.sessions must be initialized.")
        if self.frames is None:
            raise RuntimeError("AppConfig.frames must be initialized.")
