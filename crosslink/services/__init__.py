"""
Service layer: lazily loaded dataset frames and per-session link state
"""

from .session_service import FrameCache, LinkSessionManager

__all__ = ["FrameCache", "LinkSessionManager"]
