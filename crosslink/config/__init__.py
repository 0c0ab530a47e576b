"""
Config package for crosslink.

Responsible for:
- config models (GlobalConfig, LinkConfig, DatasetConfig)
- config I/O helpers (load_global_config / load_dataset_registry)
"""

from .model import DatasetConfig, GlobalConfig, GroupConfig, LinkConfig
from .loader import load_dataset_registry, load_global_config

__all__ = [
    "DatasetConfig",
    "GlobalConfig",
    "GroupConfig",
    "LinkConfig",
    "load_dataset_registry",
    "load_global_config",
]
