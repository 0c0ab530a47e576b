"""
Top-level package for crosslink.

This package exposes the linking core (shared datasets, selection/filter
state, link groups and the sync bridge) plus config and UI adapters.
Most code should import from submodules such as:
    crosslink.core
    crosslink.config
    crosslink.ui
"""

__all__: list[str] = []
