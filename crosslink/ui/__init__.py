"""
Dash adapter for crosslink: app factory, layout, and callbacks that carry
link mutations/notifications between browser widgets and server-side state.
"""

from .dash_app import create_dash_app

__all__ = ["create_dash_app"]
