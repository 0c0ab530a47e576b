"""Dash callback registration for the linked-views app."""
