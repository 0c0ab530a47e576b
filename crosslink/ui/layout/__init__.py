"""Layout builders for the linked-views app."""
