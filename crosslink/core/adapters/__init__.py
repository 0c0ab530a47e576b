"""Adapters that turn third-party containers into snapshot frames."""
