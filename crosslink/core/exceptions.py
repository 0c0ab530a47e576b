from __future__ import annotations

from typing import Iterable


class CrosslinkError(Exception):
    """Base exception for all crosslink errors"""
    pass


class ConfigError(CrosslinkError):
    """Invalid or inconsistent global.json / dataset config"""
    pass


class KeyResolutionError(CrosslinkError):
    """Row keys could not be derived for a snapshot"""
    pass


class AmbiguousKeyError(KeyResolutionError):
    """
    Producer-backed data with no explicit key rule and no guarantee that
    positional indices stay stable across pulls.
    """
    pass


class DuplicateKeyError(KeyResolutionError):
    """Two or more rows in one snapshot resolved to the same key"""

    def __init__(self, duplicates: Iterable[str], dataset: str | None = None):
        self.duplicates = sorted(set(duplicates))
        self.dataset = dataset
        shown = ", ".join(self.duplicates[:5])
        more = f" (+{len(self.duplicates) - 5})" if len(self.duplicates) > 5 else ""
        where = f" in dataset '{dataset}'" if dataset else ""
        super().__init__(f"Duplicate row keys{where}: {shown}{more}")


class KeyRuleError(KeyResolutionError):
    """The key rule itself is unusable for a snapshot (missing column, wrong length)"""
    pass


class DetachedConsumerError(CrosslinkError):
    """A mutation was attempted through a handle that is no longer attached"""
    pass


class MessageFormatError(CrosslinkError):
    """A wire message is missing required fields or carries invalid values"""
    pass


class UnknownGroupError(CrosslinkError):
    """A link group was referenced after its session was closed"""
    pass
