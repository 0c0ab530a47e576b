"""
Core linking layer: shared datasets, row keys, selection/filter state,
link groups, and the sync bridge that propagates mutations between them
"""

from .dataset import SharedDataset
from .exceptions import (
    AmbiguousKeyError,
    CrosslinkError,
    DetachedConsumerError,
    DuplicateKeyError,
    MessageFormatError,
)
from .filter_state import FilterState
from .keys import KeyResolver, index_rule
from .link_group import CallbackConsumer, ConsumerHandle, LinkGroup
from .messages import Kind, MutationMessage, Notification
from .scheduler import AsyncioScheduler, Debouncer, ManualScheduler
from .selection_state import SelectionState
from .session import LinkSession
from .snapshot import Snapshot
from .sync_bridge import StaleSequenceDiscard, SyncBridge

__all__ = [
    "AmbiguousKeyError",
    "AsyncioScheduler",
    "CallbackConsumer",
    "ConsumerHandle",
    "CrosslinkError",
    "Debouncer",
    "DetachedConsumerError",
    "DuplicateKeyError",
    "FilterState",
    "KeyResolver",
    "Kind",
    "LinkGroup",
    "LinkSession",
    "ManualScheduler",
    "MessageFormatError",
    "MutationMessage",
    "Notification",
    "SelectionState",
    "SharedDataset",
    "Snapshot",
    "StaleSequenceDiscard",
    "SyncBridge",
    "index_rule",
]
