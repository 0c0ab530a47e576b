from __future__ import annotations

__all__ = ["IDs", "graph_id", "widget_source_id"]


class IDs:
    class Store:
        SESSION_ID = "link-session-id"
        LINK_MUTATION = "link-mutation"
        LINK_NOTIFICATIONS = "link-notifications"

    class Control:
        RESET_SELECTION_BTN = "reset-selection-btn"
        FILTER_TO_SELECTION = "filter-to-selection"
        STATUS_BAR = "status-bar"

    class Pattern:
        # pattern-matching "type" strings
        LINKED_GRAPH = "linked-graph"


def graph_id(dataset_name: str) -> dict:
    return {"type": IDs.Pattern.LINKED_GRAPH, "index": dataset_name}


def widget_source_id(dataset_name: str) -> str:
    """Source id a dataset's graph uses when it mutates link state."""
    return f"graph:{dataset_name}"
