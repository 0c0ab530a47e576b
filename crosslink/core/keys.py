from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence, Union

import pandas as pd

from .exceptions import AmbiguousKeyError, DuplicateKeyError, KeyRuleError

logger = logging.getLogger(__name__)

KeyRule = Union[str, Callable[[pd.DataFrame], Sequence]]


class KeyResolver:
    """
    Derives a stable string key for every row of a snapshot.

    Policy, in priority order:
    - explicit rule: a column name, or a callable evaluated against each snapshot
    - positional index: only when the caller guarantees row order/membership never changes
    - otherwise the resolver refuses to exist (see `for_source`)

    Keys are always normalised to `str` so they survive the JSON wire format.
    """

    def __init__(self, rule: Optional[KeyRule] = None, *, positional_ok: bool = False) -> None:
        if rule is None and not positional_ok:
            raise AmbiguousKeyError(
                "No key rule supplied and positional keys were not declared stable"
            )
        self.rule = rule
        self.positional_ok = positional_ok

    @classmethod
    def for_source(
        cls,
        rule: Optional[KeyRule],
        *,
        producer_backed: bool,
        stable_index: bool = False,
        name: Optional[str] = None,
    ) -> "KeyResolver":
        """
        Build the resolver a SharedDataset binds at construction.

        A fixed snapshot can always fall back to positions. A producer may reorder
        or resize its output, so it needs either an explicit rule or an explicit
        `stable_index=True` promise.
        """
        if rule is not None:
            return cls(rule)

        if producer_backed and not stable_index:
            where = f" '{name}'" if name else ""
            raise AmbiguousKeyError(
                f"Producer-backed dataset{where} needs an explicit key rule "
                "(column name or callable), or stable_index=True if rows never move"
            )

        return cls(None, positional_ok=True)

    @property
    def is_positional(self) -> bool:
        return self.rule is None

    def describe(self) -> str:
        if self.rule is None:
            return "position"
        if isinstance(self.rule, str):
            return f"column:{self.rule}"
        return f"callable:{getattr(self.rule, '__name__', type(self.rule).__name__)}"

    def resolve(self, frame: pd.DataFrame, *, dataset: Optional[str] = None) -> pd.Index:
        """
        Return one key per row of `frame`, as a string Index.

        Raises:
            KeyRuleError: the rule names a missing column or yields the wrong number of keys
            DuplicateKeyError: two rows share a key
        """
        n = len(frame)

        if self.rule is None:
            raw = range(n)
        elif isinstance(self.rule, str):
            if self.rule not in frame.columns:
                raise KeyRuleError(
                    f"Key column '{self.rule}' not found. "
                    f"Available columns: {list(frame.columns)}"
                )
            raw = frame[self.rule].to_numpy()
        else:
            try:
                raw = self.rule(frame)
            except Exception as e:
                raise KeyRuleError(f"Key rule {self.describe()} failed: {e}") from e
            if raw is None or len(raw) != n:
                got = "None" if raw is None else len(raw)
                raise KeyRuleError(
                    f"Key rule {self.describe()} returned {got} keys for {n} rows"
                )

        keys = pd.Index([str(k) for k in raw], dtype=object, name="key")

        if not keys.is_unique:
            duplicates = keys[keys.duplicated()].unique()
            logger.warning(
                "Duplicate row keys in snapshot",
                extra={"dataset": dataset, "rule": self.describe(), "n_duplicates": len(duplicates)},
            )
            raise DuplicateKeyError(duplicates, dataset=dataset)

        return keys


def index_rule(frame: pd.DataFrame) -> pd.Index:
    """Key rule that uses the frame's own index (e.g. AnnData obs_names)."""
    return frame.index
