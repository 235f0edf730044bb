"""Options threaded through DAG assembly and locking."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping


@dataclass(frozen=True)
class DAGOptions:
    """
    Settings for building a DAG.

    Attributes:
        verbose (bool): Log a notice whenever an existing node is modified.
        separator (str): Character joining a generic name and its time point
            in expanded node names. It is reserved and may not appear in
            generic names.
    """

    verbose: bool = True
    separator: str = "#"

    def __post_init__(self):
        if not isinstance(self.separator, str) or len(self.separator) != 1:
            raise ValueError("separator must be a single character")
        if self.separator.isalnum() or self.separator == "_":
            raise ValueError("separator cannot be a letter, digit or underscore")

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any] | None) -> "DAGOptions":
        if params is None:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(params) - known
        if unknown:
            raise ValueError(f"Unknown DAG option(s): {sorted(unknown)}")
        return cls(**dict(params))


DEFAULT_OPTIONS = DAGOptions()
