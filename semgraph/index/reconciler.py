"""
Pure fingerprint reconciliation.

Given the persisted ``path -> hash`` map and a freshly computed one,
classify every path as added, modified, deleted or unchanged.  No I/O and
no state: callers load the previous map from the metrics store each cycle.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..errors import ReconcileInputError


@dataclass(frozen=True)
class ChangeSet:
    """Classification of paths between two fingerprint maps (each list sorted)."""
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def needs_rescan(self) -> list[str]:
        return sorted(self.added + self.modified)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)

    def to_dict(self) -> dict:
        return {
            "added": list(self.added),
            "modified": list(self.modified),
            "deleted": list(self.deleted),
            "unchanged": list(self.unchanged),
            "needs_rescan": self.needs_rescan,
        }


def _validate(name: str, value) -> None:
    if not isinstance(value, Mapping):
        raise ReconcileInputError(
            f"{name} fingerprints must be a mapping, got {type(value).__name__}"
        )
    for path, digest in value.items():
        if not isinstance(path, str) or not isinstance(digest, str):
            raise ReconcileInputError(
                f"{name} fingerprints must map str -> str, got {path!r}: {digest!r}"
            )


def reconcile(previous: Mapping[str, str], current: Mapping[str, str]) -> ChangeSet:
    """
    Compare two fingerprint maps.

    Raises
    ------
    ReconcileInputError
        If either argument is not a ``str -> str`` mapping.
    """
    _validate("previous", previous)
    _validate("current", current)

    added, modified, unchanged = [], [], []
    for path, digest in current.items():
        before = previous.get(path)
        if before is None:
            added.append(path)
        elif before != digest:
            modified.append(path)
        else:
            unchanged.append(path)
    deleted = [path for path in previous if path not in current]

    return ChangeSet(
        added=sorted(added),
        modified=sorted(modified),
        deleted=sorted(deleted),
        unchanged=sorted(unchanged),
    )
