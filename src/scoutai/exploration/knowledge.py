"""Accumulated exploration knowledge and its aggregation rules."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace


@dataclass(slots=True, frozen=True)
class KnowledgeSnapshot:
    """The oracle's view of what is known after one decision."""

    confirmed: tuple[str, ...] = ()
    assumptions: tuple[str, ...] = ()
    unknowns: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class KnowledgeState:
    """Cumulative knowledge across iterations.

    ``confirmed``, ``assumptions``, ``explored_files`` and
    ``explored_directories`` are insertion-ordered sets: they only grow and
    never hold duplicates. ``unknowns`` is the oracle's latest list.
    """

    confirmed: tuple[str, ...] = ()
    assumptions: tuple[str, ...] = ()
    unknowns: tuple[str, ...] = ()
    explored_files: tuple[str, ...] = ()
    explored_directories: tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> KnowledgeState:
        return cls()

    def to_wire(self) -> dict[str, list[str]]:
        return {
            "confirmed": list(self.confirmed),
            "assumptions": list(self.assumptions),
            "unknowns": list(self.unknowns),
            "explored_files": list(self.explored_files),
            "explored_directories": list(self.explored_directories),
        }


def merge(
    current: KnowledgeState,
    incoming: KnowledgeSnapshot,
    *,
    explored_files: Iterable[str] = (),
    explored_directories: Iterable[str] = (),
) -> KnowledgeState:
    """Fold one decision's knowledge snapshot into the cumulative state.

    Confirmed facts, assumptions and explored paths are unioned. Unknowns are
    replaced wholesale: the oracle's newest judgment of the open gaps
    supersedes the previous list.
    """
    return KnowledgeState(
        confirmed=_ordered_union(current.confirmed, incoming.confirmed),
        assumptions=_ordered_union(current.assumptions, incoming.assumptions),
        unknowns=tuple(incoming.unknowns),
        explored_files=_ordered_union(current.explored_files, explored_files),
        explored_directories=_ordered_union(current.explored_directories, explored_directories),
    )


def record_explored(
    current: KnowledgeState,
    *,
    explored_files: Iterable[str] = (),
    explored_directories: Iterable[str] = (),
) -> KnowledgeState:
    """Add the paths an executed action actually touched."""
    return replace(
        current,
        explored_files=_ordered_union(current.explored_files, explored_files),
        explored_directories=_ordered_union(current.explored_directories, explored_directories),
    )


def _ordered_union(existing: Iterable[str], additions: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = dict.fromkeys(existing)
    for item in additions:
        normalized = item.strip()
        if normalized and normalized not in seen:
            seen[normalized] = None
    return tuple(seen)
