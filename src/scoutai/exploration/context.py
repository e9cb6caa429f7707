"""Token-bounded rendering of exploration history for the oracle prompt.

Recent iterations are shown in full, the medium-term past as a compact
summary with short observation previews, and anything older as aggregate
statistics only.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass

from scoutai.exploration.knowledge import KnowledgeState
from scoutai.exploration.models import HistoryEntry
from scoutai.exploration.schema import history_entry_to_wire

RECENT_WINDOW = 3
MEDIUM_WINDOW = 10
MAX_RECENT_FINDINGS = 3
OBSERVATION_PREVIEW_CHARS = 200
MAX_OBSERVATION_FIELD_CHARS = 6000


@dataclass(slots=True, frozen=True)
class ExplorationContext:
    cumulative_knowledge: str
    exploration_history: str
    current_iteration: int
    progress_summary: str


def build_exploration_context(
    history: Sequence[HistoryEntry],
    knowledge: KnowledgeState | None,
) -> ExplorationContext:
    knowledge_text = json.dumps(knowledge.to_wire(), indent=2) if knowledge else "None"
    if not history:
        return ExplorationContext(
            cumulative_knowledge=knowledge_text,
            exploration_history="None - This is the first iteration",
            current_iteration=1,
            progress_summary="Starting exploration",
        )

    total = len(history)
    recent = history[-RECENT_WINDOW:]
    medium = history[max(0, total - MEDIUM_WINDOW) : max(0, total - RECENT_WINDOW)]
    older = history[: max(0, total - MEDIUM_WINDOW)]

    parts: list[str] = []
    if older:
        parts.append(f"### Early Exploration (Iterations 1-{len(older)})")
        parts.append(json.dumps(_aggregate(older), indent=2))
    if medium:
        parts.append(
            f"### Medium History (Iterations {medium[0].iteration}-{medium[-1].iteration})"
        )
        parts.append(json.dumps(_summarize(medium), indent=2, ensure_ascii=False))
    parts.append(f"### Recent Context (Last {len(recent)} iterations)")
    parts.append(
        json.dumps([_recent(entry) for entry in recent], indent=2, ensure_ascii=False)
    )

    files = {path for entry in history for path in entry.explored_files}
    directories = {path for entry in history for path in entry.explored_directories}
    progress = (
        f"Total iterations: {total}, Files explored: {len(files)}, "
        f"Directories explored: {len(directories)}, "
        f"Current understanding: {history[-1].understanding_level}"
    )
    return ExplorationContext(
        cumulative_knowledge=knowledge_text,
        exploration_history="\n\n".join(parts),
        current_iteration=total + 1,
        progress_summary=progress,
    )


def _recent(entry: HistoryEntry) -> dict[str, object]:
    wire = history_entry_to_wire(entry)
    return {
        "iteration": wire["iteration"],
        "understanding_level": wire["understanding_level"],
        "action": wire["action_summary"],
        "key_findings": entry.key_findings[:MAX_RECENT_FINDINGS],
        "observation": _clip(wire["observation"]),
    }


def _summarize(entries: Sequence[HistoryEntry]) -> dict[str, object]:
    previews = [_preview(entry) for entry in entries]
    return {
        "iterations": f"{entries[0].iteration}-{entries[-1].iteration}",
        "actions_performed": [
            f"{entry.action_summary.type} on {entry.action_summary.target}" for entry in entries
        ],
        "understanding_progression": [entry.understanding_level for entry in entries],
        "observation_summaries": [preview for preview in previews if preview],
    }


def _aggregate(entries: Sequence[HistoryEntry]) -> dict[str, object]:
    return {
        "total_iterations": len(entries),
        "avg_understanding_level": sum(entry.understanding_level for entry in entries)
        / len(entries),
        "files_explored": len({path for entry in entries for path in entry.explored_files}),
        "directories_explored": len(
            {path for entry in entries for path in entry.explored_directories}
        ),
    }


def _preview(entry: HistoryEntry) -> str | None:
    observation = history_entry_to_wire(entry)["observation"]
    if not observation:
        return None
    text = observation if isinstance(observation, str) else json.dumps(observation)
    return text[:OBSERVATION_PREVIEW_CHARS]


def _clip(value: object) -> object:
    """Shorten long string fields such as file contents and command output."""
    if isinstance(value, str):
        if len(value) <= MAX_OBSERVATION_FIELD_CHARS:
            return value
        omitted = len(value) - MAX_OBSERVATION_FIELD_CHARS
        return f"{value[:MAX_OBSERVATION_FIELD_CHARS]}\n... (truncated, {omitted} more characters)"
    if isinstance(value, dict):
        return {key: _clip(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_clip(item) for item in value]
    return value
