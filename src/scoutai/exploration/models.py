"""Data models used by the exploration loop."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from scoutai.exploration.knowledge import KnowledgeSnapshot, KnowledgeState

ActionType = Literal["read_file", "search_content", "read_terminal", "list_directory"]
SessionStatus = Literal["idle", "running", "handed_off", "insufficient_confidence", "aborted"]

ACTION_TYPES: tuple[ActionType, ...] = (
    "read_file",
    "search_content",
    "read_terminal",
    "list_directory",
)
TARGET_PARAMETERS: dict[str, str] = {
    "read_file": "path",
    "search_content": "query",
    "read_terminal": "command",
    "list_directory": "path",
}
DEFAULT_MAX_ITERATIONS = 20


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True, frozen=True)
class ReadFileAction:
    path: str

    type: ActionType = field(default="read_file", init=False)

    @property
    def target(self) -> str:
        return self.path


@dataclass(slots=True, frozen=True)
class SearchContentAction:
    query: str
    scope: str | None = None

    type: ActionType = field(default="search_content", init=False)

    @property
    def target(self) -> str:
        return self.query


@dataclass(slots=True, frozen=True)
class ReadTerminalAction:
    command: str

    type: ActionType = field(default="read_terminal", init=False)

    @property
    def target(self) -> str:
        return self.command


@dataclass(slots=True, frozen=True)
class ListDirectoryAction:
    path: str
    recursive: bool = False

    type: ActionType = field(default="list_directory", init=False)

    @property
    def target(self) -> str:
        return self.path


Action = ReadFileAction | SearchContentAction | ReadTerminalAction | ListDirectoryAction


@dataclass(slots=True)
class ActionRequest:
    """Untyped action exactly as proposed by the oracle."""

    type: str
    parameters: dict[str, object] = field(default_factory=dict)
    reason: str = ""
    expected_insights: list[str] = field(default_factory=list)

    @property
    def target(self) -> str:
        value = self.parameters.get(TARGET_PARAMETERS.get(self.type, ""))
        return value.strip() if isinstance(value, str) else ""


@dataclass(slots=True)
class ActionResult:
    """Normalized outcome of one action; failures are values, never exceptions."""

    action_type: str
    success: bool
    data: dict[str, object] | None = None
    error: str | None = None
    timestamp: str = field(default_factory=utc_timestamp)


@dataclass(slots=True, frozen=True)
class ConfidenceScore:
    architecture: float = 0.0
    data_flow: float = 0.0
    integration_points: float = 0.0
    implementation_details: float = 0.0


@dataclass(slots=True)
class Decision:
    """One oracle turn: self-assessment, knowledge snapshot and next action."""

    iteration: int
    understanding_level: float
    confidence_score: ConfidenceScore
    thinking: str
    current_knowledge: KnowledgeSnapshot
    action: ActionRequest
    continue_exploration: bool
    next_priorities: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ActionSummary:
    type: str
    target: str
    success: bool = False


@dataclass(slots=True)
class HistoryEntry:
    """Record of a single iteration as shown back to the oracle."""

    iteration: int
    understanding_level: float
    action_summary: ActionSummary
    key_findings: list[str] = field(default_factory=list)
    explored_files: list[str] = field(default_factory=list)
    explored_directories: list[str] = field(default_factory=list)
    observation: ActionResult | str | None = None


@dataclass(slots=True)
class ExplorationSession:
    """Mutable per-run state, owned by the caller and driven by the orchestrator."""

    implementation_goal: str
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    active: bool = False
    current_iteration: int = 0
    last_observations: list[ActionResult] = field(default_factory=list)
    status: SessionStatus = "idle"
    stop_requested: bool = False

    def request_stop(self) -> None:
        """Ask the loop to stop before its next iteration."""
        self.stop_requested = True

    def reset(self) -> None:
        self.active = False
        self.current_iteration = 0
        self.last_observations = []
        self.status = "idle"
        self.stop_requested = False


@dataclass(slots=True, frozen=True)
class ExplorationSummary:
    total_iterations: int
    final_understanding_level: float
    final_confidence_score: ConfidenceScore
    explored_files: tuple[str, ...]
    explored_directories: tuple[str, ...]
    key_findings: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class PlanRequest:
    implementation_goal: str
    summary: ExplorationSummary
    history: tuple[HistoryEntry, ...]
    knowledge: KnowledgeState


@dataclass(slots=True, frozen=True)
class PlanChunk:
    text: str


@dataclass(slots=True, frozen=True)
class PlanComplete:
    pass


@dataclass(slots=True, frozen=True)
class PlanError:
    message: str


PlanEvent = PlanChunk | PlanComplete | PlanError


@dataclass(slots=True)
class ExplorationOutcome:
    """Terminal result of :meth:`ExplorationOrchestrator.run`."""

    status: SessionStatus
    iterations: int
    history: list[HistoryEntry]
    knowledge: KnowledgeState
    final_decision: Decision | None = None
    message: str = ""
    forced: bool = False
    plan_events: Iterator[PlanEvent] | None = None
