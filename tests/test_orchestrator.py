from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest

from scoutai.errors import OracleError
from scoutai.exploration.executor import ActionExecutor
from scoutai.exploration.knowledge import KnowledgeSnapshot, KnowledgeState
from scoutai.exploration.models import (
    ActionRequest,
    ActionResult,
    ActionSummary,
    ConfidenceScore,
    Decision,
    ExplorationSession,
    HistoryEntry,
    PlanChunk,
    PlanComplete,
    PlanEvent,
    PlanRequest,
)
from scoutai.exploration.orchestrator import (
    INSUFFICIENT_MESSAGE,
    ExplorationOrchestrator,
    build_plan_request,
    extract_key_findings,
)
from scoutai.shell import BashAdapter


def make_decision(
    iteration: int,
    level: float,
    *,
    keep_going: bool = True,
    action_type: str = "list_directory",
    parameters: dict[str, object] | None = None,
    confirmed: tuple[str, ...] = (),
    unknowns: tuple[str, ...] = (),
    thinking: str = "Looking around the repository layout.",
) -> Decision:
    return Decision(
        iteration=iteration,
        understanding_level=level,
        confidence_score=ConfidenceScore(level, level, level, level),
        thinking=thinking,
        current_knowledge=KnowledgeSnapshot(confirmed=confirmed, unknowns=unknowns),
        action=ActionRequest(type=action_type, parameters=parameters or {"path": "."}),
        continue_exploration=keep_going,
    )


class FakeOracle:
    model = "fake-model"

    def __init__(self, decisions: Sequence[Decision | Exception]) -> None:
        self.decisions = list(decisions)
        self.calls: list[dict[str, object]] = []

    def next_decision(
        self,
        goal: str,
        history: Sequence[HistoryEntry],
        knowledge: KnowledgeState,
    ) -> Decision:
        self.calls.append(
            {
                "goal": goal,
                "iterations": [entry.iteration for entry in history],
                "observations": [entry.observation for entry in history],
                "knowledge": knowledge,
            }
        )
        item = self.decisions[min(len(self.calls), len(self.decisions)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


class FakePlanner:
    def __init__(self) -> None:
        self.requests: list[PlanRequest] = []

    def generate_plan(self, plan_request: PlanRequest) -> Iterator[PlanEvent]:
        self.requests.append(plan_request)
        return iter([PlanChunk("# Plan"), PlanComplete()])


class CountingExecutor(ActionExecutor):
    def __init__(self, workspace_root: Path) -> None:
        super().__init__(workspace_root, shell=BashAdapter(executable="bash"))
        self.performed: list[str] = []

    def perform(self, action: object) -> ActionResult:  # type: ignore[override]
        self.performed.append(getattr(action, "type", ""))
        return super().perform(action)  # type: ignore[arg-type]


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")
    (root / "README.md").write_text("# repo\n", encoding="utf-8")
    return root


def _orchestrator(
    oracle: FakeOracle,
    executor: ActionExecutor,
    planner: FakePlanner,
    log_dir: Path,
    **kwargs: object,
) -> ExplorationOrchestrator:
    return ExplorationOrchestrator(
        oracle=oracle,
        executor=executor,
        planner=planner,
        log_dir=log_dir,
        **kwargs,  # type: ignore[arg-type]
    )


def test_confident_stop_hands_off_to_planner(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle(
        [
            make_decision(1, 0.3),
            make_decision(2, 0.6, action_type="read_file", parameters={"path": "src/app.py"}),
            make_decision(3, 0.9, keep_going=False),
        ]
    )
    planner = FakePlanner()
    executor = CountingExecutor(workspace)
    session = ExplorationSession(implementation_goal="Add caching")

    outcome = _orchestrator(oracle, executor, planner, tmp_path / "logs").run(session)

    assert outcome.status == "handed_off"
    assert outcome.forced is False
    assert len(oracle.calls) == 3
    assert executor.performed == ["list_directory", "read_file"]
    assert len(planner.requests) == 1
    request = planner.requests[0]
    assert request.implementation_goal == "Add caching"
    assert request.summary.total_iterations == 3
    assert request.summary.final_understanding_level == pytest.approx(0.9)
    assert request.summary.explored_files == ("src/app.py",)
    assert outcome.plan_events is not None
    assert list(outcome.plan_events) == [PlanChunk("# Plan"), PlanComplete()]
    assert session.status == "handed_off"
    assert session.active is False


def test_low_confidence_stop_reports_insufficient_understanding(
    workspace: Path, tmp_path: Path
) -> None:
    oracle = FakeOracle([make_decision(1, 0.4, keep_going=False)])
    planner = FakePlanner()
    messages: list[str] = []

    outcome = _orchestrator(
        oracle,
        CountingExecutor(workspace),
        planner,
        tmp_path / "logs",
        report_progress=messages.append,
    ).run(ExplorationSession(implementation_goal="Add caching"))

    assert outcome.status == "insufficient_confidence"
    assert outcome.message == INSUFFICIENT_MESSAGE
    assert outcome.plan_events is None
    assert planner.requests == []
    assert INSUFFICIENT_MESSAGE in messages


def test_iteration_ceiling_forces_termination(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle([make_decision(index, 0.8) for index in range(1, 10)])
    executor = CountingExecutor(workspace)
    session = ExplorationSession(implementation_goal="Add caching", max_iterations=5)

    outcome = _orchestrator(oracle, executor, FakePlanner(), tmp_path / "logs").run(session)

    assert len(oracle.calls) == 5
    assert len(executor.performed) == 4
    assert outcome.forced is True
    assert outcome.status == "handed_off"
    assert [entry.iteration for entry in outcome.history] == [1, 2, 3, 4, 5]
    assert outcome.history[-1].observation is None
    assert session.current_iteration == 5


def test_oracle_sees_contiguous_history(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle(
        [make_decision(1, 0.2), make_decision(2, 0.3), make_decision(3, 0.1, keep_going=False)]
    )

    _orchestrator(oracle, CountingExecutor(workspace), FakePlanner(), tmp_path / "logs").run(
        ExplorationSession(implementation_goal="Add caching")
    )

    assert [call["iterations"] for call in oracle.calls] == [[], [1], [1, 2]]
    assert all(call["goal"] == "Add caching" for call in oracle.calls)


def test_knowledge_grows_and_unknowns_are_replaced(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle(
        [
            make_decision(1, 0.2, confirmed=("python",), unknowns=("entry point", "db")),
            make_decision(
                2,
                0.5,
                action_type="read_file",
                parameters={"path": "README.md"},
                confirmed=("python", "uses src layout"),
                unknowns=("db",),
            ),
            make_decision(3, 0.5, keep_going=False, unknowns=()),
        ]
    )

    outcome = _orchestrator(
        oracle, CountingExecutor(workspace), FakePlanner(), tmp_path / "logs"
    ).run(ExplorationSession(implementation_goal="Add caching"))

    seen = [call["knowledge"] for call in oracle.calls] + [outcome.knowledge]
    for before, after in zip(seen, seen[1:]):
        assert set(before.confirmed) <= set(after.confirmed)
        assert set(before.explored_files) <= set(after.explored_files)
        assert set(before.explored_directories) <= set(after.explored_directories)
    assert seen[1].unknowns == ("entry point", "db")
    assert seen[2].unknowns == ("db",)
    assert outcome.knowledge.unknowns == ()
    assert outcome.knowledge.confirmed == ("python", "uses src layout")
    assert outcome.knowledge.explored_files == ("README.md",)
    assert outcome.knowledge.explored_directories == (".",)


def test_failed_action_is_fed_back_to_oracle(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle(
        [
            make_decision(1, 0.2, action_type="read_file", parameters={"path": "missing.py"}),
            make_decision(2, 0.2, keep_going=False),
        ]
    )

    outcome = _orchestrator(
        oracle, CountingExecutor(workspace), FakePlanner(), tmp_path / "logs"
    ).run(ExplorationSession(implementation_goal="Add caching"))

    observation = oracle.calls[1]["observations"][0]
    assert isinstance(observation, ActionResult)
    assert observation.success is False
    assert (observation.error or "").startswith("Failed to read file:")
    assert outcome.history[0].action_summary == ActionSummary(
        type="read_file", target="missing.py", success=False
    )


def test_invalid_action_does_not_end_session(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle(
        [
            make_decision(1, 0.2, action_type="read_file", parameters={"path": ""}),
            make_decision(2, 0.8, keep_going=False),
        ]
    )
    session = ExplorationSession(implementation_goal="Add caching")

    outcome = _orchestrator(
        oracle, CountingExecutor(workspace), FakePlanner(), tmp_path / "logs"
    ).run(session)

    assert outcome.status == "handed_off"
    assert session.last_observations[0].error == "Failed to read file: File path cannot be empty"
    assert outcome.knowledge.explored_files == ()


def test_oracle_error_aborts_and_propagates(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle([make_decision(1, 0.2), OracleError("HTTP 500", status=500)])
    session = ExplorationSession(implementation_goal="Add caching")
    executor = CountingExecutor(workspace)

    with pytest.raises(OracleError, match="HTTP 500"):
        _orchestrator(oracle, executor, FakePlanner(), tmp_path / "logs").run(session)

    assert session.status == "aborted"
    assert session.active is False
    assert len(oracle.calls) == 2
    assert executor.performed == ["list_directory"]


def test_stop_signal_is_honored_between_iterations(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle([make_decision(index, 0.2) for index in range(1, 10)])
    session = ExplorationSession(implementation_goal="Add caching")
    checks = iter([False, False, True])

    outcome = _orchestrator(
        oracle,
        CountingExecutor(workspace),
        FakePlanner(),
        tmp_path / "logs",
        should_stop=lambda: next(checks),
    ).run(session)

    assert outcome.status == "aborted"
    assert outcome.iterations == 2
    assert len(oracle.calls) == 2
    assert session.status == "aborted"


def test_stop_requested_before_run_skips_oracle(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle([make_decision(1, 0.9, keep_going=False)])
    session = ExplorationSession(implementation_goal="Add caching")
    session.request_stop()

    outcome = _orchestrator(
        oracle, CountingExecutor(workspace), FakePlanner(), tmp_path / "logs"
    ).run(session)

    assert outcome.status == "aborted"
    assert oracle.calls == []


def test_session_log_records_iterations_and_outcome(workspace: Path, tmp_path: Path) -> None:
    oracle = FakeOracle([make_decision(1, 0.3), make_decision(2, 0.75, keep_going=False)])
    log_dir = tmp_path / "logs"

    _orchestrator(oracle, CountingExecutor(workspace), FakePlanner(), log_dir).run(
        ExplorationSession(implementation_goal="Add caching")
    )

    log_files = list(log_dir.glob("session-*.log"))
    assert len(log_files) == 1
    records = [
        json.loads(line) for line in log_files[0].read_text(encoding="utf-8").splitlines()
    ]
    assert [record["event"] for record in records] == ["iteration", "iteration", "outcome"]
    assert all(record["log_version"] == 1 for record in records)
    assert records[0]["success"] is True
    assert records[0]["model"] == "fake-model"
    assert records[1]["dispatched"] is False
    assert records[2]["status"] == "handed_off"


def test_empty_goal_is_rejected(workspace: Path, tmp_path: Path) -> None:
    orchestrator = _orchestrator(
        FakeOracle([]), CountingExecutor(workspace), FakePlanner(), tmp_path / "logs"
    )

    with pytest.raises(ValueError, match="Implementation goal cannot be empty"):
        orchestrator.run(ExplorationSession(implementation_goal="   "))


def test_extract_key_findings_takes_first_meaningful_clauses() -> None:
    thinking = (
        "Ok. The app uses Flask blueprints; routes are in app/views.py.\n"
        "- Caching is not configured anywhere!\n"
        "Redis is listed in requirements? Maybe."
    )

    assert extract_key_findings(thinking) == [
        "The app uses Flask blueprints;",
        "routes are in app/views.py.",
        "Caching is not configured anywhere!",
    ]


def test_extract_key_findings_handles_empty_thinking() -> None:
    assert extract_key_findings("") == []


def test_plan_request_keeps_ten_most_recent_unique_findings() -> None:
    history = [
        HistoryEntry(
            iteration=index,
            understanding_level=0.5,
            action_summary=ActionSummary(type="read_file", target=f"f{index}.py"),
            key_findings=[f"finding {index}", "shared finding"],
        )
        for index in range(1, 13)
    ]
    decision = make_decision(12, 0.8, keep_going=False)

    request = build_plan_request("Add caching", history, KnowledgeState.empty(), decision)

    assert len(request.summary.key_findings) == 10
    assert request.summary.key_findings[-1] == "finding 12"
    assert "finding 1" not in request.summary.key_findings
    assert len(set(request.summary.key_findings)) == 10


def test_failed_reads_are_not_recorded_as_explored(workspace: Path, tmp_path: Path) -> None:
    planner = FakePlanner()
    oracle = FakeOracle(
        [
            make_decision(1, 0.3, action_type="read_file", parameters={"path": "missing.py"}),
            make_decision(
                2, 0.4, action_type="read_file", parameters={"path": "../../etc/passwd"}
            ),
            make_decision(3, 0.6, action_type="list_directory", parameters={"path": "nope"}),
            make_decision(4, 0.9, keep_going=False),
        ]
    )

    outcome = _orchestrator(oracle, CountingExecutor(workspace), planner, tmp_path / "logs").run(
        ExplorationSession(implementation_goal="Add caching")
    )

    assert [entry.action_summary.success for entry in outcome.history[:3]] == [False] * 3
    assert all(entry.explored_files == [] for entry in outcome.history)
    assert outcome.knowledge.explored_files == ()
    assert outcome.knowledge.explored_directories == ()
    assert planner.requests[0].summary.explored_files == ()


def test_explored_paths_are_normalized_relative_to_workspace(
    workspace: Path, tmp_path: Path
) -> None:
    oracle = FakeOracle(
        [
            make_decision(
                1, 0.3, action_type="read_file", parameters={"path": "./src/../README.md"}
            ),
            make_decision(2, 0.5, parameters={"path": "src/"}),
            make_decision(3, 0.9, keep_going=False),
        ]
    )

    outcome = _orchestrator(
        oracle, CountingExecutor(workspace), FakePlanner(), tmp_path / "logs"
    ).run(ExplorationSession(implementation_goal="Add caching"))

    assert outcome.history[0].explored_files == ["README.md"]
    assert outcome.history[1].explored_directories == ["src"]
    assert outcome.knowledge.explored_files == ("README.md",)
    assert outcome.knowledge.explored_directories == ("src",)
