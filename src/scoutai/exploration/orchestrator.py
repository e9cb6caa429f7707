"""Iterative explore-then-plan loop driving the oracle and the action executor."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from scoutai.errors import OracleError
from scoutai.exploration.executor import ActionExecutor
from scoutai.exploration.knowledge import KnowledgeState, merge, record_explored
from scoutai.exploration.models import (
    ActionResult,
    ActionSummary,
    Decision,
    ExplorationOutcome,
    ExplorationSession,
    ExplorationSummary,
    HistoryEntry,
    PlanEvent,
    PlanRequest,
    SessionStatus,
)
from scoutai.exploration.schema import confidence_to_wire, summary_to_wire

LOGGER = logging.getLogger(__name__)

LOG_VERSION = 1
DEFAULT_HANDOFF_THRESHOLD = 0.7
MAX_KEY_FINDINGS = 3
MAX_SUMMARY_FINDINGS = 10
MIN_FINDING_CHARS = 10

INSUFFICIENT_MESSAGE = "Insufficient understanding, manual intervention required"
HANDOFF_MESSAGE = "Sufficient understanding reached, generating implementation plan"
STOPPED_MESSAGE = "Exploration stopped by request"

_CLAUSE_BOUNDARY = re.compile(r"(?<=[.!?;])\s+|\n+")

ReportProgress = Callable[[str], None]
ShouldStop = Callable[[], bool]


class DecisionOracle(Protocol):
    def next_decision(
        self,
        goal: str,
        history: Sequence[HistoryEntry],
        knowledge: KnowledgeState,
    ) -> Decision: ...


class PlanHandoff(Protocol):
    def generate_plan(self, plan_request: PlanRequest) -> Iterator[PlanEvent]: ...


class ExplorationOrchestrator:
    """Runs decide/act/merge iterations until the oracle stops or the ceiling hits.

    One oracle call and at most one action are outstanding at a time. Action
    failures are fed back to the oracle as observations; an :class:`OracleError`
    aborts the session and propagates to the caller.
    """

    def __init__(
        self,
        *,
        oracle: DecisionOracle,
        executor: ActionExecutor,
        planner: PlanHandoff,
        log_dir: str | Path,
        handoff_threshold: float = DEFAULT_HANDOFF_THRESHOLD,
        report_progress: ReportProgress | None = None,
        should_stop: ShouldStop | None = None,
    ) -> None:
        self.oracle = oracle
        self.executor = executor
        self.planner = planner
        self.log_dir = Path(log_dir)
        self.handoff_threshold = handoff_threshold
        self.report_progress = report_progress
        self.should_stop = should_stop

    def run(self, session: ExplorationSession) -> ExplorationOutcome:
        goal = session.implementation_goal.strip()
        if not goal:
            raise ValueError("Implementation goal cannot be empty")
        if session.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        session.active = True
        session.status = "running"
        session.current_iteration = 0
        session.last_observations = []
        history: list[HistoryEntry] = []
        knowledge = KnowledgeState.empty()
        decision: Decision | None = None
        LOGGER.info(
            "exploration_started",
            extra={"goal": goal, "max_iterations": session.max_iterations},
        )
        self._report(f"Exploring for: {goal}")

        while True:
            if session.stop_requested or (self.should_stop and self.should_stop()):
                return self._finish(
                    session,
                    status="aborted",
                    history=history,
                    knowledge=knowledge,
                    decision=decision,
                    message=STOPPED_MESSAGE,
                )

            session.current_iteration += 1
            iteration = session.current_iteration
            forced = iteration >= session.max_iterations

            try:
                decision = self.oracle.next_decision(goal, list(history), knowledge)
            except OracleError as exc:
                LOGGER.error(
                    "exploration_oracle_failed",
                    extra={"iteration": iteration, "status": exc.status, "error": str(exc)},
                )
                self._finish(
                    session,
                    status="aborted",
                    history=history,
                    knowledge=knowledge,
                    decision=None,
                    message=str(exc),
                )
                raise

            if decision.iteration and decision.iteration != iteration:
                LOGGER.info(
                    "oracle_iteration_mismatch",
                    extra={"iteration": iteration, "reported_iteration": decision.iteration},
                )

            dispatch = decision.continue_exploration and not forced
            entry = _new_history_entry(iteration, decision)
            history.append(entry)
            knowledge = merge(knowledge, decision.current_knowledge)
            self._report(
                f"Iteration {iteration}/{session.max_iterations}: understanding "
                f"{decision.understanding_level:.0%}, next {decision.action.type} "
                f"{entry.action_summary.target or '(no target)'}"
            )

            if not dispatch:
                self._append_log(goal, entry, decision, result=None, forced=forced)
                if forced and decision.continue_exploration:
                    LOGGER.info(
                        "exploration_ceiling_reached",
                        extra={"max_iterations": session.max_iterations},
                    )
                    self._report(f"Reached the iteration limit ({session.max_iterations})")
                return self._conclude(
                    session,
                    history=history,
                    knowledge=knowledge,
                    decision=decision,
                    forced=forced and decision.continue_exploration,
                )

            result = self.executor.perform(decision.action)
            entry.observation = result
            entry.action_summary.success = result.success
            entry.explored_files, entry.explored_directories = _explored_paths(result)
            knowledge = record_explored(
                knowledge,
                explored_files=entry.explored_files,
                explored_directories=entry.explored_directories,
            )
            session.last_observations.append(result)
            if not result.success:
                self._report(f"Action failed: {result.error}")
            self._append_log(goal, entry, decision, result=result, forced=forced)

    def _conclude(
        self,
        session: ExplorationSession,
        *,
        history: list[HistoryEntry],
        knowledge: KnowledgeState,
        decision: Decision,
        forced: bool,
    ) -> ExplorationOutcome:
        if decision.understanding_level < self.handoff_threshold:
            self._report(INSUFFICIENT_MESSAGE)
            return self._finish(
                session,
                status="insufficient_confidence",
                history=history,
                knowledge=knowledge,
                decision=decision,
                message=INSUFFICIENT_MESSAGE,
                forced=forced,
            )

        plan_request = build_plan_request(
            session.implementation_goal.strip(), history, knowledge, decision
        )
        LOGGER.info("plan_handoff", extra={"summary": summary_to_wire(plan_request.summary)})
        self._report(HANDOFF_MESSAGE)
        plan_events = self.planner.generate_plan(plan_request)
        return self._finish(
            session,
            status="handed_off",
            history=history,
            knowledge=knowledge,
            decision=decision,
            message=HANDOFF_MESSAGE,
            forced=forced,
            plan_events=plan_events,
        )

    def _finish(
        self,
        session: ExplorationSession,
        *,
        status: SessionStatus,
        history: list[HistoryEntry],
        knowledge: KnowledgeState,
        decision: Decision | None,
        message: str,
        forced: bool = False,
        plan_events: Iterator[PlanEvent] | None = None,
    ) -> ExplorationOutcome:
        session.active = False
        session.status = status
        LOGGER.info(
            "exploration_finished",
            extra={
                "status": status,
                "iterations": len(history),
                "forced": forced,
                "understanding_level": decision.understanding_level if decision else None,
            },
        )
        self._write_record(
            {
                "event": "outcome",
                "goal": session.implementation_goal,
                "status": status,
                "iterations": len(history),
                "forced": forced,
                "message": message,
                "explored_files": len(knowledge.explored_files),
                "explored_directories": len(knowledge.explored_directories),
            }
        )
        return ExplorationOutcome(
            status=status,
            iterations=len(history),
            history=history,
            knowledge=knowledge,
            final_decision=decision,
            message=message,
            forced=forced,
            plan_events=plan_events,
        )

    def _report(self, message: str) -> None:
        if self.report_progress:
            self.report_progress(message)

    def _append_log(
        self,
        goal: str,
        entry: HistoryEntry,
        decision: Decision,
        *,
        result: ActionResult | None,
        forced: bool,
    ) -> None:
        self._write_record(
            {
                "event": "iteration",
                "goal": goal,
                "iteration": entry.iteration,
                "understanding_level": decision.understanding_level,
                "confidence_score": confidence_to_wire(decision.confidence_score),
                "action_type": entry.action_summary.type,
                "action_target": entry.action_summary.target,
                "dispatched": result is not None,
                "success": result.success if result else None,
                "error": result.error if result else None,
                "continue_exploration": decision.continue_exploration,
                "forced": forced,
                "key_findings": entry.key_findings,
            }
        )

    def _write_record(self, record: dict[str, object]) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        day_file = self.log_dir / f"session-{now.date().isoformat()}.log"
        entry = {
            "log_version": LOG_VERSION,
            "timestamp": now.isoformat(),
            "model": getattr(self.oracle, "model", None),
            "workspace_root": str(self.executor.workspace_root),
            **record,
        }
        with day_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")


def _new_history_entry(iteration: int, decision: Decision) -> HistoryEntry:
    action = decision.action
    return HistoryEntry(
        iteration=iteration,
        understanding_level=decision.understanding_level,
        action_summary=ActionSummary(type=action.type, target=action.target),
        key_findings=extract_key_findings(decision.thinking),
    )


def _explored_paths(result: ActionResult) -> tuple[list[str], list[str]]:
    """Workspace-relative path that a successful read or listing touched."""
    if not result.success or not result.data:
        return [], []
    path = result.data.get("path")
    if not isinstance(path, str) or not path:
        return [], []
    if result.action_type == "read_file":
        return [path], []
    if result.action_type == "list_directory":
        return [], [path]
    return [], []


def extract_key_findings(thinking: str, *, limit: int = MAX_KEY_FINDINGS) -> list[str]:
    """First ``limit`` clauses of ``thinking`` long enough to carry information."""
    findings: list[str] = []
    for clause in _CLAUSE_BOUNDARY.split(thinking):
        normalized = clause.strip().lstrip("-*").strip()
        if len(normalized) < MIN_FINDING_CHARS or not any(ch.isalpha() for ch in normalized):
            continue
        findings.append(normalized)
        if len(findings) >= limit:
            break
    return findings


def build_plan_request(
    goal: str,
    history: Sequence[HistoryEntry],
    knowledge: KnowledgeState,
    decision: Decision,
) -> PlanRequest:
    unique_findings = list(
        dict.fromkeys(finding for entry in history for finding in entry.key_findings)
    )
    summary = ExplorationSummary(
        total_iterations=len(history),
        final_understanding_level=decision.understanding_level,
        final_confidence_score=decision.confidence_score,
        explored_files=knowledge.explored_files,
        explored_directories=knowledge.explored_directories,
        key_findings=tuple(unique_findings[-MAX_SUMMARY_FINDINGS:]),
    )
    return PlanRequest(
        implementation_goal=goal,
        summary=summary,
        history=tuple(history),
        knowledge=knowledge,
    )
