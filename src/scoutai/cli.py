"""Command-line interface for scoutai."""

from __future__ import annotations

import argparse
import logging
import os
import platform
import signal
from collections.abc import Callable
from pathlib import Path
from types import FrameType
from typing import cast

from .config import AppConfig
from .errors import OracleError
from .exploration.executor import ActionExecutor
from .exploration.models import ExplorationOutcome, ExplorationSession, PlanChunk, PlanError
from .exploration.orchestrator import ExplorationOrchestrator
from .llm.blueprint import BlueprintClient
from .llm.client import OracleClient
from .shell import create_shell_adapter

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INSUFFICIENT = 2
EXIT_STOPPED = 3

SignalHandler = Callable[[int, FrameType | None], object] | int


class CLIArgs(argparse.Namespace):
    goal: str | None
    working_directory: str | None
    max_iterations: int | None
    output: str | None
    verbose: bool


def build_runtime_context(shell_name: str, workspace_root: str) -> str:
    """Build startup orientation context for the model."""
    return "\n".join(
        [
            "Runtime environment context:",
            f"- operating_system: {platform.system()} {platform.release()}",
            f"- os_name: {os.name}",
            f"- shell: {shell_name}",
            f"- workspace_root: {workspace_root}",
            "read_terminal commands run in the workspace root; prefer commands for this shell.",
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scoutai",
        description="Explore a repository and generate an implementation plan",
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help=(
            "Workspace root to explore. "
            "Takes precedence over config/env workspace values."
        ),
    )
    parser.add_argument(
        "--max-iterations",
        dest="max_iterations",
        type=int,
        help="Upper bound on exploration iterations before a forced stop",
    )
    parser.add_argument("--output", help="Also write the generated plan to this file")
    parser.add_argument("--verbose", action="store_true", help="Log exploration events")
    parser.add_argument("goal", nargs="?", help="Implementation goal to plan for")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    config = AppConfig.from_env()

    configured_workspace = (
        args.working_directory if args.working_directory is not None else config.workspace_root
    )
    workspace_root = Path(configured_workspace or Path.cwd()).expanduser().resolve()
    if not workspace_root.exists() or not workspace_root.is_dir():
        print(f"Invalid workspace directory: {configured_workspace}")
        return EXIT_ERROR

    if args.max_iterations is not None and args.max_iterations < 1:
        print("--max-iterations must be at least 1")
        return EXIT_ERROR

    goal = (args.goal or input("Implementation goal: ")).strip()
    if not goal:
        print("No goal provided.")
        return EXIT_ERROR

    adapter = create_shell_adapter(config.shell)
    LOGGER.debug("shell_adapter_selected", extra={"shell": adapter.name})
    oracle = OracleClient(
        api_key=config.api_key,
        model=config.model,
        system_prompt=config.system_prompt,
        runtime_context=(
            build_runtime_context(adapter.name, str(workspace_root))
            if config.include_runtime_context
            else None
        ),
        reasoning_effort=config.reasoning_effort,
        api_url=config.api_url,
        timeout=config.request_timeout,
    )
    planner = BlueprintClient(
        api_key=config.api_key,
        model=config.blueprint_model,
        reasoning_effort=config.reasoning_effort,
        api_url=config.blueprint_api_url,
    )
    orchestrator = ExplorationOrchestrator(
        oracle=oracle,
        executor=ActionExecutor(workspace_root, shell=adapter),
        planner=planner,
        log_dir=config.log_dir,
        handoff_threshold=config.handoff_threshold,
        report_progress=_print_progress,
    )
    session = ExplorationSession(
        implementation_goal=goal,
        max_iterations=args.max_iterations or config.max_iterations,
    )

    previous_handler = _install_stop_handler(session)
    try:
        outcome = orchestrator.run(session)
    except OracleError as exc:
        print(f"Exploration failed: {exc}")
        return EXIT_ERROR
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    return _report_outcome(outcome, output=args.output)


def _report_outcome(outcome: ExplorationOutcome, *, output: str | None) -> int:
    if outcome.status == "aborted":
        print(f"{outcome.message} after {outcome.iterations} iteration(s).")
        return EXIT_STOPPED
    if outcome.status != "handed_off" or outcome.plan_events is None:
        print(outcome.message)
        return EXIT_INSUFFICIENT

    print("=== Implementation plan ===")
    parts: list[str] = []
    for event in outcome.plan_events:
        if isinstance(event, PlanChunk):
            parts.append(event.text)
            print(event.text, end="", flush=True)
        elif isinstance(event, PlanError):
            print(f"\nPlan generation failed: {event.message}")
            return EXIT_ERROR
    print()

    if output:
        output_path = Path(output).expanduser()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text("".join(parts), encoding="utf-8")
        print(f"Plan written to {output_path}")
    return EXIT_OK


def _print_progress(message: str) -> None:
    print(f"[scoutai] {message}", flush=True)


def _install_stop_handler(session: ExplorationSession) -> SignalHandler:
    """First Ctrl+C stops after the current iteration; a second one interrupts."""
    previous = signal.getsignal(signal.SIGINT)
    if previous is None:
        previous = signal.SIG_DFL

    def _request_stop(signum: int, frame: FrameType | None) -> None:
        session.request_stop()
        print("\nStopping after the current iteration...", flush=True)
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _request_stop)
    return previous


if __name__ == "__main__":
    raise SystemExit(main())
