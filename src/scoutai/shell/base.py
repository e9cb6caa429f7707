"""Base shell adapter primitives with read-only guardrails and bounded output."""

from __future__ import annotations

import abc
import contextlib
import locale
import logging
import os
import re
import signal
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

PolicyHook = Callable[[str, str], bool]

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
TIMEOUT_RETURNCODE = 124
BLOCKED_RETURNCODE = 126
NOT_FOUND_RETURNCODE = 127

_DESTRUCTIVE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\brm\s+-(?:[a-z]*r[a-z]*f|[a-z]*f[a-z]*r)\b",
        r"\bdel\s+(/s\s+)?(/q\s+)?",
        r"\bformat\b",
        r"\bremove-item\b",
        r"\bdrop\s+table\b",
        r"\bmkfs(\.\w+)?\b",
        r"\bshutdown\b",
        r"\bgit\s+push\b",
        r"\bgit\s+reset\s+--hard\b",
    )
]

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


@dataclass(slots=True)
class CommandResult:
    """Result of a command execution."""

    command: str
    shell: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    truncated: bool = False
    duration_seconds: float = 0.0
    executed: bool = True
    blocked: bool = False
    block_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.executed and not (self.timed_out or self.truncated) and self.returncode == 0


class ShellAdapter(abc.ABC):
    """Abstract adapter for shell-specific command execution."""

    def __init__(
        self,
        *,
        allowlist_hook: PolicyHook | None = None,
        denylist_hook: PolicyHook | None = None,
        confirmation_mode: bool = True,
    ) -> None:
        self.allowlist_hook = allowlist_hook
        self.denylist_hook = denylist_hook
        self.confirmation_mode = confirmation_mode

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly shell adapter name."""

    @abc.abstractmethod
    def build_argv(self, command: str) -> list[str]:
        """Return the process argument vector that runs ``command``."""

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        dry_run: bool = False,
        confirmed: bool = False,
    ) -> CommandResult:
        """Execute a shell command and return a normalized result."""
        self.log_request(command, timeout=timeout, dry_run=dry_run)
        blocked_reason = self.enforce_guardrails(command, dry_run=dry_run, confirmed=confirmed)
        if blocked_reason:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=BLOCKED_RETURNCODE,
                stdout="",
                stderr=blocked_reason,
                executed=False,
                blocked=True,
                block_reason=blocked_reason,
            )
            self.log_result(result)
            return result

        if dry_run:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=0,
                stdout="dry-run: command not executed",
                stderr="",
                executed=False,
            )
            self.log_result(result)
            return result

        result = self._run(
            command,
            self.build_argv(command),
            cwd=cwd,
            timeout=timeout,
            max_output_bytes=max_output_bytes,
        )
        self.log_result(result)
        return result

    def _run(
        self,
        command: str,
        argv: Sequence[str],
        *,
        cwd: str | None,
        timeout: float | None,
        max_output_bytes: int,
    ) -> CommandResult:
        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                **_process_group_options(),
            )
        except FileNotFoundError:
            return CommandResult(
                command=command,
                shell=self.name,
                returncode=NOT_FOUND_RETURNCODE,
                stdout="",
                stderr=f"{self.name} executable not found: {argv[0]}",
                executed=False,
                duration_seconds=self.monotonic_now() - started,
            )

        try:
            raw_stdout, raw_stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            # The command may have spawned children; take down the whole group.
            _kill_process_tree(process)
            raw_stdout, raw_stderr = process.communicate()
            LOGGER.warning(
                "command_timeout",
                extra={"shell": self.name, "pid": process.pid, "timeout": timeout},
            )
            stdout, stderr, truncated = _bounded_output(raw_stdout, raw_stderr, max_output_bytes)
            return CommandResult(
                command=command,
                shell=self.name,
                returncode=TIMEOUT_RETURNCODE,
                stdout=stdout,
                stderr=stderr,
                timed_out=True,
                truncated=truncated,
                duration_seconds=self.monotonic_now() - started,
            )

        stdout, stderr, truncated = _bounded_output(raw_stdout, raw_stderr, max_output_bytes)
        return CommandResult(
            command=command,
            shell=self.name,
            returncode=process.returncode,
            stdout=stdout,
            stderr=stderr,
            truncated=truncated,
            duration_seconds=self.monotonic_now() - started,
        )

    def enforce_guardrails(
        self,
        command: str,
        *,
        dry_run: bool,
        confirmed: bool,
    ) -> str | None:
        """Run policy checks and return a block reason when rejected."""
        if self.denylist_hook and self.denylist_hook(command, self.name):
            return "command blocked by denylist policy"
        if self.allowlist_hook and not self.allowlist_hook(command, self.name):
            return "command rejected by allowlist policy"

        if self.confirmation_mode and self._is_destructive(command) and not (confirmed or dry_run):
            return "destructive command requires explicit confirmation"
        return None

    def _is_destructive(self, command: str) -> bool:
        return any(pattern.search(command) for pattern in _DESTRUCTIVE_PATTERNS)

    def is_destructive_command(self, command: str) -> bool:
        """Return true when a command matches destructive command heuristics."""
        return self._is_destructive(command)

    def log_request(self, command: str, *, timeout: float | None, dry_run: bool) -> None:
        LOGGER.info(
            "command_request",
            extra={
                "shell": self.name,
                "command": self._sanitize_command(command),
                "timeout": timeout,
                "dry_run": dry_run,
            },
        )

    def log_result(self, result: CommandResult) -> None:
        LOGGER.info(
            "command_result",
            extra={
                "shell": result.shell,
                "returncode": result.returncode,
                "timed_out": result.timed_out,
                "truncated": result.truncated,
                "duration_seconds": round(result.duration_seconds, 4),
                "executed": result.executed,
                "blocked": result.blocked,
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()

    def _sanitize_command(self, command: str) -> str:
        sanitized = command
        for pattern in _SECRET_PATTERNS:
            sanitized = pattern.sub(r"\1***", sanitized)
        return sanitized


def _process_group_options() -> dict[str, object]:
    """Start each command as its own process group so a timeout can reap it."""
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_process_tree(process: subprocess.Popen[bytes]) -> None:
    if os.name == "nt":
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(process.pid)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        process.kill()
        return
    # Nothing is left to kill when the whole group already exited.
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)


def _bounded_output(
    stdout: bytes | str | None,
    stderr: bytes | str | None,
    max_output_bytes: int,
) -> tuple[str, str, bool]:
    """Cap combined stdout and stderr at ``max_output_bytes``; stdout gets priority."""
    raw_stdout = _as_bytes(stdout)
    raw_stderr = _as_bytes(stderr)
    if len(raw_stdout) + len(raw_stderr) <= max_output_bytes:
        return normalize_output(raw_stdout), normalize_output(raw_stderr), False

    # A cut may split a multi-byte character.
    raw_stdout = raw_stdout[:max_output_bytes]
    raw_stderr = raw_stderr[: max(0, max_output_bytes - len(raw_stdout))]
    return (
        raw_stdout.decode("utf-8", errors="replace"),
        raw_stderr.decode("utf-8", errors="replace"),
        True,
    )


def _as_bytes(payload: bytes | str | None) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


def normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False), "cp1252"):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
