"""Executes exploration actions against a workspace directory."""

from __future__ import annotations

import logging
import os
from collections import deque
from collections.abc import Iterator
from pathlib import Path

from scoutai.errors import ActionExecutionError, ActionValidationError
from scoutai.exploration.models import (
    Action,
    ActionRequest,
    ActionResult,
    ListDirectoryAction,
    ReadFileAction,
    ReadTerminalAction,
    SearchContentAction,
    utc_timestamp,
)
from scoutai.exploration.schema import parse_action
from scoutai.shell import ShellAdapter, create_shell_adapter

LOGGER = logging.getLogger(__name__)

COMMAND_TIMEOUT_SECONDS = 10.0
MAX_COMMAND_OUTPUT_BYTES = 1024 * 1024
MAX_LIST_DEPTH = 3
MAX_SEARCH_RESULTS = 100
MAX_SEARCH_FILE_BYTES = 1024 * 1024
SEARCH_TEXT_PREVIEW_CHARS = 200
BINARY_SNIFF_BYTES = 8192

FAILURE_PREFIXES = {
    "read_file": "Failed to read file",
    "search_content": "Failed to search content",
    "read_terminal": "Failed to execute command",
    "list_directory": "Failed to list directory",
}

LANGUAGE_BY_EXTENSION = {
    "c": "c",
    "cc": "cpp",
    "cpp": "cpp",
    "cs": "csharp",
    "css": "css",
    "go": "go",
    "h": "c",
    "hpp": "cpp",
    "html": "html",
    "java": "java",
    "js": "javascript",
    "json": "json",
    "jsx": "javascriptreact",
    "kt": "kotlin",
    "md": "markdown",
    "php": "php",
    "py": "python",
    "rb": "ruby",
    "rs": "rust",
    "scss": "scss",
    "sh": "shellscript",
    "sql": "sql",
    "swift": "swift",
    "toml": "toml",
    "ts": "typescript",
    "tsx": "typescriptreact",
    "vue": "vue",
    "yaml": "yaml",
    "yml": "yaml",
}


class ActionExecutor:
    """Performs one inspection action at a time and reports it as a result.

    ``perform`` never raises: validation problems, filesystem errors, command
    failures and timeouts all come back as ``ActionResult(success=False)``.
    Every path is resolved against ``workspace_root`` and rejected when it
    escapes that directory.
    """

    def __init__(self, workspace_root: str | Path, *, shell: ShellAdapter | None = None) -> None:
        self.workspace_root = Path(workspace_root).expanduser().resolve()
        self.shell = shell or create_shell_adapter("powershell" if os.name == "nt" else "bash")

    def perform(self, action: Action | ActionRequest) -> ActionResult:
        action_type = action.type
        timestamp = utc_timestamp()
        try:
            typed_action = parse_action(action) if isinstance(action, ActionRequest) else action
            data = self._dispatch(typed_action)
        except ActionValidationError as exc:
            return self._failure(action_type, str(exc), timestamp=timestamp)
        except ActionExecutionError as exc:
            return self._failure(action_type, str(exc), data=exc.data, timestamp=timestamp)
        except (OSError, ValueError) as exc:
            return self._failure(action_type, str(exc), timestamp=timestamp)

        LOGGER.info(
            "action_performed",
            extra={"action_type": action_type, "target": typed_action.target, "success": True},
        )
        return ActionResult(action_type=action_type, success=True, data=data, timestamp=timestamp)

    def _dispatch(self, action: Action) -> dict[str, object]:
        if isinstance(action, ReadFileAction):
            return self.read_file(action)
        if isinstance(action, SearchContentAction):
            return self.search_content(action)
        if isinstance(action, ReadTerminalAction):
            return self.read_terminal(action)
        if isinstance(action, ListDirectoryAction):
            return self.list_directory(action)
        raise ActionValidationError(f"Unknown action type: {getattr(action, 'type', action)!r}")

    def read_file(self, action: ReadFileAction) -> dict[str, object]:
        if not action.path.strip():
            raise ActionValidationError("File path cannot be empty")
        file_path = self._resolve(action.path)
        raw = file_path.read_bytes()
        content = raw.decode("utf-8", errors="replace")
        return {
            "path": self._relative(file_path),
            "content": content,
            "line_count": len(content.split("\n")),
            "byte_size": len(raw),
        }

    def search_content(self, action: SearchContentAction) -> dict[str, object]:
        """Case-insensitive literal search over text files below ``scope``."""
        if not action.query.strip():
            raise ActionValidationError("Search query cannot be empty")
        scope = action.scope or "."
        scope_path = self._resolve(scope)
        if not scope_path.exists():
            raise ActionExecutionError(f"Search scope does not exist: {scope}")

        needle = action.query.lower()
        results: list[dict[str, object]] = []
        truncated = False
        for file_path in self._iter_searchable_files(scope_path):
            for line_number, line in enumerate(_read_text_lines(file_path), start=1):
                if needle not in line.lower():
                    continue
                if len(results) >= MAX_SEARCH_RESULTS:
                    truncated = True
                    break
                results.append(
                    {
                        "path": self._relative(file_path),
                        "line": line_number,
                        "text": line.strip()[:SEARCH_TEXT_PREVIEW_CHARS],
                    }
                )
            if truncated:
                break

        return {
            "query": action.query,
            "scope": action.scope,
            "results": results,
            "total_matches": len(results),
            "truncated": truncated,
        }

    def read_terminal(self, action: ReadTerminalAction) -> dict[str, object]:
        if not action.command.strip():
            raise ActionValidationError("Command cannot be empty")
        working_directory = str(self.workspace_root)
        result = self.shell.execute(
            action.command,
            cwd=working_directory,
            timeout=COMMAND_TIMEOUT_SECONDS,
            max_output_bytes=MAX_COMMAND_OUTPUT_BYTES,
        )
        data: dict[str, object] = {
            "command": action.command,
            "stdout": result.stdout.strip(),
            "stderr": result.stderr.strip(),
            "working_directory": working_directory,
        }
        if result.ok:
            return data

        data.update({"returncode": result.returncode, "timed_out": result.timed_out})
        if result.blocked:
            reason = result.block_reason or "command blocked"
        elif result.timed_out:
            reason = f"Command timed out after {COMMAND_TIMEOUT_SECONDS:.0f}s"
        elif result.truncated:
            reason = f"Command output exceeded {MAX_COMMAND_OUTPUT_BYTES} bytes"
        elif not result.executed:
            reason = result.stderr or "command was not executed"
        else:
            reason = f"Command exited with code {result.returncode}"
        raise ActionExecutionError(reason, data=data)

    def list_directory(self, action: ListDirectoryAction) -> dict[str, object]:
        if not action.path.strip():
            raise ActionValidationError("Directory path cannot be empty")
        display_path = action.path.strip().rstrip("/") or "."
        root = self._resolve(display_path)
        if not root.is_dir():
            raise ActionExecutionError(f"Not a directory: {display_path}")
        relative_root = self._relative(root)

        entries: list[dict[str, object]] = []
        pending: deque[tuple[Path, str, int]] = deque([(root, relative_root, 0)])
        while pending:
            directory, relative_path, depth = pending.popleft()
            if depth >= MAX_LIST_DEPTH:
                continue
            try:
                with os.scandir(directory) as iterator:
                    children = sorted(iterator, key=lambda child: child.name)
            except OSError as exc:
                if depth == 0:
                    raise
                LOGGER.warning(
                    "list_directory_unreadable",
                    extra={"directory": str(directory), "error": str(exc)},
                )
                continue

            for child in children:
                if child.name.startswith("."):
                    continue
                is_directory = child.is_dir(follow_symlinks=False)
                entry_path = child.name if relative_path == "." else f"{relative_path}/{child.name}"
                entry: dict[str, object] = {
                    "name": child.name,
                    "path": entry_path,
                    "type": "directory" if is_directory else "file",
                }
                if not is_directory:
                    language = language_for(child.name)
                    if language:
                        entry["language"] = language
                entries.append(entry)
                if action.recursive and is_directory:
                    pending.append((Path(child.path), entry_path, depth + 1))

        return {
            "path": relative_root,
            "entries": entries,
            "total_files": sum(1 for entry in entries if entry["type"] == "file"),
            "total_directories": sum(1 for entry in entries if entry["type"] == "directory"),
        }

    def _iter_searchable_files(self, scope_path: Path) -> Iterator[Path]:
        if scope_path.is_file():
            yield scope_path
            return
        pending: deque[Path] = deque([scope_path])
        while pending:
            directory = pending.popleft()
            try:
                with os.scandir(directory) as iterator:
                    children = sorted(iterator, key=lambda child: child.name)
            except OSError:
                continue
            for child in children:
                if child.name.startswith("."):
                    continue
                if child.is_dir(follow_symlinks=False):
                    pending.append(Path(child.path))
                elif child.is_file(follow_symlinks=False):
                    yield Path(child.path)

    def _resolve(self, relative_path: str) -> Path:
        try:
            candidate = (self.workspace_root / relative_path.strip()).resolve()
        except RuntimeError as exc:
            # Symlink loops raise RuntimeError before Python 3.13.
            raise ActionExecutionError(f"Cannot resolve path {relative_path}: {exc}") from exc
        if candidate != self.workspace_root and self.workspace_root not in candidate.parents:
            raise ActionExecutionError(f"Path escapes workspace root: {relative_path}")
        return candidate

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.workspace_root).as_posix()

    @staticmethod
    def _failure(
        action_type: str,
        message: str,
        *,
        data: dict[str, object] | None = None,
        timestamp: str,
    ) -> ActionResult:
        prefix = FAILURE_PREFIXES.get(action_type)
        error = f"{prefix}: {message}" if prefix else message
        LOGGER.info(
            "action_performed",
            extra={"action_type": action_type, "success": False, "error": error},
        )
        return ActionResult(
            action_type=action_type,
            success=False,
            data=data,
            error=error,
            timestamp=timestamp,
        )


def language_for(file_name: str) -> str | None:
    """Language label for a file name, derived from its extension."""
    stem, dot, extension = file_name.rpartition(".")
    if not dot or not stem or not extension:
        return None
    normalized = extension.lower()
    return LANGUAGE_BY_EXTENSION.get(normalized, normalized)


def _read_text_lines(file_path: Path) -> list[str]:
    try:
        if file_path.stat().st_size > MAX_SEARCH_FILE_BYTES:
            return []
        raw = file_path.read_bytes()
    except OSError:
        return []
    if b"\x00" in raw[:BINARY_SNIFF_BYTES]:
        return []
    return raw.decode("utf-8", errors="replace").splitlines()
