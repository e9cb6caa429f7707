"""PowerShell adapter implementation."""

from __future__ import annotations

import shutil

from .base import PolicyHook, ShellAdapter


class PowerShellAdapter(ShellAdapter):
    """Adapter for command execution via PowerShell."""

    def __init__(
        self,
        executable: str | None = None,
        *,
        allowlist_hook: PolicyHook | None = None,
        denylist_hook: PolicyHook | None = None,
        confirmation_mode: bool = True,
    ) -> None:
        super().__init__(
            allowlist_hook=allowlist_hook,
            denylist_hook=denylist_hook,
            confirmation_mode=confirmation_mode,
        )
        self.executable = executable or _default_executable()

    @property
    def name(self) -> str:
        return "powershell"

    def build_argv(self, command: str) -> list[str]:
        return [self.executable, "-NoProfile", "-NonInteractive", "-Command", command]


def _default_executable() -> str:
    if shutil.which("pwsh"):
        return "pwsh"
    return "powershell.exe"
