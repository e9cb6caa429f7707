from __future__ import annotations

import signal
import subprocess

import pytest


class FakeProcess:
    pid = 4321

    def __init__(self, controller: PopenController, argv: list[str], **kwargs: object) -> None:
        self.controller = controller
        self.argv = argv
        self.kwargs = kwargs
        self.returncode: int | None = None

    def communicate(self, timeout: float | None = None) -> tuple[bytes, bytes]:
        controller = self.controller
        if controller.hang and not controller.killed:
            raise subprocess.TimeoutExpired(
                self.argv, timeout or 0, output=controller.stdout, stderr=controller.stderr
            )
        self.returncode = -signal.SIGKILL if controller.hang else controller.returncode
        return controller.stdout, controller.stderr


class PopenController:
    """Stands in for ``subprocess.Popen`` and ``os.killpg`` in shell tests."""

    def __init__(self) -> None:
        self.returncode = 0
        self.stdout = b""
        self.stderr = b""
        self.hang = False
        self.forbidden = False
        self.processes: list[FakeProcess] = []
        self.killed: list[tuple[int, int]] = []

    def respond(
        self,
        *,
        returncode: int = 0,
        stdout: bytes = b"",
        stderr: bytes = b"",
        hang: bool = False,
    ) -> PopenController:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.hang = hang
        return self

    def popen(self, argv: list[str], **kwargs: object) -> FakeProcess:
        if self.forbidden:
            raise AssertionError("no process should be started")
        process = FakeProcess(self, argv, **kwargs)
        self.processes.append(process)
        return process

    def killpg(self, pgid: int, signum: int) -> None:
        self.killed.append((pgid, signum))


@pytest.fixture
def fake_popen(monkeypatch: pytest.MonkeyPatch) -> PopenController:
    controller = PopenController()
    monkeypatch.setattr(subprocess, "Popen", controller.popen)
    monkeypatch.setattr("scoutai.shell.base.os.killpg", controller.killpg)
    return controller
