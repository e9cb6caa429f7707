"""Exception types shared across the exploration agent."""

from __future__ import annotations


class ScoutError(Exception):
    """Base class for scoutai errors."""


class ActionValidationError(ScoutError):
    """An action is of an unknown kind or is missing a required parameter."""


class ActionExecutionError(ScoutError):
    """A filesystem or subprocess failure while performing an action.

    ``data`` carries whatever partial payload the action produced before
    failing, such as captured command output.
    """

    def __init__(self, message: str, *, data: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.data = data


class OracleError(ScoutError):
    """The decision oracle could not produce a usable decision.

    Oracle failures are fatal for an exploration session: the loop stops and
    the error is raised to the caller without retrying.
    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
