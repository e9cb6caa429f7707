"""Wire-level conversion between exploration models and JSON-ready dicts."""

from __future__ import annotations

from typing import cast

from scoutai.errors import ActionValidationError
from scoutai.exploration.knowledge import KnowledgeSnapshot
from scoutai.exploration.models import (
    ACTION_TYPES,
    Action,
    ActionRequest,
    ActionResult,
    ConfidenceScore,
    Decision,
    ExplorationSummary,
    HistoryEntry,
    ListDirectoryAction,
    ReadFileAction,
    ReadTerminalAction,
    SearchContentAction,
)

CONFIDENCE_DIMENSIONS = (
    "architecture",
    "data_flow",
    "integration_points",
    "implementation_details",
)

REQUIRED_PARAMETERS = {
    "read_file": ("path", "File path"),
    "search_content": ("query", "Search query"),
    "read_terminal": ("command", "Command"),
    "list_directory": ("path", "Directory path"),
}


def parse_action(request: ActionRequest) -> Action:
    """Validate an oracle-proposed action and narrow it to a typed action.

    Raises :class:`ActionValidationError` for unknown kinds and for required
    parameters that are blank or not strings.
    """
    action_type = request.type.strip() if isinstance(request.type, str) else ""
    if action_type not in ACTION_TYPES:
        raise ActionValidationError(f"Unknown action type: {request.type}")

    key, label = REQUIRED_PARAMETERS[action_type]
    value = _required_text(_text_parameter(request, key, label))
    if value is None:
        raise ActionValidationError(f"{label} cannot be empty")

    if action_type == "read_file":
        return ReadFileAction(path=value)
    if action_type == "search_content":
        return SearchContentAction(
            query=value,
            scope=_required_text(_text_parameter(request, "scope", "Search scope")),
        )
    if action_type == "read_terminal":
        return ReadTerminalAction(command=value)
    return ListDirectoryAction(
        path=value,
        recursive=_to_flag(request.parameters.get("recursive")),
    )


def action_request_from_wire(payload: object) -> ActionRequest:
    raw = _coerce_object_dict(payload) or {}
    action_type = raw.get("type")
    parameters = {
        key: value
        for key, value in (_coerce_object_dict(raw.get("parameters")) or {}).items()
        if value is not None
    }
    reason = raw.get("reason")
    return ActionRequest(
        type=action_type if isinstance(action_type, str) else "",
        parameters=parameters,
        reason=reason if isinstance(reason, str) else "",
        expected_insights=_string_list(raw.get("expected_insights")),
    )


def decision_from_wire(payload: dict[str, object]) -> Decision:
    """Build a :class:`Decision` from the oracle's structured output.

    Required fields raise :class:`ValueError` when missing or mistyped;
    optional fields are coerced to safe defaults.
    """
    understanding_level = payload.get("understanding_level")
    if not _is_number(understanding_level):
        raise ValueError("understanding_level must be a number")
    continue_exploration = payload.get("continue_exploration")
    if not isinstance(continue_exploration, bool):
        raise ValueError("continue_exploration must be a boolean")
    if not isinstance(payload.get("action"), dict):
        raise ValueError("action must be an object")

    iteration = payload.get("iteration")
    thinking = payload.get("thinking")
    knowledge = _coerce_object_dict(payload.get("current_knowledge")) or {}
    return Decision(
        iteration=iteration if _is_number(iteration) and isinstance(iteration, int) else 0,
        understanding_level=clamp_unit(cast(float, understanding_level)),
        confidence_score=confidence_from_wire(payload.get("confidence_score")),
        thinking=thinking if isinstance(thinking, str) else "",
        current_knowledge=KnowledgeSnapshot(
            confirmed=tuple(_string_list(knowledge.get("confirmed"))),
            assumptions=tuple(_string_list(knowledge.get("assumptions"))),
            unknowns=tuple(_string_list(knowledge.get("unknowns"))),
        ),
        action=action_request_from_wire(payload.get("action")),
        continue_exploration=continue_exploration,
        next_priorities=_string_list(payload.get("next_priorities")),
    )


def confidence_from_wire(payload: object) -> ConfidenceScore:
    raw = _coerce_object_dict(payload) or {}
    values = {
        dimension: (
            clamp_unit(cast(float, raw[dimension])) if _is_number(raw.get(dimension)) else 0.0
        )
        for dimension in CONFIDENCE_DIMENSIONS
    }
    return ConfidenceScore(**values)


def confidence_to_wire(score: ConfidenceScore) -> dict[str, float]:
    return {dimension: getattr(score, dimension) for dimension in CONFIDENCE_DIMENSIONS}


def action_request_to_wire(request: ActionRequest) -> dict[str, object]:
    return {
        "type": request.type,
        "parameters": dict(request.parameters),
        "reason": request.reason,
        "expected_insights": list(request.expected_insights),
    }


def decision_to_wire(decision: Decision) -> dict[str, object]:
    return {
        "iteration": decision.iteration,
        "understanding_level": decision.understanding_level,
        "confidence_score": confidence_to_wire(decision.confidence_score),
        "thinking": decision.thinking,
        "current_knowledge": {
            "confirmed": list(decision.current_knowledge.confirmed),
            "assumptions": list(decision.current_knowledge.assumptions),
            "unknowns": list(decision.current_knowledge.unknowns),
        },
        "action": action_request_to_wire(decision.action),
        "continue_exploration": decision.continue_exploration,
        "next_priorities": list(decision.next_priorities),
    }


def result_to_wire(result: ActionResult) -> dict[str, object]:
    payload: dict[str, object] = {
        "action_type": result.action_type,
        "success": result.success,
        "data": result.data,
        "timestamp": result.timestamp,
    }
    if result.error is not None:
        payload["error"] = result.error
    return payload


def history_entry_to_wire(entry: HistoryEntry) -> dict[str, object]:
    observation: object = entry.observation
    if isinstance(observation, ActionResult):
        observation = result_to_wire(observation)
    return {
        "iteration": entry.iteration,
        "understanding_level": entry.understanding_level,
        "action_summary": {
            "type": entry.action_summary.type,
            "target": entry.action_summary.target,
            "success": entry.action_summary.success,
        },
        "key_findings": list(entry.key_findings),
        "explored_files": list(entry.explored_files),
        "explored_directories": list(entry.explored_directories),
        "observation": observation,
    }


def summary_to_wire(summary: ExplorationSummary) -> dict[str, object]:
    return {
        "total_iterations": summary.total_iterations,
        "final_understanding_level": summary.final_understanding_level,
        "final_confidence_score": confidence_to_wire(summary.final_confidence_score),
        "explored_files": list(summary.explored_files),
        "explored_directories": list(summary.explored_directories),
        "key_findings": list(summary.key_findings),
    }


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text_parameter(request: ActionRequest, key: str, label: str) -> str | None:
    value = request.parameters.get(key)
    if value is not None and not isinstance(value, str):
        raise ActionValidationError(f"{label} must be a string, got {type(value).__name__}")
    return value


def _required_text(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _coerce_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    return {str(key): raw_value for key, raw_value in value.items()}
