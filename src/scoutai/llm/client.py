"""Thin model client that asks the decision oracle for the next exploration step."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from urllib import request
from urllib.error import HTTPError, URLError

from scoutai.errors import OracleError
from scoutai.exploration.context import build_exploration_context
from scoutai.exploration.knowledge import KnowledgeState
from scoutai.exploration.models import ACTION_TYPES, Decision, HistoryEntry
from scoutai.exploration.schema import decision_from_wire

BASE_SYSTEM_PROMPT_PARTS = [
    (
        "You are a code exploration agent analyzing a software project. Your goal is"
        " to understand the codebase well enough to write an implementation plan."
    ),
    (
        "Each iteration, assess your understanding_level (0-1) and a confidence_score"
        " for architecture, data_flow, integration_points and implementation_details."
    ),
    (
        "Keep current_knowledge up to date: confirmed facts verified by observations,"
        " assumptions you still hold, and the unknowns that block the plan."
    ),
    (
        "Choose exactly one action: read_file (parameters.path), search_content"
        " (parameters.query, optional parameters.scope), read_terminal"
        " (parameters.command, read-only commands only), or list_directory"
        " (parameters.path, optional parameters.recursive). Paths are relative to the"
        " workspace root; start with list_directory on '.'. Set unused parameters to null."
    ),
    (
        "Prioritize actions that resolve high-impact unknowns. If an action failed,"
        " adapt your strategy instead of repeating it."
    ),
    (
        "Set continue_exploration to false once understanding_level is at least 0.85"
        " and the remaining unknowns are minor; otherwise keep exploring."
    ),
    "List 2-5 next_priorities. Return only the JSON object.",
]

LOGGER = logging.getLogger(__name__)


class OracleClient:
    """Small HTTP client for decision-oriented model calls."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        system_prompt: str | None = None,
        runtime_context: str | None = None,
        reasoning_effort: str | None = None,
        api_url: str = "https://api.openai.com/v1/responses",
        timeout: float = 120.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.system_prompt = system_prompt or " ".join(BASE_SYSTEM_PROMPT_PARTS)
        self.runtime_context = runtime_context
        self.reasoning_effort = reasoning_effort
        self.api_url = api_url
        self.timeout = timeout

    def next_decision(
        self,
        goal: str,
        history: Sequence[HistoryEntry],
        knowledge: KnowledgeState,
    ) -> Decision:
        """Request the next decision; raises :class:`OracleError` on any failure."""
        payload = self._build_payload(goal, history, knowledge)
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        LOGGER.debug(
            "oracle_request_prepared",
            extra={
                "api_url": self.api_url,
                "model": self.model,
                "payload_bytes": len(body),
                "history_entries": len(history),
                "reasoning_effort": self.reasoning_effort,
            },
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = read_error_body_excerpt(exc)
            LOGGER.error(
                "oracle_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Model request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise OracleError(details, status=exc.code) from exc
        except URLError as exc:
            LOGGER.error(
                "oracle_request_transport_error",
                extra={"api_url": self.api_url, "model": self.model, "reason": str(exc.reason)},
            )
            raise OracleError(f"Model request transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            LOGGER.error(
                "oracle_request_timeout",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "timeout_seconds": self.timeout,
                },
            )
            raise OracleError(f"Model request timed out after {self.timeout:.1f}s") from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "oracle_response_parse_error",
                extra={"api_url": self.api_url, "model": self.model, "error": str(exc)},
            )
            raise OracleError(f"Model response parsing error: {exc}") from exc

        raw = _coerce_object_dict(raw_response)
        if raw is None:
            raise OracleError("Model response parsing error: expected top-level object")

        try:
            parsed = self._extract_output_json(raw)
        except json.JSONDecodeError as exc:
            raise OracleError(f"Model structured output parsing error: {exc}") from exc
        if parsed is None:
            raise OracleError("No structured output returned")

        try:
            return decision_from_wire(parsed)
        except ValueError as exc:
            raise OracleError(f"Model decision is invalid: {exc}") from exc

    def _build_payload(
        self,
        goal: str,
        history: Sequence[HistoryEntry],
        knowledge: KnowledgeState,
    ) -> dict[str, object]:
        input_messages: list[dict[str, str]] = [{"role": "system", "content": self.system_prompt}]
        if self.runtime_context:
            input_messages.append({"role": "system", "content": self.runtime_context})
        input_messages.append(
            {"role": "user", "content": self._build_user_message(goal, history, knowledge)}
        )

        payload: dict[str, object] = {
            "model": self.model,
            "input": input_messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "exploration_step",
                    "strict": True,
                    "schema": decision_json_schema(),
                }
            },
        }
        if self.reasoning_effort:
            payload["reasoning"] = {"effort": self.reasoning_effort}
        return payload

    @staticmethod
    def _build_user_message(
        goal: str,
        history: Sequence[HistoryEntry],
        knowledge: KnowledgeState,
    ) -> str:
        """Build the per-iteration prompt from the goal and compacted history."""
        context = build_exploration_context(history, knowledge)
        return (
            "### CONTEXT\n"
            "IMPLEMENTATION PLAN GOAL:\n"
            f"{goal}\n\n"
            f"CURRENT ITERATION: {context.current_iteration}\n"
            f"PROGRESS: {context.progress_summary}\n\n"
            "CUMULATIVE KNOWLEDGE:\n"
            f"{context.cumulative_knowledge}\n\n"
            "EXPLORATION HISTORY:\n"
            f"{context.exploration_history}\n\n"
            "### REQUEST\n"
            "Assess your understanding, update the knowledge, and choose the next action."
            " The most recent observation is the result of your previous action."
        )

    @classmethod
    def _extract_output_json(cls, payload: dict[str, object]) -> dict[str, object] | None:
        output_items = payload.get("output")
        if not isinstance(output_items, list):
            return None

        for item in output_items:
            item_object = _coerce_object_dict(item)
            if item_object is None:
                continue
            content_items = item_object.get("content")
            if not isinstance(content_items, list):
                continue
            for content in content_items:
                content_object = _coerce_object_dict(content)
                if content_object is None:
                    continue
                content_type = content_object.get("type")
                content_text = content_object.get("text")
                if content_type == "output_text" and isinstance(content_text, str):
                    return _coerce_object_dict(json.loads(content_text))
        return None


def decision_json_schema() -> dict[str, object]:
    """Strict JSON schema mirroring :class:`Decision`."""
    string_list = {"type": "array", "items": {"type": "string"}}
    unit = {"type": "number"}
    nullable_string = {"type": ["string", "null"]}
    return {
        "type": "object",
        "properties": {
            "iteration": {"type": "integer"},
            "understanding_level": unit,
            "confidence_score": _strict_object(
                {
                    "architecture": unit,
                    "data_flow": unit,
                    "integration_points": unit,
                    "implementation_details": unit,
                }
            ),
            "thinking": {"type": "string"},
            "current_knowledge": _strict_object(
                {"confirmed": string_list, "assumptions": string_list, "unknowns": string_list}
            ),
            "action": _strict_object(
                {
                    "type": {"type": "string", "enum": list(ACTION_TYPES)},
                    "parameters": _strict_object(
                        {
                            "path": nullable_string,
                            "query": nullable_string,
                            "scope": nullable_string,
                            "command": nullable_string,
                            "recursive": {"type": ["boolean", "null"]},
                        }
                    ),
                    "reason": {"type": "string"},
                    "expected_insights": string_list,
                }
            ),
            "continue_exploration": {"type": "boolean"},
            "next_priorities": string_list,
        },
        "required": [
            "iteration",
            "understanding_level",
            "confidence_score",
            "thinking",
            "current_knowledge",
            "action",
            "continue_exploration",
            "next_priorities",
        ],
        "additionalProperties": False,
    }


def _strict_object(properties: dict[str, object]) -> dict[str, object]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def _coerce_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    return {str(key): raw_value for key, raw_value in value.items()}


def read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
    if exc.fp is None:
        return None
    try:
        raw = exc.read()
    except OSError:
        return None

    if not raw:
        return None

    excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
    if len(excerpt) > max_chars:
        return f"{excerpt[:max_chars]}..."
    return excerpt
