"""Streaming plan (blueprint) generation from a finished exploration."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from urllib import request
from urllib.error import HTTPError, URLError

from scoutai.exploration.models import (
    HistoryEntry,
    PlanChunk,
    PlanError,
    PlanEvent,
    PlanRequest,
)
from scoutai.llm.client import read_error_body_excerpt
from scoutai.llm.stream import iter_plan_events

LOGGER = logging.getLogger(__name__)

READ_CHUNK_BYTES = 4096

BLUEPRINT_SYSTEM_PROMPT = (
    "You are a senior software architect. Turn code exploration findings into a"
    " detailed, actionable implementation blueprint for developers. Output pure"
    " markdown, no JSON. Cover: overview, current architecture analysis, architecture"
    " design, a phased implementation plan with the files to modify, technical"
    " specifications, a testing strategy and risks. Ground every statement in the"
    " exploration findings and call out remaining assumptions explicitly."
)


class BlueprintClient:
    """Streams an implementation plan for a :class:`PlanRequest`."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        reasoning_effort: str | None = None,
        api_url: str = "https://api.openai.com/v1/responses",
        timeout: float = 300.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.reasoning_effort = reasoning_effort
        self.api_url = api_url
        self.timeout = timeout

    def generate_plan(self, plan_request: PlanRequest) -> Iterator[PlanEvent]:
        """Yield plan chunks followed by exactly one complete or error event."""
        body = json.dumps(self._build_payload(plan_request)).encode("utf-8")
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        LOGGER.info(
            "plan_request_started",
            extra={
                "api_url": self.api_url,
                "model": self.model,
                "payload_bytes": len(body),
                "history_entries": len(plan_request.history),
            },
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        chunk_count = 0
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                for event in iter_plan_events(_iter_body(resp)):
                    if isinstance(event, PlanChunk):
                        chunk_count += 1
                    else:
                        LOGGER.info(
                            "plan_request_finished",
                            extra={
                                "model": self.model,
                                "chunks": chunk_count,
                                "outcome": type(event).__name__,
                            },
                        )
                    yield event
        except HTTPError as exc:
            body_excerpt = read_error_body_excerpt(exc)
            LOGGER.error(
                "plan_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Plan request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            yield PlanError(details)
        except URLError as exc:
            LOGGER.error(
                "plan_request_transport_error",
                extra={"api_url": self.api_url, "model": self.model, "reason": str(exc.reason)},
            )
            yield PlanError(f"Plan request transport error: {exc.reason}")
        except TimeoutError:
            LOGGER.error(
                "plan_request_timeout",
                extra={"api_url": self.api_url, "timeout_seconds": self.timeout},
            )
            yield PlanError(f"Plan request timed out after {self.timeout:.1f}s")
        except OSError as exc:
            LOGGER.error(
                "plan_stream_read_error",
                extra={"api_url": self.api_url, "chunks": chunk_count, "error": str(exc)},
            )
            yield PlanError(f"Plan stream interrupted: {exc}")

    def _build_payload(self, plan_request: PlanRequest) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": self.model,
            "stream": True,
            "input": [
                {"role": "system", "content": BLUEPRINT_SYSTEM_PROMPT},
                {"role": "user", "content": build_plan_prompt(plan_request)},
            ],
        }
        if self.reasoning_effort:
            payload["reasoning"] = {"effort": self.reasoning_effort}
        return payload


def build_plan_prompt(plan_request: PlanRequest) -> str:
    summary = plan_request.summary
    confidence = summary.final_confidence_score
    knowledge = plan_request.knowledge
    history = "\n\n".join(_format_history_entry(entry) for entry in plan_request.history)
    return (
        "### IMPLEMENTATION GOAL\n"
        f"{plan_request.implementation_goal}\n\n"
        "### EXPLORATION SUMMARY\n"
        f"- Total iterations: {summary.total_iterations}\n"
        f"- Final understanding: {_percent(summary.final_understanding_level)}\n"
        f"- Architecture confidence: {_percent(confidence.architecture)}\n"
        f"- Data flow confidence: {_percent(confidence.data_flow)}\n"
        f"- Integration confidence: {_percent(confidence.integration_points)}\n"
        f"- Implementation confidence: {_percent(confidence.implementation_details)}\n\n"
        "### KEY FINDINGS\n"
        f"{_bullets(summary.key_findings)}\n\n"
        "### CONFIRMED FACTS\n"
        f"{_bullets(knowledge.confirmed)}\n\n"
        "### ASSUMPTIONS\n"
        f"{_bullets(knowledge.assumptions)}\n\n"
        "### UNKNOWNS\n"
        f"{_bullets(knowledge.unknowns)}\n\n"
        f"### EXPLORED FILES ({len(summary.explored_files)})\n"
        f"{_bullets(summary.explored_files)}\n\n"
        f"### EXPLORED DIRECTORIES ({len(summary.explored_directories)})\n"
        f"{_bullets(summary.explored_directories)}\n\n"
        "### EXPLORATION HISTORY\n"
        f"{history or 'None'}\n\n"
        "Write the implementation blueprint in markdown."
    )


def _format_history_entry(entry: HistoryEntry) -> str:
    action = entry.action_summary
    if entry.observation is None:
        mark = "not run"
    else:
        mark = "ok" if action.success else "failed"
    return (
        f"**Iteration {entry.iteration}** (Understanding: {_percent(entry.understanding_level)}):\n"
        f"- Action: {action.type} -> {action.target} ({mark})\n"
        f"- Key Findings: {'; '.join(entry.key_findings) or 'None'}\n"
        f"- Files: {', '.join(entry.explored_files) or 'None'}"
    )


def _percent(value: float) -> str:
    return f"{value * 100:.0f}%"


def _bullets(items: tuple[str, ...] | list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) or "- None"


def _iter_body(resp: object) -> Iterator[bytes]:
    read = getattr(resp, "read1", None) or getattr(resp, "read")
    while True:
        chunk = read(READ_CHUNK_BYTES)
        if not chunk:
            return
        yield chunk
