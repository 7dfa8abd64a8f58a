"""Session activity tracking and loop detection.

SessionActivityTracker turns raw agent events into ActivitySignals for one
target session and keeps a sliding window of recent tool-call signatures.
A signature is the tool name plus its JSON-encoded input, truncated.

The agent is judged to be looping when either:
  - one signature fills ``threshold`` slots of the window, or
  - the window is full and its last ``threshold`` calls use at most two
    distinct signatures (ping-ponging between two calls).
"""

from __future__ import annotations

import json
import logging
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Optional

from prwarden_core.agent.events import AgentEvent

logger = logging.getLogger(__name__)

SIGNATURE_INPUT_CHARS = 200


@dataclass
class ActivityMetrics:
    tool_calls: int = 0
    message_updates: int = 0
    busy_events: int = 0
    idle_events: int = 0
    errors: int = 0


@dataclass(frozen=True)
class ActivitySignal:
    is_target: bool
    is_busy: bool = False
    is_idle: bool = False
    is_message_update: bool = False
    is_retry: bool = False
    retry_attempt: Optional[int] = None
    retry_message: Optional[str] = None
    is_error: bool = False
    error_payload: Any = None
    loop_signature: Optional[str] = None
    loop_count: int = 0


_NOT_TARGET = ActivitySignal(is_target=False)


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def event_session_id(event: AgentEvent) -> Optional[str]:
    """Session ids sit at the top level, or under ``info``/``part`` for message events."""
    props = event.properties
    for container in (props, _dict(props.get("info")), _dict(props.get("part"))):
        session_id = container.get("sessionID")
        if isinstance(session_id, str):
            return session_id
    return None


def tool_signature(part: dict) -> str:
    tool = part.get("tool") or "unknown"
    tool_input = part.get("input")
    if not isinstance(tool_input, dict):
        tool_input = _dict(part.get("state")).get("input")
    encoded = json.dumps(tool_input, sort_keys=True)[:SIGNATURE_INPUT_CHARS] if isinstance(tool_input, dict) else ""
    return f"{tool}:{encoded}"


class LoopDetector:
    def __init__(self, window: int = 10, threshold: int = 5):
        self.window = window
        self.threshold = threshold
        self._recent: deque[str] = deque(maxlen=window)

    def reset(self) -> None:
        self._recent.clear()

    def record(self, signature: str) -> Optional[tuple[str, int]]:
        """Add a tool call; return (signature, count) when a loop is detected."""
        self._recent.append(signature)
        if len(self._recent) < self.threshold:
            return None

        call, count = Counter(self._recent).most_common(1)[0]
        if count >= self.threshold:
            logger.warning(
                "Loop detected: tool call %r repeated %d times in last %d calls", call, count, len(self._recent)
            )
            return call, count

        if len(self._recent) == self.window:
            tail = list(self._recent)[-self.threshold :]
            distinct = set(tail)
            if len(distinct) <= 2:
                logger.warning(
                    "Loop detected: only %d distinct tool calls in last %d calls: %s",
                    len(distinct),
                    len(tail),
                    ", ".join(sorted(distinct)),
                )
                return tail[-1], tail.count(tail[-1])
        return None


class SessionActivityTracker:
    def __init__(self, loop_window: int = 10, loop_threshold: int = 5, debug_logging: bool = False):
        self.debug_logging = debug_logging
        self.loop_detector = LoopDetector(loop_window, loop_threshold)
        self.metrics = ActivityMetrics()
        self._seen_calls: set[str] = set()

    def reset(self) -> None:
        self.loop_detector.reset()
        self.metrics = ActivityMetrics()
        self._seen_calls = set()

    def _is_new_call(self, part: dict) -> bool:
        # A tool part is updated several times (pending, running, completed).
        # Count it once, at the first update that carries its input.
        if _dict(part.get("state")).get("status") == "pending":
            return False
        call_id = part.get("callID") or part.get("id")
        if not isinstance(call_id, str):
            return True
        if call_id in self._seen_calls:
            return False
        self._seen_calls.add(call_id)
        return True

    def log_summary(self, session_id: str, duration: float) -> None:
        m = self.metrics
        logger.info(
            "Session %s activity: %d tool calls, %d busy events, %d errors (%.1fs)",
            session_id,
            m.tool_calls,
            m.busy_events,
            m.errors,
            duration,
        )
        if m.tool_calls == 0:
            logger.warning("Session %s completed with NO tool calls; the agent may not have done any work", session_id)

    def handle_event(self, event: AgentEvent, session_id: str) -> ActivitySignal:
        if event_session_id(event) != session_id:
            return _NOT_TARGET
        if self.debug_logging:
            self._trace(event)

        props = event.properties
        status = _dict(props.get("status"))
        status_type = status.get("type") if isinstance(status.get("type"), str) else None
        part = _dict(props.get("part"))

        loop = None
        if event.type == "message.part.updated" and part.get("type") == "tool" and self._is_new_call(part):
            self.metrics.tool_calls += 1
            loop = self.loop_detector.record(tool_signature(part))

        is_busy = event.type == "session.status" and status_type is not None and status_type != "idle"
        is_message_update = event.type in ("message.updated", "message.part.updated")
        is_idle = event.type == "session.idle" or (event.type == "session.status" and status_type == "idle")
        is_error = event.type == "session.error"

        if is_busy:
            self.metrics.busy_events += 1
        if is_message_update:
            self.metrics.message_updates += 1
        if is_idle:
            self.metrics.idle_events += 1
        if is_error:
            self.metrics.errors += 1

        return ActivitySignal(
            is_target=True,
            is_busy=is_busy,
            is_idle=is_idle,
            is_message_update=is_message_update,
            is_retry=event.type == "session.status" and status_type == "retry",
            retry_attempt=status.get("attempt") if isinstance(status.get("attempt"), int) else None,
            retry_message=status.get("message") if isinstance(status.get("message"), str) else None,
            is_error=is_error,
            error_payload=props.get("error"),
            loop_signature=loop[0] if loop else None,
            loop_count=loop[1] if loop else 0,
        )

    @staticmethod
    def _trace(event: AgentEvent) -> None:
        props = event.properties
        if event.type == "message.part.updated":
            part = _dict(props.get("part"))
            if part.get("type") == "tool":
                logger.debug("[agent] Tool call: %s (%s)", part.get("tool"), _dict(part.get("state")).get("status"))
            elif part.get("type") == "text" and props.get("delta"):
                logger.debug("[agent] %s", props["delta"])
        elif event.type == "session.status":
            logger.debug("[agent] Session status: %s", _dict(props.get("status")).get("type"))
        elif event.type == "session.error":
            logger.error("[agent] Session error: %s", json.dumps(props.get("error"), default=str))
        else:
            logger.debug("[agent] Event: %s", event.type)
