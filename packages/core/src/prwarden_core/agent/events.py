"""Server-sent event parsing for the agent's ``GET /event`` stream."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Optional

logger = logging.getLogger(__name__)


@dataclass
class SSEEvent:
    event: str
    data: str
    id: Optional[str] = None
    retry: Optional[int] = None


@dataclass(frozen=True)
class AgentEvent:
    """One decoded agent event: ``type`` plus its ``properties`` payload."""

    type: str
    properties: dict[str, Any] = field(default_factory=dict)


async def parse_sse_lines(lines: AsyncIterable[str]) -> AsyncIterator[SSEEvent]:
    """Group raw SSE lines into events; a blank line dispatches the event."""
    event_name = "message"
    data_lines: list[str] = []
    event_id: Optional[str] = None
    retry: Optional[int] = None

    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data_lines:
                yield SSEEvent(event=event_name, data="\n".join(data_lines), id=event_id, retry=retry)
            event_name, data_lines, retry = "message", [], None
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)
        elif name == "id":
            event_id = value
        elif name == "retry":
            try:
                retry = int(value)
            except ValueError:
                logger.debug("Ignoring non-integer SSE retry field: %r", value)

    if data_lines:
        yield SSEEvent(event=event_name, data="\n".join(data_lines), id=event_id, retry=retry)


def decode_agent_event(sse: SSEEvent) -> AgentEvent:
    """Decode the JSON payload of an SSE event.

    Accepts both ``{"type", "properties"}`` and the wrapped
    ``{"directory", "payload": {...}}`` shape. Non-JSON data keeps the SSE
    event name and empty properties.
    """
    try:
        payload = json.loads(sse.data) if sse.data else None
    except (json.JSONDecodeError, TypeError):
        return AgentEvent(type=sse.event)
    if isinstance(payload, dict) and isinstance(payload.get("payload"), dict):
        payload = payload["payload"]
    if not isinstance(payload, dict):
        return AgentEvent(type=sse.event)
    properties = payload.get("properties")
    return AgentEvent(
        type=str(payload.get("type") or sse.event),
        properties=properties if isinstance(properties, dict) else {},
    )
