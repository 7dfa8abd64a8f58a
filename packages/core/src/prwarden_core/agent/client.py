from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

import httpx

from prwarden_core.agent.events import AgentEvent, decode_agent_event, parse_sse_lines

logger = logging.getLogger(__name__)

# Prompts can run for many minutes and the event stream stays open for the
# whole run, so reads are unbounded; the session layer enforces timeouts.
DEFAULT_TIMEOUT = httpx.Timeout(30.0, read=None)


def _text_parts(text: str) -> list[dict[str, str]]:
    return [{"type": "text", "text": text}]


def _model_ref(model: Optional[str]) -> Optional[dict[str, str]]:
    if not model or "/" not in model:
        return None
    provider_id, model_id = model.split("/", 1)
    return {"providerID": provider_id, "modelID": model_id}


class OpenCodeClient:
    """Thin async HTTP client for an OpenCode agent server."""

    def __init__(
        self,
        base_url: str,
        *,
        password: Optional[str] = None,
        model: Optional[str] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._model = _model_ref(model)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=("opencode", password) if password else None,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, *, json: Optional[dict[str, Any]] = None) -> Any:
        response = await self._client.request(method, path, json=json)
        response.raise_for_status()
        if response.content:
            return response.json()
        return None

    def _prompt_payload(self, text: str, **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {"parts": _text_parts(text), **extra}
        if self._model:
            payload["model"] = self._model
        return payload

    async def create_session(self, title: str) -> str:
        data = await self._request("POST", "/session", json={"title": title})
        session_id = data["id"]
        logger.info("Created agent session %s", session_id)
        return session_id

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/session/{session_id}")
        logger.info("Deleted agent session %s", session_id)

    async def send_system_prompt(self, session_id: str, text: str) -> None:
        # noReply stores the text as context without starting a turn.
        await self._request("POST", f"/session/{session_id}/message", json=self._prompt_payload(text, noReply=True))

    async def prompt_async(self, session_id: str, text: str) -> None:
        """Start a turn and return immediately; progress arrives as events."""
        await self._request("POST", f"/session/{session_id}/prompt_async", json=self._prompt_payload(text))

    async def prompt(self, session_id: str, text: str) -> str:
        """Run a turn and return the text parts of the agent's reply."""
        data = await self._request("POST", f"/session/{session_id}/message", json=self._prompt_payload(text))
        parts = (data or {}).get("parts") or []
        return "\n".join(p.get("text", "") for p in parts if isinstance(p, dict) and p.get("type") == "text")

    async def abort(self, session_id: str) -> None:
        await self._request("POST", f"/session/{session_id}/abort")

    async def stream_events(self) -> AsyncIterator[AgentEvent]:
        async with self._client.stream("GET", "/event") as response:
            response.raise_for_status()
            async for sse in parse_sse_lines(response.aiter_lines()):
                yield decode_agent_event(sse)


__all__ = ["OpenCodeClient"]
