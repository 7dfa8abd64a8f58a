"""Agent session driver — one long-lived agent conversation per run.

The agent never says "done". Completion is inferred from its event stream
by a small state machine:

    IDLE ──busy──▶ BUSY ──idle──▶ IDLE_GRACE ──grace elapsed──▶ COMPLETED
                    ▲                  │
                    └──busy / message──┘

    any state ──loop──▶ LOOPING     (LoopDetectedError)
    any state ──session.error / stream end──▶ ERROR   (SessionEventError)
    any state ──wall clock──▶ TIMEOUT   (SessionTimeoutError)

An idle event before any busy event is ignored: it belongs to the previous
turn. The wall-clock timeout wraps everything else and always wins. LOOPING
and TIMEOUT also abort the agent's turn on the server. Errors
are raised to the caller; retrying is the review executor's decision.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Optional

import httpx

from prwarden_core.agent.activity import SessionActivityTracker
from prwarden_core.errors import AgentSessionError, LoopDetectedError, SessionEventError, SessionTimeoutError

if TYPE_CHECKING:
    from prwarden_core.agent.client import OpenCodeClient
    from prwarden_core.agent.events import AgentEvent

logger = logging.getLogger(__name__)

# How long to wait for the event subscription before sending a prompt.
SUBSCRIBE_WAIT_SECONDS = 5.0


class SessionState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    IDLE_GRACE = "idle-grace"
    COMPLETED = "completed"
    LOOPING = "looping"
    ERROR = "error"
    TIMEOUT = "timeout"


class CompletionWatcher:
    """Consumes events for one prompt until the session completes or aborts."""

    def __init__(self, tracker: SessionActivityTracker, session_id: str, idle_grace_seconds: float):
        self.tracker = tracker
        self.session_id = session_id
        self.idle_grace_seconds = idle_grace_seconds
        self.state = SessionState.IDLE
        self.subscribed = asyncio.Event()

    async def watch(self, events: AsyncIterator[AgentEvent]) -> SessionState:
        loop = asyncio.get_running_loop()
        iterator = events.__aiter__()
        grace_deadline: Optional[float] = None
        saw_busy = False

        while True:
            timeout = None if grace_deadline is None else max(0.0, grace_deadline - loop.time())
            try:
                event = await asyncio.wait_for(iterator.__anext__(), timeout)
            except asyncio.TimeoutError:
                self.state = SessionState.COMPLETED
                logger.debug("Session %s stayed idle for %ss; completed", self.session_id, self.idle_grace_seconds)
                return self.state
            except StopAsyncIteration:
                self.state = SessionState.ERROR
                raise SessionEventError("event stream ended unexpectedly")

            self.subscribed.set()
            signal = self.tracker.handle_event(event, self.session_id)
            if not signal.is_target:
                continue

            if signal.loop_signature is not None:
                self.state = SessionState.LOOPING
                raise LoopDetectedError(signal.loop_signature, signal.loop_count, self.tracker.loop_detector.window)

            if signal.is_error:
                self.state = SessionState.ERROR
                raise SessionEventError(f"agent session error: {signal.error_payload!r}")

            if signal.is_retry:
                logger.warning(
                    "Session %s is retrying (attempt %s): %s",
                    self.session_id,
                    signal.retry_attempt,
                    signal.retry_message,
                )

            if signal.is_busy or signal.is_message_update:
                saw_busy = saw_busy or signal.is_busy
                if grace_deadline is not None:
                    logger.debug("Session %s became active again, cancelling idle grace period", self.session_id)
                    grace_deadline = None
                if saw_busy:
                    self.state = SessionState.BUSY

            if signal.is_idle and saw_busy and grace_deadline is None:
                logger.debug("Session %s went idle, waiting %ss grace period...", self.session_id, self.idle_grace_seconds)
                grace_deadline = loop.time() + self.idle_grace_seconds
                self.state = SessionState.IDLE_GRACE


class AgentSession:
    """Owns one agent session: create, prompt, reset, delete."""

    def __init__(self, client: OpenCodeClient, config: dict):
        self.client = client
        self.idle_grace_seconds = config["idle_grace_seconds"]
        self.default_timeout = config["review_timeout"]
        self.tracker = SessionActivityTracker(
            loop_window=config["loop_window"],
            loop_threshold=config["loop_threshold"],
            debug_logging=config.get("debug_logging", False),
        )
        self.session_id: Optional[str] = None
        self.last_state: Optional[SessionState] = None

    async def start(self, title: str, system_prompt: Optional[str] = None) -> str:
        try:
            self.session_id = await self.client.create_session(title)
            if system_prompt:
                await self.client.send_system_prompt(self.session_id, system_prompt)
        except httpx.HTTPError as e:
            raise AgentSessionError(f"failed to start agent session: {e}") from e
        return self.session_id

    async def close(self) -> None:
        """Delete the session; a failure here never masks the task's own outcome."""
        if self.session_id is None:
            return
        session_id, self.session_id = self.session_id, None
        try:
            await self.client.delete_session(session_id)
        except httpx.HTTPError as e:
            logger.warning("Failed to delete agent session %s: %s", session_id, e)

    async def reset(self, title: str, system_prompt: Optional[str] = None) -> str:
        await self.close()
        return await self.start(title, system_prompt)

    async def _abort(self, session_id: str) -> None:
        """Stop the agent's current turn; the session itself stays usable."""
        try:
            await self.client.abort(session_id)
        except httpx.HTTPError as e:
            logger.warning("Failed to abort agent session %s: %s", session_id, e)

    def _require_session(self) -> str:
        if self.session_id is None:
            raise AgentSessionError("no active agent session")
        return self.session_id

    async def send_prompt(self, prompt: str, timeout: Optional[float] = None) -> None:
        """Send a prompt and wait until the agent has finished working on it."""
        session_id = self._require_session()
        timeout = timeout or self.default_timeout
        self.tracker.reset()
        watcher = CompletionWatcher(self.tracker, session_id, self.idle_grace_seconds)
        events = self.client.stream_events()
        started = time.monotonic()
        logger.debug("Sending prompt to session %s (%d chars)", session_id, len(prompt))

        async def run() -> None:
            watch = asyncio.ensure_future(watcher.watch(events))
            try:
                try:
                    await asyncio.wait_for(watcher.subscribed.wait(), SUBSCRIBE_WAIT_SECONDS)
                except asyncio.TimeoutError:
                    logger.debug("No events from session %s yet; sending prompt anyway", session_id)
                await self.client.prompt_async(session_id, prompt)
            except BaseException:
                watch.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watch
                raise
            await watch

        try:
            await asyncio.wait_for(run(), timeout)
        except asyncio.TimeoutError:
            watcher.state = SessionState.TIMEOUT
            await self._abort(session_id)
            raise SessionTimeoutError(f"session {session_id} did not complete within {timeout}s")
        except LoopDetectedError:
            await self._abort(session_id)
            raise
        except httpx.HTTPError as e:
            watcher.state = SessionState.ERROR
            raise SessionEventError(f"agent request failed: {e}") from e
        finally:
            self.last_state = watcher.state
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
            self.tracker.log_summary(session_id, time.monotonic() - started)

    async def send_prompt_and_get_response(self, prompt: str, timeout: Optional[float] = None) -> str:
        """Send a prompt and return the agent's direct text reply."""
        session_id = self._require_session()
        timeout = timeout or self.default_timeout
        try:
            return await asyncio.wait_for(self.client.prompt(session_id, prompt), timeout)
        except asyncio.TimeoutError:
            await self._abort(session_id)
            raise SessionTimeoutError(f"no reply from session {session_id} within {timeout}s")
        except httpx.HTTPError as e:
            raise SessionEventError(f"agent request failed: {e}") from e
