"""Error taxonomy.

Only ConfigurationError (and failures while setting up the batch) is meant
to reach the CLI. Everything else is recovered near where it happens: LLM
failures resolve to a named fallback, agent-session failures turn the current
task into a failed TaskResult.
"""


class PrwardenError(Exception):
    """Base class for prwarden errors."""


class ConfigurationError(PrwardenError):
    """Invalid or incomplete configuration; fatal before any task runs."""


class ReviewError(PrwardenError):
    """A review could not be carried out (insufficient description, retries exhausted)."""


class AgentSessionError(PrwardenError):
    """The agent session aborted the current prompt."""


class LoopDetectedError(AgentSessionError):
    """The agent kept repeating the same tool calls."""

    def __init__(self, signature: str, count: int, window: int):
        super().__init__(f"agent is looping: {signature!r} seen {count} times in the last {window} tool calls")
        self.signature = signature
        self.count = count
        self.window = window


class SessionTimeoutError(AgentSessionError):
    """The prompt did not complete within the wall-clock limit."""


class SessionEventError(AgentSessionError):
    """The agent reported a terminal error, or the event stream ended unexpectedly."""


class PromptInjectionError(PrwardenError):
    """External text was blocked by prompt-injection screening."""

    def __init__(self, context: str, threats: list[str]):
        super().__init__(f"content blocked: possible prompt injection in {context} ({', '.join(threats)})")
        self.context = context
        self.threats = threats
