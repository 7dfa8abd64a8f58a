"""Trigger resolution from the CI event that started the run.

GitHub Actions exposes the event name in GITHUB_EVENT_NAME and the webhook
payload as a JSON file at GITHUB_EVENT_PATH. Only a few payload fields
matter here: the action, the comment id, and the pull request number.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from prwarden_core.tasks import ReviewTrigger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CIEvent:
    name: str | None
    payload: dict

    @property
    def pr_number(self) -> int | None:
        for key in ("pull_request", "issue"):
            number = (self.payload.get(key) or {}).get("number")
            if isinstance(number, int):
                return number
        number = self.payload.get("number")
        return number if isinstance(number, int) else None

    def trigger(self, force_review: bool = False) -> ReviewTrigger:
        comment_id = (self.payload.get("comment") or {}).get("id")
        action = self.payload.get("action")
        return ReviewTrigger(
            event_name=self.name,
            action=action if isinstance(action, str) else None,
            comment_id=comment_id if isinstance(comment_id, int) else None,
            force_review=force_review,
        )


def load_event(event_name: str | None = None, event_path: str | None = None) -> CIEvent:
    """Read the event from explicit arguments, falling back to the Actions environment."""
    name = event_name or os.environ.get("GITHUB_EVENT_NAME")
    path = event_path or os.environ.get("GITHUB_EVENT_PATH")
    payload: dict = {}
    if path:
        try:
            with open(Path(path)) as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                payload = loaded
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read event payload %s: %s", path, e)
    return CIEvent(name=name, payload=payload)
