"""Block codec — embeds status blocks in comment bodies and reads them back.

A block lives in a fenced region tagged ``prwarden``::

    ```prwarden
    {"type": "finding", ...}
    ```

Prose around the region is preserved untouched and never interpreted.
"""

from __future__ import annotations

import json
import logging
import re

from prwarden_state.blocks import StatusBlock, block_from_dict

logger = logging.getLogger(__name__)

BLOCK_TAG = "prwarden"

# The newline before the closing fence is optional: hand-edited or
# re-rendered comments sometimes lose it.
_BLOCK_RE = re.compile(r"```" + BLOCK_TAG + r"[^\S\n]*\n(.*?)\n?```", re.DOTALL)


def extract_block(body: str | None) -> StatusBlock | None:
    """Return the first status block in ``body``, or None.

    Missing, unparseable, or unknown blocks all yield None; this never raises.
    """
    if not body:
        return None
    match = _BLOCK_RE.search(body)
    if match is None:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed status block: %s", match.group(1)[:200])
        return None
    return block_from_dict(data)


def serialize_block(block: StatusBlock) -> str:
    payload = json.dumps(block.to_dict(), indent=2, ensure_ascii=False)
    # Backticks inside string values would terminate the fence early;
    # \u0060 is the JSON escape for a backtick and decodes back unchanged.
    payload = payload.replace("`", "\\u0060")
    return f"```{BLOCK_TAG}\n{payload}\n```"


def embed_block(body: str | None, block: StatusBlock) -> str:
    """Return ``body`` carrying ``block``, replacing any existing block."""
    body = body or ""
    serialized = serialize_block(block)
    if _BLOCK_RE.search(body):
        return _BLOCK_RE.sub(lambda _: serialized, body, count=1)
    if not body.strip():
        return serialized
    return f"{body.rstrip()}\n\n{serialized}"


def strip_block(body: str | None) -> str:
    """Return the human-readable prose of ``body`` with the block removed."""
    if not body:
        return ""
    return _BLOCK_RE.sub("", body).strip()
