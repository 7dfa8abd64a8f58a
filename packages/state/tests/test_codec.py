"""Tests for the status block codec."""

from __future__ import annotations

import pytest

from prwarden_state.blocks import (
    AutoReviewTriggerBlock,
    FindingBlock,
    ManualReviewBlock,
    QuestionAnswerBlock,
    QuestionBlock,
    ReviewStatusBlock,
    block_from_dict,
)
from prwarden_state.codec import embed_block, extract_block, serialize_block, strip_block
from prwarden_state.models import ManualReviewStatus, PassResult, QuestionStatus, ThreadStatus

WELL_FORMED_BLOCKS = [
    FindingBlock(file="src/a.ts", line=10, score=8, finding="Missing null check", assessment="Crashes on empty input"),
    FindingBlock(
        file="src/b.py",
        line=3,
        score=9,
        finding="Use `secrets.compare_digest` for tokens",
        assessment="Timing attack:\n```python\nif token == expected:\n```",
        status=ThreadStatus.DISPUTED,
        last_evaluated_reply_id=42,
        resolution="Developer disagrees",
    ),
    QuestionBlock(status=QuestionStatus.ANSWERED),
    QuestionAnswerBlock(reply_to_comment_id=7, question_hash="1a2b3c4d", answered_at="2024-05-01T10:00:00+00:00"),
    ManualReviewBlock(status=ManualReviewStatus.DISMISSED_BY_AUTO_REVIEW, reason="Handled by automatic review"),
    AutoReviewTriggerBlock(action="synchronize", sha="a" * 40),
    AutoReviewTriggerBlock(action="opened", sha="b" * 40, completed_at="2024-05-01T10:00:00+00:00"),
    ReviewStatusBlock(
        last_reviewed_sha="c" * 40,
        passes=(PassResult(1, True, False), PassResult(2, True, True)),
    ),
]


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


class TestRoundTrip:
    @pytest.mark.parametrize("block", WELL_FORMED_BLOCKS, ids=lambda b: b.TYPE)
    def test_decode_encode_decode_is_stable(self, block):
        decoded = extract_block(serialize_block(block))
        assert decoded == block
        assert extract_block(serialize_block(decoded)) == decoded

    def test_backticks_do_not_terminate_the_fence(self):
        block = WELL_FORMED_BLOCKS[1]
        serialized = serialize_block(block)
        # Only the opening and closing fences remain as literal backticks.
        assert serialized.count("```") == 2
        assert extract_block(serialized).assessment == block.assessment


# ---------------------------------------------------------------------------
# extract_block
# ---------------------------------------------------------------------------


class TestExtractBlock:
    def test_missing_trailing_newline_still_parses(self):
        body = 'Done.\n\n```prwarden\n{"type": "question", "status": "ANSWERED"}```'
        assert extract_block(body) == QuestionBlock(status=QuestionStatus.ANSWERED)

    def test_returns_none_for_plain_prose(self):
        assert extract_block("Looks good to me!") is None

    def test_returns_none_for_empty_body(self):
        assert extract_block("") is None
        assert extract_block(None) is None

    def test_malformed_json_is_absence(self):
        assert extract_block("```prwarden\n{not json\n```") is None

    def test_unknown_type_is_absence(self):
        assert extract_block('```prwarden\n{"type": "mystery"}\n```') is None

    def test_untagged_fence_is_ignored(self):
        body = '```json\n{"type": "question", "status": "ANSWERED"}\n```'
        assert extract_block(body) is None

    def test_score_outside_range_is_absence(self):
        body = '```prwarden\n{"type": "finding", "file": "a.py", "line": 1, "score": 11, "finding": "x"}\n```'
        assert extract_block(body) is None

    def test_boolean_line_is_rejected(self):
        body = '```prwarden\n{"type": "finding", "file": "a.py", "line": true, "score": 5, "finding": "x"}\n```'
        assert extract_block(body) is None

    def test_unknown_status_is_absence(self):
        assert extract_block('```prwarden\n{"type": "question", "status": "MAYBE"}\n```') is None

    def test_first_block_wins(self):
        body = serialize_block(QuestionBlock(QuestionStatus.IN_PROGRESS)) + "\n" + serialize_block(
            QuestionBlock(QuestionStatus.ANSWERED)
        )
        assert extract_block(body).status == QuestionStatus.IN_PROGRESS

    def test_string_reply_id_is_accepted(self):
        block = block_from_dict({"type": "question-answer", "reply_to_comment_id": "123"})
        assert block.reply_to_comment_id == 123

    def test_non_dict_payload_is_absence(self):
        assert extract_block("```prwarden\n[1, 2, 3]\n```") is None


# ---------------------------------------------------------------------------
# embed_block / strip_block
# ---------------------------------------------------------------------------


class TestEmbedBlock:
    def test_appends_to_prose(self):
        body = embed_block("@prwarden what does this do?", QuestionBlock(QuestionStatus.IN_PROGRESS))
        assert body.startswith("@prwarden what does this do?\n\n```prwarden\n")
        assert extract_block(body).status == QuestionStatus.IN_PROGRESS

    def test_replaces_existing_block_and_keeps_prose(self):
        body = embed_block("before", QuestionBlock(QuestionStatus.IN_PROGRESS)) + "\n\nafter"
        updated = embed_block(body, QuestionBlock(QuestionStatus.ANSWERED))
        assert extract_block(updated).status == QuestionStatus.ANSWERED
        assert updated.count("```prwarden") == 1
        assert updated.startswith("before")
        assert updated.endswith("after")

    def test_embedding_twice_is_idempotent(self):
        block = ManualReviewBlock(status=ManualReviewStatus.COMPLETED)
        once = embed_block("@prwarden review", block)
        assert embed_block(once, block) == once

    def test_empty_body_yields_block_only(self):
        assert embed_block("", QuestionBlock(QuestionStatus.ANSWERED)) == serialize_block(
            QuestionBlock(QuestionStatus.ANSWERED)
        )

    def test_strip_block_returns_prose(self):
        body = embed_block("Please explain line 4", QuestionBlock(QuestionStatus.ANSWERED))
        assert strip_block(body) == "Please explain line 4"
