"""Tests for bot-mention detection and question hashing."""

import pytest

from prwarden_core.utils.mentions import (
    contains_mention,
    normalize_text,
    remove_mentions,
    requires_fresh_analysis,
    strip_code_spans,
    text_hash,
)

MENTIONS = ["@prwarden", "@prwarden-bot"]


class TestContainsMention:
    def test_plain_mention(self):
        assert contains_mention("@prwarden why is this slow?", MENTIONS)

    def test_case_insensitive(self):
        assert contains_mention("Hey @PRWarden, thoughts?", MENTIONS)

    def test_mention_only_in_inline_code_is_ignored(self):
        assert not contains_mention("Run `@prwarden review` to trigger a review.", MENTIONS)

    def test_mention_only_in_fenced_block_is_ignored(self):
        body = "Example config:\n```yaml\ncomment: '@prwarden please review'\n```\nThat's all."
        assert not contains_mention(body, MENTIONS)

    def test_mention_outside_code_span_still_counts(self):
        body = "See `@prwarden review` above. @prwarden can you check the retry loop?"
        assert contains_mention(body, MENTIONS)

    def test_longer_handle_is_not_a_mention(self):
        assert not contains_mention("@prwardenx please look", MENTIONS)
        assert not contains_mention("@prwarden-other please look", ["@prwarden"])

    def test_email_like_text_is_not_a_mention(self):
        assert not contains_mention("mail me at ops@prwarden", MENTIONS)

    def test_none_body(self):
        assert not contains_mention(None, MENTIONS)


class TestStripCodeSpans:
    def test_fenced_removed_before_inline(self):
        text = "a ```x `y` z``` b `c` d"
        assert strip_code_spans(text) == "a  b  d"


class TestRemoveMentions:
    def test_longest_mention_removed_whole(self):
        assert remove_mentions("@prwarden-bot what does this do?", MENTIONS) == "what does this do?"

    def test_every_occurrence_removed(self):
        assert remove_mentions("@prwarden hi @PRWARDEN", MENTIONS) == "hi"


class TestTextHash:
    def test_known_values(self):
        assert text_hash("a") == "00000061"
        assert text_hash("ab") == "00000c21"

    def test_normalization_ignores_case_and_whitespace(self):
        assert text_hash("Why  is this\nslow?") == text_hash("why is this slow?")
        assert normalize_text("  A\tB  ") == "a b"

    def test_edit_changes_hash(self):
        assert text_hash("why is this slow?") != text_hash("why is this fast?")

    def test_always_eight_hex_digits(self):
        value = text_hash("x" * 500)
        assert len(value) == 8
        int(value, 16)


class TestRequiresFreshAnalysis:
    @pytest.mark.parametrize(
        "question",
        [
            "can you summarize this PR?",
            "Give me an overview",
            "what changed since yesterday?",
            "What's new here",
            "list the changes please",
            "describe the pull request",
            "what does this PR do",
            "draft release notes",
        ],
    )
    def test_whole_pr_questions(self, question):
        assert requires_fresh_analysis(question)

    @pytest.mark.parametrize("question", ["why is retry() recursive?", "is this thread safe?"])
    def test_specific_questions_keep_history(self, question):
        assert not requires_fresh_analysis(question)
