"""
Unit Tests for Guidance Selector

Tests the priority order: entry questions, then cue bank, then nothing.
"""

import re

import pytest

from socratic_theorem_tutor.guidance import (
    DEFAULT_POLICIES,
    MAX_GUIDING_QUESTIONS,
    GuidancePolicy,
    GuidanceSelector,
)
from socratic_theorem_tutor.knowledge_entry import entry_from_record


class TestGuidanceSelector:
    """Test suite for GuidanceSelector."""

    @pytest.fixture
    def selector(self):
        return GuidanceSelector()

    @pytest.fixture
    def pythagorean(self, records):
        return entry_from_record(records[0])

    def test_entry_questions_take_priority(self, selector, pythagorean):
        questions = selector.select_guidance("2和3的区别是什么", pythagorean)
        assert questions == pythagorean.socratic_questions

    def test_entry_questions_are_truncated(self, pythagorean):
        selector = GuidanceSelector(max_questions=1)
        assert selector.select_guidance("勾股定理", pythagorean) == pythagorean.socratic_questions[:1]

    def test_entry_without_questions_falls_back_to_cues(self, selector, records):
        photosynthesis = entry_from_record(records[2])

        questions = selector.select_guidance("什么是光合作用", photosynthesis)

        assert questions == DEFAULT_POLICIES[2].questions

    @pytest.mark.parametrize("message,expected", [
        ("动能和势能有什么区别", "comparison"),
        ("What is the difference between mass and weight", "comparison"),
        ("求解 x^2 - 5x + 6 = 0", "computational"),
        ("calculate the hypotenuse", "computational"),
        ("什么是勾股定理", "definitional"),
        ("why does the sky look blue", "definitional"),
        ("你好", None),
        ("", None),
    ])
    def test_classify(self, selector, message, expected):
        assert selector.classify(message) == expected

    def test_comparison_beats_computational(self, selector):
        # Digits are a computational cue, but the comparison row comes first
        assert selector.classify("第1定律和第2定律的区别") == "comparison"

    def test_no_cue_and_no_entry_is_empty(self, selector):
        assert selector.select_guidance("谢谢老师") == ()

    def test_cap_is_never_exceeded(self):
        selector = GuidanceSelector(max_questions=99)
        for policy in DEFAULT_POLICIES:
            assert len(policy.questions) <= MAX_GUIDING_QUESTIONS
        assert selector.max_questions == MAX_GUIDING_QUESTIONS

    def test_custom_policy_table(self):
        policy = GuidancePolicy(name="proof", cue=re.compile(r"证明"), questions=("已知条件有哪些？",))
        selector = GuidanceSelector(policies=[policy])

        assert selector.select_guidance("怎么证明这个结论") == ("已知条件有哪些？",)
        assert selector.select_guidance("什么是勾股定理") == ()
