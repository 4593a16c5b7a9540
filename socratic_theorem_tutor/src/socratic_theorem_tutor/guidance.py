"""
Guidance Selector

Derives Socratic (guiding) questions for a turn:
1. The best-matching entry's own questions, if it has any
2. Otherwise a generic question bank picked by cue detection on the message
3. Otherwise nothing

The cue table is a replaceable policy; only the priority order above is fixed.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence, Tuple

from socratic_theorem_tutor.knowledge_entry import KnowledgeEntry

MAX_GUIDING_QUESTIONS = 5

GuidanceSet = Tuple[str, ...]


@dataclass(frozen=True)
class GuidancePolicy:
    """One row of the cue table: if `cue` matches, ask from `questions`."""
    name: str
    cue: Pattern[str]
    questions: Tuple[str, ...]


DEFAULT_POLICIES: Tuple[GuidancePolicy, ...] = (
    GuidancePolicy(
        name="comparison",
        cue=re.compile(r"区别|不同|异同|相比|difference between|\bvs\.?\b|compare", re.IGNORECASE),
        questions=(
            "这两个概念分别在什么条件下成立？",
            "它们有哪些共同点？最关键的不同点又是什么？",
            "能否举一个只适用于其中一个概念的例子？",
            "如果把其中一个条件去掉，结论会发生什么变化？",
        ),
    ),
    GuidancePolicy(
        name="computational",
        cue=re.compile(r"\d|[+\-*/×÷=^]|求|计算|解方程|算出|solve|compute|calculate", re.IGNORECASE),
        questions=(
            "题目中已知哪些量？要求的是什么？",
            "你觉得可以用哪个定理或公式把已知和未知联系起来？",
            "先试着写出第一步，你打算怎么做？",
            "每一步的变形都有依据吗？能说出依据是什么吗？",
            "得到结果后，可以用什么方法检验它是否合理？",
        ),
    ),
    GuidancePolicy(
        name="definitional",
        cue=re.compile(r"什么是|是什么|为什么|为何|含义|定义|what is|what's|\bwhy\b|define", re.IGNORECASE),
        questions=(
            "你能先用自己的话说说对这个概念的理解吗？",
            "生活中有没有哪个现象和它有关？",
            "这个结论成立需要满足哪些条件？",
            "如果条件改变了，结论还成立吗？为什么？",
        ),
    ),
)


class GuidanceSelector:
    """Heuristic, deterministic selector (no external calls)."""

    def __init__(
        self,
        policies: Sequence[GuidancePolicy] = DEFAULT_POLICIES,
        max_questions: int = MAX_GUIDING_QUESTIONS
    ):
        self.policies = tuple(policies)
        self.max_questions = max(0, min(max_questions, MAX_GUIDING_QUESTIONS))

    def classify(self, message: str) -> Optional[str]:
        """Name of the first policy whose cue matches, or None."""
        policy = self._match(message)
        return policy.name if policy else None

    def _match(self, message: str) -> Optional[GuidancePolicy]:
        if not message:
            return None
        for policy in self.policies:
            if policy.cue.search(message):
                return policy
        return None

    def select_guidance(
        self,
        message: str,
        matched_entry: Optional[KnowledgeEntry] = None
    ) -> GuidanceSet:
        """
        Select up to max_questions guiding questions.

        Args:
            message: The user's message text
            matched_entry: Best retrieval match (top-1), if any

        Returns:
            Ordered tuple of questions; empty when nothing applies
        """
        if matched_entry is not None and matched_entry.socratic_questions:
            return tuple(matched_entry.socratic_questions[:self.max_questions])

        policy = self._match(message)
        if policy is None:
            return ()
        return policy.questions[:self.max_questions]
