"""
System prompt assembly: persona preamble + retrieved context + guidance.
"""

from typing import List, Sequence

from socratic_theorem_tutor.knowledge_entry import Difficulty, KnowledgeEntry
from socratic_theorem_tutor.retrieval import RetrievalResult

PERSONA_PROMPT = """你是一位耐心、善于引导的学科辅导老师"学小思"。

教学理念：
- 苏格拉底式教学：通过提问引导学生独立思考，而不是直接给出答案
- 直观讲解：用生活化的比喻和例子解释抽象概念
- 循序渐进：根据学生的理解程度调整讲解深度和节奏
- 鼓励探索：肯定学生的想法，培养好奇心

回答风格：
- 语气温暖、鼓励，多用提问而非陈述
- 讲解定理时先讲直观理解，再讲严谨证明
- 学生困惑时给出渐进式提示，而不是一次讲完
- 重要公式使用 LaTeX 格式（如 $a^2+b^2=c^2$）

题目解析（学生上传题目图片时）：
1. 识别题型和考查的知识点
2. 分析解题思路，分步骤展示过程并说明每一步的理由
3. 最后给出简洁明确的答案；此时可以直接给出完整解答

一般情况下不要直接给出答案。请用简明易懂的语言回答，必须使用术语时先解释。"""

DEFAULT_IMAGE_PROMPT = "请仔细观察这道题目，给出详细的解题步骤和答案"

DIFFICULTY_LABELS = {
    Difficulty.BASIC: "初级",
    Difficulty.INTERMEDIATE: "中级",
    Difficulty.ADVANCED: "高级",
}

# Per-entry limits inside the context block
MAX_PROOF_STEPS = 3
MAX_EXAMPLES = 2
MAX_MISTAKES = 2


def format_entry(index: int, entry: KnowledgeEntry) -> str:
    """Serialize one entry for the context block."""
    header = f"{index}. {entry.title}（{entry.subject}"
    if entry.topic:
        header += f" · {entry.topic}"
    header += f" · {DIFFICULTY_LABELS[entry.difficulty]}）"

    lines = [header]
    if entry.description:
        lines.append(f"   描述：{entry.description}")
    if entry.formula.latex or entry.formula.plain:
        lines.append(f"   公式：{entry.formula.latex or entry.formula.plain}")
    for step in entry.proof_steps[:MAX_PROOF_STEPS]:
        title = f"{step.title}：" if step.title else ""
        lines.append(f"   证明步骤{step.ordinal}：{title}{step.body}")
    for example in entry.examples[:MAX_EXAMPLES]:
        solution = f" → {example.solution}" if example.solution else ""
        lines.append(f"   例题：{example.problem}{solution}")
    for item in entry.common_mistakes[:MAX_MISTAKES]:
        correction = f"（正确理解：{item.correction}）" if item.correction else ""
        lines.append(f"   常见错误：{item.mistake}{correction}")
    return "\n".join(lines)


def build_context_block(results: Sequence[RetrievalResult]) -> str:
    """Context block summarizing retrieved entries ('' when there are none)."""
    if not results:
        return ""
    body = "\n".join(format_entry(i, result.entry) for i, result in enumerate(results, 1))
    return f"【相关知识点】\n{body}\n\n请结合以上知识点进行讲解，确保内容准确。"


def build_guidance_block(questions: Sequence[str]) -> str:
    if not questions:
        return ""
    numbered = "\n".join(f"{i}. {question}" for i, question in enumerate(questions, 1))
    return f"针对此问题，你可以引导学生思考以下问题：\n{numbered}"


def compose_system_prompt(
    results: Sequence[RetrievalResult],
    questions: Sequence[str],
    persona: str = PERSONA_PROMPT
) -> str:
    """Persona + optional context block + optional guidance block."""
    sections: List[str] = [persona]
    context = build_context_block(results)
    if context:
        sections.append(context)
    guidance = build_guidance_block(questions)
    if guidance:
        sections.append(guidance)
    return "\n\n".join(sections)
