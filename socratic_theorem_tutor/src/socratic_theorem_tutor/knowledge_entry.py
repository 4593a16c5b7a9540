"""
Knowledge Entry Data Model

Defines the immutable record types for curated theorems/principles and the
one-time normalization of raw JSON records into them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from socratic_theorem_tutor.errors import EntryLoadWarning


class Category(Enum):
    """Subject areas covered by the corpus."""
    MATH = "math"
    PHYSICS = "physics"
    CHEMISTRY = "chemistry"
    BIOLOGY = "biology"
    LOGIC = "logic"

    @property
    def subject_name(self) -> str:
        return SUBJECT_NAMES[self]

    @classmethod
    def parse(cls, value: Any) -> Optional["Category"]:
        """Parse a category name, returning None when it is unknown."""
        if isinstance(value, Category):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


SUBJECT_NAMES = {
    Category.MATH: "数学",
    Category.PHYSICS: "物理",
    Category.CHEMISTRY: "化学",
    Category.BIOLOGY: "生物",
    Category.LOGIC: "逻辑",
}


class Difficulty(Enum):
    """Ordered difficulty levels."""
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @property
    def level(self) -> int:
        return DIFFICULTY_ORDER.index(self)

    def __lt__(self, other: "Difficulty") -> bool:
        if not isinstance(other, Difficulty):
            return NotImplemented
        return self.level < other.level

    @classmethod
    def parse(cls, value: Any) -> "Difficulty":
        """Parse English or Chinese difficulty labels (defaults to BASIC)."""
        if isinstance(value, Difficulty):
            return value
        if not isinstance(value, str) or not value.strip():
            return cls.BASIC
        return DIFFICULTY_ALIASES.get(value.strip().lower(), cls.BASIC)


DIFFICULTY_ORDER = [Difficulty.BASIC, Difficulty.INTERMEDIATE, Difficulty.ADVANCED]

DIFFICULTY_ALIASES = {
    "basic": Difficulty.BASIC,
    "beginner": Difficulty.BASIC,
    "初级": Difficulty.BASIC,
    "基础": Difficulty.BASIC,
    "intermediate": Difficulty.INTERMEDIATE,
    "中级": Difficulty.INTERMEDIATE,
    "advanced": Difficulty.ADVANCED,
    "高级": Difficulty.ADVANCED,
}


@dataclass(frozen=True)
class Formula:
    plain: str = ""
    latex: str = ""


@dataclass(frozen=True)
class ProofStep:
    ordinal: int
    title: str
    body: str


@dataclass(frozen=True)
class WorkedExample:
    problem: str
    solution: str = ""


@dataclass(frozen=True)
class CommonMistake:
    mistake: str
    correction: str = ""


@dataclass(frozen=True)
class KnowledgeEntry:
    """One curated theorem/principle with its pedagogical metadata."""
    id: str
    category: Category
    title: str
    topic: str = ""
    difficulty: Difficulty = Difficulty.BASIC
    description: str = ""
    formula: Formula = field(default_factory=Formula)
    proof_steps: Tuple[ProofStep, ...] = ()
    examples: Tuple[WorkedExample, ...] = ()
    common_mistakes: Tuple[CommonMistake, ...] = ()
    socratic_questions: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    # Optional provenance fields carried over from uploaded documents
    subject: str = ""
    source: Optional[str] = None
    source_file: Optional[str] = None

    def embedding_text(self) -> str:
        """Text sent to the embedding provider for this entry."""
        parts = [self.title, self.topic, self.description]
        if self.formula.plain:
            parts.append(self.formula.plain)
        if self.keywords:
            parts.append(" ".join(self.keywords))
        return "\n".join(part for part in parts if part)

    def summary(self) -> Dict[str, Any]:
        """Short dict used when surfacing related entries to a UI."""
        return {
            "id": self.id,
            "theorem": self.title,
            "category": self.category.value,
            "topic": self.topic,
            "difficulty": self.difficulty.value,
            "description": self.description,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back into the on-disk record shape."""
        return {
            "id": self.id,
            "category": self.category.value,
            "subject": self.subject or self.category.subject_name,
            "topic": self.topic,
            "theorem": self.title,
            "difficulty": self.difficulty.value,
            "description": self.description,
            "formula": self.formula.plain,
            "formula_latex": self.formula.latex,
            "proof_steps": [
                {"step": step.ordinal, "title": step.title, "content": step.body}
                for step in self.proof_steps
            ],
            "examples": [
                {"problem": example.problem, "solution": example.solution}
                for example in self.examples
            ],
            "common_mistakes": [
                {"mistake": item.mistake, "correction": item.correction}
                for item in self.common_mistakes
            ],
            "socratic_questions": list(self.socratic_questions),
            "keywords": list(self.keywords),
            "source": self.source,
            "source_file": self.source_file,
        }


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _parse_proof_steps(raw: Any) -> Tuple[ProofStep, ...]:
    steps = []
    for index, item in enumerate(_as_list(raw), start=1):
        if isinstance(item, dict):
            body = _text(item.get("content") or item.get("body"))
            title = _text(item.get("title"))
            ordinal = item.get("step", item.get("ordinal", index))
            try:
                ordinal = int(ordinal)
            except (TypeError, ValueError):
                ordinal = index
        else:
            body, title, ordinal = _text(item), "", index
        if body or title:
            steps.append(ProofStep(ordinal=ordinal, title=title, body=body))
    return tuple(steps)


def _parse_examples(raw: Any) -> Tuple[WorkedExample, ...]:
    examples = []
    for item in _as_list(raw):
        if isinstance(item, dict):
            problem = _text(item.get("problem") or item.get("question"))
            solution = _text(item.get("solution") or item.get("answer"))
        else:
            problem, solution = _text(item), ""
        if problem:
            examples.append(WorkedExample(problem=problem, solution=solution))
    return tuple(examples)


def _parse_mistakes(raw: Any) -> Tuple[CommonMistake, ...]:
    mistakes = []
    for item in _as_list(raw):
        if isinstance(item, dict):
            mistake = _text(item.get("mistake"))
            correction = _text(item.get("correction"))
        else:
            mistake, correction = _text(item), ""
        if mistake:
            mistakes.append(CommonMistake(mistake=mistake, correction=correction))
    return tuple(mistakes)


def _parse_keywords(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, str):
        raw = raw.replace("，", ",").split(",")
    keywords: List[str] = []
    for item in _as_list(raw):
        keyword = _text(item)
        if keyword and keyword not in keywords:
            keywords.append(keyword)
    return tuple(keywords)


def entry_from_record(
    record: Any,
    default_category: Optional[Category] = None,
    source: Optional[str] = None
) -> KnowledgeEntry:
    """
    Validate and normalize one raw record.

    Args:
        record: Decoded JSON object
        default_category: Category of the collection the record came from
        source: Name of the byte source (for warnings)

    Returns:
        KnowledgeEntry

    Raises:
        EntryLoadWarning: if the record cannot become an entry
    """
    if not isinstance(record, dict):
        raise EntryLoadWarning(f"Record is not an object: {type(record).__name__}", source=source)

    entry_id = _text(record.get("id"))
    if not entry_id:
        raise EntryLoadWarning("Record has no id", source=source)

    title = _text(record.get("theorem") or record.get("title"))
    if not title:
        raise EntryLoadWarning("Record has no theorem/title", entry_id=entry_id, source=source)

    raw_category = record.get("category")
    category = Category.parse(raw_category) if raw_category else default_category
    if category is None:
        raise EntryLoadWarning(
            f"Unknown category: {raw_category!r}", entry_id=entry_id, source=source
        )

    questions = tuple(q for q in (_text(item) for item in _as_list(record.get("socratic_questions"))) if q)

    return KnowledgeEntry(
        id=entry_id,
        category=category,
        title=title,
        topic=_text(record.get("topic")),
        difficulty=Difficulty.parse(record.get("difficulty")),
        description=_text(record.get("description")),
        formula=Formula(
            plain=_text(record.get("formula")),
            latex=_text(record.get("formula_latex")),
        ),
        proof_steps=_parse_proof_steps(record.get("proof_steps")),
        examples=_parse_examples(record.get("examples")),
        common_mistakes=_parse_mistakes(record.get("common_mistakes")),
        socratic_questions=questions,
        keywords=_parse_keywords(record.get("keywords")),
        subject=_text(record.get("subject")) or category.subject_name,
        source=_text(record.get("source")) or None,
        source_file=_text(record.get("source_file")) or None,
    )
