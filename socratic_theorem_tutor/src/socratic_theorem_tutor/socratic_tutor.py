"""
Socratic Tutor - retrieval-grounded tutoring orchestrator

One turn:
1. Resolve history (caller override or stored session)
2. Best-effort retrieval + guidance (never fails the turn)
3. Compose the system prompt (persona + context + guiding questions)
4. Single LLM call, blocking or streaming
5. Append the completed user/assistant pair to the session

Generation failures propagate to the caller and leave history untouched.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from socratic_theorem_tutor.best_effort import attempt
from socratic_theorem_tutor.config import TutorSettings, get_settings
from socratic_theorem_tutor.embedding_cache import EmbeddingCache, get_embedding_cache
from socratic_theorem_tutor.errors import GenerationFailure
from socratic_theorem_tutor.guidance import GuidanceSelector, GuidanceSet
from socratic_theorem_tutor.knowledge_entry import Category, KnowledgeEntry
from socratic_theorem_tutor.knowledge_store import KnowledgeStore, get_knowledge_store
from socratic_theorem_tutor.llm_client import (
    ChatProvider,
    ModelMessages,
    OpenAIChatProvider,
    SamplingParams,
)
from socratic_theorem_tutor.prompts import DEFAULT_IMAGE_PROMPT, compose_system_prompt
from socratic_theorem_tutor.retrieval import LEXICAL, RetrievalResult, SemanticRetrievalIndex
from socratic_theorem_tutor.session_history import (
    Message,
    SessionHistoryManager,
    build_user_content,
    content_to_model,
    flatten_history,
    get_session_history,
)

logger = logging.getLogger(__name__)


class TurnState(Enum):
    """Lifecycle of a single answer call."""
    IDLE = "idle"
    RETRIEVING = "retrieving"
    COMPOSING_PROMPT = "composing_prompt"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TutorTurn:
    """One inbound user turn."""
    message: str
    session_id: str
    images: Tuple[str, ...] = ()  # already resolved (data URLs or public URLs)
    category: Optional[Category] = None
    history: Optional[Tuple[Message, ...]] = None  # caller-supplied override
    api_key: Optional[str] = None


@dataclass
class TutorAnswer:
    """Result of a blocking answer call."""
    response: str
    related_entries: List[RetrievalResult] = field(default_factory=list)
    guiding_questions: GuidanceSet = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "related_theorems": [result.summary() for result in self.related_entries],
            "socratic_questions": list(self.guiding_questions),
        }


@dataclass
class PreparedTurn:
    """Everything needed for the model call."""
    messages: ModelMessages
    user_message: Message
    related_entries: List[RetrievalResult]
    guiding_questions: GuidanceSet


class SocraticTutor:
    """
    Tutoring orchestrator.

    Collaborators default to the process-wide instances (knowledge store,
    embedding cache, session history) and an OpenAI-compatible chat
    provider; tests inject their own.
    """

    def __init__(
        self,
        store: Optional[KnowledgeStore] = None,
        llm: Optional[ChatProvider] = None,
        history: Optional[SessionHistoryManager] = None,
        embedding_cache: Optional[EmbeddingCache] = None,
        retrieval_index: Optional[SemanticRetrievalIndex] = None,
        guidance: Optional[GuidanceSelector] = None,
        settings: Optional[TutorSettings] = None
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else get_knowledge_store(self.settings.knowledge_dir)
        self.retrieval_index = retrieval_index if retrieval_index is not None else SemanticRetrievalIndex(
            self.store,
            embedding_cache if embedding_cache is not None else get_embedding_cache(),
            default_k=self.settings.retrieval_top_k
        )
        self.guidance = guidance if guidance is not None else GuidanceSelector(
            max_questions=self.settings.max_guiding_questions
        )
        self.history = history if history is not None else get_session_history()
        self.llm = llm if llm is not None else OpenAIChatProvider.from_settings(self.settings)
        self.sampling = SamplingParams(
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens
        )

    # ==================== Pass-through operations ====================

    async def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        category: Optional[Category] = None,
        api_key: Optional[str] = None
    ) -> List[RetrievalResult]:
        """Related entries for a query (read-only, for UIs)."""
        return await self.retrieval_index.retrieve(query, k=k, category=category, api_key=api_key)

    def select_guidance(self, message: str, matched_entry: Optional[KnowledgeEntry] = None) -> GuidanceSet:
        return self.guidance.select_guidance(message, matched_entry)

    def get_history(self, session_id: str) -> List[Message]:
        return self.history.get(session_id)

    def clear_session(self, session_id: str):
        self.history.clear(session_id)
        logger.info(f"🗑️ [SocraticTutor] Cleared session {session_id[:20]}")

    def list_session_ids(self) -> List[str]:
        return self.history.list_session_ids()

    # ==================== Turn preparation ====================

    def _transition(self, turn: TutorTurn, state: TurnState):
        logger.debug(f"🔄 [SocraticTutor] session={turn.session_id[:20]} -> {state.value}")

    def _effective_history(self, turn: TutorTurn) -> Sequence[Message]:
        if turn.history is not None:
            return turn.history
        return self.history.get(turn.session_id)

    @staticmethod
    def _usable(results: List[RetrievalResult]) -> List[RetrievalResult]:
        # Lexical matches with no overlap at all carry no information
        return [r for r in results if not (r.method == LEXICAL and r.relevance_score <= 0)]

    async def prepare(self, turn: TutorTurn) -> PreparedTurn:
        """Build the model messages for a turn (retrieval/guidance are best-effort)."""
        history = self._effective_history(turn)
        user_content = build_user_content(turn.message, turn.images, DEFAULT_IMAGE_PROMPT)

        self._transition(turn, TurnState.RETRIEVING)
        related: List[RetrievalResult] = []
        if turn.message and turn.message.strip():
            retrieval = await attempt(
                "retrieval",
                lambda: self.retrieval_index.retrieve(
                    turn.message,
                    category=turn.category,
                    api_key=turn.api_key
                )
            )
            related = self._usable(retrieval.value_or([]))

        top_entry = related[0].entry if related else None
        guidance = await attempt(
            "guidance",
            lambda: self.guidance.select_guidance(turn.message, top_entry)
        )
        questions: GuidanceSet = guidance.value_or(())

        logger.info(
            f"📚 [SocraticTutor] Retrieved {len(related)} entries "
            f"{[r.entry.id for r in related]}, {len(questions)} guiding questions"
        )

        self._transition(turn, TurnState.COMPOSING_PROMPT)
        messages: ModelMessages = [
            {"role": "system", "content": compose_system_prompt(related, questions)}
        ]
        messages.extend(flatten_history(history))
        messages.append({"role": "user", "content": content_to_model(user_content)})

        return PreparedTurn(
            messages=messages,
            user_message=Message(role="user", content=user_content),
            related_entries=related,
            guiding_questions=questions,
        )

    def _record_turn(self, turn: TutorTurn, user_message: Message, response: str):
        self.history.extend(turn.session_id, [user_message, Message(role="assistant", content=response)])
        logger.info(
            f"💾 [SocraticTutor] Session {turn.session_id[:20]} now has "
            f"{len(self.history.get(turn.session_id))} messages"
        )

    # ==================== Answering ====================

    async def answer(self, turn: TutorTurn) -> TutorAnswer:
        """
        Blocking answer.

        Raises:
            GenerationFailure: the language model call failed (history unchanged)
        """
        prepared = await self.prepare(turn)

        self._transition(turn, TurnState.GENERATING)
        try:
            response = await self.llm.chat(prepared.messages, self.sampling, api_key=turn.api_key)
        except GenerationFailure as e:
            self._transition(turn, TurnState.FAILED)
            logger.error(f"❌ [SocraticTutor] Generation failed: {e}")
            raise
        except Exception as e:
            self._transition(turn, TurnState.FAILED)
            logger.error(f"❌ [SocraticTutor] Generation failed: {type(e).__name__}: {e}")
            raise GenerationFailure(f"{type(e).__name__}: {e}") from e

        self._record_turn(turn, prepared.user_message, response)
        self._transition(turn, TurnState.COMPLETED)
        return TutorAnswer(
            response=response,
            related_entries=prepared.related_entries,
            guiding_questions=prepared.guiding_questions,
        )

    async def answer_stream(self, turn: TutorTurn) -> AsyncIterator[str]:
        """
        Stream the answer as text fragments, in provider order.

        History is appended only when the provider signals completion. If
        the consumer stops early the provider stream is closed and nothing
        is recorded; fragments already yielded are not retracted.
        """
        prepared = await self.prepare(turn)

        self._transition(turn, TurnState.GENERATING)
        stream = self.llm.chat_stream(prepared.messages, self.sampling, api_key=turn.api_key)
        fragments: List[str] = []
        completed = False
        failed = False
        try:
            async for fragment in stream:
                fragments.append(fragment)
                yield fragment
            completed = True
        except GenerationFailure as e:
            failed = True
            logger.error(f"❌ [SocraticTutor] Streaming failed after {len(fragments)} fragments: {e}")
            raise
        except Exception as e:
            failed = True
            logger.error(f"❌ [SocraticTutor] Streaming failed: {type(e).__name__}: {e}")
            raise GenerationFailure(f"{type(e).__name__}: {e}") from e
        finally:
            if not completed:
                self._transition(turn, TurnState.FAILED)
                if not failed:
                    logger.warning(
                        f"⚠️ [SocraticTutor] Stream abandoned after {len(fragments)} fragments; "
                        "turn not recorded"
                    )
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

        self._record_turn(turn, prepared.user_message, "".join(fragments))
        self._transition(turn, TurnState.COMPLETED)
