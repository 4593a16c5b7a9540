"""
Shared fixtures: a small in-memory corpus and fake embedding/chat providers.
"""

import os
import sys
import zlib
from typing import List, Optional

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "socratic_theorem_tutor", "src"))

from socratic_theorem_tutor.config import TutorSettings
from socratic_theorem_tutor.embedding_cache import EmbeddingCache, EmbeddingProvider
from socratic_theorem_tutor.errors import GenerationFailure
from socratic_theorem_tutor.knowledge_store import KnowledgeStore
from socratic_theorem_tutor.llm_client import ChatProvider
from socratic_theorem_tutor.retrieval import tokenize
from socratic_theorem_tutor.session_history import SessionHistoryManager
from socratic_theorem_tutor.socratic_tutor import SocraticTutor

KNOWLEDGE_DIR = os.path.join(project_root, "data", "knowledge")

PYTHAGOREAN = {
    "id": "math_pythagorean_001",
    "category": "math",
    "topic": "几何",
    "theorem": "勾股定理",
    "difficulty": "初级",
    "description": "在直角三角形中，两条直角边的平方和等于斜边的平方。",
    "formula": "a^2 + b^2 = c^2",
    "socratic_questions": [
        "直角三角形的三条边中，哪一条最长？",
        "如果把每条边都画成正方形，面积之间有什么关系？",
    ],
    "keywords": ["勾股定理", "直角三角形"],
}

NEWTON = {
    "id": "physics_newton_second_001",
    "category": "physics",
    "topic": "力学",
    "theorem": "牛顿第二定律",
    "difficulty": "初级",
    "description": "物体的加速度与所受合外力成正比，与质量成反比。",
    "formula": "F = ma",
    "socratic_questions": ["如果合力为零，物体的运动状态会怎样？"],
    "keywords": ["牛顿第二定律", "加速度", "合外力"],
}

PHOTOSYNTHESIS = {
    "id": "biology_photosynthesis_001",
    "category": "biology",
    "topic": "植物生理",
    "theorem": "光合作用",
    "difficulty": "中级",
    "description": "绿色植物利用光能把二氧化碳和水合成有机物并释放氧气。",
    "keywords": ["光合作用", "叶绿体"],
}


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-tokens embeddings; flip `fail` to simulate an outage."""

    def __init__(self, dimension: int = 64):
        self.dimension = dimension
        self.fail = False
        self.texts: List[str] = []
        self.api_keys: List[Optional[str]] = []

    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        self.texts.append(text)
        self.api_keys.append(api_key)
        if self.fail:
            raise ConnectionError("embedding service unreachable")
        vector = [0.0] * self.dimension
        for token in tokenize(text):
            vector[zlib.crc32(token.encode("utf-8")) % self.dimension] += 1.0
        return vector


class FakeChatProvider(ChatProvider):
    """Scripted chat model recording every request it receives."""

    def __init__(self):
        self.reply = "我们先想一想：直角三角形的哪条边最长？"
        self.fragments = ["我们先", "想一想", "：哪条边最长？"]
        self.error: Optional[Exception] = None
        self.stream_completes = True
        self.requests: List[dict] = []
        self.stream_cancelled = False

    async def chat(self, messages, params, api_key=None):
        self.requests.append({"messages": messages, "params": params, "api_key": api_key})
        if self.error is not None:
            raise self.error
        return self.reply

    async def chat_stream(self, messages, params, api_key=None):
        self.requests.append({"messages": messages, "params": params, "api_key": api_key})
        if self.error is not None:
            raise self.error
        try:
            for fragment in self.fragments:
                yield fragment
        except GeneratorExit:
            self.stream_cancelled = True
            raise
        if not self.stream_completes:
            raise GenerationFailure("Stream ended without a completion signal", retryable=True)


@pytest.fixture
def records():
    return [dict(PYTHAGOREAN), dict(NEWTON), dict(PHOTOSYNTHESIS)]


@pytest.fixture
def store(records):
    return KnowledgeStore.from_records(records)


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_cache(embedding_provider):
    return EmbeddingCache(embedding_provider, timeout=1.0)


@pytest.fixture
def chat_provider():
    return FakeChatProvider()


@pytest.fixture
def history():
    return SessionHistoryManager(max_messages=20)


@pytest.fixture
def settings():
    return TutorSettings(openai_api_key="test-key")


@pytest.fixture
def tutor(store, chat_provider, history, embedding_cache, settings):
    return SocraticTutor(
        store=store,
        llm=chat_provider,
        history=history,
        embedding_cache=embedding_cache,
        settings=settings,
    )


@pytest.fixture
def knowledge_dir():
    return KNOWLEDGE_DIR
