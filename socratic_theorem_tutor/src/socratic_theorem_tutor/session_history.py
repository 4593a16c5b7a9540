"""
Session History Manager

Bounded, append-only per-session conversation memory (process lifetime
only). Also holds the message types and the helpers that turn stored
messages into model turns.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

DEFAULT_MAX_MESSAGES = 20  # 10 user/assistant pairs

ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class TextPart:
    text: str
    type: str = "text"

    def to_model(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImagePart:
    """Reference to an image already resolved for the model (data URL or URL)."""
    url: str
    type: str = "image_url"

    def to_model(self) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url}}


ContentPart = Union[TextPart, ImagePart]
Content = Union[str, Tuple[ContentPart, ...]]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Message:
    """One chat message; content is plain text or an ordered tuple of parts."""
    role: str
    content: Content
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = field(default_factory=_now_ms)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown role: {self.role!r}")
        if isinstance(self.content, list):
            self.content = tuple(self.content)

    @property
    def is_multimodal(self) -> bool:
        return not isinstance(self.content, str)

    def text(self) -> str:
        """Plain text of the message (first text part for multimodal content)."""
        if isinstance(self.content, str):
            return self.content
        for part in self.content:
            if isinstance(part, TextPart) and part.text:
                return part.text
        return ""

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [part.to_model() for part in self.content]
        return {"id": self.id, "role": self.role, "content": content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Build a message from the wire shape (plain or OpenAI-style parts)."""
        raw = data.get("content", "")
        if isinstance(raw, (list, tuple)):
            parts: List[ContentPart] = []
            for item in raw:
                if not isinstance(item, dict):
                    continue
                if item.get("type") == "text":
                    parts.append(TextPart(text=item.get("text") or ""))
                elif item.get("type") == "image_url":
                    image = item.get("image_url")
                    url = image.get("url") if isinstance(image, dict) else image
                    if url:
                        parts.append(ImagePart(url=url))
            content: Content = tuple(parts)
        else:
            content = "" if raw is None else str(raw)

        kwargs: Dict[str, Any] = {"role": data.get("role", "user"), "content": content}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        if data.get("timestamp") is not None:
            kwargs["timestamp"] = int(data["timestamp"])
        return cls(**kwargs)


def build_user_content(text: str, images: Sequence[str], default_prompt: str) -> Content:
    """
    User content for a new turn.

    Plain text without images; otherwise a text part (default prompt if the
    text is empty) followed by one image part per reference, in order.
    """
    if not images:
        return text
    parts: List[ContentPart] = [TextPart(text=text or default_prompt)]
    parts.extend(ImagePart(url=image) for image in images)
    return tuple(parts)


def content_to_model(content: Content) -> Any:
    if isinstance(content, str):
        return content
    return [part.to_model() for part in content]


def flatten_history(messages: Sequence[Message]) -> List[Dict[str, str]]:
    """
    Convert stored messages into text-only model turns.

    Multimodal messages keep only their text part; image parts are never
    re-sent. Messages with no text are dropped.
    """
    turns = []
    for message in messages:
        text = message.text()
        if not text:
            continue
        turns.append({"role": message.role, "content": text})
    return turns


class SessionHistoryManager:
    """
    In-memory session store with a FIFO cap.

    Appends are serialized per session id; different sessions never block
    each other. Session ids are opaque and never validated.
    """

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES):
        self.max_messages = max(1, min(max_messages, DEFAULT_MAX_MESSAGES))
        self._sessions: Dict[str, List[Message]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.Lock()
            return lock

    def append(self, session_id: str, message: Message):
        """Append one message, evicting the oldest beyond the cap."""
        self.extend(session_id, [message])

    def extend(self, session_id: str, messages: Sequence[Message]):
        """Append several messages as one atomic step."""
        with self._lock_for(session_id):
            history = self._sessions.get(session_id, []) + list(messages)
            if len(history) > self.max_messages:
                history = history[-self.max_messages:]
            self._sessions[session_id] = history

    def get(self, session_id: str) -> List[Message]:
        """Copy of the session's messages (empty for unknown ids)."""
        # extend swaps in a new list, so a read never sees a partial append
        return list(self._sessions.get(session_id, ()))

    def clear(self, session_id: str):
        with self._registry_lock:
            lock = self._locks.get(session_id)
        if lock is None:
            self._sessions.pop(session_id, None)
            return
        # The lock itself is kept so in-flight appends stay serialized
        with lock:
            self._sessions.pop(session_id, None)

    def list_session_ids(self) -> List[str]:
        return list(self._sessions)


_history: Optional[SessionHistoryManager] = None


def get_session_history() -> SessionHistoryManager:
    """Get or create the process-wide session history manager."""
    global _history
    if _history is None:
        from socratic_theorem_tutor.config import get_settings
        _history = SessionHistoryManager(max_messages=get_settings().session_max_messages)
    return _history
