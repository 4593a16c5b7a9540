"""
Unit Tests for Session History Manager

Tests the FIFO cap, session isolation and multimodal flattening.
"""

import threading

import pytest

from socratic_theorem_tutor.config import TutorSettings
from socratic_theorem_tutor.session_history import (
    ImagePart,
    Message,
    SessionHistoryManager,
    TextPart,
    build_user_content,
    content_to_model,
    flatten_history,
)


class TestSessionHistoryManager:
    """Test suite for SessionHistoryManager."""

    def test_unknown_session_is_empty(self, history):
        assert history.get("never-seen") == []
        assert history.list_session_ids() == []

    def test_cap_evicts_oldest_first(self, history):
        for i in range(20):
            history.append("s1", Message(role="user", content=f"m{i}"))
        assert len(history.get("s1")) == 20

        history.append("s1", Message(role="assistant", content="m20"))

        messages = history.get("s1")
        assert len(messages) == 20
        assert messages[0].content == "m1"
        assert messages[-1].content == "m20"

    def test_extend_applies_cap_once(self):
        history = SessionHistoryManager(max_messages=4)
        history.extend("s", [Message(role="user", content=str(i)) for i in range(3)])
        history.extend("s", [Message(role="user", content="3"), Message(role="assistant", content="4")])

        assert [m.content for m in history.get("s")] == ["1", "2", "3", "4"]

    def test_cap_never_exceeds_twenty(self):
        history = SessionHistoryManager(max_messages=50)
        for i in range(30):
            history.append("s", Message(role="user", content=str(i)))

        assert history.max_messages == 20
        assert len(history.get("s")) == 20

    def test_lookups_do_not_register_sessions(self, history):
        for i in range(100):
            history.get(f"random-{i}")
            history.clear(f"random-{i}")

        assert history._locks == {}

        history.append("real", Message(role="user", content="hi"))
        assert list(history._locks) == ["real"]

    def test_get_returns_a_copy(self, history):
        history.append("s1", Message(role="user", content="hi"))
        history.get("s1").clear()
        assert len(history.get("s1")) == 1

    def test_sessions_are_isolated_and_clearable(self, history):
        history.append("a", Message(role="user", content="a"))
        history.append("b", Message(role="user", content="b"))

        history.clear("a")
        history.clear("missing")

        assert history.get("a") == []
        assert [m.content for m in history.get("b")] == ["b"]
        assert history.list_session_ids() == ["b"]

    def test_concurrent_appends_keep_cap(self, history):
        def worker(n):
            for i in range(50):
                history.append("shared", Message(role="user", content=f"{n}-{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(history.get("shared")) == 20


class TestMessages:
    """Message construction and flattening."""

    def test_invalid_role_rejected(self):
        with pytest.raises(ValueError):
            Message(role="tool", content="x")

    def test_multimodal_flattens_to_text(self):
        message = Message(role="user", content=[TextPart("这道题怎么做？"), ImagePart("data:image/png;base64,AAA")])
        assert flatten_history([message]) == [{"role": "user", "content": "这道题怎么做？"}]

    def test_image_only_contributes_nothing(self):
        messages = [
            Message(role="user", content=(ImagePart("https://example.com/q.png"),)),
            Message(role="assistant", content=""),
            Message(role="assistant", content="好的"),
        ]
        assert flatten_history(messages) == [{"role": "assistant", "content": "好的"}]

    def test_build_user_content(self):
        assert build_user_content("hi", [], "默认") == "hi"

        content = build_user_content("", ["u1", "u2"], "默认")
        assert content == (TextPart("默认"), ImagePart("u1"), ImagePart("u2"))
        assert content_to_model(content) == [
            {"type": "text", "text": "默认"},
            {"type": "image_url", "image_url": {"url": "u1"}},
            {"type": "image_url", "image_url": {"url": "u2"}},
        ]

    def test_from_dict_wire_shapes(self):
        message = Message.from_dict({
            "role": "user",
            "content": [
                {"type": "text", "text": "看图"},
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}},
                "ignored",
            ],
            "timestamp": 1700000000000,
        })

        assert message.text() == "看图"
        assert message.is_multimodal
        assert message.timestamp == 1700000000000
        assert Message.from_dict({"role": "assistant", "content": None}).content == ""


class TestHistorySettings:

    def test_env_cap_is_clamped(self, monkeypatch):
        monkeypatch.setenv("SESSION_MAX_MESSAGES", "100")
        assert TutorSettings.from_env().session_max_messages == 20

        monkeypatch.setenv("SESSION_MAX_MESSAGES", "8")
        assert TutorSettings.from_env().session_max_messages == 8
