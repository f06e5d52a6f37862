"""Unit tests for conversation prompt assembly."""

from datetime import datetime, timedelta, timezone

from chatcore.memory.models import Message
from chatcore.prompting.context_builder import DIRECT_ANSWER_SUFFIX, ContextBuilder


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _msg(role, content, minutes):
    return Message(session_id="s1", role=role, content=content, created_at=T0 + timedelta(minutes=minutes))


class TestBuild:

    def test_empty_history(self):
        prompt = ContextBuilder().build([], "Hello")

        assert prompt == f"User: Hello\n\n{DIRECT_ANSWER_SUFFIX}"

    def test_renders_history_in_chronological_order(self):
        history = [
            _msg("assistant", "Hi! How can I help?", 1),
            _msg("user", "Hello", 0),
        ]

        prompt = ContextBuilder().build(history, "What is 2+2?")

        assert prompt == (
            "User: Hello\n\n"
            "Assistant: Hi! How can I help?\n\n"
            "User: What is 2+2?\n\n"
            f"{DIRECT_ANSWER_SUFFIX}"
        )

    def test_keeps_only_last_window_entries(self):
        history = [_msg("user" if i % 2 == 0 else "assistant", f"m{i}", i) for i in range(15)]

        prompt = ContextBuilder(window=4).build(history, "next")

        assert "m10" not in prompt
        for i in range(11, 15):
            assert f"m{i}" in prompt

    def test_current_message_never_included_twice(self):
        # The current turn was persisted before history was fetched upstream.
        history = [
            _msg("user", "first", 0),
            _msg("assistant", "reply", 1),
            _msg("user", "same question", 2),
        ]

        prompt = ContextBuilder().build(history, "same question")

        assert prompt.count("same question") == 1

    def test_dedupe_does_not_depend_on_order(self):
        history = [_msg("user", "same question", 5), _msg("assistant", "reply", 1)]

        prompt = ContextBuilder().build(list(reversed(history)), "same question")

        assert prompt.count("same question") == 1

    def test_assistant_echo_of_current_text_is_kept(self):
        history = [_msg("assistant", "repeat", 0)]

        prompt = ContextBuilder().build(history, "repeat")

        assert prompt.startswith("Assistant: repeat")

    def test_accepts_dict_records(self):
        history = [{"role": "user", "content": "a", "created_at": T0}]

        assert ContextBuilder().build(history, "b").startswith("User: a\n\nUser: b")

    def test_history_not_mutated(self):
        history = [_msg("assistant", "x", 1), _msg("user", "y", 0)]
        snapshot = list(history)

        ContextBuilder().build(history, "z")

        assert history == snapshot
