"""Terminal loop tests: stdin is scripted, the runtime is faked."""

import pytest
import requests

from chatcore.api import main as cli

from conftest import LLM_URL, FakeResponse, ndjson


CHAT_URL = f"{LLM_URL}/api/chat"
TAGS_URL = f"{LLM_URL}/api/tags"


@pytest.fixture
def run_cli(orchestrator, mocker, capsys):
    mocker.patch.object(cli, "ConversationOrchestrator", return_value=orchestrator)

    def run(*lines):
        mocker.patch("builtins.input", side_effect=list(lines) + ["exit"])
        cli.main()
        return capsys.readouterr().out

    return run


class TestStartup:

    def test_warns_when_runtime_unreachable(self, run_cli, http):
        out = run_cli()

        assert f"no runtime answering at {LLM_URL}" in out
        assert "Shutting down." in out

    def test_no_warning_when_runtime_answers(self, run_cli, http):
        http.add("GET", TAGS_URL, FakeResponse(json_data={"models": []}))

        assert "Warning" not in run_cli()


class TestTurns:

    def test_streamed_reply_is_printed(self, run_cli, http):
        http.add("GET", TAGS_URL, FakeResponse(json_data={"models": []}))
        http.add("POST", CHAT_URL, FakeResponse(lines=ndjson({"message": {"content": "Hi!"}}, {"done": True})))

        assert "Assistant: Hi!" in run_cli("Hello")

    def test_fallback_reply_is_printed(self, run_cli, http, orchestrator):
        out = run_cli("Hello")

        messages, _ = orchestrator.store.list_messages(orchestrator.list_sessions("local")[0][0].id)
        assert messages[-1].content in out

    def test_interrupted_stream_is_marked(self, run_cli, http):
        http.add("GET", TAGS_URL, FakeResponse(json_data={"models": []}))
        http.add(
            "POST",
            CHAT_URL,
            FakeResponse(lines=ndjson({"message": {"content": "Half an"}}) + [
                requests.exceptions.ChunkedEncodingError("connection reset")
            ]),
        )

        assert "Assistant: Half an [interrupted]" in run_cli("Hello")

    def test_models_command(self, run_cli, http):
        http.add("GET", TAGS_URL, FakeResponse(json_data={"models": [{"name": "llama3.2"}]}))

        assert "llama3.2" in run_cli("/models")

    def test_title_without_conversation(self, run_cli, http):
        assert "No conversation yet." in run_cli("/title")

