"""Contract tests for the provider client (HTTP faked, no real runtime)."""

import json

import pytest
import requests

from chatcore.core.errors import (
    EmptyResponseError,
    EndpointError,
    ParseError,
    ProviderUnavailable,
    TransportError,
)
from chatcore.llm.client import flatten_messages, parse_stream_record
from chatcore.llm.postprocess import clean
from chatcore.llm.types import CHAT, COMPLETION, DynamicConfig, ProviderRequest

from conftest import (
    LLM_URL,
    FakeResponse,
    chat_reply,
    completion_reply,
    delayed,
    ndjson,
    stalled_ndjson,
)


CHAT_URL = f"{LLM_URL}/api/chat"
COMPLETION_URL = f"{LLM_URL}/api/generate"


class TestComplete:

    def test_chat_endpoint_success(self, provider, http):
        http.add("POST", CHAT_URL, chat_reply("Hi there!"))

        response = provider.complete(ProviderRequest.from_prompt("Hello"))

        assert response.content == "Hi there!"
        assert response.endpoint_used == CHAT
        assert response.token_count == 3
        assert http.calls_to("POST", COMPLETION_URL) == []

    def test_chat_404_falls_back_to_completion(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(status_code=404))
        http.add("POST", COMPLETION_URL, completion_reply("Fallback"))

        response = provider.complete(ProviderRequest.from_prompt("Hello"))

        assert response.content == "Fallback"
        assert response.endpoint_used == COMPLETION

    def test_chat_transport_error_falls_back(self, provider, http):
        http.add("POST", CHAT_URL, requests.exceptions.ConnectTimeout("timed out"))
        http.add("POST", COMPLETION_URL, completion_reply("ok"))

        assert provider.complete(ProviderRequest.from_prompt("Hello")).content == "ok"

    def test_both_endpoints_non_2xx_raise_endpoint_error(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(status_code=404))
        http.add("POST", COMPLETION_URL, FakeResponse(status_code=500))

        with pytest.raises(EndpointError) as exc:
            provider.complete(ProviderRequest.from_prompt("Hello"))

        assert exc.value.status == 500
        assert [a.endpoint for a in exc.value.attempts] == [CHAT, COMPLETION]
        assert "500" in str(exc.value)

    def test_last_failure_transport_raises_transport_error(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(status_code=404))
        # COMPLETION_URL unrouted -> connection refused

        with pytest.raises(TransportError):
            provider.complete(ProviderRequest.from_prompt("Hello"))

    def test_empty_body_is_not_success(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(json_data={"message": {"content": ""}}))
        http.add("POST", COMPLETION_URL, FakeResponse(json_data={"response": ""}))

        with pytest.raises(EmptyResponseError) as exc:
            provider.complete(ProviderRequest.from_prompt("Hello"))

        assert isinstance(exc.value, ProviderUnavailable)

    def test_non_json_body_counts_as_empty(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(text="<html>proxy error</html>"))
        http.add("POST", COMPLETION_URL, completion_reply("recovered"))

        assert provider.complete(ProviderRequest.from_prompt("Hello")).content == "recovered"

    def test_responses_are_closed(self, provider, http):
        failed = FakeResponse(status_code=503)
        succeeded = completion_reply("ok")
        http.add("POST", CHAT_URL, failed)
        http.add("POST", COMPLETION_URL, succeeded)

        provider.complete(ProviderRequest.from_prompt("Hello"))

        assert failed.closed and succeeded.closed


class TestPayload:

    def test_unset_sampling_parameters_are_omitted(self, provider, http):
        http.add("POST", CHAT_URL, chat_reply("ok"))

        provider.complete(ProviderRequest.from_prompt("Hello"))

        payload = http.calls_to("POST", CHAT_URL)[0]["json"]
        assert "options" not in payload
        assert payload["model"] == "test-model"
        assert payload["stream"] is False
        assert payload["messages"] == [{"role": "user", "content": "Hello"}]

    def test_sampling_parameters_map_to_runtime_options(self, provider, http):
        http.add("POST", CHAT_URL, chat_reply("ok"))

        provider.complete(
            ProviderRequest.from_prompt("Hello", temperature=0.2, max_tokens=64, top_k=40, seed=7)
        )

        options = http.calls_to("POST", CHAT_URL)[0]["json"]["options"]
        assert options == {"temperature": 0.2, "num_predict": 64, "top_k": 40, "seed": 7}

    def test_completion_prompt_is_flattened(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(status_code=404))
        http.add("POST", COMPLETION_URL, completion_reply("ok"))
        messages = [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
        ]

        provider.complete(ProviderRequest(messages=messages))

        payload = http.calls_to("POST", COMPLETION_URL)[0]["json"]
        assert payload["prompt"] == "System: Be brief.\n\nUser: Hi\n\nAssistant: Hello"
        assert "messages" not in payload

    def test_flatten_messages_labels_unknown_roles_as_assistant(self):
        assert flatten_messages([{"role": "tool", "content": "x"}]) == "Assistant: x"


class TestOverridePrecedence:

    def test_client_defaults(self, provider):
        assert provider.resolve_target(ProviderRequest.from_prompt("x")) == (LLM_URL, 5.0)

    def test_dynamic_overrides_defaults(self, provider):
        dynamic = DynamicConfig(base_url="http://dyn.test/", timeout=9)
        assert provider.resolve_target(ProviderRequest.from_prompt("x"), dynamic) == ("http://dyn.test", 9.0)

    def test_request_overrides_dynamic(self, provider):
        dynamic = DynamicConfig(base_url="http://dyn.test", timeout=9)
        request = ProviderRequest.from_prompt("x", base_url="http://req.test", timeout=2)

        assert provider.resolve_target(request, dynamic) == ("http://req.test", 2.0)

    def test_dynamic_config_reaches_the_wire(self, provider, http):
        http.add("POST", "http://dyn.test/api/chat", chat_reply("ok"))

        provider.complete(ProviderRequest.from_prompt("x"), dynamic=DynamicConfig(base_url="http://dyn.test", timeout=3))

        call = http.calls_to("POST", "http://dyn.test/api/chat")[0]
        assert 0 < call["timeout"] <= 3

    def test_merged_with_keeps_unset_fields(self):
        merged = DynamicConfig(base_url="http://a", timeout=4).merged_with(DynamicConfig(timeout=8))
        assert merged == DynamicConfig(base_url="http://a", timeout=8)


class TestStreaming:

    def test_fragments_delivered_in_order(self, provider, http):
        http.add(
            "POST",
            CHAT_URL,
            FakeResponse(lines=ndjson(
                {"message": {"content": "Hel"}},
                {"message": {"content": "lo"}},
                {"done": True, "eval_count": 2},
            )),
        )
        seen = []

        response = provider.complete(
            ProviderRequest.from_prompt("Hi", stream=True),
            on_token=lambda fragment, full: seen.append((fragment, full)),
        )

        assert seen == [("Hel", "Hel"), ("lo", "Hello")]
        assert response.content == "Hello"
        assert response.token_count == 2
        assert http.calls_to("POST", CHAT_URL)[0]["stream"] is True

    def test_malformed_lines_are_skipped(self, provider, http):
        http.add(
            "POST",
            CHAT_URL,
            FakeResponse(lines=["not json", ""] + ndjson({"message": {"content": "ok"}}) + ["[1, 2]"]),
        )

        response = provider.complete(ProviderRequest.from_prompt("Hi", stream=True))

        assert response.content == "ok"
        assert response.token_count == 1

    def test_completion_stream_uses_response_field(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(status_code=404))
        http.add(
            "POST",
            COMPLETION_URL,
            FakeResponse(lines=ndjson({"response": "a"}, {"response": "b"}, {"done": True})),
        )

        response = provider.complete(ProviderRequest.from_prompt("Hi", stream=True))

        assert response.content == "ab"
        assert response.endpoint_used == COMPLETION
        assert response.token_count == 2

    def test_interrupted_stream_after_tokens_is_not_retried(self, provider, http):
        http.add(
            "POST",
            CHAT_URL,
            FakeResponse(lines=ndjson({"message": {"content": "par"}}) + [
                requests.exceptions.ChunkedEncodingError("connection reset")
            ]),
        )
        http.add("POST", COMPLETION_URL, FakeResponse(lines=ndjson({"response": "dup"})))
        seen = []

        with pytest.raises(TransportError) as exc:
            provider.complete(
                ProviderRequest.from_prompt("Hi", stream=True),
                on_token=lambda fragment, full: seen.append(fragment),
            )

        assert seen == ["par"]
        assert http.calls_to("POST", COMPLETION_URL) == []
        assert exc.value.attempts[0].delivered_tokens is True

    def test_empty_stream_falls_back(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(lines=ndjson({"done": True})))
        http.add("POST", COMPLETION_URL, FakeResponse(lines=ndjson({"response": "late"})))

        assert provider.complete(ProviderRequest.from_prompt("Hi", stream=True)).content == "late"

    def test_parse_stream_record_rejects_non_objects(self):
        with pytest.raises(ParseError):
            parse_stream_record(json.dumps(["a"]))


class TestEndpointEquivalence:

    def test_chat_and_completion_normalize_to_same_content(self, provider, http):
        http.add("POST", CHAT_URL, chat_reply("Paris is the capital."))
        via_chat = provider.complete(ProviderRequest.from_prompt("Capital of France?"))

        http.add("POST", CHAT_URL, FakeResponse(status_code=404))
        http.add("POST", COMPLETION_URL, completion_reply("Assistant:  Paris is the capital.\n"))
        via_completion = provider.complete(ProviderRequest.from_prompt("Capital of France?"))

        assert clean(via_chat.content) == clean(via_completion.content)


class TestDiscovery:

    def test_list_models(self, provider, http):
        http.add("GET", f"{LLM_URL}/api/tags", FakeResponse(json_data={"models": [{"name": "llama3.2"}, {"name": "qwen"}]}))

        assert provider.list_models() == ["llama3.2", "qwen"]

    def test_list_models_unreachable_is_empty(self, provider, http):
        assert provider.list_models() == []

    def test_is_available(self, provider, http):
        assert provider.is_available() is False

        http.add("GET", f"{LLM_URL}/api/tags", FakeResponse(json_data={"models": []}))
        assert provider.is_available() is True


class TestDeadline:

    def test_stream_aborts_when_deadline_elapses(self, provider, http):
        http.add(
            "POST",
            CHAT_URL,
            FakeResponse(lines=stalled_ndjson(
                {"message": {"content": "a"}},
                [{"message": {"content": "b"}}, {"done": True}],
                seconds=0.3,
            )),
        )
        seen = []

        with pytest.raises(TransportError) as exc:
            provider.complete(
                ProviderRequest.from_prompt("Hi", stream=True, timeout=0.1),
                on_token=lambda fragment, full: seen.append(fragment),
            )

        assert seen == ["a"]
        assert exc.value.attempts[0].message == "deadline elapsed during stream"
        assert exc.value.attempts[0].delivered_tokens is True
        assert http.calls_to("POST", COMPLETION_URL) == []

    def test_no_attempt_starts_after_deadline(self, provider, http):
        http.add("POST", CHAT_URL, delayed(FakeResponse(status_code=404), 0.3))
        http.add("POST", COMPLETION_URL, completion_reply("too late"))

        with pytest.raises(TransportError) as exc:
            provider.complete(ProviderRequest.from_prompt("Hi", timeout=0.1))

        assert [a.endpoint for a in exc.value.attempts] == [CHAT, COMPLETION]
        assert exc.value.attempts[1].message == "deadline elapsed before request"
        assert http.calls_to("POST", COMPLETION_URL) == []

    def test_slow_body_counts_against_deadline(self, provider, http):
        http.add("POST", CHAT_URL, delayed(chat_reply("late"), 0.3))

        with pytest.raises(TransportError) as exc:
            provider.complete(ProviderRequest.from_prompt("Hi", timeout=0.1))

        assert exc.value.attempts[0].message == "deadline elapsed while reading body"

    def test_remaining_budget_is_passed_as_timeout(self, provider, http):
        http.add("POST", CHAT_URL, FakeResponse(status_code=404))
        http.add("POST", COMPLETION_URL, completion_reply("ok"))

        provider.complete(ProviderRequest.from_prompt("Hi", timeout=4))

        first = http.calls_to("POST", CHAT_URL)[0]["timeout"]
        second = http.calls_to("POST", COMPLETION_URL)[0]["timeout"]
        assert 0 < second <= first <= 4
