"""Shared fixtures for all tests.

HTTP is faked at the `requests` boundary: `http` routes `requests.get` /
`requests.post` calls by URL to canned `FakeResponse` objects. Unrouted URLs
behave like an unreachable host.
"""

import base64
import json
import time

import pytest
import requests

from chatcore.core.engine import ConversationOrchestrator
from chatcore.image.client import ImageBackendClient
from chatcore.image.service import ImageIntentRouter
from chatcore.image.storage import ImageWriter
from chatcore.llm.client import ProviderClient
from chatcore.memory.store import InMemoryStore


LLM_URL = "http://llm.test"
SD_URLS = ["http://sd-a.test", "http://sd-b.test"]

PNG_BASE64 = base64.b64encode(b"\x89PNG\r\n\x1a\nfake-image-bytes").decode("ascii")


class FakeResponse:
    """Minimal stand-in for `requests.Response`."""

    def __init__(self, status_code=200, json_data=None, lines=None, text="", reason=None):
        self.status_code = status_code
        self.reason = reason or ("OK" if status_code < 400 else "Error")
        self._json = json_data
        self._lines = lines or []
        self.text = text or (json.dumps(json_data) if json_data is not None else "")
        self.encoding = None
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def iter_lines(self, decode_unicode=False):
        for line in self._lines:
            if isinstance(line, Exception):
                raise line
            yield line

    def raise_for_status(self):
        if not self.ok:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}")

    def close(self):
        self.closed = True


class FakeHttp:
    """URL-keyed router for patched `requests.get` / `requests.post`.

    Each route holds a queue of responses, exceptions, or callables that
    build a response from the request kwargs. The last queued entry is
    reused once the queue is drained.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, *responses):
        self.routes[(method, url)] = list(responses)
        return self

    def calls_to(self, method, url):
        return [kwargs for m, u, kwargs in self.calls if m == method and u == url]

    def _dispatch(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))

        queue = self.routes.get((method, url))
        if not queue:
            raise requests.exceptions.ConnectionError(f"Connection refused: {url}")

        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry(**kwargs)
        return entry

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, kwargs)


def ndjson(*records):
    return [json.dumps(r) for r in records]


def stalled_ndjson(first, rest, seconds):
    """NDJSON lines where `rest` only arrives `seconds` after `first`."""
    yield json.dumps(first)
    time.sleep(seconds)
    for record in rest:
        yield json.dumps(record)


def delayed(response, seconds):
    """Route entry that answers with `response` after `seconds`."""
    def respond(**kwargs):
        time.sleep(seconds)
        return response
    return respond


def chat_reply(content, model="test-model", eval_count=3):
    return FakeResponse(json_data={"model": model, "message": {"role": "assistant", "content": content}, "eval_count": eval_count})


def completion_reply(content, model="test-model", eval_count=3):
    return FakeResponse(json_data={"model": model, "response": content, "eval_count": eval_count})


@pytest.fixture
def http(mocker):
    fake = FakeHttp()
    mocker.patch("requests.get", side_effect=fake.get)
    mocker.patch("requests.post", side_effect=fake.post)
    return fake


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def provider():
    return ProviderClient(base_url=LLM_URL, default_model="test-model", timeout=5.0)


@pytest.fixture
def image_backend():
    return ImageBackendClient(
        candidate_urls=SD_URLS,
        probe_timeout=1.0,
        generation_timeout=5.0,
        model="sdxl-test.safetensors",
        api_user="",
        api_password="",
    )


@pytest.fixture
def image_writer(tmp_path):
    return ImageWriter(str(tmp_path / "images"), "/images")


@pytest.fixture
def image_router(provider, image_backend, image_writer):
    return ImageIntentRouter(provider, backend=image_backend, writer=image_writer)


@pytest.fixture
def orchestrator(store, provider, image_router):
    return ConversationOrchestrator(store, provider=provider, image_router=image_router)
