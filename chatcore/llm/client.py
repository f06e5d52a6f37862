"""Transport client for the text-generation runtime.

Architectural role:
    Executes HTTP requests against an Ollama-shaped runtime and hides the two
    incompatible endpoint shapes (structured chat vs. flat completion) and the
    NDJSON streaming format from callers.

Model invocation flow:
    `ProviderClient.complete(request)` -> resolve base URL/deadline -> ordered
    attempts (chat, then completion) -> first successful `ProviderResponse`.

Retry behavior:
    Exactly one fallback (chat -> completion). No backoff; every call re-runs the
    full cascade from scratch. A streaming attempt that already delivered
    fragments to the caller is not retried.

Deadline resolution:
    per-call `request.timeout` > session `DynamicConfig.timeout` > configured
    default. The base URL follows the same precedence.

Failure handling model:
    `requests` exceptions never leave this module. Each attempt returns an
    `AttemptOutcome`; exhausted attempts are aggregated into one typed
    `ProviderUnavailable` subclass carrying every per-attempt failure.
"""

import json
import logging
import time

import requests

from chatcore.core.errors import (
    EmptyResponseError,
    EndpointError,
    ParseError,
    TransportError,
)
from chatcore.llm.provider_config import (
    AVAILABILITY_TIMEOUT,
    CHAT_ENDPOINT,
    COMPLETION_ENDPOINT,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT,
    MODELS_ENDPOINT,
    OLLAMA_BASE_URL,
)
from chatcore.llm.types import (
    CHAT,
    COMPLETION,
    AttemptFailure,
    AttemptOutcome,
    DynamicConfig,
    ProviderRequest,
    ProviderResponse,
)


logger = logging.getLogger(__name__)

ENDPOINT_PATHS = {
    CHAT: CHAT_ENDPOINT,
    COMPLETION: COMPLETION_ENDPOINT,
}

ATTEMPT_ORDER = (CHAT, COMPLETION)

ROLE_LABELS = {
    "system": "System",
    "user": "User",
    "assistant": "Assistant",
}


def flatten_messages(messages) -> str:
    """Render an ordered turn list as one completion-endpoint prompt.

    Each turn becomes `"{Label}: {content}"`; turns are joined by blank lines.
    Unknown roles are labelled as Assistant.
    """
    return "\n\n".join(
        f"{ROLE_LABELS.get(msg.get('role'), 'Assistant')}: {msg.get('content', '')}"
        for msg in messages
    )


def parse_stream_record(line: str) -> dict:
    """Decode one NDJSON line.

    Raises:
        ParseError: The line is not a JSON object.
    """
    try:
        record = json.loads(line)
    except ValueError as err:
        raise ParseError(f"Malformed stream line: {line[:80]!r}") from err

    if not isinstance(record, dict):
        raise ParseError(f"Stream record is not an object: {line[:80]!r}")

    return record


def _extract_fragment(endpoint: str, record: dict) -> str:
    if endpoint == CHAT:
        message = record.get("message")
        if isinstance(message, dict) and message.get("content"):
            return str(message["content"])
        return ""
    return str(record.get("response") or "")


def _extract_content(endpoint: str, data: dict) -> str:
    if endpoint == CHAT:
        message = data.get("message")
        if isinstance(message, dict) and message.get("content"):
            return str(message["content"])
    return str(data.get("response") or "")


class ProviderClient:
    """Client for one text-generation runtime.

    The instance holds only static configuration; per-session overrides are
    passed into each call as a `DynamicConfig` value.
    """

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        default_model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout = timeout

    # =========================================================
    # TARGET RESOLUTION
    # =========================================================

    def resolve_target(
        self,
        request: ProviderRequest | None = None,
        dynamic: DynamicConfig | None = None,
    ) -> tuple[str, float]:
        """Return `(base_url, timeout)` after applying override precedence.

        Precedence for both values: per-call request field, then the dynamic
        session override, then the static configuration of this client.
        """
        base_url = (
            (request.base_url if request else None)
            or (dynamic.base_url if dynamic else None)
            or self.base_url
        )
        timeout = (
            (request.timeout if request else None)
            or (dynamic.timeout if dynamic else None)
            or self.timeout
        )
        return base_url.rstrip("/"), float(timeout)

    def _build_payload(self, endpoint: str, model: str, request: ProviderRequest) -> dict:
        payload = {"model": model, "stream": bool(request.stream)}

        if endpoint == CHAT:
            payload["messages"] = list(request.messages)
        else:
            payload["prompt"] = flatten_messages(request.messages)

        options = request.sampling_options()
        if options:
            payload["options"] = options

        return payload

    # =========================================================
    # COMPLETION
    # =========================================================

    def complete(
        self,
        request: ProviderRequest,
        on_token=None,
        dynamic: DynamicConfig | None = None,
    ) -> ProviderResponse:
        """Generate a reply, falling back from the chat to the completion shape.

        Args:
            request: Provider-agnostic generation request.
            on_token: Optional `callback(fragment, accumulated)` invoked for every
                streamed fragment, in arrival order, before the next record is
                read. Ignored for non-streaming requests.
            dynamic: Session-scoped override for base URL and deadline.

        Returns:
            `ProviderResponse` from the first endpoint that produced content.

        Raises:
            TransportError: The last attempt failed at the network level.
            EmptyResponseError: The last attempt succeeded without content.
            EndpointError: The last attempt returned a non-success status.
        """
        started = time.monotonic()
        base_url, timeout = self.resolve_target(request, dynamic)
        model = request.model or self.default_model
        deadline = started + timeout

        logger.info(
            "Provider request: model=%s url=%s timeout=%.1fs stream=%s",
            model,
            base_url,
            timeout,
            request.stream,
        )

        failures = []

        for endpoint in ATTEMPT_ORDER:
            outcome = self._attempt(endpoint, base_url, model, request, deadline, on_token)

            if outcome.ok:
                response = outcome.response
                response.processing_time_ms = int((time.monotonic() - started) * 1000)
                logger.info(
                    "Provider reply via %s in %dms (%d tokens)",
                    endpoint,
                    response.processing_time_ms,
                    response.token_count,
                )
                return response

            failure = outcome.failure
            failures.append(failure)
            logger.warning(
                "Provider %s endpoint failed (%s): %s",
                endpoint,
                failure.kind,
                failure.message,
            )

            if failure.delivered_tokens:
                break

        raise _aggregate_failures(failures)

    def _attempt(self, endpoint, base_url, model, request, deadline, on_token) -> AttemptOutcome:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return AttemptOutcome(
                failure=AttemptFailure(endpoint, "transport", "deadline elapsed before request")
            )

        url = f"{base_url}{ENDPOINT_PATHS[endpoint]}"
        payload = self._build_payload(endpoint, model, request)

        try:
            response = requests.post(
                url,
                headers={"Content-Type": "application/json"},
                json=payload,
                stream=bool(request.stream),
                timeout=remaining,
            )
        except requests.exceptions.RequestException as err:
            return AttemptOutcome(failure=AttemptFailure(endpoint, "transport", str(err)))

        try:
            if not response.ok:
                return AttemptOutcome(
                    failure=AttemptFailure(
                        endpoint,
                        "status",
                        f"HTTP {response.status_code} {response.reason or ''}".strip(),
                        status=response.status_code,
                    )
                )

            if request.stream:
                return self._read_stream(endpoint, model, response, deadline, on_token)

            return self._read_body(endpoint, model, response, deadline)
        finally:
            response.close()

    def _read_body(self, endpoint, model, response, deadline) -> AttemptOutcome:
        # `timeout` bounds each socket read, not the whole body; re-check the total.
        try:
            data = response.json()
        except ValueError:
            return AttemptOutcome(
                failure=AttemptFailure(endpoint, "empty", "response body is not JSON")
            )

        if time.monotonic() > deadline:
            return AttemptOutcome(
                failure=AttemptFailure(endpoint, "transport", "deadline elapsed while reading body")
            )

        if not isinstance(data, dict):
            data = {}

        content = _extract_content(endpoint, data)
        if not content:
            return AttemptOutcome(
                failure=AttemptFailure(endpoint, "empty", "empty response from runtime")
            )

        tokens = data.get("eval_count") or data.get("prompt_eval_count") or 0

        return AttemptOutcome(
            response=ProviderResponse(
                content=content,
                model=data.get("model") or model,
                token_count=int(tokens),
                endpoint_used=endpoint,
            )
        )

    def _read_stream(self, endpoint, model, response, deadline, on_token) -> AttemptOutcome:
        response.encoding = "utf-8"

        full_text = ""
        fragments = 0
        final_count = None

        try:
            for line in response.iter_lines(decode_unicode=True):
                if time.monotonic() > deadline:
                    return AttemptOutcome(
                        failure=AttemptFailure(
                            endpoint,
                            "transport",
                            "deadline elapsed during stream",
                            delivered_tokens=bool(full_text),
                        )
                    )

                if not line or not line.strip():
                    continue

                try:
                    record = parse_stream_record(line)
                except ParseError as err:
                    logger.debug("Skipping stream line: %s", err)
                    continue

                fragment = _extract_fragment(endpoint, record)
                if fragment:
                    full_text += fragment
                    fragments += 1
                    if on_token is not None:
                        on_token(fragment, full_text)

                if record.get("done"):
                    final_count = record.get("eval_count") or final_count

        except requests.exceptions.RequestException as err:
            return AttemptOutcome(
                failure=AttemptFailure(
                    endpoint,
                    "transport",
                    f"stream interrupted: {err}",
                    delivered_tokens=bool(full_text),
                )
            )

        if not full_text:
            return AttemptOutcome(
                failure=AttemptFailure(endpoint, "empty", "stream ended without content")
            )

        return AttemptOutcome(
            response=ProviderResponse(
                content=full_text,
                model=model,
                token_count=int(final_count or fragments),
                endpoint_used=endpoint,
            )
        )

    # =========================================================
    # DISCOVERY
    # =========================================================

    def list_models(self, dynamic: DynamicConfig | None = None) -> list[str]:
        """Return model names advertised by the runtime, or `[]` on failure."""
        base_url, _ = self.resolve_target(dynamic=dynamic)

        try:
            response = requests.get(f"{base_url}{MODELS_ENDPOINT}", timeout=AVAILABILITY_TIMEOUT)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as err:
            logger.error("Failed to list models at %s: %s", base_url, err)
            return []

        return [m.get("name") for m in data.get("models") or [] if m.get("name")]

    def is_available(self, dynamic: DynamicConfig | None = None) -> bool:
        base_url, _ = self.resolve_target(dynamic=dynamic)

        try:
            response = requests.get(f"{base_url}{MODELS_ENDPOINT}", timeout=AVAILABILITY_TIMEOUT)
        except requests.exceptions.RequestException as err:
            logger.warning("Runtime not available at %s: %s", base_url, err)
            return False

        return response.ok


def _aggregate_failures(failures):
    """Collapse per-attempt failures into one typed exception."""
    last = failures[-1]
    summary = "; ".join(f"{f.endpoint}: {f.message}" for f in failures)
    message = f"All provider endpoints failed ({summary})"

    if last.kind == "transport":
        return TransportError(message, attempts=failures)
    if last.kind == "empty":
        return EmptyResponseError(message, attempts=failures)
    return EndpointError(message, status=last.status, attempts=failures)
