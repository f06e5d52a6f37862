"""Request/response value types for `chatcore.llm.client`.

Architectural role:
    Defines the provider-agnostic request shape built by the engine and image
    branch, the normalized response returned by the client, and the per-session
    override value that replaces process-wide mutable client configuration.

Wire mapping:
    `SAMPLING_FIELDS` maps request attribute names to the runtime's `options`
    keys. Only attributes that are set are written to the wire payload.
"""

from dataclasses import dataclass


CHAT = "chat"
COMPLETION = "completion"

# Request attribute -> runtime `options` key.
SAMPLING_FIELDS = (
    ("temperature", "temperature"),
    ("max_tokens", "num_predict"),
    ("top_k", "top_k"),
    ("top_p", "top_p"),
    ("frequency_penalty", "frequency_penalty"),
    ("presence_penalty", "presence_penalty"),
    ("repeat_penalty", "repeat_penalty"),
    ("seed", "seed"),
)


@dataclass(frozen=True)
class DynamicConfig:
    """Caller-supplied runtime override, threaded explicitly through each call.

    Attributes:
        base_url: Runtime base URL replacing the configured default.
        timeout: Deadline in seconds replacing the configured default.
    """

    base_url: str | None = None
    timeout: float | None = None

    def merged_with(self, other: "DynamicConfig | None") -> "DynamicConfig":
        """Return a copy where fields set on `other` replace ours."""
        if other is None:
            return self
        return DynamicConfig(
            base_url=other.base_url or self.base_url,
            timeout=other.timeout or self.timeout,
        )


@dataclass
class ProviderRequest:
    """One generation request.

    Attributes:
        messages: Ordered `{"role", "content"}` turns.
        model: Model id; the client default applies when `None`.
        stream: Request NDJSON streaming.
        timeout: Per-call deadline in seconds (highest precedence).
        base_url: Per-call runtime URL (highest precedence).
    """

    messages: list[dict]
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_k: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    repeat_penalty: float | None = None
    seed: int | None = None
    stream: bool = False
    timeout: float | None = None
    base_url: str | None = None

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs) -> "ProviderRequest":
        """Wrap a single prompt string as one user turn."""
        return cls(messages=[{"role": "user", "content": prompt}], **kwargs)

    def sampling_options(self) -> dict:
        """Map set sampling parameters to runtime option names."""
        options = {}
        for attr, wire_name in SAMPLING_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                options[wire_name] = value
        return options


@dataclass
class ProviderResponse:
    content: str
    model: str
    token_count: int = 0
    processing_time_ms: int = 0
    endpoint_used: str = CHAT


@dataclass
class AttemptFailure:
    """Why one endpoint attempt failed.

    Attributes:
        endpoint: `CHAT` or `COMPLETION`.
        kind: `"transport"`, `"status"` or `"empty"`.
        message: Human-readable failure description.
        status: HTTP status for `"status"` failures.
        delivered_tokens: Whether a streaming attempt already emitted fragments.
    """

    endpoint: str
    kind: str
    message: str
    status: int | None = None
    delivered_tokens: bool = False


@dataclass
class AttemptOutcome:
    """Result-or-error value returned by every endpoint attempt."""

    response: ProviderResponse | None = None
    failure: AttemptFailure | None = None

    @property
    def ok(self) -> bool:
        return self.response is not None
