"""Error taxonomy shared by the provider client, image branch and engine.

Propagation model:
    - `TransportError` / `EndpointError` / `EmptyResponseError` are all
      `ProviderUnavailable`. The client recovers chat-endpoint failures locally by
      falling back to the completion endpoint; exhausted attempts surface to the
      engine, which converts them into a canned assistant reply.
    - `AccessDenied` is a security boundary and is never swallowed.
    - `BackendUnreachable` stays inside the image branch and becomes an
      explanatory assistant reply.
    - `ParseError` is swallowed per stream line and drives the heuristic image
      prompt fallback.
"""


class ChatCoreError(Exception):
    """Base class for all errors raised by this package."""


class ProviderUnavailable(ChatCoreError):
    """The text-generation runtime could not produce a usable reply.

    Attributes:
        attempts: Per-endpoint failures collected before giving up, in attempt
            order. Empty for failures raised by a single attempt.
    """

    def __init__(self, message, attempts=None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class TransportError(ProviderUnavailable):
    """DNS failure, refused connection, deadline elapsed or a broken stream."""


class EndpointError(ProviderUnavailable):
    """The runtime answered with a non-success HTTP status."""

    def __init__(self, message, status=None, attempts=None):
        super().__init__(message, attempts=attempts)
        self.status = status


class EmptyResponseError(ProviderUnavailable):
    """A successful response carried no generated content."""


class ParseError(ChatCoreError):
    """Malformed stream record or malformed image-prompt JSON."""


class AccessDenied(ChatCoreError):
    """The caller does not own the session it is addressing."""


class SessionNotFound(ChatCoreError):
    """No session exists for the given identifier."""


class BackendUnreachable(ChatCoreError):
    """No image-generation backend answered the discovery probe.

    Attributes:
        tried_urls: Candidate base URLs probed, in probe order.
    """

    def __init__(self, message, tried_urls=None):
        super().__init__(message)
        self.tried_urls = list(tried_urls or [])
