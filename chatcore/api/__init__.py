"""chatcore API adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs transport-level validation, identity extraction and response shaping.
- Delegates conversation work to `chatcore.core.engine`.

Scope:
- `http_api`: FastAPI application (JSON and SSE).
- `main`: interactive terminal session.
- No direct model invocation logic is implemented in this package.
"""
