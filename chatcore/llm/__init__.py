"""LLM access package.

Architectural role:
    Provides runtime configuration, request/response value types and the
    transport client used by orchestration layers to invoke the text-generation
    runtime.

Module split:
    - `provider_config`: environment-driven runtime, image backend and window configuration.
    - `types`: `ProviderRequest`, `ProviderResponse`, `DynamicConfig`, attempt outcomes.
    - `client`: chat/completion transport with fallback and NDJSON streaming.
    - `postprocess`: role-leak cleanup of model output.
    - `service`: session title helpers.
"""
