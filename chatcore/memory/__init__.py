"""Memory subsystem package.

Architectural role:
    Groups the session/message records and the persistence boundary used by the
    orchestrator:
    - `models`: `Session`, `Message`, `Attachment`, `ExchangeResult`.
    - `store`: `MessageStore` contract and the in-process `InMemoryStore`.
"""
