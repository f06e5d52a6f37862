"""Core orchestration package.

Architectural role:
    Exposes the conversation-orchestration layer that sits between API/CLI
    entrypoints and lower-level subsystems (prompting, image branch, memory
    store, and the provider client).

Composition:
    - `engine`: `ConversationOrchestrator`, the per-turn control flow and
      owner-checked session operations.
    - `errors`: error taxonomy shared by every subsystem.

Determinism and side effects:
    Package import itself is deterministic and side-effect free. Runtime side effects
    are performed by `engine` during request processing.
"""
