"""NLP utilities for turn classification.

Module scope:
- Image-generation intent detection (`intent_router`).

Determinism profile:
- Fully deterministic rule logic; no model calls.
"""
