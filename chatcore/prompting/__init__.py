"""Prompting package.

This package contains deterministic prompt-construction helpers used by the core
orchestration layer and the image branch. It does not perform routing, memory
access or model invocation.

- `context_builder`: windowed conversation prompts.
- `prompt_builder`: image-prompt and title instructions.
"""
