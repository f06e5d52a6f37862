"""Image generation package.

Scope:
    Detects image requests inside a conversation turn and serves them through an
    Automatic1111/Forge-shaped backend.

Composition:
    - `client`: backend discovery and txt2img transport.
    - `storage`: Base64 decoding and file output for generated images.
    - `service`: `ImageIntentRouter`, prompt synthesis and reply shaping.
"""
