"""Normalization of runtime text output before it is persisted.

Models served through completion-style prompts often echo the role label they
were prompted with. `clean` removes one such leaked label.
"""

import logging


logger = logging.getLogger(__name__)


# Evaluated in order; only the first match is stripped.
ROLE_LEAK_PREFIXES = (
    # Portuguese / English
    "Assistente:",
    "Assistant:",
    "Resposta:",
    "Response:",
    "AI:",
    "IA:",
    "Bot:",
    "Chatbot:",
    "Sistema:",
    "System:",
    # Spanish
    "Asistente:",
    "Respuesta:",
    # German
    "Antwort:",
)


def clean(text: str) -> str:
    """Trim whitespace and strip the first leaked role prefix, once.

    The string is not re-scanned after a prefix is removed, so
    `"Assistant: Assistant: hi"` becomes `"Assistant: hi"`.

    Args:
        text: Raw model output.

    Returns:
        Cleaned text. `None` and empty input return `""`.
    """
    if not text:
        return ""

    cleaned = text.strip()

    for prefix in ROLE_LEAK_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):].strip()
            logger.debug("Removed leaked prefix %r", prefix)
            break

    return cleaned
