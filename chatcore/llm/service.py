"""Title helpers built on top of the provider client.

Architectural role:
    Provides the session-title entrypoints used by the engine: a deterministic
    title taken from the first user message, and an optional model-generated
    title with a deterministic fallback.

Model call flow:
    prompt (`prompt_builder.build_title_prompt`) -> `ProviderRequest` ->
    `ProviderClient.complete` -> `clean_title`.

Parameter semantics:
    - `temperature=0.7`: some variety in phrasing.
    - `max_tokens=50`: titles are a handful of words.

Failure scenarios:
    Provider failures never propagate; `fallback_title` is returned instead.
"""

import logging
import re

from chatcore.core.errors import ProviderUnavailable
from chatcore.llm.provider_config import AUXILIARY_TIMEOUT
from chatcore.llm.types import ProviderRequest
from chatcore.memory.models import DEFAULT_SESSION_TITLE
from chatcore.prompting.prompt_builder import build_title_prompt


logger = logging.getLogger(__name__)

TITLE_WORDS = 5
MAX_TITLE_LENGTH = 40
MAX_FALLBACK_LENGTH = 30


def title_from_message(content: str) -> str:
    """First five words of `content`, with `...` when it was longer."""
    words = content.split()
    if not words:
        return DEFAULT_SESSION_TITLE

    title = " ".join(words[:TITLE_WORDS])
    return title + ("..." if len(words) > TITLE_WORDS else "")


def clean_title(title: str) -> str:
    cleaned = re.sub(r"['\"]", "", title or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    if len(cleaned) > MAX_TITLE_LENGTH:
        cleaned = cleaned[:MAX_TITLE_LENGTH - 3] + "..."

    return cleaned or DEFAULT_SESSION_TITLE


def fallback_title(message: str) -> str:
    """Deterministic title from the first four words, capitalized."""
    words = [w for w in re.sub(r"[^\w\s]", "", message or "").split(" ") if w][:4]
    if not words:
        return DEFAULT_SESSION_TITLE

    title = " ".join(words)
    if len(title) > MAX_FALLBACK_LENGTH:
        title = title[:MAX_FALLBACK_LENGTH - 3] + "..."

    return title[0].upper() + title[1:].lower()


def generate_conversation_title(provider, first_user_message: str, model=None, dynamic=None) -> str:
    """Ask the runtime for a short title; fall back deterministically.

    Args:
        provider: `ProviderClient` used for the call.
        first_user_message: Opening message of the conversation.
        model: Optional model id; the client default applies otherwise.
        dynamic: Session runtime override.
    """
    request = ProviderRequest.from_prompt(
        build_title_prompt(first_user_message),
        model=model,
        temperature=0.7,
        max_tokens=50,
        timeout=AUXILIARY_TIMEOUT,
    )

    try:
        response = provider.complete(request, dynamic=dynamic)
    except ProviderUnavailable as err:
        logger.error("Title generation failed: %s", err)
        return fallback_title(first_user_message)

    title = clean_title(response.content)
    logger.info("Generated title: %r", title)
    return title
