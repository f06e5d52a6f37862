"""Image branch of a conversation turn.

Role in pipeline:
    - Classifies a user message as an image request (`classify`).
    - Discovers a responsive image backend.
    - Rewrites the free-form request into a generation prompt with the text
      model, falling back to a deterministic heuristic.
    - Submits the job, stores the image, and shapes the assistant reply.

Error handling strategy:
    Nothing raised inside the branch reaches the engine. `BackendUnreachable`
    becomes an explanatory reply; generation errors become a user-facing error
    reply with `error=True`. Provider failures and malformed JSON during prompt
    synthesis select the heuristic prompt.

Determinism:
    The heuristic prompt path is deterministic. The model-backed path and the
    generated image are not.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any

import requests

from chatcore.core.errors import BackendUnreachable, ParseError, ProviderUnavailable
from chatcore.image.client import ImageBackendClient
from chatcore.image.storage import ImageWriter
from chatcore.llm.provider_config import AUXILIARY_TIMEOUT
from chatcore.llm.types import ProviderRequest
from chatcore.memory.models import Attachment
from chatcore.nlp import intent_router
from chatcore.prompting.prompt_builder import build_image_prompt_request


logger = logging.getLogger(__name__)


FALLBACK_NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, deformed, ugly, bad anatomy, watermark, text, signature"
)

QUALITY_SUFFIX = (
    "highly detailed, masterpiece, best quality, professional, 8k uhd, "
    "sharp focus, vibrant colors"
)

# Request verbs, media nouns, articles and fillers (en, pt, es, de).
STOP_WORDS = (
    # English
    "generate", "create", "make", "draw", "produce", "render", "design", "paint",
    "image", "picture", "photo", "illustration", "please", "show me", "give me",
    "i want", "i need", "can you", "a", "an", "the", "of", "for", "me",
    # Portuguese
    "gere", "crie", "faça", "desenhe", "imagem", "foto", "ilustração", "eu quero",
    "pode", "um", "uma", "o", "de", "para", "por favor",
    # Spanish
    "genera", "crea", "dibuja", "imagen", "un", "una", "el", "la", "del",
    # German
    "generiere", "erstelle", "zeichne", "bild", "ein", "eine", "einen", "von", "bitte",
)

_STOP_WORDS_RE = re.compile(
    r"(?<!\w)("
    + "|".join(re.escape(w) for w in sorted(STOP_WORDS, key=len, reverse=True))
    + r")(?!\w)",
    re.IGNORECASE,
)


@dataclass
class ImagePrompt:
    prompt: str
    negative_prompt: str
    style: str | None = None
    source: str = "model"


@dataclass
class ImageResult:
    """Outcome of one generation job."""

    success: bool
    image_url: str | None = None
    filename: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ImageReply:
    """Assistant turn produced by the image branch."""

    content: str
    metadata: dict[str, Any]
    attachments: list[Attachment] = field(default_factory=list)


# =========================================================
# PROMPT PARSING
# =========================================================

def extract_json_object(text: str) -> dict:
    """Parse the first balanced `{...}` object embedded in `text`.

    Braces inside JSON string literals are ignored while matching.

    Raises:
        ParseError: No balanced object exists or it is not valid JSON.
    """
    if not text:
        raise ParseError("Empty model output")

    start = text.find("{")
    if start == -1:
        raise ParseError("No JSON object in model output")

    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                candidate = text[start:index + 1]
                try:
                    parsed = json.loads(candidate)
                except ValueError as err:
                    raise ParseError(f"Malformed JSON object: {err}") from err
                if not isinstance(parsed, dict):
                    raise ParseError("JSON value is not an object")
                return parsed

    raise ParseError("Unbalanced JSON object in model output")


def heuristic_prompt(message: str) -> ImagePrompt:
    """Build a generation prompt without the text model."""
    subject = _STOP_WORDS_RE.sub(" ", message.lower())
    subject = re.sub(r"[^\w\s,'-]", " ", subject)
    subject = re.sub(r"\s+", " ", subject).strip(" ,")

    if not subject:
        subject = message.strip()

    return ImagePrompt(
        prompt=f"{subject}, {QUALITY_SUFFIX}",
        negative_prompt=FALLBACK_NEGATIVE_PROMPT,
        source="heuristic",
    )


# =========================================================
# ROUTER
# =========================================================

class ImageIntentRouter:
    """Detects and serves image-generation turns.

    Args:
        provider: Text-generation client used to rewrite prompts.
        backend: Image backend client; built from configuration when omitted.
        writer: Image writer; built from configuration when omitted.
    """

    def __init__(self, provider, backend: ImageBackendClient | None = None, writer: ImageWriter | None = None):
        self.provider = provider
        self.backend = backend or ImageBackendClient()
        self.writer = writer or ImageWriter()

    def classify(self, message: str) -> bool:
        return intent_router.classify(message)

    def synthesize_prompt(self, message: str, model=None, dynamic=None) -> ImagePrompt:
        """Rewrite `message` into a generation prompt, heuristically on failure."""
        request = ProviderRequest.from_prompt(
            build_image_prompt_request(message),
            model=model,
            temperature=0.7,
            max_tokens=500,
            timeout=AUXILIARY_TIMEOUT,
        )

        try:
            response = self.provider.complete(request, dynamic=dynamic)
            parsed = extract_json_object(response.content)
        except ProviderUnavailable as err:
            logger.warning("Image prompt generation failed, using heuristic prompt: %s", err)
            return heuristic_prompt(message)
        except ParseError as err:
            logger.warning("Image prompt JSON unusable, using heuristic prompt: %s", err)
            return heuristic_prompt(message)

        prompt = parsed.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            logger.warning("Image prompt JSON missing 'prompt', using heuristic prompt")
            return heuristic_prompt(message)

        negative = parsed.get("negativePrompt") or parsed.get("negative_prompt")
        if not isinstance(negative, str) or not negative.strip():
            negative = FALLBACK_NEGATIVE_PROMPT

        style = parsed.get("style")

        return ImagePrompt(
            prompt=prompt.strip(),
            negative_prompt=negative.strip(),
            style=style if isinstance(style, str) else None,
        )

    def generate(self, image_prompt: ImagePrompt, base_url: str, params=None) -> ImageResult:
        """Run one txt2img job against `base_url` and store the image."""
        started = time.monotonic()

        try:
            job = self.backend.txt2img(
                base_url,
                image_prompt.prompt,
                image_prompt.negative_prompt,
                params=params,
            )
            url, filename = self.writer.save(job["images"][0])
        except (RuntimeError, ValueError, OSError, requests.exceptions.RequestException) as err:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.error("Image generation failed: %s (%dms)", err, elapsed)
            return ImageResult(success=False, error=str(err))

        elapsed = int((time.monotonic() - started) * 1000)

        return ImageResult(
            success=True,
            image_url=url,
            filename=filename,
            metadata={
                "prompt": image_prompt.prompt,
                "negative_prompt": image_prompt.negative_prompt,
                "backend": base_url,
                "model": self.backend.model,
                "parameters": job["parameters"],
                "info": job["info"],
                "processing_time_ms": elapsed,
            },
        )

    def handle(self, message: str, options=None, dynamic=None) -> ImageReply:
        """Serve one image turn; never raises for backend or generation errors.

        Args:
            message: The user's free-form image request.
            options: Optional dict; `model` selects the text model used for
                prompt rewriting, `image_params` overrides generation parameters.
            dynamic: Session runtime override forwarded to the text model.
        """
        options = options or {}
        logger.info("Processing image generation request: %r", message[:50])

        try:
            base_url = self.backend.discover()
        except BackendUnreachable as err:
            logger.warning("%s (tried %s)", err, ", ".join(err.tried_urls))
            return ImageReply(
                content=(
                    "I detected you want an image, but could not connect to an image "
                    "generation backend. Please make sure it is running and try again."
                ),
                metadata={
                    "model": "system",
                    "image_generation": False,
                    "reason": "image backend not reachable",
                    "tried_urls": err.tried_urls,
                },
            )

        image_prompt = self.synthesize_prompt(message, model=options.get("model"), dynamic=dynamic)
        logger.info("Image prompt (%s): %r", image_prompt.source, image_prompt.prompt[:100])

        result = self.generate(image_prompt, base_url, params=options.get("image_params"))

        if not result.success:
            return ImageReply(
                content=(
                    "I tried to generate an image for you, but encountered an error: "
                    f"{result.error}\n\nPlease try again or rephrase your request."
                ),
                metadata={
                    "model": "stable-diffusion",
                    "image_generation": False,
                    "error": True,
                    "error_message": result.error,
                },
            )

        shown = image_prompt.prompt[:200] + ("..." if len(image_prompt.prompt) > 200 else "")

        return ImageReply(
            content=f"Here's the image I generated for you!\n\n**Prompt used:** {shown}",
            metadata={
                "model": "stable-diffusion",
                "image_generation": True,
                "sd_model": self.backend.model,
                "prompt": image_prompt.prompt,
                "negative_prompt": image_prompt.negative_prompt,
                "prompt_source": image_prompt.source,
                "processing_time_ms": result.metadata.get("processing_time_ms", 0),
            },
            attachments=[
                Attachment(
                    type="image",
                    url=result.image_url,
                    filename=result.filename,
                    original_prompt=image_prompt.prompt,
                    metadata=result.metadata,
                )
            ],
        )
