"""Image-generation intent detection.

Intent classification logic:
- Input is lower-cased once.
- `IMAGE_INTENT_PATTERNS` is an ordered table of `(language, pattern)` pairs.
- Evaluation is a short-circuit any-match over the table; the first match
  returns `True`. Language packs are independent rows, so adding a language is
  a data change only.

Pattern families per language:
- verb + noun ("generate ... image", "desenhe ... imagem")
- noun + relation ("picture of ...")
- deictic/request phrasing ("show me ... picture", "me mostre ... foto")
- bare trigger words ("visualize", "illustrate")

Determinism:
- Fully deterministic; no model calls.

Failure handling:
- Empty/blank input is not an image request.
"""

import logging
import re


logger = logging.getLogger(__name__)


_EN_VERBS = r"generate|create|make|draw|produce|render|design|paint|sketch"
_EN_NOUNS = r"image|picture|photo|illustration|artwork|art|drawing|painting|visual|wallpaper"
_PT_VERBS = r"gere|gera|crie|cria|faça|faca|desenhe|produza|renderize|pinte"
_PT_NOUNS = r"imagem|foto|ilustração|ilustracao|arte|desenho|pintura|visual"
_ES_VERBS = r"genera|crea|haz|dibuja|produce|pinta"
_ES_NOUNS = r"imagen|foto|ilustración|ilustracion|arte|dibujo|pintura"
_DE_VERBS = r"generiere|erstelle|erzeuge|zeichne|male"
_DE_NOUNS = r"bild|foto|illustration|zeichnung|gemälde|grafik"


def _compile(pattern):
    return re.compile(pattern, re.IGNORECASE)


IMAGE_INTENT_PATTERNS = (
    # English
    ("en", _compile(rf"\b({_EN_VERBS})\b.*\b({_EN_NOUNS})")),
    ("en", _compile(rf"\b({_EN_NOUNS})\b.*\b(of|showing|depicting)\b")),
    (
        "en",
        _compile(
            r"\b(show me|give me|i want|i need|can you make|can you create|"
            rf"can you draw|can you generate)\b.*\b({_EN_NOUNS})"
        ),
    ),
    ("en", _compile(r"\bvisuali[sz]e\b")),
    ("en", _compile(r"\billustrate\b")),
    # Portuguese
    ("pt", _compile(rf"\b({_PT_VERBS})\b.*\b({_PT_NOUNS})")),
    ("pt", _compile(rf"\b({_PT_NOUNS})\b.*\b(de|mostrando)\b")),
    (
        "pt",
        _compile(
            r"\b(me mostre|me dê|me de|eu quero|eu preciso|pode criar|pode fazer|"
            rf"pode desenhar|pode gerar)\b.*\b({_PT_NOUNS})"
        ),
    ),
    ("pt", _compile(r"\bilustre\b")),
    # Spanish
    ("es", _compile(rf"\b({_ES_VERBS})\b.*\b({_ES_NOUNS})")),
    ("es", _compile(rf"\b({_ES_NOUNS})\b.*\b(de|mostrando)\b")),
    (
        "es",
        _compile(
            r"\b(muéstrame|muestrame|dame|quiero|necesito|puedes crear|"
            rf"puedes dibujar|puedes generar)\b.*\b({_ES_NOUNS})"
        ),
    ),
    # German
    ("de", _compile(rf"\b({_DE_VERBS})\b.*\b({_DE_NOUNS})")),
    ("de", _compile(rf"\b(zeig mir|ich möchte|kannst du)\b.*\b({_DE_NOUNS})")),
)


def match_image_intent(message: str, patterns=IMAGE_INTENT_PATTERNS) -> str | None:
    """Return the language tag of the first matching pattern, or `None`."""
    if not message or not message.strip():
        return None

    lowered = message.lower()

    for language, pattern in patterns:
        if pattern.search(lowered):
            return language

    return None


def classify(message: str) -> bool:
    """Return whether `message` asks for an image to be generated."""
    language = match_image_intent(message)

    if language is None:
        return False

    logger.info("Image generation request detected (%s): %r", language, message[:50])
    return True
