"""Prompt templates for auxiliary generations.

This module is intentionally narrow: it only builds prompt strings for the
image-prompt rewriter and the conversation-title generator. Conversation
context is assembled by `context_builder`; model invocation happens elsewhere.

Design constraints:
    - Deterministic construction for identical inputs.
    - No hidden side effects (no I/O, no global state mutation).

Prompt safety model:
    User text is interpolated verbatim. Output parsing downstream tolerates
    surrounding prose and falls back to heuristics on malformed output.
"""


# =========================================================
# IMAGE PROMPT REWRITER
# =========================================================
# Asks the text model for a JSON object `{prompt, negativePrompt, style?}`.
# The example output anchors the expected shape for small local models.

IMAGE_PROMPT_INSTRUCTIONS = (
    "You are an expert prompt engineer for Stable Diffusion image generation.\n"
    "Convert the user request into a highly detailed, optimized prompt for SDXL.\n\n"
    "RULES:\n"
    '1. Output ONLY a JSON object with "prompt" and "negativePrompt" fields '
    '(and optionally "style").\n'
    "2. The prompt must describe:\n"
    "   - the subject\n"
    "   - the art style (photorealistic, digital art, oil painting, anime, ...)\n"
    "   - the lighting (studio lighting, natural light, dramatic lighting, ...)\n"
    "   - quality boosters (masterpiece, best quality, highly detailed, 8k, ...)\n"
    "   - camera/composition details if relevant\n"
    "3. The negative prompt lists common quality issues to avoid.\n"
    "4. Do NOT include any explanation, just the JSON.\n\n"
    "EXAMPLE OUTPUT:\n"
    '{"prompt": "a majestic golden retriever sitting in a sunlit meadow, '
    "photorealistic, professional photography, golden hour lighting, bokeh "
    "background, sharp focus, highly detailed fur texture, masterpiece, best "
    'quality, 8k uhd", "negativePrompt": "blurry, low quality, distorted, '
    'deformed, ugly, bad anatomy, watermark, text, signature"}\n\n'
)


def build_image_prompt_request(user_message: str) -> str:
    """Build the rewriter prompt for one free-form image request."""
    return (
        IMAGE_PROMPT_INSTRUCTIONS
        + f'User request: "{user_message.strip()}"\n\n'
        + "JSON:"
    )


# =========================================================
# CONVERSATION TITLE
# =========================================================

def build_title_prompt(first_user_message: str) -> str:
    """Build a prompt asking for a 4-5 word conversation title."""
    return (
        "Based on this user message, generate a short, descriptive title "
        "(maximum 4-5 words) for a conversation. Respond only with the title, "
        "no quotes, no explanation:\n\n"
        f'User message: "{first_user_message.strip()}"\n\n'
        "Title:"
    )
