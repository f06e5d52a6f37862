"""Provider/runtime configuration for the orchestration layer.

Architectural role:
    Centralizes text-generation runtime selection, image-backend discovery
    settings, and conversation-window limits for `chatcore.llm`, `chatcore.image`,
    `chatcore.prompting`, and `chatcore.core`.

Model call flow integration:
    - `client.ProviderClient` consumes `OLLAMA_BASE_URL`, `DEFAULT_MODEL`,
      `DEFAULT_TIMEOUT` and the endpoint paths.
    - `image.client` consumes `IMAGE_BACKEND_URLS` and the probe/generation
      timeouts.
    - `core.engine` consumes `CONTEXT_WINDOW` and `HISTORY_FETCH_LIMIT`.

Determinism:
    Deterministic for a fixed process environment. Values are resolved at import
    time after `.env` has been loaded.

Failure behavior:
    Malformed numeric environment values fall back to the documented default
    instead of failing import.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_int(name, default):
    """Read an integer environment variable, falling back on malformed values."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name, default):
    """Split a comma-separated environment variable into an ordered list."""
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip().rstrip("/") for item in raw.split(",") if item.strip()]


# Text-generation runtime (Ollama-shaped API).
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").rstrip("/")
DEFAULT_MODEL = os.getenv("OLLAMA_DEFAULT_MODEL", "llama3.2")

# Seconds. Applied when neither the request nor the session override sets one.
DEFAULT_TIMEOUT = _env_float("OLLAMA_TIMEOUT", 300.0)

CHAT_ENDPOINT = "/api/chat"
COMPLETION_ENDPOINT = "/api/generate"
MODELS_ENDPOINT = "/api/tags"

AVAILABILITY_TIMEOUT = 5.0

# Auxiliary generations (titles, image prompts) use a short fixed budget.
AUXILIARY_TIMEOUT = 30.0

# Conversation context limits.
CONTEXT_WINDOW = _env_int("CONTEXT_WINDOW", 10)
HISTORY_FETCH_LIMIT = _env_int("HISTORY_FETCH_LIMIT", 50)


# Image generation backend (Automatic1111 / Forge-shaped API).
# Ordered: the first candidate answering the probe is used for the request.
IMAGE_BACKEND_URLS = _env_list(
    "IMAGE_BACKEND_URLS",
    [
        os.getenv("SD_BASE_URL", "http://localhost:7860").rstrip("/"),
        "http://host.docker.internal:7860",
    ],
)

IMAGE_PROBE_TIMEOUT = _env_float("IMAGE_PROBE_TIMEOUT", 10.0)
IMAGE_GENERATION_TIMEOUT = _env_float("IMAGE_GENERATION_TIMEOUT", 300.0)

SD_DEFAULT_MODEL = os.getenv("SD_DEFAULT_MODEL", "sd_xl_base_1.0.safetensors")
SD_API_USER = os.getenv("SD_API_USER", "")
SD_API_PASSWORD = os.getenv("SD_API_PASSWORD", "")

# Fixed generation parameters submitted with every image request.
IMAGE_GENERATION_PARAMS = {
    "width": 1024,
    "height": 1024,
    "steps": 25,
    "cfg_scale": 7,
    "sampler_name": "DPM++ 2M Karras",
}

# Generated images are written here and exposed under IMAGES_URL_PREFIX.
IMAGES_DIR = os.getenv("IMAGES_DIR", os.path.join(os.getcwd(), "public", "images"))
IMAGES_URL_PREFIX = os.getenv("IMAGES_URL_PREFIX", "/images")

# Optional JSON mirror for the in-process message store (CLI/HTTP defaults).
STORE_SNAPSHOT_PATH = os.getenv("STORE_SNAPSHOT_PATH") or None
