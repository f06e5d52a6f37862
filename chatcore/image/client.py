"""Image-backend HTTP client with candidate discovery.

Processing flow:
    1. Probe the configured candidate base URLs in order
       (`GET {url}/sdapi/v1/sd-models`, bounded by the probe timeout).
    2. Use the first candidate answering with a success status.
    3. Submit a txt2img job and return the parsed JSON response.

Base64 and files:
    - This module does not decode Base64 content; see `chatcore.image.storage`.

Error handling strategy:
    - Discovery exhaustion raises `BackendUnreachable` with every tried URL.
    - Non-2xx txt2img responses, non-object bodies and missing or malformed
      image lists raise `RuntimeError`.
    - Transport failures during txt2img propagate as `requests` exceptions.

Security considerations:
    - `RuntimeError` messages may include upstream response bodies.
"""

import base64
import json
import logging

import requests

from chatcore.core.errors import BackendUnreachable
from chatcore.llm.provider_config import (
    IMAGE_BACKEND_URLS,
    IMAGE_GENERATION_PARAMS,
    IMAGE_GENERATION_TIMEOUT,
    IMAGE_PROBE_TIMEOUT,
    SD_API_PASSWORD,
    SD_API_USER,
    SD_DEFAULT_MODEL,
)


logger = logging.getLogger(__name__)

MODELS_PATH = "/sdapi/v1/sd-models"
TXT2IMG_PATH = "/sdapi/v1/txt2img"

DEFAULT_NEGATIVE_PROMPT = "low quality, blurry, distorted, deformed, ugly"


class ImageBackendClient:
    """Discovers an image backend and submits generation jobs to it.

    Args:
        candidate_urls: Ordered backend base URLs to probe.
        probe_timeout: Per-candidate probe bound in seconds.
        generation_timeout: Bound for one txt2img call in seconds.
        model: Checkpoint requested through `override_settings`.
    """

    def __init__(
        self,
        candidate_urls=None,
        probe_timeout: float = IMAGE_PROBE_TIMEOUT,
        generation_timeout: float = IMAGE_GENERATION_TIMEOUT,
        model: str = SD_DEFAULT_MODEL,
        api_user: str = SD_API_USER,
        api_password: str = SD_API_PASSWORD,
    ):
        urls = IMAGE_BACKEND_URLS if candidate_urls is None else candidate_urls
        self.candidate_urls = [u.rstrip("/") for u in urls]
        self.probe_timeout = probe_timeout
        self.generation_timeout = generation_timeout
        self.model = model
        self._api_user = api_user
        self._api_password = api_password

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}

        if self._api_user and self._api_password:
            credentials = f"{self._api_user}:{self._api_password}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")

        return headers

    def probe(self, base_url: str) -> bool:
        """Return whether `base_url` answers the models endpoint in time."""
        try:
            response = requests.get(
                f"{base_url}{MODELS_PATH}",
                headers=self._headers(),
                timeout=self.probe_timeout,
            )
        except requests.exceptions.RequestException as err:
            logger.info("Image backend not available at %s: %s", base_url, err)
            return False

        if not response.ok:
            logger.info("Image backend at %s answered HTTP %s", base_url, response.status_code)
            return False

        return True

    def discover(self) -> str:
        """Return the first responsive candidate URL.

        Raises:
            BackendUnreachable: No candidate answered the probe.
        """
        for url in self.candidate_urls:
            logger.info("Trying image backend at %s", url)
            if self.probe(url):
                logger.info("Image backend found at %s", url)
                return url

        raise BackendUnreachable(
            "No image generation backend reachable",
            tried_urls=self.candidate_urls,
        )

    def build_payload(self, prompt: str, negative_prompt: str | None, params=None) -> dict:
        settings = dict(IMAGE_GENERATION_PARAMS)
        settings.update(params or {})

        payload = {
            "prompt": prompt,
            "negative_prompt": negative_prompt or DEFAULT_NEGATIVE_PROMPT,
            "steps": settings["steps"],
            "width": settings["width"],
            "height": settings["height"],
            "cfg_scale": settings["cfg_scale"],
            "sampler_name": settings["sampler_name"],
            "batch_size": 1,
            "n_iter": 1,
            "seed": -1,
        }

        if self.model:
            payload["override_settings"] = {"sd_model_checkpoint": self.model}

        return payload

    def txt2img(self, base_url: str, prompt: str, negative_prompt: str | None, params=None) -> dict:
        """Submit one text-to-image job.

        Returns:
            Dict with `images` (base64 list), `info` (parsed when JSON) and the
            submitted `parameters`.

        Raises:
            RuntimeError: Non-2xx status or no image in the response.
        """
        payload = self.build_payload(prompt, negative_prompt, params)

        response = requests.post(
            f"{base_url}{TXT2IMG_PATH}",
            headers=self._headers(),
            json=payload,
            timeout=self.generation_timeout,
        )

        if not response.ok:
            raise RuntimeError(
                f"Image request failed with status {response.status_code}: {response.text}"
            )

        data = response.json()
        if not isinstance(data, dict):
            raise RuntimeError("Image backend returned an unexpected response body.")

        images = data.get("images")
        if not isinstance(images, list) or not images or not isinstance(images[0], str):
            raise RuntimeError("Image backend returned no images.")

        return {
            "images": images,
            "info": _parse_info(data.get("info")),
            "parameters": payload,
        }


def _parse_info(info):
    if not isinstance(info, str):
        return info

    try:
        return json.loads(info)
    except ValueError:
        return info
