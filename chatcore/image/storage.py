"""Writer for generated images.

Decodes the first Base64 image returned by the backend and stores it as a PNG
under `IMAGES_DIR`, exposing it as `{IMAGES_URL_PREFIX}/{filename}`. Cleanup of
old files is owned by the deployment, not by this module.
"""

import base64
import binascii
import logging
import os
import time
from uuid import uuid4

from chatcore.llm.provider_config import IMAGES_DIR, IMAGES_URL_PREFIX


logger = logging.getLogger(__name__)


class ImageWriter:

    def __init__(self, images_dir: str = IMAGES_DIR, url_prefix: str = IMAGES_URL_PREFIX):
        self.images_dir = images_dir
        self.url_prefix = url_prefix.rstrip("/")

    def save(self, image_base64: str) -> tuple[str, str]:
        """Persist one Base64 image.

        Returns:
            `(url, filename)` of the written file.

        Raises:
            ValueError: The payload is not valid Base64.
            OSError: The file could not be written.
        """
        try:
            data = base64.b64decode(image_base64, validate=True)
        except (binascii.Error, TypeError) as err:
            raise ValueError(f"Invalid Base64 image payload: {err}") from err

        os.makedirs(self.images_dir, exist_ok=True)

        filename = f"sd_{int(time.time() * 1000)}_{uuid4().hex[:6]}.png"
        path = os.path.join(self.images_dir, filename)

        with open(path, "wb") as f:
            f.write(data)

        logger.info("Image saved: %s (%d bytes)", path, len(data))
        return f"{self.url_prefix}/{filename}", filename
