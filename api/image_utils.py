"""Fetch remote images and encode them for Stash create/update inputs."""

import base64
import logging
from io import BytesIO
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


def encode_image(content: bytes) -> Optional[str]:
    """Identify image bytes with Pillow and return a data URI.

    Returns None when the bytes are not an image Pillow can read.
    """
    try:
        with Image.open(BytesIO(content)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not decode image: {e}")
        return None

    mime = Image.MIME.get(image_format) or f"image/{(image_format or 'jpeg').lower()}"
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{mime};base64,{encoded}"


async def fetch_image_data(
    url: Optional[str],
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """
    Download an image and return it as a base64 data URI.

    Only an HTTP 200 response is accepted. Any failure is logged and yields
    None so the calling create/update can continue without an image.

    Args:
        url: Image URL (None or empty returns None)
        http_client: Optional shared client, mainly for tests
    """
    if not url:
        return None

    try:
        if http_client is not None:
            response = await http_client.get(url)
        else:
            async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
                response = await client.get(url)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch image {url}: {e}")
        return None

    if response.status_code != 200:
        logger.warning(f"Failed to fetch image {url}: HTTP {response.status_code}")
        return None

    return encode_image(response.content)
