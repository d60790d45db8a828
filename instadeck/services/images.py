"""Image normalization for the device: anything in, baseline JPEG out."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlsplit

import httpx
from PIL import Image, ImageDraw, ImageFont
from starlette.concurrency import run_in_threadpool

from ..observability.metrics import IMAGE_CONVERSION_COUNTER


logger = logging.getLogger(__name__)

JPEG_QUALITY = 85
PLACEHOLDER_SIZE = (800, 600)
PLACEHOLDER_ORIGIN = (20, 300)
DEFAULT_MAX_BYTES = 15 * 1024 * 1024
USER_AGENT = "Mozilla/5.0 (compatible; instadeck/0.1)"

CAPTION_FETCH_FAILED = "Image fetch failed"
CAPTION_NOT_FOUND = "Image not found"
CAPTION_TOO_LARGE = "Image too large"
CAPTION_DECODE_FAILED = "Image decoding failed"
CAPTION_ENCODE_FAILED = "Image encoding failed"


class ImageTooLarge(Exception):
    pass


@dataclass(frozen=True)
class ConvertedImage:
    content: bytes
    placeholder: bool = False
    caption: str = ""
    content_type: str = "image/jpeg"

    @property
    def cache_control(self) -> str:
        return "public, max-age=300" if self.placeholder else "public, max-age=3600"


def _encode_jpeg(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


def _flatten(image: Image.Image) -> Image.Image:
    if image.mode == "P":
        image = image.convert("RGBA")
    if image.mode in ("RGBA", "LA", "PA"):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def render_placeholder(caption: str) -> bytes:
    """An 800x600 white JPEG with ``caption`` in the built-in bitmap font."""

    canvas = Image.new("RGB", PLACEHOLDER_SIZE, (255, 255, 255))
    draw = ImageDraw.Draw(canvas)
    font = ImageFont.load_default_imagefont()
    # PLACEHOLDER_ORIGIN is the text baseline; Pillow draws from the top edge
    _, _, _, bottom = font.getbbox(caption)
    x, y = PLACEHOLDER_ORIGIN
    draw.text((x, y - bottom), caption, fill=(0, 0, 0), font=font)
    return _encode_jpeg(canvas)


def decode_image(data: bytes) -> Image.Image:
    """Decode ``data`` using Pillow's format sniffing; raises on failure."""

    image = Image.open(io.BytesIO(data))
    # Image.open is lazy; force the pixel data so corrupt files fail here
    image.load()
    return image


def encode_image(image: Image.Image) -> bytes:
    return _encode_jpeg(_flatten(image))


def _placeholder(caption: str, outcome: str) -> ConvertedImage:
    IMAGE_CONVERSION_COUNTER.labels(outcome).inc()
    return ConvertedImage(content=render_placeholder(caption), placeholder=True, caption=caption)


async def fetch_image(
    client: httpx.AsyncClient, url: str, *, max_bytes: int = DEFAULT_MAX_BYTES
) -> Tuple[int, bytes]:
    """GET ``url`` and return ``(status_code, body)``.

    The body of a non-2xx response is not read. Bodies over ``max_bytes``
    raise :class:`ImageTooLarge`.
    """

    async with client.stream("GET", url, headers={"User-Agent": USER_AGENT}) as response:
        if not response.is_success:
            return response.status_code, b""
        chunks = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > max_bytes:
                raise ImageTooLarge(f"{url} exceeds {max_bytes} bytes")
            chunks.append(chunk)
        return response.status_code, b"".join(chunks)


def _convert_bytes(url: str, data: bytes) -> ConvertedImage:
    try:
        image = decode_image(data)
    except Exception as exc:  # noqa: BLE001 - Pillow raises many unrelated types
        logger.warning("Failed to decode image %s: %s", url, exc)
        return _placeholder(CAPTION_DECODE_FAILED, "decode_failed")
    try:
        content = encode_image(image)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to encode image %s as JPEG: %s", url, exc)
        return _placeholder(CAPTION_ENCODE_FAILED, "encode_failed")
    IMAGE_CONVERSION_COUNTER.labels("converted").inc()
    return ConvertedImage(content=content)


async def convert(
    client: httpx.AsyncClient,
    url: str,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    timeout: Optional[float] = None,
) -> ConvertedImage:
    """Fetch ``url`` and return it as JPEG, or a captioned placeholder JPEG.

    ``timeout`` bounds the whole download. Never raises for fetch, decode or
    encode problems.
    """

    try:
        parts = urlsplit(url)
        valid = parts.scheme in ("http", "https") and bool(parts.hostname)
    except ValueError:
        valid = False
    if not valid:
        logger.warning("Refusing to fetch image with invalid URL %r", url)
        return await run_in_threadpool(_placeholder, CAPTION_FETCH_FAILED, "fetch_failed")

    try:
        status_code, data = await asyncio.wait_for(
            fetch_image(client, url, max_bytes=max_bytes), timeout=timeout
        )
    except ImageTooLarge as exc:
        logger.warning("Refusing oversized image: %s", exc)
        return await run_in_threadpool(_placeholder, CAPTION_TOO_LARGE, "too_large")
    except (asyncio.TimeoutError, httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        # IDNA errors on malformed hosts, including redirect targets, are ValueErrors
        logger.warning("Failed to fetch image %s: %r", url, exc)
        return await run_in_threadpool(_placeholder, CAPTION_FETCH_FAILED, "fetch_failed")

    if not 200 <= status_code < 300:
        logger.warning("Failed to fetch image %s: status %d", url, status_code)
        return await run_in_threadpool(_placeholder, CAPTION_NOT_FOUND, "not_found")

    return await run_in_threadpool(_convert_bytes, url, data)
