"""Image conversion endpoint used by the device article renderer."""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response

from ..config import get_image_max_bytes, get_image_timeout
from ..services.images import convert


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["images"])


def get_image_client(request: Request) -> httpx.AsyncClient:
    """Shared client for external image hosts, created on first use."""

    client = getattr(request.app.state, "image_client", None)
    if client is None or client.is_closed:
        client = httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(get_image_timeout()))
        request.app.state.image_client = client
    return client


@router.get(
    "/convert-image",
    response_class=Response,
    responses={200: {"content": {"image/jpeg": {}}}},
)
async def convert_image(
    url: Optional[str] = Query(default=None, description="Absolute URL of the source image"),
    client: httpx.AsyncClient = Depends(get_image_client),
):
    """Fetch an image and return it as JPEG.

    Any failure after validation is answered with a captioned placeholder
    JPEG, never an error status.
    """

    if not url:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Missing 'url' parameter")

    result = await convert(
        client,
        url,
        max_bytes=get_image_max_bytes(),
        timeout=get_image_timeout(),
    )
    if result.placeholder:
        logger.info("Serving placeholder for %s: %s", url, result.caption)
    return Response(
        content=result.content,
        media_type=result.content_type,
        headers={"Cache-Control": result.cache_control},
    )
