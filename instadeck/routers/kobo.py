"""Instapaper-style device protocol endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Type, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from ..auth import DeviceRegistry, DeviceUser, authenticate_device, get_device_registry
from ..config import get_backend_timeout, get_readeck_url
from ..integrations.readeck import ReadeckClient, ReadeckClientPool
from ..schemas import (
    DeviceRequest,
    DownloadRequest,
    DownloadResponse,
    SendRequest,
    SendResponse,
    SyncRequest,
)
from ..services.actions import apply_actions
from ..services.download import download_article
from ..services.sync import reconcile


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/kobo", tags=["kobo"])

RequestModel = TypeVar("RequestModel", bound=DeviceRequest)

FORM_MEDIA_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def get_readeck_pool(request: Request) -> ReadeckClientPool:
    """Return the app-wide client pool, creating it on first use."""

    pool = getattr(request.app.state, "readeck_pool", None)
    if pool is None:
        pool = ReadeckClientPool(get_readeck_url(), timeout=get_backend_timeout())
        request.app.state.readeck_pool = pool
    return pool


async def _read_payload(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if content_type in FORM_MEDIA_TYPES:
        form = await request.form()
        payload: Dict[str, Any] = {key: value for key, value in form.items() if isinstance(value, str)}
        actions = payload.get("actions")
        if isinstance(actions, str):
            try:
                payload["actions"] = json.loads(actions)
            except ValueError:
                raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid actions field")
        return payload

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid request body")
    if not isinstance(payload, dict):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Request body must be a JSON object")
    return payload


async def _parse(request: Request, model: Type[RequestModel]) -> RequestModel:
    payload = await _read_payload(request)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.info("Rejected %s body: %s", request.url.path, exc.errors(include_url=False))
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid request body", "errors": exc.errors(include_url=False, include_context=False)},
        )


def _client_for(user: DeviceUser, pool: ReadeckClientPool) -> ReadeckClient:
    return pool.client_for(user.readeck_token)


@router.post("/get")
async def kobo_get(
    request: Request,
    registry: DeviceRegistry = Depends(get_device_registry),
    pool: ReadeckClientPool = Depends(get_readeck_pool),
):
    body = await _parse(request, SyncRequest)
    user = authenticate_device(body.access_token, registry)
    logger.info(
        "Sync for %s (since=%s offset=%d count=%d)",
        user.name,
        body.since.isoformat() if body.since else "full",
        body.offset,
        body.count,
    )
    result = await reconcile(_client_for(user, pool), body.since, offset=body.offset, count=body.count)
    return result.to_device()


@router.post("/download", response_model=DownloadResponse)
async def kobo_download(
    request: Request,
    registry: DeviceRegistry = Depends(get_device_registry),
    pool: ReadeckClientPool = Depends(get_readeck_pool),
):
    body = await _parse(request, DownloadRequest)
    user = authenticate_device(body.access_token, registry)
    url = (body.url or "").strip()
    if not url:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Missing 'url' parameter")
    article = await download_article(_client_for(user, pool), url)
    logger.info("Download for %s: %s with %d images", user.name, url, len(article.images))
    return DownloadResponse(article=article.html, images=article.device_images())


@router.post("/send", response_model=SendResponse)
async def kobo_send(
    request: Request,
    registry: DeviceRegistry = Depends(get_device_registry),
    pool: ReadeckClientPool = Depends(get_readeck_pool),
):
    body = await _parse(request, SendRequest)
    user = authenticate_device(body.access_token, registry)
    results = await apply_actions(_client_for(user, pool), body.actions)
    logger.info("Send for %s: %d/%d actions applied", user.name, sum(results), len(results))
    return SendResponse(status=all(results), action_results=results)
