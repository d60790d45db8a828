"""Readeck API client."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx
from pydantic import ValidationError

from ..observability.metrics import BACKEND_REQUEST_COUNTER
from ..schemas import BookmarkDetail, SyncEvent
from .multipart import MultipartError, iter_parts, parse_content_type


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
USER_AGENT = "instadeck/0.1"

BATCH_DETAIL_OPTIONS: Dict[str, Any] = {
    "resource_prefix": "%/img",
    "sort": ["created"],
    "with_html": False,
    "with_json": True,
    "with_markdown": False,
    "with_resources": False,
}


class BackendError(Exception):
    """Base class for failures talking to Readeck."""

    def __init__(self, message: str, *, operation: str = "") -> None:
        super().__init__(message)
        self.operation = operation


class BackendUnavailable(BackendError):
    """The request never produced an HTTP response."""


class BackendRejected(BackendError):
    """Readeck answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int, operation: str = "") -> None:
        super().__init__(message, operation=operation)
        self.status_code = status_code


class BackendTimeout(BackendError):
    """The call did not finish within its deadline."""


class BackendProtocolError(BackendError):
    """A 2xx response whose body could not be understood."""


def _parse_total_pages(value: Optional[str]) -> int:
    try:
        pages = int((value or "").strip())
    except ValueError:
        return 1
    return pages if pages > 0 else 1


class ReadeckClient:
    """Bookmark operations for one Readeck credential.

    Every method accepts ``timeout`` (seconds) overriding the default deadline,
    which bounds the whole call including reading the body.
    """

    def __init__(self, http: httpx.AsyncClient, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._http = http
        self.timeout = timeout

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        allow_statuses: Iterable[int] = (),
    ) -> httpx.Response:
        deadline = timeout if timeout is not None else self.timeout
        try:
            response = await asyncio.wait_for(
                self._http.request(method, path, params=params, json=json_body, headers=headers),
                timeout=deadline,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            BACKEND_REQUEST_COUNTER.labels(operation, "timeout").inc()
            raise BackendTimeout(
                f"{operation} timed out after {deadline:g}s", operation=operation
            ) from exc
        except httpx.HTTPError as exc:
            BACKEND_REQUEST_COUNTER.labels(operation, "unavailable").inc()
            raise BackendUnavailable(f"{operation} failed: {exc}", operation=operation) from exc

        if response.is_success or response.status_code in allow_statuses:
            BACKEND_REQUEST_COUNTER.labels(operation, str(response.status_code)).inc()
            return response

        BACKEND_REQUEST_COUNTER.labels(operation, str(response.status_code)).inc()
        body = response.text.strip()
        if len(body) > 200:
            body = body[:200] + "..."
        raise BackendRejected(
            f"{operation} rejected with HTTP {response.status_code}: {body or response.reason_phrase}",
            status_code=response.status_code,
            operation=operation,
        )

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise BackendProtocolError(f"{operation} returned invalid JSON: {exc}", operation=operation) from exc

    async def list_changes(
        self, since: Optional[datetime] = None, *, timeout: Optional[float] = None
    ) -> List[SyncEvent]:
        """Return the change feed, or every bookmark when ``since`` is omitted."""

        params: Dict[str, Any] = {}
        if since is not None:
            params["since"] = str(int(since.timestamp()))
        response = await self._send(
            "list_changes", "GET", "/api/bookmarks/sync", params=params, timeout=timeout
        )
        payload = self._json(response, "list_changes")
        if not isinstance(payload, list):
            raise BackendProtocolError("list_changes expected a JSON array", operation="list_changes")
        events: List[SyncEvent] = []
        for raw in payload:
            try:
                events.append(SyncEvent.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed sync event %r: %s", raw, exc)
        return events

    async def fetch_details_batch(
        self, ids: Iterable[str], *, timeout: Optional[float] = None
    ) -> Dict[str, BookmarkDetail]:
        """Fetch bookmark details for ``ids`` in one multipart round trip.

        Ids Readeck does not return are absent from the result.
        """

        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return {}
        body = {"id": wanted, **BATCH_DETAIL_OPTIONS}
        logger.debug("Fetching %d bookmark details via POST /api/bookmarks/sync", len(wanted))
        response = await self._send(
            "fetch_details_batch",
            "POST",
            "/api/bookmarks/sync",
            json_body=body,
            headers={"Accept": "multipart/mixed"},
            timeout=timeout,
        )
        media_type, params = parse_content_type(response.headers.get("content-type", ""))
        if not media_type.startswith("multipart/"):
            raise BackendProtocolError(
                f"fetch_details_batch expected a multipart body, got {media_type}",
                operation="fetch_details_batch",
            )
        try:
            parts = list(iter_parts(response.content, params.get("boundary", "")))
        except MultipartError as exc:
            raise BackendProtocolError(
                f"fetch_details_batch returned an unreadable multipart body: {exc}",
                operation="fetch_details_batch",
            ) from exc

        details: Dict[str, BookmarkDetail] = {}
        for headers, payload in parts:
            part_type, _ = parse_content_type(headers.get("content-type", ""))
            if part_type != "application/json":
                logger.debug(
                    "Skipping multipart part type=%s content-type=%s",
                    headers.get("type", ""),
                    part_type,
                )
                continue
            try:
                detail = BookmarkDetail.model_validate(json.loads(payload))
            except (ValueError, ValidationError) as exc:
                logger.warning("Skipping undecodable bookmark part: %s", exc)
                continue
            details[detail.id] = detail

        missing = [bookmark_id for bookmark_id in wanted if bookmark_id not in details]
        if missing:
            logger.debug("Readeck omitted %d of %d requested bookmarks: %s", len(missing), len(wanted), missing)
        return details

    async def search_by_site(
        self,
        site: str,
        page: int = 1,
        archived: Optional[bool] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Tuple[List[BookmarkDetail], int]:
        """Return one page of bookmarks for ``site`` and the total page count."""

        params: Dict[str, Any] = {}
        if site:
            params["site"] = site
        if page > 0:
            params["page"] = str(page)
        if archived is not None:
            params["is_archived"] = "true" if archived else "false"
        response = await self._send("search_by_site", "GET", "/api/bookmarks", params=params, timeout=timeout)
        payload = self._json(response, "search_by_site")
        if not isinstance(payload, list):
            raise BackendProtocolError("search_by_site expected a JSON array", operation="search_by_site")
        bookmarks: List[BookmarkDetail] = []
        for raw in payload:
            try:
                bookmarks.append(BookmarkDetail.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed bookmark in search results: %s", exc)
        return bookmarks, _parse_total_pages(response.headers.get("Total-Pages"))

    async def fetch_bookmark(self, bookmark_id: str, *, timeout: Optional[float] = None) -> BookmarkDetail:
        response = await self._send("fetch_bookmark", "GET", f"/api/bookmarks/{bookmark_id}", timeout=timeout)
        try:
            return BookmarkDetail.model_validate(self._json(response, "fetch_bookmark"))
        except ValidationError as exc:
            raise BackendProtocolError(f"fetch_bookmark returned an invalid bookmark: {exc}", operation="fetch_bookmark") from exc

    async def fetch_article_html(self, bookmark_id: str, *, timeout: Optional[float] = None) -> str:
        response = await self._send(
            "fetch_article_html",
            "GET",
            f"/api/bookmarks/{bookmark_id}/article",
            headers={"Accept": "text/html"},
            timeout=timeout,
        )
        return response.text

    async def update_bookmark(
        self, bookmark_id: str, fields: Mapping[str, Any], *, timeout: Optional[float] = None
    ) -> None:
        """Apply a partial update. A bookmark Readeck no longer knows counts as updated."""

        response = await self._send(
            "update_bookmark",
            "PATCH",
            f"/api/bookmarks/{bookmark_id}",
            json_body=dict(fields),
            timeout=timeout,
            allow_statuses=(404,),
        )
        if response.status_code == 404:
            logger.info(
                "Bookmark %s not found on Readeck; treating update %s as done",
                bookmark_id,
                dict(fields),
            )

    async def create_bookmark(self, url: str, *, timeout: Optional[float] = None) -> None:
        await self._send("create_bookmark", "POST", "/api/bookmarks", json_body={"url": url}, timeout=timeout)


class ReadeckClientPool:
    """Hands out :class:`ReadeckClient` objects sharing one connection pool per credential."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}

    def client_for(self, credential: str) -> ReadeckClient:
        http = self._clients.get(credential)
        if http is None or http.is_closed:
            http = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {credential}", "User-Agent": USER_AGENT},
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
            self._clients[credential] = http
        return ReadeckClient(http, timeout=self.timeout)

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for http in clients:
            await http.aclose()
