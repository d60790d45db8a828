from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from instadeck.integrations.readeck import (
    BATCH_DETAIL_OPTIONS,
    BackendProtocolError,
    BackendRejected,
    BackendTimeout,
    BackendUnavailable,
    ReadeckClient,
    ReadeckClientPool,
)
from tests.factories import json_part, make_bookmark, multipart_body


BASE_URL = "https://readeck.test"


def _client(handler, *, timeout: float = 5.0) -> ReadeckClient:
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return ReadeckClient(http, timeout=timeout)


def test_list_changes_sends_since_as_unix_seconds_and_skips_bad_events():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json=[
                {"id": "a", "type": "update", "time": "2024-01-01T00:00:00Z"},
                {"id": "b", "type": "delete"},
                {"id": "c", "type": "renamed"},
                {"type": "update"},
            ],
        )

    since = datetime(2024, 1, 1, tzinfo=timezone.utc)
    events = asyncio.run(_client(handler).list_changes(since))

    assert seen == {"method": "GET", "path": "/api/bookmarks/sync", "params": {"since": "1704067200"}}
    assert [(event.id, event.type) for event in events] == [("a", "update"), ("b", "delete")]


def test_list_changes_without_since_omits_parameter():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "since" not in request.url.params
        return httpx.Response(200, json=[])

    assert asyncio.run(_client(handler).list_changes()) == []


def test_fetch_details_batch_decodes_json_parts_only():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["accept"] = request.headers["accept"]
        captured["body"] = json.loads(request.content)
        body = multipart_body(
            [
                json_part(make_bookmark("b", title="Second")),
                ({"Content-Type": "text/html", "Type": "html"}, b"<p>ignored</p>"),
                ({"Content-Type": "application/json"}, b"{not json"),
                json_part(make_bookmark("a", title="First", is_marked=True)),
            ],
            boundary="batch-42",
        )
        return httpx.Response(
            200,
            content=body,
            headers={"Content-Type": "multipart/mixed; boundary=batch-42"},
        )

    details = asyncio.run(_client(handler).fetch_details_batch(["a", "b", "missing", "a"]))

    assert captured["accept"] == "multipart/mixed"
    assert captured["body"] == {"id": ["a", "b", "missing"], **BATCH_DETAIL_OPTIONS}
    assert set(details) == {"a", "b"}
    assert details["a"].title == "First"
    assert details["a"].is_marked is True
    assert details["b"].title == "Second"


def test_fetch_details_batch_with_no_ids_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("unexpected request")

    assert asyncio.run(_client(handler).fetch_details_batch([])) == {}


def test_fetch_details_batch_rejects_non_multipart_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[make_bookmark("a")])

    with pytest.raises(BackendProtocolError):
        asyncio.run(_client(handler).fetch_details_batch(["a"]))


def test_search_by_site_reads_total_pages_header():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["site"] == "example.com"
        assert request.url.params["page"] == "2"
        assert request.url.params["is_archived"] == "false"
        return httpx.Response(200, json=[make_bookmark("a")], headers={"Total-Pages": "3"})

    bookmarks, total_pages = asyncio.run(_client(handler).search_by_site("example.com", 2, archived=False))

    assert [bookmark.id for bookmark in bookmarks] == ["a"]
    assert total_pages == 3


def test_search_by_site_defaults_total_pages_to_one():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[], headers={"Total-Pages": "lots"})

    _, total_pages = asyncio.run(_client(handler).search_by_site("example.com"))

    assert total_pages == 1


def test_bookmark_detail_tolerates_nulls():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "id": 7,
                "title": None,
                "created": None,
                "labels": ["x", "x", "y"],
                "resources": None,
                "unknown_field": True,
            },
        )

    detail = asyncio.run(_client(handler).fetch_bookmark("7"))

    assert detail.id == "7"
    assert detail.title == ""
    assert detail.created == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert detail.labels == ["x", "y"]
    assert detail.lead_image is None


def test_update_bookmark_treats_404_as_success():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(404, json={"status": 404})

    asyncio.run(_client(handler).update_bookmark("gone", {"is_archived": True}))

    assert requests == [("PATCH", "/api/bookmarks/gone", {"is_archived": True})]


def test_create_bookmark_raises_rejected_on_error_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"errors": ["bad url"]})

    with pytest.raises(BackendRejected) as excinfo:
        asyncio.run(_client(handler).create_bookmark("not a url"))

    assert excinfo.value.status_code == 422
    assert excinfo.value.operation == "create_bookmark"


def test_transport_failure_raises_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendUnavailable):
        asyncio.run(_client(handler).fetch_article_html("a"))


def test_slow_backend_raises_timeout():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, text="<p>late</p>")

    with pytest.raises(BackendTimeout):
        asyncio.run(_client(handler).fetch_article_html("a", timeout=0.01))


def test_pool_reuses_one_client_per_credential():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[], headers={"X-Auth": request.headers["authorization"]})

    async def exercise():
        pool = ReadeckClientPool(BASE_URL, transport=httpx.MockTransport(handler))
        first = pool.client_for("token-a")
        again = pool.client_for("token-a")
        other = pool.client_for("token-b")
        assert first._http is again._http
        assert first._http is not other._http
        response = await other._http.get("/api/bookmarks/sync")
        await pool.aclose()
        return response.headers["X-Auth"], first._http.is_closed

    auth, closed = asyncio.run(exercise())

    assert auth == "Bearer token-b"
    assert closed is True
