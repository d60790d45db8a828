from __future__ import annotations

import io

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("IMAGE_FETCH_TIMEOUT", "2")
    from instadeck.config import clear_config_caches

    clear_config_caches()
    yield
    clear_config_caches()


def _gif_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("P", (10, 6), 3).save(buffer, format="GIF")
    return buffer.getvalue()


def _make_client(handler) -> TestClient:
    from instadeck.main import create_app
    from instadeck.routers.images import get_image_client

    app = create_app()
    # a fresh client per request keeps it bound to the TestClient's event loop
    app.dependency_overrides[get_image_client] = lambda: httpx.AsyncClient(
        transport=httpx.MockTransport(handler)
    )
    return TestClient(app)


def test_missing_url_is_400():
    client = _make_client(lambda request: httpx.Response(200))

    assert client.get("/api/convert-image").status_code == 400
    assert client.get("/api/convert-image", params={"url": ""}).status_code == 400


def test_gif_is_served_as_jpeg():
    gif = _gif_bytes()
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=gif, headers={"Content-Type": "image/gif"})

    client = _make_client(handler)
    response = client.get("/api/convert-image", params={"url": "https://img.test/a.gif"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["cache-control"] == "public, max-age=3600"
    image = Image.open(io.BytesIO(response.content))
    assert image.format == "JPEG"
    assert image.size == (10, 6)
    assert requested == ["https://img.test/a.gif"]


@pytest.mark.parametrize(
    "url",
    ["https://img.test/missing.png", "not-a-url", "ftp://img.test/x.png", "   ", "http://xn--/x.png"],
)
def test_failures_still_return_a_placeholder(url):
    client = _make_client(lambda request: httpx.Response(404))

    response = client.get("/api/convert-image", params={"url": url})

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["cache-control"] == "public, max-age=300"
    assert Image.open(io.BytesIO(response.content)).size == (800, 600)


def test_redirect_to_malformed_host_returns_a_placeholder():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "http://xn--/x.png"})

    from instadeck.main import create_app
    from instadeck.routers.images import get_image_client

    app = create_app()
    app.dependency_overrides[get_image_client] = lambda: httpx.AsyncClient(
        transport=httpx.MockTransport(handler), follow_redirects=True
    )
    client = TestClient(app)

    response = client.get("/api/convert-image", params={"url": "https://img.test/moved.png"})

    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, max-age=300"
    assert Image.open(io.BytesIO(response.content)).size == (800, 600)
