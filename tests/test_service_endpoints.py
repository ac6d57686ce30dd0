"""Health, readiness, UI page and upload preparation routes."""

from PIL import Image

import paint_server
from tests.fakes import png_bytes


async def test_health(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["version"] == "1.0.0"


async def test_ready_reports_model_and_key(client, monkeypatch):
    monkeypatch.setenv("GOOGLE_IMAGE_MODEL", "gemini-2.5-flash-image")

    resp = await client.get("/ready")
    assert resp.json()["model"] == "gemini-2.5-flash-image-preview"
    assert resp.json()["server_key_configured"] is False

    monkeypatch.setenv("GOOGLE_API_KEY", "AIza-env-key")
    resp = await client.get("/ready")
    assert resp.json()["server_key_configured"] is True


async def test_index_serves_page(client):
    resp = await client.get("/")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "Paint by Text" in resp.text
    assert "x-google-api-key" in resp.text


async def test_prepare_image_returns_data_url(client):
    files = {"image": ("photo.png", png_bytes((32, 32)), "image/png")}

    resp = await client.post("/api/prepare-image", files=files)

    assert resp.status_code == 200
    assert resp.json()["image"].startswith("data:image/jpeg;base64,")


async def test_prepare_image_rejects_non_images(client):
    files = {"image": ("notes.txt", b"hello", "text/plain")}

    resp = await client.post("/api/prepare-image", files=files)

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Invalid image file"}


async def test_prepare_image_requires_file(client):
    resp = await client.post("/api/prepare-image")
    assert resp.status_code == 422


async def test_prepare_image_rejects_oversized_upload(client, monkeypatch):
    monkeypatch.setattr(paint_server, "max_body_bytes", 256)
    files = {"image": ("big.png", b"\x89PNG" + b"\x00" * 1024, "image/png")}

    resp = await client.post("/api/prepare-image", files=files)

    assert resp.status_code == 413
    assert resp.json() == {"detail": "Request body too large"}


async def test_prepare_image_rejects_too_many_pixels(client, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    files = {"image": ("huge.png", png_bytes((64, 64)), "image/png")}

    resp = await client.post("/api/prepare-image", files=files)

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Invalid image file"}
