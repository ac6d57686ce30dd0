"""Shared fixtures: ASGI test client and a fake google-genai client.

The fake replaces ``gemini_image.create_client`` so no request ever leaves
the process; tests configure ``fake_genai.aio.models`` return values.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

import gemini_image
from paint_server import app
from tests.fakes import gemini_response, imagen_image, imagen_response, inline_part

ENV_VARS = ("GOOGLE_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_IMAGE_MODEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_genai(monkeypatch):
    fake = MagicMock()
    fake.aio.models.generate_content = AsyncMock(
        return_value=gemini_response([inline_part(b"fake-png")])
    )
    fake.aio.models.generate_images = AsyncMock(
        return_value=imagen_response(imagen_image(b"fake-imagen", mime_type="image/jpeg"))
    )
    fake.factory = MagicMock(return_value=fake)
    monkeypatch.setattr(gemini_image, "create_client", fake.factory)
    return fake


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
