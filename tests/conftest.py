"""Shared pytest fixtures for Nano Banana tests."""

import base64
import io
from typing import Callable

import httpx
import pytest
from PIL import Image

from nano_banana.config import Valves


@pytest.fixture
def png_bytes() -> bytes:
    """A small real PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 4), color=(255, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_b64(png_bytes: bytes) -> str:
    return base64.b64encode(png_bytes).decode("utf-8")


@pytest.fixture
def long_b64() -> str:
    """Base64-looking text comfortably above the 100 character heuristic."""
    return base64.b64encode(bytes(range(256))).decode("utf-8")


@pytest.fixture
def mock_client() -> Callable[..., httpx.AsyncClient]:
    """Factory for AsyncClients whose requests are answered by ``handler``.

    Create the client inside the coroutine under test and use it as an async
    context manager.
    """

    def _factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _factory


@pytest.fixture
def valves() -> Valves:
    return Valves(API_KEY="test-key")
