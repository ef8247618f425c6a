"""
Shared pytest fixtures for the schedule converter test suite.
"""

import io
from datetime import datetime
from typing import Any, Dict, List

import pytest
from PIL import Image

from src.event_models import Event
from src.image_llm_client import ImageLLMClient


class FakeImageLLMClient(ImageLLMClient):
    """
    Client that maps image bytes to canned payloads.

    A payload that is an Exception instance is raised instead of returned.
    """

    def __init__(self, responses: Dict[bytes, Any]):
        self.responses = responses
        self.calls: List[bytes] = []

    def extract_events(self, image_bytes: bytes, mime_type: str) -> Any:
        self.calls.append(image_bytes)
        response = self.responses.get(image_bytes)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_client():
    """Return a factory for FakeImageLLMClient instances."""
    return FakeImageLLMClient


@pytest.fixture
def create_event():
    """
    Return a function that creates Event objects with sensible defaults.

    Example:
        event = create_event(title="Close", start=datetime(2026, 1, 10, 15))
    """

    def _create_event(
        start: datetime = datetime(2026, 1, 10, 15, 0, 0),
        end: datetime = datetime(2026, 1, 10, 22, 0, 0),
        title: str = "Coverage",
        **kwargs,
    ) -> Event:
        return Event(start=start, end=end, title=title, **kwargs)

    return _create_event


@pytest.fixture
def png_bytes():
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (32, 16), color=(255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def bmp_bytes():
    """A small valid BMP image (not accepted by the API without re-encoding)."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(0, 0, 0)).save(buffer, format="BMP")
    return buffer.getvalue()
