"""
Image LLM Client interface for extracting schedule events from images.
Supports StubImageLLMClient (offline) and OpenAIImageLLMClient (real provider).
"""

import base64
import io
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple
from PIL import Image, UnidentifiedImageError
import requests

from src.errors import ConfigurationError, ExtractionError
from src.logging_helper import Log
from src.settings_manager import SettingsSchema

# Maximum image size in bytes (20MB - OpenAI's limit)
MAX_IMAGE_SIZE = 20 * 1024 * 1024
# Maximum image dimensions (prevent extremely large images)
MAX_IMAGE_DIMENSION = 10000
# Formats the vision API accepts without re-encoding
PASSTHROUGH_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"

EXTRACTION_PROMPT = """Analyze this work schedule image and extract all scheduled shifts/events. Return a JSON object with an "events" array containing events in this exact format:

{
  "events": [
    {
      "start": "ISO 8601 datetime string (e.g., 2026-01-10T15:00:00)",
      "end": "ISO 8601 datetime string (e.g., 2026-01-10T22:00:00)",
      "title": "Event title (e.g., Coverage, Task, or Work Schedule)",
      "description": "Optional description (e.g., hours worked)",
      "location": "Optional location"
    }
  ]
}

Important:
- Parse dates carefully. If only month/day is shown, infer the year from context (current year or next year if dates appear to be in the future).
- Extract times in 12-hour or 24-hour format and convert to ISO 8601 datetime strings.
- Give the times exactly as displayed in the schedule, without any timezone offset or "Z" suffix.
- Include all work shifts, time-off requests, and scheduled events.
- For time-off or approved requests, set appropriate start/end times.
- Return ONLY valid JSON in the format above, no markdown, no code blocks, just the JSON object."""

_CODE_FENCE_RE = re.compile(r'```(?:json)?\s*(\{[\s\S]*\}|\[[\s\S]*\])\s*```')


def parse_model_json(content: Optional[str]) -> Any:
    """
    Parse the JSON body of a model reply, tolerating a Markdown code fence.

    Raises:
        ExtractionError: if the reply is empty or not valid JSON
    """
    if not content or not content.strip():
        raise ExtractionError("No response from AI model")

    match = _CODE_FENCE_RE.search(content)
    json_text = match.group(1) if match else content.strip()
    try:
        return json.loads(json_text)
    except json.JSONDecodeError as e:
        Log.warn(f"Could not parse JSON from response: {content[:100]}")
        Log.kv({"stage": "llm", "result": "failed", "reason": "json_parse_error", "error": str(e)})
        raise ExtractionError("Failed to parse AI response") from e


class ImageLLMClient(ABC):
    """Abstract base class for image LLM clients."""

    @abstractmethod
    def extract_events(self, image_bytes: bytes, mime_type: str) -> Any:
        """
        Extract schedule events from an image using an LLM.

        Args:
            image_bytes: Raw uploaded image
            mime_type: MIME type reported by the upload

        Returns:
            Parsed JSON value from the model (normally {"events": [...]})

        Raises:
            ExtractionError: if the image or the model reply cannot be used
        """


class StubImageLLMClient(ImageLLMClient):
    """
    Stub LLM client for offline testing.
    Returns a hardcoded schedule in the same shape the real API produces.
    """

    def extract_events(self, image_bytes: bytes, mime_type: str) -> Any:
        Log.section("Stub LLM Client")
        Log.info("Using stub LLM client (offline mode)")

        stub_response_content = json.dumps({
            "events": [
                {
                    "start": "2026-01-10T15:00:00",
                    "end": "2026-01-10T22:00:00",
                    "title": "Coverage",
                    "description": "7 hours",
                    "location": ""
                },
                {
                    "start": "2026-01-11T09:00:00",
                    "end": "2026-01-11T17:00:00",
                    "title": "Shift",
                    "description": "",
                    "location": "Store 12"
                }
            ]
        })
        payload = parse_model_json(stub_response_content)
        Log.kv({"stage": "llm", "provider": "stub", "result": "success", "records": len(payload["events"])})
        return payload


class OpenAIImageLLMClient(ImageLLMClient):
    """
    OpenAI Vision API client for real schedule extraction.
    """

    def __init__(self, api_key: str, model: str = "gpt-4o", timeout: float = 60.0):
        """
        Initialize OpenAI client.

        Args:
            api_key: OpenAI API key
            model: Vision-capable chat model
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.api_url = OPENAI_API_URL
        self.model = model
        self.timeout = timeout

    def _load_image(self, image_bytes: bytes) -> Image.Image:
        """
        Open and validate the uploaded image.

        Raises:
            ExtractionError: if the bytes are not a usable image
        """
        if not image_bytes:
            raise ExtractionError("Image is empty")
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            Log.error(f"Image appears corrupted: {e}")
            Log.kv({"stage": "llm", "error": "image_validation_failed", "details": str(e)})
            raise ExtractionError("Unsupported or corrupted image") from e

        width, height = image.size
        if width == 0 or height == 0:
            raise ExtractionError(f"Invalid image dimensions: {width}x{height}")
        if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
            Log.warn(f"Image too large: {width}x{height}, may need resizing")
        return image

    def _encode_image(self, image_bytes: bytes, mime_type: str) -> Tuple[str, str]:
        """
        Base64-encode the image for a data URL, re-encoding to JPEG when needed.

        Returns:
            (mime_type, base64 string)
        """
        image = self._load_image(image_bytes)

        passthrough_mime = PASSTHROUGH_FORMATS.get(image.format or "")
        if passthrough_mime and len(image_bytes) <= MAX_IMAGE_SIZE:
            return passthrough_mime, base64.b64encode(image_bytes).decode('utf-8')

        Log.info(f"Re-encoding {image.format or mime_type} image as JPEG")
        # Convert to RGB if necessary (removes transparency)
        if image.mode != 'RGB':
            image = image.convert('RGB')

        for quality in (85, 60):
            buffer = io.BytesIO()
            image.save(buffer, format='JPEG', quality=quality, optimize=True)
            jpeg_bytes = buffer.getvalue()
            if len(jpeg_bytes) <= MAX_IMAGE_SIZE:
                return "image/jpeg", base64.b64encode(jpeg_bytes).decode('utf-8')
            Log.warn(f"Image size {len(jpeg_bytes)} bytes exceeds limit at quality {quality}")

        raise ExtractionError("Image too large even after compression")

    def _build_payload(self, mime_type: str, base64_image: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": EXTRACTION_PROMPT
                        },
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{mime_type};base64,{base64_image}"
                            }
                        }
                    ]
                }
            ],
            "temperature": 0.1
        }

    def extract_events(self, image_bytes: bytes, mime_type: str) -> Any:
        """
        Extract events using the OpenAI chat completions API.
        """
        Log.section("OpenAI LLM Client")
        Log.info(f"Using OpenAI Vision API ({self.model})")

        encoded_mime, base64_image = self._encode_image(image_bytes, mime_type or "image/png")
        Log.kv({"stage": "llm", "image_base64_length": len(base64_image), "mime_type": encoded_mime})

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            Log.info("Calling OpenAI Vision API...")
            response = requests.post(
                self.api_url,
                headers=headers,
                json=self._build_payload(encoded_mime, base64_image),
                timeout=self.timeout
            )
            Log.info(f"API response status: {response.status_code}")

            if response.status_code != 200:
                try:
                    error_data = response.json()
                    Log.error(f"OpenAI API error: {error_data}")
                except ValueError:
                    Log.error(f"OpenAI API error (non-JSON): {response.text[:500]}")

            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            Log.error(f"OpenAI API request failed: {e}")
            Log.kv({"stage": "llm", "provider": "openai", "result": "failed", "reason": "api_error", "error": str(e)})
            raise ExtractionError(f"AI request failed: {e}") from e
        except ValueError as e:
            Log.kv({"stage": "llm", "provider": "openai", "result": "failed", "reason": "invalid_api_json"})
            raise ExtractionError("No response from AI model") from e

        content = None
        choices = result.get('choices') if isinstance(result, dict) else None
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get('message') or {}).get('content')
        payload = parse_model_json(content)

        Log.kv({"stage": "llm", "provider": "openai", "result": "success", "payload_type": type(payload).__name__})
        return payload


def get_llm_client(settings: SettingsSchema) -> ImageLLMClient:
    """
    Factory function to get the appropriate LLM client.

    Uses the stub client when use_stub is set, the OpenAI client when an API
    key is configured.

    Raises:
        ConfigurationError: if no API key is configured and the stub is not forced
    """
    if settings.get("use_stub"):
        Log.info("USE_STUB flag set - using stub client")
        return StubImageLLMClient()

    api_key = settings.get("openai_api_key")
    if not api_key:
        raise ConfigurationError(
            "OpenAI API key is not configured. Please set OPENAI_API_KEY environment variable."
        )

    Log.info("API key found - using OpenAI client")
    return OpenAIImageLLMClient(
        api_key,
        model=settings.get("openai_model", "gpt-4o"),
        timeout=settings.get("openai_timeout", 60.0)
    )
