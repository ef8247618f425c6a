"""
Conversion pipeline: uploaded schedule images in, one ICS document out.

Images are extracted concurrently; a failing image is recorded and never
cancels the others. Results are merged in upload order, optionally repeated
weekly, and serialized.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from src.errors import ExtractionError, ExtractionFailedError, InvalidRequestError
from src.event_models import Event
from src.event_normalizer import MAX_REPEAT_WEEKS, expand_weekly, merge_events, normalize_payload
from src.ics_generator import ICS_CONTENT_TYPE, ICS_FILENAME, SUPPORTED_FORMATS, generate_ics
from src.image_llm_client import ImageLLMClient
from src.logging_helper import Log

DEFAULT_REPEAT_WEEKS = 4

NO_EVENTS_MESSAGE = (
    "No schedule events found in any of the images. "
    "Please ensure the images are clear and contain readable work schedules."
)


@dataclass
class ImageUpload:
    """One uploaded image."""
    filename: str
    data: bytes
    mime_type: str = "image/png"


@dataclass
class ConversionRequest:
    images: List[ImageUpload]
    format: Optional[str]
    repeat_weekly: bool = False
    repeat_weeks: int = DEFAULT_REPEAT_WEEKS

    def validate(self) -> None:
        """
        Reject malformed requests before any extraction starts.

        Raises:
            InvalidRequestError: no images, unknown format, or weeks out of range
        """
        if not self.images:
            raise InvalidRequestError("No images provided")
        if self.format not in SUPPORTED_FORMATS:
            raise InvalidRequestError('Invalid format. Must be "outlook" or "apple"')
        if self.repeat_weekly and not 1 <= self.repeat_weeks <= MAX_REPEAT_WEEKS:
            raise InvalidRequestError(f"repeatWeeks must be between 1 and {MAX_REPEAT_WEEKS}")


@dataclass
class ConversionResult:
    ics: str
    events: List[Event]
    errors: List[str] = field(default_factory=list)
    filename: str = ICS_FILENAME
    content_type: str = ICS_CONTENT_TYPE


def _extract_image(client: ImageLLMClient, index: int, image: ImageUpload) -> Tuple[List[Event], Optional[str]]:
    """Run one image through the client and normalizer. Returns (events, error message)."""
    label = f"Image {index + 1}"
    try:
        payload = client.extract_events(image.data, image.mime_type)
        events = normalize_payload(payload)
    except ExtractionError as e:
        Log.error(f"Error processing {label} ({image.filename}): {e}")
        return [], f"{label}: {e}"
    except Exception as e:
        Log.error(f"Unexpected error processing {label} ({image.filename}): {e!r}")
        return [], f"{label}: {str(e) or 'Unknown error'}"

    if not events:
        Log.warn(f"No usable events in {label} ({image.filename})")
    Log.kv({"stage": "convert", "image": index + 1, "events": len(events)})
    return events, None


def extract_all(client: ImageLLMClient, images: List[ImageUpload], max_workers: int = 4) -> Tuple[List[List[Event]], List[str]]:
    """
    Extract every image concurrently.

    Returns:
        (per-image event lists in upload order, error messages in upload order)
    """
    workers = max(1, min(max_workers, len(images)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as pool:
        futures = [
            pool.submit(_extract_image, client, index, image)
            for index, image in enumerate(images)
        ]
        outcomes = [future.result() for future in futures]

    batches = [events for events, _ in outcomes]
    errors = [error for _, error in outcomes if error is not None]
    return batches, errors


def convert(request: ConversionRequest, client: ImageLLMClient, max_workers: int = 4) -> ConversionResult:
    """
    Convert schedule images into a single ICS document.

    Raises:
        InvalidRequestError: if the request is malformed
        ExtractionFailedError: if no image produced any event
    """
    Log.section("Convert")
    request.validate()
    Log.kv({
        "stage": "convert",
        "images": len(request.images),
        "format": request.format,
        "repeat_weeks": request.repeat_weeks if request.repeat_weekly else 0
    })

    batches, errors = extract_all(client, request.images, max_workers)
    events = merge_events(batches)

    if not events:
        if errors:
            message = f"Failed to extract events from images. {' '.join(errors)}"
        else:
            message = NO_EVENTS_MESSAGE
        Log.kv({"stage": "convert", "result": "failed", "errors": len(errors)})
        raise ExtractionFailedError(message, errors)

    if request.repeat_weekly:
        events = expand_weekly(events, request.repeat_weeks)

    ics = generate_ics(events, request.format)
    Log.kv({"stage": "convert", "result": "success", "events": len(events), "errors": len(errors)})
    return ConversionResult(ics=ics, events=events, errors=errors)
