"""
Exception types shared by the extraction client, the converter and the HTTP app.
"""

from typing import List, Optional


class ScheduleICSError(Exception):
    """Base class for errors surfaced to the caller of a conversion."""
    status_code = 500


class InvalidRequestError(ScheduleICSError):
    """The request was rejected before any image was processed."""
    status_code = 400


class ConfigurationError(ScheduleICSError):
    """The service is missing something it needs, such as an API key."""
    status_code = 500


class ExtractionError(ScheduleICSError):
    """A single image could not be turned into a list of event records."""


class ExtractionFailedError(ScheduleICSError):
    """No usable events came out of any of the images."""
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])
