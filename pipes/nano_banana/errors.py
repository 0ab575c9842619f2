"""Exception taxonomy for the Nano Banana pipe.

Every error is scoped to a single work item and carries its ``item_index``.
None of them are fatal to the process; the orchestrator decides whether a
failure becomes an ``{"error": ...}`` result or aborts the run.
"""

import json
from typing import Any, List, Optional

PREVIEW_LENGTH = 50


def preview_value(value: Any, limit: int = PREVIEW_LENGTH) -> str:
    """Return the first ``limit`` characters of a value for error messages."""
    text = str(value)
    return text if len(text) <= limit else f"{text[:limit]}..."


class NanoBananaError(Exception):
    """Base class for item-scoped pipeline failures."""

    def __init__(self, message: str, item_index: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.item_index = item_index

    def __str__(self) -> str:
        return self.message


class InvalidAuth(NanoBananaError):
    """Credential pre-check failed (missing API key or wrong auth code)."""


class InvalidParameter(NanoBananaError):
    """A per-item parameter is missing or outside its allowed values."""


class TooManyReferenceImages(NanoBananaError):
    def __init__(self, model: str, limit: int, count: int, item_index: Optional[int] = None):
        super().__init__(
            f"Model {model} supports maximum {limit} reference images, but {count} were provided.",
            item_index=item_index,
        )
        self.model = model
        self.limit = limit
        self.count = count


class ReferenceImageError(NanoBananaError):
    """A single reference image entry could not be resolved.

    ``locate`` attaches the 1-based entry position and a preview of the raw
    value; the message is rebuilt so both show up in ``str(exc)``.
    """

    def __init__(self, detail: str, item_index: Optional[int] = None):
        super().__init__(detail, item_index=item_index)
        self.detail = detail
        self.position: Optional[int] = None
        self.preview: Optional[str] = None

    def locate(self, position: int, value: Any) -> "ReferenceImageError":
        self.position = position
        self.preview = preview_value(value)
        self.message = f"Reference image #{position} ({self.preview}): {self.detail}"
        return self


class InvalidReferenceImage(ReferenceImageError):
    pass


class ReferenceImageFetchFailed(ReferenceImageError):
    def __init__(self, url: str, reason: str, item_index: Optional[int] = None):
        super().__init__(
            f"Failed to process reference image URL: {url}. Reason: {reason}",
            item_index=item_index,
        )
        self.url = url
        self.reason = reason


class BinaryFieldNotFound(ReferenceImageError):
    def __init__(self, field: str, available: List[str], item_index: Optional[int] = None):
        listed = ", ".join(available) if available else "none"
        super().__init__(
            f"Binary field '{field}' not found on the input item. Available fields: {listed}",
            item_index=item_index,
        )
        self.field = field
        self.available = list(available)


class UpstreamProtocolError(NanoBananaError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        item_index: Optional[int] = None,
    ):
        super().__init__(message, item_index=item_index)
        self.status_code = status_code


class NoImagesExtracted(NanoBananaError):
    def __init__(self, raw_response: Any, item_index: Optional[int] = None):
        super().__init__(
            "No images could be extracted from the API response. "
            f"Raw response: {json.dumps(raw_response, ensure_ascii=False, default=str)}",
            item_index=item_index,
        )
        self.raw_response = raw_response


class ImageDownloadFailed(NanoBananaError):
    def __init__(self, url: str, reason: str, item_index: Optional[int] = None):
        super().__init__(
            f"Failed to download image from URL: {url}. Reason: {reason}",
            item_index=item_index,
        )
        self.url = url
        self.reason = reason
