"""Reference image ingestion.

Entries arrive as URLs, data URIs, raw base64 or names of binary fields on the
work item. Each is classified in that priority order and resolved into a
:class:`CanonicalImage`.
"""

import base64
import io
import logging
import re
from typing import Any, List, Optional, Sequence, Tuple

import httpx
from PIL import Image

from .attachments import WorkItem
from .errors import (
    BinaryFieldNotFound,
    InvalidReferenceImage,
    ReferenceImageError,
    ReferenceImageFetchFailed,
    TooManyReferenceImages,
)
from .models import DEFAULT_MIME_TYPE, CanonicalImage, max_images

logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())

DATA_URI_PATTERN = re.compile(r"^data:([^;,]*);base64,(.*)$", re.DOTALL)
RAW_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/=\s]+$")
RAW_BASE64_MIN_LENGTH = 100


def split_reference_input(raw_input: Any, delimiters: str = "|\n") -> List[str]:
    """Turn the reference images field into a list of trimmed, non-empty entries."""
    if raw_input is None:
        return []
    if isinstance(raw_input, (list, tuple)):
        entries = [str(item).strip() for item in raw_input if item is not None]
        return [entry for entry in entries if entry]
    text = str(raw_input)
    if delimiters:
        pattern = "|".join(re.escape(ch) for ch in delimiters)
        segments = re.split(pattern, text)
    else:
        segments = [text]
    return [segment.strip() for segment in segments if segment.strip()]


def normalise_mime(value: Optional[str]) -> str:
    mime = (value or "").split(";")[0].strip().lower()
    if mime == "image/jpg":
        mime = "image/jpeg"
    return mime


def image_dimensions(image_data: str) -> Tuple[Optional[int], Optional[int]]:
    """Extract dimensions from base64 image data."""
    try:
        image_bytes = base64.b64decode(image_data)
        with Image.open(io.BytesIO(image_bytes)) as img:
            return img.size
    except Exception as e:
        logger.debug(f"Failed to extract image dimensions: {e}")
        return None, None


def describe_images(images: Sequence[CanonicalImage]) -> str:
    """One-line summary like ``#1:1024x1024 image/png`` used in logs."""
    labels = []
    for position, image in enumerate(images, start=1):
        width, height = image_dimensions(image.data)
        size_label = f"{width}x{height}" if width and height else "unknown"
        labels.append(f"#{position}:{size_label} {image.mime_type}")
    return ", ".join(labels)


class ReferenceImageResolver:
    def __init__(self, client: httpx.AsyncClient, delimiters: str = "|\n"):
        self.client = client
        self.delimiters = delimiters

    async def resolve(self, raw_input: Any, item: WorkItem, model: str) -> List[CanonicalImage]:
        """Resolve every entry, then enforce the model's reference image limit."""
        entries = split_reference_input(raw_input, self.delimiters)
        images: List[CanonicalImage] = []
        for position, entry in enumerate(entries, start=1):
            try:
                images.append(await self.resolve_entry(entry, item))
            except ReferenceImageError as exc:
                exc.item_index = item.index
                raise exc.locate(position, entry)

        limit = max_images(model)
        if len(images) > limit:
            raise TooManyReferenceImages(model, limit, len(images), item_index=item.index)

        # Decoding for dimensions is skipped unless INFO is on
        if images and logger.isEnabledFor(logging.INFO):
            logger.info("Reference images resolved (%s total): %s", len(images), describe_images(images))
        return images

    async def resolve_entry(self, entry: str, item: WorkItem) -> CanonicalImage:
        if entry.startswith("data:"):
            return self._from_data_uri(entry)
        if entry.lower().startswith(("http://", "https://")):
            return await self._fetch_remote_image(entry)
        if RAW_BASE64_PATTERN.match(entry):
            compact = re.sub(r"\s", "", entry)
            if len(compact) > RAW_BASE64_MIN_LENGTH:
                return CanonicalImage(mime_type=DEFAULT_MIME_TYPE, data=compact)
        return self._from_binary_field(entry, item)

    @staticmethod
    def _from_data_uri(entry: str) -> CanonicalImage:
        match = DATA_URI_PATTERN.match(entry)
        if not match or not match.group(2):
            raise InvalidReferenceImage("Malformed data URI, expected data:<mime>;base64,<payload>")
        mime_type = match.group(1).strip().lower()
        if not mime_type.startswith("image/"):
            raise InvalidReferenceImage(f"Unsupported mime type '{mime_type}', expected image/*")
        return CanonicalImage(mime_type=mime_type, data=match.group(2))

    async def _fetch_remote_image(self, url: str) -> CanonicalImage:
        """Download a remote reference image and base64 encode its body."""
        try:
            response = await self.client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ReferenceImageFetchFailed(
                url, f"HTTP {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise ReferenceImageFetchFailed(url, str(e) or type(e).__name__) from e
        mime_type = normalise_mime(response.headers.get("content-type"))
        if not mime_type.startswith("image/"):
            raise InvalidReferenceImage(
                f"URL {url} returned content type '{mime_type or 'unknown'}', expected image/*"
            )
        data = base64.b64encode(response.content).decode("utf-8")
        return CanonicalImage(mime_type=mime_type, data=data)

    @staticmethod
    def _from_binary_field(name: str, item: WorkItem) -> CanonicalImage:
        attachment = item.binary.get(name)
        if attachment is None:
            raise BinaryFieldNotFound(name, sorted(item.binary.keys()))
        mime_type = normalise_mime(attachment.mime_type)
        if not mime_type.startswith("image/"):
            raise InvalidReferenceImage(
                f"Binary field '{name}' has mime type '{mime_type or 'unknown'}', expected image/*"
            )
        return CanonicalImage(mime_type=mime_type, data=attachment.to_base64())
