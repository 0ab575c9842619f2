"""Projection of extracted images into the caller's output encoding."""

import base64
import binascii
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from .attachments import AttachmentRegistrar, BinaryAttachment, prepare_binary_data
from .errors import ImageDownloadFailed
from .models import (
    ExtractedImage,
    MaterializedImage,
    ParseResult,
    ProjectedImage,
    ProjectedResult,
    SkippedImage,
)

logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


class DownloadError(Exception):
    """Raised internally when a url-kind image cannot be fetched."""


def binary_key(base_name: str, index: int) -> str:
    return base_name if index == 0 else f"{base_name}_{index}"


def binary_file_name(index: int, total: int, custom_name: Optional[str] = None) -> str:
    """File name for the ``index``-th attachment.

    Without a custom name files are ``image_<index>.png``. A custom name follows
    the attachment keys: the first image uses it verbatim and later ones get
    ``_<index>`` before the extension.
    """
    if not custom_name:
        return f"image_{index}.png"
    if total <= 1 or index == 0:
        return custom_name
    stem, ext = os.path.splitext(custom_name)
    return f"{stem}_{index}{ext}"


def pack_values(json_data: Dict[str, Any], field: str, values: List[str]) -> Dict[str, Any]:
    """Assign nothing, a bare value or a list depending on how many values exist."""
    if len(values) == 1:
        json_data[field] = values[0]
    elif len(values) > 1:
        json_data[field] = list(values)
    return json_data


class OutputProjector:
    def __init__(
        self,
        client: httpx.AsyncClient,
        register_attachment: Optional[AttachmentRegistrar] = None,
    ):
        self.client = client
        self.register_attachment = register_attachment or prepare_binary_data

    async def _download(self, url: str) -> bytes:
        try:
            response = await self.client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DownloadError(f"HTTP {e.response.status_code} {e.response.reason_phrase}") from e
        except httpx.HTTPError as e:
            raise DownloadError(str(e) or type(e).__name__) from e
        return response.content

    async def _image_bytes(self, image: ExtractedImage) -> bytes:
        if image.kind == "base64":
            try:
                return base64.b64decode(image.data)
            except (binascii.Error, ValueError) as e:
                raise DownloadError(f"invalid base64 payload: {e}") from e
        return await self._download(image.data)

    async def _image_base64(self, index: int, image: ExtractedImage) -> ProjectedImage:
        """Base64 payload of an image; a failed re-fetch becomes a skipped entry."""
        if image.kind == "base64":
            return MaterializedImage(index=index, value=image.data, mime_type=image.mime_type)
        try:
            content = await self._download(image.data)
        except DownloadError as e:
            logger.warning("Skipping image %s, download of %s failed: %s", index, image.data, e)
            return SkippedImage(index=index, reason=f"download failed: {e}")
        return MaterializedImage(
            index=index,
            value=base64.b64encode(content).decode("utf-8"),
            mime_type=image.mime_type,
        )

    async def project(
        self,
        parsed: ParseResult,
        raw_response: Any,
        encoding: str,
        output_property_name: str = "data",
        file_name: Optional[str] = None,
        item_index: Optional[int] = None,
    ) -> ProjectedResult:
        if encoding == "raw":
            return ProjectedResult(json_data=raw_response if isinstance(raw_response, dict) else {"data": raw_response})
        if encoding == "binary":
            return await self._project_binary(parsed.images, output_property_name, file_name, item_index)

        projected: List[ProjectedImage] = []
        if encoding == "url":
            for index, image in enumerate(parsed.images):
                if image.kind == "url":
                    projected.append(MaterializedImage(index=index, value=image.data, mime_type=image.mime_type))
                else:
                    projected.append(SkippedImage(index=index, reason="base64 image has no URL and cannot be uploaded"))
        elif encoding in ("base64", "dataUrl"):
            for index, image in enumerate(parsed.images):
                projected.append(await self._image_base64(index, image))
        else:
            raise ValueError(f"Unsupported output format: {encoding}")

        values: List[str] = []
        skipped: List[SkippedImage] = []
        for entry in projected:
            if isinstance(entry, SkippedImage):
                skipped.append(entry)
            elif encoding == "dataUrl":
                values.append(f"data:{entry.mime_type};base64,{entry.value}")
            else:
                values.append(entry.value)

        if encoding == "url" and not values and parsed.text:
            values.append(parsed.text)

        json_data: Dict[str, Any] = {"success": True, "count": parsed.count}
        pack_values(json_data, output_property_name, values)
        return ProjectedResult(json_data=json_data, skipped=skipped)

    async def _project_binary(
        self,
        images: List[ExtractedImage],
        output_property_name: str,
        file_name: Optional[str],
        item_index: Optional[int],
    ) -> ProjectedResult:
        binaries: Dict[str, BinaryAttachment] = {}
        for index, image in enumerate(images):
            try:
                content = await self._image_bytes(image)
            except DownloadError as e:
                source = image.data if image.kind == "url" else f"<inline image {index}>"
                raise ImageDownloadFailed(source, str(e), item_index=item_index) from e
            binaries[binary_key(output_property_name, index)] = await self.register_attachment(
                content,
                binary_file_name(index, len(images), file_name),
                image.mime_type,
            )
        return ProjectedResult(
            json_data={"success": True, "count": len(images)},
            binary=binaries,
        )
