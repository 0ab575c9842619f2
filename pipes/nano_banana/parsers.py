"""Extraction of generated images from upstream responses.

The native API returns structured candidates with inline image parts. The
OpenAI-compatible API only returns message text, which is mined with an
ordered cascade of extractors; the first extractor that finds anything wins
and the remaining ones never run.
"""

import logging
import re
from typing import Any, Callable, List, Sequence, Tuple

from .models import (
    DEFAULT_MIME_TYPE,
    CompatResponse,
    ExtractedImage,
    NativeResponse,
    ParseResult,
    UpstreamResponse,
)

logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())

MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[[^\]]*\]\(\s*([^)]+?)\s*\)")
DATA_URI_TARGET_PATTERN = re.compile(r"^data:(image/[A-Za-z0-9.+-]+);base64,([A-Za-z0-9+/=\s]+)$", re.IGNORECASE)
DATA_URI_HEADER_PATTERN = re.compile(r"data:(image/[A-Za-z0-9.+-]+);base64,", re.IGNORECASE)
BASE64_RUN_PATTERN = re.compile(r"[A-Za-z0-9+/]*={0,2}")
# Space separated groups on one line are a single payload only when padding closes them
SPACED_BASE64_PATTERN = re.compile(r"[A-Za-z0-9+/]+(?:[ \t]+[A-Za-z0-9+/]+)*[ \t]*={1,2}")
BARE_URL_PATTERN = re.compile(r"https?://[^\s)]+")
RAW_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/=]+$")
RAW_BASE64_MIN_LENGTH = 100
URL_TRAILING_PUNCTUATION = ")]\"'>.,;!*`"

Extractor = Callable[[str], List[ExtractedImage]]


def _strip_whitespace(value: str) -> str:
    return re.sub(r"\s", "", value)


def _normalise_message_content(value: Any) -> str:
    """Best-effort conversion of chat message content to a string."""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, dict):
                if item.get("type") == "text":
                    parts.append(str(item.get("text", "")))
                elif item.get("type") == "image_url":
                    url = (item.get("image_url") or {}).get("url")
                    if url:
                        parts.append(f"![image]({url})")
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return ""


def extract_markdown_images(content: str) -> List[ExtractedImage]:
    images: List[ExtractedImage] = []
    for match in MARKDOWN_IMAGE_PATTERN.finditer(content):
        target = match.group(1).strip()
        data_uri = DATA_URI_TARGET_PATTERN.match(target)
        if data_uri:
            images.append(
                ExtractedImage(
                    kind="base64",
                    mime_type=data_uri.group(1).lower(),
                    data=_strip_whitespace(data_uri.group(2)),
                )
            )
            continue
        # Drop an optional markdown title: ![alt](url "title")
        url = target.split()[0] if target else ""
        if url.lower().startswith(("http://", "https://")):
            images.append(ExtractedImage(kind="url", data=url, mime_type=DEFAULT_MIME_TYPE))
    return images


def _read_data_uri_payload(text: str) -> str:
    """Base64 payload following a data URI header.

    A payload that fills its line may continue on the following lines, one
    whitespace-free run per line, until a run ends in padding or a line holds
    anything else. Padding may sit on a line of its own.
    """
    lines = text.splitlines()
    if not lines:
        return ""
    first = lines[0]
    spaced = SPACED_BASE64_PATTERN.match(first)
    if spaced:
        return _strip_whitespace(spaced.group(0))

    run = BASE64_RUN_PATTERN.match(first).group(0)
    if not run or run != first.rstrip():
        if run:
            logger.info("Data URI payload ends at %s characters; rest of the line ignored", len(run))
        return run

    parts = [run]
    for line in lines[1:]:
        if parts[-1].endswith("="):
            break
        stripped = line.strip()
        if not stripped or not BASE64_RUN_PATTERN.fullmatch(stripped):
            break
        parts.append(stripped)
    return "".join(parts)


def extract_data_uri(content: str) -> List[ExtractedImage]:
    match = DATA_URI_HEADER_PATTERN.search(content)
    if not match:
        return []
    payload = _read_data_uri_payload(content[match.end():])
    if not payload:
        return []
    return [ExtractedImage(kind="base64", mime_type=match.group(1).lower(), data=payload)]


def extract_urls(content: str) -> List[ExtractedImage]:
    images: List[ExtractedImage] = []
    for url in BARE_URL_PATTERN.findall(content):
        clean_url = url.rstrip(URL_TRAILING_PUNCTUATION)
        if clean_url:
            images.append(ExtractedImage(kind="url", data=clean_url, mime_type=DEFAULT_MIME_TYPE))
    return images


def extract_raw_base64(content: str) -> List[ExtractedImage]:
    compact = _strip_whitespace(content)
    if len(compact) > RAW_BASE64_MIN_LENGTH and RAW_BASE64_PATTERN.match(compact):
        return [ExtractedImage(kind="base64", data=compact, mime_type=DEFAULT_MIME_TYPE)]
    return []


EXTRACTION_CASCADE: Sequence[Tuple[str, Extractor]] = (
    ("markdown", extract_markdown_images),
    ("data_uri", extract_data_uri),
    ("url", extract_urls),
    ("raw_base64", extract_raw_base64),
)


def extract_from_content(content: str) -> List[ExtractedImage]:
    """Run the extraction cascade, stopping at the first stage with results."""
    for stage, extractor in EXTRACTION_CASCADE:
        images = extractor(content)
        if images:
            logger.info("Extracted %s image(s) from message content via %s", len(images), stage)
            return images
    return []


def parse_native_response(body: Any) -> ParseResult:
    result = ParseResult()
    if not isinstance(body, dict):
        return result
    candidates = body.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return result
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text_parts: List[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        if part.get("text"):
            text_parts.append(str(part["text"]))
        inline = part.get("inlineData") or part.get("inline_data")
        if isinstance(inline, dict) and inline.get("data"):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or DEFAULT_MIME_TYPE
            result.images.append(ExtractedImage(kind="base64", data=inline["data"], mime_type=mime_type))
    result.text = "".join(text_parts)
    return result


def parse_compat_response(body: Any) -> ParseResult:
    if not isinstance(body, dict):
        return ParseResult()
    choices = body.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ParseResult()
    message = choices[0].get("message") or {}
    content = _normalise_message_content(message.get("content") if isinstance(message, dict) else None)
    if not content:
        return ParseResult()
    return ParseResult(images=extract_from_content(content), text=content)


def parse_response(response: UpstreamResponse) -> ParseResult:
    if isinstance(response, NativeResponse):
        return parse_native_response(response.body)
    if isinstance(response, CompatResponse):
        return parse_compat_response(response.body)
    raise TypeError(f"Unsupported upstream response type: {type(response).__name__}")
