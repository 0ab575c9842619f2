"""
title: Nano Banana (Gemini) Image Generation & Editing Pipe
description: Generate images with Nano Banana / Nano Banana Pro through the official Gemini API or an OpenAI-compatible gateway
id: nano-banana
version: 0.3.0
features:
  - Text-to-image and image-to-image with gemini-2.5-flash-image (up to 3 references) and gemini-3-pro-image-preview (up to 14).
  - Official generateContent API or any OpenAI-compatible chat/completions endpoint.
  - Reference images as URLs, data URIs, raw base64 or Open WebUI file references.
  - Extracts images from markdown, data URIs, bare URLs or raw base64 in chat replies.
  - Output as binary files (uploaded to the WebUI file store), base64, data URLs, URLs or the raw response.
  - Optional batch mode through body["items"], processed sequentially or concurrently.
  - Configurable via valves (connection, API key, base URLs, defaults, failure policy, timeout).
"""

import io
import json
import logging
import re
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from fastapi import BackgroundTasks, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from starlette.datastructures import Headers
from starlette.responses import StreamingResponse

from .attachments import AttachmentRegistrar, BinaryAttachment, WorkItem
from .config import Valves
from .node import NanoBananaNode

logger = logging.getLogger(__name__)
# Avoid 'No handler could be found' warnings; rely on host/root handlers.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())

package_logger = logging.getLogger(__name__.rsplit(".", 1)[0])

# Item JSON keys that may also be passed at the top level of the request body
PARAMETER_KEYS = (
    "operation",
    "model",
    "aspectRatio",
    "resolution",
    "outputFormat",
    "outputPropertyName",
    "throwOnFailure",
    "outputFileName",
)


class Pipe:
    Valves = Valves

    def __init__(self):
        """Configure valves and logging on instantiation."""
        self.valves = self.Valves()
        # Apply logging policy on startup
        self._apply_logging_valve()

    def _apply_logging_valve(self) -> None:
        """Set the package logger level based on ENABLE_LOGGING valve.
        OFF  -> ERROR only
        ON   -> INFO and above
        """
        enabled = bool(getattr(self.valves, "ENABLE_LOGGING", False))
        package_logger.setLevel(logging.INFO if enabled else logging.ERROR)
        # Rely on host/root handlers; do not attach our own to avoid duplicates.
        package_logger.propagate = True

    async def emit_status(
        self,
        message: str,
        done: bool = False,
        show_in_chat: bool = False,
        emitter: Optional[Callable[[dict], Awaitable[None]]] = None,
    ):
        """Emit status updates to the client."""
        if emitter:
            await emitter({"type": "status", "data": {"description": message, "done": done}})
        if show_in_chat:
            return f"**✅ {message}**\n\n" if done else f"**⏳ {message}**\n\n"
        return ""

    async def _get_user_by_id(self, user_id: str) -> Any:
        """Fetch a user record without blocking the async loop."""
        try:
            from open_webui.models.users import Users

            return await run_in_threadpool(Users.get_user_by_id, user_id)
        except Exception as exc:
            logger.error(f"Failed to load user {user_id}: {exc}")
            return None

    async def _get_file_by_id(self, file_id: str):
        """Look up file metadata via the ORM in a threadpool."""
        try:
            from open_webui.models.files import Files

            return await run_in_threadpool(Files.get_file_by_id, file_id)
        except Exception as exc:
            logger.error(f"Failed to load file {file_id}: {exc}")
            return None

    async def _read_file_bytes(self, path: str) -> bytes:
        """Read file contents without blocking the event loop."""

        def _read() -> bytes:
            with open(path, "rb") as f:
                return f.read()

        return await run_in_threadpool(_read)

    async def pipes(self) -> List[dict]:
        """Return the manifest entry consumed by Open WebUI."""
        return [{"id": "nano-banana", "name": "Google: Nano Banana"}]

    def _build_node(self, register_attachment: AttachmentRegistrar) -> NanoBananaNode:
        return NanoBananaNode(self.valves, register_attachment=register_attachment)

    async def pipe(
        self,
        body: dict,
        __user__: dict,
        __request__: Request,
        __event_emitter__: Optional[Callable[[dict], Awaitable[None]]] = None,
    ) -> StreamingResponse:
        """Main entrypoint invoked by Open WebUI for each generation/edit request."""
        # Re-apply in case valves changed at runtime
        self._apply_logging_valve()
        user = await self._get_user_by_id(__user__["id"])
        is_stream = bool(body.get("stream", False))

        async def register_attachment(data: bytes, file_name: str, mime_type: str) -> BinaryAttachment:
            image_url = await self._upload_image(__request__, user, data, file_name, mime_type)
            return BinaryAttachment(data=data, mime_type=mime_type, file_name=file_name, url=image_url)

        async def stream_response():
            """Yield OpenAI-compatible response chunks (streaming or single payload)."""
            try:
                if not user:
                    yield self._format_data(
                        is_stream=is_stream,
                        content="Error: Unable to load user context.",
                        finish_reason="stop",
                    )
                    if is_stream:
                        yield "data: [DONE]\n\n"
                    return
                items = await self._collect_work_items(body)
                await self.emit_status(
                    f"Generating {len(items)} item(s) with {self.valves.MODEL}...",
                    emitter=__event_emitter__,
                )
                node = self._build_node(register_attachment)
                results = await node.execute(items)
                await self.emit_status("Image processing complete!", True, emitter=__event_emitter__)
                content = self._render_results(items, results)
                if is_stream:
                    yield self._format_data(is_stream=True, model=self.valves.MODEL, content=content)
                    yield self._format_data(
                        is_stream=True,
                        model=self.valves.MODEL,
                        content=None,
                        finish_reason="stop",
                    )
                    yield "data: [DONE]\n\n"
                else:
                    yield self._format_data(
                        is_stream=False,
                        model=self.valves.MODEL,
                        content=content,
                        finish_reason="stop",
                    )
            except Exception as e:
                logger.error(f"Error processing request: {str(e)}")
                error_status = await self.emit_status(
                    "An error occurred while processing request", True, True, emitter=__event_emitter__
                )
                yield self._format_data(
                    is_stream=is_stream,
                    content=f"{error_status}Error processing request: {str(e)}",
                    finish_reason="stop",
                )
                if is_stream:
                    yield "data: [DONE]\n\n"

        media_type = "text/event-stream" if is_stream else "application/json"
        return StreamingResponse(stream_response(), media_type=media_type)

    async def _collect_work_items(self, body: dict) -> List[WorkItem]:
        """One item from the latest user message, or one per ``body["items"]`` entry."""
        prompt, references, binaries = await self._collect_prompt_and_images(body.get("messages", []))
        shared = {key: body[key] for key in PARAMETER_KEYS if key in body}

        explicit = body.get("items")
        if isinstance(explicit, list) and explicit:
            items = []
            for index, entry in enumerate(explicit):
                data = dict(shared)
                data.update(entry if isinstance(entry, dict) else {"prompt": str(entry)})
                data.setdefault("prompt", prompt)
                items.append(WorkItem(index=index, json_data=data, binary=binaries))
            return items

        data: Dict[str, Any] = {"prompt": prompt}
        if references:
            data["operation"] = "imageToImage"
            data["referenceImages"] = references
        data.update(shared)
        return [WorkItem(index=0, json_data=data, binary=binaries)]

    async def _collect_prompt_and_images(
        self, messages: List[Dict[str, Any]]
    ) -> Tuple[str, List[str], Dict[str, BinaryAttachment]]:
        """Capture the latest user text plus every image it references.

        Data URIs and remote URLs are passed through as reference entries; WebUI
        file references are loaded as binary attachments keyed by file id.
        """
        references: List[str] = []
        binaries: Dict[str, BinaryAttachment] = {}

        markdown_image_pattern = re.compile(r"!\[[^\]]*\]\(([^)]+)\)")

        async def _ingest_url_source(url: str) -> Optional[str]:
            url = (url or "").strip()
            if not url:
                return None
            if url.startswith("data:"):
                return url
            if "/api/v1/files/" in url or url.startswith("/files/"):
                file_id = (
                    url.split("/api/v1/files/")[-1].split("/")[0].split("?")[0]
                    if "/api/v1/files/" in url
                    else url.split("/files/")[-1].split("/")[0].split("?")[0]
                )
                attachment = await self._load_file_attachment(file_id)
                if attachment is None:
                    return None
                binaries[file_id] = attachment
                return file_id
            if url.lower().startswith(("http://", "https://")):
                return url
            return None

        last_user = next(
            (message for message in reversed(messages) if message.get("role", "user") == "user"),
            None,
        )
        if not last_user:
            return "", references, binaries

        content = last_user.get("content", "")
        text_segments: List[str] = []
        if isinstance(content, list):
            for item in content:
                if item.get("type") == "text":
                    text_segments.append(item.get("text", ""))
                elif item.get("type") == "image_url":
                    reference = await _ingest_url_source(item.get("image_url", {}).get("url", ""))
                    if reference:
                        references.append(reference)
        elif isinstance(content, str):
            text_value = content
            for match in markdown_image_pattern.finditer(content):
                reference = await _ingest_url_source(match.group(1))
                if reference:
                    references.append(reference)
            text_value = markdown_image_pattern.sub("", text_value)
            text_segments.append(text_value)

        prompt = " ".join(segment.strip() for segment in text_segments if segment and segment.strip())
        return prompt, references, binaries

    async def _load_file_attachment(self, file_id: str) -> Optional[BinaryAttachment]:
        file_item = await self._get_file_by_id(file_id)
        if not file_item or not getattr(file_item, "path", None):
            logger.error(f"Failed to fetch file {file_id}: not found")
            return None
        try:
            file_data = await self._read_file_bytes(file_item.path)
        except Exception as exc:
            logger.error(f"Failed to read file {file_id} from disk: {exc}")
            return None
        meta = getattr(file_item, "meta", None) or {}
        return BinaryAttachment(
            data=file_data,
            mime_type=meta.get("content_type", "image/png"),
            file_name=getattr(file_item, "filename", "") or file_id,
        )

    async def _upload_image(
        self, __request__: Request, user: Any, image_data: bytes, file_name: str, mime_type: str
    ) -> str:
        """Upload generated image bytes to the WebUI file store and return its URL."""
        from open_webui.routers.files import upload_file

        try:
            file_item = await run_in_threadpool(
                upload_file,
                request=__request__,
                background_tasks=BackgroundTasks(),
                file=UploadFile(
                    file=io.BytesIO(image_data),
                    filename=f"{uuid.uuid4().hex}-{file_name}",
                    headers=Headers({"content-type": mime_type}),
                ),
                process=False,
                user=user,
                metadata={"mime_type": mime_type},
            )
            return __request__.app.url_path_for("get_file_content_by_id", id=file_item.id)
        except Exception as e:
            logger.error(f"Image upload failed: {e}")
            raise

    def _render_results(self, items: List[WorkItem], results: List[WorkItem]) -> str:
        """Markdown for the chat reply, one block per work item."""
        blocks = []
        for item, result in zip(items, results):
            field = item.json_data.get("outputPropertyName") or self.valves.OUTPUT_PROPERTY_NAME
            blocks.append(self._render_result(result, field))
        if len(blocks) == 1:
            return blocks[0]
        return "\n\n".join(f"**Item {index + 1}**\n\n{block}" for index, block in enumerate(blocks))

    @staticmethod
    def _render_result(result: WorkItem, field: str) -> str:
        data = result.json_data
        if "error" in data:
            return f"Error: {data['error']}"
        if data.get("success") is False:
            return "No images returned."
        if result.binary:
            lines = []
            for key, attachment in result.binary.items():
                target = attachment.url or f"data:{attachment.mime_type};base64,{attachment.to_base64()}"
                lines.append(f"![{key}]({target})")
            return "\n\n".join(lines)
        value = data.get(field)
        values = value if isinstance(value, list) else [value] if value else []
        if values and all(isinstance(v, str) and v.startswith(("data:", "http://", "https://")) for v in values):
            return "\n\n".join(f"![image_{index}]({v})" for index, v in enumerate(values, start=1))
        return f"```json\n{json.dumps(data, ensure_ascii=False, indent=2)}\n```"

    def _format_data(
        self,
        is_stream: bool,
        model: str = "",
        content: Optional[str] = "",
        finish_reason: Optional[str] = None,
    ) -> str:
        """Format the response data in the expected OpenAI-compatible format."""
        data = {
            "id": f"chat.{uuid.uuid4().hex}",
            "object": "chat.completion.chunk" if is_stream else "chat.completion",
            "created": int(time.time()),
            "model": model,
        }
        if is_stream:
            is_stop_chunk = finish_reason == "stop" and content is None
            delta: Dict[str, Any] = {}
            if not is_stop_chunk:
                delta["role"] = "assistant"
                if content is not None:
                    delta["content"] = content
            data["choices"] = [
                {
                    "finish_reason": finish_reason,
                    "index": 0,
                    "delta": delta,
                }
            ]
        else:
            message_content = content or ""
            data["choices"] = [
                {
                    "finish_reason": finish_reason or "stop",
                    "index": 0,
                    "message": {
                        "role": "assistant",
                        "content": message_content,
                    },
                }
            ]
        return f"data: {json.dumps(data)}\n\n" if is_stream else json.dumps(data)
