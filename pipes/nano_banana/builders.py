"""Request bodies for the two upstream protocol families."""

from typing import Any, Dict, List

from .models import GenerationRequest


def build_native_request(request: GenerationRequest) -> Dict[str, Any]:
    """Body for ``POST /v1beta/models/{model}:generateContent``."""
    parts: List[Dict[str, Any]] = [{"text": request.prompt}]
    for image in request.reference_images:
        parts.append({"inlineData": {"mimeType": image.mime_type, "data": image.data}})
    return {
        "contents": [{"parts": parts}],
        "generationConfig": {
            "responseModalities": ["IMAGE"],
            "imageConfig": request.image_config(),
        },
    }


def build_compat_request(request: GenerationRequest) -> Dict[str, Any]:
    """Body for an OpenAI-compatible ``chat/completions`` call.

    Plain prompts are sent as a string since some providers reject structured
    content without images. The image options have no chat-completions field,
    so they travel in ``extra_body``.
    """
    content: Any
    if request.reference_images:
        content = [{"type": "text", "text": request.prompt}]
        for image in request.reference_images:
            content.append({"type": "image_url", "image_url": {"url": image.to_data_uri()}})
    else:
        content = request.prompt
    return {
        "model": request.model,
        "messages": [{"role": "user", "content": content}],
        "extra_body": {"imageConfig": request.image_config()},
    }


def redact_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a request body safe for logging (base64 payloads omitted)."""

    def _redact(value: Any) -> Any:
        if isinstance(value, dict):
            redacted = {}
            for key, item in value.items():
                if key == "data" and isinstance(item, str):
                    redacted[key] = "<omitted base64>"
                elif key == "url" and isinstance(item, str) and item.startswith("data:"):
                    redacted[key] = "<omitted data uri>"
                else:
                    redacted[key] = _redact(item)
            return redacted
        if isinstance(value, list):
            return [_redact(item) for item in value]
        return value

    return _redact(payload)
