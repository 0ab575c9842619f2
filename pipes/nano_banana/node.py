"""Per-item orchestration of the image generation pipeline.

Each work item goes through auth validation, reference resolution, request
building, the upstream call, response parsing, the zero-result check and the
output projection. Items share nothing but the HTTP client.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from .attachments import AttachmentRegistrar, WorkItem
from .builders import build_compat_request, build_native_request, redact_payload
from .config import Valves
from .errors import (
    InvalidAuth,
    InvalidParameter,
    NanoBananaError,
    NoImagesExtracted,
    UpstreamProtocolError,
)
from .models import (
    CompatResponse,
    GenerationRequest,
    NativeResponse,
    NodeParameters,
    UpstreamResponse,
)
from .parsers import parse_response
from .projector import OutputProjector
from .references import ReferenceImageResolver, split_reference_input

logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


def extract_error_message(response: httpx.Response) -> str:
    """Upstream ``error.message`` when present, otherwise the raw body."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return json.dumps(body, ensure_ascii=False)


class NanoBananaNode:
    def __init__(
        self,
        valves: Optional[Valves] = None,
        client: Optional[httpx.AsyncClient] = None,
        register_attachment: Optional[AttachmentRegistrar] = None,
    ):
        self.valves = valves or Valves()
        self._client = client
        self.register_attachment = register_attachment

    async def execute(self, items: Sequence[WorkItem]) -> List[WorkItem]:
        """Process every item and return results in input order."""
        if self._client is not None:
            return await self._execute(items, self._client)
        async with httpx.AsyncClient(timeout=self.valves.REQUEST_TIMEOUT) as client:
            return await self._execute(items, client)

    async def _execute(self, items: Sequence[WorkItem], client: httpx.AsyncClient) -> List[WorkItem]:
        if self.valves.CONCURRENT_ITEMS:
            # Siblings are never cancelled; the first failure in item order is
            # raised once every request has settled.
            outcomes = await asyncio.gather(
                *(self._run_item(item, client) for item in items),
                return_exceptions=True,
            )
            results: List[WorkItem] = []
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
                results.append(outcome)
            return results

        results = []
        for item in items:
            results.append(await self._run_item(item, client))
        return results

    async def _run_item(self, item: WorkItem, client: httpx.AsyncClient) -> WorkItem:
        try:
            return await self.process_item(item, client)
        except Exception as exc:
            if isinstance(exc, NanoBananaError) and exc.item_index is None:
                exc.item_index = item.index
            logger.error(f"Item {item.index} failed: {exc}")
            if self.valves.CONTINUE_ON_FAIL:
                return WorkItem(index=item.index, json_data={"error": str(exc)})
            raise

    def validate_auth(self, item_index: int) -> None:
        if not self.valves.API_KEY.strip():
            raise InvalidAuth("API_KEY not set in valves.", item_index=item_index)
        expected = self.valves.EXPECTED_AUTH_CODE.strip()
        if expected and self.valves.AUTH_CODE.strip() != expected:
            raise InvalidAuth("Invalid Auth Code. Please check the AUTH_CODE valve.", item_index=item_index)

    def parameters_for(self, item: WorkItem) -> NodeParameters:
        """Item JSON values over valve defaults."""
        merged: Dict[str, Any] = self.valves.parameter_defaults()
        merged.update({key: value for key, value in item.json_data.items() if value is not None})
        try:
            params = NodeParameters.model_validate(merged)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            raise InvalidParameter(f"Invalid parameters: {problems}", item_index=item.index) from e
        if not params.prompt.strip():
            raise InvalidParameter("Prompt is required.", item_index=item.index)
        if not params.output_property_name.strip():
            raise InvalidParameter("Output property name must not be empty.", item_index=item.index)
        return params

    async def process_item(self, item: WorkItem, client: httpx.AsyncClient) -> WorkItem:
        self.validate_auth(item.index)
        params = self.parameters_for(item)

        reference_images = []
        if params.operation == "imageToImage":
            delimiters = self.valves.REFERENCE_IMAGE_DELIMITERS
            if not split_reference_input(params.reference_images, delimiters):
                raise InvalidParameter("Image to Image requires at least one reference image.", item_index=item.index)
            resolver = ReferenceImageResolver(client, delimiters)
            reference_images = await resolver.resolve(params.reference_images, item, params.model)

        request = GenerationRequest(
            prompt=params.prompt,
            model=params.model,
            aspect_ratio=params.aspect_ratio,
            resolution=params.resolution,
            reference_images=reference_images,
        )
        logger.info(
            "Item %s: model=%s | aspect_ratio=%s | references=%s | connection=%s",
            item.index,
            request.model,
            request.aspect_ratio,
            len(reference_images),
            self.valves.CONNECTION_TYPE,
        )
        response = await self.call_upstream(request, client, item.index)
        parsed = parse_response(response)
        logger.info("Item %s: extracted %s image(s)", item.index, parsed.count)

        if parsed.count == 0 and params.output_format != "raw":
            if params.throw_on_failure:
                raise NoImagesExtracted(response.body, item_index=item.index)
            return WorkItem(
                index=item.index,
                json_data={"success": False, "count": 0, "originalResponse": response.body},
            )

        projector = OutputProjector(client, self.register_attachment)
        projected = await projector.project(
            parsed,
            response.body,
            params.output_format,
            output_property_name=params.output_property_name,
            file_name=params.output_file_name,
            item_index=item.index,
        )
        for skipped in projected.skipped:
            logger.info("Item %s: image %s omitted (%s)", item.index, skipped.index, skipped.reason)
        return WorkItem(index=item.index, json_data=projected.json_data, binary=projected.binary)

    async def call_upstream(
        self, request: GenerationRequest, client: httpx.AsyncClient, item_index: int
    ) -> UpstreamResponse:
        api_key = self.valves.API_KEY.strip()
        if self.valves.CONNECTION_TYPE == "official":
            base_url = self.valves.NATIVE_BASE_URL.rstrip("/")
            url = f"{base_url}/v1beta/models/{request.model}:generateContent"
            headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
            body = await self._post_json(client, url, headers, build_native_request(request), item_index)
            return NativeResponse(body=body)

        base_url = self.valves.API_BASE_URL
        if not base_url.endswith("/"):
            base_url += "/"
        url = f"{base_url}chat/completions"
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        body = await self._post_json(client, url, headers, build_compat_request(request), item_index)
        return CompatResponse(body=body)

    async def _post_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Dict[str, str],
        payload: Dict[str, Any],
        item_index: int,
    ) -> Any:
        logger.info("Request payload detail: %s", redact_payload(payload))
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamProtocolError(f"API request to {url} failed: {e}", item_index=item_index) from e

        if response.status_code >= 400:
            raise UpstreamProtocolError(
                f"API Error {response.status_code}: {extract_error_message(response)}",
                status_code=response.status_code,
                item_index=item_index,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamProtocolError(
                f"API returned a non-JSON response (HTTP {response.status_code})",
                status_code=response.status_code,
                item_index=item_index,
            ) from e
