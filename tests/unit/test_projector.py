"""Unit tests for output projection, naming and packing."""

import asyncio
import base64

import httpx
import pytest

from nano_banana.attachments import BinaryAttachment
from nano_banana.errors import ImageDownloadFailed
from nano_banana.models import ExtractedImage, ParseResult
from nano_banana.projector import OutputProjector, binary_file_name, binary_key, pack_values

RAW = {"choices": [{"message": {"content": "..."}}]}


def b64_image(data: bytes, mime_type: str = "image/png") -> ExtractedImage:
    return ExtractedImage(kind="base64", data=base64.b64encode(data).decode(), mime_type=mime_type)


def url_image(url: str) -> ExtractedImage:
    return ExtractedImage(kind="url", data=url, mime_type="image/png")


def remote_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.startswith("/broken"):
        return httpx.Response(500)
    return httpx.Response(200, content=b"remote:" + request.url.path.encode(), headers={"content-type": "image/png"})


def project(mock_client, images, encoding, text="", register=None, **kwargs):
    async def scenario():
        async with mock_client(remote_handler) as client:
            projector = OutputProjector(client, register)
            return await projector.project(ParseResult(images=images, text=text), RAW, encoding, **kwargs)

    return asyncio.run(scenario())


class TestNaming:
    def test_binary_keys(self):
        assert [binary_key("data", i) for i in range(3)] == ["data", "data_1", "data_2"]

    def test_default_file_names(self):
        assert [binary_file_name(i, 3) for i in range(3)] == ["image_0.png", "image_1.png", "image_2.png"]

    def test_custom_file_name_single_image(self):
        assert binary_file_name(0, 1, "photo.png") == "photo.png"

    def test_custom_file_names_follow_attachment_keys(self):
        assert [binary_file_name(i, 2, "photo.png") for i in range(2)] == ["photo.png", "photo_1.png"]
        assert binary_file_name(1, 2, "photo") == "photo_1"


class TestPacking:
    def test_zero_one_many(self):
        assert pack_values({}, "data", []) == {}
        assert pack_values({}, "data", ["a"]) == {"data": "a"}
        assert pack_values({}, "data", ["a", "b"]) == {"data": ["a", "b"]}


class TestBinaryProjection:
    def test_three_images_keys_and_file_names(self, mock_client):
        images = [b64_image(b"one"), b64_image(b"two", "image/jpeg"), url_image("https://cdn.example/three.png")]
        result = project(mock_client, images, "binary", output_property_name="data")
        assert result.json_data == {"success": True, "count": 3}
        assert list(result.binary) == ["data", "data_1", "data_2"]
        assert [a.file_name for a in result.binary.values()] == ["image_0.png", "image_1.png", "image_2.png"]
        assert result.binary["data"].data == b"one"
        assert result.binary["data_1"].mime_type == "image/jpeg"
        assert result.binary["data_2"].data == b"remote:/three.png"

    def test_custom_registration_is_used(self, mock_client):
        registered = []

        async def register(data, file_name, mime_type):
            registered.append((data, file_name, mime_type))
            return BinaryAttachment(data=data, mime_type=mime_type, file_name=file_name, url=f"/files/{file_name}")

        result = project(
            mock_client,
            [b64_image(b"one"), b64_image(b"two")],
            "binary",
            register=register,
            output_property_name="img",
            file_name="cat.webp",
        )
        assert registered == [(b"one", "cat.webp", "image/png"), (b"two", "cat_1.webp", "image/png")]
        assert result.binary["img_1"].url == "/files/cat_1.webp"

    def test_download_failure_is_fatal(self, mock_client):
        with pytest.raises(ImageDownloadFailed) as exc_info:
            project(mock_client, [url_image("https://cdn.example/broken.png")], "binary", item_index=4)
        assert exc_info.value.url == "https://cdn.example/broken.png"
        assert exc_info.value.item_index == 4
        assert "500" in str(exc_info.value)


class TestStringProjections:
    def test_single_base64_is_bare_string(self, mock_client):
        image = b64_image(b"one")
        result = project(mock_client, [image], "base64", output_property_name="data")
        assert result.json_data == {"success": True, "count": 1, "data": image.data}

    def test_two_base64_images_form_ordered_list(self, mock_client):
        first, second = b64_image(b"one"), b64_image(b"two")
        result = project(mock_client, [first, second], "base64", output_property_name="out")
        assert result.json_data["out"] == [first.data, second.data]

    def test_url_images_are_refetched_for_base64(self, mock_client):
        result = project(mock_client, [url_image("https://cdn.example/a.png")], "base64")
        assert result.json_data["data"] == base64.b64encode(b"remote:/a.png").decode()

    def test_refetch_failure_is_skipped(self, mock_client):
        good = b64_image(b"one", "image/webp")
        result = project(mock_client, [url_image("https://cdn.example/broken.png"), good], "dataUrl")
        assert result.json_data == {"success": True, "count": 2, "data": f"data:image/webp;base64,{good.data}"}
        assert [(s.index, s.reason.startswith("download failed")) for s in result.skipped] == [(0, True)]

    def test_url_projection_skips_base64(self, mock_client):
        result = project(mock_client, [b64_image(b"one"), url_image("https://cdn.example/a.png")], "url")
        assert result.json_data == {"success": True, "count": 2, "data": "https://cdn.example/a.png"}
        assert result.skipped[0].index == 0

    def test_url_projection_falls_back_to_text(self, mock_client):
        result = project(mock_client, [b64_image(b"one")], "url", text="model said hello")
        assert result.json_data["data"] == "model said hello"

    def test_all_skipped_omits_field(self, mock_client):
        result = project(mock_client, [b64_image(b"one")], "url")
        assert result.json_data == {"success": True, "count": 1}

    def test_raw_returns_upstream_body(self, mock_client):
        result = project(mock_client, [b64_image(b"one")], "raw")
        assert result.json_data == RAW
        assert result.binary == {}
