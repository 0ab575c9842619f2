"""Unit tests for response parsing and the free-text extraction cascade."""

import pytest

from nano_banana import parsers
from nano_banana.models import CompatResponse, ExtractedImage, NativeResponse
from nano_banana.parsers import (
    EXTRACTION_CASCADE,
    extract_data_uri,
    extract_markdown_images,
    extract_raw_base64,
    extract_urls,
    parse_compat_response,
    parse_native_response,
    parse_response,
)


def compat_body(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestNativeParser:
    def test_images_and_text_in_order(self):
        body = {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "Here you go. "},
                            {"inlineData": {"mimeType": "image/png", "data": "AAAA"}},
                            {"text": "And another."},
                            {"inlineData": {"mimeType": "image/jpeg", "data": "BBBB"}},
                        ]
                    }
                }
            ]
        }
        result = parse_native_response(body)
        assert result.images == [
            ExtractedImage(kind="base64", mime_type="image/png", data="AAAA"),
            ExtractedImage(kind="base64", mime_type="image/jpeg", data="BBBB"),
        ]
        assert result.text == "Here you go. And another."

    def test_snake_case_inline_data(self):
        body = {"candidates": [{"content": {"parts": [{"inline_data": {"mime_type": "image/webp", "data": "CCCC"}}]}}]}
        assert parse_native_response(body).images == [
            ExtractedImage(kind="base64", mime_type="image/webp", data="CCCC")
        ]

    def test_only_first_candidate_is_used(self):
        body = {
            "candidates": [
                {"content": {"parts": [{"text": "no image"}]}},
                {"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "AAAA"}}]}},
            ]
        }
        assert parse_native_response(body).count == 0

    @pytest.mark.parametrize(
        "body",
        [{}, {"candidates": []}, {"candidates": [{}]}, {"candidates": [{"content": {}}]}, None, "oops"],
    )
    def test_missing_structure_is_empty(self, body):
        result = parse_native_response(body)
        assert result.images == []
        assert result.text == ""


class TestCascadeStages:
    def test_markdown_images_in_document_order(self):
        content = (
            "First ![one](https://cdn.example/1.png) then\n"
            "![two](data:image/jpeg;base64,AAAA\nBBBB) and ![three](https://cdn.example/3.png \"title\")"
        )
        assert extract_markdown_images(content) == [
            ExtractedImage(kind="url", data="https://cdn.example/1.png", mime_type="image/png"),
            ExtractedImage(kind="base64", data="AAAABBBB", mime_type="image/jpeg"),
            ExtractedImage(kind="url", data="https://cdn.example/3.png", mime_type="image/png"),
        ]

    def test_markdown_ignores_other_targets(self):
        assert extract_markdown_images("![x](attachment://file.png)") == []

    def test_bare_data_uri_spanning_lines(self):
        content = "Result:\ndata:image/png;base64,AAAA\nBBBB\nCC==\n"
        assert extract_data_uri(content) == [ExtractedImage(kind="base64", data="AAAABBBBCC==", mime_type="image/png")]

    @pytest.mark.parametrize(
        "content,expected",
        [
            ("Result:\ndata:image/png;base64,QUJD\nRA\n==\n", "QUJDRA=="),
            ("data:image/png;base64,QUJDRA\n=\nThanks", "QUJDRA="),
            ("data:image/png;base64,QUJD\r\nRA==\r\nEnjoy!", "QUJDRA=="),
        ],
    )
    def test_bare_data_uri_keeps_wrapped_padding(self, content, expected):
        assert [image.data for image in extract_data_uri(content)] == [expected]

    def test_bare_data_uri_spaced_groups_closed_by_padding(self):
        content = "data:image/png;base64,QUJD RA== is your image"
        assert [image.data for image in extract_data_uri(content)] == ["QUJDRA=="]

    def test_bare_data_uri_stops_before_prose(self):
        assert [image.data for image in extract_data_uri("data:image/png;base64,QUJD here it is")] == ["QUJD"]
        assert extract_data_uri("data:image/png;base64, nothing") == []
        assert extract_data_uri("data:image/png;base64,\nEnjoy") == []

    def test_bare_urls_strip_trailing_punctuation(self):
        content = 'See https://cdn.example/a.png) and "https://cdn.example/b.png". Done'
        assert [image.data for image in extract_urls(content)] == [
            "https://cdn.example/a.png",
            "https://cdn.example/b.png",
        ]

    def test_raw_base64_requires_length(self, long_b64):
        assert extract_raw_base64("QUJD") == []
        assert extract_raw_base64(long_b64[:60] + "\n" + long_b64[60:]) == [
            ExtractedImage(kind="base64", data=long_b64, mime_type="image/png")
        ]

    def test_raw_base64_rejects_prose(self):
        assert extract_raw_base64("I could not generate an image for this request, sorry. " * 3) == []

    def test_cascade_order(self):
        assert [name for name, _ in EXTRACTION_CASCADE] == ["markdown", "data_uri", "url", "raw_base64"]


class TestCompatParser:
    def test_markdown_short_circuits_bare_url(self):
        content = "![result](https://cdn.example/img.png)\nMirror: https://mirror.example/img.png"
        result = parse_compat_response(compat_body(content))
        assert result.images == [ExtractedImage(kind="url", data="https://cdn.example/img.png")]
        assert result.text == content

    def test_data_uri_short_circuits_urls(self):
        content = "data:image/png;base64,AAAA see https://example.com"
        result = parse_compat_response(compat_body(content))
        assert result.images == [ExtractedImage(kind="base64", data="AAAA", mime_type="image/png")]

    def test_raw_base64_fallback(self):
        content = "A" * 200
        result = parse_compat_response(compat_body(content))
        assert result.images == [ExtractedImage(kind="base64", data=content, mime_type="image/png")]

    def test_later_stages_do_not_run(self, monkeypatch):
        calls = []

        def tracking(name, extractor):
            def _wrapped(content):
                calls.append(name)
                return extractor(content)

            return _wrapped

        monkeypatch.setattr(
            parsers,
            "EXTRACTION_CASCADE",
            tuple((name, tracking(name, extractor)) for name, extractor in EXTRACTION_CASCADE),
        )
        parse_compat_response(compat_body("plain https://cdn.example/x.png"))
        assert calls == ["markdown", "data_uri", "url"]

    def test_list_content_is_joined(self):
        body = compat_body([{"type": "text", "text": "done"}, {"type": "image_url", "image_url": {"url": "https://cdn.example/x.png"}}])
        assert parse_compat_response(body).images == [ExtractedImage(kind="url", data="https://cdn.example/x.png")]

    @pytest.mark.parametrize(
        "body",
        [{}, {"choices": []}, {"choices": [{}]}, compat_body(None), compat_body(""), None],
    )
    def test_missing_message_is_empty(self, body):
        assert parse_compat_response(body).images == []

    def test_text_without_images(self):
        result = parse_compat_response(compat_body("I cannot draw that."))
        assert result.images == []
        assert result.text == "I cannot draw that."


def test_parse_response_dispatches_on_protocol():
    native = NativeResponse(body={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "AAAA"}}]}}]})
    compat = CompatResponse(body=compat_body("![x](https://cdn.example/x.png)"))
    assert parse_response(native).images[0].kind == "base64"
    assert parse_response(compat).images[0].kind == "url"
    with pytest.raises(TypeError):
        parse_response({"choices": []})
