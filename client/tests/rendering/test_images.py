"""Tests for image inlining in rendering.images."""

import asyncio
import base64
from io import BytesIO
from unittest.mock import patch

import httpx
import pytest
from bs4 import BeautifulSoup
from PIL import Image, UnidentifiedImageError

from rendering.images import (
    ImageLoadState,
    encode_png_data_uri,
    inline_images,
    preload_images,
)
from tests.fakes import png_bytes

pytestmark = pytest.mark.unit

PNG_PREFIX = "data:image/png;base64,"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _images(html: str):
    return BeautifulSoup(html, "html.parser").find_all("img")


def _decode(data_uri: str) -> Image.Image:
    assert data_uri.startswith(PNG_PREFIX)
    return Image.open(BytesIO(base64.b64decode(data_uri[len(PNG_PREFIX) :])))


class TestEncodePngDataUri:
    """Tests for encode_png_data_uri."""

    def test_png_keeps_natural_size(self):
        uri = encode_png_data_uri(png_bytes((7, 5)), "image/png")
        image = _decode(uri)
        assert image.size == (7, 5)
        assert image.format == "PNG"

    def test_jpeg_is_reencoded_as_png(self):
        buffer = BytesIO()
        Image.new("RGB", (10, 4), (0, 128, 255)).save(buffer, format="JPEG")

        uri = encode_png_data_uri(buffer.getvalue(), "image/jpeg")

        assert _decode(uri).size == (10, 4)

    def test_cmyk_is_converted(self):
        buffer = BytesIO()
        Image.new("CMYK", (3, 3)).save(buffer, format="JPEG")

        uri = encode_png_data_uri(buffer.getvalue())

        assert _decode(uri).mode == "RGBA"

    def test_svg_goes_through_cairosvg(self):
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="2" height="2"></svg>'
        with patch(
            "rendering.images._svg_to_png", autospec=True, return_value=png_bytes((2, 2))
        ) as mock_svg:
            uri = encode_png_data_uri(svg, "text/plain")

        mock_svg.assert_called_once_with(svg)
        assert _decode(uri).size == (2, 2)

    def test_svg_detected_from_content_type(self):
        with patch(
            "rendering.images._svg_to_png", autospec=True, return_value=png_bytes()
        ) as mock_svg:
            encode_png_data_uri(b"<?xml version='1.0'?><svg/>", "image/svg+xml")

        mock_svg.assert_called_once()

    def test_undecodable_bytes_raise(self):
        with pytest.raises(UnidentifiedImageError):
            encode_png_data_uri(b"definitely not an image", "image/png")


class TestInlineImages:
    """Tests for inline_images / preload_images."""

    async def test_all_images_become_data_uris(self):
        def handler(request):
            return httpx.Response(
                200, content=png_bytes(), headers={"content-type": "image/png"}
            )

        html = (
            '<div><img src="https://cdn.test/logo.png">'
            '<img src="https://cdn.test/sign.png"></div>'
        )
        async with _client(handler) as client:
            result, refs = await inline_images(html, client=client)

        assert [r.load_state for r in refs] == [ImageLoadState.LOADED] * 2
        for img in _images(result):
            assert img["src"].startswith(PNG_PREFIX)
            assert "display:none" not in img.get("style", "")

    async def test_failed_image_is_hidden_and_others_load(self):
        def handler(request):
            if request.url.path == "/missing.png":
                return httpx.Response(404)
            return httpx.Response(200, content=png_bytes())

        html = (
            '<img src="https://cdn.test/ok.png">'
            '<img src="https://cdn.test/missing.png" style="width: 10px">'
        )
        async with _client(handler) as client:
            result, refs = await inline_images(html, client=client)

        ok, missing = _images(result)
        assert ok["src"].startswith(PNG_PREFIX)
        assert missing["style"] == "width: 10px; display:none"
        assert missing["src"] == "https://cdn.test/missing.png"
        assert refs[1].load_state == ImageLoadState.FAILED_ERROR
        assert refs[1].resolved_data_uri is None

    async def test_slow_image_times_out_without_blocking_others(self):
        async def handler(request):
            if request.url.path == "/slow.png":
                await asyncio.sleep(5)
            return httpx.Response(200, content=png_bytes())

        html = '<img src="https://cdn.test/slow.png"><img src="https://cdn.test/fast.png">'
        async with _client(handler) as client:
            result, refs = await inline_images(html, client=client, timeout=0.05)

        assert refs[0].load_state == ImageLoadState.FAILED_TIMEOUT
        assert refs[1].load_state == ImageLoadState.LOADED
        slow, fast = _images(result)
        assert "display:none" in slow["style"]
        assert fast["src"].startswith(PNG_PREFIX)

    async def test_undecodable_response_is_hidden(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>not an image</html>")

        async with _client(handler) as client:
            result, refs = await inline_images(
                '<img src="https://cdn.test/x.png">', client=client
            )

        assert refs[0].load_state == ImageLoadState.FAILED_ERROR
        assert "display:none" in _images(result)[0]["style"]

    async def test_empty_src_is_hidden_without_fetch(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=png_bytes())

        async with _client(handler) as client:
            result, refs = await inline_images('<img src="">', client=client)

        assert calls == []
        assert refs[0].load_state == ImageLoadState.FAILED_ERROR
        assert _images(result)[0]["style"] == "display:none"

    async def test_relative_src_resolved_against_base_url(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, content=png_bytes())

        async with _client(handler) as client:
            await inline_images(
                '<img src="/uploads/logo.png">',
                client=client,
                base_url="https://events.test",
            )

        assert seen == ["https://events.test/uploads/logo.png"]

    async def test_relative_src_without_base_url_fails(self):
        async with _client(lambda r: httpx.Response(200)) as client:
            _, refs = await inline_images('<img src="logo.png">', client=client)

        assert refs[0].load_state == ImageLoadState.FAILED_ERROR

    async def test_no_images_returns_html_unchanged(self):
        html = "<p>Certificate of Participation</p>"
        result, refs = await inline_images(html)
        assert result == html
        assert refs == []

    async def test_inlining_is_idempotent(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=png_bytes())

        async with _client(handler) as client:
            once = await preload_images('<img src="https://cdn.test/a.png">', client=client)
            twice, refs = await inline_images(once, client=client)

        assert twice == once
        assert len(calls) == 1
        assert refs[0].load_state == ImageLoadState.LOADED

    async def test_preserves_surrounding_markup(self):
        def handler(request):
            return httpx.Response(200, content=png_bytes())

        html = '<h1 class="title">Jane Doe</h1><img alt="logo" src="https://cdn.test/a.png">'
        async with _client(handler) as client:
            result = await preload_images(html, client=client)

        soup = BeautifulSoup(result, "html.parser")
        assert soup.find("h1", class_="title").get_text() == "Jane Doe"
        assert soup.find("img")["alt"] == "logo"
