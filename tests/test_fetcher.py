"""Tests for the external image fetcher."""

import socket
from unittest.mock import MagicMock, patch

import httpx
import pytest

from rteimages.services.fetcher import ExternalImageFetcher
from rteimages.services.security import SecurityValidator

from conftest import JPEG_BYTES


def make_fetcher(handler) -> ExternalImageFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ExternalImageFetcher(SecurityValidator(), client=client)


def ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=JPEG_BYTES)


class TestIsExternalUrl:
    @pytest.mark.parametrize("url", ["http://example.com/a.jpg", "https://example.com/a.jpg", "  https://x.org/y  "])
    def test_external(self, url):
        assert ExternalImageFetcher().is_external_url(url) is True

    @pytest.mark.parametrize(
        "url", ["data:image/png;base64,AAAA", "/fileadmin/a.jpg", "fileadmin/a.jpg", "ftp://x/y", "", "//cdn/x.jpg"]
    )
    def test_not_external(self, url):
        assert ExternalImageFetcher().is_external_url(url) is False


class TestFetch:
    """Tests for fetch."""

    @pytest.mark.asyncio
    async def test_fetches_image_bytes(self):
        fetcher = make_fetcher(ok_handler)
        assert await fetcher.fetch("https://93.184.216.34/photo.jpg") == JPEG_BYTES

    @pytest.mark.asyncio
    async def test_connects_to_validated_ip_with_host_header(self):
        """The request targets the resolved IP and carries the original hostname."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=JPEG_BYTES)

        fetcher = make_fetcher(handler)
        fake_info = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 0))]
        with patch("rteimages.services.security.socket.getaddrinfo", return_value=fake_info):
            result = await fetcher.fetch("https://images.example.com:8443/path/pic.jpg?size=large")

        assert result == JPEG_BYTES
        request = seen[0]
        assert request.url.host == "93.184.216.34"
        assert request.url.port == 8443
        assert request.url.path == "/path/pic.jpg"
        assert request.url.query == b"size=large"
        assert request.headers["host"] == "images.example.com:8443"

    @pytest.mark.asyncio
    async def test_blank_url_returns_none_without_request(self):
        handler = MagicMock(side_effect=ok_handler)
        fetcher = make_fetcher(handler)
        assert await fetcher.fetch("   ") is None
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_url_makes_no_request(self):
        handler = MagicMock(side_effect=ok_handler)
        fetcher = make_fetcher(handler)
        assert await fetcher.fetch("http://169.254.169.254/latest/meta-data") is None
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_2xx_returns_none(self):
        fetcher = make_fetcher(lambda request: httpx.Response(404))
        assert await fetcher.fetch("https://93.184.216.34/missing.jpg") is None

    @pytest.mark.asyncio
    async def test_redirect_not_followed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": "http://127.0.0.1/secret"})

        fetcher = make_fetcher(handler)
        assert await fetcher.fetch("https://93.184.216.34/redirect.jpg") is None

    @pytest.mark.asyncio
    async def test_oversized_declared_length_rejected(self):
        fetcher = make_fetcher(ok_handler)
        with patch("rteimages.services.fetcher.MAX_CONTENT_LENGTH", 16):
            assert await fetcher.fetch("https://93.184.216.34/big.jpg") is None

    @pytest.mark.asyncio
    async def test_oversized_stream_rejected(self):
        """Bodies without a declared length are cut off once they pass the limit."""

        async def body():
            yield JPEG_BYTES
            yield b"\x00" * 64

        fetcher = make_fetcher(lambda request: httpx.Response(200, content=body()))
        with patch("rteimages.services.fetcher.MAX_CONTENT_LENGTH", len(JPEG_BYTES) + 10):
            assert await fetcher.fetch("https://93.184.216.34/stream.jpg") is None

    @pytest.mark.asyncio
    async def test_disallowed_mime_rejected(self):
        svg = b'<svg xmlns="http://www.w3.org/2000/svg"></svg>'
        fetcher = make_fetcher(lambda request: httpx.Response(200, content=svg))
        assert await fetcher.fetch("https://93.184.216.34/image.svg") is None

    @pytest.mark.asyncio
    async def test_network_error_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = make_fetcher(handler)
        assert await fetcher.fetch("https://93.184.216.34/photo.jpg") is None

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        fetcher = make_fetcher(ok_handler)
        await fetcher.close()
        assert fetcher._client is None
