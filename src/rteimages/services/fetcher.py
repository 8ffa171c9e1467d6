"""Fetching external images without exposing internal network targets."""

import asyncio
import logging
from urllib.parse import urlsplit

import httpx

from rteimages.services.security import SecurityValidator, sanitize_url_for_log

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10 MiB


class ExternalImageFetcher:
    """Downloads remote image bytes from a pre-validated IP address."""

    def __init__(
        self,
        security: SecurityValidator | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.security = security or SecurityValidator()
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": "rteimages/0.1.0"},
                timeout=DEFAULT_TIMEOUT,
                follow_redirects=False,
                verify=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def is_external_url(self, url: str) -> bool:
        url = url.strip()
        if url.startswith("data:"):
            return False
        return url.startswith(("http://", "https://"))

    async def fetch(self, url: str) -> bytes | None:
        """
        Fetch an image, returning its bytes or None.

        The request goes to the IP approved by the security validator with the
        original hostname in the Host header. Redirects are not followed, and
        bodies over MAX_CONTENT_LENGTH or with a non-image MIME type are rejected.
        """
        url = url.strip()
        if not url:
            return None

        loop = asyncio.get_running_loop()
        validated_ip = await loop.run_in_executor(None, self.security.get_validated_ip_for_url, url)
        if validated_ip is None:
            logger.warning("Rejected external image URL: %s", sanitize_url_for_log(url))
            return None

        try:
            parts = urlsplit(url)
            hostname = parts.hostname or ""
            port = parts.port

            ip_host = f"[{validated_ip}]" if ":" in validated_ip else validated_ip
            ip_url = f"{parts.scheme}://{ip_host}"
            if port:
                ip_url += f":{port}"
            ip_url += parts.path or "/"
            if parts.query:
                ip_url += f"?{parts.query}"

            headers = {"Host": f"{hostname}:{port}" if port else hostname}
            extensions = {}
            if parts.scheme == "https":
                # Certificate checks must still run against the real hostname
                extensions["sni_hostname"] = hostname

            client = await self._get_client()
            async with client.stream(
                "GET",
                ip_url,
                headers=headers,
                extensions=extensions,
                timeout=DEFAULT_TIMEOUT,
                follow_redirects=False,
            ) as response:
                if not 200 <= response.status_code < 300:
                    logger.info(
                        "External image request returned HTTP %d: %s",
                        response.status_code,
                        sanitize_url_for_log(url),
                    )
                    return None

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > MAX_CONTENT_LENGTH:
                    logger.warning("External image too large (%s bytes): %s", declared, sanitize_url_for_log(url))
                    return None

                content = bytearray()
                async for chunk in response.aiter_bytes():
                    content.extend(chunk)
                    if len(content) > MAX_CONTENT_LENGTH:
                        logger.warning("External image exceeds size limit: %s", sanitize_url_for_log(url))
                        return None

            if not self.security.is_allowed_image_mime_type(bytes(content)):
                logger.warning("External image has disallowed MIME type: %s", sanitize_url_for_log(url))
                return None

            return bytes(content)
        except Exception as e:
            logger.error("Failed to fetch external image %s: %s", sanitize_url_for_log(url), e)
            return None
