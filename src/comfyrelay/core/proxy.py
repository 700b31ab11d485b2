"""Artifact proxy: streams backend images to the caller.

Only URLs on the configured backend are accepted, so the proxy cannot be
used to fetch arbitrary URLs.  The image body is passed through chunk by
chunk and never held in memory as a whole.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import httpx

from comfyrelay.core.backend import BackendClient
from comfyrelay.core.errors import FetchError, InvalidReference
from comfyrelay.core.models import ArtifactReference

logger = logging.getLogger(__name__)


class ArtifactStream:
    """An open upstream response whose body has not been read yet.

    Attributes:
        content_type: Content type to send to the caller.
    """

    def __init__(self, response: httpx.Response, content_type: str) -> None:
        self._response = response
        self.content_type = content_type

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the body unmodified, closing the upstream response at the end."""
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


class ArtifactProxy:
    """Fetches artifacts from the backend that issued them."""

    def __init__(self, backend: BackendClient, default_content_type: str = "image/png") -> None:
        self._backend = backend
        self.default_content_type = default_content_type

    def validate(self, url: str | None) -> str:
        """Return *url* if it points at the backend.

        The URL must be the backend base address itself or start with the
        base address followed by ``/``.  A bare prefix match would also let
        ``http://backend:8188.example.com`` through.

        Raises:
            InvalidReference: If *url* is empty or points elsewhere.
        """
        base = self._backend.base_url
        if not url or not (url == base or url.startswith(base + "/")):
            logger.warning(f"Rejected proxy request for non-backend URL: {url!r}")
            raise InvalidReference("Invalid image URL")
        return url

    async def open(self, url: str | None) -> ArtifactStream:
        """Validate *url* and start streaming it from the backend.

        Raises:
            InvalidReference: If *url* does not point at the backend.
            FetchError: If the backend is unreachable or answers with an
                error status.
        """
        url = self.validate(url)

        try:
            response = await self._backend.open_stream(url)
        except httpx.HTTPError as e:
            logger.error(f"Image proxy error for {url}: {e}")
            raise FetchError("Failed to fetch image") from e

        if response.is_error:
            await response.aclose()
            logger.error(f"Image proxy got HTTP {response.status_code} for {url}")
            raise FetchError("Failed to fetch image", details={"status": response.status_code})

        content_type = response.headers.get("content-type") or self.default_content_type
        return ArtifactStream(response, content_type)

    async def fetch(self, reference: ArtifactReference) -> ArtifactStream:
        """Stream the artifact behind *reference*."""
        return await self.open(reference.url)
