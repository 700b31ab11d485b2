"""Async HTTP client for the generation backend's protocol.

The backend is a ComfyUI server.  ComfyRelay uses four of its endpoints:

========  ======================  ========================================
Method    Path                    Purpose
========  ======================  ========================================
POST      ``/prompt``             Submit a job graph, returns ``prompt_id``
GET       ``/queue``              ``queue_running`` / ``queue_pending`` lists
GET       ``/history/{id}``       Outputs of a finished job, keyed by id
GET       ``/view``               Fetch an output image by filename
========  ======================  ========================================

:class:`BackendClient` is a thin wrapper around one shared
``httpx.AsyncClient``.  It raises ``httpx.HTTPError`` for transport failures
and ``ValueError`` for bodies that are not the expected JSON shape; the
submitter, poller and proxy translate those into the core error taxonomy.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


class BackendClient:
    """Client for one backend instance.

    Attributes:
        base_url: Backend base address without trailing slash.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create the underlying ``httpx.AsyncClient``.

        Args:
            base_url: Backend base address, e.g. ``http://127.0.0.1:8188``.
            timeout: Per-request timeout in seconds.
            transport: Optional transport override (tests use
                ``httpx.MockTransport``).
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def post_prompt(self, graph: dict, client_id: str) -> httpx.Response:
        """Submit a job graph.

        The raw response is returned so the caller can report the backend's
        own error body when the job is rejected.
        """
        return await self._client.post("/prompt", json={"prompt": graph, "client_id": client_id})

    async def get_queue(self) -> dict:
        """Return the live queue view."""
        return await self._get_json("/queue")

    async def get_history(self, prompt_id: str) -> dict:
        """Return the history view for one job (empty while it is unknown)."""
        return await self._get_json(f"/history/{prompt_id}")

    def view_url(self, filename: str, subfolder: str, kind: str) -> str:
        """Build the absolute ``/view`` URL for an output image."""
        query = urlencode({"filename": filename, "subfolder": subfolder, "type": kind})
        return f"{self.base_url}/view?{query}"

    async def open_stream(self, url: str) -> httpx.Response:
        """Start a streamed GET; the caller must close the response."""
        request = self._client.build_request("GET", url)
        return await self._client.send(request, stream=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        response = await self._client.get(path)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object from {path}, got {type(data).__name__}")
        return data
