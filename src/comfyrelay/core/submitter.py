"""Job submission to the generation backend."""

from __future__ import annotations

import logging
import random
import uuid
from typing import Any

import httpx

from comfyrelay.core.backend import BackendClient
from comfyrelay.core.errors import SubmissionError
from comfyrelay.core.models import BoundJob, JobHandle

logger = logging.getLogger(__name__)

# The client id only lets the backend group events per session.  It is not a
# credential, so a fast non-cryptographic generator is enough.
_client_id_rng = random.Random()


def new_client_id() -> str:
    """Return a fresh 32-character hex client session token."""
    return uuid.UUID(int=_client_id_rng.getrandbits(128)).hex


def _response_payload(response: httpx.Response) -> Any:
    """Decode a response body as JSON, falling back to its text."""
    try:
        return response.json()
    except ValueError:
        return response.text or None


class JobSubmitter:
    """Sends bound jobs to the backend's ``/prompt`` endpoint."""

    def __init__(self, backend: BackendClient) -> None:
        self._backend = backend

    async def submit(self, job: BoundJob) -> JobHandle:
        """Submit *job* and return the backend-issued handle.

        Args:
            job: The bound job graph.

        Returns:
            Handle carrying the backend's ``prompt_id``.

        Raises:
            SubmissionError: If the backend is unreachable, rejects the job,
                or answers without a ``prompt_id``.  ``details`` holds the
                backend's response body when there is one.
        """
        client_id = new_client_id()

        try:
            response = await self._backend.post_prompt(job.graph, client_id)
        except httpx.HTTPError as e:
            raise SubmissionError(f"Failed to reach generation backend: {e}") from e

        payload = _response_payload(response)

        if response.is_error:
            raise SubmissionError(
                f"Generation backend rejected the job (HTTP {response.status_code})",
                details=payload,
            )

        prompt_id = payload.get("prompt_id") if isinstance(payload, dict) else None
        if not prompt_id:
            raise SubmissionError(
                "Generation backend did not return a prompt_id",
                details=payload,
            )

        logger.info(f"Submitted job {prompt_id} (seed={job.seed}, client_id={client_id})")
        return JobHandle(prompt_id=str(prompt_id), client_id=client_id)
