"""Completion polling for submitted jobs.

The backend exposes two views of a job that are each only eventually
consistent: the live queue (``/queue``) and the per-job history
(``/history/{id}``).  A job leaves the queue slightly before its history
entry appears, so the poller asks the queue first and only consults history
once the job is no longer queued.

One attempt is one pass through :meth:`CompletionPoller.check`:

==============================  ==================  =======================
Observation                     Outcome             Next step
==============================  ==================  =======================
id in running/pending queue     ``Pending``         sleep pending_interval
history has an image output     ``Completed``       return immediately
neither (queue/history gap)     ``TransientError``  sleep error_interval
query raised / bad JSON         ``TransientError``  sleep error_interval
==============================  ==================  =======================

After ``max_attempts`` attempts without completion the poller returns
``TimedOut``.  Backend failures never escape :meth:`CompletionPoller.poll`.

Backend outages are not distinguished from a job that is simply not ready:
both keep the loop waiting until the attempt budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from comfyrelay.core.backend import BackendClient
from comfyrelay.core.models import (
    ArtifactReference,
    Completed,
    JobHandle,
    Pending,
    PollOutcome,
    TimedOut,
    TransientError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def queued_prompt_ids(queue: dict) -> set[str]:
    """Collect the prompt ids in the running and pending queue lists.

    Queue entries are lists of the form ``[number, prompt_id, graph, ...]``.

    Raises:
        ValueError: If either list is missing or malformed.
    """
    ids: set[str] = set()
    for key in ("queue_running", "queue_pending"):
        items = queue.get(key)
        if not isinstance(items, list):
            raise ValueError(f"Queue response has no {key!r} list")
        for item in items:
            if not isinstance(item, (list, tuple)) or len(item) < 2:
                raise ValueError(f"Malformed {key!r} entry: {item!r}")
            ids.add(str(item[1]))
    return ids


def first_image(outputs: dict, preferred_node: str) -> dict | None:
    """Return the first image entry from a job's history outputs.

    The configured output node is looked at first; any other node that
    reports images is used as a fallback.
    """
    node_ids = [preferred_node] + [node_id for node_id in outputs if node_id != preferred_node]
    for node_id in node_ids:
        node_output = outputs.get(node_id)
        if not isinstance(node_output, dict):
            continue
        images = node_output.get("images")
        if isinstance(images, list) and images and isinstance(images[0], dict):
            return images[0]
    return None


class CompletionPoller:
    """Waits for a submitted job to produce an image.

    Attributes:
        max_attempts: Attempt budget before giving up.
        pending_interval: Seconds to sleep while the job is queued.
        error_interval: Seconds to sleep when state is ambiguous or a query failed.
        output_node: Node id whose history output is checked first.
    """

    def __init__(
        self,
        backend: BackendClient,
        *,
        max_attempts: int = 60,
        pending_interval: float = 5.0,
        error_interval: float = 2.0,
        output_node: str = "9",
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self.max_attempts = max_attempts
        self.pending_interval = pending_interval
        self.error_interval = error_interval
        self.output_node = output_node
        self._sleep = sleep

    async def check(self, handle: JobHandle) -> PollOutcome:
        """Run one attempt: queue first, then history.

        Returns:
            ``Pending``, ``Completed`` or ``TransientError``.
        """
        prompt_id = handle.prompt_id

        try:
            queue = await self._backend.get_queue()
            if prompt_id in queued_prompt_ids(queue):
                return Pending()

            history = await self._backend.get_history(prompt_id)
            reference = self._reference_from_history(history, prompt_id)
        except (httpx.HTTPError, ValueError) as e:
            return TransientError(error=str(e) or type(e).__name__)

        if reference is None:
            return TransientError(error=f"Job {prompt_id} is neither queued nor in history yet")
        return Completed(reference=reference)

    async def poll(self, handle: JobHandle) -> Completed | TimedOut:
        """Poll until the job completes or the attempt budget runs out.

        Args:
            handle: Handle of the submitted job.

        Returns:
            ``Completed`` with the first image reference, or ``TimedOut``.
        """
        for attempt in range(1, self.max_attempts + 1):
            outcome = await self.check(handle)

            if isinstance(outcome, Completed):
                logger.info(
                    f"Job {handle.prompt_id} completed after {attempt} attempt(s): "
                    f"{outcome.reference.filename}"
                )
                return outcome

            if isinstance(outcome, Pending):
                logger.debug(f"Job {handle.prompt_id} still queued (attempt {attempt})")
                await self._sleep(self.pending_interval)
                continue

            logger.warning(
                f"Polling attempt {attempt}/{self.max_attempts} for job "
                f"{handle.prompt_id} inconclusive: {outcome.error}"
            )
            await self._sleep(self.error_interval)

        logger.error(f"Job {handle.prompt_id} timed out after {self.max_attempts} attempts")
        return TimedOut(attempts=self.max_attempts)

    def _reference_from_history(self, history: dict, prompt_id: str) -> ArtifactReference | None:
        entry = history.get(prompt_id)
        if not isinstance(entry, dict):
            return None
        outputs = entry.get("outputs")
        if not isinstance(outputs, dict):
            return None

        image = first_image(outputs, self.output_node)
        if image is None:
            return None

        filename = image.get("filename")
        if not filename:
            raise ValueError(f"Image output for job {prompt_id} has no filename")
        subfolder = image.get("subfolder") or ""
        kind = image.get("type") or "output"

        return ArtifactReference(
            filename=str(filename),
            subfolder=str(subfolder),
            kind=str(kind),
            url=self._backend.view_url(str(filename), str(subfolder), str(kind)),
        )
