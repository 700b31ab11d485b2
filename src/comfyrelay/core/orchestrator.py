"""Composition root for the job orchestration core.

:class:`Orchestrator` wires the template store, binder, submitter, poller
and proxy around one shared :class:`BackendClient`, and exposes the three
operations the API layer needs: ``generate``, ``health_check`` and
``open_artifact``.

Usage
-----
::

    from comfyrelay.core.config import config
    from comfyrelay.core.orchestrator import build_orchestrator

    orchestrator = build_orchestrator(config)
    orchestrator.startup()

    reference = await orchestrator.generate(GenerationRequest(prompt="a cat"))

    await orchestrator.aclose()
"""

from __future__ import annotations

import logging

import httpx

from comfyrelay.core.backend import BackendClient
from comfyrelay.core.config import RelayConfig
from comfyrelay.core.errors import GenerationTimedOut, ValidationError
from comfyrelay.core.models import ArtifactReference, Completed, GenerationRequest, HealthStatus
from comfyrelay.core.poller import CompletionPoller, Sleep
from comfyrelay.core.proxy import ArtifactProxy, ArtifactStream
from comfyrelay.core.submitter import JobSubmitter
from comfyrelay.core.workflow import ParameterBinder, TemplateStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """End-to-end generation: bind, submit, poll.

    Each call to :meth:`generate` works on its own bound job and handle;
    the only state shared between concurrent calls is the read-only
    template and the HTTP client.
    """

    def __init__(
        self,
        backend: BackendClient,
        store: TemplateStore,
        binder: ParameterBinder,
        submitter: JobSubmitter,
        poller: CompletionPoller,
        proxy: ArtifactProxy,
    ) -> None:
        self.backend = backend
        self.store = store
        self.binder = binder
        self.submitter = submitter
        self.poller = poller
        self.proxy = proxy

    def startup(self) -> None:
        """Load the job template.

        Raises:
            TemplateUnavailable: If the template cannot be loaded.  The
                application must not serve generation requests in that case.
        """
        self.store.load()

    async def generate(self, request: GenerationRequest) -> ArtifactReference:
        """Generate one image and return a reference to it.

        Args:
            request: The coerced generation request.

        Returns:
            Reference to the first image the job produced.

        Raises:
            ValidationError: If the prompt is empty or whitespace.  Raised
                before any backend call.
            TemplateNotBound: If the template has not been loaded.
            SubmissionError: If the backend rejects the job.
            GenerationTimedOut: If polling exhausts its attempt budget.
        """
        if not request.has_prompt:
            raise ValidationError("Prompt is required")

        job = self.binder.bind(request)
        handle = await self.submitter.submit(job)
        outcome = await self.poller.poll(handle)

        if not isinstance(outcome, Completed):
            raise GenerationTimedOut(
                "Generation timed out",
                details={"prompt_id": handle.prompt_id, "attempts": outcome.attempts},
            )
        return outcome.reference

    async def health_check(self) -> HealthStatus:
        """Query the backend queue; any failure means disconnected."""
        try:
            queue = await self.backend.get_queue()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Backend health check failed: {e}")
            return HealthStatus(connected=False, error=str(e) or type(e).__name__)
        return HealthStatus(connected=True, queue=queue)

    async def open_artifact(self, url: str | None) -> ArtifactStream:
        """Validate *url* and open a stream to the artifact."""
        return await self.proxy.open(url)

    async def aclose(self) -> None:
        await self.backend.aclose()


def build_orchestrator(
    config: RelayConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleep | None = None,
) -> Orchestrator:
    """Wire an :class:`Orchestrator` from configuration.

    The template is not loaded here; call :meth:`Orchestrator.startup`.

    Args:
        config: Application configuration.
        transport: Optional httpx transport override for the backend client.
        sleep: Optional sleep coroutine for the poller (defaults to
            ``asyncio.sleep``).

    Returns:
        A ready-to-start orchestrator.
    """
    backend = BackendClient(
        config.comfyui_url,
        timeout=config.request_timeout,
        transport=transport,
    )
    roles = config.node_roles
    store = TemplateStore(config.workflow_path, roles)

    poller_kwargs = {} if sleep is None else {"sleep": sleep}
    poller = CompletionPoller(
        backend,
        max_attempts=config.max_poll_attempts,
        pending_interval=config.pending_interval,
        error_interval=config.error_interval,
        output_node=roles.output,
        **poller_kwargs,
    )

    return Orchestrator(
        backend=backend,
        store=store,
        binder=ParameterBinder(store),
        submitter=JobSubmitter(backend),
        poller=poller,
        proxy=ArtifactProxy(backend, config.default_content_type),
    )
