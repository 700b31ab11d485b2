"""ComfyRelay — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, the REST routes, and the ``main()`` CLI function
that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`comfyrelay.core.config.config`
  (``COMFYRELAY_*`` environment variables).
- **Generation** is delegated to :class:`~comfyrelay.core.orchestrator.Orchestrator`,
  created in the lifespan handler and stored on ``app.state``.  The job
  template is loaded there too; if it cannot be loaded the application
  refuses to start.
- **Errors** raised by the core are :class:`~comfyrelay.core.errors.RelayError`
  subclasses and are turned into ``{"error": ..., "details": ...}`` bodies
  by a single exception handler.

Endpoints
---------
========  =======================  =========================================
Method    Path                     Purpose
========  =======================  =========================================
POST      ``/api/generate``        Generate an image, return its backend URL
GET       ``/api/status``          Backend connectivity and queue snapshot
GET       ``/api/proxy-image``     Stream a backend image (``?url=...``)
========  =======================  =========================================

Usage
-----
CLI (installed entry point)::

    comfyrelay

Direct invocation::

    python -m comfyrelay.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from comfyrelay import __version__
from comfyrelay.api.models import GenerateRequest
from comfyrelay.core.config import config
from comfyrelay.core.errors import RelayError, TemplateUnavailable
from comfyrelay.core.orchestrator import Orchestrator, build_orchestrator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Application lifecycle — orchestrator setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Builds the :class:`Orchestrator` and loads the job template.  A
        missing or malformed template is fatal: the exception propagates and
        the server does not start accepting requests.

    On shutdown:
        Closes the backend HTTP client.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    # --- Startup -----------------------------------------------------------
    orchestrator = build_orchestrator(config)
    try:
        orchestrator.startup()
    except TemplateUnavailable as e:
        logger.critical(f"Failed to load workflow template: {e.message}")
        await orchestrator.aclose()
        raise

    app.state.orchestrator = orchestrator
    logger.info(f"Orchestrator ready, backend endpoint: {config.comfyui_url}")

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    await orchestrator.aclose()
    logger.info("Backend client closed on shutdown.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="ComfyRelay",
    description="Image generation requests relayed to a ComfyUI backend.",
    version=__version__,
    lifespan=lifespan,
)

# The browser UI may be served from another origin during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Render core errors as ``{"error": ..., "details": ...}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.warning(f"{request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render unparseable request bodies as a 400 ``{"error", "details"}`` body.

    A missing body, a body that is not a JSON object, or a non-string prompt
    is reported as a missing prompt.  Any other failure, such as malformed
    JSON, is reported as an invalid request.
    """
    message = "Prompt is required" if _is_prompt_error(exc) else "Invalid request"
    logger.warning(f"{request.url.path} rejected: {message}")
    return JSONResponse(
        status_code=400,
        content={"error": message, "details": jsonable_encoder(exc.errors())},
    )


def _is_prompt_error(exc: RequestValidationError) -> bool:
    for error in exc.errors():
        loc = tuple(error.get("loc", ()))
        if loc[:1] == ("body",) and (len(loc) == 1 or loc[1] == "prompt"):
            return True
    return False


def _orchestrator() -> Orchestrator:
    return app.state.orchestrator


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.post("/api/generate")
async def generate_image(req: GenerateRequest) -> dict:
    """Generate one image on the backend.

    Binds the request into the job template, submits it, and polls the
    backend until an image is reported.

    Args:
        req: Validated :class:`GenerateRequest` payload.

    Returns:
        Dictionary with keys ``success``, ``imageUrl`` (backend ``/view``
        URL, to be loaded through ``/api/proxy-image``) and ``filename``.

    Raises:
        ValidationError: 400 when the prompt is missing or blank.  Bodies that
            do not parse at all get the same 400 from
            :func:`request_validation_handler`.
        SubmissionError: 500 when the backend rejects the job.
        GenerationTimedOut: 500 when the job does not finish in time.
    """
    reference = await _orchestrator().generate(req.to_generation_request())
    return {
        "success": True,
        "imageUrl": reference.url,
        "filename": reference.filename,
    }


@app.get("/api/status")
async def get_status() -> JSONResponse:
    """Report whether the backend is reachable.

    Returns:
        200 with ``{"status": "connected", "queue": ...}``, or 500 with
        ``{"status": "disconnected", "error": ...}``.
    """
    health = await _orchestrator().health_check()
    return JSONResponse(
        status_code=200 if health.connected else 500,
        content=health.to_dict(),
    )


@app.get("/api/proxy-image")
async def proxy_image(url: str | None = None) -> StreamingResponse:
    """Stream an image from the backend.

    Args:
        url: Backend ``/view`` URL as returned by ``/api/generate``.

    Returns:
        The image bytes with the backend's content type.

    Raises:
        InvalidReference: 400 when *url* is not on the backend.
        FetchError: 500 when the backend cannot serve the image.
    """
    stream = await _orchestrator().open_artifact(url)
    return StreamingResponse(
        stream.iter_bytes(),
        media_type=stream.content_type,
        background=BackgroundTask(stream.aclose),
    )


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~comfyrelay.core.config.config`
    (``COMFYRELAY_SERVER_HOST``, ``COMFYRELAY_SERVER_PORT``,
    ``COMFYRELAY_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``comfyrelay`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Server running at http://{config.server_host}:{config.server_port}")
    logger.info(f"ComfyUI endpoint: {config.comfyui_url}")

    uvicorn.run(
        "comfyrelay.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
