"""Pydantic request models for the ComfyRelay API.

Models
------
GenerateRequest
    Payload for ``POST /api/generate``.  Field names follow the browser
    client (``negativePrompt``); snake_case names are accepted as well.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from comfyrelay.core.models import GenerationRequest


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Numeric fields are typed loosely on purpose: form inputs arrive as
    numbers, numeric strings or empty strings, and unusable values fall back
    to defaults in :class:`~comfyrelay.core.models.GenerationRequest` rather
    than failing validation here.  A missing prompt is not rejected by
    Pydantic either, so the API can answer with a 400 and a readable message.

    Attributes:
        prompt: Positive prompt text (required, checked by the orchestrator).
        negative_prompt: Negative prompt.  Defaults to ``"text, watermark"``.
        width: Image width in pixels.  Defaults to 512.
        height: Image height in pixels.  Defaults to 512.
        steps: Sampler steps.  Defaults to 15.
        cfg: Guidance scale.  Defaults to 4.0.
        seed: Sampler seed.  ``None`` means a random seed per request.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = Field(
        default=None,
        description="Positive prompt text.",
    )
    negative_prompt: str | None = Field(
        default=None,
        alias="negativePrompt",
        description="Negative prompt text.",
    )
    width: Any = Field(default=None, description="Image width in pixels.")
    height: Any = Field(default=None, description="Image height in pixels.")
    steps: Any = Field(default=None, description="Number of sampler steps.")
    cfg: Any = Field(default=None, description="Classifier-free guidance scale.")
    seed: Any = Field(
        default=None,
        description="Sampler seed.  None = server picks a random seed.",
    )

    def to_generation_request(self) -> GenerationRequest:
        """Convert to the core request model, applying defaults."""
        return GenerationRequest(
            prompt=self.prompt or "",
            negative_prompt=self.negative_prompt,
            width=self.width,
            height=self.height,
            steps=self.steps,
            cfg=self.cfg,
            seed=self.seed,
        )
