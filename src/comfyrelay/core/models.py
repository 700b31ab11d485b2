"""Domain models for the job orchestration core.

These are plain dataclasses shared by the binder, submitter, poller, proxy
and orchestrator.  The API layer converts its Pydantic payload into a
:class:`GenerationRequest` before anything else happens.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Union

DEFAULT_NEGATIVE_PROMPT = "text, watermark"
DEFAULT_WIDTH = 512
DEFAULT_HEIGHT = 512
DEFAULT_STEPS = 15
DEFAULT_CFG = 4.0

# Seeds drawn for requests that do not supply one fall in [0, SEED_RANGE).
SEED_RANGE = 10**15


# ---------------------------------------------------------------------------
# Lenient numeric coercion.
#
# Form fields arrive as numbers, numeric strings, empty strings or nothing at
# all.  Anything that is not a usable positive number silently becomes the
# default instead of failing the request.
# ---------------------------------------------------------------------------


def _to_number(value: Any) -> float | None:
    """Parse *value* as a finite number, or return ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_positive_int(value: Any, default: int) -> int:
    """Return *value* as a positive integer, falling back to *default*.

    Fractional input is truncated, so ``"7.9"`` becomes ``7``.

    Args:
        value: Raw field value.
        default: Value used when *value* is absent, non-numeric or not positive.

    Returns:
        The coerced integer.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value if value > 0 else default
    number = _to_number(value)
    if number is None or int(number) <= 0:
        return default
    return int(number)


def coerce_positive_float(value: Any, default: float) -> float:
    """Return *value* as a positive float, falling back to *default*."""
    number = _to_number(value)
    if number is None or number <= 0:
        return default
    return number


def coerce_seed(value: Any) -> int | None:
    """Return *value* as a non-negative integer seed, or ``None`` if unusable."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value if value >= 0 else None
    number = _to_number(value)
    if number is None or number < 0:
        return None
    return int(number)


# ---------------------------------------------------------------------------
# Request / job models.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationRequest:
    """A single image-generation request after coercion.

    Construction never fails for numeric fields: absent or invalid values are
    replaced by their defaults in ``__post_init__``, so every instance holds
    usable values.  The prompt is kept verbatim; checking that it is
    non-empty is the orchestrator's job, because an empty prompt must be
    reported to the caller rather than defaulted.

    Attributes:
        prompt: Positive prompt text.
        negative_prompt: Negative prompt text (default ``"text, watermark"``).
        width: Image width in pixels (default 512).
        height: Image height in pixels (default 512).
        steps: Sampler steps (default 15).
        cfg: Classifier-free guidance scale (default 4.0).
        seed: Sampler seed, or ``None`` to draw a random one at bind time.
    """

    prompt: str = ""
    negative_prompt: str = DEFAULT_NEGATIVE_PROMPT
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    steps: int = DEFAULT_STEPS
    cfg: float = DEFAULT_CFG
    seed: int | None = None

    def __post_init__(self) -> None:
        prompt = self.prompt
        if prompt is None:
            prompt = ""
        elif not isinstance(prompt, str):
            prompt = str(prompt)

        negative = self.negative_prompt
        if not isinstance(negative, str) or not negative.strip():
            negative = DEFAULT_NEGATIVE_PROMPT

        # Frozen dataclass: normalised values are written with object.__setattr__.
        object.__setattr__(self, "prompt", prompt)
        object.__setattr__(self, "negative_prompt", negative)
        object.__setattr__(self, "width", coerce_positive_int(self.width, DEFAULT_WIDTH))
        object.__setattr__(self, "height", coerce_positive_int(self.height, DEFAULT_HEIGHT))
        object.__setattr__(self, "steps", coerce_positive_int(self.steps, DEFAULT_STEPS))
        object.__setattr__(self, "cfg", coerce_positive_float(self.cfg, DEFAULT_CFG))
        object.__setattr__(self, "seed", coerce_seed(self.seed))

    @property
    def has_prompt(self) -> bool:
        """True when the prompt contains something other than whitespace."""
        return bool(self.prompt.strip())


@dataclass(frozen=True)
class JobHandle:
    """Backend-issued identifier for one submitted job.

    Attributes:
        prompt_id: Correlation id returned by the backend's ``/prompt`` endpoint.
        client_id: Client session token sent with the submission.
    """

    prompt_id: str
    client_id: str


@dataclass(frozen=True)
class ArtifactReference:
    """Pointer to an image produced by the backend.

    Attributes:
        filename: Output file name on the backend.
        subfolder: Output subfolder (often empty).
        kind: Backend folder type (``output``, ``temp`` ...).
        url: Fully resolved ``/view`` URL on the backend.
    """

    filename: str
    subfolder: str
    kind: str
    url: str


# ---------------------------------------------------------------------------
# Poll outcomes.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pending:
    """The job is still in the backend's running or pending queue."""


@dataclass(frozen=True)
class Completed:
    """The job finished and produced at least one image."""

    reference: ArtifactReference


@dataclass(frozen=True)
class TimedOut:
    """The attempt budget ran out before the job completed."""

    attempts: int


@dataclass(frozen=True)
class TransientError:
    """A status query failed; the poller retries on the next attempt."""

    error: str


PollOutcome = Union[Pending, Completed, TimedOut, TransientError]


@dataclass
class HealthStatus:
    """Result of a backend connectivity check."""

    connected: bool
    queue: dict | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        """Serialise to the ``GET /api/status`` response body."""
        if self.connected:
            return {"status": "connected", "queue": self.queue}
        return {"status": "disconnected", "error": self.error}


@dataclass
class BoundJob:
    """A template copy with the request's values written in.

    Attributes:
        graph: The node graph to submit.
        seed: Seed actually used by the sampler node.
    """

    graph: dict
    seed: int
