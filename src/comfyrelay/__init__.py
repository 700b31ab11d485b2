"""ComfyRelay - request orchestration in front of a ComfyUI generation backend."""

__version__ = "0.1.0"

from comfyrelay.core.config import RelayConfig, config
from comfyrelay.core.models import ArtifactReference, GenerationRequest
from comfyrelay.core.orchestrator import Orchestrator, build_orchestrator

__all__ = [
    "ArtifactReference",
    "GenerationRequest",
    "Orchestrator",
    "RelayConfig",
    "build_orchestrator",
    "config",
]
