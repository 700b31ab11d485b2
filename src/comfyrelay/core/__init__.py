"""Job orchestration core for ComfyRelay.

This package turns a generation request into a ComfyUI job, submits it,
polls until it completes and proxies the resulting image:

- **config.py**: RelayConfig (Pydantic Settings, COMFYRELAY_ prefix)
- **workflow.py**: template store, role-keyed graph accessor, parameter binder
- **backend.py**: async HTTP client for the backend protocol
- **submitter.py**: job submission
- **poller.py**: completion polling state machine
- **proxy.py**: streaming artifact proxy
- **orchestrator.py**: composition root used by the API layer
- **errors.py**: error taxonomy shared by all of the above
"""

from comfyrelay.core.config import NodeRoles, RelayConfig, config
from comfyrelay.core.models import ArtifactReference, GenerationRequest
from comfyrelay.core.orchestrator import Orchestrator, build_orchestrator

__all__ = [
    "ArtifactReference",
    "GenerationRequest",
    "NodeRoles",
    "Orchestrator",
    "RelayConfig",
    "build_orchestrator",
    "config",
]
