"""Configuration management for ComfyRelay.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the COMFYRELAY_ prefix,
allowing the backend address, polling budget and server binding to be changed
without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (COMFYRELAY_* prefix)
2. .env file in the project root
3. Default values defined in RelayConfig

Example .env file:
    COMFYRELAY_COMFYUI_URL=http://192.168.4.208:8188
    COMFYRELAY_WORKFLOW_PATH=workflows/ComfyUIImagegen.json
    COMFYRELAY_MAX_POLL_ATTEMPTS=120
    COMFYRELAY_SERVER_PORT=3000

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from comfyrelay.core.config import config

    print(config.comfyui_url)
    print(config.node_roles.sampler)

Workflow Node Roles
-------------------
The job template is a ComfyUI "API format" graph keyed by node id.  The five
bindable fields are located through fixed node ids configured here, so a
different template layout only needs different ``*_node`` values:

- prompt_node: CLIPTextEncode holding the positive prompt
- negative_prompt_node: CLIPTextEncode holding the negative prompt
- image_size_node: EmptyLatentImage holding width/height
- sampler_node: KSampler holding steps/cfg/seed
- output_node: SaveImage whose history output lists the produced images
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# The default template ships inside the package.
DEFAULT_WORKFLOW_PATH = Path(__file__).resolve().parent.parent / "data" / "workflow_api.json"


@dataclass(frozen=True)
class NodeRoles:
    """Node ids of the template nodes that the binder and poller address by role."""

    prompt: str = "6"
    negative_prompt: str = "7"
    image_size: str = "5"
    sampler: str = "3"
    output: str = "9"

    def bindable(self) -> dict[str, str]:
        """Return the roles the binder writes to, keyed by role name."""
        return {
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt,
            "image_size": self.image_size,
            "sampler": self.sampler,
        }


class RelayConfig(BaseSettings):
    """Main configuration for ComfyRelay.

    Values are loaded from environment variables with the COMFYRELAY_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Backend:
        comfyui_url : str
            Base address of the generation backend (no trailing slash)
        request_timeout : float
            Timeout in seconds for a single HTTP exchange with the backend

    Template:
        workflow_path : Path
            JSON job template in ComfyUI API format
        prompt_node, negative_prompt_node, image_size_node, sampler_node, output_node : str
            Node ids for each bindable role (see module docstring)

    Polling:
        max_poll_attempts : int
            Attempt budget before a generation is reported as timed out
        pending_interval : float
            Seconds to wait while the job is known to be queued or running
        error_interval : float
            Seconds to wait when the job state is ambiguous or a query failed

    Proxy:
        default_content_type : str
            Content type used when the backend does not declare one

    Server:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        log_level : str
            Root logging level used by the CLI entry point

    Examples
    --------
        >>> custom_config = RelayConfig(
        ...     comfyui_url="http://gpu-box:8188",
        ...     max_poll_attempts=10,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COMFYRELAY_",
        case_sensitive=False,
    )

    # Backend settings
    comfyui_url: str = Field(
        default="http://127.0.0.1:8188",
        description="Base address of the ComfyUI backend",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for one HTTP exchange with the backend",
        gt=0,
    )

    # Template settings
    workflow_path: Path = Field(
        default=DEFAULT_WORKFLOW_PATH,
        description="Job template in ComfyUI API format",
    )
    prompt_node: str = Field(default="6", description="Positive prompt node id")
    negative_prompt_node: str = Field(default="7", description="Negative prompt node id")
    image_size_node: str = Field(default="5", description="Latent image size node id")
    sampler_node: str = Field(default="3", description="Sampler node id")
    output_node: str = Field(default="9", description="Image-producing node id")

    # Polling settings
    max_poll_attempts: int = Field(
        default=60,
        description="Polling attempts before giving up",
        ge=1,
    )
    pending_interval: float = Field(
        default=5.0,
        description="Seconds to wait while the job is queued or running",
        ge=0,
    )
    error_interval: float = Field(
        default=2.0,
        description="Seconds to wait when job state is ambiguous or a query failed",
        ge=0,
    )

    # Proxy settings
    default_content_type: str = Field(
        default="image/png",
        description="Content type used when the backend does not send one",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level",
    )

    @field_validator("comfyui_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        # URL building and the proxy prefix check both assume no trailing slash.
        return value.rstrip("/")

    @property
    def node_roles(self) -> NodeRoles:
        """Return the configured node ids grouped as a :class:`NodeRoles`."""
        return NodeRoles(
            prompt=self.prompt_node,
            negative_prompt=self.negative_prompt_node,
            image_size=self.image_size_node,
            sampler=self.sampler_node,
            output=self.output_node,
        )


# Global configuration instance
# Loads values from environment variables (COMFYRELAY_* prefix) and .env file.
config = RelayConfig()
