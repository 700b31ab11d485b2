"""Shared pytest fixtures for ComfyRelay tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from backend_fakes import BACKEND_URL, FakeBackend, SleepRecorder
from comfyrelay.core.config import DEFAULT_WORKFLOW_PATH, RelayConfig
from comfyrelay.core.orchestrator import Orchestrator, build_orchestrator


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def template() -> dict:
    """The packaged default job template, parsed."""
    return json.loads(DEFAULT_WORKFLOW_PATH.read_text(encoding="utf-8"))


@pytest.fixture
def test_config() -> RelayConfig:
    """Create a test configuration pointing at the fake backend.

    Returns:
        RelayConfig with a small attempt budget and distinct sleep intervals
    """
    return RelayConfig(
        _env_file=None,
        comfyui_url=BACKEND_URL,
        max_poll_attempts=5,
        pending_interval=5.0,
        error_interval=2.0,
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def orchestrator(test_config, fake_backend, sleep_recorder) -> Orchestrator:
    """An orchestrator wired to the fake backend with its template loaded."""
    orch = build_orchestrator(test_config, transport=fake_backend.transport, sleep=sleep_recorder)
    orch.startup()
    return orch


@pytest.fixture
def test_client(monkeypatch, test_config, fake_backend, sleep_recorder) -> Generator[TestClient, None, None]:
    """FastAPI TestClient whose orchestrator talks to the fake backend."""
    from comfyrelay.api import main

    def _build(_config):
        return build_orchestrator(test_config, transport=fake_backend.transport, sleep=sleep_recorder)

    monkeypatch.setattr(main, "build_orchestrator", _build)
    with TestClient(main.app) as client:
        yield client
