"""Tests for comfyrelay.core.submitter — job submission."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from comfyrelay.core.backend import BackendClient
from comfyrelay.core.errors import SubmissionError
from comfyrelay.core.models import BoundJob
from comfyrelay.core.submitter import JobSubmitter, new_client_id

from backend_fakes import BACKEND_URL, Reply


def _submit(fake_backend, job: BoundJob):
    backend = BackendClient(BACKEND_URL, transport=fake_backend.transport)
    return asyncio.run(JobSubmitter(backend).submit(job))


@pytest.fixture
def job(template) -> BoundJob:
    return BoundJob(graph=template, seed=42)


class TestSubmit:
    def test_returns_backend_prompt_id(self, fake_backend, job):
        handle = _submit(fake_backend, job)
        assert handle.prompt_id == "abc123"
        assert len(handle.client_id) == 32

    def test_posts_graph_and_client_id(self, fake_backend, job):
        handle = _submit(fake_backend, job)
        bodies = fake_backend.submitted_bodies()
        assert len(bodies) == 1
        assert bodies[0]["prompt"] == job.graph
        assert bodies[0]["client_id"] == handle.client_id

    def test_numeric_prompt_id_stringified(self, fake_backend, job):
        fake_backend.prompt_replies = [{"prompt_id": 17}]
        assert _submit(fake_backend, job).prompt_id == "17"

    def test_rejected_job_carries_backend_payload(self, fake_backend, job):
        error_body = {
            "error": {"type": "prompt_outputs_failed_validation", "message": "Prompt outputs failed validation"},
            "node_errors": {"4": {"errors": ["ckpt_name not in list"]}},
        }
        fake_backend.prompt_replies = [Reply(status_code=400, json=error_body)]

        with pytest.raises(SubmissionError) as excinfo:
            _submit(fake_backend, job)
        assert "HTTP 400" in excinfo.value.message
        assert excinfo.value.details == error_body

    def test_non_json_error_body(self, fake_backend, job):
        fake_backend.prompt_replies = [Reply(status_code=500, content=b"Internal Server Error")]
        with pytest.raises(SubmissionError) as excinfo:
            _submit(fake_backend, job)
        assert excinfo.value.details == "Internal Server Error"

    def test_missing_prompt_id(self, fake_backend, job):
        fake_backend.prompt_replies = [{"number": 3}]
        with pytest.raises(SubmissionError, match="prompt_id"):
            _submit(fake_backend, job)

    def test_unreachable_backend(self, fake_backend, job):
        fake_backend.prompt_replies = [httpx.ConnectError("connection refused")]
        with pytest.raises(SubmissionError, match="Failed to reach"):
            _submit(fake_backend, job)


class TestClientId:
    def test_client_ids_are_hex(self):
        client_id = new_client_id()
        assert len(client_id) == 32
        int(client_id, 16)

    def test_client_ids_vary(self):
        assert len({new_client_id() for _ in range(50)}) == 50
