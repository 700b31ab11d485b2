"""Tests for comfyrelay.core.orchestrator — end-to-end generation flow.

All backend traffic goes to :class:`FakeBackend`; sleeps are recorded, not
awaited.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from backend_fakes import Reply, history_payload, queue_payload
from comfyrelay.core.config import RelayConfig
from comfyrelay.core.errors import (
    GenerationTimedOut,
    SubmissionError,
    TemplateNotBound,
    TemplateUnavailable,
    ValidationError,
)
from comfyrelay.core.models import GenerationRequest
from comfyrelay.core.orchestrator import build_orchestrator

IMAGE = {"filename": "out.png", "subfolder": "", "type": "output"}


class TestGenerate:
    def test_scenario_end_to_end(self, orchestrator, fake_backend, sleep_recorder):
        """Bind, submit, one pending round, then completion from history."""
        fake_backend.queue_replies = [queue_payload(pending=["abc123"]), queue_payload()]
        fake_backend.history_replies = [history_payload("abc123", [IMAGE])]

        request = GenerationRequest(prompt="a cat", width=640, height=480, steps=20, cfg=7.5, seed=42)
        reference = asyncio.run(orchestrator.generate(request))

        assert (reference.filename, reference.subfolder, reference.kind) == ("out.png", "", "output")
        assert reference.url.startswith("http://comfy.test:8188/view?")

        graph = fake_backend.submitted_bodies()[0]["prompt"]
        assert {k: graph["3"]["inputs"][k] for k in ("steps", "cfg", "seed")} == {
            "steps": 20,
            "cfg": 7.5,
            "seed": 42,
        }
        assert {k: graph["5"]["inputs"][k] for k in ("width", "height")} == {"width": 640, "height": 480}
        assert sleep_recorder.calls == [5.0]

    @pytest.mark.parametrize("prompt", ["", "   ", "\n"])
    def test_blank_prompt_rejected_before_backend(self, orchestrator, fake_backend, prompt):
        with pytest.raises(ValidationError, match="Prompt is required"):
            asyncio.run(orchestrator.generate(GenerationRequest(prompt=prompt)))
        assert fake_backend.requests == []

    def test_submits_exactly_once(self, orchestrator, fake_backend):
        fake_backend.history_replies = [{}, {}, history_payload("abc123", [IMAGE])]
        asyncio.run(orchestrator.generate(GenerationRequest(prompt="a cat")))
        assert len(fake_backend.requests_to("/prompt")) == 1

    def test_submission_error_propagates(self, orchestrator, fake_backend):
        fake_backend.prompt_replies = [Reply(status_code=400, json={"error": "invalid prompt"})]
        with pytest.raises(SubmissionError) as excinfo:
            asyncio.run(orchestrator.generate(GenerationRequest(prompt="a cat")))
        assert excinfo.value.details == {"error": "invalid prompt"}
        assert fake_backend.requests_to("/queue") == []

    def test_timeout(self, orchestrator, fake_backend):
        fake_backend.queue_replies = [queue_payload(running=["abc123"])]
        with pytest.raises(GenerationTimedOut) as excinfo:
            asyncio.run(orchestrator.generate(GenerationRequest(prompt="a cat")))
        assert excinfo.value.details == {"prompt_id": "abc123", "attempts": 5}

    def test_template_not_loaded(self, test_config, fake_backend):
        orch = build_orchestrator(test_config, transport=fake_backend.transport)
        with pytest.raises(TemplateNotBound):
            asyncio.run(orch.generate(GenerationRequest(prompt="a cat")))
        assert fake_backend.requests == []

    def test_concurrent_requests_are_independent(self, orchestrator, fake_backend):
        fake_backend.prompt_replies = [{"prompt_id": "job-1"}, {"prompt_id": "job-2"}]
        fake_backend.history_replies = [
            {
                "job-1": {"outputs": {"9": {"images": [{"filename": "one.png", "subfolder": "", "type": "output"}]}}},
                "job-2": {"outputs": {"9": {"images": [{"filename": "two.png", "subfolder": "", "type": "output"}]}}},
            }
        ]

        async def _run():
            return await asyncio.gather(
                orchestrator.generate(GenerationRequest(prompt="first", seed=1)),
                orchestrator.generate(GenerationRequest(prompt="second", seed=2)),
            )

        first, second = asyncio.run(_run())
        assert {first.filename, second.filename} == {"one.png", "two.png"}

        prompts = sorted(body["prompt"]["6"]["inputs"]["text"] for body in fake_backend.submitted_bodies())
        assert prompts == ["first", "second"]
        assert orchestrator.store.template["6"]["inputs"]["text"] == "a beautiful landscape"


class TestStartup:
    def test_missing_template_is_fatal(self, temp_dir, fake_backend):
        cfg = RelayConfig(_env_file=None, workflow_path=temp_dir / "missing.json")
        orch = build_orchestrator(cfg, transport=fake_backend.transport)
        with pytest.raises(TemplateUnavailable):
            orch.startup()


class TestHealthCheck:
    def test_connected(self, orchestrator, fake_backend):
        fake_backend.queue_replies = [queue_payload(pending=["x"])]
        status = asyncio.run(orchestrator.health_check())
        assert status.connected is True
        assert status.queue["queue_pending"][0][1] == "x"

    def test_disconnected_on_transport_error(self, orchestrator, fake_backend):
        fake_backend.queue_replies = [httpx.ConnectError("connection refused")]
        status = asyncio.run(orchestrator.health_check())
        assert status.connected is False
        assert "connection refused" in status.error

    def test_disconnected_on_error_status(self, orchestrator, fake_backend):
        fake_backend.queue_replies = [Reply(status_code=502, json={"error": "bad gateway"})]
        status = asyncio.run(orchestrator.health_check())
        assert status.connected is False
