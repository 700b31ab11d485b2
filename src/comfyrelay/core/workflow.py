"""Job template loading and parameter binding.

The backend accepts a node graph in ComfyUI "API format": a JSON object keyed
by node id, where each node has a ``class_type`` and an ``inputs`` mapping::

    {
        "3": {"class_type": "KSampler", "inputs": {"seed": 0, "steps": 20, ...}},
        "5": {"class_type": "EmptyLatentImage", "inputs": {"width": 512, ...}},
        ...
    }

This module owns three pieces:

- :class:`TemplateStore` loads that document once at startup and keeps it
  for the lifetime of the process.  Callers only ever receive copies.
- :class:`WorkflowGraph` wraps a graph and exposes its inputs by logical
  role (prompt, negative prompt, image size, sampler) so binding code never
  spells out raw node ids.
- :func:`bind_workflow` / :class:`ParameterBinder` deep-copy the template and
  write the five request fields into the copy.

Usage
-----
::

    store = TemplateStore(config.workflow_path, config.node_roles)
    store.load()

    binder = ParameterBinder(store)
    job = binder.bind(GenerationRequest(prompt="a cat", seed=42))
"""

from __future__ import annotations

import copy
import json
import logging
import random
from pathlib import Path

from comfyrelay.core.config import NodeRoles
from comfyrelay.core.errors import TemplateNotBound, TemplateUnavailable
from comfyrelay.core.models import SEED_RANGE, BoundJob, GenerationRequest

logger = logging.getLogger(__name__)

# Seeds only need to vary between requests; they carry no security weight.
_seed_rng = random.Random()


def random_seed() -> int:
    """Draw a sampler seed uniformly from ``[0, 10**15)``."""
    return _seed_rng.randrange(SEED_RANGE)


class TemplateStore:
    """Holds the job template loaded from disk.

    Attributes:
        path: Location of the JSON template.
        roles: Node ids that must exist in the template.
    """

    def __init__(self, path: Path | str, roles: NodeRoles | None = None) -> None:
        self.path = Path(path)
        self.roles = roles or NodeRoles()
        self._template: dict | None = None

    @property
    def loaded(self) -> bool:
        """True once :meth:`load` has succeeded."""
        return self._template is not None

    @property
    def template(self) -> dict:
        """A private deep copy of the loaded template.

        Every access returns a fresh copy, so editing the result never
        reaches the stored template or another request.

        Raises:
            TemplateNotBound: If :meth:`load` has not succeeded yet.
        """
        if self._template is None:
            raise TemplateNotBound("Workflow template not loaded")
        return copy.deepcopy(self._template)

    def load(self) -> dict:
        """Read, parse and check the template document.

        Returns:
            A copy of the parsed template.

        Raises:
            TemplateUnavailable: If the file is missing or unreadable, is not
                valid JSON, is not a mapping of node id to node definition,
                or lacks a node for one of the bindable roles.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateUnavailable(f"Cannot read workflow template {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise TemplateUnavailable(f"Workflow template {self.path} is not valid JSON: {e}") from e

        _check_template(data, self.roles)
        self._template = data
        logger.info(f"Workflow template loaded from {self.path} ({len(data)} nodes)")
        return copy.deepcopy(data)


def _check_template(data: object, roles: NodeRoles) -> None:
    """Raise :class:`TemplateUnavailable` unless *data* is a bindable node graph."""
    if not isinstance(data, dict) or not data:
        raise TemplateUnavailable("Workflow template must be a non-empty JSON object")

    for node_id, node in data.items():
        if not isinstance(node, dict) or not isinstance(node.get("inputs"), dict):
            raise TemplateUnavailable(f"Workflow node {node_id!r} has no 'inputs' mapping")

    for role, node_id in roles.bindable().items():
        if node_id not in data:
            raise TemplateUnavailable(f"Workflow template has no {role} node (id {node_id!r})")


class WorkflowGraph:
    """Role-keyed view over a node graph.

    The graph is edited in place, so wrap a copy rather than the shared
    template.
    """

    def __init__(self, graph: dict, roles: NodeRoles) -> None:
        self.graph = graph
        self.roles = roles

    def _inputs(self, node_id: str) -> dict:
        return self.graph[node_id]["inputs"]

    @property
    def prompt_inputs(self) -> dict:
        return self._inputs(self.roles.prompt)

    @property
    def negative_prompt_inputs(self) -> dict:
        return self._inputs(self.roles.negative_prompt)

    @property
    def image_size_inputs(self) -> dict:
        return self._inputs(self.roles.image_size)

    @property
    def sampler_inputs(self) -> dict:
        return self._inputs(self.roles.sampler)

    def set_prompt(self, text: str) -> None:
        self.prompt_inputs["text"] = text

    def set_negative_prompt(self, text: str) -> None:
        self.negative_prompt_inputs["text"] = text

    def set_image_size(self, width: int, height: int) -> None:
        inputs = self.image_size_inputs
        inputs["width"] = width
        inputs["height"] = height

    def set_sampling(self, steps: int, cfg: float, seed: int) -> None:
        inputs = self.sampler_inputs
        inputs["steps"] = steps
        inputs["cfg"] = cfg
        inputs["seed"] = seed


def bind_workflow(
    template: dict,
    request: GenerationRequest,
    roles: NodeRoles | None = None,
) -> BoundJob:
    """Produce a submittable job from *template* and *request*.

    The template is deep-copied first, so concurrent binds never see each
    other's values and the shared template keeps its original contents.
    Exactly the prompt text, negative prompt text, width/height and
    steps/cfg/seed inputs are written; every other node is left as is.

    Args:
        template: The loaded job template.
        request: A coerced generation request.
        roles: Node ids for each role (defaults to :class:`NodeRoles`).

    Returns:
        The bound job, including the seed that was used.
    """
    return _bind_graph(copy.deepcopy(template), request, roles or NodeRoles())


def _bind_graph(graph_data: dict, request: GenerationRequest, roles: NodeRoles) -> BoundJob:
    """Write *request* into *graph_data* in place."""
    graph = WorkflowGraph(graph_data, roles)
    seed = request.seed if request.seed is not None else random_seed()

    graph.set_prompt(request.prompt)
    graph.set_negative_prompt(request.negative_prompt)
    graph.set_image_size(request.width, request.height)
    graph.set_sampling(request.steps, request.cfg, seed)

    return BoundJob(graph=graph.graph, seed=seed)


class ParameterBinder:
    """Binds requests against the template held by a :class:`TemplateStore`."""

    def __init__(self, store: TemplateStore) -> None:
        self._store = store

    def bind(self, request: GenerationRequest) -> BoundJob:
        """Bind *request* against the store's template.

        Raises:
            TemplateNotBound: If the store has not loaded a template.
        """
        # The store already hands out a fresh copy.
        return _bind_graph(self._store.template, request, self._store.roles)
