"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from nodeflow.config import get_testing_config
from nodeflow.core.action_registry import ActionRegistry
from nodeflow.core.execution_engine import WorkflowExecutionEngine
from nodeflow.core.http_client import HttpResponse
from nodeflow.models.core import WorkflowDefinition


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHttpClient:
    """Records outbound requests and answers with a canned response."""

    def __init__(self, response: Optional[HttpResponse] = None, error: Optional[Exception] = None):
        self.response = response or HttpResponse(200, {"Content-Type": "application/json"}, {"ok": True})
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def request(self, method, url, headers=None, body=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "body": body, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


class RecordingSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


def echo_action(node_input, **parameters):
    return {"received": node_input, "parameters": parameters}


def failing_action(node_input, **parameters):
    raise RuntimeError("kaboom")


def mutating_action(node_input, **parameters):
    node_input["mutated"] = True
    return node_input


async def slow_action(node_input, seconds: float = 1.0, **parameters):
    await asyncio.sleep(seconds)
    return {"slept": seconds}


@pytest.fixture
def action_registry():
    """Create an ActionRegistry with the test actions registered."""
    registry = ActionRegistry()
    registry.register_action("echo", echo_action, "Returns its input and parameters")
    registry.register_action("fail", failing_action, "Always raises")
    registry.register_action("mutate", mutating_action, "Mutates its input in place")
    registry.register_action("slow", slow_action, "Sleeps before answering")
    return registry


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_http():
    return FakeHttpClient()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def engine(action_registry, fake_http, fake_clock, recording_sleep):
    """Create a WorkflowExecutionEngine with fake I/O collaborators."""
    return WorkflowExecutionEngine(
        action_registry=action_registry,
        http_client=fake_http,
        retention_seconds=60,
        clock=fake_clock,
        sleep=recording_sleep,
    )


@pytest.fixture
def testing_config():
    return get_testing_config()


@pytest.fixture
def make_workflow():
    """Build a WorkflowDefinition from compact node and edge descriptions.

    Nodes are ``(id, type)`` or ``(id, type, config)`` tuples; edges are
    ``(source, target)`` or ``(source, target, label)`` tuples.
    """
    def _make(nodes, edges=(), error_handling="stop", workflow_id="wf-test", version=1):
        node_dicts = []
        for entry in nodes:
            node_id, node_type = entry[0], entry[1]
            node = {"id": node_id, "type": node_type, "data": {"label": node_id.upper()}}
            if len(entry) > 2:
                node["data"]["config"] = entry[2]
            node_dicts.append(node)

        edge_dicts = []
        for index, entry in enumerate(edges):
            edge = {"id": f"e{index}", "source": entry[0], "target": entry[1]}
            if len(entry) > 2:
                edge["label"] = entry[2]
            edge_dicts.append(edge)

        return WorkflowDefinition.model_validate({
            "id": workflow_id,
            "version": version,
            "nodes": node_dicts,
            "edges": edge_dicts,
            "settings": {"errorHandling": error_handling},
        })

    return _make
