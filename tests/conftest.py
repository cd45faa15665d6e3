"""Pytest configuration and fixtures."""

import random
from typing import Any, Dict, List

import pytest

from stepflow.config import get_testing_config, reset_config
from stepflow.core.layout_engine import LayoutEngine
from stepflow.core.simulator import WorkflowSimulator
from stepflow.core.validation import WorkflowValidator
from stepflow.models import FlowConfig


def make_flow(requests: Dict[str, Any], steps: Dict[str, Any] = None) -> FlowConfig:
    """Build a FlowConfig; steps default to one catalog entry per referenced id."""
    if steps is None:
        steps = {}
        for workflow in requests.values():
            ids = [workflow["root"]]
            for edge in workflow.get("edges", []):
                ids.extend([edge["from"], edge["to"]])
            for step_id in ids:
                if step_id not in ("SUCCESS", "FAILURE", "FAILED"):
                    steps.setdefault(step_id, {"type": f"{step_id}Step"})
    return FlowConfig.model_validate({"steps": steps, "requests": requests})


def chain(*step_ids: str, terminal: str = "SUCCESS") -> Dict[str, Any]:
    """A linear workflow through ``step_ids`` ending in ``terminal``."""
    edges: List[Dict[str, str]] = [
        {"from": source, "to": target} for source, target in zip(step_ids, step_ids[1:])
    ]
    if terminal:
        edges.append({"from": step_ids[-1], "to": terminal})
    return {"root": step_ids[0], "edges": edges}


@pytest.fixture
def order_flow() -> FlowConfig:
    """Two steps of distinct types: A(t1) -> B(t2) -> SUCCESS."""
    return FlowConfig.model_validate({
        "steps": {
            "A": {"type": "t1"},
            "B": {"type": "t2"}
        },
        "requests": {
            "r": {
                "root": "A",
                "edges": [
                    {"from": "A", "to": "B"},
                    {"from": "B", "to": "SUCCESS"}
                ]
            }
        }
    })


@pytest.fixture
def three_step_flow() -> FlowConfig:
    return make_flow({"r": chain("A", "B", "C")})


@pytest.fixture
def simulator() -> WorkflowSimulator:
    """Simulator with instantaneous steps and a seeded random source."""
    return WorkflowSimulator(min_processing_ms=0, max_processing_ms=0, rng=random.Random(7))


@pytest.fixture
def slow_simulator() -> WorkflowSimulator:
    """Simulator whose steps take a fixed 30 ms, for pause and stop tests."""
    return WorkflowSimulator(min_processing_ms=30, max_processing_ms=30, rng=random.Random(7))


@pytest.fixture
def layout_engine() -> LayoutEngine:
    return LayoutEngine()


@pytest.fixture
def validator() -> WorkflowValidator:
    return WorkflowValidator()


@pytest.fixture
def client():
    """Test client over an app built from the testing configuration."""
    from fastapi.testclient import TestClient
    from stepflow.factory import create_app

    app = create_app(get_testing_config())
    with TestClient(app) as test_client:
        yield test_client
    reset_config()
