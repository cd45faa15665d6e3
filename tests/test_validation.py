"""Tests for the workflow validator."""

import pytest

from stepflow.core.exceptions import GraphValidationError
from stepflow.models import IssueType

from conftest import chain, make_flow


def issue_ids(result):
    return [issue.id for issue in result.issues]


class TestWorkflowValidator:

    def test_clean_workflow(self, validator, order_flow):
        result = validator.validate_workflow(order_flow, "r")

        assert result.is_valid
        assert result.issues == []
        assert result.score == 100

    def test_validates_every_workflow_by_default(self, validator):
        flow = make_flow({"good": chain("A"), "bad": chain("B", "C")}, steps={"A": {"type": "a"}, "B": {"type": "b"}})

        result = validator.validate_workflow(flow)

        assert not result.is_valid
        assert "unknown-edge-target-0" in issue_ids(result)

    def test_unknown_workflow(self, validator, order_flow):
        result = validator.validate_workflow(order_flow, "nope")

        assert not result.is_valid
        assert result.errors[0].description == "Request nope not found"

    def test_missing_root_step(self, validator):
        flow = make_flow({"r": chain("A")}, steps={})

        result = validator.validate_workflow(flow, "r")

        assert "missing-root-A" in issue_ids(result)
        assert "unknown-edge-source-0" in issue_ids(result)

    def test_unknown_edge_target_costs_fifteen_points(self, validator):
        flow = make_flow({"r": {"root": "A", "edges": [{"from": "A", "to": "Ghost"}, {"from": "A", "to": "SUCCESS"}]}},
                         steps={"A": {"type": "a"}})

        result = validator.validate_workflow(flow, "r")

        assert [issue.id for issue in result.errors] == ["unknown-edge-target-0"]
        assert result.score == 85

    def test_unknown_alternative_target(self, validator):
        flow = make_flow({"r": {"root": "A", "edges": [{
            "from": "A",
            "to": "SUCCESS",
            "guard": "IsValid",
            "onFailure": {"strategy": "ALTERNATIVE", "alternativeTarget": "Nowhere"}
        }]}})

        result = validator.validate_workflow(flow, "r")

        assert "unknown-alternative-target-0" in issue_ids(result)

    def test_cycle_reported_with_path(self, validator):
        flow = make_flow({"r": {"root": "A", "edges": [
            {"from": "A", "to": "B"},
            {"from": "B", "to": "A"},
            {"from": "B", "to": "SUCCESS"}
        ]}})

        result = validator.validate_workflow(flow, "r")

        assert result.is_valid
        cycle = next(issue for issue in result.warnings if issue.id.startswith("cycle-"))
        assert cycle.description == "Cycle detected: A → B → A"
        assert result.score == 95

    def test_no_terminal_path(self, validator):
        flow = make_flow({"r": {"root": "A", "edges": [{"from": "A", "to": "B"}, {"from": "B", "to": "A"}]}})

        result = validator.validate_workflow(flow, "r")

        assert "no-terminal-path" in issue_ids(result)
        assert result.score == 90

    def test_dead_end_counts_as_termination(self, validator):
        flow = make_flow({"r": chain("A", "B", terminal=None)})

        assert "no-terminal-path" not in issue_ids(validator.validate_workflow(flow, "r"))

    def test_unreachable_step(self, validator):
        flow = make_flow({"r": {"root": "A", "edges": [
            {"from": "A", "to": "SUCCESS"},
            {"from": "Orphan", "to": "SUCCESS"}
        ]}})

        result = validator.validate_workflow(flow, "r")

        unreachable = [issue for issue in result.warnings if issue.id == "unreachable-node-Orphan"]
        assert len(unreachable) == 1
        assert unreachable[0].node_id == "Orphan"

    def test_retry_checks(self, validator):
        flow = make_flow({"r": chain("A", "B")}, steps={
            "A": {"type": "a", "retry": {"maxAttempts": 12, "delay": 100}},
            "B": {"type": "b", "retry": {"maxAttempts": 3, "delay": 0, "guard": "IsTransient"}}
        })

        result = validator.validate_workflow(flow, "r")

        assert "high-retry-count-A" in [issue.id for issue in result.warnings]
        assert "retry-without-guard-A" in [issue.id for issue in result.infos]
        assert "retry-without-guard-B" not in issue_ids(result)

    def test_legacy_failed_terminal(self, validator):
        flow = make_flow({"r": chain("A", terminal="FAILED")})

        result = validator.validate_workflow(flow, "r")

        assert result.is_valid
        assert [issue.id for issue in result.infos] == ["legacy-terminal-0"]
        assert result.score == 100

    def test_empty_step_type(self, validator):
        flow = make_flow({"r": chain("A")}, steps={"A": {"type": "   "}})

        result = validator.validate_workflow(flow, "r")

        assert "empty-step-type-A" in [issue.id for issue in result.errors]

    def test_performance_hints(self, validator):
        step_ids = [f"S{index}" for index in range(12)]
        steps = {step_id: {"type": "t"} for step_id in step_ids}
        steps["S0"]["config"] = {f"key{index}": index for index in range(11)}
        flow = make_flow({"deep": chain(*step_ids)}, steps=steps)

        result = validator.validate_workflow(flow, "deep")

        assert {"high-depth", "complex-config-S0"} <= {issue.id for issue in result.infos}
        assert all(issue.type == IssueType.INFO for issue in result.issues)

    def test_unparseable_config(self, validator):
        result = validator.validate_workflow({"steps": {"A": {}}, "requests": {}})

        assert not result.is_valid
        assert issue_ids(result) == ["invalid-flow-config"]

    def test_no_workflows(self, validator):
        result = validator.validate_workflow({"steps": {"A": {"type": "a"}}})

        assert issue_ids(result) == ["no-workflows"]

    def test_validate_or_raise(self, validator, order_flow):
        assert validator.validate_or_raise(order_flow, "r").is_valid

        with pytest.raises(GraphValidationError) as error_info:
            validator.validate_or_raise(order_flow, "nope")

        assert error_info.value.validation_errors == ["Workflow Not Found: Request nope not found"]
        assert error_info.value.context["workflow_name"] == "nope"

    def test_score_never_negative(self, validator):
        edges = [{"from": "A", "to": f"Ghost{index}"} for index in range(8)]
        flow = make_flow({"r": {"root": "A", "edges": edges}}, steps={"A": {"type": "a"}})

        assert validator.validate_workflow(flow, "r").score == 0

    def test_validation_summary(self, validator, order_flow):
        clean = validator.validate_workflow(order_flow, "r")
        broken = validator.validate_workflow(order_flow, "nope")

        assert validator.get_validation_summary(clean) == "Workflow is valid (score 100/100)"
        assert validator.get_validation_summary(broken) == "Workflow has 1 error(s) and 0 warning(s) (score 85/100)"
