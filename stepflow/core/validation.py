"""Structural and configuration checks for workflow definitions."""

from collections import deque
from typing import Dict, List, Optional, Set, Union

from pydantic import ValidationError

from ..models.graph import LEGACY_FAILURE, FlowConfig, WorkflowDefinition, is_terminal_id
from ..models.validation import IssueCategory, IssueType, ValidationIssue, ValidationResult
from .exceptions import GraphValidationError
from .logging import get_logger

logger = get_logger(__name__)

MAX_RETRY_ATTEMPTS = 10
MAX_DEPTH = 10
MAX_CONFIG_KEYS = 10

ERROR_PENALTY = 15
WARNING_PENALTY = 5


class WorkflowValidator:
    """Validates workflows of a flow configuration and scores their quality."""

    def validate_workflow(
        self,
        flow_config: Union[FlowConfig, Dict],
        request_name: Optional[str] = None
    ) -> ValidationResult:
        """
        Validate one workflow, or every workflow when ``request_name`` is None.

        Args:
            flow_config: Step catalog plus workflows
            request_name: Name of the workflow to check

        Returns:
            ValidationResult: issues found plus a 0-100 quality score
        """
        try:
            config = flow_config if isinstance(flow_config, FlowConfig) else FlowConfig.model_validate(flow_config)
        except ValidationError as e:
            logger.debug(f"Flow configuration failed to parse: {str(e)}")
            return self._result([ValidationIssue(
                id="invalid-flow-config",
                type=IssueType.ERROR,
                category=IssueCategory.CONFIGURATION,
                title="Invalid Flow Configuration",
                description=f"Flow configuration could not be parsed: {e.error_count()} error(s)",
                suggestion="Check field names and value types against the configuration format"
            )])

        issues: List[ValidationIssue] = []
        names = [request_name] if request_name is not None else config.workflow_names()

        if not names:
            issues.append(ValidationIssue(
                id="no-workflows",
                type=IssueType.ERROR,
                category=IssueCategory.STRUCTURE,
                title="No Workflows",
                description="Flow configuration defines no workflows",
                suggestion="Add a workflow under 'requests' or 'workflows'"
            ))

        for name in names:
            workflow = config.find_workflow(name)
            if workflow is None:
                issues.append(ValidationIssue(
                    id=f"missing-workflow-{name}",
                    type=IssueType.ERROR,
                    category=IssueCategory.STRUCTURE,
                    title="Workflow Not Found",
                    description=f"Request {name} not found",
                    suggestion="Check the workflow name or add it to the configuration"
                ))
                continue

            issues.extend(self._validate_structure(config, workflow))
            issues.extend(self._validate_configuration(config, workflow))
            issues.extend(self._validate_logic(workflow))
            issues.extend(self._validate_performance(config, workflow))

        result = self._result(issues)
        logger.debug(
            f"Workflow validation completed. Valid: {result.is_valid}, "
            f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}"
        )
        return result

    def validate_or_raise(
        self,
        flow_config: Union[FlowConfig, Dict],
        request_name: Optional[str] = None
    ) -> ValidationResult:
        """
        Validate and raise if any error-level issue was found.

        Raises:
            GraphValidationError: Listing the titles of the error issues
        """
        result = self.validate_workflow(flow_config, request_name)
        if not result.is_valid:
            messages = [f"{issue.title}: {issue.description}" for issue in result.errors]
            raise GraphValidationError(
                f"Workflow validation failed with {len(messages)} error(s)",
                validation_errors=messages,
                workflow_name=request_name
            )
        return result

    @staticmethod
    def get_validation_summary(result: ValidationResult) -> str:
        """One-line human readable summary of a validation result."""
        errors = len(result.errors)
        warnings = len(result.warnings)

        if errors == 0 and warnings == 0:
            return f"Workflow is valid (score {result.score}/100)"
        if errors == 0:
            return f"Workflow is valid with {warnings} warning(s) (score {result.score}/100)"
        return f"Workflow has {errors} error(s) and {warnings} warning(s) (score {result.score}/100)"

    # Checks

    def _validate_structure(self, config: FlowConfig, workflow: WorkflowDefinition) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        if config.find_step(workflow.root) is None:
            issues.append(ValidationIssue(
                id=f"missing-root-{workflow.root}",
                type=IssueType.ERROR,
                category=IssueCategory.STRUCTURE,
                title="Missing Root Step",
                description=f"Root step '{workflow.root}' is not defined in the step catalog",
                node_id=workflow.root,
                suggestion="Define the root step under 'steps' or pick another root"
            ))

        for index, edge in enumerate(workflow.edges):
            if not self._resolves(config, edge.from_step):
                issues.append(ValidationIssue(
                    id=f"unknown-edge-source-{index}",
                    type=IssueType.ERROR,
                    category=IssueCategory.STRUCTURE,
                    title="Unknown Edge Source",
                    description=f"Edge #{index} starts at undefined step '{edge.from_step}'",
                    node_id=edge.from_step,
                    suggestion="Define the step or remove the edge"
                ))
            if not self._resolves(config, edge.to_step):
                issues.append(ValidationIssue(
                    id=f"unknown-edge-target-{index}",
                    type=IssueType.ERROR,
                    category=IssueCategory.STRUCTURE,
                    title="Unknown Edge Target",
                    description=f"Edge #{index} points to undefined step '{edge.to_step}'",
                    node_id=edge.from_step,
                    suggestion="Point the edge at a defined step, SUCCESS or FAILURE"
                ))
            alternative = edge.on_failure.alternative_target if edge.on_failure else None
            if alternative and not self._resolves(config, alternative):
                issues.append(ValidationIssue(
                    id=f"unknown-alternative-target-{index}",
                    type=IssueType.ERROR,
                    category=IssueCategory.CONFIGURATION,
                    title="Unknown Alternative Target",
                    description=f"Edge #{index} falls back to undefined step '{alternative}'",
                    node_id=edge.from_step,
                    suggestion="Set alternativeTarget to a defined step"
                ))

        reachable = self._reachable_from(workflow, workflow.root)
        for step_id in sorted(self._workflow_steps(workflow) - reachable):
            issues.append(ValidationIssue(
                id=f"unreachable-node-{step_id}",
                type=IssueType.WARNING,
                category=IssueCategory.STRUCTURE,
                title="Unreachable Node",
                description=f"Step '{step_id}' cannot be reached from root '{workflow.root}'",
                node_id=step_id,
                suggestion="Connect this step to a path from the root step"
            ))

        for cycle in self._detect_cycles(workflow):
            issues.append(ValidationIssue(
                id=f"cycle-{'-'.join(cycle)}",
                type=IssueType.WARNING,
                category=IssueCategory.LOGIC,
                title="Potential Infinite Loop",
                description=f"Cycle detected: {' → '.join(cycle)}",
                node_id=cycle[0],
                suggestion="Add guards or terminal conditions to prevent infinite loops"
            ))

        return issues

    def _validate_configuration(self, config: FlowConfig, workflow: WorkflowDefinition) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        for step_id in sorted(self._workflow_steps(workflow)):
            step = config.find_step(step_id)
            if step is None:
                continue

            if not step.type or not step.type.strip():
                issues.append(ValidationIssue(
                    id=f"empty-step-type-{step_id}",
                    type=IssueType.ERROR,
                    category=IssueCategory.CONFIGURATION,
                    title="Empty Step Type",
                    description=f"Step '{step_id}' has no type specified",
                    node_id=step_id,
                    suggestion='Specify a step type (e.g., "ValidateOrderStep")'
                ))

            if step.retry is not None and step.retry.max_attempts > 1:
                if step.retry.max_attempts > MAX_RETRY_ATTEMPTS:
                    issues.append(ValidationIssue(
                        id=f"high-retry-count-{step_id}",
                        type=IssueType.WARNING,
                        category=IssueCategory.PERFORMANCE,
                        title="High Retry Count",
                        description=f"Step '{step_id}' has {step.retry.max_attempts} retry attempts",
                        node_id=step_id,
                        suggestion="Consider reducing retry count to avoid long delays"
                    ))
                if not step.retry.guard:
                    issues.append(ValidationIssue(
                        id=f"retry-without-guard-{step_id}",
                        type=IssueType.INFO,
                        category=IssueCategory.CONFIGURATION,
                        title="Retry Without Guard",
                        description=f"Step '{step_id}' has retries but no retry guard",
                        node_id=step_id,
                        suggestion="Consider adding a retry guard to control when retries should happen"
                    ))

        return issues

    def _validate_logic(self, workflow: WorkflowDefinition) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        for index, edge in enumerate(workflow.edges):
            if edge.to_step == LEGACY_FAILURE:
                issues.append(ValidationIssue(
                    id=f"legacy-terminal-{index}",
                    type=IssueType.INFO,
                    category=IssueCategory.CONFIGURATION,
                    title="Legacy Terminal",
                    description=f"Edge #{index} from '{edge.from_step}' ends in FAILED",
                    node_id=edge.from_step,
                    suggestion="Use FAILURE as the failure terminal"
                ))

        has_terminal_edge = any(edge.is_terminal for edge in workflow.edges)
        sources = {edge.from_step for edge in workflow.edges}
        dead_ends = [step_id for step_id in self._workflow_steps(workflow) if step_id not in sources]
        if not has_terminal_edge and not dead_ends:
            issues.append(ValidationIssue(
                id="no-terminal-path",
                type=IssueType.WARNING,
                category=IssueCategory.LOGIC,
                title="No Terminal Path",
                description="Workflow has no clear termination points",
                suggestion="Ensure paths lead to SUCCESS or FAILURE"
            ))

        return issues

    def _validate_performance(self, config: FlowConfig, workflow: WorkflowDefinition) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []

        depth = self._depth(workflow)
        if depth > MAX_DEPTH:
            issues.append(ValidationIssue(
                id="high-depth",
                type=IssueType.INFO,
                category=IssueCategory.PERFORMANCE,
                title="Deep Workflow",
                description=f"Workflow has {depth} levels deep",
                suggestion="Consider breaking into smaller sub-workflows for better maintainability"
            ))

        for step_id in sorted(self._workflow_steps(workflow)):
            step = config.find_step(step_id)
            if step is not None and len(step.config) > MAX_CONFIG_KEYS:
                issues.append(ValidationIssue(
                    id=f"complex-config-{step_id}",
                    type=IssueType.INFO,
                    category=IssueCategory.PERFORMANCE,
                    title="Complex Configuration",
                    description=f"Step '{step_id}' has {len(step.config)} config properties",
                    node_id=step_id,
                    suggestion="Consider moving complex configuration to external files"
                ))

        return issues

    # Graph helpers

    @staticmethod
    def _resolves(config: FlowConfig, step_id: str) -> bool:
        return is_terminal_id(step_id) or config.find_step(step_id) is not None

    @staticmethod
    def _workflow_steps(workflow: WorkflowDefinition) -> Set[str]:
        """Non-terminal step ids mentioned by the workflow."""
        step_ids = {workflow.root}
        for edge in workflow.edges:
            step_ids.add(edge.from_step)
            step_ids.add(edge.to_step)
        return {step_id for step_id in step_ids if not is_terminal_id(step_id)}

    @staticmethod
    def _reachable_from(workflow: WorkflowDefinition, start: str) -> Set[str]:
        reachable = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for edge in workflow.outgoing(current):
                if edge.to_step not in reachable:
                    reachable.add(edge.to_step)
                    queue.append(edge.to_step)
        return reachable

    @staticmethod
    def _detect_cycles(workflow: WorkflowDefinition) -> List[List[str]]:
        """Back edges found by DFS, each reported as a closed path."""
        cycles: List[List[str]] = []
        visited: Set[str] = set()
        on_stack: Set[str] = set()
        path: List[str] = []

        def dfs(step_id: str):
            visited.add(step_id)
            on_stack.add(step_id)
            path.append(step_id)

            for edge in workflow.outgoing(step_id):
                target = edge.to_step
                if is_terminal_id(target):
                    continue
                if target not in visited:
                    dfs(target)
                elif target in on_stack:
                    start = path.index(target)
                    cycles.append(path[start:] + [target])

            on_stack.discard(step_id)
            path.pop()

        for step_id in [workflow.root] + [edge.from_step for edge in workflow.edges]:
            if step_id not in visited and not is_terminal_id(step_id):
                dfs(step_id)

        return cycles

    @staticmethod
    def _depth(workflow: WorkflowDefinition) -> int:
        """Number of BFS levels below and including the root."""
        levels = {workflow.root: 0}
        queue = deque([workflow.root])
        while queue:
            current = queue.popleft()
            for edge in workflow.outgoing(current):
                if edge.to_step not in levels and not is_terminal_id(edge.to_step):
                    levels[edge.to_step] = levels[current] + 1
                    queue.append(edge.to_step)
        return max(levels.values()) + 1

    @staticmethod
    def _result(issues: List[ValidationIssue]) -> ValidationResult:
        errors = sum(1 for issue in issues if issue.type == IssueType.ERROR)
        warnings = sum(1 for issue in issues if issue.type == IssueType.WARNING)
        return ValidationResult(
            is_valid=errors == 0,
            issues=issues,
            score=max(0, 100 - ERROR_PENALTY * errors - WARNING_PENALTY * warnings)
        )
