"""Workflow validation results."""

from enum import Enum
from typing import List, Optional

from pydantic import Field

from .base import CamelModel


class IssueType(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    STRUCTURE = "structure"
    CONFIGURATION = "configuration"
    LOGIC = "logic"
    PERFORMANCE = "performance"


class ValidationIssue(CamelModel):
    """A single finding about a workflow."""
    id: str = Field(..., description="Stable issue identifier")
    type: IssueType = Field(..., description="Severity")
    category: IssueCategory = Field(..., description="Issue category")
    title: str = Field(..., description="Short title")
    description: str = Field(..., description="What is wrong")
    node_id: Optional[str] = Field(None, description="Step the issue refers to")
    suggestion: Optional[str] = Field(None, description="How to fix it")


class ValidationResult(CamelModel):
    """Outcome of validating a workflow."""
    is_valid: bool = Field(..., description="True when there are no errors")
    issues: List[ValidationIssue] = Field(default_factory=list, description="All findings")
    score: int = Field(100, description="Quality score from 0 to 100")

    @property
    def errors(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.type == IssueType.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.type == IssueType.WARNING]

    @property
    def infos(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.type == IssueType.INFO]
