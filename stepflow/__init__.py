"""StepFlow: workflow layout engine and execution simulator."""

__version__ = "1.0.0"
