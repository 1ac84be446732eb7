"""Validation APIs for workspace descriptors."""

from .pipeline import (
    CYCLE_MESSAGE,
    ValidationIssue,
    ValidationReport,
    WorkspaceValidationException,
    validate_and_plan_workspace_descriptor,
    validate_and_plan_workspace_file,
)
from .rules import (
    DEFAULT_RULES,
    RuleDiagnostic,
    ValidationRule,
    ValidationRuleEngine,
)

__all__ = [
    "CYCLE_MESSAGE",
    "DEFAULT_RULES",
    "RuleDiagnostic",
    "ValidationIssue",
    "ValidationReport",
    "ValidationRule",
    "ValidationRuleEngine",
    "WorkspaceValidationException",
    "validate_and_plan_workspace_descriptor",
    "validate_and_plan_workspace_file",
]
