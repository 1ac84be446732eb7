"""Validation pipeline: YAML syntax, descriptor types, workspace rules, then the dependency graph."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import os
from typing import Any, List, Optional, Sequence, Tuple

from deploykit.runtime.execution import (
    DEFAULT_RETRY_POLICY,
    BatchItem,
    DependencyGraph,
    RetryPolicy,
    batch_items_from_graph,
    format_cycles,
    resolve_dependency_graph,
    retry_policy_from_mapping,
)
from deploykit.schema import WorkspaceSchemaError, WorkspaceSpec, parse_workspace_dict, parse_yaml_file

from .rules import RuleDiagnostic, ValidationRule, ValidationRuleEngine


CYCLE_MESSAGE = "Cannot resolve a safe deploy order due to the following circular dependency chains"


@dataclass(frozen=True)
class ValidationIssue:
    stage: str
    message: str
    severity: str = "error"
    rule_id: Optional[str] = None
    contract: Optional[str] = None
    field: Optional[str] = None
    hint: Optional[str] = None

    @classmethod
    def from_diagnostic(cls, diagnostic: RuleDiagnostic) -> "ValidationIssue":
        return cls(**asdict(diagnostic))

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def describe(self) -> str:
        where = ", ".join(
            f"{label}={value}"
            for label, value in (("contract", self.contract), ("field", self.field), ("rule", self.rule_id))
            if value
        )
        text = f"[{self.stage}/{self.severity}] {self.message}"
        if where:
            text += f" ({where})"
        if self.hint:
            text += f"; hint={self.hint}"
        return text


@dataclass(frozen=True)
class ValidationReport:
    workspace: WorkspaceSpec
    graph: DependencyGraph
    items: Tuple[BatchItem, ...]
    retry_policy: RetryPolicy
    issues: Tuple[ValidationIssue, ...]
    diagnostics: Tuple[ValidationIssue, ...]

    @property
    def warnings(self) -> Tuple[ValidationIssue, ...]:
        return tuple(item for item in self.diagnostics if item.severity == "warning")


class WorkspaceValidationException(ValueError):
    """Carries the blocking ``issues`` plus every diagnostic collected on the way."""

    def __init__(self, issues: Sequence[ValidationIssue], diagnostics: Optional[Sequence[ValidationIssue]] = None):
        self.issues = tuple(issues)
        self.diagnostics = self.issues if diagnostics is None else tuple(diagnostics)
        body = "\n".join(f"- {issue.describe()}" for issue in self.diagnostics)
        super().__init__(f"Workspace validation failed:\n{body}")


def _fail(stage: str, message: str) -> WorkspaceValidationException:
    return WorkspaceValidationException((ValidationIssue(stage=stage, message=message),))


def _raise_on_errors(diagnostics: Sequence[ValidationIssue]) -> None:
    errors = tuple(item for item in diagnostics if item.is_error)
    if errors:
        raise WorkspaceValidationException(errors, diagnostics=tuple(diagnostics))


def validate_and_plan_workspace_descriptor(
    descriptor: Any,
    source: str = "<memory>",
    base_dir: Optional[str] = None,
    custom_rules: Optional[Sequence[ValidationRule]] = None,
    base_retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> ValidationReport:
    if descriptor is None:
        raise _fail("syntax", f"Descriptor is empty in {source}")
    if not isinstance(descriptor, dict):
        raise _fail("syntax", "Workspace descriptor root must be a mapping")

    try:
        workspace = parse_workspace_dict(descriptor, base_dir=base_dir)
    except WorkspaceSchemaError as exc:
        raise _fail("type", str(exc)) from exc

    diagnostics: List[ValidationIssue] = [
        ValidationIssue.from_diagnostic(diagnostic) for diagnostic in ValidationRuleEngine(custom_rules).run(workspace)
    ]
    _raise_on_errors(diagnostics)

    graph = resolve_dependency_graph(workspace.contracts, workspace.include_dev_dependencies)
    if graph.has_cycles:
        diagnostics.append(
            ValidationIssue(
                stage="dependency",
                rule_id="dependency.cycle",
                message=f"{CYCLE_MESSAGE}: {format_cycles(graph.cycles)}",
            )
        )
        _raise_on_errors(diagnostics)

    return ValidationReport(
        workspace=workspace,
        graph=graph,
        items=batch_items_from_graph(graph, workspace.contracts),
        retry_policy=retry_policy_from_mapping(workspace.retry, base=base_retry_policy),
        issues=tuple(),
        diagnostics=tuple(diagnostics),
    )


def validate_and_plan_workspace_file(
    file_path: str,
    custom_rules: Optional[Sequence[ValidationRule]] = None,
    base_retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> ValidationReport:
    """Validate a YAML workspace file; relative contract dirs resolve against its directory."""
    try:
        descriptor = parse_yaml_file(file_path)
    except WorkspaceSchemaError as exc:
        raise _fail("syntax", str(exc)) from exc
    except OSError as exc:
        raise _fail("syntax", f"Cannot read {file_path}: {exc}") from exc

    return validate_and_plan_workspace_descriptor(
        descriptor,
        source=file_path,
        base_dir=os.path.dirname(os.path.abspath(file_path)),
        custom_rules=custom_rules,
        base_retry_policy=base_retry_policy,
    )
