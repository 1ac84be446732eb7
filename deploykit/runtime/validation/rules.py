"""Pluggable rule engine for workspace descriptor validation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from deploykit.runtime.execution import RetryPolicyError, normalise_path, retry_policy_from_mapping
from deploykit.schema import WorkspaceSpec


@dataclass(frozen=True)
class RuleDiagnostic:
    stage: str
    rule_id: str
    message: str
    severity: str = "error"
    contract: Optional[str] = None
    field: Optional[str] = None
    hint: Optional[str] = None


class ValidationRule(Protocol):
    rule_id: str

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        ...


@dataclass(frozen=True)
class NonEmptyWorkspaceRule:
    rule_id: str = "workspace.non_empty"

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        if workspace.contracts:
            return tuple()
        return (
            RuleDiagnostic(
                stage="semantic",
                rule_id=self.rule_id,
                field="contracts",
                message="Workspace must contain at least one contract",
            ),
        )


@dataclass(frozen=True)
class UniqueContractNamesRule:
    rule_id: str = "workspace.unique_names"

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        seen = set()
        diagnostics: List[RuleDiagnostic] = []
        for contract in workspace.contracts:
            # Workspace dependencies match names case-insensitively.
            key = contract.contract_name.lower()
            if key in seen:
                diagnostics.append(
                    RuleDiagnostic(
                        stage="semantic",
                        rule_id=self.rule_id,
                        contract=contract.contract_name,
                        field="name",
                        message="Duplicate contract name",
                    )
                )
            seen.add(key)
        return tuple(diagnostics)


@dataclass(frozen=True)
class UniqueManifestsRule:
    rule_id: str = "workspace.unique_manifests"

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        seen = {}
        diagnostics: List[RuleDiagnostic] = []
        for contract in workspace.contracts:
            key = normalise_path(contract.cargo_toml_path)
            if key in seen:
                diagnostics.append(
                    RuleDiagnostic(
                        stage="semantic",
                        rule_id=self.rule_id,
                        contract=contract.contract_name,
                        field="manifest",
                        message=f"Manifest '{key}' is already used by contract '{seen[key]}'",
                    )
                )
            else:
                seen[key] = contract.contract_name
        return tuple(diagnostics)


@dataclass(frozen=True)
class SelfDependencyRule:
    rule_id: str = "dependency.self_reference"

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        diagnostics: List[RuleDiagnostic] = []
        for contract in workspace.contracts:
            buckets = (
                ("dependencies", contract.dependencies),
                ("build_dependencies", contract.build_dependencies),
                ("dev_dependencies", contract.dev_dependencies),
            )
            for bucket_name, bucket in buckets:
                for dependency in bucket:
                    if dependency.workspace and not dependency.path and dependency.name.lower() == contract.contract_name.lower():
                        diagnostics.append(
                            RuleDiagnostic(
                                stage="dependency",
                                rule_id=self.rule_id,
                                contract=contract.contract_name,
                                field=bucket_name,
                                message=f"Contract lists itself ('{dependency.name}') as a dependency",
                                severity="warning",
                                hint="Self references are ignored when ordering deploys",
                            )
                        )
        return tuple(diagnostics)


@dataclass(frozen=True)
class DeployCommandRule:
    rule_id: str = "semantic.deploy_command"

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        return tuple(
            RuleDiagnostic(
                stage="semantic",
                rule_id=self.rule_id,
                contract=contract.contract_name,
                field="command",
                message="Contract has no deploy command",
                severity="warning",
                hint="Set 'command' or pass --command to the deploy CLI",
            )
            for contract in workspace.contracts
            if not contract.command
        )


@dataclass(frozen=True)
class ConcurrencyBoundsRule:
    rule_id: str = "semantic.concurrency_bounds"
    max_concurrency: int = 32

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        diagnostics: List[RuleDiagnostic] = []
        if workspace.concurrency is None:
            return tuple()
        if workspace.mode == "sequential":
            diagnostics.append(
                RuleDiagnostic(
                    stage="semantic",
                    rule_id=self.rule_id,
                    field="concurrency",
                    message="concurrency has no effect in sequential mode",
                    severity="warning",
                )
            )
        if workspace.concurrency > self.max_concurrency:
            diagnostics.append(
                RuleDiagnostic(
                    stage="semantic",
                    rule_id=self.rule_id,
                    field="concurrency",
                    message=f"concurrency {workspace.concurrency} exceeds limit {self.max_concurrency}",
                    severity="warning",
                    hint="Deploy backends commonly rate-limit bursts of transactions",
                )
            )
        return tuple(diagnostics)


@dataclass(frozen=True)
class RetryPolicyBoundsRule:
    rule_id: str = "semantic.retry_bounds"
    max_attempts_limit: int = 20

    def evaluate(self, workspace: WorkspaceSpec) -> Sequence[RuleDiagnostic]:
        if workspace.retry is None:
            return tuple()
        try:
            policy = retry_policy_from_mapping(workspace.retry)
        except RetryPolicyError as exc:
            return (
                RuleDiagnostic(
                    stage="type",
                    rule_id=self.rule_id,
                    field="retry",
                    message=str(exc),
                ),
            )
        if policy.max_attempts > self.max_attempts_limit:
            return (
                RuleDiagnostic(
                    stage="semantic",
                    rule_id=self.rule_id,
                    field="retry.max_attempts",
                    message=f"retry.max_attempts {policy.max_attempts} exceeds limit {self.max_attempts_limit}",
                    severity="warning",
                    hint="Consider reducing attempts to keep tail latency bounded",
                ),
            )
        return tuple()


DEFAULT_RULES: Tuple[ValidationRule, ...] = (
    NonEmptyWorkspaceRule(),
    UniqueContractNamesRule(),
    UniqueManifestsRule(),
    SelfDependencyRule(),
    DeployCommandRule(),
    ConcurrencyBoundsRule(),
    RetryPolicyBoundsRule(),
)


_SEVERITY_RANK = {"error": 0, "warning": 1}


def _diagnostic_sort_key(item: RuleDiagnostic) -> Tuple[int, str, str, str, str, str]:
    return (
        _SEVERITY_RANK.get(item.severity, len(_SEVERITY_RANK)),
        item.stage,
        item.rule_id,
        item.contract or "",
        item.field or "",
        item.message,
    )


class ValidationRuleEngine:
    """Runs every rule against a workspace; errors sort ahead of warnings."""

    def __init__(self, rules: Optional[Iterable[ValidationRule]] = None):
        self.rules: Tuple[ValidationRule, ...] = DEFAULT_RULES if rules is None else tuple(rules)

    def run(self, workspace: WorkspaceSpec) -> Tuple[RuleDiagnostic, ...]:
        collected = [diagnostic for rule in self.rules for diagnostic in rule.evaluate(workspace)]
        return tuple(sorted(collected, key=_diagnostic_sort_key))
