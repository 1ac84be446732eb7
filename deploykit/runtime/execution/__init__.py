"""Deployment orchestration APIs: graph resolution, retries and batch scheduling."""

from .cancellation import CancellationToken
from .circuit import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitBreakerStats,
    CircuitState,
    validate_circuit_config,
)
from .command import ShellCommandExecutor, classify_error_message, extract_deploy_identifiers
from .coordinator import (
    RetryAttempt,
    RetryCoordinator,
    RetrySession,
    RetrySessionStore,
    RetryStats,
    SessionStatus,
)
from .models import (
    BatchItem,
    BatchMode,
    BatchRequest,
    BatchRunResult,
    ErrorKind,
    ExecutionOutcome,
    Executor,
    ItemResult,
    ItemStatus,
)
from .planner import (
    DependencyCycleError,
    DependencyEdge,
    DependencyGraph,
    EdgeReason,
    batch_items_from_graph,
    build_dependency_edges,
    find_cycles,
    format_cycles,
    normalise_path,
    require_acyclic,
    resolve_dependency_graph,
    topological_levels,
)
from .retry import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    RetryPolicyError,
    build_retry_schedule,
    compute_backoff_delay,
    is_transient,
    retry_policy_from_mapping,
    validate_retry_policy,
)
from .scheduler import BatchScheduler, run_batch

__all__ = [
    "DEFAULT_RETRY_POLICY",
    "BatchItem",
    "BatchMode",
    "BatchRequest",
    "BatchRunResult",
    "BatchScheduler",
    "CancellationToken",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerStats",
    "CircuitState",
    "DependencyCycleError",
    "DependencyEdge",
    "DependencyGraph",
    "EdgeReason",
    "ErrorKind",
    "ExecutionOutcome",
    "Executor",
    "ItemResult",
    "ItemStatus",
    "RetryAttempt",
    "RetryCoordinator",
    "RetryPolicy",
    "RetryPolicyError",
    "RetrySession",
    "RetrySessionStore",
    "RetryStats",
    "SessionStatus",
    "ShellCommandExecutor",
    "batch_items_from_graph",
    "build_dependency_edges",
    "build_retry_schedule",
    "classify_error_message",
    "compute_backoff_delay",
    "extract_deploy_identifiers",
    "find_cycles",
    "format_cycles",
    "is_transient",
    "normalise_path",
    "require_acyclic",
    "resolve_dependency_graph",
    "retry_policy_from_mapping",
    "run_batch",
    "topological_levels",
    "validate_circuit_config",
    "validate_retry_policy",
]
