"""Dependency graph resolution and deterministic deploy ordering."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import posixpath
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from deploykit.schema import MANIFEST_FILE_NAME, ArtifactDescriptor, DependencySpec

from .models import BatchItem

logger = logging.getLogger(__name__)


class DependencyCycleError(ValueError):
    """Raised when dependency graph contains a cycle."""

    def __init__(self, cycles: Sequence[Sequence[str]]):
        self.cycles = tuple(tuple(cycle) for cycle in cycles)
        super().__init__(
            "Cannot resolve a safe deploy order due to the following circular dependency chains: "
            + format_cycles(self.cycles)
        )


class EdgeReason(str, Enum):
    PATH = "path"
    WORKSPACE = "workspace"


@dataclass(frozen=True)
class DependencyEdge:
    """``from_key`` depends on ``to_key``; ``to_key`` must be deployed first."""

    from_key: str
    to_key: str
    reason: EdgeReason
    dependency_name: str


@dataclass(frozen=True)
class DependencyGraph:
    nodes: Tuple[str, ...]
    edges: Tuple[DependencyEdge, ...] = field(default_factory=tuple)
    order: Tuple[str, ...] = field(default_factory=tuple)
    levels: Tuple[Tuple[str, ...], ...] = field(default_factory=tuple)
    cycles: Tuple[Tuple[str, ...], ...] = field(default_factory=tuple)

    @property
    def has_cycles(self) -> bool:
        return bool(self.cycles)

    def dependencies_of(self, key: str) -> Tuple[str, ...]:
        return tuple(sorted({edge.to_key for edge in self.edges if edge.from_key == key}))

    def level_of(self, key: str) -> int:
        for index, level in enumerate(self.levels):
            if key in level:
                return index
        raise KeyError(key)


def normalise_path(path: str) -> str:
    """Canonical manifest key: forward slashes, no trailing slash, no ``.``/``..`` segments."""
    text = path.replace("\\", "/")
    if not text:
        return text
    normalised = posixpath.normpath(text)
    if normalised != "/":
        normalised = normalised.rstrip("/")
    return normalised


def _resolve_dependency_manifest(contract_dir: str, dependency: DependencySpec) -> str:
    base = normalise_path(contract_dir)
    target_dir = posixpath.join(base, normalise_path(dependency.path or ""))
    return normalise_path(posixpath.join(target_dir, MANIFEST_FILE_NAME))


def _dependency_buckets(artifact: ArtifactDescriptor, include_dev_dependencies: bool) -> List[Tuple[DependencySpec, ...]]:
    buckets = [artifact.dependencies, artifact.build_dependencies]
    if include_dev_dependencies:
        buckets.append(artifact.dev_dependencies)
    return buckets


def build_dependency_edges(
    artifacts: Iterable[ArtifactDescriptor],
    include_dev_dependencies: bool = False,
) -> Tuple[Tuple[str, ...], Tuple[DependencyEdge, ...]]:
    by_manifest: Dict[str, ArtifactDescriptor] = {}
    by_name: Dict[str, str] = {}

    for artifact in artifacts:
        key = normalise_path(artifact.cargo_toml_path)
        by_manifest[key] = artifact
        by_name[artifact.contract_name.lower()] = key

    nodes = tuple(sorted(by_manifest))
    edges: List[DependencyEdge] = []

    for from_key in nodes:
        artifact = by_manifest[from_key]
        for bucket in _dependency_buckets(artifact, include_dev_dependencies):
            for dependency in bucket:
                if dependency.path:
                    target = _resolve_dependency_manifest(artifact.contract_dir, dependency)
                    if target in by_manifest and target != from_key:
                        edges.append(DependencyEdge(from_key, target, EdgeReason.PATH, dependency.name))
                    continue

                if dependency.workspace:
                    target = by_name.get(dependency.name.lower())
                    if target is not None and target != from_key:
                        edges.append(DependencyEdge(from_key, target, EdgeReason.WORKSPACE, dependency.name))

    return nodes, tuple(edges)


def find_cycles(nodes: Sequence[str], edges: Iterable[DependencyEdge]) -> List[Tuple[str, ...]]:
    adjacency: Dict[str, List[str]] = {node: [] for node in nodes}
    for edge in edges:
        if edge.from_key in adjacency:
            adjacency[edge.from_key].append(edge.to_key)

    in_progress = set()
    done = set()
    stack: List[str] = []
    cycles: List[Tuple[str, ...]] = []

    def dfs(node: str) -> None:
        in_progress.add(node)
        stack.append(node)

        for dependency in adjacency.get(node, ()):
            if dependency in in_progress:
                cycle_start = stack.index(dependency)
                cycles.append(tuple(stack[cycle_start:]) + (dependency,))
            elif dependency not in done:
                dfs(dependency)

        stack.pop()
        in_progress.remove(node)
        done.add(node)

    for root in nodes:
        if root not in done:
            dfs(root)
    return cycles


def topological_levels(
    nodes: Sequence[str],
    edges: Iterable[DependencyEdge],
) -> Tuple[Tuple[str, ...], Tuple[Tuple[str, ...], ...]]:
    """Wave-based Kahn ordering; every wave only depends on earlier waves."""
    unmet = {node: 0 for node in nodes}
    dependents: Dict[str, List[str]] = {node: [] for node in nodes}
    for edge in edges:
        unmet[edge.from_key] += 1
        dependents[edge.to_key].append(edge.from_key)

    order: List[str] = []
    levels: List[Tuple[str, ...]] = []
    ready = sorted(node for node, count in unmet.items() if count == 0)

    while ready:
        wave = tuple(ready)
        levels.append(wave)
        order.extend(wave)

        next_ready = set()
        for node_id in wave:
            for dependent in dependents[node_id]:
                unmet[dependent] -= 1
                if unmet[dependent] == 0:
                    next_ready.add(dependent)
        ready = sorted(next_ready)

    return tuple(order), tuple(levels)


def resolve_dependency_graph(
    artifacts: Iterable[ArtifactDescriptor],
    include_dev_dependencies: bool = False,
) -> DependencyGraph:
    nodes, edges = build_dependency_edges(artifacts, include_dev_dependencies)

    cycles = find_cycles(nodes, edges)
    if cycles:
        logger.debug("Dependency cycles detected: %s", format_cycles(cycles))
        return DependencyGraph(nodes=nodes, edges=edges, cycles=tuple(cycles))

    order, levels = topological_levels(nodes, edges)
    logger.debug("Resolved %d contracts into %d deploy waves", len(nodes), len(levels))
    return DependencyGraph(nodes=nodes, edges=edges, order=order, levels=levels)


def format_cycles(cycles: Sequence[Sequence[str]]) -> str:
    return "; ".join(" -> ".join(cycle) for cycle in cycles)


def require_acyclic(graph: DependencyGraph) -> DependencyGraph:
    if graph.has_cycles:
        raise DependencyCycleError(graph.cycles)
    return graph


def batch_items_from_graph(
    graph: DependencyGraph,
    artifacts: Iterable[ArtifactDescriptor],
) -> Tuple[BatchItem, ...]:
    """Batch items in deploy order, keyed by contract name."""
    require_acyclic(graph)
    by_key: Mapping[str, ArtifactDescriptor] = {
        normalise_path(artifact.cargo_toml_path): artifact for artifact in artifacts
    }

    items: List[BatchItem] = []
    for key in graph.order:
        artifact = by_key[key]
        depends_on = tuple(
            sorted({by_key[dependency].contract_name for dependency in graph.dependencies_of(key)})
        )
        items.append(
            BatchItem(
                id=artifact.contract_name,
                name=artifact.contract_name,
                contract_dir=artifact.contract_dir,
                depends_on=depends_on,
                command=artifact.command,
            )
        )
    return tuple(items)
