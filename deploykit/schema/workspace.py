"""Typed workspace descriptor and parsing helpers for batch deployments."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml


class WorkspaceSchemaError(ValueError):
    """Base error for schema parsing/type problems."""


class WorkspaceSyntaxError(WorkspaceSchemaError):
    """Raised when YAML cannot be parsed."""


_CONTRACT_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{0,63}$")
_ALLOWED_MODES = ("sequential", "parallel")
MANIFEST_FILE_NAME = "Cargo.toml"


@dataclass(frozen=True)
class DependencySpec:
    """One already-parsed manifest dependency entry."""

    name: str
    path: Optional[str] = None
    workspace: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.path is not None:
            data["path"] = self.path
        if self.workspace:
            data["workspace"] = True
        return data


@dataclass(frozen=True)
class ArtifactDescriptor:
    cargo_toml_path: str
    contract_dir: str
    contract_name: str
    dependencies: Tuple[DependencySpec, ...] = field(default_factory=tuple)
    build_dependencies: Tuple[DependencySpec, ...] = field(default_factory=tuple)
    dev_dependencies: Tuple[DependencySpec, ...] = field(default_factory=tuple)
    command: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.contract_name,
            "dir": self.contract_dir,
            "manifest": self.cargo_toml_path,
        }
        if self.command:
            data["command"] = self.command
        if self.dependencies:
            data["dependencies"] = [dep.to_dict() for dep in self.dependencies]
        if self.build_dependencies:
            data["build_dependencies"] = [dep.to_dict() for dep in self.build_dependencies]
        if self.dev_dependencies:
            data["dev_dependencies"] = [dep.to_dict() for dep in self.dev_dependencies]
        return data


@dataclass(frozen=True)
class WorkspaceSpec:
    contracts: Tuple[ArtifactDescriptor, ...]
    batch_id: Optional[str] = None
    mode: Optional[str] = None
    concurrency: Optional[int] = None
    include_dev_dependencies: bool = False
    retry: Optional[Dict[str, Any]] = None

    def contract_map(self) -> Dict[str, ArtifactDescriptor]:
        return {contract.contract_name: contract for contract in self.contracts}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "include_dev_dependencies": self.include_dev_dependencies,
            "contracts": [contract.to_dict() for contract in self.contracts],
        }
        if self.mode:
            data["mode"] = self.mode
        if self.batch_id:
            data["batch_id"] = self.batch_id
        if self.concurrency is not None:
            data["concurrency"] = self.concurrency
        if self.retry is not None:
            data["retry"] = dict(self.retry)
        return data


def parse_yaml_text(yaml_text: str, source: str = "<memory>") -> Dict[str, Any]:
    try:
        data = yaml.safe_load(yaml_text)
    except yaml.YAMLError as exc:
        raise WorkspaceSyntaxError(f"Invalid YAML in {source}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise WorkspaceSchemaError(f"Workspace root must be a mapping in {source}")
    return data


def parse_yaml_file(file_path: str) -> Dict[str, Any]:
    with open(file_path, "r", encoding="utf-8") as file:
        content = file.read()
    return parse_yaml_text(content, source=file_path)


def _ensure_mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise WorkspaceSchemaError(f"Field '{field_name}' must be a mapping")
    return value


def _ensure_string(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise WorkspaceSchemaError(f"Field '{field_name}' must be a non-empty string")
    return value.strip()


def _resolve_dir(base_dir: Optional[str], raw_dir: str) -> str:
    if base_dir is None or os.path.isabs(raw_dir):
        return raw_dir
    return os.path.normpath(os.path.join(base_dir, raw_dir))


def _normalize_dependency(contract_name: str, bucket: str, raw_dep: Any, dep_name: Optional[str] = None) -> DependencySpec:
    scope = f"Contract '{contract_name}' {bucket}"

    if isinstance(raw_dep, str) and dep_name is not None:
        # Version pins such as `name: "1.0"` carry neither a path nor a workspace flag.
        return DependencySpec(name=dep_name)

    if not isinstance(raw_dep, dict):
        raise WorkspaceSchemaError(f"{scope} entries must be mappings")

    name = raw_dep.get("name", dep_name)
    name = _ensure_string(name, f"{bucket}[].name")

    path = raw_dep.get("path")
    if path is not None and (not isinstance(path, str) or not path.strip()):
        raise WorkspaceSchemaError(f"{scope} '{name}' path must be a non-empty string when set")

    workspace = raw_dep.get("workspace", False)
    if not isinstance(workspace, bool):
        raise WorkspaceSchemaError(f"{scope} '{name}' workspace must be a boolean")

    return DependencySpec(name=name, path=path.strip() if path else None, workspace=workspace)


def _normalize_dependency_bucket(contract_name: str, bucket: str, raw_bucket: Any) -> Tuple[DependencySpec, ...]:
    if raw_bucket is None:
        return tuple()
    if isinstance(raw_bucket, list):
        return tuple(_normalize_dependency(contract_name, bucket, item) for item in raw_bucket)
    if isinstance(raw_bucket, dict):
        return tuple(
            _normalize_dependency(contract_name, bucket, value, dep_name=str(key))
            for key, value in raw_bucket.items()
        )
    raise WorkspaceSchemaError(f"Contract '{contract_name}' field '{bucket}' must be a list or mapping")


def _normalize_contract(raw_contract: Any, base_dir: Optional[str]) -> ArtifactDescriptor:
    contract = _ensure_mapping(raw_contract, "contracts[]")
    name = _ensure_string(contract.get("name"), "name")
    if not _CONTRACT_NAME_PATTERN.match(name):
        raise WorkspaceSchemaError(f"Field 'name' must match '{_CONTRACT_NAME_PATTERN.pattern}'")

    raw_dir = _ensure_string(contract.get("dir"), f"contracts[{name}].dir")
    contract_dir = _resolve_dir(base_dir, raw_dir)

    raw_manifest = contract.get("manifest")
    if raw_manifest is None:
        manifest = os.path.join(contract_dir, MANIFEST_FILE_NAME)
    else:
        manifest = _resolve_dir(base_dir, _ensure_string(raw_manifest, f"contracts[{name}].manifest"))

    command = contract.get("command")
    if command is not None and not isinstance(command, str):
        raise WorkspaceSchemaError(f"Contract '{name}' field 'command' must be a string")

    return ArtifactDescriptor(
        cargo_toml_path=manifest,
        contract_dir=contract_dir,
        contract_name=name,
        dependencies=_normalize_dependency_bucket(name, "dependencies", contract.get("dependencies")),
        build_dependencies=_normalize_dependency_bucket(name, "build_dependencies", contract.get("build_dependencies")),
        dev_dependencies=_normalize_dependency_bucket(name, "dev_dependencies", contract.get("dev_dependencies")),
        command=command.strip() if command and command.strip() else None,
    )


def parse_workspace_dict(data: Mapping[str, Any], base_dir: Optional[str] = None) -> WorkspaceSpec:
    if not isinstance(data, Mapping):
        raise WorkspaceSchemaError("Workspace descriptor must be a mapping")

    raw_contracts = data.get("contracts", [])
    if not isinstance(raw_contracts, list):
        raise WorkspaceSchemaError("Field 'contracts' must be a list")

    mode = data.get("mode")
    if mode is not None and (not isinstance(mode, str) or mode.strip().lower() not in _ALLOWED_MODES):
        raise WorkspaceSchemaError(f"Field 'mode' must be one of: {', '.join(_ALLOWED_MODES)}")

    concurrency = data.get("concurrency")
    if concurrency is not None and (isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1):
        raise WorkspaceSchemaError("Field 'concurrency' must be an integer >= 1")

    batch_id = data.get("batch_id")
    if batch_id is not None:
        batch_id = _ensure_string(batch_id, "batch_id")

    include_dev = data.get("include_dev_dependencies", False)
    if not isinstance(include_dev, bool):
        raise WorkspaceSchemaError("Field 'include_dev_dependencies' must be a boolean")

    retry = data.get("retry")
    if retry is not None:
        retry = dict(_ensure_mapping(retry, "retry"))

    contracts: List[ArtifactDescriptor] = [_normalize_contract(item, base_dir) for item in raw_contracts]

    return WorkspaceSpec(
        contracts=tuple(contracts),
        batch_id=batch_id,
        mode=mode.strip().lower() if mode is not None else None,
        concurrency=concurrency,
        include_dev_dependencies=include_dev,
        retry=retry,
    )
