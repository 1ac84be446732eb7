"""Public schema helpers for workspace descriptors."""

from .workspace import (
    MANIFEST_FILE_NAME,
    ArtifactDescriptor,
    DependencySpec,
    WorkspaceSchemaError,
    WorkspaceSpec,
    WorkspaceSyntaxError,
    parse_workspace_dict,
    parse_yaml_file,
    parse_yaml_text,
)

__all__ = [
    "MANIFEST_FILE_NAME",
    "ArtifactDescriptor",
    "DependencySpec",
    "WorkspaceSchemaError",
    "WorkspaceSpec",
    "WorkspaceSyntaxError",
    "parse_workspace_dict",
    "parse_yaml_file",
    "parse_yaml_text",
]
