import os
import tempfile
import unittest

from deploykit.schema import (
    DependencySpec,
    WorkspaceSchemaError,
    WorkspaceSyntaxError,
    parse_workspace_dict,
    parse_yaml_file,
    parse_yaml_text,
)


class ParseYamlTests(unittest.TestCase):
    def test_empty_document_is_empty_mapping(self):
        self.assertEqual(parse_yaml_text(""), {})

    def test_invalid_yaml_raises_syntax_error(self):
        with self.assertRaises(WorkspaceSyntaxError) as ctx:
            parse_yaml_text("contracts: [", source="broken.yml")
        self.assertIn("broken.yml", str(ctx.exception))

    def test_root_must_be_mapping(self):
        with self.assertRaises(WorkspaceSchemaError):
            parse_yaml_text("- a\n- b\n")

    def test_parse_yaml_file_reads_from_disk(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "deploy.yml")
            with open(path, "w", encoding="utf-8") as f:
                f.write("mode: parallel\n")
            self.assertEqual(parse_yaml_file(path), {"mode": "parallel"})


class ParseWorkspaceDictTests(unittest.TestCase):
    def test_minimal_contract_defaults_manifest(self):
        workspace = parse_workspace_dict({"contracts": [{"name": "token", "dir": "/ws/token"}]})

        contract = workspace.contracts[0]
        self.assertEqual(contract.contract_name, "token")
        self.assertEqual(contract.contract_dir, "/ws/token")
        self.assertEqual(contract.cargo_toml_path, os.path.join("/ws/token", "Cargo.toml"))
        self.assertIsNone(contract.command)
        self.assertIsNone(workspace.mode)
        self.assertFalse(workspace.include_dev_dependencies)

    def test_relative_dirs_resolve_against_base_dir(self):
        workspace = parse_workspace_dict(
            {"contracts": [{"name": "token", "dir": "contracts/token", "manifest": "contracts/token/Cargo.toml"}]},
            base_dir="/ws",
        )

        contract = workspace.contracts[0]
        self.assertEqual(contract.contract_dir, os.path.normpath("/ws/contracts/token"))
        self.assertEqual(contract.cargo_toml_path, os.path.normpath("/ws/contracts/token/Cargo.toml"))

    def test_dependency_list_and_mapping_forms(self):
        workspace = parse_workspace_dict(
            {
                "contracts": [
                    {
                        "name": "market",
                        "dir": "/ws/market",
                        "dependencies": [{"name": "token", "path": "../token"}],
                        "build_dependencies": {"registry": {"workspace": True}, "soroban-sdk": "21.0.0"},
                        "dev_dependencies": {"testutils": {"path": "../testutils"}},
                    }
                ]
            }
        )

        contract = workspace.contracts[0]
        self.assertEqual(contract.dependencies, (DependencySpec(name="token", path="../token"),))
        self.assertEqual(
            contract.build_dependencies,
            (DependencySpec(name="registry", workspace=True), DependencySpec(name="soroban-sdk")),
        )
        self.assertEqual(contract.dev_dependencies, (DependencySpec(name="testutils", path="../testutils"),))

    def test_top_level_options(self):
        workspace = parse_workspace_dict(
            {
                "batch_id": "release-1",
                "mode": "Parallel",
                "concurrency": 3,
                "include_dev_dependencies": True,
                "retry": {"max_attempts": 5},
                "contracts": [],
            }
        )

        self.assertEqual(workspace.batch_id, "release-1")
        self.assertEqual(workspace.mode, "parallel")
        self.assertEqual(workspace.concurrency, 3)
        self.assertTrue(workspace.include_dev_dependencies)
        self.assertEqual(workspace.retry, {"max_attempts": 5})

    def test_command_is_trimmed(self):
        workspace = parse_workspace_dict(
            {"contracts": [{"name": "token", "dir": "/ws/token", "command": "  stellar contract deploy  "}]}
        )
        self.assertEqual(workspace.contracts[0].command, "stellar contract deploy")

    def test_rejects_bad_contract_name(self):
        with self.assertRaises(WorkspaceSchemaError):
            parse_workspace_dict({"contracts": [{"name": "1token", "dir": "/ws/token"}]})

    def test_rejects_missing_dir(self):
        with self.assertRaises(WorkspaceSchemaError) as ctx:
            parse_workspace_dict({"contracts": [{"name": "token"}]})
        self.assertIn("dir", str(ctx.exception))

    def test_rejects_unknown_mode(self):
        with self.assertRaises(WorkspaceSchemaError):
            parse_workspace_dict({"mode": "turbo", "contracts": []})

    def test_rejects_bad_concurrency(self):
        for value in (0, -1, "2", True):
            with self.assertRaises(WorkspaceSchemaError):
                parse_workspace_dict({"concurrency": value, "contracts": []})

    def test_rejects_non_list_contracts(self):
        with self.assertRaises(WorkspaceSchemaError):
            parse_workspace_dict({"contracts": {"token": {}}})

    def test_rejects_non_boolean_workspace_flag(self):
        with self.assertRaises(WorkspaceSchemaError):
            parse_workspace_dict(
                {"contracts": [{"name": "a", "dir": "/ws/a", "dependencies": [{"name": "b", "workspace": "yes"}]}]}
            )

    def test_rejects_retry_that_is_not_mapping(self):
        with self.assertRaises(WorkspaceSchemaError):
            parse_workspace_dict({"retry": 3, "contracts": []})

    def test_to_dict_round_trips_through_parser(self):
        raw = {
            "mode": "sequential",
            "contracts": [
                {
                    "name": "token",
                    "dir": "/ws/token",
                    "dependencies": [{"name": "shared", "workspace": True}],
                }
            ],
        }
        workspace = parse_workspace_dict(raw)
        self.assertEqual(parse_workspace_dict(workspace.to_dict()), workspace)
        self.assertEqual(set(workspace.contract_map()), {"token"})


if __name__ == "__main__":
    unittest.main()
