import unittest

from deploykit.runtime.execution import (
    DependencyCycleError,
    DependencyEdge,
    EdgeReason,
    batch_items_from_graph,
    find_cycles,
    normalise_path,
    require_acyclic,
    resolve_dependency_graph,
    topological_levels,
)
from deploykit.schema import ArtifactDescriptor, DependencySpec


def _contract(name, deps=(), build_deps=(), dev_deps=(), root="/ws"):
    return ArtifactDescriptor(
        cargo_toml_path=f"{root}/{name}/Cargo.toml",
        contract_dir=f"{root}/{name}",
        contract_name=name,
        dependencies=tuple(deps),
        build_dependencies=tuple(build_deps),
        dev_dependencies=tuple(dev_deps),
    )


def _key(name, root="/ws"):
    return f"{root}/{name}/Cargo.toml"


class NormalisePathTests(unittest.TestCase):
    def test_converts_backslashes(self):
        self.assertEqual(normalise_path("C:\\ws\\token\\Cargo.toml"), "C:/ws/token/Cargo.toml")

    def test_strips_trailing_slash(self):
        self.assertEqual(normalise_path("/ws/token/"), "/ws/token")

    def test_collapses_relative_segments(self):
        self.assertEqual(normalise_path("/ws/token/../shared/Cargo.toml"), "/ws/shared/Cargo.toml")


class DependencyGraphTests(unittest.TestCase):
    def test_path_dependency_orders_target_first(self):
        a = _contract("A", deps=[DependencySpec(name="b", path="../B")])
        b = _contract("B")

        graph = resolve_dependency_graph([a, b])

        self.assertEqual(graph.cycles, ())
        self.assertEqual(
            graph.edges,
            (DependencyEdge(_key("A"), _key("B"), EdgeReason.PATH, "b"),),
        )
        self.assertEqual(graph.order, (_key("B"), _key("A")))
        self.assertEqual(graph.levels, ((_key("B"),), (_key("A"),)))

    def test_workspace_dependency_matches_name_case_insensitively(self):
        a = _contract("contract-a", deps=[DependencySpec(name="Contract-B", workspace=True)])
        b = _contract("contract-b")

        graph = resolve_dependency_graph([a, b])

        self.assertEqual(len(graph.edges), 1)
        self.assertEqual(graph.edges[0].reason, EdgeReason.WORKSPACE)
        self.assertLess(graph.order.index(_key("contract-b")), graph.order.index(_key("contract-a")))

    def test_path_dependency_does_not_fall_back_to_name_lookup(self):
        a = _contract("A", deps=[DependencySpec(name="B", path="../elsewhere", workspace=True)])
        b = _contract("B")

        graph = resolve_dependency_graph([a, b])
        self.assertEqual(graph.edges, ())

    def test_unknown_dependencies_produce_no_edges(self):
        a = _contract("A", deps=[DependencySpec(name="soroban-sdk", workspace=True), DependencySpec(name="x")])

        graph = resolve_dependency_graph([a])
        self.assertEqual(graph.edges, ())
        self.assertEqual(graph.levels, ((_key("A"),),))

    def test_build_dependencies_are_included(self):
        a = _contract("A", build_deps=[DependencySpec(name="B", workspace=True)])
        b = _contract("B")

        graph = resolve_dependency_graph([a, b])
        self.assertEqual(len(graph.edges), 1)

    def test_dev_dependencies_only_when_requested(self):
        a = _contract("A", dev_deps=[DependencySpec(name="B", workspace=True)])
        b = _contract("B")

        self.assertEqual(resolve_dependency_graph([a, b]).edges, ())
        self.assertEqual(len(resolve_dependency_graph([a, b], include_dev_dependencies=True).edges), 1)

    def test_self_reference_is_ignored(self):
        a = _contract("A", deps=[DependencySpec(name="A", workspace=True), DependencySpec(name="a", path=".")])

        graph = resolve_dependency_graph([a])
        self.assertEqual(graph.edges, ())
        self.assertEqual(graph.order, (_key("A"),))

    def test_windows_manifest_paths_are_normalised(self):
        a = ArtifactDescriptor(
            cargo_toml_path="C:\\ws\\A\\Cargo.toml",
            contract_dir="C:\\ws\\A",
            contract_name="A",
            dependencies=(DependencySpec(name="b", path="..\\B"),),
        )
        b = ArtifactDescriptor(cargo_toml_path="C:\\ws\\B\\Cargo.toml", contract_dir="C:\\ws\\B", contract_name="B")

        graph = resolve_dependency_graph([a, b])
        self.assertEqual(graph.nodes, ("C:/ws/A/Cargo.toml", "C:/ws/B/Cargo.toml"))
        self.assertEqual(graph.order, ("C:/ws/B/Cargo.toml", "C:/ws/A/Cargo.toml"))

    def test_levels_group_independent_contracts_and_sort_waves(self):
        shared = _contract("shared")
        token = _contract("token", deps=[DependencySpec(name="shared", workspace=True)])
        registry = _contract("registry", deps=[DependencySpec(name="shared", workspace=True)])
        market = _contract(
            "market",
            deps=[DependencySpec(name="token", workspace=True), DependencySpec(name="registry", workspace=True)],
        )
        standalone = _contract("zeta")

        graph = resolve_dependency_graph([market, token, standalone, registry, shared])

        self.assertEqual(
            graph.levels,
            (
                (_key("shared"), _key("zeta")),
                (_key("registry"), _key("token")),
                (_key("market"),),
            ),
        )
        self.assertEqual(graph.order, tuple(key for level in graph.levels for key in level))
        self.assertEqual(graph.level_of(standalone.cargo_toml_path), 0)

    def test_acyclic_order_respects_every_edge(self):
        contracts = [
            _contract("a", deps=[DependencySpec(name="b", workspace=True), DependencySpec(name="c", workspace=True)]),
            _contract("b", deps=[DependencySpec(name="d", workspace=True)]),
            _contract("c", deps=[DependencySpec(name="d", workspace=True)]),
            _contract("d"),
            _contract("e", deps=[DependencySpec(name="a", workspace=True)]),
        ]

        graph = resolve_dependency_graph(contracts)

        self.assertEqual(sorted(graph.order), sorted(graph.nodes))
        for edge in graph.edges:
            self.assertLess(graph.order.index(edge.to_key), graph.order.index(edge.from_key))
            self.assertLess(graph.level_of(edge.to_key), graph.level_of(edge.from_key))

    def test_cycle_empties_order_and_levels(self):
        a = _contract("A", deps=[DependencySpec(name="b", workspace=True)])
        b = _contract("b", deps=[DependencySpec(name="A", workspace=True)])

        graph = resolve_dependency_graph([a, b])

        self.assertTrue(graph.has_cycles)
        self.assertEqual(graph.order, ())
        self.assertEqual(graph.levels, ())
        for cycle in graph.cycles:
            self.assertEqual(cycle[0], cycle[-1])

    def test_reports_disjoint_cycles(self):
        contracts = [
            _contract("a", deps=[DependencySpec(name="b", workspace=True)]),
            _contract("b", deps=[DependencySpec(name="a", workspace=True)]),
            _contract("c", deps=[DependencySpec(name="d", workspace=True)]),
            _contract("d", deps=[DependencySpec(name="c", workspace=True)]),
            _contract("e"),
        ]

        graph = resolve_dependency_graph(contracts)

        self.assertEqual(
            graph.cycles,
            (
                (_key("a"), _key("b"), _key("a")),
                (_key("c"), _key("d"), _key("c")),
            ),
        )

    def test_require_acyclic_raises_with_chain(self):
        a = _contract("A", deps=[DependencySpec(name="b", workspace=True)])
        b = _contract("b", deps=[DependencySpec(name="A", workspace=True)])

        with self.assertRaises(DependencyCycleError) as ctx:
            require_acyclic(resolve_dependency_graph([a, b]))
        self.assertIn("circular dependency chains", str(ctx.exception))
        self.assertIn(" -> ", str(ctx.exception))


class GraphPrimitiveTests(unittest.TestCase):
    def test_find_cycles_on_three_node_loop(self):
        edges = [
            DependencyEdge("a", "b", EdgeReason.WORKSPACE, "b"),
            DependencyEdge("b", "c", EdgeReason.WORKSPACE, "c"),
            DependencyEdge("c", "a", EdgeReason.WORKSPACE, "a"),
        ]
        self.assertEqual(find_cycles(["a", "b", "c"], edges), [("a", "b", "c", "a")])

    def test_topological_levels_for_independent_nodes_is_sorted(self):
        order, levels = topological_levels(["c", "a", "b"], [])
        self.assertEqual(order, ("a", "b", "c"))
        self.assertEqual(levels, (("a", "b", "c"),))

    def test_duplicate_edges_do_not_stall_leveling(self):
        edges = [
            DependencyEdge("a", "b", EdgeReason.WORKSPACE, "b"),
            DependencyEdge("a", "b", EdgeReason.PATH, "b"),
        ]
        order, levels = topological_levels(["a", "b"], edges)
        self.assertEqual(order, ("b", "a"))
        self.assertEqual(levels, (("b",), ("a",)))


class BatchItemsFromGraphTests(unittest.TestCase):
    def test_items_follow_order_with_named_dependencies(self):
        shared = _contract("shared")
        token = _contract("token", deps=[DependencySpec(name="shared", path="../shared")])

        graph = resolve_dependency_graph([token, shared])
        items = batch_items_from_graph(graph, [token, shared])

        self.assertEqual([item.id for item in items], ["shared", "token"])
        self.assertEqual(items[1].depends_on, ("shared",))
        self.assertEqual(items[1].contract_dir, "/ws/token")

    def test_items_refuse_cyclic_graph(self):
        a = _contract("A", deps=[DependencySpec(name="b", workspace=True)])
        b = _contract("b", deps=[DependencySpec(name="A", workspace=True)])

        with self.assertRaises(DependencyCycleError):
            batch_items_from_graph(resolve_dependency_graph([a, b]), [a, b])


if __name__ == "__main__":
    unittest.main()
