import unittest
from unittest import TestCase

from tensornet.domain import AxisOutOfRangeError, GraphValidationError
from tensornet.infrastructure.layers import LayerGraph, LayerKind, topological_order


class TestLayerGraphBuilder(TestCase):
    def test_auto_names_are_per_graph(self):
        g = LayerGraph()
        x = g.input((3,))
        d1 = g.dense(x, 4)
        r = g.relu(d1)
        d2 = g.dense(r, 2)
        self.assertEqual(
            [g[i].name for i in (x, d1, r, d2)], ["input1", "dense1", "relu1", "dense2"]
        )

        other = LayerGraph()
        self.assertEqual(other[other.dense(other.input((3,)), 4)].name, "dense1")

    def test_explicit_names_and_duplicates(self):
        g = LayerGraph()
        x = g.input((3,), name="features")
        self.assertEqual(g.index_of("features"), x)
        with self.assertRaises(GraphValidationError):
            g.dense(x, 2, name="features")
        with self.assertRaises(GraphValidationError):
            g.index_of("missing")

    def test_unknown_parent_index(self):
        g = LayerGraph()
        with self.assertRaises(GraphValidationError):
            g.relu(3)

    def test_edges_are_recorded_both_ways(self):
        g = LayerGraph()
        x = g.input((2,))
        a = g.exp(x)
        b = g.relu(x)
        s = g.add(a, b)
        self.assertEqual(g[s].parents, [a, b])
        self.assertEqual(g[x].children, [a, b])
        self.assertIs(g[s].kind, LayerKind.ADD)
        self.assertEqual(len(g), 4)

    def test_generic_node_insertion(self):
        g = LayerGraph()
        x = g.add_node("input", (), {"shape": (5,)})
        e = g.add_node(LayerKind.EXP, (x,))
        self.assertIs(g[e].kind, LayerKind.EXP)
        self.assertEqual(g[e].name, "exp1")


class TestTopologicalOrder(TestCase):
    def test_diamond_order_is_deterministic(self):
        g = LayerGraph()
        x = g.input((2,))
        a = g.exp(x)
        b = g.relu(x)
        s = g.add(b, a)
        self.assertEqual(topological_order(g, [x], [s]), [x, a, b, s])

    def test_only_ancestors_of_outputs_are_scheduled(self):
        g = LayerGraph()
        x = g.input((2,))
        y = g.dense(x, 3)
        g.exp(x)  # dangling branch
        self.assertEqual(topological_order(g, [x], [y]), [x, y])

    def test_every_parent_precedes_its_child(self):
        g = LayerGraph()
        x = g.input((4,))
        h = [g.dense(x, 4) for _ in range(3)]
        s = g.add(*h)
        r = g.relu(s)
        y = g.add(r, h[0])
        order = topological_order(g, [x], [y])
        pos = {n: k for k, n in enumerate(order)}
        for n in order:
            for p in g[n].parents:
                self.assertLess(pos[p], pos[n])

    def test_cycle_is_rejected(self):
        g = LayerGraph()
        x = g.input((2,))
        d = g.dense(x, 2)
        r = g.relu(d)
        g.connect(r, d)
        with self.assertRaises(GraphValidationError):
            topological_order(g, [x], [r])

    def test_output_fed_by_undeclared_input(self):
        g = LayerGraph()
        x1 = g.input((2,))
        x2 = g.input((2,))
        y = g.exp(x2)
        with self.assertRaises(GraphValidationError):
            topological_order(g, [x1], [y])

    def test_declared_inputs_must_be_input_nodes(self):
        g = LayerGraph()
        x = g.input((2,))
        e = g.exp(x)
        with self.assertRaises(GraphValidationError):
            topological_order(g, [e], [e])

    def test_empty_inputs_or_outputs(self):
        g = LayerGraph()
        x = g.input((2,))
        with self.assertRaises(GraphValidationError):
            topological_order(g, [], [x])
        with self.assertRaises(GraphValidationError):
            topological_order(g, [x], [])

    def test_unknown_output_index(self):
        g = LayerGraph()
        x = g.input((2,))
        with self.assertRaises(GraphValidationError):
            topological_order(g, [x], [7])


class TestShapeInference(TestCase):
    def _infer(self, g, inputs, outputs):
        for i in topological_order(g, inputs, outputs):
            g[i].infer_shape(g)

    def test_shapes_propagate(self):
        g = LayerGraph()
        x = g.input((2, 3))
        r = g.reduce(x, (1,), "sum")
        y = g.dense(r, 5)
        self._infer(g, [x], [y])
        self.assertEqual(g[r].sample_shape, (2,))
        self.assertEqual(g[y].sample_shape, (5,))
        self.assertEqual(g[y].config["in_features"], 2)

    def test_reduce_keepdims_shape(self):
        g = LayerGraph()
        x = g.input((2, 3, 4))
        r = g.reduce(x, (0, 2), "max", keepdims=True)
        self._infer(g, [x], [r])
        self.assertEqual(g[r].sample_shape, (1, 3, 1))

    def test_reduce_axis_out_of_range(self):
        g = LayerGraph()
        x = g.input((2, 3))
        r = g.reduce(x, (2,))
        with self.assertRaises(AxisOutOfRangeError):
            self._infer(g, [x], [r])

    def test_dense_needs_flat_samples(self):
        g = LayerGraph()
        x = g.input((2, 3))
        y = g.dense(x, 4)
        with self.assertRaises(GraphValidationError):
            self._infer(g, [x], [y])

    def test_add_needs_matching_shapes(self):
        g = LayerGraph()
        x = g.input((3,))
        y = g.add(g.dense(x, 2), g.dense(x, 3))
        with self.assertRaises(GraphValidationError):
            self._infer(g, [x], [y])

    def test_add_needs_two_parents(self):
        g = LayerGraph()
        x = g.input((3,))
        y = g.add(x)
        with self.assertRaises(GraphValidationError):
            self._infer(g, [x], [y])

    def test_input_shape_must_be_positive(self):
        g = LayerGraph()
        x = g.input((0,))
        with self.assertRaises(GraphValidationError):
            self._infer(g, [x], [x])


if __name__ == "__main__":
    unittest.main()
