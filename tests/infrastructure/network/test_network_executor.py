import io
import os
import tempfile
import unittest
import warnings
from unittest import TestCase, mock

import numpy as np

from tensornet.domain._errors import (
    GraphValidationError,
    InvalidStateError,
    ReplicaFailure,
    ShapeMismatchError,
)
from tensornet.infrastructure.buffer import Buffer
from tensornet.infrastructure.layers import LayerGraph
from tensornet.infrastructure.network import ComputeService, Network, StepState
from tensornet.infrastructure.optimizers import SGD, Adam


def _mlp(seed=0, name="model"):
    g = LayerGraph()
    x = g.input((3,))
    h = g.relu(g.dense(x, 8))
    y = g.dense(h, 2)
    return Network(g, x, y, name=name, seed=seed)


def _data(n=8, seed=0):
    rng = np.random.default_rng(seed)
    x = rng.standard_normal((n, 3)).astype(np.float32)
    y = rng.standard_normal((n, 2)).astype(np.float32)
    return x, y


def _host(params):
    return {k: p.to_numpy() for k, p in params.items()}


class TestNetworkBuild(TestCase):
    def test_build_initializes_every_replica(self):
        with _mlp().build(SGD(lr=0.1), "mse", compute_service=ComputeService.cpu(2)) as net:
            self.assertEqual(len(net.replicas), 2)
            self.assertEqual(net.state, StepState.IDLE)
            self.assertEqual(
                sorted(net.parameters()),
                ["dense1.W", "dense1.b", "dense2.W", "dense2.b"],
            )
            p0 = _host(net.replica_parameters(0))
            p1 = _host(net.replica_parameters(1))
            for k in p0:
                np.testing.assert_array_equal(p0[k], p1[k])
            self.assertTrue(np.any(p0["dense1.W"] != 0))

    def test_same_device_replicas_share_parameters(self):
        cs = ComputeService(devices=("cpu", "cpu"))
        with _mlp().build("sgd", "mse", compute_service=cs) as net:
            p0, p1 = net.replica_parameters(0), net.replica_parameters(1)
            for k in p0:
                self.assertIs(p0[k], p1[k])

    def test_loss_count_must_match_outputs(self):
        g = LayerGraph()
        x = g.input((3,))
        a = g.dense(x, 2)
        b = g.dense(x, 1)
        net = Network(g, x, [a, b])
        with self.assertRaises(GraphValidationError):
            net.build("sgd", ["mse", "mse", "mse"])
        with self.assertRaises(GraphValidationError):
            net.build("sgd", [])

    def test_unknown_optimizer(self):
        with self.assertRaises(ValueError):
            _mlp().build("rmsprop", "mse")

    def test_summary_lists_nodes(self):
        net = _mlp(name="tiny").build("sgd", "mse")
        text = net.summary()
        for name in ("tiny", "input1", "dense1", "relu1", "dense2"):
            self.assertIn(name, text)
        self.assertIn("Total params: 50", text)


class TestStepStateMachine(TestCase):
    def setUp(self):
        self.x, self.y = _data()

    def test_hooks_require_build(self):
        net = _mlp()
        for call in (
            lambda: net.forward(self.x),
            net.reset_grads,
            net.backward,
            net.sync,
            net.update,
            net.summary,
        ):
            with self.assertRaises(InvalidStateError):
                call()

    def test_out_of_order_hooks(self):
        net = _mlp().build("sgd", "mse")
        with self.assertRaises(InvalidStateError):
            net.backward()
        with self.assertRaises(InvalidStateError):
            net.sync()
        with self.assertRaises(InvalidStateError):
            net.update()
        with self.assertRaises(InvalidStateError):
            net.compute_loss(self.y)

        net.reset_grads()
        net.forward(self.x)
        with self.assertRaises(InvalidStateError):
            net.backward()
        net.compute_loss(self.y)
        net.backward()
        with self.assertRaises(InvalidStateError):
            net.forward(self.x)
        with self.assertRaises(InvalidStateError):
            net.update()
        with self.assertRaises(InvalidStateError):
            net.reset_grads()
        net.sync()
        with self.assertRaises(InvalidStateError):
            net.reset_grads()
        net.update()
        self.assertEqual(net.state, StepState.UPDATED)
        net.reset_grads()

    def test_gradients_survive_a_rejected_reset(self):
        net = _mlp().build(SGD(lr=0.1), "mse")
        before = net.snapshot()
        net.reset_grads()
        net.forward(self.x)
        net.compute_loss(self.y)
        net.backward()
        with self.assertRaises(InvalidStateError):
            net.reset_grads()
        net.sync()
        net.update()
        after = net.snapshot()
        self.assertTrue(any(np.any(after[k] != before[k]) for k in before))

    def test_backward_needs_deltas(self):
        net = _mlp().build("sgd", "mse")
        net.forward(self.x)
        net.compute_loss(self.y, compute_delta=False)
        with self.assertRaises(InvalidStateError):
            net.backward()

    def test_compute_loss_without_reset_warns_and_resets(self):
        net = _mlp().build("sgd", "mse")
        net.forward(self.x)
        with self.assertWarns(RuntimeWarning):
            net.compute_loss(self.y)

        net.reset_grads()
        net.forward(self.x)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            net.compute_loss(self.y)

    def test_abort_step_returns_to_idle(self):
        net = _mlp().build("sgd", "mse")
        net.reset_grads()
        net.forward(self.x)
        net.compute_loss(self.y)
        net.backward()
        net.abort_step()
        self.assertEqual(net.state, StepState.IDLE)
        for _, _, _, g in net.replicas[0].parameters(net.order):
            self.assertFalse(np.any(g.to_numpy()))

    def test_shape_checks(self):
        net = _mlp().build("sgd", "mse")
        with self.assertRaises(ShapeMismatchError):
            net.forward(np.zeros((4, 5), dtype=np.float32))
        net.reset_grads()
        net.forward(self.x)
        with self.assertRaises(ShapeMismatchError):
            net.compute_loss(self.y[:4])


class TestDataParallelSteps(TestCase):
    def setUp(self):
        self.x, self.y = _data(8)

    def _train(self, cs, optimizer, steps=3):
        with _mlp(seed=3).build(optimizer, "mse", compute_service=cs) as net:
            for _ in range(steps):
                net.train_batch(self.x, self.y)
            return _host(net.parameters())

    def test_two_replicas_match_one_replica(self):
        single = self._train(ComputeService(), SGD(lr=0.05, momentum=0.9))
        for policy in ("sum", "average"):
            with self.subTest(policy=policy):
                multi = self._train(
                    ComputeService.cpu(2, sync_policy=policy), SGD(lr=0.05, momentum=0.9)
                )
                for k in single:
                    np.testing.assert_allclose(multi[k], single[k], rtol=1e-4, atol=1e-6)

    def test_two_replicas_match_one_replica_with_adam(self):
        single = self._train(ComputeService(), Adam(lr=0.01))
        multi = self._train(ComputeService.cpu(2, sync_policy="average"), Adam(lr=0.01))
        for k in single:
            np.testing.assert_allclose(multi[k], single[k], rtol=1e-4, atol=1e-5)

    def test_replicas_hold_identical_parameters_after_update(self):
        with _mlp().build(SGD(lr=0.1), "mse", compute_service=ComputeService.cpu(3)) as net:
            before = _host(net.parameters())
            net.train_batch(self.x[:6], self.y[:6])
            p0 = _host(net.replica_parameters(0))
            for r in (1, 2):
                pr = _host(net.replica_parameters(r))
                for k in p0:
                    np.testing.assert_array_equal(pr[k], p0[k])
            self.assertTrue(np.any(p0["dense2.W"] != before["dense2.W"]))

    def test_uneven_batch_warns(self):
        with _mlp().build("sgd", "mse", compute_service=ComputeService.cpu(2)) as net:
            with self.assertWarns(RuntimeWarning):
                net.forward(self.x[:5])
            self.assertEqual([(r.start, r.stop) for r in net.replicas], [(0, 3), (3, 5)])
            with self.assertRaises(ValueError):
                net.forward(self.x[:1])

    def test_step_logs_match_replica_sum(self):
        with _mlp().build("sgd", "mse", "mse", compute_service=ComputeService.cpu(2)) as net:
            out = net.predict(self.x)
            expected = float(np.sum((out - self.y) ** 2)) / len(self.x)
            net.reset_loss()
            net.reset_grads()
            net.forward(self.x)
            logs = net.compute_loss(self.y)
            self.assertAlmostEqual(logs["loss"], expected, places=4)
            self.assertEqual(sorted(logs), ["loss", "mean_squared_error"])
            self.assertEqual(net.seen, 8)
            self.assertAlmostEqual(net.running_losses()[0], expected, places=4)

    def test_local_updates_average_every_k_steps(self):
        cs = ComputeService.cpu(2, local_sync_batches=2)
        with _mlp().build(SGD(lr=0.1), "mse", compute_service=cs) as net:
            self.assertIsNot(net.replicas[1].optimizer, net.optimizer)
            net.train_batch(self.x, self.y)
            p0 = _host(net.replica_parameters(0))
            p1 = _host(net.replica_parameters(1))
            self.assertTrue(any(np.any(p0[k] != p1[k]) for k in p0))

            net.train_batch(self.x, self.y)
            p0 = _host(net.replica_parameters(0))
            p1 = _host(net.replica_parameters(1))
            for k in p0:
                np.testing.assert_array_equal(p0[k], p1[k])


class TestReplicaFailure(TestCase):
    def setUp(self):
        self.x, self.y = _data(8)

    def test_forward_failure_aborts_the_step(self):
        boom = RuntimeError("boom")

        def trace(replica, phase, node):
            if replica == 1 and phase == "forward":
                raise boom

        with _mlp().build(SGD(lr=0.1), "mse", compute_service=ComputeService.cpu(2)) as net:
            before = net.snapshot()
            net.set_trace(trace)
            with self.assertRaises(ReplicaFailure) as ctx:
                net.train_batch(self.x, self.y)
            self.assertEqual(ctx.exception.replica, 1)
            self.assertEqual(ctx.exception.phase, "forward")
            self.assertIs(ctx.exception.__cause__, boom)
            self.assertEqual(net.state, StepState.IDLE)
            after = net.snapshot()
            for k in before:
                np.testing.assert_array_equal(after[k], before[k])

            net.set_trace(None)
            net.train_batch(self.x, self.y)
            self.assertEqual(net.state, StepState.UPDATED)

    def test_backward_failure_zeroes_gradients(self):
        def trace(replica, phase, node):
            if replica == 0 and phase == "backward":
                raise ValueError("bad node")

        with _mlp().build("sgd", "mse", compute_service=ComputeService.cpu(2)) as net:
            net.set_trace(trace)
            with self.assertRaises(ReplicaFailure) as ctx:
                net.train_batch(self.x, self.y)
            self.assertEqual(ctx.exception.replica, 0)
            self.assertEqual(ctx.exception.phase, "backward")
            for rep in net.replicas:
                for _, _, _, g in rep.parameters(net.order):
                    self.assertFalse(np.any(g.to_numpy()))

    def test_trace_visits_nodes_in_order(self):
        visits = []
        with _mlp().build("sgd", "mse") as net:
            net.set_trace(lambda r, phase, i: visits.append((phase, i)))
            net.train_batch(self.x, self.y)
            forward = [i for phase, i in visits if phase == "forward"]
            backward = [i for phase, i in visits if phase == "backward"]
            self.assertEqual(forward, net.order)
            self.assertEqual(backward, list(reversed(net.order)))


class TestHighLevelLoops(TestCase):
    def test_fit_reduces_loss(self):
        rng = np.random.default_rng(1)
        x = rng.standard_normal((64, 3)).astype(np.float32)
        w = np.array([[1.0], [-2.0], [0.5]], dtype=np.float32)
        y = x @ w

        g = LayerGraph()
        inp = g.input((3,))
        out = g.dense(inp, 1)
        with Network(g, inp, out, seed=0).build(
            SGD(lr=0.1), "mse", compute_service=ComputeService.cpu(2)
        ) as net:
            hist = net.fit(x, y, batch_size=16, epochs=20, verbose=0)
            self.assertEqual(len(hist), 20)
            self.assertEqual(hist.epoch, list(range(20)))
            self.assertEqual(hist.seen, [64] * 20)
            self.assertLess(hist.history["loss"][-1], hist.history["loss"][0])
            self.assertEqual(hist.best("loss"), int(np.argmin(hist.history["loss"])))

    def test_fit_validation(self):
        x, y = _data(8)
        net = _mlp().build("sgd", "mse", compute_service=ComputeService.cpu(2))
        with self.assertRaises(ValueError):
            net.fit(x, y, epochs=0, verbose=0)
        with self.assertRaises(ValueError):
            net.fit(x, y, batch_size=1, verbose=0)
        with self.assertRaises(ValueError):
            net.fit(x, y[:4], verbose=0)
        net.close()

    def test_evaluate_leaves_parameters_untouched(self):
        x, y = _data(10)
        with _mlp().build("sgd", "mse", "mse") as net:
            before = net.snapshot()
            logs = net.evaluate(x, y, batch_size=4)
            expected = float(np.sum((net.predict(x) - y) ** 2)) / 10
            self.assertAlmostEqual(logs["loss"], expected, places=4)
            after = net.snapshot()
            for k in before:
                np.testing.assert_array_equal(after[k], before[k])

    def test_predict_matches_dense_math(self):
        g = LayerGraph()
        inp = g.input((3,))
        out = g.dense(inp, 2)
        x, _ = _data(6)
        with Network(g, inp, out, seed=4).build("sgd", "mse") as net:
            p = net.snapshot()
            np.testing.assert_allclose(
                net.predict(x), x @ p["dense1.W"] + p["dense1.b"], rtol=1e-5, atol=1e-6
            )

    def test_predict_is_independent_of_replica_count(self):
        x, _ = _data(9)
        with _mlp(seed=5).build("sgd", "mse") as one, _mlp(seed=5).build(
            "sgd", "mse", compute_service=ComputeService.cpu(3)
        ) as three:
            np.testing.assert_allclose(three.predict(x), one.predict(x), rtol=1e-5, atol=1e-6)
            self.assertEqual(three.predict(x, batch_size=3).shape, (9, 2))

    def test_multiple_outputs(self):
        g = LayerGraph()
        x = g.input((3,))
        a = g.dense(x, 2)
        b = g.dense(x, 1)
        xs, ya = _data(4)
        yb = ya[:, :1]
        with Network(g, x, [a, b], seed=0).build("sgd", "mse", "mse") as net:
            logs = net.train_batch(xs, [ya, yb])
            self.assertEqual(
                sorted(logs),
                ["dense1_loss", "dense1_mean_squared_error", "dense2_loss", "dense2_mean_squared_error"],
            )
            preds = net.predict(xs)
            self.assertEqual([p.shape for p in preds], [(4, 2), (4, 1)])


class TestCheckpoints(TestCase):
    def test_snapshot_restore(self):
        x, y = _data(8)
        with _mlp().build(SGD(lr=0.1), "mse", compute_service=ComputeService.cpu(2)) as net:
            snap = net.snapshot()
            net.train_batch(x, y)
            net.restore(snap)
            for r in (0, 1):
                current = _host(net.replica_parameters(r))
                for k in snap:
                    np.testing.assert_array_equal(current[k], snap[k])
            with self.assertRaises(KeyError):
                net.restore({})

    def test_save_and_load_weights(self):
        x, y = _data(8)
        with _mlp(seed=0).build(SGD(lr=0.1), "mse") as src:
            src.train_batch(x, y)
            stream = io.StringIO()
            src.save_weights(stream)
            stream.seek(0)
            with _mlp(seed=1).build(
                "sgd", "mse", compute_service=ComputeService.cpu(2)
            ) as dst:
                dst.load_weights(stream)
                np.testing.assert_allclose(dst.predict(x), src.predict(x), rtol=1e-5, atol=1e-6)
                np.testing.assert_array_equal(
                    dst.snapshot()["dense2.W"], src.snapshot()["dense2.W"]
                )

    def test_weights_file_roundtrip(self):
        with _mlp(seed=2).build("sgd", "mse") as net, tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "weights.json")
            net.save_weights(path)
            other = _mlp(seed=7).build("sgd", "mse")
            other.load_weights(path)
            snap, loaded = net.snapshot(), other.snapshot()
            for k in snap:
                np.testing.assert_array_equal(loaded[k], snap[k])

    def test_load_weights_missing_key(self):
        stream = io.StringIO()
        g = LayerGraph()
        inp = g.input((3,))
        Network(g, inp, g.dense(inp, 8)).build("sgd", "mse").save_weights(stream)
        stream.seek(0)
        with self.assertRaises(KeyError):
            _mlp().build("sgd", "mse").load_weights(stream)


class TestSyncFailure(TestCase):
    def test_failing_source_is_reported_by_replica(self):
        x, y = _data(9)
        cs = ComputeService(devices=("cpu", "cpu", "cpu"))
        with _mlp().build(SGD(lr=0.1), "mse", compute_service=cs) as net:
            bad = net.replicas[2].parameters(net.order)[0][3]
            original_inc = Buffer.inc_

            def inc(self, other):
                if other is bad:
                    raise RuntimeError("corrupt gradient")
                return original_inc(self, other)

            before = net.snapshot()
            net.reset_grads()
            net.forward(x)
            net.compute_loss(y)
            net.backward()
            with mock.patch.object(Buffer, "inc_", autospec=True, side_effect=inc):
                with self.assertRaises(ReplicaFailure) as ctx:
                    net.sync()
            self.assertEqual(ctx.exception.replica, 2)
            self.assertEqual(ctx.exception.phase, "sync")
            self.assertEqual(net.state, StepState.IDLE)
            after = net.snapshot()
            for k in before:
                np.testing.assert_array_equal(after[k], before[k])


class TestClampModeAndLog(TestCase):
    def setUp(self):
        self.x, self.y = _data(8)

    def test_clamp_bounds_every_replica(self):
        with _mlp().build(SGD(lr=0.1), "mse", compute_service=ComputeService.cpu(2)) as net:
            net.train_batch(self.x, self.y)
            net.clamp(-0.05, 0.05)
            p0 = _host(net.replica_parameters(0))
            p1 = _host(net.replica_parameters(1))
            for k in p0:
                self.assertLessEqual(p0[k].max(), np.float32(0.05))
                self.assertGreaterEqual(p0[k].min(), np.float32(-0.05))
                np.testing.assert_array_equal(p1[k], p0[k])
            self.assertTrue(np.any(np.abs(p0["dense1.W"]) == np.float32(0.05)))
            with self.assertRaises(ValueError):
                net.clamp(1.0, 0.0)

    def test_clamp_in_local_update_mode(self):
        cs = ComputeService.cpu(2, local_sync_batches=3)
        with _mlp().build(SGD(lr=0.1), "mse", compute_service=cs) as net:
            net.train_batch(self.x, self.y)
            net.clamp(-0.01, 0.01)
            for r in (0, 1):
                for p in _host(net.replica_parameters(r)).values():
                    self.assertLessEqual(np.abs(p).max(), np.float32(0.01))

    def test_mode_follows_the_loop(self):
        with _mlp().build("sgd", "mse", compute_service=ComputeService.cpu(2)) as net:
            self.assertEqual(net.mode, "train")
            net.predict(self.x)
            self.assertEqual(net.mode, "inference")
            self.assertFalse(any(rep.graph.training for rep in net.replicas))
            net.fit(self.x, self.y, batch_size=4, epochs=1, verbose=0)
            self.assertEqual(net.mode, "train")
            self.assertTrue(all(rep.graph.training for rep in net.replicas))
            net.evaluate(self.x, self.y)
            self.assertFalse(net.graph.training)
            with self.assertRaises(ValueError):
                net.set_mode("test")

    def test_log_file_records_steps_and_evaluated_batches(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "batches.log")
            net = _mlp().build("sgd", "mse")
            net.set_log_file(path)
            net.train_batch(self.x, self.y)
            net.train_batch(self.x, self.y)
            net.evaluate(self.x, self.y, batch_size=4)
            net.close()
            net.train_batch(self.x, self.y)

            with open(path, encoding="utf-8") as f:
                lines = f.read().splitlines()
            self.assertEqual(len(lines), 4)
            self.assertTrue(lines[0].startswith("train 1 - loss: "))
            self.assertTrue(lines[1].startswith("train 2 - loss: "))
            self.assertTrue(lines[2].startswith("eval 1 - loss: "))
            self.assertTrue(lines[3].endswith("samples: 4"))


if __name__ == "__main__":
    unittest.main()
