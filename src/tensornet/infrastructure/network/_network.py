"""
Data-parallel network executor.

`Network` wraps a `LayerGraph` together with its declared inputs and outputs.
`build()` validates the graph, infers shapes, initializes parameters and
creates one replica per device of the `ComputeService`. A training step then
runs as a strict sequence of phases:

    reset_grads -> forward -> compute_loss -> backward -> sync -> update

Each phase runs on every replica concurrently (one worker per replica, bounded
by ``ComputeService.max_workers``) and ends with a barrier: the next phase
never starts before every replica finished the current one.

Replica 0 holds the authoritative parameters. `sync()` merges every replica's
gradients into replica 0 under the target buffer's lock, in replica order, so
the merged result does not depend on thread scheduling. `update()` applies the
optimizer to replica 0 and broadcasts the new parameters, so after every step
all replicas hold bit-identical parameters.
"""

from __future__ import annotations

import random
import warnings
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple, Union

import numpy as np

from ...domain._errors import (
    GraphValidationError,
    InvalidStateError,
    ReplicaFailure,
    ShapeMismatchError,
)
from ..buffer._array_module import device_scope
from ..buffer._buffer import Buffer
from ..io._buffer_io import load_state, save_state
from ..layers._graph import LayerGraph, topological_order
from ..layers._kinds import LayerKind
from ..losses._losses import Loss, Metric, get_loss, get_metric
from ..optimizers._adam import Adam
from ..optimizers._optimizer import Optimizer
from ..optimizers._sgd import SGD
from ._compserv import ComputeService
from ._history import History
from ._replica import Replica


TraceCallback = Callable[[int, str, int], None]
ArrayLike = Any


class StepState(Enum):
    """Phase of the current training step."""

    IDLE = "idle"
    FORWARD_PENDING = "forward_pending"
    LOSS_COMPUTED = "loss_computed"
    BACKWARD_PENDING = "backward_pending"
    GRADIENTS_READY = "gradients_ready"
    UPDATED = "updated"


_FORWARD_FROM = (
    StepState.IDLE,
    StepState.FORWARD_PENDING,
    StepState.LOSS_COMPUTED,
    StepState.UPDATED,
)

_OPTIMIZERS = {"sgd": SGD, "adam": Adam}

MODES = ("train", "inference")


def split_batch(batch: int, replicas: int) -> List[Tuple[int, int]]:
    """
    Split `batch` samples into `replicas` contiguous ``(start, stop)`` slices.

    The remainder of an uneven split goes to the first replicas, one sample
    each.

    Raises
    ------
    ValueError
        If `batch` is smaller than `replicas`.
    """
    batch, replicas = int(batch), int(replicas)
    if replicas < 1:
        raise ValueError(f"replicas must be >= 1, got {replicas}")
    if batch < replicas:
        raise ValueError(
            f"Batch of {batch} samples cannot be split across {replicas} replicas."
        )
    base, rem = divmod(batch, replicas)
    slices = []
    start = 0
    for r in range(replicas):
        stop = start + base + (1 if r < rem else 0)
        slices.append((start, stop))
        start = stop
    return slices


def _batch_bounds(n: int, batch_size: int, replicas: int) -> List[Tuple[int, int]]:
    if batch_size < replicas:
        raise ValueError(
            f"batch_size={batch_size} is smaller than the number of replicas ({replicas})."
        )
    if n < replicas:
        raise ValueError(f"{n} samples cannot be split across {replicas} replicas.")
    bounds = [(a, min(a + batch_size, n)) for a in range(0, n, batch_size)]
    # a tail too small to split joins the previous batch
    if len(bounds) > 1 and bounds[-1][1] - bounds[-1][0] < replicas:
        bounds[-2:] = [(bounds[-2][0], n)]
    return bounds


def _resolve_optimizer(optimizer: Union[str, Optimizer]) -> Optimizer:
    if isinstance(optimizer, Optimizer):
        return optimizer
    cls = _OPTIMIZERS.get(str(optimizer).lower())
    if cls is None:
        raise ValueError(
            f"Unknown optimizer {optimizer!r}. Expected one of {sorted(_OPTIMIZERS)}"
        )
    return cls()


def _per_output(items: Any, n: int, resolve: Callable[[Any], Any], what: str) -> List[Any]:
    if items is None:
        return []
    if not isinstance(items, (list, tuple)):
        return [resolve(items) for _ in range(n)]
    if not items:
        return []
    if len(items) == 1:
        return [resolve(items[0]) for _ in range(n)]
    if len(items) != n:
        raise GraphValidationError(
            f"Got {len(items)} {what} for a network with {n} outputs."
        )
    return [resolve(x) for x in items]


class Network:
    """
    Layer graph bound to inputs, outputs, losses and an optimizer, executed
    data-parallel over one or more devices.

    Parameters
    ----------
    graph : LayerGraph
        Graph holding every node of the network.
    inputs : int or Sequence[int]
        Indices of the input nodes, in the order inputs are fed.
    outputs : int or Sequence[int]
        Indices of the output nodes, in the order targets are fed.
    name : str
        Display name.
    seed : int, optional
        Seed of the parameter initializer. Dense nodes with their own
        ``seed`` ignore it.

    Notes
    -----
    A network is driven from a single thread. Its replicas run on worker
    threads owned by the network; call `close()` (or use the network as a
    context manager) to release them.
    """

    def __init__(
        self,
        graph: LayerGraph,
        inputs: Union[int, Sequence[int]],
        outputs: Union[int, Sequence[int]],
        name: str = "model",
        seed: Optional[int] = None,
    ) -> None:
        self.graph = graph
        self.inputs: List[int] = [int(inputs)] if isinstance(inputs, int) else [int(i) for i in inputs]
        self.outputs: List[int] = [int(outputs)] if isinstance(outputs, int) else [int(o) for o in outputs]
        self.name = name
        self.seed = seed

        self.order: List[int] = []
        self.replicas: List[Replica] = []
        self.optimizer: Optional[Optimizer] = None
        self.losses: List[Loss] = []
        self.metrics: List[Metric] = []
        self.compute_service: Optional[ComputeService] = None
        self.state = StepState.IDLE

        self._built = False
        self._pool: Optional[ThreadPoolExecutor] = None
        self._params: List[List[Tuple[int, str, Buffer, Buffer]]] = []
        self._batch = 0
        self._steps = 0
        self._fresh = False
        self._has_delta = False
        self._trace: Optional[TraceCallback] = None
        self.mode = "train"
        self._log: Optional[TextIO] = None

        self._loss_totals: List[float] = []
        self._metric_totals: List[float] = []
        self._seen = 0

    def __repr__(self) -> str:
        devices = [str(r.device) for r in self.replicas]
        return f"Network(name={self.name!r}, nodes={len(self.graph)}, devices={devices})"

    def __enter__(self) -> "Network":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _shutdown_pool(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def close(self) -> None:
        """Shut down the replica worker threads and close the batch log."""
        self._shutdown_pool()
        if self._log is not None:
            self._log.close()
            self._log = None

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(
        self,
        optimizer: Union[str, Optimizer],
        losses: Any,
        metrics: Any = None,
        compute_service: Optional[ComputeService] = None,
    ) -> "Network":
        """
        Validate the graph and create the replicas.

        Parameters
        ----------
        optimizer : str or Optimizer
            "sgd", "adam" or an optimizer instance.
        losses : str, Loss or sequence
            One loss per output; a single loss applies to every output.
        metrics : str, Metric or sequence, optional
            One metric per output; a single metric applies to every output.
        compute_service : ComputeService, optional
            Devices and synchronization policy. Defaults to one host replica.

        Raises
        ------
        GraphValidationError
            If the graph is malformed or the number of losses or metrics does
            not match the outputs.
        AllocationError
            If a requested device is unavailable.
        """
        self._shutdown_pool()
        cs = compute_service if compute_service is not None else ComputeService()
        order = topological_order(self.graph, self.inputs, self.outputs)

        for i in self.inputs:
            self.graph.nodes[i].infer_shape(self.graph)
        for i in order:
            if self.graph.nodes[i].kind is not LayerKind.INPUT:
                self.graph.nodes[i].infer_shape(self.graph)

        rng = np.random.default_rng(self.seed)
        for i in order:
            node = self.graph.nodes[i]
            if not node.params:
                node.build_params(rng)

        self.losses = _per_output(losses, len(self.outputs), get_loss, "losses")
        if not self.losses:
            raise GraphValidationError("A network needs at least one loss.")
        self.metrics = _per_output(metrics, len(self.outputs), get_metric, "metrics")

        self.order = order
        self.compute_service = cs
        self.replicas = self._make_replicas(cs)
        self._apply_mode()
        self._params = [rep.parameters(order) for rep in self.replicas]

        base = self.graph
        for i, key, p, _ in self._params[0]:
            p.copy_from(base.nodes[i].params[key])
        self._broadcast_parameters()

        self.optimizer = _resolve_optimizer(optimizer)
        self.optimizer.set_parameters([(p, g) for _, _, p, g in self._params[0]])
        self.replicas[0].optimizer = self.optimizer
        if cs.local_updates:
            for rep, params in zip(self.replicas[1:], self._params[1:]):
                rep.optimizer = self.optimizer.clone()
                rep.optimizer.set_parameters([(p, g) for _, _, p, g in params])

        if len(self.replicas) > 1:
            self._pool = ThreadPoolExecutor(
                max_workers=cs.workers, thread_name_prefix=f"{self.name}-replica"
            )

        self._batch = 0
        self._steps = 0
        self._fresh = False
        self._has_delta = False
        self.state = StepState.IDLE
        self._built = True
        self.reset_loss()
        return self

    def _make_replicas(self, cs: ComputeService) -> List[Replica]:
        first = self.graph.clone(cs.devices[0], prefix="")
        replicas = [Replica(0, cs.devices[0], first)]
        for r, device in enumerate(cs.devices[1:], start=1):
            if device == cs.devices[0] and not cs.local_updates:
                g = first.share(prefix=f"r{r}_")
            else:
                g = self.graph.clone(device, prefix=f"r{r}_")
            replicas.append(Replica(r, device, g))
        return replicas

    def _require_built(self, op: str) -> None:
        if not self._built:
            raise InvalidStateError(op, "unbuilt")

    def _require_state(self, op: str, *allowed: StepState) -> None:
        self._require_built(op)
        if self.state not in allowed:
            raise InvalidStateError(op, self.state.value)

    # ------------------------------------------------------------------
    # Replica execution
    # ------------------------------------------------------------------

    def set_trace(self, callback: Optional[TraceCallback]) -> None:
        """
        Install ``callback(replica_index, phase, node_index)``, called before
        every node is evaluated in forward and backward. It runs on worker
        threads. Pass None to remove it.
        """
        self._trace = callback

    @staticmethod
    def _scoped(rep: Replica, fn: Callable[[Replica], Any]) -> Any:
        with device_scope(rep.device):
            return fn(rep)

    def _run_replicas(self, phase: str, fn: Callable[[Replica], Any]) -> List[Any]:
        """
        Run `fn` on every replica and wait for all of them.

        Results come back in replica order. If any replica raised, the step
        is aborted once every worker has finished and the first failure (by
        replica index) is reported.
        """
        if self._pool is None:
            results = []
            for rep in self.replicas:
                try:
                    results.append(self._scoped(rep, fn))
                except Exception as e:
                    self._abort_step()
                    raise ReplicaFailure(rep.index, phase, e) from e
            return results

        futures = [self._pool.submit(self._scoped, rep, fn) for rep in self.replicas]
        results = []
        failure: Optional[Tuple[int, BaseException]] = None
        for rep, fut in zip(self.replicas, futures):
            try:
                results.append(fut.result())
            except Exception as e:
                if failure is None:
                    failure = (rep.index, e)
        if failure is not None:
            self._abort_step()
            raise ReplicaFailure(failure[0], phase, failure[1]) from failure[1]
        return results

    def _abort_step(self) -> None:
        for rep in self.replicas:
            for i in self.order:
                rep.graph.nodes[i].reset_grad()
        self._fresh = False
        self._has_delta = False
        self.state = StepState.IDLE

    def abort_step(self) -> None:
        """Discard the current step: zero every gradient and return to IDLE."""
        self._require_built("abort_step")
        self._abort_step()

    # ------------------------------------------------------------------
    # Batch handling
    # ------------------------------------------------------------------

    @property
    def batch_size(self) -> int:
        return self._batch

    def resize(self, batch: int) -> None:
        """
        Split `batch` across the replicas and size every node accordingly.

        Warns when the batch does not divide evenly.
        """
        self._require_built("resize")
        batch = int(batch)
        if batch == self._batch:
            return
        slices = split_batch(batch, len(self.replicas))
        if batch % len(self.replicas):
            warnings.warn(
                f"Batch of {batch} samples does not divide evenly across "
                f"{len(self.replicas)} replicas; the first replicas get one extra sample.",
                RuntimeWarning,
                stacklevel=2,
            )
        active = sorted(set(self.order) | set(self.inputs))
        for rep, (start, stop) in zip(self.replicas, slices):
            rep.start, rep.stop = start, stop
            for i in active:
                rep.graph.nodes[i].resize(stop - start)
        self._batch = batch

    @staticmethod
    def _as_arrays(values: Any, n: int, what: str) -> List[np.ndarray]:
        if isinstance(values, (list, tuple)):
            if len(values) != n:
                raise ValueError(f"Expected {n} {what}, got {len(values)}.")
            items = list(values)
        elif n == 1:
            items = [values]
        else:
            raise ValueError(f"Expected a sequence of {n} {what}.")
        out = []
        for v in items:
            a = v.to_numpy() if isinstance(v, Buffer) else v
            out.append(np.asarray(a, dtype=np.float32))
        return out

    def _check_batch(self, op: str, arrays: List[np.ndarray], nodes: List[int]) -> int:
        batch = None
        for a, i in zip(arrays, nodes):
            expected = tuple(self.replicas[0].graph.nodes[i].sample_shape)
            if a.ndim < 1 or tuple(a.shape[1:]) != expected:
                raise ShapeMismatchError(op, (None,) + expected, a.shape)
            if batch is None:
                batch = a.shape[0]
            elif a.shape[0] != batch:
                raise ShapeMismatchError(op, (batch,) + expected, a.shape)
        return int(batch)

    # ------------------------------------------------------------------
    # Step phases
    # ------------------------------------------------------------------

    def forward(self, inputs: Any) -> None:
        """
        Feed one batch and evaluate every node in topological order.

        Parameters
        ----------
        inputs : array-like or sequence of array-like
            One array of shape ``(batch,) + input_shape`` per declared input.

        Raises
        ------
        InvalidStateError
            If called between `backward()` and `update()`.
        ShapeMismatchError
            If an input does not match its node's shape.
        ReplicaFailure
            If evaluation fails on any replica.
        """
        self._require_state("forward", *_FORWARD_FROM)
        xs = self._as_arrays(inputs, len(self.inputs), "inputs")
        self.resize(self._check_batch("forward", xs, self.inputs))
        trace = self._trace

        def run(rep: Replica) -> None:
            graph = rep.graph
            for k, i in enumerate(self.inputs):
                graph.nodes[i].output.copy_from_numpy(xs[k][rep.start:rep.stop])
            for i in self.order:
                if trace is not None:
                    trace(rep.index, "forward", i)
                graph.nodes[i].forward(graph)

        self._run_replicas("forward", run)
        self._has_delta = False
        self.state = StepState.FORWARD_PENDING

    def outputs_numpy(self) -> List[np.ndarray]:
        """Return every output of the last forward pass as a full-batch host array."""
        self._require_built("outputs_numpy")
        return [
            np.concatenate(
                [rep.graph.nodes[o].output.to_numpy() for rep in self.replicas], axis=0
            )
            for o in self.outputs
        ]

    def reset_grads(self) -> None:
        """
        Zero every delta and parameter gradient on every replica.

        Raises
        ------
        InvalidStateError
            If called between `backward()` and `update()`; use `abort_step()`
            to discard that step.
        """
        self._require_state("reset_grads", *_FORWARD_FROM)
        order = self.order

        def run(rep: Replica) -> None:
            for i in order:
                rep.graph.nodes[i].reset_grad()

        self._run_replicas("reset_grads", run)
        self._fresh = True

    def compute_loss(self, targets: Any, compute_delta: bool = True) -> Dict[str, float]:
        """
        Evaluate losses and metrics against `targets`.

        Totals are summed across replicas in replica order and added to the
        running totals. With `compute_delta`, each loss also seeds its output
        node's delta for the following `backward()`.

        Returns
        -------
        dict
            Per-sample averages of this batch, keyed like `running_logs()`.

        Warns
        -----
        RuntimeWarning
            If gradients were not reset since the last backward pass; they are
            reset automatically.
        """
        self._require_state("compute_loss", StepState.FORWARD_PENDING)
        ys = self._as_arrays(targets, len(self.outputs), "targets")
        if self._check_batch("compute_loss", ys, self.outputs) != self._batch:
            raise ShapeMismatchError("compute_loss", (self._batch,), ys[0].shape)
        if compute_delta and not self._fresh:
            warnings.warn(
                "compute_loss() called without reset_grads(); gradients were reset.",
                RuntimeWarning,
                stacklevel=2,
            )
            self.reset_grads()

        losses, metrics = self.losses, self.metrics

        def run(rep: Replica) -> Tuple[List[float], List[float]]:
            loss_values, metric_values = [], []
            for k, o in enumerate(self.outputs):
                node = rep.graph.nodes[o]
                t = Buffer.from_numpy(ys[k][rep.start:rep.stop], device=rep.device)
                loss_values.append(losses[k].value(t, node.output))
                if compute_delta:
                    losses[k].delta(t, node.output, node.delta)
                if metrics:
                    metric_values.append(metrics[k].value(t, node.output))
            return loss_values, metric_values

        results = self._run_replicas("compute_loss", run)

        step_losses = [0.0] * len(self.outputs)
        step_metrics = [0.0] * len(self.metrics)
        for loss_values, metric_values in results:
            for k, v in enumerate(loss_values):
                step_losses[k] += v
            for k, v in enumerate(metric_values):
                step_metrics[k] += v
        for k, v in enumerate(step_losses):
            self._loss_totals[k] += v
        for k, v in enumerate(step_metrics):
            self._metric_totals[k] += v
        self._seen += self._batch

        self._has_delta = bool(compute_delta)
        self.state = StepState.LOSS_COMPUTED
        return self._logs(step_losses, step_metrics, self._batch)

    def backward(self) -> None:
        """
        Propagate deltas in reverse topological order on every replica.

        Raises
        ------
        InvalidStateError
            If no loss deltas were computed for the current forward pass.
        """
        self._require_state("backward", StepState.LOSS_COMPUTED)
        if not self._has_delta:
            raise InvalidStateError("backward", "loss computed without deltas")
        trace = self._trace

        def run(rep: Replica) -> None:
            graph = rep.graph
            for i in reversed(self.order):
                if trace is not None:
                    trace(rep.index, "backward", i)
                graph.nodes[i].backward(graph)

        self._run_replicas("backward", run)
        self._fresh = False
        self.state = StepState.BACKWARD_PENDING

    @staticmethod
    def _merge_into(
        phase: str, target: Buffer, sources: List[Tuple[int, Buffer]], scale: float
    ) -> None:
        """
        Add every ``(replica, buffer)`` source into `target`, then scale it.

        A source that cannot be staged or added is reported as a failure of
        the replica it belongs to.
        """
        staged = []
        for r, s in sources:
            try:
                staged.append(s if s.device == target.device else s.clone(target.device))
            except Exception as e:
                raise ReplicaFailure(r, phase, e) from e
        with target.lock:
            for (r, _), s in zip(sources, staged):
                try:
                    target.inc_(s)
                except Exception as e:
                    raise ReplicaFailure(r, phase, e) from e
            if scale != 1.0:
                target.scale_(scale)

    def _for_each_parameter(self, phase: str, fn: Callable[[int], None]) -> None:
        count = len(self._params[0])
        try:
            if self._pool is None:
                for j in range(count):
                    fn(j)
            else:
                list(self._pool.map(fn, range(count)))
        except ReplicaFailure:
            self._abort_step()
            raise
        except Exception as e:
            self._abort_step()
            raise ReplicaFailure(0, phase, e) from e

    def _sources(self, j: int, slot: int) -> List[Tuple[int, Buffer]]:
        return [(r, params[j][slot]) for r, params in enumerate(self._params) if r > 0]

    def sync(self) -> None:
        """
        Merge every replica's gradients into replica 0.

        Under the "average" policy the merged gradients are divided by the
        number of replicas. In local-update mode gradients stay on their
        replicas and this only advances the step.
        """
        self._require_state("sync", StepState.BACKWARD_PENDING)
        cs = self.compute_service
        n = len(self.replicas)
        if n > 1 and not cs.local_updates:
            scale = 1.0 / n if cs.sync_policy == "average" else 1.0

            def merge(j: int) -> None:
                target = self._params[0][j][3]
                self._merge_into("sync", target, self._sources(j, 3), scale)

            self._for_each_parameter("sync", merge)
        self.state = StepState.GRADIENTS_READY

    def update(self) -> None:
        """
        Apply the optimizer and make every replica's parameters consistent.

        In local-update mode each replica applies its own optimizer to its own
        gradients, and parameters are averaged into replica 0 and broadcast
        every ``local_sync_batches`` steps.
        """
        self._require_state("update", StepState.GRADIENTS_READY)
        cs = self.compute_service
        n = len(self.replicas)
        if cs.local_updates:
            self._run_replicas("update", lambda rep: rep.optimizer.apply_gradients(rep.batch))
            self._steps += 1
            if self._steps % cs.local_sync_batches == 0:
                self.average_parameters()
        else:
            effective = self._batch if cs.sync_policy == "sum" or n == 1 else self._batch / n
            try:
                with device_scope(self.replicas[0].device):
                    self.optimizer.apply_gradients(effective)
            except Exception as e:
                self._abort_step()
                raise ReplicaFailure(0, "update", e) from e
            self._broadcast_parameters()
            self._steps += 1
        self.state = StepState.UPDATED

    def average_parameters(self) -> None:
        """Average every replica's parameters into replica 0, then broadcast."""
        self._require_built("average_parameters")
        n = len(self.replicas)
        if n == 1:
            return

        def average(j: int) -> None:
            target = self._params[0][j][2]
            self._merge_into("average_parameters", target, self._sources(j, 2), 1.0 / n)

        self._for_each_parameter("average_parameters", average)
        self._broadcast_parameters()

    def _broadcast_parameters(self) -> None:
        for params in self._params[1:]:
            for (_, _, src, _), (_, _, dst, _) in zip(self._params[0], params):
                if dst is not src:
                    dst.copy_from(src)

    def clamp(self, lo: float, hi: float) -> None:
        """
        Clip every parameter into ``[lo, hi]``.

        Replica 0 is clipped and broadcast. In local-update mode every replica
        clips its own parameters.

        Raises
        ------
        ValueError
            If ``lo > hi``.
        """
        self._require_built("clamp")
        lo, hi = float(lo), float(hi)
        if lo > hi:
            raise ValueError(f"clamp bounds are reversed: lo={lo} > hi={hi}")

        def run(rep: Replica) -> None:
            for _, _, p, _ in self._params[rep.index]:
                p.clamp_(lo, hi)

        if self.compute_service.local_updates:
            self._run_replicas("clamp", run)
        else:
            with device_scope(self.replicas[0].device):
                run(self.replicas[0])
            self._broadcast_parameters()

    def train_batch(self, inputs: Any, targets: Any) -> Dict[str, float]:
        """
        Run one full training step and return this batch's per-sample logs.
        """
        self.reset_grads()
        self.forward(inputs)
        logs = self.compute_loss(targets)
        self.backward()
        self.sync()
        self.update()
        self._write_log("train", self._steps, logs)
        return logs

    # ------------------------------------------------------------------
    # Mode and batch log
    # ------------------------------------------------------------------

    def set_mode(self, mode: str) -> None:
        """
        Switch between "train" and "inference".

        Every replica graph exposes the mode as ``graph.training`` to the
        nodes it evaluates.
        """
        mode = str(mode).lower()
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
        self.mode = mode
        self._apply_mode()

    def _apply_mode(self) -> None:
        training = self.mode == "train"
        self.graph.training = training
        for rep in self.replicas:
            rep.graph.training = training

    def set_log_file(self, path: Optional[str]) -> None:
        """
        Append one line per training step and per evaluated batch to `path`.

        Pass None to stop logging. The file is closed by `close()`.
        """
        if self._log is not None:
            self._log.close()
            self._log = None
        if path is not None:
            self._log = open(path, "a", encoding="utf-8")

    def _write_log(self, phase: str, step: int, logs: Dict[str, float]) -> None:
        if self._log is None:
            return
        parts = [f"{phase} {step}"]
        parts.extend(f"{k}: {v:.6f}" for k, v in logs.items())
        parts.append(f"samples: {self._batch}")
        self._log.write(" - ".join(parts) + "\n")
        self._log.flush()

    # ------------------------------------------------------------------
    # Running totals
    # ------------------------------------------------------------------

    def _log_keys(self) -> Tuple[List[str], List[str]]:
        if len(self.outputs) == 1:
            prefixes = [""]
        else:
            prefixes = [f"{self.graph.nodes[o].name}_" for o in self.outputs]
        loss_keys = [f"{p}loss" for p in prefixes]
        metric_keys = [f"{p}{m.name}" for p, m in zip(prefixes, self.metrics)]
        return loss_keys, metric_keys

    def _logs(self, loss_totals: List[float], metric_totals: List[float], seen: int) -> Dict[str, float]:
        loss_keys, metric_keys = self._log_keys()
        denom = float(max(seen, 1))
        logs = {k: v / denom for k, v in zip(loss_keys, loss_totals)}
        logs.update({k: v / denom for k, v in zip(metric_keys, metric_totals)})
        return logs

    def reset_loss(self) -> None:
        """Clear the running loss and metric totals."""
        self._loss_totals = [0.0] * len(self.outputs)
        self._metric_totals = [0.0] * len(self.metrics)
        self._seen = 0

    @property
    def seen(self) -> int:
        """Samples accumulated in the running totals."""
        return self._seen

    def running_losses(self) -> List[float]:
        """Per-sample average of each output's loss since `reset_loss()`."""
        return [v / max(self._seen, 1) for v in self._loss_totals]

    def running_metrics(self) -> List[float]:
        """Per-sample average of each output's metric since `reset_loss()`."""
        return [v / max(self._seen, 1) for v in self._metric_totals]

    def running_logs(self) -> Dict[str, float]:
        return self._logs(self._loss_totals, self._metric_totals, self._seen)

    # ------------------------------------------------------------------
    # High-level loops
    # ------------------------------------------------------------------

    def fit(
        self,
        x: Any,
        y: Any,
        batch_size: int = 32,
        epochs: int = 1,
        shuffle: bool = True,
        verbose: int = 1,
    ) -> History:
        """
        Train for `epochs` passes over ``(x, y)``.

        A trailing batch too small to split across the replicas is merged
        into the previous batch.

        Returns
        -------
        History
            Per-epoch averages of every loss and metric.
        """
        self._require_built("fit")
        self.set_mode("train")
        if int(epochs) < 1:
            raise ValueError(f"epochs must be >= 1, got {epochs}")
        if int(batch_size) < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        xs = self._as_arrays(x, len(self.inputs), "inputs")
        ys = self._as_arrays(y, len(self.outputs), "targets")
        n = xs[0].shape[0]
        if any(a.shape[0] != n for a in xs + ys):
            raise ValueError("All inputs and targets must hold the same number of samples.")
        bounds = _batch_bounds(n, int(batch_size), len(self.replicas))

        hist = History()
        for epoch_idx in range(int(epochs)):
            self.reset_loss()
            idxs = list(range(n))
            if shuffle:
                random.shuffle(idxs)
            for start, stop in bounds:
                sel = idxs[start:stop]
                self.train_batch([a[sel] for a in xs], [a[sel] for a in ys])

            epoch_logs = self.running_logs()
            hist.append_epoch(epoch_idx, epoch_logs, seen=self._seen)

            if verbose:
                parts = [f"Epoch {epoch_idx + 1}/{epochs}"]
                for k, v in epoch_logs.items():
                    parts.append(f"{k}: {v:.6f}")
                parts.append(f"seen: {self._seen}")
                print(" - ".join(parts))

        return hist

    def evaluate(self, x: Any, y: Any, batch_size: int = 32, verbose: int = 0) -> Dict[str, float]:
        """
        Compute per-sample averages of every loss and metric over ``(x, y)``
        without touching parameters or gradients.
        """
        self._require_built("evaluate")
        self.set_mode("inference")
        xs = self._as_arrays(x, len(self.inputs), "inputs")
        ys = self._as_arrays(y, len(self.outputs), "targets")
        n = xs[0].shape[0]
        self.reset_loss()
        for k, (start, stop) in enumerate(_batch_bounds(n, int(batch_size), len(self.replicas))):
            self.forward([a[start:stop] for a in xs])
            logs = self.compute_loss([a[start:stop] for a in ys], compute_delta=False)
            self._write_log("eval", k + 1, logs)
        logs = self.running_logs()
        if verbose:
            parts = [f"{k}: {v:.6f}" for k, v in logs.items()]
            parts.append(f"seen: {self._seen}")
            print(" - ".join(parts))
        return logs

    def predict(self, x: Any, batch_size: Optional[int] = None) -> Union[np.ndarray, List[np.ndarray]]:
        """
        Run forward passes over `x` and return the outputs as host arrays
        (a single array for a single-output network).
        """
        self._require_built("predict")
        self.set_mode("inference")
        xs = self._as_arrays(x, len(self.inputs), "inputs")
        n = xs[0].shape[0]
        size = n if batch_size is None else int(batch_size)
        chunks: List[List[np.ndarray]] = [[] for _ in self.outputs]
        for start, stop in _batch_bounds(n, size, len(self.replicas)):
            self.forward([a[start:stop] for a in xs])
            for k, out in enumerate(self.outputs_numpy()):
                chunks[k].append(out)
        results = [np.concatenate(c, axis=0) for c in chunks]
        return results[0] if len(results) == 1 else results

    # ------------------------------------------------------------------
    # Parameters and checkpoints
    # ------------------------------------------------------------------

    def replica_parameters(self, replica: int = 0) -> Dict[str, Buffer]:
        """
        Return the parameters of one replica keyed ``"<node>.<param>"`` with
        the node names of the base graph.
        """
        self._require_built("replica_parameters")
        return {
            f"{self.graph.nodes[i].name}.{key}": p
            for i, key, p, _ in self._params[int(replica)]
        }

    def parameters(self) -> Dict[str, Buffer]:
        """Authoritative (replica 0) parameters."""
        return self.replica_parameters(0)

    def snapshot(self) -> Dict[str, np.ndarray]:
        """Return host copies of the authoritative parameters."""
        return {k: p.to_numpy() for k, p in self.parameters().items()}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """
        Load parameters from a `snapshot()` (or any mapping of host arrays),
        broadcast them and discard the current step.

        Raises
        ------
        KeyError
            If a parameter is missing from `snapshot`.
        """
        for key, p in self.parameters().items():
            if key not in snapshot:
                raise KeyError(f"Missing parameter {key!r}.")
            p.copy_from_numpy(snapshot[key])
        self._broadcast_parameters()
        self._abort_step()

    def save_weights(self, destination: Any) -> None:
        """Write the authoritative parameters to a JSON checkpoint."""
        save_state(self.parameters(), destination)

    def load_weights(self, source: Any) -> None:
        """
        Read a checkpoint written by `save_weights()` and broadcast it.

        Raises
        ------
        KeyError
            If a parameter is missing from the checkpoint.
        ShapeMismatchError
            If a stored parameter has the wrong shape.
        """
        state = load_state(source, device="cpu")
        for key, p in self.parameters().items():
            if key not in state:
                raise KeyError(f"Missing parameter {key!r}.")
            p.copy_from(state[key])
        self._broadcast_parameters()
        self._abort_step()

    def summary(self) -> str:
        """Return a text table of the nodes in execution order."""
        self._require_built("summary")
        rows = [
            f'Network "{self.name}"',
            "-" * 68,
            f"{'#':>3}  {'name':<18}{'kind':<8}{'output':<24}{'params':>10}",
            "-" * 68,
        ]
        total = 0
        for i in self.order:
            node = self.replicas[0].graph.nodes[i]
            count = sum(p.size for p in node.params.values())
            total += count
            shape = str((None,) + tuple(node.sample_shape))
            rows.append(
                f"{i:>3}  {self.graph.nodes[i].name:<18}{node.kind.value:<8}{shape:<24}{count:>10}"
            )
        rows.append("-" * 68)
        rows.append(f"Total params: {total}")
        devices = ", ".join(str(r.device) for r in self.replicas)
        rows.append(f"Replicas: {len(self.replicas)} ({devices})")
        return "\n".join(rows)
