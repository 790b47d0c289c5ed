"""
Graph node (layer) implementation.

A single `Layer` class represents every operator kind. The per-kind behavior
(`infer_shape`, `build_params`, `forward`, `backward`) is registered through
the layer control-path manager and selected from ``self.kind`` at call time,
so adding an operator means adding one module of registrations rather than a
subclass.

Buffers
-------
- ``output``: owned, shape ``(batch,) + sample_shape``.
- ``delta``: owned, same shape as ``output``; gradient of the loss with
  respect to ``output``.
- ``params`` / ``grads``: trainable parameters and their accumulated
  gradients, keyed by parameter name.

Parents are stored as node indices into the owning `LayerGraph`. A node reads
its parents' outputs through read-only views (`input_views`), never through
owning references.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ...domain._errors import InvalidStateError
from ...domain._layer import ILayer
from ...domain.device._device import Device, as_device
from ..buffer._buffer import Buffer
from ._kinds import LayerKind


class Layer(ILayer):
    """
    Node of a layer graph.

    Parameters
    ----------
    kind : LayerKind or str
        Operator tag.
    name : str
        Unique name within the graph.
    parents : Sequence[int], optional
        Indices of the parent nodes, in operand order.
    config : dict, optional
        Kind-specific configuration (e.g. ``units``, ``axes``, ``mode``).
    device : str or Device, optional
        Device on which the node's buffers live. Defaults to "cpu".
    """

    def __init__(
        self,
        kind: LayerKind,
        name: str,
        parents: Sequence[int] = (),
        config: Optional[Dict[str, Any]] = None,
        device: Any = "cpu",
    ) -> None:
        self.kind = LayerKind(kind)
        self.name = name
        self.parents: List[int] = [int(p) for p in parents]
        self.children: List[int] = []
        self.config: Dict[str, Any] = dict(config or {})
        self.device: Device = as_device(device)
        self.sample_shape: Optional[Tuple[int, ...]] = None
        self.params: Dict[str, Buffer] = {}
        self.grads: Dict[str, Buffer] = {}
        self.state: Dict[str, Any] = {}
        self._output: Optional[Buffer] = None
        self._delta: Optional[Buffer] = None
        self._views: Dict[int, Buffer] = {}

    def __repr__(self) -> str:
        return (
            f"Layer(kind={self.kind.value}, name={self.name!r}, parents={self.parents}, "
            f"device='{self.device}')"
        )

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    @property
    def output(self) -> Buffer:
        if self._output is None:
            raise InvalidStateError(f"{self.name}.output", "unallocated")
        return self._output

    @property
    def delta(self) -> Buffer:
        if self._delta is None:
            raise InvalidStateError(f"{self.name}.delta", "unallocated")
        return self._delta

    @property
    def batch_size(self) -> int:
        return 0 if self._output is None else self._output.shape[0]

    def resize(self, batch: int) -> None:
        """
        Allocate or resize ``output`` and ``delta`` for `batch` samples.

        Both buffers always change together; a resize to the current batch
        size keeps the existing storage.
        """
        if self.sample_shape is None:
            raise InvalidStateError("resize", "shape not inferred")
        shape = (int(batch),) + tuple(self.sample_shape)
        if self._output is None:
            self._output = Buffer(shape, device=self.device)
            self._delta = Buffer(shape, device=self.device)
        else:
            self._output.resize_(shape)
            self._delta.resize_(shape)

    def input_views(self, graph: Any) -> List[Buffer]:
        """
        Return read-only views of the parents' outputs, in parent order.

        Views are reused until a parent output is resized, so reduction
        descriptors cached on them survive across steps.
        """
        views = []
        for i, p in enumerate(self.parents):
            src = graph.nodes[p].output
            v = self._views.get(i)
            if v is None or not v.is_current_view_of(src):
                v = src.view(src.shape)
                self._views[i] = v
            views.append(v)
        return views

    def parent_deltas(self, graph: Any) -> List[Buffer]:
        return [graph.nodes[p].delta for p in self.parents]

    def scratch(self) -> Buffer:
        """Return a private temporary shaped like ``output``."""
        s = self.state.get("scratch")
        if s is None or s.shape != self.output.shape:
            s = Buffer.empty_like(self.output)
            self.state["scratch"] = s
        return s

    def reset_grad(self) -> None:
        """Zero ``delta`` and every parameter gradient."""
        if self._delta is not None:
            self._delta.zero_()
        for g in self.grads.values():
            g.zero_()

    def parameters(self) -> Iterator[Tuple[str, Buffer, Buffer]]:
        """Yield ``(name, parameter, gradient)`` in registration order."""
        for key, p in self.params.items():
            yield key, p, self.grads[key]

    def add_param(self, key: str, value: np.ndarray) -> Buffer:
        """
        Register a trainable parameter initialized from a host array, with a
        zeroed gradient of the same shape.
        """
        p = Buffer.from_numpy(value, device=self.device)
        self.params[key] = p
        self.grads[key] = Buffer.zeros_like(p)
        return p

    # ------------------------------------------------------------------
    # Kind-dispatched contract
    # ------------------------------------------------------------------

    def infer_shape(self, graph: Any) -> Tuple[int, ...]:
        """
        Compute and record the per-sample output shape from the parents'
        sample shapes.

        Raises
        ------
        GraphValidationError
            If the parents' shapes are incompatible with this operator.
        """

    def build_params(self, rng: np.random.Generator) -> None:
        """
        Create and initialize the trainable parameters (no-op for kinds
        without parameters).
        """

    def forward(self, graph: Any) -> None:
        """
        Compute ``output`` from the parents' outputs.

        Idempotent: a second call with unchanged parent outputs writes the
        same values.
        """

    def backward(self, graph: Any) -> None:
        """
        Accumulate gradient contributions from ``delta`` into every parent's
        ``delta`` and into ``grads``.
        """

    # ------------------------------------------------------------------
    # Replication
    # ------------------------------------------------------------------

    def _replicate(self, device: Any, name: str) -> "Layer":
        other = Layer(self.kind, name, self.parents, self.config, device)
        other.children = list(self.children)
        other.sample_shape = self.sample_shape
        return other

    def clone(self, device: Any, prefix: str = "clone_") -> "Layer":
        """
        Return a structurally identical node bound to `device`.

        Configuration and parent indices are preserved. Parameters are
        allocated with the same shapes but zero values; they are expected
        to receive synchronized weights.
        """
        other = self._replicate(device, prefix + self.name)
        for key, p in self.params.items():
            other.params[key] = Buffer.zeros(p.shape, device=other.device, dtype=p.dtype)
            other.grads[key] = Buffer.zeros_like(other.params[key])
        return other

    def share(self, prefix: str = "share_") -> "Layer":
        """
        Return a node on the same device that aliases this node's parameter
        buffers. Gradients, output and delta are private to the new node.
        """
        other = self._replicate(self.device, prefix + self.name)
        for key, p in self.params.items():
            other.params[key] = p
            other.grads[key] = Buffer.zeros_like(p)
        return other
