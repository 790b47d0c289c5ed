"""
Layer graph node interface definitions.

A layer is one node of the network graph. This protocol captures the traversal
contract every operator kind must satisfy; the math of each operator lives in
the infrastructure layer.

Contract
--------
- ``forward(graph)`` reads the outputs of the parents and writes the node's own
  output. Calling it twice with unchanged parent outputs yields the same
  result (no hidden accumulation).
- ``backward(graph)`` reads the node's own delta (gradient of the loss with
  respect to its output) and *adds* its contribution into every parent's
  delta and into its parameter gradients. It never overwrites, because a
  parent with several children must receive the sum of their contributions.
- ``reset_grad()`` zeroes the delta and the parameter gradients; it must be
  called before each new backward sweep.
- ``clone(device, prefix)`` returns a structurally identical node bound to
  another device. Configuration is preserved; parameter *values* are not.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence, runtime_checkable

from ._buffer import IBuffer


@runtime_checkable
class ILayer(Protocol):
    """
    Domain-level layer (graph node) interface.
    """

    name: str
    parents: Sequence[int]
    children: Sequence[int]

    @property
    def output(self) -> IBuffer:
        """Return the output buffer owned by this node."""
        ...

    @property
    def delta(self) -> IBuffer:
        """Return the gradient buffer owned by this node (same shape as output)."""
        ...

    def forward(self, graph: Any) -> None:
        """Compute the output from the parents' outputs."""
        ...

    def backward(self, graph: Any) -> None:
        """Accumulate gradient contributions into the parents' deltas."""
        ...

    def reset_grad(self) -> None:
        """Zero the delta and parameter gradient buffers."""
        ...

    def parameters(self) -> Iterable[tuple[str, IBuffer, IBuffer]]:
        """Yield ``(name, parameter, gradient)`` triples."""
        ...

    def clone(self, device: Any, prefix: str = "") -> "ILayer":
        """Return a structurally identical node bound to `device`."""
        ...
