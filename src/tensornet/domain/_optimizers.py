"""
Domain-level optimizer contracts for tensornet.

This module defines the `IOptimizer` protocol, the synchronization contract
between the network executor and an update rule.

Notes
-----
- The executor hands the optimizer one ``(parameter, gradient)`` buffer pair
  per trainable parameter of the authoritative replica.
- ``apply_gradients(batch_size)`` mutates parameter buffers in place. The
  executor broadcasts the result to every other replica afterwards.
- ``clone()`` yields an independently-stateful copy (e.g., separate momentum
  buffers) for use in another replica context.
"""

from __future__ import annotations

from typing import Iterable, Protocol, Tuple, runtime_checkable

from ._buffer import IBuffer


@runtime_checkable
class IOptimizer(Protocol):
    """
    Optimizer interface contract.
    """

    def set_parameters(self, params: Iterable[Tuple[IBuffer, IBuffer]]) -> None:
        """
        Bind the optimizer to ``(parameter, gradient)`` buffer pairs.
        """
        ...

    def apply_gradients(self, batch_size: float) -> None:
        """
        Apply one update using the bound gradients.

        Parameters
        ----------
        batch_size : float
            Number of samples the gradients were accumulated over; used for
            gradient-averaging conventions.
        """
        ...

    def clone(self) -> "IOptimizer":
        """
        Return a copy with the same hyper-parameters and fresh state.
        """
        ...
