"""
Loss and metric contracts.

Losses and metrics are evaluated by the network executor on every replica's
``(target, prediction)`` pair. Values are batch *totals* so the executor can
sum them across replicas and divide by the number of samples seen.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ._buffer import IBuffer


@runtime_checkable
class ILoss(Protocol):
    """Loss contract: a value and its gradient with respect to the prediction."""

    name: str

    def value(self, target: IBuffer, pred: IBuffer) -> float:
        """Return the batch total of the loss."""
        ...

    def delta(self, target: IBuffer, pred: IBuffer, out: IBuffer) -> None:
        """Accumulate ``d loss / d pred`` into `out`."""
        ...


@runtime_checkable
class IMetric(Protocol):
    """Metric contract: a batch total, no gradient."""

    name: str

    def value(self, target: IBuffer, pred: IBuffer) -> float:
        """Return the batch total of the metric."""
        ...
