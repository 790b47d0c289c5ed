"""
Loss and metric primitives evaluated by the network executor.

Currently implemented:
- MeanSquaredErrorLoss : sum of squared errors over the batch
- DiceLoss             : smoothed Dice loss
- MeanSquaredErrorMetric
- CategoricalAccuracy  : number of samples whose arg-max class matches

Design notes
------------
- Values are batch *totals*. The executor sums them across replicas and
  divides by the number of samples seen to report per-sample averages.
- ``delta`` adds ``d loss / d pred`` into the output node's gradient buffer;
  it never overwrites it.
- All arithmetic and reductions are delegated to `Buffer` operations, so the
  same code runs on host and accelerator buffers.
"""

from __future__ import annotations

from typing import Dict, Type, Union

from ...domain._errors import ShapeMismatchError
from ...domain._losses import ILoss, IMetric
from ..buffer._buffer import Buffer


def _scalar_to_float(b: Buffer) -> float:
    """Extract a Python float from a single-element buffer (any device)."""
    return float(b.to_numpy().reshape(-1)[0])


class Loss(ILoss):
    """
    Base class for losses.

    Subclasses implement `value()` and `delta()`.
    """

    name = "loss"

    def value(self, target: Buffer, pred: Buffer) -> float:
        raise NotImplementedError

    def delta(self, target: Buffer, pred: Buffer, out: Buffer) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Metric(IMetric):
    """Base class for metrics."""

    name = "metric"

    def value(self, target: Buffer, pred: Buffer) -> float:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _squared_error_total(target: Buffer, pred: Buffer) -> float:
    diff = Buffer.sub(target, pred)
    Buffer.mul(diff, diff, out=diff)
    return _scalar_to_float(diff.sum())


class MeanSquaredErrorLoss(Loss):
    """
    Squared error loss.

    ``value = sum((T - Y)^2)`` over the batch and
    ``d value / d Y = 2 * (Y - T)``.
    """

    name = "mean_squared_error"

    def value(self, target: Buffer, pred: Buffer) -> float:
        return _squared_error_total(target, pred)

    def delta(self, target: Buffer, pred: Buffer, out: Buffer) -> None:
        diff = Buffer.sub(pred, target)
        Buffer.axpby(1.0, out, 2.0, diff, out=out)


class DiceLoss(Loss):
    """
    Smoothed Dice loss.

    ``value = 1 - sum((2 * T * Y + 1) / (T + Y + 1))``

    with the exact derivative

    ``d value / d Y = -(2 * T^2 + 2 * T - 1) / (T + Y + 1)^2``.
    """

    name = "dice"

    def value(self, target: Buffer, pred: Buffer) -> float:
        num = Buffer.mul(target, pred)
        num.scale_(2.0).add_scalar_(1.0)
        den = Buffer.add(target, pred).add_scalar_(1.0)
        Buffer.div(num, den, out=num)
        return 1.0 - _scalar_to_float(num.sum())

    def delta(self, target: Buffer, pred: Buffer, out: Buffer) -> None:
        num = Buffer.mul(target, target)
        Buffer.axpby(2.0, num, 2.0, target, out=num)
        num.add_scalar_(-1.0)
        den = Buffer.add(target, pred).add_scalar_(1.0)
        Buffer.mul(den, den, out=den)
        Buffer.div(num, den, out=num)
        Buffer.axpby(1.0, out, -1.0, num, out=out)


class MeanSquaredErrorMetric(Metric):
    """Sum of squared errors over the batch (same value as the loss)."""

    name = "mean_squared_error"

    def value(self, target: Buffer, pred: Buffer) -> float:
        return _squared_error_total(target, pred)


class CategoricalAccuracy(Metric):
    """
    Number of samples whose predicted class equals the target class.

    Both buffers are ``(batch, ...)``; each sample is flattened and its class
    is the position of its maximum (first one on ties).
    """

    name = "categorical_accuracy"

    def value(self, target: Buffer, pred: Buffer) -> float:
        Buffer._check_pair("categorical_accuracy", target, pred)
        if pred.ndim < 2:
            raise ShapeMismatchError("categorical_accuracy", pred.shape, ("batch", "classes"))
        batch = pred.shape[0]
        flat = (batch, pred.size // batch)
        p = pred.view(flat).argmax(1)
        t = target.view(flat).argmax(1)
        miss = Buffer.sub(p, t)
        miss.apply_unary("abs", out=miss).apply_unary("sign", out=miss)
        return float(batch) - _scalar_to_float(miss.sum())


_LOSSES: Dict[str, Type[Loss]] = {
    "mse": MeanSquaredErrorLoss,
    "mean_squared_error": MeanSquaredErrorLoss,
    "dice": DiceLoss,
}

_METRICS: Dict[str, Type[Metric]] = {
    "mse": MeanSquaredErrorMetric,
    "mean_squared_error": MeanSquaredErrorMetric,
    "accuracy": CategoricalAccuracy,
    "categorical_accuracy": CategoricalAccuracy,
}


def get_loss(loss: Union[str, Loss]) -> Loss:
    """
    Resolve a loss instance from a name ("mse", "dice") or pass one through.

    Raises
    ------
    ValueError
        If the name is unknown.
    """
    if isinstance(loss, Loss):
        return loss
    cls = _LOSSES.get(str(loss).lower())
    if cls is None:
        raise ValueError(f"Unknown loss {loss!r}. Expected one of {sorted(_LOSSES)}")
    return cls()


def get_metric(metric: Union[str, Metric]) -> Metric:
    """
    Resolve a metric instance from a name ("mse", "accuracy") or pass one
    through.

    Raises
    ------
    ValueError
        If the name is unknown.
    """
    if isinstance(metric, Metric):
        return metric
    cls = _METRICS.get(str(metric).lower())
    if cls is None:
        raise ValueError(f"Unknown metric {metric!r}. Expected one of {sorted(_METRICS)}")
    return cls()
