"""
Stochastic Gradient Descent (SGD) optimizer implementation.

Updates are applied in place on parameter buffers with `Buffer` operations, so
the same code runs on every device the buffers live on.
"""

from __future__ import annotations

from typing import Any, Dict

from ..buffer._buffer import Buffer
from ._optimizer import Optimizer


class SGD(Optimizer):
    """
    Stochastic Gradient Descent with optional momentum.

    Update rule
    -----------
    For each parameter ``p`` with summed gradient ``g`` over ``B`` samples:

    - ``g <- g / B + weight_decay * p``
    - without momentum: ``p <- p - lr * g``
    - with momentum ``mu``:
        ``v <- mu * v + lr * g``
        ``p <- p - v`` (classical) or ``p <- p - (mu * v + lr * g)``
        (Nesterov)

    Parameters
    ----------
    lr : float, optional
        Learning rate. Must be positive. Defaults to 0.01.
    momentum : float, optional
        Momentum coefficient in ``[0, 1)``. Defaults to 0.0.
    weight_decay : float, optional
        Classical (coupled) L2 coefficient. Must be non-negative.
    nesterov : bool, optional
        Use Nesterov momentum. Requires ``momentum > 0``.

    Raises
    ------
    ValueError
        On out-of-range hyper-parameters.
    """

    name = "sgd"

    def __init__(
        self,
        lr: float = 0.01,
        momentum: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
    ) -> None:
        super().__init__()
        self.lr = float(lr)
        self.momentum = float(momentum)
        self.weight_decay = float(weight_decay)
        self.nesterov = bool(nesterov)

        if self.lr <= 0.0:
            raise ValueError(f"lr must be > 0, got {self.lr}")
        if not 0.0 <= self.momentum < 1.0:
            raise ValueError(f"momentum must be in [0, 1), got {self.momentum}")
        if self.weight_decay < 0.0:
            raise ValueError(f"weight_decay must be >= 0, got {self.weight_decay}")
        if self.nesterov and self.momentum == 0.0:
            raise ValueError("nesterov requires momentum > 0")

    def get_config(self) -> Dict[str, Any]:
        return {
            "lr": self.lr,
            "momentum": self.momentum,
            "weight_decay": self.weight_decay,
            "nesterov": self.nesterov,
        }

    def _update(self, index: int, param: Buffer, grad: Buffer, batch_size: float) -> None:
        g = self._slot(index, "grad", param)
        Buffer.axpby(1.0 / batch_size, grad, self.weight_decay, param, out=g)

        if self.momentum == 0.0:
            Buffer.axpby(1.0, param, -self.lr, g, out=param)
            return

        v = self._slot(index, "velocity", param)
        Buffer.axpby(self.momentum, v, self.lr, g, out=v)
        if self.nesterov:
            Buffer.axpby(self.momentum, v, self.lr, g, out=g)
            Buffer.axpby(1.0, param, -1.0, g, out=param)
        else:
            Buffer.axpby(1.0, param, -1.0, v, out=param)
