"""
Adam optimizer implementation.

The optimizer maintains per-parameter first and second moment estimates as
buffers on the parameter's device and applies bias correction to both.
"""

from __future__ import annotations

from typing import Any, Dict, Tuple

from ..buffer._buffer import Buffer
from ._optimizer import Optimizer


class Adam(Optimizer):
    """
    Adam optimizer.

    Update rule
    -----------
    Let ``g_t`` be the summed gradient at step ``t`` over ``B`` samples:

        g_t <- g_t / B + weight_decay * p

        m_t = beta1 * m_{t-1} + (1 - beta1) * g_t
        v_t = beta2 * v_{t-1} + (1 - beta2) * (g_t ** 2)

        m_hat = m_t / (1 - beta1^t)
        v_hat = v_t / (1 - beta2^t)

        p <- p - lr * m_hat / (sqrt(v_hat) + eps)

    Parameters
    ----------
    lr : float, optional
        Learning rate. Must be positive. Defaults to 1e-3.
    betas : Tuple[float, float], optional
        Decay rates for the first and second moments, each in ``[0, 1)``.
    eps : float, optional
        Numerical stability term. Must be positive.
    weight_decay : float, optional
        Classical (coupled) L2 coefficient. Must be non-negative.
    """

    name = "adam"

    def __init__(
        self,
        lr: float = 1e-3,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.0,
    ) -> None:
        super().__init__()
        self.lr = float(lr)
        self.betas = (float(betas[0]), float(betas[1]))
        self.eps = float(eps)
        self.weight_decay = float(weight_decay)

        if self.lr <= 0.0:
            raise ValueError(f"lr must be > 0, got {self.lr}")
        b1, b2 = self.betas
        if not (0.0 <= b1 < 1.0 and 0.0 <= b2 < 1.0):
            raise ValueError(f"betas must be in [0, 1), got {self.betas}")
        if self.eps <= 0.0:
            raise ValueError(f"eps must be > 0, got {self.eps}")
        if self.weight_decay < 0.0:
            raise ValueError(f"weight_decay must be >= 0, got {self.weight_decay}")

    def get_config(self) -> Dict[str, Any]:
        return {
            "lr": self.lr,
            "betas": self.betas,
            "eps": self.eps,
            "weight_decay": self.weight_decay,
        }

    def _update(self, index: int, param: Buffer, grad: Buffer, batch_size: float) -> None:
        b1, b2 = self.betas
        t = self.iterations
        g = self._slot(index, "grad", param)
        m = self._slot(index, "m", param)
        v = self._slot(index, "v", param)
        denom = self._slot(index, "denom", param)

        Buffer.axpby(1.0 / batch_size, grad, self.weight_decay, param, out=g)
        Buffer.axpby(b1, m, 1.0 - b1, g, out=m)
        Buffer.mul(g, g, out=denom)
        Buffer.axpby(b2, v, 1.0 - b2, denom, out=v)

        # denom = sqrt(v / (1 - b2^t)) + eps
        Buffer.axpby(1.0 / (1.0 - b2**t), v, 0.0, v, out=denom)
        denom.apply_unary("sqrt", out=denom)
        denom.add_scalar_(self.eps)

        Buffer.div(m, denom, out=g)
        Buffer.axpby(1.0, param, -self.lr / (1.0 - b1**t), g, out=param)
