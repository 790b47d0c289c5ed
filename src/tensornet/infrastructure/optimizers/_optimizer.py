"""
Optimizer base class.

An optimizer is bound to a list of ``(parameter, gradient)`` buffer pairs with
`set_parameters()` and mutates the parameters in place on every
`apply_gradients(batch_size)` call. Per-parameter state (momentum, moment
estimates, scratch buffers) is allocated lazily on the parameter's device on
the first update.

The network executor binds the optimizer to the parameters of replica 0 and
broadcasts the result to the other replicas; in local-update mode each
replica gets its own `clone()`.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from ...domain._errors import InvalidStateError
from ...domain._optimizers import IOptimizer
from ..buffer._buffer import Buffer


class Optimizer(IOptimizer):
    """
    Base class for update rules.

    Subclasses implement `_update()` for a single parameter and
    `get_config()` returning the constructor keyword arguments.

    Attributes
    ----------
    iterations : int
        Number of `apply_gradients` calls since the last `zero_state()`.
    """

    name = "optimizer"

    def __init__(self) -> None:
        self._params: List[Tuple[Buffer, Buffer]] = []
        self._state: List[Dict[str, Buffer]] = []
        self.iterations = 0

    def set_parameters(self, params: Iterable[Tuple[Buffer, Buffer]]) -> None:
        """
        Bind the optimizer to ``(parameter, gradient)`` pairs and reset its
        state.

        Raises
        ------
        ShapeMismatchError
            If a gradient does not match its parameter.
        """
        pairs = []
        for p, g in params:
            Buffer._check_pair("set_parameters", p, g)
            pairs.append((p, g))
        self._params = pairs
        self.zero_state()

    @property
    def parameters(self) -> List[Tuple[Buffer, Buffer]]:
        return list(self._params)

    def zero_state(self) -> None:
        """Drop every per-parameter state buffer and reset `iterations`."""
        self._state = [{} for _ in self._params]
        self.iterations = 0

    def _slot(self, index: int, key: str, like: Buffer) -> Buffer:
        st = self._state[index]
        buf = st.get(key)
        if buf is None:
            buf = Buffer.zeros_like(like)
            st[key] = buf
        return buf

    def apply_gradients(self, batch_size: float) -> None:
        """
        Apply one update to every bound parameter.

        Parameters
        ----------
        batch_size : float
            Number of samples the gradients were summed over. Gradients are
            divided by it before use.

        Raises
        ------
        InvalidStateError
            If no parameters are bound.
        ValueError
            If `batch_size` is not positive.
        """
        if not self._params:
            raise InvalidStateError("apply_gradients", "no parameters bound")
        batch_size = float(batch_size)
        if batch_size <= 0.0:
            raise ValueError(f"batch_size must be > 0, got {batch_size}")
        self.iterations += 1
        for i, (p, g) in enumerate(self._params):
            self._update(i, p, g, batch_size)

    def _update(self, index: int, param: Buffer, grad: Buffer, batch_size: float) -> None:
        raise NotImplementedError

    def get_config(self) -> Dict[str, Any]:
        """Return the hyper-parameters as constructor keyword arguments."""
        raise NotImplementedError

    def change(self, **hyper: Any) -> None:
        """
        Update hyper-parameters in place (e.g. a learning-rate schedule).

        Raises
        ------
        AttributeError
            If a name is not a hyper-parameter of this optimizer.
        """
        config = self.get_config()
        for key, value in hyper.items():
            if key not in config:
                raise AttributeError(f"{type(self).__name__} has no hyper-parameter {key!r}")
            setattr(self, key, type(config[key])(value))

    def clone(self) -> "Optimizer":
        """
        Return an unbound optimizer with the same hyper-parameters and fresh
        state.
        """
        return type(self)(**self.get_config())

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.get_config().items())
        return f"{type(self).__name__}({args})"
