"""
Reduction mixin defining the public Buffer reduction API.

This module declares :class:`BufferMixinReduction`, a mixin that exposes the
axis reduction engine as convenience methods (`sum`, `mean`, `max`, ...) and
declares the two backend kernels every device type must provide:

- ``_gather_reduce``: apply a reduction kind to the groups of a descriptor
  index matrix;
- ``_scatter_reduce_grad``: distribute an upstream gradient back to the
  source positions of each group.

The kernels are registered per device type through the buffer control-path
manager (see ``tensornet.infrastructure.reduction._kernels``). Calling a
kernel on a device type that has none raises `DeviceNotSupportedError`.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

Axes = Optional[Union[int, Sequence[int]]]


class BufferMixinReduction:
    """
    Mixin defining reduction operations for buffers.

    Every method accepts ``axes`` as None (reduce every dimension), a single
    integer, or a sequence of integers, and a ``keepdims`` flag. Axes must lie
    in ``[0, ndim)``; negative axes are rejected rather than wrapped.
    """

    def _reduce_values(self, axes: Axes, mode: str, keepdims: bool, **kwargs: Any):
        from ...reduction._reduce import reduce

        if axes is None:
            axes = tuple(range(self.ndim))
        return reduce(self, axes, mode, keepdims, **kwargs).values

    def sum(self, axes: Axes = None, keepdims: bool = False):
        """Return the sum over `axes`."""
        return self._reduce_values(axes, "sum", keepdims)

    def mean(self, axes: Axes = None, keepdims: bool = False):
        """Return the arithmetic mean over `axes`."""
        return self._reduce_values(axes, "mean", keepdims)

    def prod(self, axes: Axes = None, keepdims: bool = False):
        """Return the product over `axes`."""
        return self._reduce_values(axes, "prod", keepdims)

    def max(self, axes: Axes = None, keepdims: bool = False):
        """
        Return the maximum over `axes`.

        Use `tensornet.infrastructure.reduction.reduce` directly when the
        origin indices are needed for gradient scatter.
        """
        return self._reduce_values(axes, "max", keepdims)

    def min(self, axes: Axes = None, keepdims: bool = False):
        """Return the minimum over `axes`."""
        return self._reduce_values(axes, "min", keepdims)

    def argmax(self, axes: Axes = None, keepdims: bool = False):
        """Return the position of the maximum within each reduction group."""
        return self._reduce_values(axes, "argmax", keepdims)

    def argmin(self, axes: Axes = None, keepdims: bool = False):
        """Return the position of the minimum within each reduction group."""
        return self._reduce_values(axes, "argmin", keepdims)

    def var(self, axes: Axes = None, keepdims: bool = False, unbiased: bool = True):
        """
        Return the variance over `axes`.

        Parameters
        ----------
        unbiased : bool, optional
            Divide by ``N - 1`` (default) instead of ``N``.

        Raises
        ------
        DegenerateReductionError
            If `unbiased` is True and a group holds a single element.
        """
        return self._reduce_values(axes, "var", keepdims, unbiased=unbiased)

    def std(self, axes: Axes = None, keepdims: bool = False, unbiased: bool = True):
        """Return the standard deviation over `axes` (see `var`)."""
        return self._reduce_values(axes, "std", keepdims, unbiased=unbiased)

    def mode(self, axes: Axes = None, keepdims: bool = False):
        """Return the most frequent value per group (smallest on ties)."""
        return self._reduce_values(axes, "mode", keepdims)

    def median(self, axes: Axes = None, keepdims: bool = False):
        """Return the lower median per group."""
        return self._reduce_values(axes, "median", keepdims)

    def all(self, axes: Axes = None, keepdims: bool = False):
        """Return 1.0 where every element of the group is non-zero, else 0.0."""
        return self._reduce_values(axes, "all", keepdims)

    def any(self, axes: Axes = None, keepdims: bool = False):
        """Return 1.0 where some element of the group is non-zero, else 0.0."""
        return self._reduce_values(axes, "any", keepdims)

    def norm(self, axes: Axes = None, keepdims: bool = False):
        """Return the L2 (Frobenius) norm over `axes`."""
        return self._reduce_values(axes, "norm", keepdims)

    def _gather_reduce(
        self, index: Any, mode: Any, unbiased: bool
    ) -> Tuple[Any, Optional[Any]]:
        """
        Reduce the groups described by `index`.

        Parameters
        ----------
        index : array
            Integer matrix of shape ``(n_out, group_size)`` on this buffer's
            array module. Row ``j`` lists the source linear indices of group
            ``j`` in increasing order.
        mode : ReduceMode
            Reduction kind.
        unbiased : bool
            Estimator selection for variance and standard deviation.

        Returns
        -------
        tuple
            ``(values, positions)`` where `values` has shape ``(n_out,)`` and
            `positions` holds, for max/min/argmax/argmin, the column of the
            selected element in each row (None for other kinds).
        """

    def _scatter_reduce_grad(
        self,
        target: Any,
        index: Any,
        mode: Any,
        origins: Optional[Any],
    ) -> None:
        """
        Add this upstream gradient (one value per group) into `target`.

        Parameters
        ----------
        target : Buffer
            Gradient buffer of the source shape; receives the scatter.
        index : array
            Descriptor index matrix on this buffer's array module.
        mode : ReduceMode
            Reduction kind (sum, mean, max or min).
        origins : array or None
            Source linear index selected for each group (max/min only).
        """
