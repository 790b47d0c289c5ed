"""
Device-specific reduction kernels registered through control-path dispatch.

Both backends share the same *gather* formulation: the descriptor's index
matrix selects a ``(n_out, group_size)`` block of source elements, and every
reduction kind is a row-wise operation over that block. Because each row lists
its source indices in increasing linear order, a row-wise ``argmax``/``argmin``
(which returns the first extreme) implements the first-index tie-break.

The gradient scatter is the inverse: each source index appears in exactly one
row, so a fancy-indexed ``+=`` adds every group's gradient without collisions.
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np

from ...domain._errors import DegenerateReductionError
from ...domain.device._device import DeviceType
from ..buffer._array_module import device_scope, to_host
from ..buffer._buffer_builder import buffer_control_path_manager, unsupported_device
from ..buffer.mixins import BufferMixinReduction as BMR
from ._modes import ReduceMode


def _mode_rows(block: np.ndarray) -> np.ndarray:
    """
    Return the most frequent value of each row (smallest value on ties).
    """
    s = np.sort(block, axis=1)
    n_rows, n = s.shape
    cols = np.arange(n)
    starts_run = np.ones_like(s, dtype=bool)
    starts_run[:, 1:] = s[:, 1:] != s[:, :-1]
    run_start = np.maximum.accumulate(np.where(starts_run, cols, 0), axis=1)
    run_length = cols - run_start + 1
    # first maximum = end of the earliest longest run = smallest modal value
    end = np.argmax(run_length, axis=1)
    return s[np.arange(n_rows), end]


def _gather(
    xp: Any, flat: Any, index: Any, mode: ReduceMode, unbiased: bool
) -> Tuple[Any, Optional[Any]]:
    block = flat[index]
    n_out, n = index.shape

    if mode is ReduceMode.SUM:
        return block.sum(axis=1), None
    if mode is ReduceMode.MEAN:
        return block.mean(axis=1), None
    if mode is ReduceMode.PROD:
        return block.prod(axis=1), None
    if mode is ReduceMode.SUM_ABS:
        return xp.abs(block).sum(axis=1), None
    if mode is ReduceMode.NORM:
        return xp.sqrt((block * block).sum(axis=1)), None

    if mode in (ReduceMode.MAX, ReduceMode.ARGMAX):
        pos = block.argmax(axis=1)
        if mode is ReduceMode.ARGMAX:
            return pos, pos
        return block[xp.arange(n_out), pos], pos
    if mode in (ReduceMode.MIN, ReduceMode.ARGMIN):
        pos = block.argmin(axis=1)
        if mode is ReduceMode.ARGMIN:
            return pos, pos
        return block[xp.arange(n_out), pos], pos

    if mode in (ReduceMode.VAR, ReduceMode.STD):
        ddof = 1 if unbiased else 0
        if n - ddof < 1:
            raise DegenerateReductionError(
                f"{mode.value} with unbiased={unbiased} needs more than {ddof} "
                f"element(s) per group, got {n}"
            )
        var = block.var(axis=1, ddof=ddof)
        return (xp.sqrt(var) if mode is ReduceMode.STD else var), None

    if mode is ReduceMode.MEDIAN:
        return xp.sort(block, axis=1)[:, (n - 1) // 2], None
    if mode is ReduceMode.ALL:
        return (block != 0).all(axis=1), None
    if mode is ReduceMode.ANY:
        return (block != 0).any(axis=1), None
    if mode is ReduceMode.MODE:
        return _mode_rows(to_host(block)), None

    raise ValueError(f"Unsupported reduction mode {mode!r}")


def _scatter(
    xp: Any, grad: Any, target: Any, index: Any, mode: ReduceMode, origins: Any
) -> None:
    if mode is ReduceMode.SUM:
        target[index] += grad[:, None]
    elif mode is ReduceMode.MEAN:
        target[index] += grad[:, None] / index.shape[1]
    elif mode in (ReduceMode.MAX, ReduceMode.MIN):
        target[origins] += grad
    else:
        raise DegenerateReductionError(
            f"gradient not defined for reduction mode '{mode.value}'"
        )


@buffer_control_path_manager(BMR, BMR._gather_reduce, DeviceType.CPU, unsupported_device)
def _gather_reduce_cpu(self, index, mode, unbiased):
    """
    Host implementation of `_gather_reduce` (NumPy).
    """
    return _gather(np, self.data.reshape(-1), index, mode, unbiased)


@buffer_control_path_manager(BMR, BMR._gather_reduce, DeviceType.CUDA, unsupported_device)
def _gather_reduce_cuda(self, index, mode, unbiased):
    """
    CUDA implementation of `_gather_reduce` (CuPy).

    The mode kind is computed on host memory and copied back.
    """
    xp = self.array_module
    with device_scope(self.device):
        values, pos = _gather(xp, self.data.reshape(-1), index, mode, unbiased)
        if mode is ReduceMode.MODE:
            values = xp.asarray(values)
        return values, pos


@buffer_control_path_manager(
    BMR, BMR._scatter_reduce_grad, DeviceType.CPU, unsupported_device
)
def _scatter_reduce_grad_cpu(self, target, index, mode, origins):
    """
    Host implementation of `_scatter_reduce_grad` (NumPy).
    """
    flat = target._writable().reshape(-1)
    _scatter(np, self.data.reshape(-1), flat, index, mode, origins)


@buffer_control_path_manager(
    BMR, BMR._scatter_reduce_grad, DeviceType.CUDA, unsupported_device
)
def _scatter_reduce_grad_cuda(self, target, index, mode, origins):
    """
    CUDA implementation of `_scatter_reduce_grad` (CuPy).
    """
    with device_scope(self.device):
        flat = target._writable().reshape(-1)
        _scatter(self.array_module, self.data.reshape(-1), flat, index, mode, origins)
