"""
Axis reduction and gradient scatter.

`reduce` computes ``output[j] = reduce_fn({input[i] : i maps to j})`` for an
arbitrary axis set, and `delta_reduce` distributes the gradient of a reduced
buffer back to the source shape. Both go through a cached `ReduceDescriptor`
and the device-specific kernels registered on the buffer.
"""

from __future__ import annotations

from typing import Any, Iterable, NamedTuple, Optional, Union

import numpy as np

from ...domain._errors import (
    DegenerateReductionError,
    DeviceMismatchError,
    ShapeMismatchError,
)
from ..buffer._array_module import device_scope
from ..buffer._buffer import Buffer
from ._descriptor import ReduceDescriptor, descriptor_for
from ._modes import GRADIENT_MODES, ORIGIN_MODES, ReduceMode, parse_mode

# kinds whose value over a single-element group is that element
_IDENTITY_MODES = frozenset(
    {
        ReduceMode.SUM,
        ReduceMode.MEAN,
        ReduceMode.PROD,
        ReduceMode.MAX,
        ReduceMode.MIN,
        ReduceMode.MODE,
        ReduceMode.MEDIAN,
    }
)


class ReductionResult(NamedTuple):
    """
    Result of `reduce`.

    Attributes
    ----------
    values : Buffer
        Reduced values, shaped ``descriptor.target_shape``.
    origins : Optional[Buffer]
        For max/min/argmax/argmin: the source linear index selected in each
        group (int64, same shape as `values`). None otherwise.
    descriptor : ReduceDescriptor
        The descriptor used; pass it to `delta_reduce`.
    """

    values: Buffer
    origins: Optional[Buffer]
    descriptor: ReduceDescriptor


def _normalize_axes(axes: Union[int, Iterable[int]]) -> tuple:
    if isinstance(axes, (int, np.integer)):
        return (int(axes),)
    return tuple(int(a) for a in axes)


def _emit(
    source: Buffer,
    array: Any,
    shape: tuple,
    out: Optional[Buffer],
    accumulate: bool,
) -> Buffer:
    array = array.reshape(shape)
    if out is None:
        if accumulate:
            raise ValueError("accumulate=True requires an output buffer.")
        return Buffer._from_array(array.astype(source.dtype), source.device)
    if out.device != source.device:
        raise DeviceMismatchError(str(source.device), str(out.device))
    if out.shape != tuple(shape):
        raise ShapeMismatchError("reduce", shape, out.shape)
    dst = out._writable()
    if accumulate:
        dst += array.astype(out.dtype, copy=False)
    else:
        dst[...] = array
    return out


def reduce(
    buffer: Buffer,
    axes: Union[int, Iterable[int]],
    mode: Union[str, ReduceMode],
    keepdims: bool = False,
    *,
    unbiased: bool = True,
    out: Optional[Buffer] = None,
    accumulate: bool = False,
) -> ReductionResult:
    """
    Reduce `buffer` over `axes` with the given reduction kind.

    Parameters
    ----------
    buffer : Buffer
        Source buffer.
    axes : int or Iterable[int]
        Axes to reduce, each in ``[0, ndim)`` and listed once. An empty set
        reduces single-element groups: value-preserving kinds copy, argmax/argmin
        give 0 and all/any give 1.0/0.0.
    mode : str or ReduceMode
        Reduction kind (e.g. "sum", "mean", "max", "var", "l2").
    keepdims : bool, optional
        Keep reduced axes as size-1 dimensions.
    unbiased : bool, optional
        Variance/standard-deviation estimator: divide by ``N - 1`` (True,
        default) or by ``N``.
    out : Buffer, optional
        Destination shaped like the result.
    accumulate : bool, optional
        Add into `out` instead of overwriting it.

    Returns
    -------
    ReductionResult
        ``(values, origins, descriptor)``.

    Raises
    ------
    InvalidAxisError
        If an axis is listed twice.
    AxisOutOfRangeError
        If an axis is outside ``[0, ndim)``.
    DegenerateReductionError
        If an unbiased variance/std group holds a single element.
    DeviceMismatchError, ShapeMismatchError
        If `out` does not match the result.

    Notes
    -----
    When several elements of a group tie for the maximum (or minimum), the
    first one in source linear order is selected and recorded in `origins`.
    """
    mode = parse_mode(mode)
    desc = descriptor_for(buffer, _normalize_axes(axes), keepdims)
    xp = buffer.array_module
    index = desc.index_on(buffer.device)

    with device_scope(buffer.device):
        if not desc.axes and mode in _IDENTITY_MODES:
            origins = None
            if mode in ORIGIN_MODES:
                origins = Buffer._from_array(
                    index[:, 0].reshape(desc.target_shape).copy(), buffer.device
                )
            values = _emit(buffer, buffer.data, desc.target_shape, out, accumulate)
            return ReductionResult(values, origins, desc)

        raw, pos = buffer._gather_reduce(index, mode, unbiased)

        origins = None
        if pos is not None:
            picked = index[xp.arange(desc.n_out), pos]
            origins = Buffer._from_array(
                picked.reshape(desc.target_shape).astype(np.int64), buffer.device
            )
        values = _emit(buffer, raw, desc.target_shape, out, accumulate)
    return ReductionResult(values, origins, desc)


def delta_reduce(
    grad: Buffer,
    descriptor: ReduceDescriptor,
    mode: Union[str, ReduceMode],
    *,
    origins: Optional[Buffer] = None,
    out: Optional[Buffer] = None,
    accumulate: bool = True,
) -> Buffer:
    """
    Scatter the gradient of a reduced buffer back to the source shape.

    Parameters
    ----------
    grad : Buffer
        Upstream gradient, one value per output element of `descriptor`.
    descriptor : ReduceDescriptor
        Descriptor returned by the forward `reduce`.
    mode : str or ReduceMode
        One of sum, mean, max, min.
    origins : Buffer, optional
        Recorded origins from the forward pass. Required for max/min.
    out : Buffer, optional
        Gradient buffer of the source shape. Allocated (zeroed) when omitted.
    accumulate : bool, optional
        Add into `out` (default). With False, `out` is zeroed first.

    Returns
    -------
    Buffer
        The source-shaped gradient (`out` when given).

    Raises
    ------
    DegenerateReductionError
        If the reduction kind has no gradient.
    ShapeMismatchError
        If `grad` or `out` does not match the descriptor.

    Notes
    -----
    - sum: every source position receives its group's gradient.
    - mean: the same, divided by the group size.
    - max/min: the whole group gradient goes to the recorded origin; every
      other position of the group receives zero.
    """
    mode = parse_mode(mode)
    if mode not in GRADIENT_MODES:
        raise DegenerateReductionError(
            f"gradient not defined for reduction mode '{mode.value}'"
        )
    if grad.size != descriptor.n_out:
        raise ShapeMismatchError("delta_reduce", descriptor.target_shape, grad.shape)

    origin_idx = None
    if mode in (ReduceMode.MAX, ReduceMode.MIN):
        if origins is None:
            raise ValueError(f"delta_reduce({mode.value}) requires forward origins.")
        if origins.device != grad.device:
            raise DeviceMismatchError(str(grad.device), str(origins.device))
        origin_idx = origins.data.reshape(-1)

    if out is None:
        out = Buffer.zeros(descriptor.source_shape, device=grad.device, dtype=grad.dtype)
    else:
        if out.device != grad.device:
            raise DeviceMismatchError(str(grad.device), str(out.device))
        if out.shape != descriptor.source_shape:
            raise ShapeMismatchError("delta_reduce", descriptor.source_shape, out.shape)
        if not accumulate:
            out.zero_()

    grad._scatter_reduce_grad(out, descriptor.index_on(grad.device), mode, origin_idx)
    return out
