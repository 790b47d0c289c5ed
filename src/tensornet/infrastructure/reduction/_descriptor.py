"""
Axis reduction descriptors.

A `ReduceDescriptor` captures everything about a reduction that depends only
on ``(source shape, axis set, keepdims)``:

- the output shape,
- the group size (number of source elements per output element), and
- the *index matrix* ``(n_out, group_size)`` whose row ``j`` lists, in
  increasing order, the source linear indices that contribute to output ``j``.

Building the index matrix costs O(source size) once. Applying a reduction is
then a gather over that matrix, with no per-call index arithmetic. Descriptors
are cached on the source buffer by `descriptor_for()` and the cache is dropped
whenever the buffer is reshaped, resized or moved.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Tuple

import numpy as np

from ...domain._errors import AxisOutOfRangeError, InvalidAxisError
from ...domain.device._device import Device
from ..buffer._array_module import transfer

_HOST = Device("cpu")


class ReduceDescriptor:
    """
    Precomputed mapping from source elements to reduction groups.

    Parameters
    ----------
    source_shape : Iterable[int]
        Shape of the buffer being reduced.
    axes : Iterable[int]
        Axes to reduce. Order is irrelevant; each axis must appear once and
        lie in ``[0, ndim)``.
    keepdims : bool, optional
        Keep reduced axes as size-1 dimensions.

    Raises
    ------
    InvalidAxisError
        If an axis is listed twice.
    AxisOutOfRangeError
        If an axis falls outside ``[0, ndim)``. Negative axes are not wrapped.

    Attributes
    ----------
    source_shape : tuple[int, ...]
    axes : tuple[int, ...]
        Sorted reduced axes.
    keepdims : bool
    target_shape : tuple[int, ...]
        Output shape. Reducing every axis without `keepdims` yields ``(1,)``.
    n_out : int
        Number of output elements (groups).
    group_size : int
        Number of source elements per group.
    index : np.ndarray
        Host index matrix of shape ``(n_out, group_size)`` (int64).
    """

    def __init__(
        self, source_shape: Iterable[int], axes: Iterable[int], keepdims: bool = False
    ) -> None:
        self.source_shape: Tuple[int, ...] = tuple(int(s) for s in source_shape)
        ndim = len(self.source_shape)
        axes = tuple(int(a) for a in axes)
        if len(set(axes)) != len(axes):
            raise InvalidAxisError(axes)
        for a in axes:
            if a < 0 or a >= ndim:
                raise AxisOutOfRangeError(a, ndim)

        self.axes: Tuple[int, ...] = tuple(sorted(axes))
        self.keepdims = bool(keepdims)

        kept = tuple(d for d in range(ndim) if d not in self.axes)
        self.n_out = int(np.prod([self.source_shape[d] for d in kept], dtype=np.int64))
        self.group_size = int(
            np.prod([self.source_shape[d] for d in self.axes], dtype=np.int64)
        )

        if self.keepdims:
            target = tuple(
                1 if d in self.axes else s for d, s in enumerate(self.source_shape)
            )
        else:
            target = tuple(self.source_shape[d] for d in kept)
        self.target_shape: Tuple[int, ...] = target if target else (1,)

        source_size = self.n_out * self.group_size
        self.index: np.ndarray = (
            np.arange(source_size, dtype=np.int64)
            .reshape(self.source_shape)
            .transpose(kept + self.axes)
            .reshape(self.n_out, self.group_size)
        )
        self._device_index: Dict[Device, Any] = {_HOST: self.index}

    @property
    def source_size(self) -> int:
        return self.n_out * self.group_size

    @property
    def key(self) -> Tuple[Tuple[int, ...], Tuple[int, ...], bool]:
        return self.source_shape, self.axes, self.keepdims

    def index_on(self, device: Device) -> Any:
        """
        Return the index matrix resident on `device` (cached per device).

        Host lanes share the host copy.
        """
        if device.is_host():
            return self.index
        idx = self._device_index.get(device)
        if idx is None:
            idx = transfer(self.index, _HOST, device)
            self._device_index[device] = idx
        return idx

    def __repr__(self) -> str:
        return (
            f"ReduceDescriptor(source_shape={self.source_shape}, axes={self.axes}, "
            f"keepdims={self.keepdims}, target_shape={self.target_shape})"
        )


def descriptor_for(buffer: Any, axes: Iterable[int], keepdims: bool = False) -> ReduceDescriptor:
    """
    Return the cached descriptor for reducing `buffer` over `axes`.

    The cache lives on the buffer and is cleared by every structural change
    (reshape, resize, move), so a descriptor never outlives the shape it was
    built for.
    """
    axes = tuple(int(a) for a in axes)
    key = (buffer.shape, axes, bool(keepdims))
    cache = buffer._reduce_cache
    desc = cache.get(key)
    if desc is None:
        desc = ReduceDescriptor(buffer.shape, axes, keepdims)
        cache[key] = desc
    return desc
