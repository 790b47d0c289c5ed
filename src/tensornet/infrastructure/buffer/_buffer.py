"""
Concrete device-resident buffer (NumPy host backend, optional CuPy backend).

This module provides `Buffer`, the storage type every other component of
tensornet builds on. A buffer owns a contiguous, row-major element array plus
its shape and device placement, and satisfies the domain-level `IBuffer`
protocol.

Design notes
------------
- Residency is whole-buffer: `to()` copies every element to the target device
  and drops the old storage. No buffer is ever resident on two devices.
- Binary operators check device and shape equality at entry and raise
  `DeviceMismatchError` / `ShapeMismatchError`. There is no implicit transfer
  and no implicit broadcasting; `sum2d_rowwise` is the single documented
  broadcast (row-wise bias addition).
- `view()` returns a non-owning, read-only alias. Writes through a view raise
  `ValueError`. A view whose base has since been reshaped, resized or moved is
  stale and refuses to be read.
- Every structural change (reshape, resize, move) increments `version` and
  clears the cache of reduction descriptors held by the buffer.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

from ...domain._buffer import IBuffer
from ...domain._errors import (
    AllocationError,
    DeviceMismatchError,
    DeviceNotSupportedError,
    ShapeMismatchError,
)
from ...domain.device._device import Device, DeviceType, as_device
from ._array_module import allocate, array_module, device_scope, to_host, transfer
from .mixins import BufferMixinReduction

Number = Union[int, float]
DeviceArg = Union[str, Device]


def _validate_shape(shape: Any, device: Device) -> tuple[int, ...]:
    if isinstance(shape, (int, np.integer)):
        shape = (int(shape),)
    shape = tuple(int(s) for s in shape)
    if len(shape) == 0:
        raise AllocationError(str(device), "shape must have at least one dimension")
    if any(s <= 0 for s in shape):
        raise AllocationError(str(device), f"non-positive dimension in shape {shape}")
    return shape


def _row_major_stride(shape: Sequence[int]) -> tuple[int, ...]:
    stride = []
    acc = 1
    for s in reversed(shape):
        stride.append(acc)
        acc *= s
    return tuple(reversed(stride))


_UNARY = {
    "exp": lambda xp, x, out: xp.exp(x, out=out),
    "log": lambda xp, x, out: xp.log(x, out=out),
    "sqrt": lambda xp, x, out: xp.sqrt(x, out=out),
    "abs": lambda xp, x, out: xp.abs(x, out=out),
    "neg": lambda xp, x, out: xp.negative(x, out=out),
    "square": lambda xp, x, out: xp.square(x, out=out),
    "relu": lambda xp, x, out: xp.maximum(x, 0, out=out),
    "sign": lambda xp, x, out: xp.sign(x, out=out),
}


class Buffer(BufferMixinReduction, IBuffer):
    """
    Device-resident N-dimensional buffer.

    Parameters
    ----------
    shape : Sequence[int] or int
        Buffer shape. Every dimension must be positive.
    device : str or Device, optional
        Device placement. Defaults to "cpu".
    dtype : np.dtype, optional
        Element dtype. Defaults to np.float32.

    Raises
    ------
    AllocationError
        If the shape is empty or has a non-positive dimension, or if the
        device is unavailable.

    Notes
    -----
    The buffer is zero-initialized.
    """

    def __init__(
        self,
        shape: Union[int, Sequence[int]],
        device: DeviceArg = "cpu",
        dtype: Any = np.float32,
    ) -> None:
        dev = as_device(device)
        shape = _validate_shape(shape, dev)
        self._init_from_array(allocate(dev, shape, dtype), dev)

    def _init_from_array(
        self,
        array: Any,
        device: Device,
        base: Optional["Buffer"] = None,
    ) -> None:
        self._data = array
        self._device = device
        self._dtype = np.dtype(array.dtype)
        self._base = base
        self._base_version = base._version if base is not None else 0
        self._version = 0
        self._lock = base._lock if base is not None else threading.Lock()
        self._reduce_cache: Dict[Any, Any] = {}

    @classmethod
    def _from_array(cls, array: Any, device: DeviceArg) -> "Buffer":
        """
        Wrap an existing array (already on `device`) without copying.
        """
        dev = as_device(device)
        if array.ndim == 0:
            array = array.reshape(1)
        _validate_shape(array.shape, dev)
        obj = cls.__new__(cls)
        obj._init_from_array(array, dev)
        return obj

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def empty(cls, shape, device: DeviceArg = "cpu", dtype: Any = np.float32) -> "Buffer":
        """Allocate an uninitialized buffer."""
        dev = as_device(device)
        shape = _validate_shape(shape, dev)
        return cls._from_array(allocate(dev, shape, dtype, fill=None), dev)

    @classmethod
    def zeros(cls, shape, device: DeviceArg = "cpu", dtype: Any = np.float32) -> "Buffer":
        """Allocate a buffer filled with zeros."""
        return cls(shape, device=device, dtype=dtype)

    @classmethod
    def ones(cls, shape, device: DeviceArg = "cpu", dtype: Any = np.float32) -> "Buffer":
        """Allocate a buffer filled with ones."""
        return cls.full(shape, 1, device=device, dtype=dtype)

    @classmethod
    def full(
        cls, shape, value: Number, device: DeviceArg = "cpu", dtype: Any = np.float32
    ) -> "Buffer":
        """Allocate a buffer filled with `value`."""
        dev = as_device(device)
        shape = _validate_shape(shape, dev)
        if value == 0:
            return cls._from_array(allocate(dev, shape, dtype), dev)
        return cls._from_array(allocate(dev, shape, dtype, fill=value), dev)

    @classmethod
    def empty_like(cls, other: "Buffer") -> "Buffer":
        return cls.empty(other.shape, device=other.device, dtype=other.dtype)

    @classmethod
    def zeros_like(cls, other: "Buffer") -> "Buffer":
        return cls.zeros(other.shape, device=other.device, dtype=other.dtype)

    @classmethod
    def ones_like(cls, other: "Buffer") -> "Buffer":
        return cls.ones(other.shape, device=other.device, dtype=other.dtype)

    @classmethod
    def full_like(cls, other: "Buffer", value: Number) -> "Buffer":
        return cls.full(other.shape, value, device=other.device, dtype=other.dtype)

    @classmethod
    def from_numpy(
        cls, array: Any, device: DeviceArg = "cpu", dtype: Any = None
    ) -> "Buffer":
        """
        Create a buffer from a literal (NumPy array, nested list or scalar).

        The elements are copied. A 0-d input becomes a buffer of shape (1,).

        Parameters
        ----------
        dtype : np.dtype, optional
            Target dtype. Defaults to np.float32.
        """
        host = np.array(array, dtype=np.float32 if dtype is None else dtype, copy=True)
        if host.ndim == 0:
            host = host.reshape(1)
        dev = as_device(device)
        _validate_shape(host.shape, dev)
        return cls._from_array(transfer(host, Device("cpu"), dev), dev)

    @classmethod
    def arange(
        cls,
        start: Number,
        end: Optional[Number] = None,
        step: Number = 1,
        device: DeviceArg = "cpu",
        dtype: Any = np.float32,
    ) -> "Buffer":
        """
        Create a 1-D buffer of evenly spaced values in ``[start, end)``.

        With a single argument the range is ``[0, start)``.
        """
        if end is None:
            start, end = 0, start
        return cls.from_numpy(np.arange(start, end, step), device=device, dtype=dtype)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self._data.shape)

    @property
    def stride(self) -> tuple[int, ...]:
        return _row_major_stride(self.shape)

    @property
    def ndim(self) -> int:
        return len(self._data.shape)

    @property
    def size(self) -> int:
        return int(self._data.size)

    @property
    def device(self) -> Device:
        return self._device

    @property
    def device_type(self) -> DeviceType:
        """Device category used as the kernel dispatch key."""
        return self._device.type

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def is_view(self) -> bool:
        return self._base is not None

    @property
    def nbytes(self) -> int:
        return self.size * self._dtype.itemsize

    @property
    def version(self) -> int:
        """Counter incremented by every reshape, resize or move."""
        return self._version

    @property
    def lock(self) -> threading.Lock:
        """
        Mutual-exclusion lock for multi-writer accumulation.

        Only buffers written by several concurrent workers (gradient
        synchronization targets) take this lock. Views share their base's lock.
        """
        return self._lock

    @property
    def array_module(self) -> Any:
        """NumPy for host buffers, CuPy for CUDA buffers."""
        return array_module(self._device)

    @property
    def data(self) -> Any:
        """
        Return the backing array (NumPy or CuPy).

        Raises
        ------
        ValueError
            If this is a view and its base changed structure since the view
            was taken.
        """
        if self._base is not None and self._base._version != self._base_version:
            raise ValueError(
                "Stale view: the base buffer was reshaped, resized or moved."
            )
        return self._data

    def data_ptr(self) -> int:
        """
        Return the address of the first element.

        For host buffers this is a host address; for CUDA buffers it is a
        device pointer. The pointer is valid until the next structural change.
        """
        data = self.data
        if isinstance(data, np.ndarray):
            return int(data.ctypes.data)
        return int(data.data.ptr)

    def __repr__(self) -> str:
        kind = "view" if self.is_view else "owner"
        return (
            f"Buffer(shape={self.shape}, device='{self._device}', "
            f"dtype={self._dtype.name}, {kind})"
        )

    # ------------------------------------------------------------------
    # Internal checks
    # ------------------------------------------------------------------

    def _bump(self) -> None:
        self._version += 1
        self._reduce_cache.clear()

    def _writable(self) -> Any:
        if self._base is not None:
            raise ValueError("Cannot write through a read-only view.")
        return self._data

    def _require_owner(self, op: str) -> None:
        if self._base is not None:
            raise ValueError(f"{op}() is not allowed on a view.")

    @staticmethod
    def _check_pair(op: str, a: "Buffer", b: "Buffer") -> None:
        if a.device != b.device:
            raise DeviceMismatchError(str(a.device), str(b.device))
        if a.shape != b.shape:
            raise ShapeMismatchError(op, a.shape, b.shape)

    @classmethod
    def _resolve_out(
        cls, op: str, like: "Buffer", out: Optional["Buffer"], shape=None
    ) -> "Buffer":
        shape = like.shape if shape is None else tuple(shape)
        if out is None:
            return cls.empty(shape, device=like.device, dtype=like.dtype)
        if out.device != like.device:
            raise DeviceMismatchError(str(like.device), str(out.device))
        if out.shape != shape:
            raise ShapeMismatchError(op, shape, out.shape)
        out._writable()
        return out

    # ------------------------------------------------------------------
    # Residency and structure
    # ------------------------------------------------------------------

    def to(self, device: DeviceArg) -> "Buffer":
        """
        Move every element to `device`, replacing the previous residency.

        Returns
        -------
        Buffer
            `self`, now resident on `device`.

        Raises
        ------
        AllocationError
            If the target device is unavailable.
        ValueError
            If called on a view.
        """
        self._require_owner("to")
        dst = as_device(device)
        if dst == self._device:
            return self
        self._data = transfer(self._data, self._device, dst)
        self._device = dst
        self._bump()
        return self

    move_to = to

    def view(self, shape: Union[int, Sequence[int]]) -> "Buffer":
        """
        Return a read-only alias of this buffer with another shape.

        Raises
        ------
        ShapeMismatchError
            If ``prod(shape) != size``.
        """
        shape = (int(shape),) if isinstance(shape, (int, np.integer)) else tuple(
            int(s) for s in shape
        )
        if int(np.prod(shape)) != self.size or any(s <= 0 for s in shape):
            raise ShapeMismatchError("view", self.shape, shape)
        owner = self._base if self._base is not None else self
        array = self.data.reshape(shape)
        if isinstance(array, np.ndarray):
            array.flags.writeable = False
        obj = type(self).__new__(type(self))
        obj._init_from_array(array, self._device, base=owner)
        return obj

    def is_current_view_of(self, other: "Buffer") -> bool:
        """
        Return True if this is a view of `other` taken since its last
        structural change.
        """
        return self._base is other and self._base_version == other._version

    def reshape_(self, shape: Union[int, Sequence[int]]) -> "Buffer":
        """
        Change the shape in place (no copy). Requires an owning buffer.
        """
        self._require_owner("reshape_")
        shape = _validate_shape(shape, self._device)
        if int(np.prod(shape)) != self.size:
            raise ShapeMismatchError("reshape_", self.shape, shape)
        self._data = self._data.reshape(shape)
        self._bump()
        return self

    def resize_(self, shape: Union[int, Sequence[int]]) -> "Buffer":
        """
        Reallocate zeroed storage with a new shape.

        A call with the current shape keeps the storage untouched.
        """
        self._require_owner("resize_")
        shape = _validate_shape(shape, self._device)
        if shape == self.shape:
            return self
        self._data = allocate(self._device, shape, self._dtype)
        self._bump()
        return self

    def clone(self, device: Optional[DeviceArg] = None) -> "Buffer":
        """Return an owning copy, optionally on another device."""
        dst = self._device if device is None else as_device(device)
        return type(self)._from_array(transfer(self.data, self._device, dst), dst)

    # ------------------------------------------------------------------
    # Element access and copies
    # ------------------------------------------------------------------

    def to_numpy(self) -> np.ndarray:
        """Return a host copy of the elements."""
        return np.array(to_host(self.data), copy=True)

    def item(self, index: int = 0) -> float:
        """
        Return the element at linear `index`.

        Raises
        ------
        DeviceNotSupportedError
            If the buffer is not resident on a host device.
        """
        if not self._device.is_host():
            raise DeviceNotSupportedError("item", str(self._device))
        return self.data.reshape(-1)[int(index)].item()

    def __getitem__(self, index: int) -> float:
        if not isinstance(index, (int, np.integer)):
            raise TypeError("Buffer supports linear integer indexing only.")
        return self.item(index)

    def copy_from(self, other: "Buffer") -> "Buffer":
        """
        Overwrite the elements with those of `other`.

        `other` may live on another device; the copy is then an explicit
        transfer.

        Raises
        ------
        ShapeMismatchError
            If the shapes differ.
        """
        dst = self._writable()
        if other.shape != self.shape:
            raise ShapeMismatchError("copy_from", self.shape, other.shape)
        src = other.data
        if other.device == self._device:
            self.array_module.copyto(dst, src)
        else:
            dst[...] = transfer(src, other.device, self._device)
        return self

    def copy_from_numpy(self, array: Any) -> "Buffer":
        """Overwrite the elements with those of a host array of equal shape."""
        dst = self._writable()
        host = np.asarray(array, dtype=self._dtype)
        if host.shape != self.shape:
            raise ShapeMismatchError("copy_from_numpy", self.shape, host.shape)
        if self._device.is_host():
            np.copyto(dst, host)
        else:
            with device_scope(self._device):
                dst[...] = self.array_module.asarray(host)
        return self

    def fill_(self, value: Number) -> "Buffer":
        self._writable().fill(value)
        return self

    def zero_(self) -> "Buffer":
        return self.fill_(0)

    # ------------------------------------------------------------------
    # Element-wise contract
    # ------------------------------------------------------------------

    @classmethod
    def add(cls, a: "Buffer", b: "Buffer", out: Optional["Buffer"] = None) -> "Buffer":
        """Return ``a + b`` (element-wise)."""
        cls._check_pair("add", a, b)
        out = cls._resolve_out("add", a, out)
        a.array_module.add(a.data, b.data, out=out.data)
        return out

    @classmethod
    def sub(cls, a: "Buffer", b: "Buffer", out: Optional["Buffer"] = None) -> "Buffer":
        """Return ``a - b`` (element-wise)."""
        cls._check_pair("sub", a, b)
        out = cls._resolve_out("sub", a, out)
        a.array_module.subtract(a.data, b.data, out=out.data)
        return out

    @classmethod
    def mul(cls, a: "Buffer", b: "Buffer", out: Optional["Buffer"] = None) -> "Buffer":
        """Return ``a * b`` (element-wise)."""
        cls._check_pair("mul", a, b)
        out = cls._resolve_out("mul", a, out)
        a.array_module.multiply(a.data, b.data, out=out.data)
        return out

    @classmethod
    def div(cls, a: "Buffer", b: "Buffer", out: Optional["Buffer"] = None) -> "Buffer":
        """Return ``a / b`` (element-wise)."""
        cls._check_pair("div", a, b)
        out = cls._resolve_out("div", a, out)
        a.array_module.divide(a.data, b.data, out=out.data)
        return out

    @classmethod
    def axpby(
        cls,
        alpha: Number,
        a: "Buffer",
        beta: Number,
        b: "Buffer",
        out: Optional["Buffer"] = None,
    ) -> "Buffer":
        """Return ``alpha * a + beta * b``. `out` may alias `a` or `b`."""
        cls._check_pair("axpby", a, b)
        out = cls._resolve_out("axpby", a, out)
        out.data[...] = alpha * a.data + beta * b.data
        return out

    def inc_(self, other: "Buffer") -> "Buffer":
        """Accumulate `other` into this buffer in place."""
        self._check_pair("inc_", self, other)
        dst = self._writable()
        dst += other.data
        return self

    def scale_(self, value: Number) -> "Buffer":
        """Multiply every element by `value` in place."""
        dst = self._writable()
        dst *= value
        return self

    def clamp_(self, lo: Number, hi: Number) -> "Buffer":
        """Clip every element into ``[lo, hi]`` in place."""
        if lo > hi:
            raise ValueError(f"clamp bounds are reversed: lo={lo} > hi={hi}")
        dst = self._writable()
        self.array_module.clip(dst, lo, hi, out=dst)
        return self

    def add_scalar_(self, value: Number) -> "Buffer":
        """Add `value` to every element in place."""
        dst = self._writable()
        dst += value
        return self

    def apply_unary(self, fn_name: str, out: Optional["Buffer"] = None) -> "Buffer":
        """
        Apply a named element-wise function.

        Parameters
        ----------
        fn_name : str
            One of "exp", "log", "sqrt", "abs", "neg", "square", "relu",
            "sign".
        out : Buffer, optional
            Destination; may be `self` for in-place application.
        """
        fn = _UNARY.get(fn_name)
        if fn is None:
            raise ValueError(
                f"Unknown unary function {fn_name!r}. Expected one of {sorted(_UNARY)}"
            )
        out = type(self)._resolve_out(fn_name, self, out)
        fn(self.array_module, self.data, out.data)
        return out

    @classmethod
    def sum2d_rowwise(
        cls, a: "Buffer", b: "Buffer", out: Optional["Buffer"] = None
    ) -> "Buffer":
        """
        Return ``a + b`` where `a` is ``(m, n)`` and `b` is ``(n,)``.

        This is the single broadcasting operator: `b` is added to every row.
        """
        if a.device != b.device:
            raise DeviceMismatchError(str(a.device), str(b.device))
        if a.ndim != 2 or b.shape != (a.shape[1],):
            raise ShapeMismatchError("sum2d_rowwise", a.shape, b.shape)
        out = cls._resolve_out("sum2d_rowwise", a, out)
        a.array_module.add(a.data, b.data[None, :], out=out.data)
        return out

    @classmethod
    def matmul(
        cls,
        a: "Buffer",
        b: "Buffer",
        out: Optional["Buffer"] = None,
        trans_a: bool = False,
        trans_b: bool = False,
        accumulate: bool = False,
    ) -> "Buffer":
        """
        2-D matrix product ``op(a) @ op(b)``.

        Parameters
        ----------
        trans_a, trans_b : bool, optional
            Transpose the corresponding operand first.
        accumulate : bool, optional
            Add the product into `out` instead of overwriting it. Requires
            `out`.
        """
        if a.device != b.device:
            raise DeviceMismatchError(str(a.device), str(b.device))
        if a.ndim != 2 or b.ndim != 2:
            raise ShapeMismatchError("matmul", a.shape, b.shape)
        A = a.data.T if trans_a else a.data
        B = b.data.T if trans_b else b.data
        if A.shape[1] != B.shape[0]:
            raise ShapeMismatchError("matmul", A.shape, B.shape)
        shape = (A.shape[0], B.shape[1])
        if accumulate and out is None:
            raise ValueError("matmul(accumulate=True) requires an output buffer.")
        out = cls._resolve_out("matmul", a, out, shape=shape)
        xp = a.array_module
        if accumulate:
            out.data[...] += xp.matmul(A, B)
        else:
            xp.matmul(A, B, out=out.data)
        return out
