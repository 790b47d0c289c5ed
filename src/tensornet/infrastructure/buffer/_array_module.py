"""
Array-module resolution for device-resident buffers.

Every `Buffer` stores its elements in an array object provided by an *array
module*: NumPy for host devices and CuPy for CUDA devices. This module answers
three questions for the rest of the buffer layer:

- which array module backs a given device (`array_module`),
- how to make a device current while allocating on it (`device_scope`), and
- how to move an array between two devices (`transfer`).

CuPy is optional. When it is not installed, or when a requested CUDA index is
not present on this machine, the device is *unavailable* and any attempt to use
it raises `AllocationError`. Nothing ever falls back silently to the host.
"""

from __future__ import annotations

from contextlib import nullcontext
from typing import Any, ContextManager

import numpy as np

from ...domain._errors import AllocationError
from ...domain.device._device import Device, DeviceType

try:
    import cupy as _cp

    _CUPY_AVAILABLE = True
except Exception:
    _cp = None
    _CUPY_AVAILABLE = False


def cuda_device_count() -> int:
    """
    Return the number of CUDA devices visible to CuPy (0 without CuPy).
    """
    if not _CUPY_AVAILABLE:
        return 0
    try:
        return int(_cp.cuda.runtime.getDeviceCount())
    except Exception:
        return 0


def is_available(device: Device) -> bool:
    """
    Return True if storage can be allocated on `device` in this process.
    """
    if device.type is DeviceType.CPU:
        return True
    if device.type is DeviceType.CUDA:
        return device.index < cuda_device_count()
    return False


def array_module(device: Device) -> Any:
    """
    Return the array module that backs storage on `device`.

    Raises
    ------
    AllocationError
        If the device is not available in this process.
    """
    if device.type is DeviceType.CPU:
        return np
    if device.type is DeviceType.CUDA:
        if not _CUPY_AVAILABLE:
            raise AllocationError(str(device), "CuPy is not installed")
        if not is_available(device):
            raise AllocationError(
                str(device),
                f"only {cuda_device_count()} CUDA device(s) are visible",
            )
        return _cp
    raise AllocationError(str(device), "no storage backend for this device type")


def device_scope(device: Device) -> ContextManager:
    """
    Return a context manager that makes `device` current for allocations.

    Host devices need no context; CUDA devices select the CuPy device.
    """
    if device.type is DeviceType.CUDA:
        array_module(device)
        return _cp.cuda.Device(device.index)
    return nullcontext()


def allocate(device: Device, shape: tuple, dtype: Any, fill: Any = 0) -> Any:
    """
    Allocate an array of `shape` on `device`.

    Parameters
    ----------
    fill : Any, optional
        Initial value. ``None`` leaves the storage uninitialized.

    Raises
    ------
    AllocationError
        If the device is unavailable or runs out of memory.
    """
    xp = array_module(device)
    try:
        with device_scope(device):
            if fill is None:
                return xp.empty(shape, dtype=dtype)
            if fill == 0:
                return xp.zeros(shape, dtype=dtype)
            return xp.full(shape, fill, dtype=dtype)
    except MemoryError as e:
        # cupy.cuda.memory.OutOfMemoryError derives from MemoryError
        raise AllocationError(str(device), "out of memory") from e


def to_host(array: Any) -> np.ndarray:
    """Return a NumPy array holding the elements of `array`."""
    if isinstance(array, np.ndarray):
        return array
    return _cp.asnumpy(array)


def transfer(array: Any, src: Device, dst: Device) -> Any:
    """
    Return a copy of `array` (resident on `src`) resident on `dst`.

    Host lanes share physical memory, so a host-to-host transfer is a plain
    copy. Accelerator transfers always stage through host memory.
    """
    if src.is_host() and dst.is_host():
        return np.array(array, copy=True)
    host = to_host(array)
    if dst.is_host():
        return np.array(host, copy=True)
    xp = array_module(dst)
    try:
        with device_scope(dst):
            return xp.asarray(host)
    except MemoryError as e:
        raise AllocationError(str(dst), "out of memory") from e
