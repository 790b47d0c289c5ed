"""
Buffer interface definitions.

This module defines the domain-level interface for device-resident buffers
using structural typing. The interface is the stable storage and iteration
surface that external collaborators (I/O codecs, language bindings,
checkpointing) program against: shape, device and element count introspection,
explicit residency transfer, and a raw element-pointer handoff for zero-copy
exchange.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .device._device_protocol import DeviceLike


@runtime_checkable
class IBuffer(Protocol):
    """
    Device-resident N-dimensional buffer interface.

    Notes
    -----
    - ``size == prod(shape)`` always holds.
    - ``stride`` is the row-major element stride of each dimension.
    - A buffer is never partially resident on two devices.
    """

    @property
    def shape(self) -> tuple[int, ...]:
        """Return the buffer shape."""
        ...

    @property
    def stride(self) -> tuple[int, ...]:
        """Return the per-dimension element strides (row-major)."""
        ...

    @property
    def size(self) -> int:
        """Return the element count."""
        ...

    @property
    def device(self) -> DeviceLike:
        """Return the device on which the buffer resides."""
        ...

    def to(self, device: Any) -> "IBuffer":
        """
        Move all elements to `device`, replacing the previous residency.
        """
        ...

    def view(self, shape: tuple[int, ...]) -> "IBuffer":
        """
        Return a read-only, non-owning alias with a different shape.
        """
        ...

    def to_numpy(self) -> Any:
        """Return a host copy of the elements."""
        ...

    def data_ptr(self) -> int:
        """Return the raw address of the first element."""
        ...
