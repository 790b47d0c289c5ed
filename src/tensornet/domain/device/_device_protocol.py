"""
Device abstraction contracts for tensornet.

This module defines a duck-typed `DeviceLike` protocol that represents a
computation device descriptor without coupling to the concrete `Device`
class. Buffers, layers and the network executor only rely on these members.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class DeviceLike(Protocol):
    """
    Duck-typed device contract.

    Any object that provides these members can be used as a computation device
    descriptor within the framework, regardless of its concrete class identity.
    """

    type: object
    index: Optional[int]

    def is_cpu(self) -> bool: ...
    def is_cuda(self) -> bool: ...
    def is_host(self) -> bool: ...
    def __str__(self) -> str: ...
