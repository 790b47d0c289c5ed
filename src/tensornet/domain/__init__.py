"""
Backend-agnostic contracts of tensornet: device descriptors, the error
taxonomy, and the buffer/layer/optimizer/loss protocols.
"""

from ._errors import (
    AllocationError,
    AxisOutOfRangeError,
    DegenerateReductionError,
    DeviceMismatchError,
    DeviceNotSupportedError,
    GraphValidationError,
    InvalidAxisError,
    InvalidStateError,
    ReplicaFailure,
    ShapeMismatchError,
)
from .device import Device, DeviceType

__all__ = [
    AllocationError.__name__,
    AxisOutOfRangeError.__name__,
    DegenerateReductionError.__name__,
    DeviceMismatchError.__name__,
    DeviceNotSupportedError.__name__,
    GraphValidationError.__name__,
    InvalidAxisError.__name__,
    InvalidStateError.__name__,
    ReplicaFailure.__name__,
    ShapeMismatchError.__name__,
    Device.__name__,
    DeviceType.__name__,
]
