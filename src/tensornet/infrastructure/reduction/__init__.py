"""
Axis reduction engine.

Public API
----------
- ``reduce`` / ``delta_reduce``: reduction and gradient scatter.
- ``ReduceDescriptor`` / ``descriptor_for``: precomputed (and cached) index
  mappings.
- ``ReduceMode`` / ``parse_mode``: reduction kinds.

The ``_kernels`` module is imported for its side effects: it registers the
host and CUDA kernels on the buffer reduction mixin.
"""

from . import _kernels  # noqa: F401
from ._descriptor import ReduceDescriptor, descriptor_for
from ._modes import ReduceMode, parse_mode
from ._reduce import ReductionResult, delta_reduce, reduce

__all__ = [
    ReduceDescriptor.__name__,
    ReduceMode.__name__,
    ReductionResult.__name__,
    "delta_reduce",
    "descriptor_for",
    "parse_mode",
    "reduce",
]
