"""
Device-resident buffers.

Public API
----------
- ``Buffer``: the concrete N-dimensional buffer.
- ``buffer_control_path_manager``: device-type dispatcher used to register
  backend kernels.
- ``is_available`` / ``cuda_device_count``: accelerator availability probes.
"""

from ._array_module import cuda_device_count, is_available
from ._buffer import Buffer
from ._buffer_builder import buffer_control_path_manager

__all__ = [
    Buffer.__name__,
    "buffer_control_path_manager",
    cuda_device_count.__name__,
    is_available.__name__,
]
