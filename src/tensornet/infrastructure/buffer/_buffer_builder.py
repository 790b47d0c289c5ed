"""
Buffer control-path manager for device-specific dispatch.

Backend kernels register themselves against a `DeviceType`:

    @buffer_control_path_manager(BufferMixin, BufferMixin.op, DeviceType.CPU)
    def op_cpu(self, ...): ...

At runtime, calling ``Buffer.op(...)`` dispatches to the implementation whose
registered device type matches ``self.device_type``. All host lanes
(``cpu:0``, ``cpu:1``, ...) therefore share one kernel, and so do all CUDA
devices.
"""

from ...domain._errors import DeviceNotSupportedError
from ...domain.utils._control_path import create_path_builder

# Control-path manager that dispatches Buffer methods based on `self.device_type`
buffer_control_path_manager = create_path_builder("device_type")


def unsupported_device(method, device_type) -> DeviceNotSupportedError:
    """Trap factory used when no kernel is registered for a device type."""
    value = getattr(device_type, "value", device_type)
    return DeviceNotSupportedError(method.__name__.lstrip("_"), str(value))
