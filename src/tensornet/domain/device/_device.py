"""
Device abstraction utilities.

This module defines lightweight abstractions for representing computation
devices in a framework-agnostic way. It provides:

- `DeviceType`: an enumeration of supported device categories
- `Device`: a concrete device descriptor that validates and normalizes
  user-facing device strings such as "cpu", "cpu:1", "cuda:0" or "fpga:0"

Host devices may carry an index ("cpu:<i>"). Every host index refers to the
same physical memory; the index only distinguishes independent host lanes,
which lets the network executor place several data-parallel replicas on one
machine. "cpu" is equivalent to "cpu:0".
"""

from enum import Enum
import re


class DeviceType(Enum):
    """
    Enumeration of supported device categories.

    Attributes
    ----------
    CPU : DeviceType
        Host memory.
    CUDA : DeviceType
        NVIDIA CUDA-enabled Graphics Processing Unit.
    FPGA : DeviceType
        Field-programmable accelerator. Recognised by the descriptor but no
        storage backend is available for it.
    """

    CPU = "cpu"
    CUDA = "cuda"
    FPGA = "fpga"


class Device:
    """
    Concrete computation device descriptor.

    Parameters
    ----------
    device : str
        Device identifier string. Must be one of:
        - "cpu" or "cpu:<index>"
        - "cuda:<index>"
        - "fpga:<index>"

    Raises
    ------
    ValueError
        If the provided device string does not match the supported formats.

    Notes
    -----
    - `__slots__` is used to prevent dynamic attribute creation.
    - This class does not allocate or manage any backend resources; whether a
      device is actually usable is decided by the storage layer.
    """

    __slots__ = ("type", "index")

    _PATTERN = re.compile(r"^(cpu|cuda|fpga):(\d+)$")

    def __init__(self, device: "str | Device"):
        if isinstance(device, Device):
            self.type = device.type
            self.index = device.index
            return

        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = 0
            return

        m = self._PATTERN.match(str(device))
        if not m:
            raise ValueError(
                f"Invalid device '{device}'. Expected 'cpu', 'cpu:<index>', "
                "'cuda:<index>' or 'fpga:<index>'"
            )
        self.type = DeviceType(m.group(1))
        self.index = int(m.group(2))

    def __str__(self) -> str:
        if self.type is DeviceType.CPU and self.index == 0:
            return "cpu"
        return f"{self.type.value}:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"

    def __eq__(self, other: object) -> bool:
        """
        Compare two devices for semantic equality.

        Strings are accepted on the right-hand side, so ``Device("cpu") ==
        "cpu:0"`` holds.
        """
        if isinstance(other, str):
            try:
                other = Device(other)
            except ValueError:
                return False
        if not isinstance(other, Device):
            return NotImplemented
        return (self.type, self.index) == (other.type, other.index)

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def is_cpu(self) -> bool:
        """Return True if the device is a host lane."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True if the device is a CUDA GPU."""
        return self.type is DeviceType.CUDA

    def is_fpga(self) -> bool:
        """Return True if the device is an FPGA accelerator."""
        return self.type is DeviceType.FPGA

    def is_host(self) -> bool:
        """
        Return True if elements on this device are directly addressable
        from host code.
        """
        return self.type is DeviceType.CPU


def as_device(device: "str | Device") -> Device:
    """Normalize a device string or descriptor into a `Device`."""
    return device if isinstance(device, Device) else Device(device)
