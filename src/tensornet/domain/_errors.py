"""
Error taxonomy for tensornet.

This module defines every exception raised by the buffer engine, the axis
reduction engine, the layer graph and the network executor. All errors derive
from a built-in exception type so callers may catch them generically
(e.g., ``except ValueError``) or precisely (e.g., ``except InvalidAxisError``).

Error classes
-------------
- Allocation and residency:
  `AllocationError`, `DeviceNotSupportedError`, `DeviceMismatchError`
- Operand validation:
  `ShapeMismatchError`
- Reductions:
  `InvalidAxisError`, `AxisOutOfRangeError`, `DegenerateReductionError`
- Graph and execution:
  `GraphValidationError`, `ReplicaFailure`, `InvalidStateError`

None of these errors is used for expected control flow; each one signals a
genuine invariant violation and is raised at operator entry.
"""

from __future__ import annotations

from typing import Optional, Sequence


class AllocationError(MemoryError):
    """
    Raised when buffer storage cannot be allocated.

    Causes include a zero-size (or non-positive) shape, an invalid device
    identifier, a device whose backend is not available in this process, or
    the device running out of memory.

    Attributes
    ----------
    device : str
        Device identifier on which the allocation was attempted.
    reason : str
        Human-readable description of the failure.
    """

    def __init__(self, device: str, reason: str) -> None:
        super().__init__(f"Cannot allocate on device '{device}': {reason}")
        self.device = device
        self.reason = reason


class DeviceNotSupportedError(RuntimeError):
    """
    Raised when an operation is requested on a device that has no kernel
    registered for it, or when host code dereferences accelerator memory.

    Attributes
    ----------
    op : str
        The name of the operation that was attempted (e.g., "reduce", "item").
    device : str
        String representation of the device on which the operation
        was attempted.
    """

    def __init__(self, op: str, device: str) -> None:
        super().__init__(f"{op} is not implemented for device '{device}'.")
        self.op = op
        self.device = device


class DeviceMismatchError(RuntimeError):
    """
    Raised when an operation is attempted between buffers on different devices.

    No implicit transfer is ever performed; callers must move one operand
    explicitly with `Buffer.to(...)`.
    """

    def __init__(self, device_a: str, device_b: str) -> None:
        super().__init__(f"Device mismatch: '{device_a}' vs '{device_b}'.")
        self.device_a = device_a
        self.device_b = device_b


class ShapeMismatchError(ValueError):
    """
    Raised when operand shapes are incompatible for an operation.

    Parameters
    ----------
    op : str
        Operation name.
    shape_a, shape_b : Sequence[int]
        The offending shapes.
    """

    def __init__(self, op: str, shape_a: Sequence[int], shape_b: Sequence[int]) -> None:
        super().__init__(
            f"{op}: shape mismatch {tuple(shape_a)} vs {tuple(shape_b)}."
        )
        self.op = op
        self.shape_a = tuple(shape_a)
        self.shape_b = tuple(shape_b)


class InvalidAxisError(ValueError):
    """Raised when an axis set contains the same axis more than once."""

    def __init__(self, axes: Sequence[int]) -> None:
        super().__init__(f"Duplicate axis in axis set {tuple(axes)}.")
        self.axes = tuple(axes)


class AxisOutOfRangeError(IndexError):
    """Raised when an axis index falls outside ``[0, ndim)``."""

    def __init__(self, axis: int, ndim: int) -> None:
        super().__init__(f"Axis {axis} is out of range for ndim {ndim}.")
        self.axis = axis
        self.ndim = ndim


class DegenerateReductionError(ValueError):
    """
    Raised when a reduction is mathematically undefined for its input.

    Examples are the unbiased variance of a single-element group (``N - 1 < 1``)
    or asking for the gradient scatter of a reduction kind that has none.
    """


class GraphValidationError(ValueError):
    """
    Raised by graph construction or `Network.build()` when the layer graph is
    invalid: a cycle, an output unreachable from every input, an unknown node
    reference, or a duplicated node name.
    """


class ReplicaFailure(RuntimeError):
    """
    Raised when a replica fails during a training or inference step.

    The failure is fatal for the step: the executor discards the partial
    results of every replica and returns to the idle state. The underlying
    exception is chained as ``__cause__``.

    Attributes
    ----------
    replica : int
        Index of the first replica that failed.
    phase : str
        Step phase in which the failure occurred (e.g., "forward").
    """

    def __init__(self, replica: int, phase: str, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"Replica {replica} failed during {phase}{detail}")
        self.replica = replica
        self.phase = phase


class InvalidStateError(RuntimeError):
    """
    Raised when a network step hook is invoked out of order, for example
    `backward()` before `compute_loss()` or any hook before `build()`.
    """

    def __init__(self, op: str, state: object) -> None:
        super().__init__(f"Cannot call {op}() in state {state}.")
        self.op = op
        self.state = state
