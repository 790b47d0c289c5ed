"""
tensornet: a small data-parallel neural network runtime.

Typical use::

    from tensornet import ComputeService, LayerGraph, Network, SGD

    g = LayerGraph()
    x = g.input((4,))
    y = g.dense(g.relu(g.dense(x, 16)), 2)

    net = Network(g, [x], [y], seed=0)
    net.build(SGD(lr=0.05), "mse", "mse", ComputeService.cpu(2))
    history = net.fit(xs, ys, batch_size=32, epochs=10)
"""

from .domain import (
    AllocationError,
    AxisOutOfRangeError,
    DegenerateReductionError,
    Device,
    DeviceMismatchError,
    DeviceNotSupportedError,
    DeviceType,
    GraphValidationError,
    InvalidAxisError,
    InvalidStateError,
    ReplicaFailure,
    ShapeMismatchError,
)
from .infrastructure.buffer import Buffer
from .infrastructure.layers import Layer, LayerGraph, LayerKind, topological_order
from .infrastructure.losses import get_loss, get_metric
from .infrastructure.network import ComputeService, History, Network, StepState
from .infrastructure.optimizers import SGD, Adam, Optimizer
from .infrastructure.reduction import ReduceMode, delta_reduce, reduce

__version__ = "0.1.0"

__all__ = [
    "AllocationError",
    "AxisOutOfRangeError",
    "DegenerateReductionError",
    "Device",
    "DeviceMismatchError",
    "DeviceNotSupportedError",
    "DeviceType",
    "GraphValidationError",
    "InvalidAxisError",
    "InvalidStateError",
    "ReplicaFailure",
    "ShapeMismatchError",
    "Buffer",
    "Layer",
    "LayerGraph",
    "LayerKind",
    "topological_order",
    "get_loss",
    "get_metric",
    "ComputeService",
    "History",
    "Network",
    "StepState",
    "SGD",
    "Adam",
    "Optimizer",
    "ReduceMode",
    "reduce",
    "delta_reduce",
]
