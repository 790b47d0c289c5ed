"""
Layer graph nodes.

The per-kind modules (``_input``, ``_dense``, ``_elementwise``,
``_reduce_layer``) are imported for side effects so that their control paths
are registered on `Layer`.
"""

from . import _dense, _elementwise, _input, _reduce_layer  # noqa: F401
from ._graph import LayerGraph, topological_order
from ._kinds import LayerKind
from ._layer import Layer

__all__ = [
    Layer.__name__,
    LayerGraph.__name__,
    LayerKind.__name__,
    "topological_order",
]
