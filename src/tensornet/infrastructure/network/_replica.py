"""
Device-bound replica of a layer graph.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ...domain.device._device import Device
from ..buffer._buffer import Buffer
from ..layers._graph import LayerGraph
from ..optimizers._optimizer import Optimizer


@dataclass
class Replica:
    """
    One data-parallel copy of the network graph.

    Attributes
    ----------
    index : int
        Replica number; replica 0 holds the authoritative parameters.
    device : Device
        Device every buffer of this replica lives on.
    graph : LayerGraph
        Structural clone (or parameter-sharing copy) of the base graph.
    optimizer : Optional[Optimizer]
        The optimizer updating this replica's parameters: the network's
        optimizer for replica 0, a clone per replica in local-update mode,
        None otherwise.
    start, stop : int
        Slice of the current batch assigned to this replica.
    """

    index: int
    device: Device
    graph: LayerGraph
    optimizer: Optional[Optimizer] = None
    start: int = 0
    stop: int = 0

    @property
    def batch(self) -> int:
        return self.stop - self.start

    def parameters(self, order: Sequence[int]) -> List[Tuple[int, str, Buffer, Buffer]]:
        """
        Return ``(node_index, param_name, parameter, gradient)`` for every
        parameter of the nodes in `order`, in that order.
        """
        return [
            (i, key, p, g)
            for i in order
            for key, p, g in self.graph.nodes[i].parameters()
        ]
