"""
Layer graph arena and topological ordering.

`LayerGraph` owns its nodes in a list and addresses them by index. Parent and
child relations are index lists on each node, so the graph never holds owning
cycles even when its topology is richly connected.

Nodes without an explicit name are named by the graph's `NameAllocator`
(``dense1``, ``dense2``, ``relu1``, ...). Two graphs built the same way get the
same names regardless of what else was built in the process.
"""

from __future__ import annotations

import heapq
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from ...domain._errors import GraphValidationError
from ...domain.utils._name_allocator import NameAllocator
from ._kinds import LayerKind
from ._layer import Layer


class LayerGraph:
    """
    Arena of layer nodes with a small builder API.

    Parameters
    ----------
    names : NameAllocator, optional
        Allocator for auto-generated node names. A fresh one is created when
        omitted.

    Examples
    --------
    ::

        g = LayerGraph()
        x = g.input((4,))
        h = g.relu(g.dense(x, 8))
        y = g.dense(h, 2)
    """

    def __init__(self, names: Optional[NameAllocator] = None) -> None:
        self.nodes: List[Layer] = []
        self.names = names if names is not None else NameAllocator()
        # read by kinds that behave differently at inference time
        self.training = True

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, index: int) -> Layer:
        return self.nodes[index]

    def _check_index(self, index: int) -> int:
        index = int(index)
        if index < 0 or index >= len(self.nodes):
            raise GraphValidationError(f"Unknown node index {index}.")
        return index

    def index_of(self, name: str) -> int:
        """Return the index of the node called `name`."""
        for i, node in enumerate(self.nodes):
            if node.name == name:
                return i
        raise GraphValidationError(f"Unknown node name {name!r}.")

    def add_node(
        self,
        kind: Any,
        parents: Sequence[int] = (),
        config: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> int:
        """
        Append a node and return its index.

        Raises
        ------
        GraphValidationError
            If a parent index is unknown or `name` is already used.
        """
        kind = LayerKind(kind)
        parents = [self._check_index(p) for p in parents]
        if name is None:
            name = self.names.next(kind.value)
        elif not self.names.reserve(name):
            raise GraphValidationError(f"Duplicate node name {name!r}.")
        index = len(self.nodes)
        self.nodes.append(Layer(kind, name, parents, config))
        for p in parents:
            if index not in self.nodes[p].children:
                self.nodes[p].children.append(index)
        return index

    def connect(self, parent: int, child: int) -> None:
        """
        Add an extra edge ``parent -> child``.

        No acyclicity check happens here; cycles are reported by
        `topological_order`.
        """
        parent = self._check_index(parent)
        child = self._check_index(child)
        self.nodes[child].parents.append(parent)
        if child not in self.nodes[parent].children:
            self.nodes[parent].children.append(child)

    # builder API

    def input(self, shape: Sequence[int], name: Optional[str] = None) -> int:
        """Add an input node with per-sample `shape`."""
        return self.add_node(LayerKind.INPUT, (), {"shape": tuple(shape)}, name)

    def dense(
        self,
        x: int,
        units: int,
        use_bias: bool = True,
        seed: Optional[int] = None,
        name: Optional[str] = None,
    ) -> int:
        """Add a fully-connected node."""
        config = {"units": int(units), "use_bias": bool(use_bias), "seed": seed}
        return self.add_node(LayerKind.DENSE, (x,), config, name)

    def exp(self, x: int, name: Optional[str] = None) -> int:
        return self.add_node(LayerKind.EXP, (x,), None, name)

    def relu(self, x: int, name: Optional[str] = None) -> int:
        return self.add_node(LayerKind.RELU, (x,), None, name)

    def add(self, *xs: int, name: Optional[str] = None) -> int:
        """Add an element-wise sum of two or more nodes."""
        return self.add_node(LayerKind.ADD, xs, None, name)

    def reduce(
        self,
        x: int,
        axes: Iterable[int],
        mode: Any = "mean",
        keepdims: bool = False,
        unbiased: bool = True,
        name: Optional[str] = None,
    ) -> int:
        """
        Add a reduction over per-sample `axes` (axis 0 is the first axis
        after the batch dimension).
        """
        config = {
            "axes": tuple(int(a) for a in axes),
            "mode": mode,
            "keepdims": bool(keepdims),
            "unbiased": bool(unbiased),
        }
        return self.add_node(LayerKind.REDUCE, (x,), config, name)

    # replication

    def clone(self, device: Any, prefix: str = "clone_") -> "LayerGraph":
        """
        Return a structurally identical graph bound to `device` (parameters
        zeroed, see `Layer.clone`).
        """
        return self._replicate([n.clone(device, prefix) for n in self.nodes])

    def share(self, prefix: str = "share_") -> "LayerGraph":
        """
        Return a graph on the same devices whose nodes alias this graph's
        parameters (see `Layer.share`).
        """
        return self._replicate([n.share(prefix) for n in self.nodes])

    def _replicate(self, nodes: List[Layer]) -> "LayerGraph":
        other = LayerGraph()
        other.training = self.training
        for n in nodes:
            other.names.reserve(n.name)
        other.nodes = nodes
        return other


def _ancestors(graph: LayerGraph, outputs: Iterable[int]) -> Set[int]:
    seen: Set[int] = set()
    stack = list(outputs)
    while stack:
        i = stack.pop()
        if i in seen:
            continue
        seen.add(i)
        stack.extend(graph.nodes[i].parents)
    return seen


def topological_order(
    graph: LayerGraph, inputs: Sequence[int], outputs: Sequence[int]
) -> List[int]:
    """
    Return the execution order of the nodes needed to compute `outputs`.

    Kahn's algorithm restricted to the ancestors of `outputs`; among ready
    nodes the lowest index runs first, so the order is deterministic.

    Raises
    ------
    GraphValidationError
        On unknown indices, an empty input or output list, inputs that are not
        input nodes, an undeclared input node feeding an output, a non-input
        node without parents, a cycle, or an output not reachable from any
        input.
    """
    if not inputs or not outputs:
        raise GraphValidationError("A network needs at least one input and one output.")
    inputs = [graph._check_index(i) for i in inputs]
    outputs = [graph._check_index(o) for o in outputs]
    for i in inputs:
        if graph.nodes[i].kind is not LayerKind.INPUT:
            raise GraphValidationError(f"Node '{graph.nodes[i].name}' is not an input node.")

    needed = _ancestors(graph, outputs)
    declared = set(inputs)
    for i in sorted(needed):
        node = graph.nodes[i]
        if node.kind is LayerKind.INPUT and i not in declared:
            raise GraphValidationError(
                f"Input node '{node.name}' feeds an output but is not a declared input."
            )
        if node.kind is not LayerKind.INPUT and not node.parents:
            raise GraphValidationError(f"Node '{node.name}' has no parents.")

    indegree = {i: len(set(graph.nodes[i].parents)) for i in needed}
    ready = [i for i in needed if indegree[i] == 0]
    heapq.heapify(ready)
    order: List[int] = []
    while ready:
        i = heapq.heappop(ready)
        order.append(i)
        for c in graph.nodes[i].children:
            if c in indegree:
                indegree[c] -= 1
                if indegree[c] == 0:
                    heapq.heappush(ready, c)

    if len(order) != len(needed):
        stuck = sorted(graph.nodes[i].name for i in needed if i not in set(order))
        raise GraphValidationError(f"The layer graph contains a cycle through {stuck}.")

    for o in outputs:
        if not (_ancestors(graph, [o]) & declared):
            raise GraphValidationError(
                f"Output '{graph.nodes[o].name}' is not reachable from any input."
            )
    return order
