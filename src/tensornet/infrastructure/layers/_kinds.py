from enum import Enum


class LayerKind(Enum):
    """
    Closed set of operator tags a graph node can carry.

    Attributes
    ----------
    INPUT : LayerKind
        Graph entry point; its output is written by the executor.
    DENSE : LayerKind
        Fully-connected affine map ``x @ W + b``.
    EXP : LayerKind
        Element-wise exponential.
    RELU : LayerKind
        Element-wise rectifier.
    ADD : LayerKind
        Element-wise sum of two or more equally shaped parents.
    REDUCE : LayerKind
        Axis reduction over per-sample axes.
    """

    INPUT = "input"
    DENSE = "dense"
    EXP = "exp"
    RELU = "relu"
    ADD = "add"
    REDUCE = "reduce"
