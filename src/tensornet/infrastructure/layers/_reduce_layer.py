"""
Reduction node.

``config["axes"]`` are *per-sample* axes: axis 0 is the first axis after the
batch dimension, so the batch axis is never reduced. The forward pass stores
the descriptor and, for max/min, the origin indices needed by the backward
scatter.
"""

from ...domain._errors import AxisOutOfRangeError, GraphValidationError
from ..reduction._descriptor import ReduceDescriptor
from ..reduction._modes import parse_mode
from ..reduction._reduce import delta_reduce, reduce
from ._kinds import LayerKind
from ._layer import Layer
from ._layer_builder import layer_control_path_manager, missing_kind


def _batch_axes(self: Layer):
    return tuple(int(a) + 1 for a in self.config["axes"])


@layer_control_path_manager(Layer, Layer.infer_shape, LayerKind.REDUCE, missing_kind)
def reduce_infer_shape(self: Layer, graph):
    if len(self.parents) != 1:
        raise GraphValidationError(f"Reduce node '{self.name}' needs exactly one parent.")
    in_shape = graph.nodes[self.parents[0]].sample_shape
    axes = tuple(int(a) for a in self.config.get("axes", ()))
    for a in axes:
        if a < 0 or a >= len(in_shape):
            raise AxisOutOfRangeError(a, len(in_shape))
    self.config["axes"] = axes
    self.config["mode"] = parse_mode(self.config.get("mode", "mean"))
    desc = ReduceDescriptor((1,) + tuple(in_shape), _batch_axes(self), self.config.get("keepdims", False))
    self.sample_shape = desc.target_shape[1:]
    return self.sample_shape


@layer_control_path_manager(Layer, Layer.build_params, LayerKind.REDUCE, missing_kind)
def reduce_build_params(self: Layer, rng):
    return None


@layer_control_path_manager(Layer, Layer.forward, LayerKind.REDUCE, missing_kind)
def reduce_forward(self: Layer, graph):
    (x,) = self.input_views(graph)
    res = reduce(
        x,
        _batch_axes(self),
        self.config["mode"],
        self.config.get("keepdims", False),
        unbiased=self.config.get("unbiased", True),
        out=self.output,
    )
    self.state["descriptor"] = res.descriptor
    self.state["origins"] = res.origins


@layer_control_path_manager(Layer, Layer.backward, LayerKind.REDUCE, missing_kind)
def reduce_backward(self: Layer, graph):
    (dx,) = self.parent_deltas(graph)
    delta_reduce(
        self.delta,
        self.state["descriptor"],
        self.config["mode"],
        origins=self.state["origins"],
        out=dx,
        accumulate=True,
    )
