"""
Element-wise nodes: EXP, RELU and ADD.

All three keep the sample shape of their parents. ADD requires two or more
parents with identical sample shapes; no broadcasting is performed.
"""

from ...domain._errors import GraphValidationError
from ..buffer._buffer import Buffer
from ._kinds import LayerKind
from ._layer import Layer
from ._layer_builder import layer_control_path_manager, missing_kind


def _unary_infer_shape(self: Layer, graph):
    if len(self.parents) != 1:
        raise GraphValidationError(
            f"{self.kind.value} node '{self.name}' needs exactly one parent."
        )
    self.sample_shape = graph.nodes[self.parents[0]].sample_shape
    return self.sample_shape


def _no_params(self: Layer, rng):
    return None


for _kind in (LayerKind.EXP, LayerKind.RELU):
    layer_control_path_manager(Layer, Layer.infer_shape, _kind, missing_kind)(
        _unary_infer_shape
    )
for _kind in (LayerKind.EXP, LayerKind.RELU, LayerKind.ADD):
    layer_control_path_manager(Layer, Layer.build_params, _kind, missing_kind)(
        _no_params
    )


@layer_control_path_manager(Layer, Layer.forward, LayerKind.EXP, missing_kind)
def exp_forward(self: Layer, graph):
    (x,) = self.input_views(graph)
    x.apply_unary("exp", out=self.output)


@layer_control_path_manager(Layer, Layer.backward, LayerKind.EXP, missing_kind)
def exp_backward(self: Layer, graph):
    # d exp(x) / dx = exp(x), which is the node's own output
    (dx,) = self.parent_deltas(graph)
    tmp = self.scratch()
    Buffer.mul(self.delta, self.output, out=tmp)
    dx.inc_(tmp)


@layer_control_path_manager(Layer, Layer.forward, LayerKind.RELU, missing_kind)
def relu_forward(self: Layer, graph):
    (x,) = self.input_views(graph)
    x.apply_unary("relu", out=self.output)


@layer_control_path_manager(Layer, Layer.backward, LayerKind.RELU, missing_kind)
def relu_backward(self: Layer, graph):
    (dx,) = self.parent_deltas(graph)
    tmp = self.scratch()
    # sign of the rectified output is the 0/1 mask of positive inputs
    self.output.apply_unary("sign", out=tmp)
    Buffer.mul(tmp, self.delta, out=tmp)
    dx.inc_(tmp)


@layer_control_path_manager(Layer, Layer.infer_shape, LayerKind.ADD, missing_kind)
def add_infer_shape(self: Layer, graph):
    if len(self.parents) < 2:
        raise GraphValidationError(f"Add node '{self.name}' needs at least two parents.")
    shapes = [graph.nodes[p].sample_shape for p in self.parents]
    if any(s != shapes[0] for s in shapes[1:]):
        raise GraphValidationError(
            f"Add node '{self.name}' got mismatched sample shapes {shapes}."
        )
    self.sample_shape = shapes[0]
    return self.sample_shape


@layer_control_path_manager(Layer, Layer.forward, LayerKind.ADD, missing_kind)
def add_forward(self: Layer, graph):
    xs = self.input_views(graph)
    out = self.output
    out.copy_from(xs[0])
    for x in xs[1:]:
        out.inc_(x)


@layer_control_path_manager(Layer, Layer.backward, LayerKind.ADD, missing_kind)
def add_backward(self: Layer, graph):
    for dx in self.parent_deltas(graph):
        dx.inc_(self.delta)
