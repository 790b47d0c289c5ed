"""
Dense (fully-connected) node.

Shape conventions
-----------------
- x : (batch, in_features)
- W : (in_features, units)
- b : (units,)  (omitted when ``use_bias`` is False)
- y : (batch, units)

Backward rule for ``y = x @ W + b``:

- dL/dW += x^T @ dL/dy
- dL/db += sum(dL/dy, axis=0)
- dL/dx += dL/dy @ W^T

Parameters use Glorot-uniform weights and zero bias. The random generator
is seeded from ``config["seed"]`` when given, otherwise the generator passed
by the network build is used.
"""

import math

import numpy as np

from ...domain._errors import GraphValidationError
from ..buffer._buffer import Buffer
from ..reduction._reduce import reduce
from ._kinds import LayerKind
from ._layer import Layer
from ._layer_builder import layer_control_path_manager, missing_kind


@layer_control_path_manager(Layer, Layer.infer_shape, LayerKind.DENSE, missing_kind)
def dense_infer_shape(self: Layer, graph):
    if len(self.parents) != 1:
        raise GraphValidationError(f"Dense node '{self.name}' needs exactly one parent.")
    in_shape = graph.nodes[self.parents[0]].sample_shape
    if in_shape is None or len(in_shape) != 1:
        raise GraphValidationError(
            f"Dense node '{self.name}' expects 1-D samples, got {in_shape}."
        )
    units = int(self.config.get("units", 0))
    if units <= 0:
        raise GraphValidationError(f"Dense node '{self.name}' needs units > 0.")
    self.config["in_features"] = int(in_shape[0])
    self.sample_shape = (units,)
    return self.sample_shape


@layer_control_path_manager(Layer, Layer.build_params, LayerKind.DENSE, missing_kind)
def dense_build_params(self: Layer, rng):
    seed = self.config.get("seed")
    if seed is not None:
        rng = np.random.default_rng(seed)
    fan_in = self.config["in_features"]
    fan_out = self.sample_shape[0]
    limit = math.sqrt(6.0 / float(fan_in + fan_out))
    w = rng.uniform(-limit, limit, size=(fan_in, fan_out)).astype(np.float32)
    self.add_param("W", w)
    if self.config.get("use_bias", True):
        self.add_param("b", np.zeros((fan_out,), dtype=np.float32))


@layer_control_path_manager(Layer, Layer.forward, LayerKind.DENSE, missing_kind)
def dense_forward(self: Layer, graph):
    (x,) = self.input_views(graph)
    out = self.output
    Buffer.matmul(x, self.params["W"], out=out)
    if "b" in self.params:
        Buffer.sum2d_rowwise(out, self.params["b"], out=out)


@layer_control_path_manager(Layer, Layer.backward, LayerKind.DENSE, missing_kind)
def dense_backward(self: Layer, graph):
    (x,) = self.input_views(graph)
    (dx,) = self.parent_deltas(graph)
    d = self.delta
    Buffer.matmul(x, d, out=self.grads["W"], trans_a=True, accumulate=True)
    if "b" in self.params:
        reduce(d, (0,), "sum", out=self.grads["b"], accumulate=True)
    Buffer.matmul(d, self.params["W"], out=dx, trans_b=True, accumulate=True)
