"""
Input node: graph entry point whose output is written by the executor.
"""

from ...domain._errors import GraphValidationError
from ._kinds import LayerKind
from ._layer import Layer
from ._layer_builder import layer_control_path_manager, missing_kind


@layer_control_path_manager(Layer, Layer.infer_shape, LayerKind.INPUT, missing_kind)
def input_infer_shape(self: Layer, graph):
    if self.parents:
        raise GraphValidationError(f"Input node '{self.name}' cannot have parents.")
    shape = tuple(int(s) for s in self.config.get("shape", ()))
    if not shape or any(s <= 0 for s in shape):
        raise GraphValidationError(
            f"Input node '{self.name}' needs a positive sample shape, got {shape}."
        )
    self.sample_shape = shape
    return shape


@layer_control_path_manager(Layer, Layer.build_params, LayerKind.INPUT, missing_kind)
def input_build_params(self: Layer, rng):
    return None


@layer_control_path_manager(Layer, Layer.forward, LayerKind.INPUT, missing_kind)
def input_forward(self: Layer, graph):
    return None


@layer_control_path_manager(Layer, Layer.backward, LayerKind.INPUT, missing_kind)
def input_backward(self: Layer, graph):
    return None
