"""
Layer control-path manager.

Operator kinds register their implementations against a `LayerKind`:

    @layer_control_path_manager(Layer, Layer.forward, LayerKind.DENSE)
    def dense_forward(self, graph): ...

At runtime ``layer.forward(graph)`` dispatches on ``layer.kind``.
"""

from ...domain.utils._control_path import create_path_builder

# Control-path manager that dispatches Layer methods based on `self.kind`
layer_control_path_manager = create_path_builder("kind")


def missing_kind(method, kind) -> NotImplementedError:
    """Trap factory used when a kind has no implementation of `method`."""
    value = getattr(kind, "value", kind)
    return NotImplementedError(f"Layer kind '{value}' does not implement {method.__name__}()")
