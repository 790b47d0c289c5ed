from ._reduction import BufferMixinReduction

__all__ = [
    BufferMixinReduction.__name__,
]
