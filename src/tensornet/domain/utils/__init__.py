from ._control_path import create_path_builder
from ._name_allocator import NameAllocator

__all__ = [
    create_path_builder.__name__,
    NameAllocator.__name__,
]
