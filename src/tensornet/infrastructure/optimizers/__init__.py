from ._optimizer import Optimizer
from ._sgd import SGD
from ._adam import Adam

__all__ = [
    Optimizer.__name__,
    SGD.__name__,
    Adam.__name__,
]
