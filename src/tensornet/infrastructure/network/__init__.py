"""
Data-parallel network executor and its configuration.
"""

from ._compserv import ComputeService
from ._history import History
from ._network import Network, StepState, split_batch
from ._replica import Replica

__all__ = [
    ComputeService.__name__,
    History.__name__,
    Network.__name__,
    Replica.__name__,
    StepState.__name__,
    "split_batch",
]
