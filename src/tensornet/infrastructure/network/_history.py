"""
Training history returned by `Network.fit()`.

Per-epoch averages of every loss and metric, in epoch order.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Union


Number = Union[int, float]


@dataclass
class History:
    """
    Container for per-epoch training logs.

    Attributes
    ----------
    history : Dict[str, List[float]]
        Mapping from log name (e.g. "loss", "categorical_accuracy") to one
        value per epoch.
    epoch : List[int]
        Zero-based epoch indices, aligned with every list in `history`.
    seen : List[int]
        Number of samples processed in each epoch.
    """

    history: Dict[str, List[float]] = field(default_factory=dict)
    epoch: List[int] = field(default_factory=list)
    seen: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.epoch)

    def append_epoch(self, epoch_idx: int, logs: Mapping[str, Number], seen: int = 0) -> None:
        """
        Record the averaged logs of a completed epoch.
        """
        self.epoch.append(int(epoch_idx))
        self.seen.append(int(seen))
        for k, v in logs.items():
            self.history.setdefault(k, []).append(float(v))

    def last(self) -> Dict[str, float]:
        """Return the logs of the most recent epoch."""
        return {k: float(vs[-1]) for k, vs in self.history.items() if vs}

    def best(self, key: str, mode: str = "min") -> Optional[int]:
        """
        Return the epoch index with the lowest (``mode="min"``) or highest
        (``mode="max"``) value of `key`, or None when nothing was recorded.
        """
        values = self.history.get(key) or []
        if not values:
            return None
        if mode not in ("min", "max"):
            raise ValueError(f"mode must be 'min' or 'max', got {mode!r}")
        pick = min if mode == "min" else max
        return self.epoch[values.index(pick(values))]
