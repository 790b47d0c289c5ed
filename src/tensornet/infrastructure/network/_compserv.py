"""
Compute service: where and how a network's replicas run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple, Union

from ...domain.device._device import Device, as_device

SYNC_POLICIES = ("sum", "average")


@dataclass
class ComputeService:
    """
    Data-parallel execution settings.

    Attributes
    ----------
    devices : Sequence[str | Device]
        One replica per entry; replica 0 runs on ``devices[0]`` and holds the
        authoritative parameters. Host lanes ("cpu:0", "cpu:1", ...) run
        replicas on the host.
    max_workers : int
        Upper bound on concurrently running replica workers.
    sync_policy : str
        How replica gradients are merged into replica 0: "sum" (the optimizer
        then divides by the full batch) or "average".
    local_sync_batches : int
        1 merges gradients every step. ``k > 1`` lets every replica update
        its own parameters with its own optimizer and averages parameters
        into replica 0 every ``k`` steps.

    Raises
    ------
    ValueError
        On an empty device list, an invalid device string or out-of-range
        settings.
    """

    devices: Sequence[Union[str, Device]] = ("cpu",)
    max_workers: int = 8
    sync_policy: str = "sum"
    local_sync_batches: int = 1

    def __post_init__(self) -> None:
        devices: Tuple[Device, ...] = tuple(as_device(d) for d in self.devices)
        if not devices:
            raise ValueError("ComputeService needs at least one device")
        self.devices = devices
        self.max_workers = int(self.max_workers)
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        self.sync_policy = str(self.sync_policy).lower()
        if self.sync_policy not in SYNC_POLICIES:
            raise ValueError(
                f"sync_policy must be one of {SYNC_POLICIES}, got {self.sync_policy!r}"
            )
        self.local_sync_batches = int(self.local_sync_batches)
        if self.local_sync_batches < 1:
            raise ValueError(
                f"local_sync_batches must be >= 1, got {self.local_sync_batches}"
            )

    @property
    def replicas(self) -> int:
        return len(self.devices)

    @property
    def workers(self) -> int:
        """Number of worker threads actually used."""
        return min(self.replicas, self.max_workers)

    @property
    def local_updates(self) -> bool:
        return self.local_sync_batches > 1

    @classmethod
    def cpu(cls, n: int = 1, **kwargs) -> "ComputeService":
        """`n` host-lane replicas ("cpu:0" ... "cpu:<n-1>")."""
        return cls(devices=tuple(f"cpu:{i}" for i in range(int(n))), **kwargs)

    @classmethod
    def gpu(cls, ids: Iterable[int] = (0,), **kwargs) -> "ComputeService":
        """One replica per CUDA device index in `ids`."""
        return cls(devices=tuple(f"cuda:{int(i)}" for i in ids), **kwargs)
