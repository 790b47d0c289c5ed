"""
Reduction kinds understood by the axis reduction engine.
"""

from __future__ import annotations

from enum import Enum
from typing import Union


class ReduceMode(Enum):
    """
    Enumeration of reduction kinds.

    Notes
    -----
    - ``MAX``/``MIN``/``ARGMAX``/``ARGMIN`` record origin indices.
    - ``ARGMAX``/``ARGMIN`` values are positions *within* each group.
    - ``ALL``/``ANY`` test for non-zero elements and yield 1.0 or 0.0.
    """

    SUM = "sum"
    MEAN = "mean"
    PROD = "prod"
    MAX = "max"
    MIN = "min"
    ARGMAX = "argmax"
    ARGMIN = "argmin"
    VAR = "var"
    STD = "std"
    MODE = "mode"
    MEDIAN = "median"
    ALL = "all"
    ANY = "any"
    NORM = "norm"
    SUM_ABS = "sum_abs"


_ALIASES = {
    "avg": ReduceMode.MEAN,
    "average": ReduceMode.MEAN,
    "product": ReduceMode.PROD,
    "variance": ReduceMode.VAR,
    "l2": ReduceMode.NORM,
    "fro": ReduceMode.NORM,
    "frobenius": ReduceMode.NORM,
    "l1": ReduceMode.SUM_ABS,
}

ORIGIN_MODES = frozenset(
    {ReduceMode.MAX, ReduceMode.MIN, ReduceMode.ARGMAX, ReduceMode.ARGMIN}
)
"""Kinds whose result selects one source element per group."""

GRADIENT_MODES = frozenset(
    {ReduceMode.SUM, ReduceMode.MEAN, ReduceMode.MAX, ReduceMode.MIN}
)
"""Kinds for which `delta_reduce` is defined."""


def parse_mode(mode: Union[str, ReduceMode]) -> ReduceMode:
    """
    Resolve a reduction kind from an enum member or a (case-insensitive) name.

    Raises
    ------
    ValueError
        If the name is unknown.
    """
    if isinstance(mode, ReduceMode):
        return mode
    key = str(mode).strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return ReduceMode(key)
    except ValueError:
        raise ValueError(f"Unknown reduction mode {mode!r}") from None
