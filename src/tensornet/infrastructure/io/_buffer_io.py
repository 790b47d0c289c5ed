"""
Buffer load/save contract.

`save_buffer` and `load_buffer` move a single buffer to and from a JSON
document. `save_state` and `load_state` do the same for a named collection
of buffers (used for network weights). Destinations and sources may be a
filesystem path or an open text stream.
"""

from __future__ import annotations

import json
import os
from typing import IO, Any, Dict, Mapping, Optional, Union

from ..buffer._buffer import Buffer
from ._b64 import buffer_to_payload, payload_to_buffer

PathOrStream = Union[str, "os.PathLike[str]", IO[str]]

STATE_FORMAT = "tensornet.weights.v1"


def _dump(document: Dict[str, Any], destination: PathOrStream) -> None:
    if hasattr(destination, "write"):
        json.dump(document, destination)
        return
    with open(destination, "w", encoding="utf-8") as f:
        json.dump(document, f)


def _load(source: PathOrStream) -> Dict[str, Any]:
    if hasattr(source, "read"):
        return json.load(source)
    with open(source, "r", encoding="utf-8") as f:
        return json.load(f)


def save_buffer(buffer: Buffer, destination: PathOrStream) -> None:
    """
    Write `buffer` (shape, device, dtype and raw elements) as JSON.
    """
    _dump(buffer_to_payload(buffer), destination)


def load_buffer(source: PathOrStream, device: Optional[Any] = "cpu") -> Buffer:
    """
    Read a buffer written by `save_buffer`.

    Parameters
    ----------
    device : str or Device, optional
        Target device. Defaults to "cpu"; pass None to restore the device
        recorded in the document.
    """
    return payload_to_buffer(_load(source), device=device)


def save_state(buffers: Mapping[str, Buffer], destination: PathOrStream) -> None:
    """
    Write a named collection of buffers as one JSON document.
    """
    _dump(
        {
            "format": STATE_FORMAT,
            "buffers": {str(k): buffer_to_payload(b) for k, b in buffers.items()},
        },
        destination,
    )


def load_state(source: PathOrStream, device: Optional[Any] = "cpu") -> Dict[str, Buffer]:
    """
    Read a named collection written by `save_state`.

    Raises
    ------
    ValueError
        If the document is not a tensornet state document.
    """
    document = _load(source)
    if document.get("format") != STATE_FORMAT:
        raise ValueError(
            f"Unsupported state format {document.get('format')!r}; expected {STATE_FORMAT!r}."
        )
    return {
        str(k): payload_to_buffer(p, device=device)
        for k, p in document.get("buffers", {}).items()
    }
