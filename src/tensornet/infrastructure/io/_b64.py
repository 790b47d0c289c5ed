"""
JSON-safe payloads for buffer contents.

A payload carries exactly what a checkpoint collaborator needs from a buffer:
its shape, its device, its dtype and its raw elements (base64, row-major).
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

import numpy as np

from ..buffer._buffer import Buffer


def bytes_to_b64_str(b: bytes) -> str:
    """
    Encode raw bytes into a base64 ASCII string (JSON-safe).
    """
    return base64.b64encode(b).decode("ascii")


def b64_str_to_bytes(s: str) -> bytes:
    """
    Decode a base64 ASCII string back into raw bytes.
    """
    return base64.b64decode(s.encode("ascii"), validate=True)


def buffer_to_payload(buffer: Buffer) -> Dict[str, Any]:
    """
    Serialize a buffer into a JSON-safe payload.

    Accelerator buffers are copied to host memory first.

    Returns
    -------
    dict
        {
          "shape": [...],
          "device": "<device string>",
          "dtype": "<numpy dtype str>",
          "b64": "<base64>"
        }
    """
    a = buffer.to_numpy()
    return {
        "shape": list(a.shape),
        "device": str(buffer.device),
        "dtype": a.dtype.str,  # e.g. "<f4"
        "b64": bytes_to_b64_str(a.tobytes(order="C")),
    }


def payload_to_ndarray(payload: Dict[str, Any]) -> np.ndarray:
    """
    Decode the elements of a payload into an owning host array.

    Raises
    ------
    ValueError
        If the payload is malformed or its byte count does not match its
        shape and dtype.
    """
    try:
        b = b64_str_to_bytes(str(payload["b64"]))
        dtype = np.dtype(str(payload["dtype"]))
        shape = tuple(int(x) for x in payload["shape"])
    except (KeyError, TypeError, binascii.Error) as e:
        raise ValueError(f"Malformed buffer payload: {e}") from e

    expected = int(np.prod(shape, dtype=np.int64)) * dtype.itemsize
    if len(b) != expected:
        raise ValueError(
            f"Payload holds {len(b)} bytes but shape {shape} of {dtype} needs {expected}."
        )
    arr = np.frombuffer(b, dtype=dtype).reshape(shape)
    return np.array(arr, copy=True, order="C")


def payload_to_buffer(payload: Dict[str, Any], device: Optional[Any] = None) -> Buffer:
    """
    Rebuild a buffer from a payload.

    Parameters
    ----------
    device : str or Device, optional
        Target device. Defaults to the device recorded in the payload.
    """
    arr = payload_to_ndarray(payload)
    target = payload.get("device", "cpu") if device is None else device
    return Buffer.from_numpy(arr, device=target, dtype=arr.dtype)
