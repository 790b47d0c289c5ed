from ._b64 import buffer_to_payload, payload_to_buffer
from ._buffer_io import load_buffer, load_state, save_buffer, save_state

__all__ = [
    buffer_to_payload.__name__,
    payload_to_buffer.__name__,
    save_buffer.__name__,
    load_buffer.__name__,
    save_state.__name__,
    load_state.__name__,
]
