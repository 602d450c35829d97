"""Binary codec for embedding vectors.

Vectors are stored as contiguous native-endian float32 values, 4 bytes per
element, so a 768-dimension embedding occupies 3072 bytes.
"""

from collections.abc import Sequence

import numpy as np

FLOAT32_SIZE = 4


class MalformedBlobError(ValueError):
    """Stored embedding bytes cannot be decoded into float32 values."""


def encode_vector(vector: Sequence[float] | np.ndarray) -> bytes:
    """Encode a vector as native-endian float32 bytes."""
    return np.asarray(vector, dtype=np.float32).tobytes()


def decode_vector(blob: bytes | bytearray | memoryview) -> np.ndarray:
    """Decode bytes produced by :func:`encode_vector`.

    Raises:
        MalformedBlobError: If ``blob`` is not bytes-like or its length is
            not a multiple of 4.
    """
    if not isinstance(blob, (bytes, bytearray, memoryview)):
        raise MalformedBlobError(f"Unsupported blob type: {type(blob).__name__}")
    if len(blob) % FLOAT32_SIZE != 0:
        raise MalformedBlobError(f"Blob length {len(blob)} is not a multiple of {FLOAT32_SIZE}")
    return np.frombuffer(blob, dtype=np.float32)
