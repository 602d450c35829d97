"""
Cosine similarity between embedding vectors.

Returns ``None`` instead of a number when the similarity is undefined
(mismatched dimensions, empty vectors, zero or non-finite norms) so callers
can skip the pair rather than rank it.
"""

import numpy as np


def vector_norm(vector: np.ndarray) -> float | None:
    """L2 norm of ``vector``, or None when it is zero or not finite."""
    if vector.size == 0:
        return None
    norm = float(np.linalg.norm(vector.astype(np.float64)))
    if norm == 0.0 or not np.isfinite(norm):
        return None
    return norm


def cosine_similarity(
    a: np.ndarray,
    b: np.ndarray,
    a_norm: float | None = None,
) -> float | None:
    """
    Compute ``dot(a, b) / (|a| * |b|)``.

    Args:
        a: First vector (typically the query).
        b: Second vector.
        a_norm: Precomputed norm of ``a``; pass it when comparing one query
            against many stored vectors.

    Returns:
        Similarity in [-1.0, 1.0], or None when undefined.
    """
    if a.shape != b.shape:
        return None
    if a_norm is None:
        a_norm = vector_norm(a)
    b_norm = vector_norm(b)
    if a_norm is None or b_norm is None:
        return None
    # accumulate in float64
    dot = float(np.dot(a.astype(np.float64), b.astype(np.float64)))
    similarity = dot / (a_norm * b_norm)
    if not np.isfinite(similarity):
        return None
    return max(-1.0, min(1.0, similarity))
