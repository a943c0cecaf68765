from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Score every row of ``matrix`` against ``query``. Zero-magnitude rows score 0."""
    q = np.asarray(query, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)

    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    if q_norm == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)

    denom = row_norms * q_norm
    dots = matrix @ q
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    np.divide(dots, denom, out=scores, where=denom != 0)
    return scores
