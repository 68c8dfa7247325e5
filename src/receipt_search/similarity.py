"""
Cosine similarity between embedding vectors.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of *a* and *b*.

    Vectors of different length score exactly 0 so that a missing or
    malformed embedding degrades a candidate instead of raising. A zero
    vector also scores 0 rather than NaN.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape or va.size == 0:
        return 0.0

    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0.0:
        return 0.0
    score = float(np.dot(va, vb) / denominator)
    if not np.isfinite(score):
        return 0.0
    return score


def cosine_scores(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Score every row of *vectors* against *query* in one step.

    All rows must have the query's length. Zero-norm rows and non-finite
    results score 0.
    """
    q = np.asarray(query, dtype=float)
    if len(vectors) == 0 or q.size == 0:
        return np.zeros(len(vectors))

    matrix = np.asarray(vectors, dtype=float).reshape(len(vectors), q.size)
    denominators = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = (matrix @ q) / denominators
    return np.where(np.isfinite(sims), sims, 0.0)
