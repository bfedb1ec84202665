"""
Vector math shared by the fuser and the retriever.
"""

from collections.abc import Sequence

import numpy as np


def l2_normalize(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    """Scale a vector to unit L2 norm. Zero vectors are rejected."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0 or not np.isfinite(norm):
        raise ValueError("Cannot normalize a zero or non-finite vector")
    return arr / norm


def project_dimensions(vector: Sequence[float] | np.ndarray, dimensions: int) -> np.ndarray:
    """Zero-pad or truncate to ``dimensions``."""
    arr = np.asarray(vector, dtype=np.float64)
    if arr.shape[0] == dimensions:
        return arr
    if arr.shape[0] > dimensions:
        return arr[:dimensions]
    return np.pad(arr, (0, dimensions - arr.shape[0]))


def fuse(
    vectors: Sequence[Sequence[float] | np.ndarray],
    weights: Sequence[float],
    dimensions: int,
) -> np.ndarray:
    """
    Weighted per-dimension mean of ``vectors``, then L2-normalized.

    Every input is projected to ``dimensions`` first. Weights are renormalized
    to sum to 1, so the result does not depend on their overall scale.
    """
    if not vectors:
        raise ValueError("fuse() needs at least one vector")
    if len(vectors) != len(weights):
        raise ValueError("vectors and weights must have the same length")

    w = np.asarray(weights, dtype=np.float64)
    if np.any(w < 0) or w.sum() <= 0:
        raise ValueError("weights must be non-negative with a positive sum")
    w = w / w.sum()

    stacked = np.stack([project_dimensions(v, dimensions) for v in vectors])
    return l2_normalize(w @ stacked)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    a_arr = np.asarray(a, dtype=np.float64)
    b_arr = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(a_arr) * np.linalg.norm(b_arr)
    if denom == 0:
        return 0.0
    return float(np.dot(a_arr, b_arr) / denom)
