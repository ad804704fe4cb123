from __future__ import annotations

import numpy as np


def l2_normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise) safely."""
    arr = np.asarray(vec, dtype=np.float32)
    if arr.ndim == 1:
        denom = float(np.linalg.norm(arr))
        if denom < eps:
            return arr
        return arr / denom
    if arr.ndim == 2:
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms = np.maximum(norms, eps)
        return arr / norms
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over the last axis."""
    logits = np.asarray(logits, dtype=np.float32)
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    denom = np.sum(exp, axis=-1, keepdims=True)
    return exp / np.clip(denom, a_min=1e-8, a_max=None)


def face_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Half the euclidean distance between two L2-normalized descriptors.

    Unit vectors are at most 2 apart, so the result lies in [0, 1]
    (0 = identical direction).
    """
    va = l2_normalize(np.asarray(a, dtype=np.float32).reshape(-1))
    vb = l2_normalize(np.asarray(b, dtype=np.float32).reshape(-1))
    return float(np.linalg.norm(va - vb) / 2.0)


def face_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Vectorized `face_distance` of one query against every row of `matrix`."""
    q = l2_normalize(np.asarray(query, dtype=np.float32).reshape(-1))
    mat = l2_normalize(np.asarray(matrix, dtype=np.float32).reshape(-1, q.shape[0]))
    return np.linalg.norm(mat - q[None, :], axis=1) / 2.0
