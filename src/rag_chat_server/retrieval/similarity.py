from __future__ import annotations

from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine of the angle between ``a`` and ``b``.

    Returns 0.0 when the vectors differ in length, are empty, or either has
    zero norm. The result is clipped to [-1, 1].
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype="float64")
    vb = np.asarray(b, dtype="float64")

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    value = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, value))
