"""
Numerical helpers for the Newton iteration: norms, central differences,
the rectangular least-squares step, and rank estimation.
"""

from __future__ import annotations

from typing import Callable, Sequence

import numpy as np
from scipy import linalg


def residual_norm(F: np.ndarray) -> float:
    """Euclidean norm of a residual vector; ``inf`` if any entry is non-finite."""
    if F.size == 0:
        return 0.0
    if not np.all(np.isfinite(F)):
        return float("inf")
    return float(np.linalg.norm(F))


def central_difference(
    fn: Callable[[np.ndarray], np.ndarray],
    p: np.ndarray,
    indices: Sequence[int],
    rel_step: float,
) -> np.ndarray:
    """
    Central-difference derivative of ``fn`` with respect to ``p[indices]``.

    The step for parameter *i* is ``rel_step * max(1, |p_i|)``.

    Returns:
        A ``(rows, len(indices))`` array.
    """
    base = np.asarray(fn(p), dtype=np.float64)
    block = np.zeros((base.size, len(indices)), dtype=np.float64)
    work = p.copy()
    for col, i in enumerate(indices):
        h = rel_step * max(1.0, abs(p[i]))
        work[i] = p[i] + h
        f_plus = np.asarray(fn(work), dtype=np.float64)
        work[i] = p[i] - h
        f_minus = np.asarray(fn(work), dtype=np.float64)
        work[i] = p[i]
        block[:, col] = (f_plus - f_minus) / (2.0 * h)
    return block


def least_squares_step(J: np.ndarray, F: np.ndarray, rcond: float) -> np.ndarray:
    """
    Minimum-norm solution of ``J @ dx = -F``.

    ``J`` is generally rectangular (under- and over-constrained sketches), so
    this is the pseudo-inverse step computed with the SVD-based ``gelsd``
    driver.  Singular values below ``rcond * sigma_max`` are discarded.
    """
    m, n = J.shape
    if m == 0 or n == 0:
        return np.zeros(n, dtype=np.float64)
    dx, _res, _rank, _sv = linalg.lstsq(J, -F, cond=rcond, lapack_driver="gelsd")
    return np.asarray(dx, dtype=np.float64)


def singular_values(J: np.ndarray) -> np.ndarray:
    if J.size == 0:
        return np.zeros(0, dtype=np.float64)
    return linalg.svdvals(J)


def numerical_rank(J: np.ndarray, rtol: float) -> int:
    """Number of singular values above ``rtol * sigma_max``."""
    sv = singular_values(J)
    if sv.size == 0 or sv[0] == 0.0:
        return 0
    return int(np.count_nonzero(sv > rtol * sv[0]))


def condition_number(J: np.ndarray) -> float:
    """Ratio of largest to smallest singular value (``inf`` when singular)."""
    sv = singular_values(J)
    if sv.size == 0:
        return 1.0
    if sv[-1] == 0.0:
        return float("inf")
    return float(sv[0] / sv[-1])
