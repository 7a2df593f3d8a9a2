"""
Small linear-algebra utilities used across the package.
"""
from __future__ import annotations

from typing import Optional

import numpy as np


def dagger(A: np.ndarray) -> np.ndarray:
    """Conjugate transpose over the last two axes (works on stacks)."""
    return np.conj(np.swapaxes(A, -1, -2))


def orthonorm_lowdin(W: np.ndarray) -> np.ndarray:
    """
    Löwdin (symmetric) orthonormalization: W -> W (W†W)^(-1/2)

    Computed as the polar factor U V† of the thin SVD W = U S V†, which is
    the same matrix for full-rank W but stays defined for wide matrices
    (orthonormal rows) and stacks of matrices.

    Parameters
    ----------
    W : (..., m, n) complex
    """
    W = np.asarray(W)
    if W.shape[-1] == 0 or W.shape[-2] == 0:
        return W.copy()
    U, _, Vh = np.linalg.svd(W, full_matrices=False)
    return U @ Vh


def random_unitary(m: int, n: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Random semi-unitary (m, n) matrix, Löwdin-orthonormalized complex Gaussian.

    Orthonormal columns if m >= n, orthonormal rows otherwise.
    """
    rng = np.random.default_rng() if rng is None else rng
    Z = rng.standard_normal((m, n)) + 1j * rng.standard_normal((m, n))
    return orthonorm_lowdin(Z)


def identity_stack(n_kpts: int, n: int, dtype=complex) -> np.ndarray:
    """(n_kpts, n, n) stack of identities."""
    return np.broadcast_to(np.eye(n, dtype=dtype), (n_kpts, n, n)).copy()


def complex_to_real(z: np.ndarray) -> np.ndarray:
    """View a complex array as a flat real vector of (Re, Im) pairs."""
    return np.ascontiguousarray(z, dtype=complex).reshape(-1).view(float)


def real_to_complex(x: np.ndarray, shape) -> np.ndarray:
    """Inverse of `complex_to_real`."""
    return np.ascontiguousarray(x, dtype=float).view(complex).reshape(shape)
