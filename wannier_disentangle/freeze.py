"""
Frozen bands: choosing them and orthonormalizing a gauge around them.

A frozen band at k must lie exactly inside the span of the gauge columns at k.
Writing the gauge in row blocks A = [Uf; Ur] (frozen rows, non-frozen rows),
a gauge respects the frozen bands when

    A†A = I          (semi-unitary)
    Uf Uf† = I       (the frozen Bloch states are fully represented)
    Uf Ur† = 0       (the remaining columns do not leak into them)
"""
from __future__ import annotations

from typing import Optional

import numpy as np

from .utils import dagger, orthonorm_lowdin
from .validation import (
    CheckResult, GaugeConstraintError, require,
    check_frozen_count, check_semiunitary, check_unitary_rows, check_orthogonal,
)

# singular values below this are treated as exact zeros
SVD_ATOL = 1e-10


def check_frozen(frozen: np.ndarray, n_wann: int) -> None:
    """
    Raise ValueError if any k-point has more than n_wann frozen bands.

    frozen : (n_kpts, n_bands) bool, or a single (n_bands,) mask
    """
    frozen = np.atleast_2d(np.asarray(frozen, bool))
    for ik, frozen_k in enumerate(frozen):
        res = check_frozen_count(frozen_k, n_wann)
        if not res.ok:
            raise ValueError(f"Too many frozen bands at k-point {ik}: {res.detail}")


def orthonorm_freeze(
    A: np.ndarray,
    frozen: np.ndarray,
    *,
    atol: float = SVD_ATOL,
    ik: Optional[int] = None,
) -> np.ndarray:
    """
    Make a single-k gauge semi-unitary while freezing a block of bands.

    Strategy: Löwdin-orthonormalize Uf, project Uf out of Ur, then replace
    Ur by the partial isometry on its range (singular values set to 1).

    Parameters
    ----------
    A : (n_bands, n_wann) complex
    frozen : (n_bands,) bool
    atol : singular values above atol count as independent directions; also
        the tolerance of the final invariant checks.
    ik : k-point index, only used in error messages.

    Returns
    -------
    B : (n_bands, n_wann) complex satisfying the three invariants above.

    Raises
    ------
    ValueError
        if there are more frozen bands than Wannier functions.
    GaugeConstraintError
        if the non-frozen block does not have exactly n_wann - n_froz
        independent directions, or if a final check fails.
    """
    A = np.asarray(A, complex)
    frozen = np.asarray(frozen, bool)
    n_bands, n_wann = A.shape
    if frozen.shape != (n_bands,):
        raise ValueError(f"frozen mask must have shape ({n_bands},), got {frozen.shape}.")
    res = check_frozen_count(frozen, n_wann)
    if not res.ok:
        where = "" if ik is None else f" at k-point {ik}"
        raise ValueError(f"Too many frozen bands{where}: {res.detail}")
    n_froz = int(np.count_nonzero(frozen))
    non_frozen = ~frozen

    # Uf Uf† = I: the trial functions span the frozen Bloch states
    Uf = orthonorm_lowdin(A[frozen, :])

    # remove the frozen projector Uf†Uf from the rows of Ur
    Ur = A[non_frozen, :]
    Ur = Ur - Ur @ dagger(Uf) @ Uf

    # renormalize the range of Ur, keeping exactly n_wann - n_froz directions
    n_keep = n_wann - n_froz
    if Ur.shape[0] > 0:
        U, S, Vh = np.linalg.svd(Ur, full_matrices=False)
        n_indep = int(np.count_nonzero(S > atol))
        if n_indep != n_keep:
            raise GaugeConstraintError(
                CheckResult(
                    "rank(Ur) = n_wann - n_froz", False, float(n_indep), atol,
                    f"({n_indep} singular values above atol, expected {n_keep})",
                ),
                ik=ik,
            )
        S = np.where(S > atol, 1.0, 0.0)
        Ur = (U * S) @ Vh
    elif n_keep != 0:
        raise GaugeConstraintError(
            CheckResult("rank(Ur) = n_wann - n_froz", False, 0.0, atol,
                        f"(no non-frozen bands, expected {n_keep} directions)"),
            ik=ik,
        )

    B = np.empty_like(A)
    B[frozen, :] = Uf
    B[non_frozen, :] = Ur

    require(
        check_semiunitary(B, atol),
        check_unitary_rows(B[frozen, :], atol, "B[frozen]B[frozen]† = I"),
        check_orthogonal(Uf, Ur, atol),
        ik=ik,
    )
    return B


def _extend_degenerate(frozen_k: np.ndarray, E_k: np.ndarray, n_wann: int, degen_atol: float) -> None:
    """Grow the frozen set upward over a cluster of near-degenerate eigenvalues (in place)."""
    if not frozen_k.any():
        return
    ib = int(np.flatnonzero(frozen_k)[-1])
    while ib + 1 < n_wann:
        if E_k[ib + 1] < E_k[ib] + degen_atol:
            ib += 1
            frozen_k[ib] = True
        else:
            break


def set_frozen_win(
    E: np.ndarray,
    dis_froz_max: float,
    dis_froz_min: float = -np.inf,
    *,
    n_wann: int,
    degen: bool = False,
    degen_atol: float = 1e-4,
) -> np.ndarray:
    """
    Frozen bands from an energy window.

    Parameters
    ----------
    E : (n_kpts, n_bands) eigenvalues, ascending at each k
    dis_froz_max, dis_froz_min : inner (frozen) window
    n_wann : number of Wannier functions
    degen : if True, also freeze bands (near-)degenerate with the highest
        frozen band, so a degenerate cluster is never split by the window.
    degen_atol : energy tolerance for degeneracy

    Returns
    -------
    frozen : (n_kpts, n_bands) bool
    """
    if degen_atol <= 0:
        raise ValueError("degen_atol must be positive")
    E = np.asarray(E, float)
    frozen = (E >= dis_froz_min) & (E <= dis_froz_max)
    if degen:
        for ik in range(E.shape[0]):
            _extend_degenerate(frozen[ik], E[ik], n_wann, degen_atol)
    check_frozen(frozen, n_wann)
    return frozen


def set_frozen_proj(
    A: np.ndarray,
    dis_proj_max: float,
    *,
    E: Optional[np.ndarray] = None,
    degen: bool = False,
    degen_atol: float = 1e-4,
) -> np.ndarray:
    """
    Frozen bands from projectability.

    The projectability of band m at k is sum_n |A[k, m, n]|^2 in [0, 1];
    bands with projectability >= dis_proj_max are frozen.

    Parameters
    ----------
    A : (n_kpts, n_bands, n_wann) gauge / projection matrices
    dis_proj_max : projectability threshold
    E : (n_kpts, n_bands) eigenvalues, needed only when degen=True

    Returns
    -------
    frozen : (n_kpts, n_bands) bool
    """
    if degen_atol <= 0:
        raise ValueError("degen_atol must be positive")
    A = np.asarray(A, complex)
    n_wann = A.shape[2]
    proj = np.sum(np.abs(A) ** 2, axis=2)
    frozen = proj >= dis_proj_max
    if degen:
        if E is None:
            raise ValueError("degen=True requires the eigenvalues E.")
        E = np.asarray(E, float)
        for ik in range(A.shape[0]):
            _extend_degenerate(frozen[ik], E[ik], n_wann, degen_atol)
    check_frozen(frozen, n_wann)
    return frozen
