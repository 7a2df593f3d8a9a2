"""
Marzari-Vanderbilt quadratic spread in the finite-difference (b-vector) form.

With the rotated overlaps N(k,b) = A_k† M(k,b) A_{k+b}:

    r_n      = -1/Nk sum_{k,b} w_b b Im ln N_nn
    <r^2>_n  =  1/Nk sum_{k,b} w_b [1 - |N_nn|^2 + (Im ln N_nn)^2]
    omega_n  = <r^2>_n - |r_n|^2
    Omega    = sum_n omega_n

and the usual split Omega = Omega_I + Omega_OD + Omega_D (exact when the
b-vectors satisfy the B1 condition).

The optimizer only needs `omega_and_grad`; any callable with the same
signature can be used instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .bvectors import BVectors
from .utils import dagger

# |N_nn| below this makes Im ln N_nn meaningless
NKB_ATOL = 1e-10


class SpreadSingularityError(ValueError):
    """Some diagonal overlap N_nn vanished, so the spread gradient is undefined."""


@dataclass(frozen=True)
class Spread:
    Omega: float          # total spread, Angstrom^2
    OmegaI: float         # gauge-invariant part
    OmegaOD: float        # off-diagonal part
    OmegaD: float         # diagonal part
    spreads: np.ndarray   # (n_wann,) per-function spreads
    centers: np.ndarray   # (n_wann, 3) cartesian centers

    @property
    def OmegaT(self) -> float:
        """Gauge-dependent part Omega_OD + Omega_D."""
        return self.OmegaOD + self.OmegaD


def rotate_M(M: np.ndarray, kpb_k: np.ndarray, A: np.ndarray) -> np.ndarray:
    """
    Rotate overlaps into the gauge A.

    Parameters
    ----------
    M : (n_kpts, n_bvecs, n_bands, n_bands)
    kpb_k : (n_kpts, n_bvecs)
    A : (n_kpts, n_bands, n_wann)

    Returns
    -------
    N : (n_kpts, n_bvecs, n_wann, n_wann), N[k,b] = A_k† M[k,b] A_{k+b}
    """
    return dagger(A)[:, np.newaxis] @ M @ A[kpb_k]


def _centers(bvectors: BVectors, imlog: np.ndarray) -> np.ndarray:
    Nk = bvectors.n_kpts
    return -np.einsum("b,kbi,kbn->ni", bvectors.weights, bvectors.bvecs_cart, imlog) / Nk


def center(bvectors: BVectors, M: np.ndarray, A: np.ndarray) -> np.ndarray:
    """Wannier centers r_n, shape (n_wann, 3)."""
    N = rotate_M(M, bvectors.kpb_k, A)
    imlog = np.angle(np.diagonal(N, axis1=-2, axis2=-1))
    return _centers(bvectors, imlog)


def _spread_from_N(bvectors: BVectors, N: np.ndarray) -> Spread:
    Nk = bvectors.n_kpts
    w = bvectors.weights
    n_wann = N.shape[-1]

    Nd = np.diagonal(N, axis1=-2, axis2=-1)   # (k, b, n)
    abs2_d = np.abs(Nd) ** 2
    imlog = np.angle(Nd)
    r = _centers(bvectors, imlog)

    r2 = np.einsum("b,kbn->n", w, 1.0 - abs2_d + imlog ** 2) / Nk
    spreads = r2 - np.sum(r ** 2, axis=1)

    abs2_sum = np.sum(np.abs(N) ** 2, axis=(-2, -1))  # (k, b)
    OmegaI = float(np.einsum("b,kb->", w, n_wann - abs2_sum) / Nk)
    OmegaOD = float(np.einsum("b,kb->", w, abs2_sum - abs2_d.sum(axis=-1)) / Nk)
    q = imlog + np.einsum("kbi,ni->kbn", bvectors.bvecs_cart, r)
    OmegaD = float(np.einsum("b,kbn->", w, q ** 2) / Nk)

    return Spread(
        Omega=float(spreads.sum()),
        OmegaI=OmegaI,
        OmegaOD=OmegaOD,
        OmegaD=OmegaD,
        spreads=spreads,
        centers=r,
    )


def omega(bvectors: BVectors, M: np.ndarray, A: np.ndarray) -> Spread:
    """Spread of the gauge A."""
    N = rotate_M(M, bvectors.kpb_k, A)
    return _spread_from_N(bvectors, N)


def _grad_from_N(bvectors: BVectors, M: np.ndarray, A: np.ndarray,
                 N: np.ndarray, r: np.ndarray) -> np.ndarray:
    Nk = bvectors.n_kpts
    w = bvectors.weights
    kpb_k = bvectors.kpb_k

    Nd = np.diagonal(N, axis1=-2, axis2=-1)
    small = np.abs(Nd) < NKB_ATOL
    if np.any(small):
        ik, ib, n = np.argwhere(small)[0]
        raise SpreadSingularityError(
            f"|N_nn| too small at k-point {ik}, b-vector {ib}, WF {n}: "
            "the gauge is too far from localized to evaluate Im ln N."
        )
    q = np.angle(Nd) + np.einsum("kbi,ni->kbn", bvectors.bvecs_cart, r)

    # dOmega = Re tr(H† dN) with H diagonal
    H = (w[np.newaxis, :, np.newaxis] / Nk) * (-2.0 * Nd + 2j * q / np.conj(Nd))

    # N = A_k† M A_{k+b}  =>  G_k += M A_{k+b} H†,  G_{k+b} += M† A_k H
    MA_kpb = M @ A[kpb_k]                                   # (k, b, nb, nw)
    G = np.sum(MA_kpb * np.conj(H)[..., np.newaxis, :], axis=1)
    MdA_k = dagger(M) @ A[:, np.newaxis]                    # (k, b, nb, nw)
    np.add.at(G, kpb_k, MdA_k * H[..., np.newaxis, :])
    return G


def omega_grad(bvectors: BVectors, M: np.ndarray, A: np.ndarray) -> np.ndarray:
    """
    Euclidean gradient of the total spread with respect to A.

    Convention: dOmega = Re sum conj(G) dA, i.e. G = 2 dOmega/d conj(A).

    Returns
    -------
    G : (n_kpts, n_bands, n_wann)
    """
    N = rotate_M(M, bvectors.kpb_k, A)
    r = _centers(bvectors, np.angle(np.diagonal(N, axis1=-2, axis2=-1)))
    return _grad_from_N(bvectors, M, A, N, r)


def omega_and_grad(bvectors: BVectors, M: np.ndarray, A: np.ndarray) -> Tuple[float, np.ndarray]:
    """(Omega, G) sharing the rotated overlaps; the signature the optimizer consumes."""
    N = rotate_M(M, bvectors.kpb_k, A)
    spread = _spread_from_N(bvectors, N)
    G = _grad_from_N(bvectors, M, A, N, spread.centers)
    return spread.Omega, G


def print_spread(spread: Spread) -> None:
    """Print centers, spreads and the Omega decomposition."""
    print("  WF     center [rx, ry, rz]/Å              spread/Å²")
    for i, (c, s) in enumerate(zip(spread.centers, spread.spreads), 1):
        print(f"{i:4d} {c[0]:11.5f} {c[1]:11.5f} {c[2]:11.5f} {s:11.5f}")
    print("Sum spread: Ω = ΩI + Ω̃, Ω̃ = ΩOD + ΩD")
    print(f"   ΩI  = {spread.OmegaI:11.5f}")
    print(f"   Ω̃   = {spread.OmegaT:11.5f}")
    print(f"   ΩOD = {spread.OmegaOD:11.5f}")
    print(f"   ΩD  = {spread.OmegaD:11.5f}")
    print(f"   Ω   = {spread.Omega:11.5f}")
