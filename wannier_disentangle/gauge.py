"""
Three equivalent encodings of the per-k gauge.

- A  : (n_kpts, n_bands, n_wann), the format used by the rest of the package
- (X, Y) : X (n_kpts, n_wann, n_wann) unitary rotation,
           Y (n_kpts, n_bands, n_wann) semi-unitary embedding whose frozen
           block is fixed to [I 0], so that A = Y X
- XY : (n_kpts, n_wann**2 + n_bands*n_wann), X and Y stored contiguously
       per k, the working vector of the optimizer

Conversions are explicit and checked; no representation is ever produced
without its invariants being verified.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .freeze import check_frozen, orthonorm_freeze
from .utils import dagger, orthonorm_lowdin, random_unitary
from .validation import check_XY, check_close, require

# tolerance of the (X, Y) postconditions
XY_ATOL = 1e-8


def _check_frozen_shape(frozen: np.ndarray, n_kpts: int, n_bands: int) -> np.ndarray:
    frozen = np.asarray(frozen, bool)
    if frozen.shape != (n_kpts, n_bands):
        raise ValueError(f"frozen must have shape ({n_kpts}, {n_bands}), got {frozen.shape}.")
    return frozen


def XY_to_A(X: np.ndarray, Y: np.ndarray) -> np.ndarray:
    """A = Y X at every k."""
    X = np.asarray(X, complex)
    Y = np.asarray(Y, complex)
    if X.ndim != 3 or Y.ndim != 3:
        raise ValueError("X and Y must be 3D (n_kpts, ., n_wann) arrays.")
    n_kpts, n_bands, n_wann = Y.shape
    if X.shape != (n_kpts, n_wann, n_wann):
        raise ValueError(f"X must have shape ({n_kpts}, {n_wann}, {n_wann}), got {X.shape}.")
    return Y @ X


def A_to_XY(A: np.ndarray, frozen: np.ndarray, *, atol: float = XY_ATOL) -> Tuple[np.ndarray, np.ndarray]:
    """
    Factor a gauge into (X, Y).

    At each k the gauge is first passed through `orthonorm_freeze`; Y then
    gets the identity on the frozen block and, for the free columns, the
    eigenvectors of the non-frozen projector Ur Ur† with the largest
    eigenvalues; finally X = Löwdin(Y† B).

    Parameters
    ----------
    A : (n_kpts, n_bands, n_wann)
    frozen : (n_kpts, n_bands) bool

    Returns
    -------
    X : (n_kpts, n_wann, n_wann)
    Y : (n_kpts, n_bands, n_wann)
    """
    A = np.asarray(A, complex)
    n_kpts, n_bands, n_wann = A.shape
    frozen = _check_frozen_shape(frozen, n_kpts, n_bands)

    X = np.zeros((n_kpts, n_wann, n_wann), dtype=complex)
    Y = np.zeros((n_kpts, n_bands, n_wann), dtype=complex)

    for ik in range(n_kpts):
        idx_f = frozen[ik]
        idx_nf = ~idx_f
        n_froz = int(np.count_nonzero(idx_f))

        B = orthonorm_freeze(A[ik], idx_f, ik=ik)
        Ur = B[idx_nf, :]

        Yk = Y[ik]
        Yk[idx_f, :n_froz] = np.eye(n_froz)
        if n_froz != n_wann:
            Pr = Ur @ dagger(Ur)
            Pr = 0.5 * (Pr + dagger(Pr))
            _, V = np.linalg.eigh(Pr)  # ascending eigenvalues
            Yk[idx_nf, n_froz:] = V[:, n_froz - n_wann:]

        X[ik] = orthonorm_lowdin(dagger(Yk) @ B)

        require(
            *check_XY(X[ik], Yk, idx_f, atol),
            check_close(Yk @ X[ik], B, atol, "YX = B"),
            ik=ik,
        )

    return X, Y


def pack_XY(X: np.ndarray, Y: np.ndarray) -> np.ndarray:
    """(X, Y) -> XY, row-major flattening of X then Y at each k."""
    n_kpts = X.shape[0]
    if Y.shape[0] != n_kpts:
        raise ValueError("X and Y must have the same number of k-points.")
    return np.concatenate([X.reshape(n_kpts, -1), Y.reshape(n_kpts, -1)], axis=1)


def unpack_XY(XY: np.ndarray, n_bands: int, n_wann: int) -> Tuple[np.ndarray, np.ndarray]:
    """XY -> (X, Y), inverse of `pack_XY`."""
    XY = np.asarray(XY)
    n_x = n_wann * n_wann
    if XY.ndim != 2 or XY.shape[1] != n_x + n_bands * n_wann:
        raise ValueError(
            f"XY must have shape (n_kpts, {n_x + n_bands * n_wann}), got {XY.shape}."
        )
    n_kpts = XY.shape[0]
    X = XY[:, :n_x].reshape(n_kpts, n_wann, n_wann)
    Y = XY[:, n_x:].reshape(n_kpts, n_bands, n_wann)
    return X, Y


def random_XY(
    frozen: np.ndarray,
    n_wann: int,
    rng: Optional[np.random.Generator] = None,
    *,
    atol: float = XY_ATOL,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Random feasible (X, Y).

    X is a random unitary; Y carries the identity on its frozen block and a
    random semi-unitary (n_bands - n_froz, n_wann - n_froz) block on the
    non-frozen rows and free columns.
    """
    rng = np.random.default_rng() if rng is None else rng
    frozen = np.asarray(frozen, bool)
    n_kpts, n_bands = frozen.shape
    check_frozen(frozen, n_wann)

    X = np.zeros((n_kpts, n_wann, n_wann), dtype=complex)
    Y = np.zeros((n_kpts, n_bands, n_wann), dtype=complex)
    for ik in range(n_kpts):
        idx_f = frozen[ik]
        n_froz = int(np.count_nonzero(idx_f))
        X[ik] = random_unitary(n_wann, n_wann, rng)
        Y[ik][idx_f, :n_froz] = np.eye(n_froz)
        if n_froz != n_wann:
            Y[ik][~idx_f, n_froz:] = random_unitary(n_bands - n_froz, n_wann - n_froz, rng)
        require(*check_XY(X[ik], Y[ik], idx_f, atol), ik=ik)
    return X, Y


def pullback_gradient(
    G: np.ndarray,
    X: np.ndarray,
    Y: np.ndarray,
    frozen: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Chain rule through A = Y X.

    GX = Y† G, GY = G X†, with GY zeroed on the frozen rows and on the first
    n_froz columns so the frozen block is never moved. At a fully frozen
    k-point (n_froz = n_wann) GX is zeroed as well and the gauge there does
    not change at all.
    """
    GX = dagger(Y) @ G
    GY = G @ dagger(X)
    for ik, idx_f in enumerate(np.asarray(frozen, bool)):
        n_froz = int(np.count_nonzero(idx_f))
        GY[ik, idx_f, :] = 0
        GY[ik, :, :n_froz] = 0
        if n_froz == X.shape[-1]:
            GX[ik] = 0
    return GX, GY


@dataclass(frozen=True)
class GaugeXY:
    """
    A validated (X, Y) pair with its frozen mask.

    Use the constructors `from_A`, `from_packed` or `random`; the plain
    constructor does not check anything until `validate()` is called.
    """
    X: np.ndarray
    Y: np.ndarray
    frozen: np.ndarray

    @property
    def n_kpts(self) -> int:
        return self.Y.shape[0]

    @property
    def n_bands(self) -> int:
        return self.Y.shape[1]

    @property
    def n_wann(self) -> int:
        return self.Y.shape[2]

    def validate(self, atol: float = XY_ATOL) -> "GaugeXY":
        for ik in range(self.n_kpts):
            require(*check_XY(self.X[ik], self.Y[ik], self.frozen[ik], atol), ik=ik)
        return self

    @classmethod
    def from_A(cls, A: np.ndarray, frozen: np.ndarray) -> "GaugeXY":
        X, Y = A_to_XY(A, frozen)
        return cls(X, Y, np.asarray(frozen, bool))

    @classmethod
    def from_packed(cls, XY: np.ndarray, frozen: np.ndarray, n_wann: int) -> "GaugeXY":
        frozen = np.asarray(frozen, bool)
        X, Y = unpack_XY(XY, frozen.shape[1], n_wann)
        return cls(X, Y, frozen).validate()

    @classmethod
    def random(cls, frozen: np.ndarray, n_wann: int,
               rng: Optional[np.random.Generator] = None) -> "GaugeXY":
        X, Y = random_XY(frozen, n_wann, rng)
        return cls(X, Y, np.asarray(frozen, bool))

    def to_A(self) -> np.ndarray:
        return XY_to_A(self.X, self.Y)

    def pack(self) -> np.ndarray:
        return pack_XY(self.X, self.Y)
