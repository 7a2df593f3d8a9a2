"""
Stiefel geometry for the packed (X, Y) gauge.

The feasible set is a product over k-points of

    U(n_wann)  x  { Y : Y†Y = I, frozen block of Y fixed to [I 0] }

The second factor is itself a Stiefel manifold of the free block
Y[~frozen, n_froz:], so both factors are handled by the same two
operations:

- projection of an ambient point back onto the manifold (polar factor, SVD)
- orthogonal projection onto the tangent space, G - Q sym(Q† G)

At a fully frozen k-point (n_froz = n_wann) there is nothing left to move:
both the Y block and the X factor have an empty tangent space.

The optimizer only sees `retract(point, tangent)` and
`project_gradient(point, egrad)`; everything Stiefel-specific stays here.
"""
from __future__ import annotations

import numpy as np

from .gauge import pack_XY, unpack_XY
from .utils import dagger, orthonorm_lowdin


def stiefel_project(Q: np.ndarray) -> np.ndarray:
    """Closest semi-unitary matrix (polar factor), works on stacks."""
    return orthonorm_lowdin(Q)


def stiefel_project_tangent(Q: np.ndarray, G: np.ndarray) -> np.ndarray:
    """Project G onto the tangent space of the Stiefel manifold at Q."""
    QG = dagger(Q) @ G
    return G - Q @ (0.5 * (QG + dagger(QG)))


class GaugeManifold:
    """
    Product of per-k Stiefel factors acting on XY of shape
    (n_kpts, n_wann**2 + n_bands*n_wann).

    Parameters
    ----------
    n_bands, n_wann : matrix sizes
    frozen : (n_kpts, n_bands) bool
    """

    def __init__(self, n_bands: int, n_wann: int, frozen: np.ndarray):
        self.n_bands = n_bands
        self.n_wann = n_wann
        self.frozen = np.asarray(frozen, bool)
        if self.frozen.shape[1] != n_bands:
            raise ValueError(f"frozen must have {n_bands} bands, got {self.frozen.shape[1]}.")
        self.n_kpts = self.frozen.shape[0]
        self.n_froz = self.frozen.sum(axis=1)

    @property
    def shape(self) -> tuple:
        return (self.n_kpts, self.n_wann ** 2 + self.n_bands * self.n_wann)

    def _free_block(self, ik: int):
        """Row mask and column slice of the free block of Y at k."""
        return ~self.frozen[ik], slice(int(self.n_froz[ik]), None)

    def project(self, XY: np.ndarray) -> np.ndarray:
        """Map an ambient point onto the manifold; frozen blocks are reset exactly."""
        X, Y = unpack_XY(XY, self.n_bands, self.n_wann)
        X = stiefel_project(X)
        Y_new = np.zeros_like(Y)
        for ik in range(self.n_kpts):
            n_froz = int(self.n_froz[ik])
            Y_new[ik][self.frozen[ik], :n_froz] = np.eye(n_froz)
            rows, cols = self._free_block(ik)
            Y_new[ik][np.ix_(rows, np.arange(n_froz, self.n_wann))] = stiefel_project(Y[ik][rows, cols])
        return pack_XY(X, Y_new)

    def retract(self, point: np.ndarray, tangent: np.ndarray) -> np.ndarray:
        """SVD retraction: the polar factor of point + tangent."""
        return self.project(point + tangent)

    def project_tangent(self, point: np.ndarray, v: np.ndarray) -> np.ndarray:
        """
        Orthogonal projection of an ambient vector onto the tangent space at point.

        Fully frozen k-points have no tangent directions at all.
        """
        X, Y = unpack_XY(point, self.n_bands, self.n_wann)
        VX, VY = unpack_XY(v, self.n_bands, self.n_wann)
        TX = stiefel_project_tangent(X, VX)
        TY = np.zeros_like(VY)
        for ik in range(self.n_kpts):
            n_froz = int(self.n_froz[ik])
            if n_froz == self.n_wann:
                # the whole gauge is frozen here, X included
                TX[ik] = 0
                continue
            rows, cols = self._free_block(ik)
            TY[ik][np.ix_(rows, np.arange(n_froz, self.n_wann))] = stiefel_project_tangent(
                Y[ik][rows, cols], VY[ik][rows, cols]
            )
        return pack_XY(TX, TY)

    def project_gradient(self, point: np.ndarray, egrad: np.ndarray) -> np.ndarray:
        """Riemannian gradient for the embedded metric."""
        return self.project_tangent(point, egrad)

    @staticmethod
    def inner(a: np.ndarray, b: np.ndarray) -> float:
        """Real inner product Re <a, b>."""
        return float(np.real(np.vdot(a, b)))
