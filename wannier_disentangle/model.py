"""
The data needed for maximal localization, bundled and shape-checked.

Model holds read-only inputs for the optimizer:
- bvectors : BVectors (neighbor geometry)
- frozen_bands : (n_kpts, n_bands) bool
- M : (n_kpts, n_bvecs, n_bands, n_bands) overlaps <u_mk|u_n,k+b>
- A : (n_kpts, n_bands, n_wann) initial gauge
- E : (n_kpts, n_bands) band energies (optional, needed for energy windows
      and `rotate_gauge`)
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from .bvectors import BVectors
from .freeze import check_frozen
from .spread import rotate_M
from .utils import dagger, identity_stack


@dataclass
class Model:
    bvectors: BVectors
    frozen_bands: np.ndarray
    M: np.ndarray
    A: np.ndarray
    E: Optional[np.ndarray] = None

    def __post_init__(self):
        self.M = np.asarray(self.M, complex)
        self.A = np.asarray(self.A, complex)
        if self.frozen_bands is None:
            self.frozen_bands = np.zeros(self.A.shape[:2], dtype=bool)
        self.frozen_bands = np.asarray(self.frozen_bands, bool)
        if self.E is not None:
            self.E = np.asarray(self.E, float)
        self.validate()

    @property
    def n_kpts(self) -> int:
        return self.A.shape[0]

    @property
    def n_bands(self) -> int:
        return self.A.shape[1]

    @property
    def n_wann(self) -> int:
        return self.A.shape[2]

    @property
    def n_bvecs(self) -> int:
        return self.bvectors.n_bvecs

    def validate(self) -> None:
        """Raise ValueError on any shape mismatch between A, M, frozen_bands, E, bvectors."""
        if self.A.ndim != 3:
            raise ValueError(f"A must be (n_kpts, n_bands, n_wann), got shape {self.A.shape}.")
        n_kpts, n_bands, n_wann = self.A.shape
        if n_wann > n_bands:
            raise ValueError(f"n_wann={n_wann} cannot exceed n_bands={n_bands}.")
        if self.bvectors.n_kpts != n_kpts:
            raise ValueError(f"bvectors has {self.bvectors.n_kpts} k-points, A has {n_kpts}.")
        expected_M = (n_kpts, self.bvectors.n_bvecs, n_bands, n_bands)
        if self.M.shape != expected_M:
            raise ValueError(f"M must have shape {expected_M}, got {self.M.shape}.")
        if self.frozen_bands.shape != (n_kpts, n_bands):
            raise ValueError(
                f"frozen_bands must have shape ({n_kpts}, {n_bands}), got {self.frozen_bands.shape}."
            )
        if self.E is not None and self.E.shape != (n_kpts, n_bands):
            raise ValueError(f"E must have shape ({n_kpts}, {n_bands}), got {self.E.shape}.")
        check_frozen(self.frozen_bands, n_wann)

    def with_frozen(self, frozen_bands: np.ndarray) -> "Model":
        """Copy of the model with a different frozen mask."""
        return replace(self, frozen_bands=np.asarray(frozen_bands, bool))

    def with_gauge(self, A: np.ndarray) -> "Model":
        """Copy of the model with a different gauge."""
        return replace(self, A=np.asarray(A, complex))

    def __str__(self) -> str:
        return (
            f"Model(n_bands={self.n_bands}, n_wann={self.n_wann}, "
            f"n_kpts={self.n_kpts}, n_bvecs={self.n_bvecs}, "
            f"n_frozen(max)={int(self.frozen_bands.sum(axis=1).max(initial=0))})"
        )


def rotate_gauge(model: Model, A: np.ndarray, *, diag_H: bool = False, atol: float = 1e-8) -> Model:
    """
    Rotate a model into the gauge A.

    The overlaps become A_k† M A_{k+b}, the energies the diagonal of
    A_k† diag(E_k) A_k, and the new gauge is the identity. The frozen mask is
    dropped.

    Parameters
    ----------
    A : (n_kpts, n_bands, n_wann)
    diag_H : if the rotated Hamiltonian is not diagonal at some k, diagonalize
        it there, rotate M once more by its eigenvectors V and store V† as the
        gauge, so the returned model still represents the input gauge A.
        Otherwise a non-diagonal rotated Hamiltonian raises ValueError.

    Raises
    ------
    ValueError
        on shape mismatch, missing energies, a rotated Hamiltonian that is not
        Hermitian or not diagonal (without diag_H), or complex eigenvalues.
    """
    A = np.asarray(A, complex)
    if A.ndim != 3 or A.shape[:2] != (model.n_kpts, model.n_bands):
        raise ValueError(f"A must have shape ({model.n_kpts}, {model.n_bands}, n_wann), got {A.shape}.")
    if model.E is None:
        raise ValueError("rotate_gauge needs the band energies E.")
    n_kpts, _, n_wann = A.shape

    A2 = identity_stack(n_kpts, n_wann)
    E2 = np.zeros((n_kpts, n_wann), dtype=float)
    V2 = identity_stack(n_kpts, n_wann)
    diag_kpts = []

    for ik in range(n_kpts):
        Ak = A[ik]
        H = dagger(Ak) @ (model.E[ik][:, np.newaxis] * Ak)
        if np.linalg.norm(H - dagger(H)) > atol:
            raise ValueError(f"H is not Hermitian after gauge rotation at k-point {ik}")
        eps = np.diag(H)
        if np.linalg.norm(H - np.diag(eps)) > atol:
            if not diag_H:
                raise ValueError(f"H is not diagonal after gauge rotation at k-point {ik}")
            eps, V2[ik] = np.linalg.eigh(H)
            diag_kpts.append(ik)
        if np.any(np.abs(np.imag(eps)) > atol):
            raise ValueError(f"H has non-zero imaginary part at k-point {ik}")
        E2[ik] = np.real(eps)

    M2 = rotate_M(model.M, model.bvectors.kpb_k, A)
    if diag_kpts:
        M2 = rotate_M(M2, model.bvectors.kpb_k, V2)
        # keep the input gauge: store the inverse of the eigenvectors
        for ik in diag_kpts:
            A2[ik] = dagger(V2[ik])

    return Model(
        bvectors=model.bvectors,
        frozen_bands=np.zeros((n_kpts, n_wann), dtype=bool),
        M=M2,
        A=A2,
        E=E2,
    )
