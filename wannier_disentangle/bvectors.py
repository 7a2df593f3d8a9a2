"""
Neighbor (b-vector) geometry needed to interpret the overlap tensor M.

The shell search that produces these vectors belongs to the k-mesh tooling;
this module only stores the result and answers geometric questions about it.

Conventions
-----------
- recip_lattice : (3, 3), rows are the reciprocal lattice vectors (1/Angstrom)
- kpoints : (n_kpts, 3) fractional coordinates
- weights : (n_bvecs,) finite-difference weights w_b
- kpb_k : (n_kpts, n_bvecs) 0-based index of the neighbor k+b
- kpb_b : (n_kpts, n_bvecs, 3) integer G shift such that
          k + b = kpoints[kpb_k] + kpb_b   (fractional)
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property

import numpy as np


@dataclass(frozen=True)
class BVectors:
    recip_lattice: np.ndarray
    kpoints: np.ndarray
    weights: np.ndarray
    kpb_k: np.ndarray
    kpb_b: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "recip_lattice", np.asarray(self.recip_lattice, float))
        object.__setattr__(self, "kpoints", np.asarray(self.kpoints, float))
        object.__setattr__(self, "weights", np.asarray(self.weights, float))
        object.__setattr__(self, "kpb_k", np.asarray(self.kpb_k, int))
        object.__setattr__(self, "kpb_b", np.asarray(self.kpb_b, int))

        if self.recip_lattice.shape != (3, 3):
            raise ValueError("recip_lattice must be (3, 3).")
        if self.kpoints.ndim != 2 or self.kpoints.shape[1] != 3:
            raise ValueError("kpoints must be (n_kpts, 3).")
        n_kpts = self.kpoints.shape[0]
        n_bvecs = self.weights.shape[0]
        if self.kpb_k.shape != (n_kpts, n_bvecs):
            raise ValueError(f"kpb_k must be ({n_kpts}, {n_bvecs}), got {self.kpb_k.shape}.")
        if self.kpb_b.shape != (n_kpts, n_bvecs, 3):
            raise ValueError(f"kpb_b must be ({n_kpts}, {n_bvecs}, 3), got {self.kpb_b.shape}.")
        if np.any(self.kpb_k < 0) or np.any(self.kpb_k >= n_kpts):
            raise ValueError("kpb_k contains out-of-range k-point indices.")

    @property
    def n_kpts(self) -> int:
        return self.kpoints.shape[0]

    @property
    def n_bvecs(self) -> int:
        return self.weights.shape[0]

    @cached_property
    def bvecs_cart(self) -> np.ndarray:
        """
        Cartesian b-vectors for every (k, b) pair.

        Returns
        -------
        b : (n_kpts, n_bvecs, 3)
        """
        k = self.kpoints[:, np.newaxis, :]
        kpb = self.kpoints[self.kpb_k] + self.kpb_b
        return (kpb - k) @ self.recip_lattice

    def check_b1(self, atol: float = 1e-6) -> bool:
        """
        B1 condition of Marzari-Vanderbilt: sum_b w_b b b^T = I at every k.

        Only the directions actually spanned by the b-vectors are tested, so
        that lower dimensional systems (chains, slabs) pass.
        """
        b = self.bvecs_cart
        for ik in range(self.n_kpts):
            bb = np.einsum("b,bi,bj->ij", self.weights, b[ik], b[ik])
            span = np.linalg.matrix_rank(b[ik], tol=atol)
            evals = np.linalg.eigvalsh(bb)
            # the 3 - span null directions have zero eigenvalue, the rest are 1
            if not np.allclose(np.sort(evals)[3 - span:], 1.0, atol=atol):
                return False
        return True
