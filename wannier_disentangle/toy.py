"""
A 1D tight-binding chain that produces a self-consistent Model.

The chain has `n_orb` orbitals per cell at positions tau_j = j a / n_orb
along x, a random Hermitian on-site block H0 and a random nearest-cell
hopping H1:

    H(k) = H0 + H1 e^{i k a} + H1† e^{-i k a}

With psi_k the eigenvectors of H(k) (periodic in k), the cell-periodic
parts are u_k = diag(e^{-i k tau}) psi_k, so

    M(k, b) = psi_k† diag(e^{-i b tau}) psi_{k+b}

where b is the cartesian b-vector including its G shift. The trial gauge is
A_k = psi_k† T for a fixed semi-unitary (n_orb, n_wann) trial matrix T.
"""
from __future__ import annotations

from typing import Optional

import numpy as np

from .bvectors import BVectors
from .model import Model
from .utils import dagger, random_unitary

# vacuum along y and z, only sets the (unused) reciprocal vectors there
VACUUM = 10.0


def chain_bvectors(n_kpts: int, a: float = 1.0) -> BVectors:
    """
    Nearest-neighbor b-vectors of an n_kpts mesh along x.

    Two b-vectors per k, +-1/n_kpts (fractional), weights 1/(2 b^2) so that
    sum_b w_b b b^T is the identity along the chain.
    """
    if n_kpts <= 0:
        raise ValueError("n_kpts must be positive.")
    recip_lattice = 2 * np.pi * np.diag([1.0 / a, 1.0 / VACUUM, 1.0 / VACUUM])
    kpoints = np.zeros((n_kpts, 3))
    kpoints[:, 0] = np.arange(n_kpts) / n_kpts

    b = 2 * np.pi / (a * n_kpts)
    weights = np.full(2, 1.0 / (2 * b ** 2))

    kpb_k = np.zeros((n_kpts, 2), dtype=int)
    kpb_b = np.zeros((n_kpts, 2, 3), dtype=int)
    for ik in range(n_kpts):
        for ib, step in enumerate((1, -1)):
            jk = ik + step
            kpb_k[ik, ib] = jk % n_kpts
            kpb_b[ik, ib, 0] = jk // n_kpts
    return BVectors(recip_lattice, kpoints, weights, kpb_k, kpb_b)


def chain_hamiltonian(n_orb: int, rng: np.random.Generator, hopping: float = 1.0):
    """Random on-site block H0 (Hermitian) and hopping block H1."""
    Z = rng.standard_normal((n_orb, n_orb)) + 1j * rng.standard_normal((n_orb, n_orb))
    H0 = 0.5 * (Z + dagger(Z))
    H1 = hopping * (rng.standard_normal((n_orb, n_orb)) + 1j * rng.standard_normal((n_orb, n_orb))) / 2
    return H0, H1


def chain_model(
    n_kpts: int = 4,
    n_orb: int = 4,
    n_wann: int = 2,
    n_bands: Optional[int] = None,
    *,
    seed: Optional[int] = 0,
    a: float = 1.0,
    hopping: float = 1.0,
    trial: Optional[np.ndarray] = None,
) -> Model:
    """
    Build a chain Model with no frozen bands.

    Parameters
    ----------
    n_kpts : number of k-points along the chain
    n_orb : orbitals per cell
    n_wann : number of Wannier functions
    n_bands : lowest bands kept (default: all n_orb)
    seed : seed for the Hamiltonian and the default trial matrix
    a : lattice constant (Angstrom)
    hopping : scale of the inter-cell hopping
    trial : (n_orb, n_wann) trial orbitals; default is a random semi-unitary
        matrix. When n_bands < n_orb the resulting A is not semi-unitary and
        has to go through `orthonorm_freeze` (which `disentangle` does).

    Returns
    -------
    Model with E set to the band energies.
    """
    n_bands = n_orb if n_bands is None else n_bands
    if not (0 < n_wann <= n_bands <= n_orb):
        raise ValueError(f"Need 0 < n_wann <= n_bands <= n_orb, got {n_wann}, {n_bands}, {n_orb}.")
    rng = np.random.default_rng(seed)
    H0, H1 = chain_hamiltonian(n_orb, rng, hopping)
    if trial is None:
        trial = random_unitary(n_orb, n_wann, rng)
    trial = np.asarray(trial, complex)
    if trial.shape != (n_orb, n_wann):
        raise ValueError(f"trial must have shape ({n_orb}, {n_wann}), got {trial.shape}.")

    bvectors = chain_bvectors(n_kpts, a)
    tau = np.arange(n_orb) * a / n_orb

    E = np.zeros((n_kpts, n_bands))
    psi = np.zeros((n_kpts, n_orb, n_bands), dtype=complex)
    for ik, kfrac in enumerate(bvectors.kpoints[:, 0]):
        phase = np.exp(2j * np.pi * kfrac)
        Hk = H0 + H1 * phase + dagger(H1) / phase
        w, v = np.linalg.eigh(Hk)
        E[ik] = w[:n_bands]
        psi[ik] = v[:, :n_bands]

    b_x = bvectors.bvecs_cart[..., 0]                       # (k, b)
    ph = np.exp(-1j * b_x[..., np.newaxis] * tau)           # (k, b, orb)
    M = dagger(psi)[:, np.newaxis] @ (ph[..., np.newaxis] * psi[bvectors.kpb_k])

    A = dagger(psi) @ trial
    return Model(bvectors=bvectors, frozen_bands=None, M=M, A=A, E=E)
