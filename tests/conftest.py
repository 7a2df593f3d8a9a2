"""
Pytest configuration and fixtures
"""

import pytest
import numpy as np
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def random_complex(rng):
    """Factory for random complex Gaussian matrices."""
    def _make(*shape):
        return rng.standard_normal(shape) + 1j * rng.standard_normal(shape)
    return _make


@pytest.fixture
def quiet_params():
    """Optimizer settings for fast, silent tests."""
    from wannier_disentangle.config import DisentangleParameters
    return DisentangleParameters(max_iter=200, verbose=False)


@pytest.fixture
def chain():
    """Small 1D chain: 4 k-points, 4 orbitals, 2 Wannier functions."""
    from wannier_disentangle.toy import chain_model
    return chain_model(n_kpts=4, n_orb=4, n_wann=2, seed=1)


@pytest.fixture
def chain_frozen(chain):
    """The chain with its lowest band frozen at every k-point."""
    frozen = np.zeros((chain.n_kpts, chain.n_bands), dtype=bool)
    frozen[:, 0] = True
    return chain.with_frozen(frozen)
