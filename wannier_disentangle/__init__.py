"""
wannier_disentangle: maximal localization with frozen bands.

The package is split into modules:
- config: parameter dataclasses
- validation: invariant checks and GaugeConstraintError
- utils: small linear-algebra helpers
- freeze: frozen-band masks and frozen-aware orthonormalization
- gauge: A <-> (X, Y) <-> packed XY conversions, gradient pullback
- bvectors: b-vector geometry
- spread: Marzari-Vanderbilt spread, centers and gradient
- manifold: Stiefel geometry of the (X, Y) gauge
- optim: Riemannian L-BFGS
- model: input bundle and gauge rotation
- disentangle: the driver
- toy: a 1D chain model for examples and tests
"""
from .config import DisentangleParameters, LineSearchParameters
from .validation import CheckResult, GaugeConstraintError
from .utils import orthonorm_lowdin, random_unitary
from .freeze import check_frozen, orthonorm_freeze, set_frozen_win, set_frozen_proj
from .gauge import (A_to_XY, XY_to_A, pack_XY, unpack_XY, random_XY, pullback_gradient,
                    GaugeXY)
from .bvectors import BVectors
from .spread import (Spread, SpreadSingularityError, rotate_M, center, omega, omega_grad,
                     omega_and_grad, print_spread)
from .manifold import GaugeManifold
from .optim import LBFGSResult, lbfgs
from .model import Model, rotate_gauge
from .disentangle import DisentangleResult, disentangle, get_fg_disentangle
from .toy import chain_bvectors, chain_model

__all__ = [
    "DisentangleParameters", "LineSearchParameters",
    "CheckResult", "GaugeConstraintError",
    "orthonorm_lowdin", "random_unitary",
    "check_frozen", "orthonorm_freeze", "set_frozen_win", "set_frozen_proj",
    "A_to_XY", "XY_to_A", "pack_XY", "unpack_XY", "random_XY", "pullback_gradient",
    "GaugeXY",
    "BVectors",
    "Spread", "SpreadSingularityError", "rotate_M", "center", "omega", "omega_grad",
    "omega_and_grad", "print_spread",
    "GaugeManifold",
    "LBFGSResult", "lbfgs",
    "Model", "rotate_gauge",
    "DisentangleResult", "disentangle", "get_fg_disentangle",
    "chain_bvectors", "chain_model",
]
