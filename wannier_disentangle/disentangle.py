"""
Disentanglement: minimize the spread over semi-unitary gauges with frozen bands.

Three storage formats are in play (see gauge.py):
    A   (n_kpts, n_bands, n_wann)          what goes in and comes out
    X,Y (n_kpts, n_wann, n_wann), (n_kpts, n_bands, n_wann)
    XY  (n_kpts, n_wann**2 + n_bands*n_wann)  what the optimizer moves

Each evaluation goes XY -> (X, Y) -> A = Y X -> (Omega, G) -> (GX, GY) -> XY.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from .bvectors import BVectors
from .config import DisentangleParameters
from .gauge import XY_ATOL, A_to_XY, GaugeXY, XY_to_A, pack_XY, pullback_gradient, random_XY, unpack_XY
from .manifold import GaugeManifold
from .model import Model
from .optim import lbfgs
from .spread import Spread, SpreadSingularityError, omega, omega_and_grad, print_spread

SpreadFn = Callable[[BVectors, np.ndarray, np.ndarray], Tuple[float, np.ndarray]]


@dataclass
class DisentangleResult:
    """Optimized gauge plus diagnostics."""
    A: np.ndarray
    omega_initial: float
    omega_final: float
    converged: bool
    n_iter: int
    message: str = ""
    omega_input: Optional[float] = None
    spread_initial: Optional[Spread] = None
    spread_final: Optional[Spread] = None
    trace: List[Tuple[int, float, float, float]] = field(default_factory=list)


def get_fg_disentangle(model: Model, spread_fn: SpreadFn = omega_and_grad):
    """
    Objective on the packed XY vector.

    Returns fg(XY) -> (Omega, G_XY) where G_XY packs the pulled-back
    gradients (GX, GY) with the frozen block of GY zeroed. Points where the
    spread is singular evaluate to Omega = inf, which makes the line search
    shorten its step.
    """
    n_bands, n_wann = model.n_bands, model.n_wann
    frozen = model.frozen_bands

    def fg(XY: np.ndarray) -> Tuple[float, np.ndarray]:
        X, Y = unpack_XY(XY, n_bands, n_wann)
        A = XY_to_A(X, Y)
        try:
            Omega, G = spread_fn(model.bvectors, model.M, A)
        except SpreadSingularityError:
            return np.inf, np.zeros_like(XY)
        GX, GY = pullback_gradient(G, X, Y, frozen)
        return Omega, pack_XY(GX, GY)

    return fg


def initial_XY(model: Model, params: DisentangleParameters) -> Tuple[np.ndarray, np.ndarray]:
    """Starting (X, Y), either factored from model.A or random."""
    if params.random_gauge:
        rng = np.random.default_rng(params.seed)
        return random_XY(model.frozen_bands, model.n_wann, rng)
    return A_to_XY(model.A, model.frozen_bands)


def disentangle(
    model: Model,
    params: Optional[DisentangleParameters] = None,
    *,
    spread_fn: Optional[SpreadFn] = None,
    callback: Optional[Callable[[int, np.ndarray, np.ndarray, float], None]] = None,
) -> DisentangleResult:
    """
    Minimize the spread of the model over gauges that keep its frozen bands.

    Parameters
    ----------
    model : Model
    params : DisentangleParameters (defaults if None)
    spread_fn : (bvectors, M, A) -> (Omega, G); defaults to the
        Marzari-Vanderbilt spread in spread.py
    callback : called as callback(iteration, X, Y, Omega) after every step

    Returns
    -------
    DisentangleResult. Non-convergence within the budget is reported through
    `converged=False`; the best gauge found is still returned. `omega_initial`
    is the spread at the optimizer start (after orthonormalization);
    `omega_input` is the spread of model.A itself when that differs from the
    start and the reference spread is used, otherwise None.

    Raises
    ------
    ValueError
        on inconsistent shapes or too many frozen bands (before any work).
    SpreadSingularityError
        if the spread gradient is undefined at the starting gauge.
    GaugeConstraintError
        if the initial gauge cannot be orthonormalized around the frozen
        bands, or a representation check fails.
    """
    params = DisentangleParameters() if params is None else params
    model.validate()
    n_bands, n_wann = model.n_bands, model.n_wann
    frozen = model.frozen_bands
    reference_spread = spread_fn is None
    spread_fn = omega_and_grad if spread_fn is None else spread_fn

    X0, Y0 = initial_XY(model, params)
    A0 = XY_to_A(X0, Y0)

    # a singular start is an error, only trial points later on are forgiven
    omega_initial = float(spread_fn(model.bvectors, model.M, A0)[0])
    spread_initial = omega(model.bvectors, model.M, A0) if reference_spread else None

    omega_input = None
    if reference_spread and not params.random_gauge and not np.allclose(model.A, A0, atol=XY_ATOL):
        omega_input = omega(model.bvectors, model.M, model.A).Omega

    if params.verbose:
        print(f"Disentangle: {model}")
        if omega_input is not None:
            print(f"Spread of the input gauge (before orthonormalization): {omega_input:.5f}")
        print("Initial spread")
        if spread_initial is not None:
            print_spread(spread_initial)
        else:
            print(f"   Ω   = {omega_initial:11.5f}")

    manifold = GaugeManifold(n_bands, n_wann, frozen)
    fg = get_fg_disentangle(model, spread_fn)

    cb = None
    if callback is not None:
        def cb(it, XY, f):
            X, Y = unpack_XY(XY, n_bands, n_wann)
            callback(it, X, Y, f)

    res = lbfgs(
        fg,
        pack_XY(X0, Y0),
        manifold,
        f_tol=params.f_tol,
        g_tol=params.g_tol,
        max_iter=params.max_iter,
        history_size=params.history_size,
        time_limit=params.time_limit,
        linesearch=params.linesearch,
        show_trace=params.show_trace,
        callback=cb,
    )

    gauge = GaugeXY.from_packed(res.x, frozen, n_wann)
    A_min = gauge.to_A()

    if reference_spread:
        spread_final = omega(model.bvectors, model.M, A_min)
        omega_final = spread_final.Omega
    else:
        spread_final = None
        omega_final = float(spread_fn(model.bvectors, model.M, A_min)[0])

    if params.verbose:
        status = "converged" if res.converged else "NOT converged"
        print(f"L-BFGS {status} after {res.n_iter} iterations "
              f"({res.n_fg} spread evaluations): {res.message}")
        print(f"   |g|_inf = {res.g_norm:.3e}")
        print("Final spread")
        if spread_final is not None:
            print_spread(spread_final)
        else:
            print(f"   Ω   = {omega_final:11.5f}")

    return DisentangleResult(
        A=A_min,
        omega_initial=omega_initial,
        omega_final=omega_final,
        converged=res.converged,
        n_iter=res.n_iter,
        message=res.message,
        omega_input=omega_input,
        spread_initial=spread_initial,
        spread_final=spread_final,
        trace=res.trace,
    )
