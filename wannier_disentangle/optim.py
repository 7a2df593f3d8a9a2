"""
Limited-memory BFGS on a Riemannian (embedded) manifold.

The driver is generic: it works on complex arrays of any shape and needs a
manifold object exposing

    retract(point, tangent) -> point
    project_tangent(point, v) -> tangent
    project_gradient(point, egrad) -> tangent

Following the embedded-manifold recipe, the (s, y) history pairs are taken as
plain differences in the ambient space (no vector transport), the two-loop
direction is projected onto the current tangent space, and the line search
runs on alpha -> f(retract(x, alpha d)) with the projected gradient as the
derivative. Complex arrays are treated as real vectors of (Re, Im) pairs, so
the inner product is Re <a, b>.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import time
from typing import Callable, List, Optional, Tuple
import warnings

import numpy as np
from scipy.optimize import line_search

from .config import LineSearchParameters
from .utils import complex_to_real, real_to_complex

FG = Callable[[np.ndarray], Tuple[float, np.ndarray]]


def _dot(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.real(np.vdot(a, b)))


@dataclass
class LBFGSResult:
    x: np.ndarray
    f: float
    g_norm: float
    n_iter: int
    n_fg: int
    converged: bool
    f_converged: bool = False
    g_converged: bool = False
    message: str = ""
    trace: List[Tuple[int, float, float, float]] = field(default_factory=list)


class _Objective:
    """Projected objective with a one-point cache (f and g are requested separately)."""

    def __init__(self, fg: FG, manifold):
        self.fg = fg
        self.manifold = manifold
        self.n_calls = 0
        self._key: Optional[bytes] = None
        self._val: Optional[Tuple[float, np.ndarray]] = None

    def __call__(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        key = x.tobytes()
        if key != self._key:
            f, egrad = self.fg(x)
            g = self.manifold.project_gradient(x, egrad)
            self.n_calls += 1
            self._key, self._val = key, (float(f), g)
        return self._val


def _two_loop(g: np.ndarray, history) -> np.ndarray:
    """Apply the L-BFGS inverse-Hessian approximation to g."""
    q = g.copy()
    alphas = []
    for s, y, rho in reversed(history):
        a = rho * _dot(s, q)
        alphas.append(a)
        q -= a * y
    if history:
        s, y, _ = history[-1]
        q *= _dot(s, y) / _dot(y, y)
    for (s, y, rho), a in zip(history, reversed(alphas)):
        b = rho * _dot(y, q)
        q += (a - b) * s
    return q


def _wolfe_step(obj: _Objective, manifold, x: np.ndarray, d: np.ndarray, f: float,
                g: np.ndarray, f_prev: Optional[float], ls: LineSearchParameters):
    """Strong-Wolfe step along the retraction curve; returns alpha or None."""
    shape = x.shape

    def phi(z):
        return obj(manifold.retract(x, real_to_complex(z, shape) - x))[0]

    def dphi(z):
        return complex_to_real(obj(manifold.retract(x, real_to_complex(z, shape) - x))[1])

    if f_prev is None:
        # first step of length ~1, as scipy's BFGS does
        f_prev = f + np.linalg.norm(g) / 2
    with warnings.catch_warnings():
        # LineSearchWarning is a RuntimeWarning; failure is reported via alpha=None
        warnings.simplefilter("ignore", RuntimeWarning)
        alpha, *_ = line_search(
            phi, dphi, complex_to_real(x), complex_to_real(d), complex_to_real(g),
            old_fval=f, old_old_fval=f_prev,
            c1=ls.c1, c2=ls.c2, amax=ls.amax, maxiter=ls.maxiter,
        )
    return alpha


def lbfgs(
    fg: FG,
    x0: np.ndarray,
    manifold,
    *,
    f_tol: float = 1e-10,
    g_tol: float = 1e-8,
    max_iter: int = 1000,
    history_size: int = 20,
    time_limit: Optional[float] = None,
    linesearch: LineSearchParameters = LineSearchParameters(),
    show_trace: bool = False,
    callback: Optional[Callable[[int, np.ndarray, float], None]] = None,
) -> LBFGSResult:
    """
    Minimize fg over a manifold.

    Parameters
    ----------
    fg : x -> (f, euclidean_gradient)
    x0 : starting point (projected onto the manifold first)
    manifold : see module docstring
    f_tol : stop when |f_new - f_old| <= f_tol * |f_new|
    g_tol : stop when max |projected gradient| <= g_tol
    max_iter : iteration budget
    history_size : number of stored (s, y) pairs
    time_limit : wall-clock budget in seconds, checked between iterations
    callback : called as callback(iteration, x, f) after every accepted step

    Returns
    -------
    LBFGSResult holding the best iterate found. Running out of iterations,
    time or line-search progress is reported through `converged=False` and
    `message`, never raised.
    """
    t0 = time.perf_counter()
    obj = _Objective(fg, manifold)
    x = manifold.retract(np.asarray(x0, complex), np.zeros_like(x0, dtype=complex))
    f, g = obj(x)
    g_norm = float(np.max(np.abs(g))) if g.size else 0.0

    best = (f, x, g_norm)
    trace = [(0, f, g_norm, 0.0)]
    if show_trace:
        print("Iter     Function value    Gradient norm      Step")
        print(f"{0:6d} {f:18.10e} {g_norm:16.8e}")

    history = deque(maxlen=history_size)
    f_prev: Optional[float] = None
    f_conv = False
    g_conv = g_norm <= g_tol
    message = "gradient below g_tol" if g_conv else ""
    it = 0

    while not (f_conv or g_conv):
        if it >= max_iter:
            message = f"reached max_iter={max_iter}"
            break
        if time_limit is not None and time.perf_counter() - t0 > time_limit:
            message = f"reached time_limit={time_limit} s"
            break
        it += 1

        d = -manifold.project_tangent(x, _two_loop(g, history))
        if _dot(d, g) >= 0:
            history.clear()
            d = -g

        alpha = _wolfe_step(obj, manifold, x, d, f, g, f_prev, linesearch)
        if alpha is None and history:
            # retry once along steepest descent with a fresh history
            history.clear()
            d = -g
            alpha = _wolfe_step(obj, manifold, x, d, f, g, f_prev, linesearch)
        if alpha is None:
            message = "line search failed"
            it -= 1
            break

        x_new = manifold.retract(x, alpha * d)
        f_new, g_new = obj(x_new)

        s = x_new - x
        y = g_new - g
        sy = _dot(s, y)
        if sy > 1e-14 * max(1.0, _dot(y, y)):
            history.append((s, y, 1.0 / sy))

        f_conv = abs(f_new - f) <= f_tol * abs(f_new)
        f_prev, f, x, g = f, f_new, x_new, g_new
        g_norm = float(np.max(np.abs(g))) if g.size else 0.0
        g_conv = g_norm <= g_tol

        step = float(np.linalg.norm(s))
        trace.append((it, f, g_norm, step))
        if show_trace:
            print(f"{it:6d} {f:18.10e} {g_norm:16.8e} {step:12.4e}")
        if callback is not None:
            callback(it, x, f)
        # f may go up between iterations; keep the lowest point seen
        if f <= best[0]:
            best = (f, x, g_norm)

    if g_conv:
        message = "gradient below g_tol"
    elif f_conv:
        message = "relative change of f below f_tol"

    f_best, x_best, g_best = best
    return LBFGSResult(
        x=x_best,
        f=f_best,
        g_norm=g_best,
        n_iter=it,
        n_fg=obj.n_calls,
        converged=f_conv or g_conv,
        f_converged=f_conv,
        g_converged=g_conv,
        message=message,
        trace=trace,
    )
