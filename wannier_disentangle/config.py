"""
Configuration and parameter objects.

This module is intentionally "dumb": it only defines dataclasses and light
validation. No linear algebra happens here.

Design goals
------------
- Avoid hidden globals: tolerances and iteration caps are passed explicitly
  into `disentangle`.
- Make runs reproducible: parameters can be saved/loaded as JSON.
- Reject bad configurations before any optimization work starts.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Optional
import json


@dataclass(frozen=True)
class LineSearchParameters:
    """
    Strong-Wolfe line search settings (passed to `scipy.optimize.line_search`).

    c1 : sufficient-decrease constant
    c2 : curvature constant, must satisfy 0 < c1 < c2 < 1
    amax : largest step length tried
    maxiter : maximum number of line-search iterations
    """
    c1: float = 1e-4
    c2: float = 0.9
    amax: float = 50.0
    maxiter: int = 20

    def __post_init__(self) -> None:
        if not (0.0 < self.c1 < self.c2 < 1.0):
            raise ValueError(f"Need 0 < c1 < c2 < 1, got c1={self.c1}, c2={self.c2}.")
        if self.amax <= 0:
            raise ValueError("amax must be positive.")
        if self.maxiter <= 0:
            raise ValueError("maxiter must be positive.")


@dataclass(frozen=True)
class DisentangleParameters:
    """
    Parameters controlling the disentanglement optimizer.

    Tolerances
    ----------
    f_tol : relative change of the spread between iterations, |Δf| <= f_tol |f|
    g_tol : infinity norm of the projected (Riemannian) gradient

    Budgets
    -------
    max_iter : maximum number of quasi-Newton iterations
    time_limit : wall-clock budget in seconds (None = unlimited). Checked
        only at iteration boundaries.

    Initial gauge
    -------------
    random_gauge : start from random (X, Y) respecting the frozen blocks
        instead of the model's A.
    seed : seed for the random initial gauge.
    """
    f_tol: float = 1e-10
    g_tol: float = 1e-8
    max_iter: int = 1000
    history_size: int = 20
    random_gauge: bool = False
    seed: Optional[int] = None
    time_limit: Optional[float] = None
    show_trace: bool = False
    verbose: bool = True
    linesearch: LineSearchParameters = field(default_factory=LineSearchParameters)

    def __post_init__(self) -> None:
        if not self.f_tol > 0:
            raise ValueError(f"f_tol must be positive, got {self.f_tol}.")
        if not self.g_tol > 0:
            raise ValueError(f"g_tol must be positive, got {self.g_tol}.")
        if self.max_iter <= 0:
            raise ValueError(f"max_iter must be positive, got {self.max_iter}.")
        if self.history_size <= 0:
            raise ValueError(f"history_size must be positive, got {self.history_size}.")
        if self.time_limit is not None and not self.time_limit > 0:
            raise ValueError(f"time_limit must be positive or None, got {self.time_limit}.")
        if isinstance(self.linesearch, dict):
            # coming from JSON
            object.__setattr__(self, "linesearch", LineSearchParameters(**self.linesearch))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    @staticmethod
    def from_json(path: str) -> "DisentangleParameters":
        with open(path, "r") as f:
            d = json.load(f)
        return DisentangleParameters(**d)
