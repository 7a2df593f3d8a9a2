"""
Invariant checks for gauge matrices.

Every representation boundary (orthonormalization, A -> (X, Y), random
initialization) runs one or more of these checks. A check never raises by
itself: it returns a `CheckResult` describing what was tested and by how much
it was violated. `require` turns a failed result into a `GaugeConstraintError`
that names the offending k-point.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from .utils import dagger


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    error: float = 0.0
    atol: float = 0.0
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok

    def __str__(self) -> str:
        status = "ok" if self.ok else "VIOLATED"
        s = f"{self.name}: {status} (error={self.error:.3e}, atol={self.atol:.1e})"
        if self.detail:
            s += f" {self.detail}"
        return s


class GaugeConstraintError(RuntimeError):
    """A gauge matrix broke one of its structural invariants."""

    def __init__(self, result: CheckResult, ik: Optional[int] = None):
        self.result = result
        self.ik = ik
        where = "" if ik is None else f" at k-point {ik}"
        super().__init__(f"{result}{where}")


def require(*results: CheckResult, ik: Optional[int] = None) -> None:
    """Raise on the first failed check."""
    for res in results:
        if not res.ok:
            raise GaugeConstraintError(res, ik=ik)


def _deviation(M: np.ndarray, target: np.ndarray) -> float:
    if M.size == 0:
        return 0.0
    return float(np.linalg.norm(M - target))


def check_semiunitary(B: np.ndarray, atol: float = 1e-10, name: str = "B†B = I") -> CheckResult:
    """Columns of B are orthonormal."""
    n = B.shape[1]
    err = _deviation(dagger(B) @ B, np.eye(n))
    return CheckResult(name, err <= atol, err, atol)


def check_unitary_rows(B: np.ndarray, atol: float = 1e-10, name: str = "BB† = I") -> CheckResult:
    """Rows of B are orthonormal."""
    m = B.shape[0]
    err = _deviation(B @ dagger(B), np.eye(m))
    return CheckResult(name, err <= atol, err, atol)


def check_orthogonal(Uf: np.ndarray, Ur: np.ndarray, atol: float = 1e-10,
                     name: str = "Uf Ur† = 0") -> CheckResult:
    """Row spaces of the frozen and non-frozen blocks are orthogonal."""
    if Uf.size == 0 or Ur.size == 0:
        return CheckResult(name, True, 0.0, atol)
    err = float(np.linalg.norm(Uf @ dagger(Ur)))
    return CheckResult(name, err < atol, err, atol)


def check_close(A: np.ndarray, B: np.ndarray, atol: float, name: str) -> CheckResult:
    if A.shape != B.shape:
        return CheckResult(name, False, np.inf, atol, f"shape {A.shape} != {B.shape}")
    err = _deviation(A, B)
    return CheckResult(name, err <= atol, err, atol)


def check_frozen_count(frozen: np.ndarray, n_wann: int) -> CheckResult:
    """At most n_wann frozen bands."""
    n_froz = int(np.count_nonzero(frozen))
    return CheckResult(
        "n_frozen <= n_wann", n_froz <= n_wann, float(n_froz), float(n_wann),
        f"({n_froz} frozen bands, n_wann={n_wann})",
    )


def check_embedding_blocks(Y: np.ndarray, frozen: np.ndarray, atol: float = 1e-8) -> Iterable[CheckResult]:
    """
    Block structure of the embedding matrix Y.

    With n_froz = count(frozen):
      Y[frozen, :n_froz]  = I
      Y[~frozen, :n_froz] = 0
      Y[frozen, n_froz:]  = 0
    """
    frozen = np.asarray(frozen, bool)
    n_froz = int(np.count_nonzero(frozen))
    Yf = Y[frozen]
    Yr = Y[~frozen]
    return (
        check_close(Yf[:, :n_froz], np.eye(n_froz), atol, "Y[frozen, :n_froz] = I"),
        check_close(Yr[:, :n_froz], np.zeros_like(Yr[:, :n_froz]), atol, "Y[~frozen, :n_froz] = 0"),
        check_close(Yf[:, n_froz:], np.zeros_like(Yf[:, n_froz:]), atol, "Y[frozen, n_froz:] = 0"),
    )


def check_XY(X: np.ndarray, Y: np.ndarray, frozen: np.ndarray, atol: float = 1e-8) -> Iterable[CheckResult]:
    """All postconditions of a single-k (X, Y) pair."""
    return (
        check_semiunitary(Y, atol, "Y†Y = I"),
        check_semiunitary(X, atol, "X†X = I"),
        *check_embedding_blocks(Y, frozen, atol),
    )
