"""
Stiefel geometry and the Riemannian L-BFGS driver
"""
import pytest
import numpy as np

from wannier_disentangle.config import LineSearchParameters
from wannier_disentangle.gauge import pack_XY, unpack_XY, random_XY
from wannier_disentangle.manifold import GaugeManifold, stiefel_project, stiefel_project_tangent
from wannier_disentangle.optim import lbfgs
from wannier_disentangle.utils import dagger
from wannier_disentangle.validation import check_XY


def _frozen(counts, n_bands):
    frozen = np.zeros((len(counts), n_bands), dtype=bool)
    for ik, n in enumerate(counts):
        frozen[ik, :n] = True
    return frozen


class TestStiefel:

    def test_project_is_semiunitary(self, random_complex):
        Q = stiefel_project(random_complex(5, 3))
        assert np.allclose(dagger(Q) @ Q, np.eye(3))

    def test_tangent_condition(self, random_complex):
        Q = stiefel_project(random_complex(5, 3))
        T = stiefel_project_tangent(Q, random_complex(5, 3))
        # Q†T is skew-Hermitian on the tangent space
        QT = dagger(Q) @ T
        assert np.allclose(QT + dagger(QT), 0)

    def test_tangent_projection_idempotent(self, random_complex):
        Q = stiefel_project(random_complex(4, 2))
        T = stiefel_project_tangent(Q, random_complex(4, 2))
        assert np.allclose(stiefel_project_tangent(Q, T), T)


class TestGaugeManifold:

    def test_retract_stays_feasible(self, rng, random_complex):
        frozen = _frozen([0, 1, 2], 4)
        man = GaugeManifold(4, 2, frozen)
        X, Y = random_XY(frozen, 2, rng)
        XY = pack_XY(X, Y)
        XY2 = man.retract(XY, 0.3 * random_complex(*man.shape))
        X2, Y2 = unpack_XY(XY2, 4, 2)
        for ik in range(3):
            assert all(check_XY(X2[ik], Y2[ik], frozen[ik], 1e-10))
        # fully frozen k-point: Y does not move at all
        assert np.array_equal(Y2[2], Y[2])

    def test_tangent_zero_on_frozen_blocks(self, rng, random_complex):
        frozen = _frozen([1, 2], 4)
        man = GaugeManifold(4, 2, frozen)
        XY = pack_XY(*random_XY(frozen, 2, rng))
        _, TY = unpack_XY(man.project_tangent(XY, random_complex(*man.shape)), 4, 2)
        assert np.all(TY[0][frozen[0]] == 0)
        assert np.all(TY[0][:, :1] == 0)
        assert np.all(TY[1] == 0)

    def test_fully_frozen_kpoint_does_not_move(self, rng, random_complex):
        frozen = _frozen([2, 0], 4)
        man = GaugeManifold(4, 2, frozen)
        XY = pack_XY(*random_XY(frozen, 2, rng))
        TX, TY = unpack_XY(man.project_tangent(XY, random_complex(*man.shape)), 4, 2)
        assert np.all(TX[0] == 0) and np.all(TY[0] == 0)
        X, Y = unpack_XY(XY, 4, 2)
        X2, Y2 = unpack_XY(man.retract(XY, pack_XY(TX, TY)), 4, 2)
        assert np.allclose(X2[0], X[0], atol=1e-12)
        assert np.array_equal(Y2[0], Y[0])

    def test_bad_frozen_shape(self):
        with pytest.raises(ValueError):
            GaugeManifold(4, 2, np.zeros((2, 3), dtype=bool))


class TestLBFGS:

    def test_rayleigh_quotient(self, rng):
        """Minimize tr(Y† H Y) over Stiefel: the optimum is the sum of the lowest eigenvalues."""
        n_bands, n_wann = 6, 2
        Z = rng.standard_normal((n_bands, n_bands)) + 1j * rng.standard_normal((n_bands, n_bands))
        H = 0.5 * (Z + dagger(Z))
        frozen = np.zeros((1, n_bands), dtype=bool)
        man = GaugeManifold(n_bands, n_wann, frozen)

        def fg(XY):
            X, Y = unpack_XY(XY, n_bands, n_wann)
            A = Y @ X
            f = float(np.real(np.trace(dagger(A[0]) @ H @ A[0])))
            G = 2 * H @ A
            return f, pack_XY(dagger(Y) @ G, G @ dagger(X))

        x0 = pack_XY(*random_XY(frozen, n_wann, rng))
        res = lbfgs(fg, x0, man, g_tol=1e-6, f_tol=1e-12, max_iter=500)
        assert res.converged
        assert np.isclose(res.f, np.linalg.eigvalsh(H)[:n_wann].sum(), atol=1e-6)

    def test_stationary_start(self, rng):
        frozen = np.zeros((1, 3), dtype=bool)
        man = GaugeManifold(3, 2, frozen)

        def fg(XY):
            return 1.0, np.zeros_like(XY)

        res = lbfgs(fg, pack_XY(*random_XY(frozen, 2, rng)), man)
        assert res.converged and res.g_converged
        assert res.n_iter == 0
        assert res.message == "gradient below g_tol"

    def test_max_iter_reports_not_converged(self, rng):
        n_bands, n_wann = 6, 3
        Z = rng.standard_normal((n_bands, n_bands)) + 1j * rng.standard_normal((n_bands, n_bands))
        H = 0.5 * (Z + dagger(Z))
        frozen = np.zeros((1, n_bands), dtype=bool)
        man = GaugeManifold(n_bands, n_wann, frozen)

        def fg(XY):
            X, Y = unpack_XY(XY, n_bands, n_wann)
            A = Y @ X
            G = 2 * H @ A
            return float(np.real(np.trace(dagger(A[0]) @ H @ A[0]))), pack_XY(dagger(Y) @ G, G @ dagger(X))

        seen = []
        res = lbfgs(fg, pack_XY(*random_XY(frozen, n_wann, rng)), man,
                    g_tol=1e-14, f_tol=1e-16, max_iter=2,
                    linesearch=LineSearchParameters(c2=0.5),
                    callback=lambda it, x, f: seen.append((it, f)))
        assert not res.converged
        assert "max_iter" in res.message
        assert res.n_iter == 2
        assert [it for it, _ in seen] == [1, 2]
        # best iterate is never worse than the start
        assert res.f <= res.trace[0][1]
