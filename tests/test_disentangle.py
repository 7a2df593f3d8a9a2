"""
End-to-end disentanglement runs
"""
import pytest
import numpy as np

from wannier_disentangle.config import DisentangleParameters
from wannier_disentangle.disentangle import disentangle, get_fg_disentangle, initial_XY
from wannier_disentangle.freeze import set_frozen_win
from wannier_disentangle.gauge import XY_to_A, pack_XY, unpack_XY
from wannier_disentangle.model import Model
from wannier_disentangle.spread import SpreadSingularityError, omega, omega_and_grad
from wannier_disentangle.toy import chain_bvectors, chain_model
from wannier_disentangle.utils import dagger, identity_stack, random_unitary


def _identity_model(rng, frozen=None):
    """n_bands=4, n_wann=2, one k-point, M(k, b) = I."""
    bv = chain_bvectors(1)
    M = identity_stack(bv.n_bvecs, 4).reshape(1, bv.n_bvecs, 4, 4)
    A = random_unitary(4, 2, rng)[np.newaxis]
    return Model(bv, frozen, M, A)


class _FrozenRecorder:
    """Callback keeping the frozen rows of Y at every iterate."""

    def __init__(self, frozen):
        self.frozen = frozen
        self.rows = []
        self.Y = []

    def __call__(self, it, X, Y, f):
        self.rows.append([Y[ik][self.frozen[ik]].copy() for ik in range(Y.shape[0])])
        self.Y.append(Y.copy())


class TestTrivialOverlaps:

    def test_no_frozen_converges_immediately(self, rng, quiet_params):
        model = _identity_model(rng)
        res = disentangle(model, quiet_params)
        assert res.converged
        assert res.n_iter == 0
        assert res.omega_final <= res.omega_initial + 1e-12
        assert np.allclose(dagger(res.A[0]) @ res.A[0], np.eye(2))

    def test_one_frozen_band(self, rng, quiet_params):
        frozen = np.array([[False, True, False, False]])
        model = _identity_model(rng, frozen)
        res = disentangle(model, quiet_params)
        assert res.converged
        Af = res.A[0][frozen[0]]
        assert np.allclose(Af @ dagger(Af), 1.0)
        assert np.linalg.norm(Af @ dagger(res.A[0][~frozen[0]])) < 1e-8


class TestChain:

    def test_spread_decreases(self, chain, quiet_params):
        res = disentangle(chain, quiet_params)
        assert res.converged, res.message
        assert res.omega_final < res.omega_initial
        assert np.isclose(res.omega_initial, omega(chain.bvectors, chain.M, chain.A).Omega)
        assert np.isclose(res.omega_final, res.spread_final.Omega)
        for ik in range(chain.n_kpts):
            assert np.allclose(dagger(res.A[ik]) @ res.A[ik], np.eye(chain.n_wann), atol=1e-8)

    def test_frozen_block_never_drifts(self, chain_frozen, quiet_params):
        frozen = chain_frozen.frozen_bands
        rec = _FrozenRecorder(frozen)
        res = disentangle(chain_frozen, quiet_params, callback=rec)
        assert res.converged, res.message
        assert res.omega_final < res.omega_initial
        assert len(rec.rows) == res.n_iter > 0
        for rows in rec.rows:
            for ik in range(chain_frozen.n_kpts):
                # exactly [1, 0] on the frozen row, not merely close
                assert np.array_equal(rows[ik], np.array([[1.0, 0.0]]))
        for ik in range(chain_frozen.n_kpts):
            Af = res.A[ik][frozen[ik]]
            assert np.allclose(Af @ dagger(Af), 1.0)
            assert np.linalg.norm(Af @ dagger(res.A[ik][~frozen[ik]])) < 1e-8

    def test_fully_frozen_kpoint(self, chain, quiet_params):
        frozen = np.zeros((chain.n_kpts, chain.n_bands), dtype=bool)
        frozen[0, :2] = True
        frozen[1:, 0] = True
        model = chain.with_frozen(frozen)

        X0, Y0 = initial_XY(model, quiet_params)
        _, g = get_fg_disentangle(model)(pack_XY(X0, Y0))
        GX, GY = unpack_XY(g, model.n_bands, model.n_wann)
        assert np.all(GX[0] == 0) and np.all(GY[0] == 0)
        assert np.any(GX[1] != 0)

        rec = _FrozenRecorder(frozen)
        res = disentangle(model, quiet_params, callback=rec)
        assert res.converged, res.message
        assert res.omega_final < res.omega_initial
        for Y in rec.Y:
            assert np.array_equal(Y[0], Y0[0])
        # the non-frozen bands never enter at the fully frozen k-point
        assert np.all(res.A[0][~frozen[0]] == 0)
        assert np.allclose(res.A[0][frozen[0]] @ dagger(res.A[0][frozen[0]]), np.eye(2))
        # nothing at all moves there, X included
        assert np.allclose(res.A[0], XY_to_A(X0, Y0)[0], atol=1e-10)


class TestSingularSpread:

    def test_singular_point_evaluates_to_inf(self, chain_frozen, quiet_params):
        def spread_fn(bvectors, M, A):
            raise SpreadSingularityError("|N_nn| too small")

        XY = pack_XY(*initial_XY(chain_frozen, quiet_params))
        f, g = get_fg_disentangle(chain_frozen, spread_fn)(XY)
        assert f == np.inf
        assert g.shape == XY.shape and np.all(g == 0)

    def test_singular_start_raises(self, chain_frozen, quiet_params):
        def spread_fn(bvectors, M, A):
            raise SpreadSingularityError("|N_nn| too small")

        with pytest.raises(SpreadSingularityError):
            disentangle(chain_frozen, quiet_params, spread_fn=spread_fn)

    def test_line_search_backs_off_singular_region(self, chain_frozen, quiet_params):
        X0, Y0 = initial_XY(chain_frozen, quiet_params)
        A0 = XY_to_A(X0, Y0)
        hits = []

        def spread_fn(bvectors, M, A):
            if np.abs(A - A0).max() > 0.05:
                hits.append(1)
                raise SpreadSingularityError("|N_nn| too small")
            return omega_and_grad(bvectors, M, A)

        params = DisentangleParameters(max_iter=30, verbose=False)
        res = disentangle(chain_frozen, params, spread_fn=spread_fn)
        assert hits
        assert np.isfinite(res.omega_final)
        assert res.omega_final <= res.omega_initial
        assert np.abs(res.A - A0).max() <= 0.05

    def test_nearly_degenerate_frozen_window(self):
        # three of four WFs frozen everywhere; trial steps can cross |N_nn| = 0
        model = chain_model(n_kpts=10, n_orb=8, n_wann=4, seed=4)
        frozen = set_frozen_win(model.E, model.E[:, 3].min() - 1e-3, n_wann=4, degen=True)
        model = model.with_frozen(frozen)
        res = disentangle(model, DisentangleParameters(max_iter=500, verbose=False))
        assert np.isfinite(res.omega_final)
        assert res.omega_final <= res.omega_initial + 1e-12
        for ik in range(model.n_kpts):
            Af = res.A[ik][frozen[ik]]
            assert np.allclose(Af @ dagger(Af), np.eye(len(Af)), atol=1e-8)
            assert np.linalg.norm(Af @ dagger(res.A[ik][~frozen[ik]])) < 1e-8


class TestOptions:

    def test_random_gauge_is_seeded(self, chain_frozen):
        params = DisentangleParameters(random_gauge=True, seed=11, max_iter=5, verbose=False)
        r1 = disentangle(chain_frozen, params)
        r2 = disentangle(chain_frozen, params)
        assert r1.omega_initial == r2.omega_initial
        assert np.allclose(r1.A, r2.A)
        assert not np.isclose(r1.omega_initial, omega(chain_frozen.bvectors, chain_frozen.M,
                                                        chain_frozen.A).Omega)

    def test_custom_spread_function(self, chain, quiet_params):
        calls = []

        def spread_fn(bvectors, M, A):
            calls.append(1)
            return omega_and_grad(bvectors, M, A)

        res = disentangle(chain, quiet_params, spread_fn=spread_fn)
        assert calls
        assert res.spread_initial is None and res.spread_final is None
        assert res.omega_final < res.omega_initial

    def test_input_spread_reported_when_orthonormalized(self, capsys):
        # n_bands < n_orb: the projected trial gauge is not semi-unitary
        model = chain_model(n_kpts=3, n_orb=5, n_wann=2, n_bands=3, seed=2)
        res = disentangle(model, DisentangleParameters(max_iter=5))
        assert res.omega_input is not None
        assert np.isclose(res.omega_input, omega(model.bvectors, model.M, model.A).Omega)
        assert not np.isclose(res.omega_input, res.omega_initial)
        assert "before orthonormalization" in capsys.readouterr().out

    def test_no_input_spread_for_semi_unitary_gauge(self, chain, quiet_params):
        res = disentangle(chain, quiet_params)
        assert res.omega_input is None

    def test_time_limit(self, chain):
        params = DisentangleParameters(time_limit=1e-12, verbose=False)
        res = disentangle(chain, params)
        assert not res.converged
        assert "time_limit" in res.message
        assert res.n_iter == 0

    def test_invalid_model_rejected_before_work(self, chain, quiet_params):
        chain.frozen_bands = np.ones((chain.n_kpts, chain.n_bands), dtype=bool)
        with pytest.raises(ValueError, match="Too many frozen"):
            disentangle(chain, quiet_params)

    def test_verbose_output(self, chain, capsys):
        disentangle(chain, DisentangleParameters(max_iter=3, show_trace=True))
        out = capsys.readouterr().out
        assert "Initial spread" in out and "Final spread" in out
        assert "Iter" in out
