"""
Parameter validation and JSON round trip
"""
import pytest

from wannier_disentangle.config import DisentangleParameters, LineSearchParameters


class TestDisentangleParameters:

    def test_defaults(self):
        p = DisentangleParameters()
        assert p.f_tol == 1e-10 and p.g_tol == 1e-8
        assert p.max_iter == 1000 and p.history_size == 20
        assert p.random_gauge is False and p.seed is None
        assert isinstance(p.linesearch, LineSearchParameters)

    @pytest.mark.parametrize("kwargs", [
        {"f_tol": 0.0},
        {"g_tol": -1e-8},
        {"max_iter": 0},
        {"history_size": 0},
        {"time_limit": 0.0},
    ])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            DisentangleParameters(**kwargs)

    @pytest.mark.parametrize("kwargs", [
        {"c1": 0.9, "c2": 0.1},
        {"c2": 1.0},
        {"amax": 0.0},
        {"maxiter": 0},
    ])
    def test_rejects_bad_linesearch(self, kwargs):
        with pytest.raises(ValueError):
            LineSearchParameters(**kwargs)

    def test_json_roundtrip(self, tmp_path):
        p = DisentangleParameters(
            f_tol=1e-9, max_iter=50, random_gauge=True, seed=7, time_limit=3.5,
            linesearch=LineSearchParameters(c2=0.5, maxiter=10),
        )
        path = tmp_path / "params.json"
        p.to_json(str(path))
        q = DisentangleParameters.from_json(str(path))
        assert q == p
        assert isinstance(q.linesearch, LineSearchParameters)

    def test_to_dict_nests_linesearch(self):
        d = DisentangleParameters().to_dict()
        assert d["linesearch"] == {"c1": 1e-4, "c2": 0.9, "amax": 50.0, "maxiter": 20}
