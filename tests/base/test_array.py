"""Tests for array interface base functions."""

# pylint: disable=redefined-outer-name, no-self-use, protected-access
import pytest

from ..helpers import importorskip

np = importorskip("numpy")
importorskip("scipy")

from numpy.testing import assert_allclose, assert_array_equal
from scipy.special import logsumexp

from psisloo.base.array import BaseArray, process_ary_axes, process_chain_none
from psisloo.base.stats_utils import elpd_se, make_ufunc, nonfinite_positions
from psisloo.errors import InsufficientDrawsWarning


@pytest.fixture
def array_stats():
    return BaseArray()


@pytest.fixture(scope="module")
def log_lik():
    rng = np.random.default_rng(4)
    return rng.normal(-1, 0.3, size=(8, 4, 250))


class TestHelperFunctions:
    def test_process_chain_none_with_none(self):
        ary = np.empty((100, 50))
        ary_out, chain_axis, draw_axis = process_chain_none(ary, None, -1)
        assert ary_out.shape == (1, 100, 50)
        assert chain_axis == 0
        assert draw_axis == -1

    def test_process_chain_none_positive_draw_axis(self):
        ary = np.empty((100, 50))
        _, _, draw_axis = process_chain_none(ary, None, 1)
        assert draw_axis == 2

    def test_process_chain_none_without_none(self):
        ary = np.empty((4, 100, 50))
        ary_out, chain_axis, draw_axis = process_chain_none(ary, 0, 1)
        assert ary_out is ary
        assert chain_axis == 0
        assert draw_axis == 1

    def test_process_ary_axes(self):
        ary = np.empty((4, 100, 8))
        ary_out, axes = process_ary_axes(ary, [0, 1])
        assert ary_out.shape == (8, 4, 100)
        assert_array_equal(axes, [-2, -1])

    def test_process_ary_axes_int(self):
        ary = np.empty((4, 100, 8))
        ary_out, axes = process_ary_axes(ary, 1)
        assert ary_out.shape == (4, 8, 100)
        assert_array_equal(axes, [-1])


class TestStatsUtils:
    def test_make_ufunc_multiple_outputs(self):
        ufunc = make_ufunc(lambda x: (x.sum(), x.max()), n_dims=2, n_output=2)
        ary = np.arange(24, dtype=float).reshape(2, 3, 4)
        total, largest = ufunc(ary)
        assert_allclose(total, ary.sum(axis=(1, 2)))
        assert_allclose(largest, ary.max(axis=(1, 2)))

    def test_make_ufunc_out_shape(self):
        ufunc = make_ufunc(lambda x: x * 2, n_dims=1, ravel=False)
        ary = np.ones((3, 5))
        assert_allclose(ufunc(ary, out_shape=[(5,)]), np.full((3, 5), 2.0))

    def test_make_ufunc_n_dims(self):
        with pytest.raises(TypeError, match="n_dims must be one or higher"):
            make_ufunc(np.sum, n_dims=0)

    def test_elpd_se(self):
        values = np.array([-1.0, -2.0, -4.0])
        assert_allclose(elpd_se(values), np.sqrt(3) * np.std(values, ddof=1))

    def test_elpd_se_single_value(self):
        assert elpd_se(np.array([-1.3])) == 0.0

    def test_elpd_se_nonfinite(self):
        assert np.isnan(elpd_se(np.array([-1.0, np.nan])))

    def test_nonfinite_positions(self):
        assert nonfinite_positions(np.array([[0.0, np.nan], [np.inf, 1.0]])) == [1, 2]
        assert not nonfinite_positions(np.zeros(3))


class TestPSIS:
    def test_psislw_shapes(self, array_stats, log_lik):
        log_weights, khat = array_stats.psislw(log_lik, axis=[-2, -1])
        assert log_weights.shape == (8, 4, 250)
        assert khat.shape == (8,)
        assert_allclose(logsumexp(log_weights, axis=(-2, -1)), np.zeros(8), atol=1e-10)

    def test_psislw_moves_sample_axes(self, array_stats, log_lik):
        ary = np.moveaxis(log_lik, 0, -1)
        log_weights, khat = array_stats.psislw(ary, axis=[0, 1])
        assert log_weights.shape == (8, 4, 250)
        expected_lw, expected_k = array_stats.psislw(log_lik, axis=[-2, -1])
        assert_allclose(log_weights, expected_lw)
        assert_allclose(khat, expected_k)

    def test_psislw_insufficient_draws(self, array_stats):
        ary = np.random.default_rng(0).normal(size=(3, 10))
        with pytest.warns(InsufficientDrawsWarning):
            _, khat = array_stats.psislw(ary)
        assert np.all(np.isnan(khat))

    def test_pareto_khat(self, array_stats, log_lik):
        khat = array_stats.pareto_khat(log_lik)
        _, expected_k = array_stats.psislw(log_lik, axis=[-2, -1])
        assert_allclose(khat, expected_k)

    def test_pareto_khat_chain_none(self, array_stats, log_lik):
        ary = log_lik.reshape(8, -1)
        khat = array_stats.pareto_khat(ary, chain_axis=None, draw_axis=-1)
        assert khat.shape == (8,)

    def test_loo(self, array_stats, log_lik):
        elpd_i, khat, p_loo_i = array_stats.loo(log_lik)
        assert elpd_i.shape == khat.shape == p_loo_i.shape == (8,)
        assert np.all(khat < 0.7)
        lppd_i = logsumexp(log_lik, axis=(-2, -1)) - np.log(1000)
        assert_allclose(elpd_i + p_loo_i, lppd_i)

    def test_loo_nonfinite(self, array_stats, log_lik):
        ary = log_lik.copy()
        ary[2, 0, 5] = -np.inf
        elpd_i, khat, p_loo_i = array_stats.loo(ary)
        assert np.isnan(elpd_i[2])
        assert np.isnan(khat[2])
        assert np.isnan(p_loo_i[2])
        assert np.all(np.isfinite(np.delete(elpd_i, 2)))
