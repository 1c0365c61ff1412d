# pylint: disable=redefined-outer-name, unused-argument
import threading
import warnings
from copy import deepcopy

import pytest
from numpy.testing import assert_allclose, assert_array_equal

from ..helpers import create_log_likelihood, importorskip

np = importorskip("numpy")
xr = importorskip("xarray")
importorskip("arviz_base")

from psisloo import ELPDData, SamplingWrapper, loo, reloo
from psisloo.errors import ParetoKWarning, RefitCancelledError, RefitFailureWarning


class RecordingWrapper(SamplingWrapper):
    """Wrapper whose exact refits return precomputed values.

    Every call is recorded. Missing values make the refit raise.
    """

    def __init__(self, values, data=None, on_refit=None):
        super().__init__(model=None, data=data)
        self.values = values
        self.on_refit = on_refit
        self.calls = []
        self._lock = threading.Lock()

    def refit_excluding(self, idx):
        with self._lock:
            self.calls.append(idx)
        if self.on_refit is not None:
            self.on_refit(idx)
        key = tuple(idx.values()) if isinstance(idx, dict) else idx
        if key not in self.values:
            raise RuntimeError(f"sampler diverged for {key}")
        return self.values[key]


class HookWrapper(SamplingWrapper):
    """Wrapper implementing the engine hooks instead of refit_excluding."""

    def sel_observations(self, idx):
        return {"excluded": idx}, idx

    def sample(self, modified_observed_data):
        return modified_observed_data

    def get_inference_data(self, fitted_model):
        return fitted_model

    def log_likelihood__i(self, excluded_obs, idata__i):
        likelihood = np.full((2, 50), 0.25)
        likelihood[:, :25] = 0.75
        return xr.DataArray(np.log(likelihood), dims=["chain", "draw"])


@pytest.fixture(scope="module")
def log_lik():
    return create_log_likelihood(n_obs=6)


@pytest.fixture
def loo_orig(log_lik):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        loo_data = loo(log_lik, pointwise=True)
    loo_data.pareto_k.values[[1, 4]] = [0.9, 1.3]
    return loo_data


def test_reloo(loo_orig):
    wrapper = RecordingWrapper({1: -1.5, 4: -2.0})
    original = deepcopy(loo_orig)
    result = reloo(wrapper, loo_orig=loo_orig, pointwise=True)

    assert isinstance(result, ELPDData)
    assert sorted(wrapper.calls) == [1, 4]
    assert_allclose(result.elpd_i.values[[1, 4]], [-1.5, -2.0])
    assert_array_equal(result.pareto_k.values[[1, 4]], [0.0, 0.0])
    assert_array_equal(result.refitted.values, [False, True, False, False, True, False])
    keep = [0, 2, 3, 5]
    assert_array_equal(result.elpd_i.values[keep], loo_orig.elpd_i.values[keep])
    assert_array_equal(result.pareto_k.values[keep], loo_orig.pareto_k.values[keep])
    assert_allclose(result.elpd, result.elpd_i.sum())
    assert_allclose(result.se, np.sqrt(6) * np.std(result.elpd_i.values, ddof=1))
    assert not result.warning
    assert result.counts["unreliable"] == 0
    assert "2 observation(s) replaced by exact" in str(result)
    assert list(result.to_dataframe()["refitted"]) == [False, True, False, False, True, False]

    assert_array_equal(loo_orig.pareto_k.values, original.pareto_k.values)
    assert_array_equal(loo_orig.elpd_i.values, original.elpd_i.values)
    assert loo_orig.elpd == original.elpd


def test_reloo_log_weights(loo_orig):
    result = reloo(RecordingWrapper({1: -1.5, 4: -2.0}), loo_orig=loo_orig, pointwise=True)
    lw = result.log_weights.transpose("obs_dim", ...)
    lw_orig = loo_orig.log_weights.transpose("obs_dim", ...)
    assert np.all(np.isnan(lw.values[[1, 4]]))
    assert_array_equal(lw.values[[0, 2, 3, 5]], lw_orig.values[[0, 2, 3, 5]])


def test_reloo_p_loo(loo_orig):
    result = reloo(RecordingWrapper({1: -1.5, 4: -2.0}), loo_orig=loo_orig, pointwise=True)
    lppd_i = loo_orig.p_loo_i + loo_orig.elpd_i
    assert_allclose(result.p_loo_i.values[1], lppd_i.values[1] + 1.5)
    assert_allclose(result.p, result.p_loo_i.sum())


def test_reloo_k_threshold(loo_orig):
    wrapper = RecordingWrapper({1: -1.5, 4: -2.0})
    reloo(wrapper, loo_orig=loo_orig, k_threshold=1.0)
    assert wrapper.calls == [4]


def test_reloo_nothing_to_refit(loo_orig):
    wrapper = RecordingWrapper({})
    result = reloo(wrapper, loo_orig=loo_orig, k_threshold=2.0, pointwise=True)
    assert not wrapper.calls
    assert_array_equal(result.elpd_i.values, loo_orig.elpd_i.values)
    assert result is not loo_orig


def test_reloo_pointwise_false(loo_orig):
    result = reloo(RecordingWrapper({1: -1.5, 4: -2.0}), loo_orig=loo_orig, pointwise=False)
    assert result.elpd_i is None
    assert result.pareto_k is None
    assert result.refitted is None
    assert result.counts["reliable"] + result.counts["borderline"] == 6


def test_reloo_refit_failure(loo_orig):
    wrapper = RecordingWrapper({1: -1.5})
    with pytest.warns(RefitFailureWarning, match="sampler diverged"):
        result = reloo(wrapper, loo_orig=loo_orig, pointwise=True)
    assert sorted(wrapper.calls) == [1, 4]
    assert np.isnan(result.elpd)
    assert result.failed_indices == [4]
    assert np.isnan(result.elpd_i.values[4])
    assert_array_equal(result.refitted.values[[1, 4]], [True, False])
    assert result.counts["failed"] == 1


def test_reloo_nonfinite_refit(loo_orig):
    wrapper = RecordingWrapper({1: -np.inf, 4: -2.0})
    with pytest.warns(RefitFailureWarning, match="non-finite"):
        result = reloo(wrapper, loo_orig=loo_orig, pointwise=True)
    assert result.failed_indices == [1]


def test_reloo_refits_failed_observations():
    log_lik = create_log_likelihood(n_obs=3)
    log_lik[0, 3, 2] = -np.inf
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        loo_data = loo(log_lik, pointwise=True)
    assert loo_data.failed_indices == [2]

    wrapper = RecordingWrapper({2: -1.0})
    result = reloo(wrapper, loo_orig=loo_data, pointwise=True)
    assert wrapper.calls == [2]
    assert np.isfinite(result.elpd)
    assert not result.failed_indices
    assert result.counts["failed"] == 0
    assert np.isnan(result.p)
    assert np.isnan(result.p_loo_i.values[2])
    assert "p_loo is undefined, the full-data lppd of observations [2]" in str(result)

    with_data = reloo(RecordingWrapper({2: -1.0}, data=log_lik), loo_orig=loo_data, pointwise=True)
    assert np.isfinite(with_data.p)
    lppd_2 = np.log(np.exp(np.delete(log_lik.values[..., 2].ravel(), 3)).sum() / 1000)
    assert_allclose(with_data.p_loo_i.values[2], lppd_2 + 1.0)
    assert "undefined" not in str(with_data)


def test_reloo_heavy_tailed_observation():
    log_lik = create_log_likelihood(n_obs=6, heavy=[2])
    wrapper = RecordingWrapper({2: -1.2}, data=log_lik)
    with pytest.warns(ParetoKWarning):
        result = reloo(wrapper, pointwise=True)
    assert wrapper.calls == [2]
    assert result.refitted.values.tolist() == [False, False, True, False, False, False]
    assert result.elpd_i.values[2] == -1.2
    assert not result.warning
    assert result.counts["unreliable"] == 0
    assert np.isfinite(result.p)


def test_reloo_threads(loo_orig):
    values = {1: -1.5, 4: -2.0}
    sequential = reloo(RecordingWrapper(values), loo_orig=loo_orig, pointwise=True)
    wrapper = RecordingWrapper(values)
    threaded = reloo(wrapper, loo_orig=loo_orig, pointwise=True, n_workers=4)
    assert sorted(wrapper.calls) == [1, 4]
    assert_array_equal(threaded.elpd_i.values, sequential.elpd_i.values)
    assert_allclose(threaded.elpd, sequential.elpd)


def test_reloo_cancel_before_start(loo_orig):
    cancel_event = threading.Event()
    cancel_event.set()
    wrapper = RecordingWrapper({1: -1.5, 4: -2.0})
    with pytest.raises(RefitCancelledError):
        reloo(wrapper, loo_orig=loo_orig, cancel_event=cancel_event)
    assert not wrapper.calls


@pytest.mark.parametrize("n_workers", [1, 2])
def test_reloo_cancel_during_sweep(loo_orig, n_workers):
    cancel_event = threading.Event()
    wrapper = RecordingWrapper({1: -1.5, 4: -2.0}, on_refit=lambda idx: cancel_event.set())
    original = deepcopy(loo_orig)
    with pytest.raises(RefitCancelledError, match="discarded"):
        reloo(wrapper, loo_orig=loo_orig, n_workers=n_workers, cancel_event=cancel_event)
    assert_array_equal(loo_orig.elpd_i.values, original.elpd_i.values)
    assert_array_equal(loo_orig.pareto_k.values, original.pareto_k.values)
    if n_workers == 1:
        assert len(wrapper.calls) == 1


def test_reloo_engine_hooks(loo_orig):
    wrapper = HookWrapper(model=None)
    assert_allclose(wrapper.refit_excluding(1), np.log(0.5))
    result = reloo(wrapper, loo_orig=loo_orig, pointwise=True)
    assert_allclose(result.elpd_i.values[[1, 4]], np.log(0.5))


def test_reloo_computes_loo(log_lik):
    wrapper = RecordingWrapper({}, data=log_lik)
    with warnings.catch_warnings():
        warnings.simplefilter("error", ParetoKWarning)
        result = reloo(wrapper, pointwise=True)
    assert not wrapper.calls
    assert_allclose(result.elpd, loo(log_lik).elpd)


def test_reloo_multidimensional():
    log_lik = create_log_likelihood(n_obs=6)
    log_lik = xr.DataArray(
        log_lik.values.reshape(2, 500, 2, 3),
        dims=["chain", "draw", "school", "measurement"],
        coords={"school": ["s0", "s1"], "measurement": ["m0", "m1", "m2"]},
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        loo_data = loo(log_lik, pointwise=True)
    loo_data.pareto_k.loc[{"school": "s1", "measurement": "m0"}] = 0.85

    wrapper = RecordingWrapper({("s1", "m0"): -4.0})
    result = reloo(wrapper, loo_orig=loo_data, pointwise=True)
    assert wrapper.calls == [{"school": "s1", "measurement": "m0"}]
    assert result.elpd_i.loc[{"school": "s1", "measurement": "m0"}] == -4.0
    assert result.pareto_k.loc[{"school": "s1", "measurement": "m0"}] == 0.0
    assert result.refitted.sum() == 1


def test_reloo_wrapper_validation(loo_orig):
    with pytest.raises(TypeError, match="wrapper must be an instance of SamplingWrapper"):
        reloo("not_a_wrapper")

    class IncompleteSamplingWrapper(SamplingWrapper):  # pylint: disable=abstract-method
        def sel_observations(self, idx):
            return None, None

    with pytest.raises(TypeError, match="does not implement all methods required"):
        reloo(IncompleteSamplingWrapper(model=None), loo_orig=loo_orig)


def test_reloo_argument_validation(loo_orig):
    wrapper = RecordingWrapper({})
    with pytest.raises(ValueError, match="n_workers"):
        reloo(wrapper, loo_orig=loo_orig, n_workers=0)
    with pytest.raises(ValueError, match="holds no data"):
        reloo(wrapper)
    with pytest.raises(TypeError, match="ELPDData"):
        reloo(wrapper, loo_orig={"elpd": 1})

    no_pointwise = deepcopy(loo_orig)
    no_pointwise.pareto_k = None
    with pytest.raises(ValueError, match="pointwise=True"):
        reloo(wrapper, loo_orig=no_pointwise)


def test_check_implemented_methods():
    wrapper = HookWrapper(model=None)
    assert wrapper.check_implemented_methods(["sel_observations", "log_likelihood__i"]) == []
    assert wrapper.check_implemented_methods(["refit_excluding"]) == ["refit_excluding"]
    with pytest.raises(ValueError, match="supported"):
        wrapper.check_implemented_methods(["fit"])


def test_wrapper_log_likelihood(log_lik):
    assert SamplingWrapper(model=None, data=log_lik).log_likelihood() is log_lik
    with pytest.raises(ValueError, match="fitted model"):
        SamplingWrapper(model=None).log_likelihood()
