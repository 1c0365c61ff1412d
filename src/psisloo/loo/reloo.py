"""Compute exact Leave-One-Out cross validation refitting for problematic observations."""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from copy import deepcopy

import numpy as np
import xarray as xr
from arviz_base import rcParams
from xarray_einstats.stats import logsumexp

from psisloo.config import get_config
from psisloo.errors import RefitCancelledError, RefitFailureWarning
from psisloo.loo.helper_loo import _summarize_elpd_i, _warn_pareto_k
from psisloo.loo.loo import loo
from psisloo.loo.wrapper import SamplingWrapper
from psisloo.utils import CATEGORIES, ELPDData, classify_pareto_k

__all__ = ["reloo"]

_log = logging.getLogger(__name__)

_ENGINE_HOOKS = ["sel_observations", "sample", "get_inference_data", "log_likelihood__i"]


def reloo(
    wrapper,
    loo_orig=None,
    k_threshold=None,
    pointwise=None,
    n_workers=None,
    cancel_event=None,
    config=None,
):
    r"""Recalculate exact Leave-One-Out cross validation refitting where the approximation fails.

    :func:`psisloo.loo` estimates the values of Leave-One-Out (LOO) cross validation using
    Pareto Smoothed Importance Sampling (PSIS) to approximate its value. PSIS works well when
    the posterior and the posterior_i (excluding observation i from the data used to fit)
    are similar. In some cases, there are highly influential observations for which PSIS
    cannot approximate the LOO-CV, and a warning of a large Pareto shape is sent.
    These cases typically have a handful of bad or very bad Pareto shapes, and a majority of
    good or ok shapes.

    Thus, we can use PSIS for all observations where the Pareto shape is below a threshold
    and refit the model to perform exact cross validation for the handful of observations
    where PSIS cannot be used. Observations whose PSIS estimate is not finite are refitted too.

    Parameters
    ----------
    wrapper : SamplingWrapper
        An instance of a SamplingWrapper subclass that either overrides
        :meth:`~SamplingWrapper.refit_excluding` or implements the four engine hooks it chains.
    loo_orig : ELPDData, optional
        Existing LOO results with pointwise data. If None, will compute
        PSIS-LOO-CV first using the data from ``wrapper``. It is never modified.
    k_threshold : float, optional
        Pareto shape threshold. Observations with k values at or above this
        threshold, or with undefined k, are refitted. Defaults to ``PSISConfig.bad_k``.
    pointwise : bool, optional
        If True, return pointwise LOO data. Defaults to
        ``rcParams["stats.ic_pointwise"]``.
    n_workers : int, optional
        Number of refits running concurrently. Defaults to ``PSISConfig.refit_workers``.
        With more than one worker the wrapper methods are called from several threads.
    cancel_event : threading.Event, optional
        Setting this event stops the sweep. Pending refits are cancelled and
        :class:`~psisloo.errors.RefitCancelledError` is raised.
    config : PSISConfig, optional

    Returns
    -------
    ELPDData
        Updated LOO results where the selected observations have been
        replaced with exact LOO-CV values from refitting. Refitted observations
        have ``pareto_k`` 0, ``refitted`` True and NaN ``log_weights``.

    Raises
    ------
    RefitCancelledError
        If `cancel_event` is set before all refits finish.

    Warns
    -----
    RefitFailureWarning
        For every refit that raised or returned a non-finite value. The observation keeps
        a NaN ``elpd_i`` and is listed in ``failed_indices``.

    Notes
    -----
    It is strongly recommended to first compute :func:`psisloo.loo` on the inference results to
    confirm that the number of values above the threshold is small enough. Otherwise,
    prohibitive computation time may be needed to perform all required refits.
    Each selected observation is refitted exactly once.

    See Also
    --------
    loo : Pareto smoothed importance sampling LOO-CV

    References
    ----------

    .. [1] Vehtari et al. *Practical Bayesian model evaluation using leave-one-out cross-validation
        and WAIC*. Statistics and Computing. 27(5) (2017) https://doi.org/10.1007/s11222-016-9696-4
        arXiv preprint https://arxiv.org/abs/1507.04544.
    """
    if not isinstance(wrapper, SamplingWrapper):
        raise TypeError(
            "wrapper must be an instance of SamplingWrapper or a subclass. "
            "See the SamplingWrapper documentation for implementation details."
        )

    if wrapper.check_implemented_methods(["refit_excluding"]):
        not_implemented = wrapper.check_implemented_methods(_ENGINE_HOOKS)
        if not_implemented:
            raise TypeError(
                "Passed wrapper instance does not implement all methods required for reloo "
                f"to work. Check the documentation of SamplingWrapper. {not_implemented} must be "
                "implemented or refit_excluding overridden."
            )

    config = get_config(config)
    pointwise = rcParams["stats.ic_pointwise"] if pointwise is None else pointwise
    k_threshold = config.bad_k if k_threshold is None else k_threshold
    n_workers = config.refit_workers if n_workers is None else n_workers
    if not isinstance(n_workers, int | np.integer) or n_workers < 1:
        raise ValueError(f"n_workers must be a positive integer, got {n_workers}")

    if loo_orig is None:
        if wrapper.data is None:
            raise ValueError("loo_orig must be provided when the wrapper holds no data")
        loo_orig = loo(
            wrapper.data,
            pointwise=True,
            var_name=wrapper.log_lik_var_name,
            sample_dims=wrapper.sample_dims,
            config=config,
        )

    if not isinstance(loo_orig, ELPDData):
        raise TypeError("loo_orig must be an ELPDData object.")

    if loo_orig.pareto_k is None or loo_orig.elpd_i is None:
        raise ValueError(
            "reloo requires pointwise LOO results with Pareto k values. "
            "Please compute the initial LOO with pointwise=True."
        )

    loo_refitted = deepcopy(loo_orig)
    obs_dims = list(loo_orig.elpd_i.dims)
    obs_shape = [loo_orig.elpd_i.sizes[dim] for dim in obs_dims]
    pareto_k = loo_orig.pareto_k.transpose(*obs_dims)

    k_values = np.array(pareto_k.values, dtype=float).ravel()
    elpd_values = np.array(loo_orig.elpd_i.values, dtype=float).ravel()
    with np.errstate(invalid="ignore"):
        to_refit = ~(k_values < k_threshold) | ~np.isfinite(elpd_values)
    refit_positions = np.flatnonzero(to_refit)

    if len(refit_positions) == 0:
        _log.debug("No observation needs an exact refit at k_threshold=%s", k_threshold)
        return _drop_pointwise(loo_refitted) if not pointwise else loo_refitted

    _log.info(
        "Refitting %d of %d observations with %d worker(s)",
        len(refit_positions),
        len(elpd_values),
        n_workers,
    )
    selectors = {
        int(position): _selector(pareto_k, obs_dims, obs_shape, position)
        for position in refit_positions
    }
    outcomes = _run_refits(wrapper, selectors, n_workers, cancel_event)

    lppd_values = _lppd_i(wrapper, loo_orig, obs_dims).ravel()
    p_loo_values = lppd_values - elpd_values
    refitted = np.zeros(len(elpd_values), dtype=bool)
    for position, outcome in sorted(outcomes.items()):
        if isinstance(outcome, Exception) or not np.isfinite(outcome):
            reason = outcome if isinstance(outcome, Exception) else f"non-finite value {outcome}"
            _log.warning("Refit of observation %s failed: %s", selectors[position], reason)
            warnings.warn(
                f"Exact refit of observation {selectors[position]} failed ({reason}). "
                "Its elpd_i is undefined.",
                RefitFailureWarning,
                stacklevel=2,
            )
            elpd_values[position] = np.nan
            p_loo_values[position] = np.nan
            continue
        elpd_values[position] = outcome
        p_loo_values[position] = lppd_values[position] - outcome
        k_values[position] = 0.0
        refitted[position] = True

    p_undefined = np.flatnonzero(refitted & ~np.isfinite(p_loo_values)).tolist()
    if p_undefined:
        _log.warning(
            "p_loo_i of refitted observations %s is undefined, their full-data lppd is unknown. "
            "Pass the fitted data to the wrapper to recover it.",
            p_undefined,
        )

    loo_refitted.elpd_i = loo_orig.elpd_i.copy(data=elpd_values.reshape(obs_shape))
    loo_refitted.pareto_k = pareto_k.copy(data=k_values.reshape(obs_shape))
    loo_refitted.p_loo_i = loo_orig.elpd_i.copy(data=p_loo_values.reshape(obs_shape)).rename(
        "p_loo_i"
    )
    loo_refitted.refitted = xr.DataArray(
        refitted.reshape(obs_shape), dims=obs_dims, coords=loo_orig.elpd_i.coords, name="refitted"
    )
    if loo_orig.log_weights is not None:
        loo_refitted.log_weights = loo_orig.log_weights.where(~loo_refitted.refitted)

    summary = _summarize_elpd_i(elpd_values, p_loo_values)
    loo_refitted.elpd = summary.elpd
    loo_refitted.se = summary.se
    loo_refitted.p = summary.p
    loo_refitted.failed_indices = summary.failed_indices
    loo_refitted.warning = _warn_pareto_k(
        k_values[np.isfinite(elpd_values)], loo_refitted.good_k, suppress=True
    )
    categories = classify_pareto_k(k_values, elpd_values, loo_refitted.ok_k, loo_refitted.good_k)
    loo_refitted.counts = {cat: int(np.sum(categories == cat)) for cat in CATEGORIES}
    _log.info(
        "Replaced %d observation(s) by exact refits, %d failed",
        int(refitted.sum()),
        len(refit_positions) - int(refitted.sum()),
    )

    if not pointwise:
        return _drop_pointwise(loo_refitted)
    return loo_refitted


def _selector(pareto_k, obs_dims, obs_shape, position):
    """Selector passed to the wrapper: flat position or mapping of labels."""
    if len(obs_dims) == 1:
        return int(position)
    index = np.unravel_index(int(position), obs_shape)
    return {dim: pareto_k.coords[dim].values[idx].item() for dim, idx in zip(obs_dims, index)}


def _lppd_i(wrapper, loo_orig, obs_dims):
    """Log pointwise predictive density of the full-data fit.

    With the full-data log likelihood available, NaN draws are left out and ``-inf``
    draws count as zero likelihood. Otherwise it is recovered from the PSIS result,
    which is NaN for observations whose PSIS estimate failed.
    """
    if wrapper.data is not None:
        log_likelihood = wrapper.log_likelihood()
        sample_dims = [dim for dim in log_likelihood.dims if dim not in obs_dims]
        valid = ~np.isnan(log_likelihood) & (log_likelihood < np.inf)
        n_valid = valid.sum(dim=sample_dims)
        with np.errstate(invalid="ignore", divide="ignore"):
            lppd_i = logsumexp(log_likelihood.where(valid, -np.inf), dims=sample_dims) - np.log(
                n_valid
            )
        return np.array(lppd_i.transpose(*obs_dims).values, dtype=float)
    if loo_orig.p_loo_i is None:
        return np.full(loo_orig.elpd_i.shape, np.nan)
    return np.array((loo_orig.p_loo_i + loo_orig.elpd_i).transpose(*obs_dims).values, dtype=float)


def _call_refit(wrapper, selector):
    try:
        return float(wrapper.refit_excluding(selector))
    except Exception as err:  # pylint: disable=broad-exception-caught
        return err


def _check_cancelled(cancel_event, n_done):
    if cancel_event is not None and cancel_event.is_set():
        _log.warning("Refit sweep cancelled, discarding %d completed refit(s)", n_done)
        raise RefitCancelledError(
            f"Refit sweep was cancelled, {n_done} completed refit(s) were discarded"
        )


def _run_refits(wrapper, selectors, n_workers, cancel_event):
    """Refit each observation once.

    Returns a dict mapping flat positions to the refit value or to the exception it raised.
    """
    outcomes = {}
    _check_cancelled(cancel_event, 0)
    if n_workers == 1 or len(selectors) == 1:
        for position, selector in selectors.items():
            _check_cancelled(cancel_event, len(outcomes))
            _log.debug("Refitting observation %s", selector)
            outcomes[position] = _call_refit(wrapper, selector)
        _check_cancelled(cancel_event, len(outcomes))
        return outcomes

    with ThreadPoolExecutor(max_workers=min(n_workers, len(selectors))) as executor:
        future_to_position = {
            executor.submit(_call_refit, wrapper, selector): position
            for position, selector in selectors.items()
        }
        for future in as_completed(future_to_position):
            if cancel_event is not None and cancel_event.is_set():
                for pending in future_to_position:
                    pending.cancel()
                _check_cancelled(cancel_event, len(outcomes))
            position = future_to_position[future]
            outcomes[position] = future.result()
            _log.debug("Refit of observation %s finished", selectors[position])
    _check_cancelled(cancel_event, len(outcomes))
    return outcomes


def _drop_pointwise(elpd_data):
    elpd_data.elpd_i = None
    elpd_data.pareto_k = None
    elpd_data.p_loo_i = None
    elpd_data.refitted = None
    return elpd_data
