"""Helper functions for PSIS-LOO-CV."""

import warnings
from collections import namedtuple
from collections.abc import Mapping

import numpy as np
import xarray as xr
from arviz_base import convert_to_datatree, rcParams
from xarray_einstats.stats import logsumexp

from psisloo.base.stats_utils import elpd_se, nonfinite_positions
from psisloo.errors import NonFiniteLikelihoodWarning, ParetoKWarning
from psisloo.utils import CATEGORIES, ELPDData, classify_pareto_k, get_log_likelihood
from psisloo.validate import validate_dims

__all__ = [
    "LooInputs",
    "ElpdSummary",
    "_prepare_loo_inputs",
    "_get_log_likelihood_i",
    "_compute_loo_results",
    "_summarize_elpd_i",
    "_warn_pareto_k",
    "_warn_nonfinite",
]

LooInputs = namedtuple(
    "LooInputs",
    ["log_likelihood", "var_name", "sample_dims", "obs_dims", "n_samples", "n_data_points"],
)

ElpdSummary = namedtuple("ElpdSummary", ["elpd", "se", "p", "failed_indices"])


def _as_log_likelihood(data, var_name, sample_dims):
    """Return the pointwise log likelihood DataArray held by `data`."""
    if isinstance(data, xr.DataArray):
        return data
    if isinstance(data, np.ndarray):
        if data.ndim != 2:
            raise ValueError(
                "numpy input must be a 2D (draws, observations) array of log likelihood values, "
                f"got shape {data.shape}"
            )
        if len(sample_dims) != 2:
            raise ValueError("numpy input requires two sample dims, e.g. ('chain', 'draw')")
        return xr.DataArray(
            data[np.newaxis], dims=[*sample_dims, "obs_dim"], name=var_name or "log_likelihood"
        )
    return get_log_likelihood(convert_to_datatree(data), var_name=var_name)


def _prepare_loo_inputs(data, var_name=None, sample_dims=None):
    """Prepare inputs for PSIS-LOO-CV.

    `data` can be a DataTree or anything :func:`arviz_base.convert_to_datatree` accepts,
    a DataArray of pointwise log likelihood values or a 2D ``(draws, observations)``
    numpy array.
    """
    sample_dims = validate_dims(sample_dims)
    log_likelihood = _as_log_likelihood(data, var_name, sample_dims)
    if var_name is None and log_likelihood.name is not None:
        var_name = log_likelihood.name

    missing = [dim for dim in sample_dims if dim not in log_likelihood.dims]
    if missing:
        raise ValueError(f"log likelihood is missing sample dimensions {missing}")
    obs_dims = [dim for dim in log_likelihood.dims if dim not in sample_dims]
    if not obs_dims:
        raise ValueError("log likelihood must have at least one observation dimension")

    n_samples = int(np.prod([log_likelihood.sizes[dim] for dim in sample_dims]))
    n_data_points = int(np.prod([log_likelihood.sizes[dim] for dim in obs_dims]))
    if n_samples < 1 or n_data_points < 1:
        raise ValueError("log likelihood must hold at least one draw and one observation")
    return LooInputs(
        log_likelihood,
        var_name,
        sample_dims,
        obs_dims,
        n_samples,
        n_data_points,
    )


def _get_log_likelihood_i(log_likelihood, i, obs_dims):
    """Extract the log-likelihood for one observation `i`.

    `i` can be a flat positional index, a mapping of labels for all observation dims,
    or a single label when there is only one observation dim.
    """
    if isinstance(i, bool):
        raise TypeError("i can't be a boolean")

    if isinstance(i, int | np.integer):
        n_data_points = int(np.prod([log_likelihood.sizes[dim] for dim in obs_dims]))
        if not 0 <= i < n_data_points:
            raise IndexError(f"index {i} is out of bounds for {n_data_points} observations")
        if len(obs_dims) == 1:
            return log_likelihood.isel({obs_dims[0]: int(i)})
        position = np.unravel_index(int(i), [log_likelihood.sizes[dim] for dim in obs_dims])
        return log_likelihood.isel(dict(zip(obs_dims, (int(p) for p in position))))

    if isinstance(i, Mapping):
        if set(i.keys()) != set(obs_dims):
            raise ValueError(f"Provide selections for all observation dims: {tuple(obs_dims)}")
        return log_likelihood.sel(i)

    if len(obs_dims) == 1:
        return log_likelihood.sel({obs_dims[0]: i})

    raise TypeError(
        "i must be either a flattened integer index, a mapping of {obs_dim: coord_value} "
        "for all observation dims, or a single scalar label when there is exactly one "
        "observation dimension."
    )


def _summarize_elpd_i(elpd_i, p_loo_i):
    """Aggregate pointwise values into elpd, its standard error and p_loo.

    Nothing is dropped: any non-finite elpd_i makes the aggregates NaN.
    """
    elpd_values = np.asarray(elpd_i, dtype=float).ravel()
    failed_indices = nonfinite_positions(elpd_values)
    if failed_indices:
        return ElpdSummary(np.nan, np.nan, np.nan, failed_indices)
    return ElpdSummary(
        float(np.sum(elpd_values)),
        elpd_se(elpd_values),
        float(np.sum(np.asarray(p_loo_i, dtype=float))),
        failed_indices,
    )


def _warn_pareto_k(pareto_k_values, bad_k, suppress=False):
    """Check Pareto k values and issue warnings if necessary."""
    k_values = np.asarray(pareto_k_values, dtype=float)
    finite_k = k_values[~np.isnan(k_values)]
    warn_mg = bool(np.any(finite_k >= bad_k)) or bool(np.any(np.isnan(k_values)))

    if warn_mg and not suppress:
        warnings.warn(
            f"Estimated shape parameter of Pareto distribution is at least {bad_k:.2f} "
            "or undefined for one or more observations. Importance sampling is less likely "
            "to work well if the marginal posterior and LOO posterior are very different. "
            "Consider a more robust model or exact refits with reloo.",
            ParetoKWarning,
            stacklevel=3,
        )
    return warn_mg


def _warn_nonfinite(failed_indices, kind="loo"):
    """Warn that the aggregate elpd is undefined because of some observations."""
    if failed_indices:
        warnings.warn(
            f"elpd_{kind} is undefined: non-finite pointwise values at observations "
            f"{failed_indices}. Check the log likelihood of those observations or refit them.",
            NonFiniteLikelihoodWarning,
            stacklevel=3,
        )


def _compute_loo_results(
    log_likelihood,
    sample_dims,
    n_samples,
    n_data_points,
    config,
    pointwise=None,
    log_weights=None,
    pareto_k=None,
    reff=None,
):
    """Compute PSIS-LOO-CV results."""
    obs_dims = [dim for dim in log_likelihood.dims if dim not in sample_dims]

    if (log_weights is None) != (pareto_k is None):
        raise ValueError(
            "Both log_weights and pareto_k must be provided together or both must be None. "
            "Only one was provided."
        )

    if log_weights is None:
        reff = config.r_eff if reff is None else reff
        log_weights, pareto_k = log_likelihood.psis.psislw(
            r_eff=reff, dims=sample_dims, config=config
        )
    else:
        for dim in sample_dims:
            if dim not in log_weights.dims:
                raise ValueError(f"log_weights must have sample dimension '{dim}'")
        if set(pareto_k.dims) != set(obs_dims):
            raise ValueError(
                f"pareto_k dimensions {list(pareto_k.dims)} must match "
                f"observation dimensions {obs_dims}"
            )

    with np.errstate(invalid="ignore"):
        elpd_i = logsumexp(log_weights + log_likelihood, dims=sample_dims)
        lppd_i = logsumexp(log_likelihood, b=1 / n_samples, dims=sample_dims)
    nonfinite_obs = ~np.isfinite(log_likelihood).all(dim=sample_dims)
    elpd_i = elpd_i.where(~nonfinite_obs).rename("elpd_i")
    p_loo_i = (lppd_i - elpd_i).rename("p_loo_i")
    pareto_k = pareto_k.where(~nonfinite_obs)

    summary = _summarize_elpd_i(elpd_i.values, p_loo_i.values)
    _warn_nonfinite(summary.failed_indices)
    usable_k = pareto_k.values[np.isfinite(elpd_i.values)]
    warn_mg = _warn_pareto_k(usable_k, config.bad_k)

    categories = classify_pareto_k(pareto_k.values, elpd_i.values, config.ok_k, config.bad_k)
    counts = {cat: int(np.sum(categories == cat)) for cat in CATEGORIES}

    pointwise = rcParams["stats.ic_pointwise"] if pointwise is None else pointwise

    return ELPDData(
        "loo",
        summary.elpd,
        summary.se,
        summary.p,
        n_samples,
        n_data_points,
        "log",
        warn_mg,
        config.bad_k,
        elpd_i if pointwise else None,
        pareto_k if pointwise else None,
        p_loo_i if pointwise else None,
        log_weights=log_weights,
        ok_k=config.ok_k,
        refitted=xr.zeros_like(elpd_i, dtype=bool) if pointwise else None,
        failed_indices=summary.failed_indices,
        counts=counts,
    )
