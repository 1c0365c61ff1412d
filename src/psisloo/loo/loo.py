"""Pareto-smoothed importance sampling LOO (PSIS-LOO-CV)."""

import numpy as np
import xarray as xr
from xarray_einstats.stats import logsumexp

from psisloo.config import get_config
from psisloo.loo.helper_loo import (
    _compute_loo_results,
    _get_log_likelihood_i,
    _prepare_loo_inputs,
    _warn_nonfinite,
    _warn_pareto_k,
)
from psisloo.utils import ELPDData


def loo(
    data,
    pointwise=None,
    var_name=None,
    reff=None,
    log_weights=None,
    pareto_k=None,
    sample_dims=None,
    config=None,
):
    r"""Compute Pareto-smoothed importance sampling leave-one-out cross-validation (PSIS-LOO-CV).

    Estimates the expected log pointwise predictive density (elpd) using Pareto-smoothed
    importance sampling leave-one-out cross-validation (PSIS-LOO-CV). Also calculates LOO's
    standard error and the effective number of parameters. The method is described in [1]_
    and [2]_.

    Parameters
    ----------
    data : DataTree, InferenceData, DataArray or ndarray
        Input data. A DataTree or InferenceData must contain the log_likelihood group.
        A DataArray holds pointwise log likelihood values with sample and observation
        dimensions. A 2D ndarray is interpreted as ``(draws, observations)``.
    pointwise : bool, optional
        If True the pointwise predictive accuracy will be returned. Defaults to
        ``rcParams["stats.ic_pointwise"]``.
    var_name : str, optional
        The name of the variable in log_likelihood groups storing the pointwise log
        likelihood data to use for loo computation.
    reff : float, optional
        Relative MCMC efficiency, ``ess / n`` i.e. number of effective samples divided by the number
        of actual samples. Defaults to ``PSISConfig.r_eff``.
    log_weights : DataArray, optional
        Smoothed log weights. Must be provided together with pareto_k or both must be None.
    pareto_k : DataArray, optional
        Pareto shape values. Must be provided together with log_weights or both must be None.
    sample_dims : sequence of hashable, optional
        Defaults to ``rcParams["data.sample_dims"]``.
    config : PSISConfig, optional
        Smoothing and reliability settings. Defaults to :func:`~psisloo.get_config`.

    Returns
    -------
    ELPDData
        Object with the following attributes:

        - **kind**: "loo"
        - **elpd**: expected log pointwise predictive density, NaN if some
          pointwise value is not finite
        - **se**: standard error of the elpd
        - **p**: effective number of parameters
        - **n_samples**: number of samples
        - **n_data_points**: number of data points
        - **scale**: "log"
        - **warning**: True if some Pareto shape is at least ``good_k`` or undefined
        - **good_k**: threshold from which estimates are unreliable
        - **ok_k**: threshold from which estimates are borderline
        - **elpd_i**, **pareto_k**, **p_loo_i**: pointwise values, only if ``pointwise=True``
        - **log_weights**: Smoothed log weights.
        - **failed_indices**: flat positions of observations with non-finite elpd_i
        - **counts**: number of reliable, borderline, unreliable and failed observations

    Warns
    -----
    ParetoKWarning
        If some observation is unreliable. Use :func:`~psisloo.reloo` to refit them.
    NonFiniteLikelihoodWarning
        If some observation has non-finite log likelihood values.
    InsufficientDrawsWarning
        If there are too few draws to fit the Pareto tail.

    Examples
    --------
    Calculate LOO of a model:

    .. code-block:: python

        from arviz_base import load_arviz_data
        from psisloo import loo
        loo_data = loo(load_arviz_data("centered_eight"), pointwise=True)
        loo_data.to_dataframe()

    See Also
    --------
    reloo : Replace unreliable estimates by exact refits.
    compare : Compare models based on their ELPD.

    References
    ----------

    .. [1] Vehtari et al. *Practical Bayesian model evaluation using leave-one-out cross-validation
       and WAIC*. Statistics and Computing. 27(5) (2017) https://doi.org/10.1007/s11222-016-9696-4
       arXiv preprint https://arxiv.org/abs/1507.04544.

    .. [2] Vehtari et al. *Pareto Smoothed Importance Sampling*.
       Journal of Machine Learning Research, 25(72) (2024) https://jmlr.org/papers/v25/19-556.html
       arXiv preprint https://arxiv.org/abs/1507.02646
    """
    config = get_config(config)
    loo_inputs = _prepare_loo_inputs(data, var_name, sample_dims)

    return _compute_loo_results(
        log_likelihood=loo_inputs.log_likelihood,
        sample_dims=loo_inputs.sample_dims,
        n_samples=loo_inputs.n_samples,
        n_data_points=loo_inputs.n_data_points,
        config=config,
        pointwise=pointwise,
        log_weights=log_weights,
        pareto_k=pareto_k,
        reff=reff,
    )


def loo_i(i, data, var_name=None, reff=None, sample_dims=None, config=None):
    r"""Compute PSIS-LOO-CV for a single observation.

    Parameters
    ----------
    i : int | dict | scalar
        Observation selector. Must be one of:

        - **int**: Positional index in flattened observation order across all observation
          dimensions.
        - **dict**: Label-based mapping ``{obs_dim: coord_value}`` for all observation
          dimensions.
        - **scalar label**: Only when there is exactly one observation dimension.
    data : DataTree, InferenceData, DataArray or ndarray
        Same as in :func:`loo`.
    var_name : str, optional
    reff : float, optional
    sample_dims : sequence of hashable, optional
    config : PSISConfig, optional

    Returns
    -------
    ELPDData
        ``n_data_points`` is 1 and ``se`` is 0. ``elpd_i``, ``pareto_k`` and
        ``p_loo_i`` are 0-d DataArrays.

    Examples
    --------
    .. code-block:: python

        from arviz_base import load_arviz_data
        from psisloo import loo_i
        loo_i({"school": "Choate"}, load_arviz_data("centered_eight"))
    """
    config = get_config(config)
    loo_inputs = _prepare_loo_inputs(data, var_name, sample_dims)
    sample_dims = loo_inputs.sample_dims
    log_lik_i = _get_log_likelihood_i(loo_inputs.log_likelihood, i, loo_inputs.obs_dims)

    reff = config.r_eff if reff is None else reff
    log_weights_i, pareto_k_i = log_lik_i.psis.psislw(r_eff=reff, dims=sample_dims, config=config)

    with np.errstate(invalid="ignore"):
        elpd_i = logsumexp(log_weights_i + log_lik_i, dims=sample_dims)
        lppd_i = logsumexp(log_lik_i, b=1 / loo_inputs.n_samples, dims=sample_dims)
    defined = bool(np.isfinite(log_lik_i).all())
    elpd_i = (elpd_i if defined else xr.full_like(elpd_i, np.nan)).rename("elpd_i")
    p_loo_i = (lppd_i - elpd_i).rename("p_loo_i")
    elpd = elpd_i.item()

    if not defined:
        _warn_nonfinite([0])
    warn_mg = _warn_pareto_k(pareto_k_i.values if defined else [], config.bad_k)

    return ELPDData(
        kind="loo",
        elpd=elpd,
        se=0.0 if defined else np.nan,
        p=p_loo_i.item(),
        n_samples=loo_inputs.n_samples,
        n_data_points=1,
        scale="log",
        warning=warn_mg,
        good_k=config.bad_k,
        elpd_i=elpd_i,
        pareto_k=pareto_k_i,
        p_loo_i=p_loo_i,
        log_weights=log_weights_i,
        ok_k=config.ok_k,
        refitted=xr.zeros_like(elpd_i, dtype=bool),
        failed_indices=[] if defined else [0],
    )
