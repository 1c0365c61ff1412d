"""Compare PSIS-LOO-CV results."""

import itertools
import logging
from collections import namedtuple
from copy import deepcopy

import numpy as np
import pandas as pd
from arviz_base import rcParams
from scipy.optimize import minimize
from scipy.stats import dirichlet

from psisloo.base.stats_utils import elpd_se
from psisloo.errors import MismatchedObservationsError
from psisloo.loo.loo import loo
from psisloo.utils import ELPDData

__all__ = ["ComparisonResult", "compare", "elpd_diff"]

_log = logging.getLogger(__name__)

ComparisonResult = namedtuple("ComparisonResult", ["elpd_diff", "se_diff", "ranking"])


def elpd_diff(elpd_a, elpd_b, names=("a", "b")):
    r"""Paired difference of the ELPD of two models.

    The difference is computed observation by observation, :math:`d_i = elpd_i^A - elpd_i^B`,
    so its standard error accounts for the correlation between the two models induced
    by sharing the same data:

    .. math::

        \text{elpd\_diff} = \sum_i d_i \qquad \text{se\_diff} = \sqrt{N}\, \text{sd}(d_i)

    Parameters
    ----------
    elpd_a, elpd_b : ELPDData
        Results computed with ``pointwise=True`` on the same observations.
    names : tuple of str, default ("a", "b")
        Model names used in the ranking and in error messages.

    Returns
    -------
    ComparisonResult
        ``elpd_diff``, ``se_diff`` and ``ranking``, the model names ordered from higher to
        lower elpd. A positive ``elpd_diff`` favours the first model.

    Raises
    ------
    MismatchedObservationsError
        If the observations of both models can't be aligned.
    ValueError
        If either elpd is undefined or pointwise values are missing.

    Examples
    --------
    .. code-block:: python

        from arviz_base import load_arviz_data
        from psisloo import elpd_diff, loo
        loo_c = loo(load_arviz_data("centered_eight"), pointwise=True)
        loo_nc = loo(load_arviz_data("non_centered_eight"), pointwise=True)
        elpd_diff(loo_c, loo_nc, names=("centered", "non centered"))
    """
    name_a, name_b = names
    values_a, values_b = _align_pointwise(elpd_a, elpd_b, name_a, name_b)
    diff = values_a - values_b
    d_elpd = float(np.sum(diff))
    ranking = [name_a, name_b] if d_elpd >= 0 else [name_b, name_a]
    return ComparisonResult(d_elpd, elpd_se(diff), ranking)


def _check_defined(elpd_data, name):
    if elpd_data.elpd_i is None:
        raise ValueError(
            f"Model '{name}' is missing pointwise ELPD values. Recalculate with pointwise=True."
        )
    if elpd_data.failed_indices or not np.all(np.isfinite(elpd_data.elpd_i.values)):
        raise ValueError(
            f"The elpd of model '{name}' is undefined, non-finite pointwise values at "
            f"observations {list(elpd_data.failed_indices)}. Refit them before comparing."
        )


def _align_pointwise(elpd_a, elpd_b, name_a, name_b):
    """Return flattened ``elpd_i`` of both models in the observation order of `elpd_a`.

    Observations are matched by dimension name and coordinate label. Labels present
    in both models but in a different order are reordered to follow `elpd_a`.
    """
    _check_defined(elpd_a, name_a)
    _check_defined(elpd_b, name_b)
    elpd_i_a = elpd_a.elpd_i
    elpd_i_b = elpd_b.elpd_i

    if set(elpd_i_a.dims) != set(elpd_i_b.dims):
        raise MismatchedObservationsError(
            f"Models '{name_a}' and '{name_b}' have different observation dimensions: "
            f"{list(elpd_i_a.dims)} and {list(elpd_i_b.dims)}"
        )
    elpd_i_b = elpd_i_b.transpose(*elpd_i_a.dims)
    if elpd_i_a.shape != elpd_i_b.shape:
        raise MismatchedObservationsError(
            f"Models '{name_a}' and '{name_b}' have a different number of observations: "
            f"{elpd_i_a.size} and {elpd_i_b.size}"
        )

    for dim in elpd_i_a.dims:
        if dim not in elpd_i_a.coords or dim not in elpd_i_b.coords:
            continue
        labels_a = elpd_i_a.coords[dim].values
        labels_b = elpd_i_b.coords[dim].values
        if np.array_equal(labels_a, labels_b):
            continue
        unique_labels = len(set(labels_a.tolist())) == len(labels_a)
        if not unique_labels or set(labels_a.tolist()) != set(labels_b.tolist()):
            raise MismatchedObservationsError(
                f"Observations of '{name_a}' and '{name_b}' along '{dim}' can't be aligned, "
                "their coordinate labels differ"
            )
        _log.debug("Reordering '%s' of model '%s' to match model '%s'", dim, name_b, name_a)
        elpd_i_b = elpd_i_b.sel({dim: labels_a})

    return (
        np.asarray(elpd_i_a.values, dtype=float).ravel(),
        np.asarray(elpd_i_b.values, dtype=float).ravel(),
    )


def compare(
    compare_dict,
    method="stacking",
    baseline=None,
    var_name=None,
):
    r"""Rank models by their PSIS-LOO estimate of the ELPD and weight them.

    Every model is scored on the same observations. Inputs that are not yet
    :class:`ELPDData` go through :func:`psisloo.loo` with ``pointwise=True`` first.
    Differences are paired observation by observation with :func:`elpd_diff`, so ``dse``
    reflects that all models share the data, which the plain ``se`` columns ignore.

    Parameters
    ----------
    compare_dict : dict of {str: DataTree or ELPDData}
        Model name to fitted model or precomputed pointwise result.
    method : {"stacking", "BB-pseudo-BMA", "pseudo-BMA"}, optional
        How ``weight`` is computed, case insensitive:

        - ``"stacking"`` maximizes the leave-one-out log score of the weighted mixture
          of predictive densities [2]_.
        - ``"BB-pseudo-BMA"`` averages softmax weights of the elpd over Bayesian
          bootstrap resamples of the observations. The ``se`` column then holds the
          bootstrap standard error.
        - ``"pseudo-BMA"`` is the softmax of the elpd values.

        Defaults to ``rcParams["stats.ic_compare_method"]`` when None.
    baseline : str, optional
        Name of the model the ``elpd_diff`` and ``dse`` columns refer to. The best
        ranked model when omitted.
    var_name : str, optional
        Log likelihood variable to use for models with several of them.

    Returns
    -------
    DataFrame
        One row per model, indexed by name and sorted by decreasing elpd, with columns

        - **rank**: position in that order, starting at 0.
        - **elpd**, **p**, **se**: the model's own estimates.
        - **elpd_diff**: elpd of the baseline minus elpd of the model. Zero on the
          baseline row, positive for models worse than the baseline.
        - **weight**: model weight, the column sums to one.
        - **dse**: standard error of the paired difference against the baseline.
        - **warning**: whether the model's PSIS estimate has unreliable observations.

    Raises
    ------
    MismatchedObservationsError
        When two models can't be aligned observation by observation.
    ValueError
        For fewer than two models, an unknown `method` or `baseline`, or a model whose
        elpd is undefined.

    Examples
    --------
    .. code-block:: python

        from arviz_base import load_arviz_data
        from psisloo import compare
        compare(
            {
                "centered": load_arviz_data("centered_eight"),
                "non centered": load_arviz_data("non_centered_eight"),
            },
            baseline="centered",
        )

    See Also
    --------
    elpd_diff : Paired difference of two models.

    References
    ----------
    .. [1] Vehtari, Gelman and Gabry. Practical Bayesian model evaluation using
        leave-one-out cross-validation and WAIC. Statistics and Computing 27 (2017).
    .. [2] Yao, Vehtari, Simpson and Gelman. Using stacking to average Bayesian
        predictive distributions. Bayesian Analysis 13 (2018).
    """
    method = rcParams["stats.ic_compare_method"] if method is None else method
    available_methods = ["stacking", "bb-pseudo-bma", "pseudo-bma"]
    if method.lower() not in available_methods:
        raise ValueError(
            f"Invalid method '{method}'. "
            f"Available methods: {', '.join(available_methods)}. "
            f"Use 'stacking' for robust model averaging as recommended in the original paper "
            f"https://doi.org/10.1214/17-BA1091."
        )
    if len(compare_dict) < 2:
        raise ValueError("At least two models are needed for a comparison")
    if baseline is not None and baseline not in compare_dict:
        raise ValueError(f"baseline '{baseline}' is not one of the compared models")

    ics_dict = _calculate_ics(compare_dict, var_name=var_name)
    for name, elpd_data in ics_dict.items():
        _check_defined(elpd_data, name)
    names = sorted(ics_dict, key=lambda name: ics_dict[name].elpd, reverse=True)

    best = names[0]
    reference = best if baseline is None else baseline
    ic_i_val = np.column_stack(
        [_align_pointwise(ics_dict[best], ics_dict[name], best, name)[1] for name in names]
    )
    ses = np.array([ics_dict[name].se for name in names])

    method = method.lower()
    if method == "stacking":
        weights = _stacking_weights(ic_i_val)
    elif method == "bb-pseudo-bma":
        weights, ses = _bb_pseudo_bma_weights(ic_i_val)
    else:
        z_rv = np.exp(ic_i_val.sum(axis=0) - ic_i_val.sum(axis=0).max())
        weights = z_rv / np.sum(z_rv)
    _log.debug("Model weights computed with %s: %s", method, weights)

    rows = []
    for rank, name in enumerate(names):
        elpd_data = ics_dict[name]
        if name == reference:
            d_elpd, d_se = 0.0, 0.0
        else:
            d_elpd, d_se, _ = elpd_diff(ics_dict[reference], elpd_data, names=(reference, name))
        rows.append(
            {
                "rank": rank,
                "elpd": elpd_data.elpd,
                "p": elpd_data.p,
                "elpd_diff": d_elpd,
                "weight": weights[rank],
                "se": ses[rank],
                "dse": d_se,
                "warning": bool(elpd_data.warning),
            }
        )

    df_comp = pd.DataFrame(rows, index=names)
    df_comp["rank"] = df_comp["rank"].astype(int)
    df_comp["warning"] = df_comp["warning"].astype(bool)
    return df_comp


def _stacking_weights(ic_i_val):
    """Stacking of predictive distributions, Yao et al. (2018)."""
    rows, cols = ic_i_val.shape
    exp_ic_i = np.exp(ic_i_val - ic_i_val.max(axis=1, keepdims=True))
    km1 = cols - 1

    def w_fuller(weights):
        return np.concatenate((weights, [max(1.0 - np.sum(weights), 0.0)]))

    def log_score(weights):
        w_full = w_fuller(weights)
        score = 0.0
        for i in range(rows):
            score += np.log(np.dot(exp_ic_i[i], w_full))
        return -score

    def gradient(weights):
        w_full = w_fuller(weights)
        grad = np.zeros(km1)
        for k, i in itertools.product(range(km1), range(rows)):
            grad[k] += (exp_ic_i[i, k] - exp_ic_i[i, km1]) / np.dot(exp_ic_i[i], w_full)
        return -grad

    theta = np.full(km1, 1.0 / cols)
    bounds = [(0.0, 1.0) for _ in range(km1)]
    constraints = [
        {"type": "ineq", "fun": lambda x: -np.sum(x) + 1.0},
        {"type": "ineq", "fun": np.sum},
    ]

    minimize_result = minimize(
        fun=log_score, x0=theta, jac=gradient, bounds=bounds, constraints=constraints
    )
    weights = w_fuller(minimize_result["x"])
    return weights / np.sum(weights)


def _bb_pseudo_bma_weights(ic_i_val, b_samples=1000, seed=124):
    """Pseudo-BMA weights stabilized with the Bayesian bootstrap.

    Returns the weights and the bootstrap standard error of each model's elpd.
    """
    rows, cols = ic_i_val.shape
    ic_i_val = ic_i_val * rows

    b_weighting = dirichlet.rvs(alpha=[1] * rows, size=b_samples, random_state=seed)
    weights = np.zeros((b_samples, cols))
    z_bs = np.zeros_like(weights)
    for i in range(b_samples):
        z_b = np.dot(b_weighting[i], ic_i_val)
        u_weights = np.exp(z_b - np.max(z_b))
        z_bs[i] = z_b
        weights[i] = u_weights / np.sum(u_weights)

    return weights.mean(axis=0), z_bs.std(axis=0)


def _calculate_ics(compare_dict, var_name=None):
    """Calculate LOO only if necessary.

    It always calls LOO with ``pointwise=True``.

    Parameters
    ----------
    compare_dict :  dict of {str : DataTree or ELPDData}
        A dictionary of model names and DataTree or ELPDData objects.
    var_name : str, optional
        Name of the variable storing pointwise log likelihood values in ``log_likelihood`` group.

    Returns
    -------
    compare_dict : dict of ELPDData
    """
    for name, elpd_data in compare_dict.items():
        if isinstance(elpd_data, ELPDData) and elpd_data.elpd_i is None:
            raise ValueError(
                f"Model '{name}' is missing pointwise ELPD values. Recalculate with pointwise=True."
            )

    compare_dict = deepcopy(compare_dict)
    for name, dataset in compare_dict.items():
        if not isinstance(dataset, ELPDData):
            try:
                compare_dict[name] = loo(dataset, pointwise=True, var_name=var_name)
            except Exception as e:
                raise e.__class__(
                    f"Encountered error trying to compute ELPD from model {name}."
                ) from e
    return compare_dict
