# pylint: disable=redefined-outer-name
"""Test related helper functions."""

import os
import sys
import warnings
from typing import Any

import numpy as np
import pytest


def importorskip(modname: str, reason: str | None = None) -> Any:
    """Import and return the requested module ``modname``.

    Doesn't allow skips when ``PSISLOO_REQUIRE_ALL_DEPS`` env var is defined.
    Borrowed and modified from ``pytest.importorskip``.

    Parameters
    ----------
    modname : str
        the name of the module to import
    reason : str, optional
        this reason is shown as skip message when the module cannot be imported.
    """
    __tracebackhide__ = True  # pylint: disable=unused-variable
    compile(modname, "", "eval")  # to catch syntaxerrors

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            __import__(modname)
        except ImportError as exc:
            if "PSISLOO_REQUIRE_ALL_DEPS" in os.environ:
                raise exc
            if reason is None:
                reason = f"could not import {modname!r}: {exc}"
            pytest.skip(reason, allow_module_level=True)

    mod = sys.modules[modname]
    return mod


def log_lik_from_likelihoods(likelihoods, coords=None):
    """Log likelihood DataArray from a ``(draws, observations)`` table of likelihood values.

    The result has a single chain.
    """
    import xarray as xr

    log_lik = np.log(np.asarray(likelihoods, dtype=float))
    return xr.DataArray(
        log_lik[np.newaxis],
        dims=["chain", "draw", "obs_dim"],
        coords={} if coords is None else {"obs_dim": coords},
        name="y",
    )


def create_log_likelihood(
    n_obs=6, n_chains=2, n_draws=500, heavy=(), seed=10, obs_dim="obs_dim", coords=None
):
    """Log likelihood DataArray with well behaved observations.

    Observations listed in `heavy` get importance ratios with a very heavy right tail.
    """
    import xarray as xr

    rng = np.random.default_rng(seed)
    log_lik = rng.normal(-1.0, 0.01, size=(n_chains, n_draws, n_obs))
    for idx in heavy:
        log_lik[..., idx] = 1.5 * np.log(rng.uniform(size=(n_chains, n_draws)))
    return xr.DataArray(
        log_lik,
        dims=["chain", "draw", obs_dim],
        coords={} if coords is None else {obs_dim: coords},
        name="y",
    )


def create_model(seed=10, transpose=False):
    """Create model with fake data."""
    from arviz_base import from_dict

    rng = np.random.default_rng(seed)
    nchains = 4
    ndraws = 500
    data = {
        "J": 8,
        "y": np.array([28.0, 8.0, -3.0, 7.0, -1.0, 1.0, 18.0, 12.0]),
    }
    posterior = {
        "mu": rng.normal(size=(nchains, ndraws)),
        "theta": rng.normal(size=(nchains, ndraws, data["J"])),
    }
    log_likelihood = {
        "y": rng.normal(-3.5, 0.1, size=(nchains, ndraws, data["J"])),
    }
    model = from_dict(
        {
            "posterior": posterior,
            "log_likelihood": log_likelihood,
            "observed_data": {"y": data["y"]},
        },
        dims={"y": ["school"], "theta": ["school"]},
        coords={"school": [f"school_{j}" for j in range(data["J"])]},
    )
    if transpose:
        for group, group_dataset in list(model.children.items()):
            if all(dim in group_dataset.dims for dim in ("draw", "chain")):
                model[group] = group_dataset.to_dataset().transpose("draw", "chain", ...)
    return model
