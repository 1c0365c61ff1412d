"""xarray accessors for PSIS computations.

Importing :mod:`psisloo` registers the ``psis`` accessor on :class:`xarray.DataArray`
objects holding pointwise log likelihood values:

.. code-block:: python

    log_weights, pareto_k = log_lik.psis.psislw()
    elpd_i, pareto_k, p_loo_i = log_lik.psis.loo()
"""

import xarray as xr

from psisloo.base import dataarray_stats
from psisloo.config import get_config

__all__ = ["PsisDataArrayAccessor"]


@xr.register_dataarray_accessor("psis")
class PsisDataArrayAccessor:
    """Accessor exposing PSIS functions on pointwise log likelihood DataArrays."""

    def __init__(self, xarray_obj):
        self._obj = xarray_obj

    @staticmethod
    def _resolve(r_eff, config):
        config = get_config(config)
        return (config.r_eff if r_eff is None else r_eff), config.tail_kwargs

    def psislw(self, r_eff=None, dims=None, config=None):
        """Compute smoothed log weights and Pareto k along the sample dimensions."""
        r_eff, tail_kwargs = self._resolve(r_eff, config)
        return dataarray_stats.psislw(self._obj, r_eff=r_eff, dim=dims, **tail_kwargs)

    def pareto_khat(self, r_eff=None, sample_dims=None, config=None):
        """Compute the Pareto shape diagnostic of the PSIS weights."""
        r_eff, tail_kwargs = self._resolve(r_eff, config)
        return dataarray_stats.pareto_khat(
            self._obj, sample_dims=sample_dims, r_eff=r_eff, **tail_kwargs
        )

    def loo(self, r_eff=None, sample_dims=None, config=None):
        """Compute pointwise elpd, Pareto k and p_loo."""
        r_eff, tail_kwargs = self._resolve(r_eff, config)
        return dataarray_stats.loo(self._obj, sample_dims=sample_dims, reff=r_eff, **tail_kwargs)
