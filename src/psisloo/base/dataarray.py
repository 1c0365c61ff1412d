"""Class with dataarray functions.

"dataarray" functions take :class:`xarray.DataArray` as inputs.
"""

import numpy as np
from xarray import apply_ufunc

from psisloo.base.array import array_stats
from psisloo.validate import validate_dims, validate_dims_chain_draw_axis


class BaseDataArray:
    """Class with numpy+scipy only functions that take DataArray inputs."""

    def __init__(self, array_class=None):
        self.array_class = array_stats if array_class is None else array_class

    def psislw(self, da, r_eff=1, dim=None, **kwargs):
        """Compute log weights for Pareto-smoothed importance sampling (PSIS) method."""
        dims = validate_dims(dim)
        log_weights, pareto_k = apply_ufunc(
            self.array_class.psislw,
            da,
            input_core_dims=[dims],
            output_core_dims=[dims, []],
            kwargs={"axis": np.arange(-len(dims), 0, 1), "r_eff": r_eff, **kwargs},
        )
        return log_weights.rename("log_weights"), pareto_k.rename("pareto_k")

    def pareto_khat(self, da, sample_dims=None, r_eff=1, **kwargs):
        """Compute Pareto k-hat diagnostic on DataArray input."""
        dims, chain_axis, draw_axis = validate_dims_chain_draw_axis(sample_dims)
        return apply_ufunc(
            self.array_class.pareto_khat,
            da,
            input_core_dims=[dims],
            output_core_dims=[[]],
            kwargs={"chain_axis": chain_axis, "draw_axis": draw_axis, "r_eff": r_eff, **kwargs},
        ).rename("pareto_k")

    def loo(self, da, sample_dims=None, reff=1, **kwargs):
        """Compute pointwise elpd, Pareto k and p_loo on DataArray input."""
        dims, chain_axis, draw_axis = validate_dims_chain_draw_axis(sample_dims)
        elpd_i, pareto_k, p_loo_i = apply_ufunc(
            self.array_class.loo,
            da,
            input_core_dims=[dims],
            output_core_dims=[[], [], []],
            kwargs={"chain_axis": chain_axis, "draw_axis": draw_axis, "reff": reff, **kwargs},
        )
        return elpd_i.rename("elpd_i"), pareto_k.rename("pareto_k"), p_loo_i.rename("p_loo_i")


dataarray_stats = BaseDataArray(array_class=array_stats)
