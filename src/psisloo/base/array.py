"""Class with array functions.

"array" functions work on any dimension array,
batching as necessary.
"""

import warnings

import numpy as np

from psisloo.base.pareto import _ParetoBase
from psisloo.base.stats_utils import make_ufunc
from psisloo.errors import InsufficientDrawsWarning


def process_chain_none(ary, chain_axis, draw_axis):
    """Process array with chain and draw axis to cover the case ``chain_axis=None``."""
    if chain_axis is None:
        ary = np.expand_dims(ary, axis=0)
        chain_axis = 0
        draw_axis = draw_axis + 1 if draw_axis >= 0 else draw_axis
    return ary, chain_axis, draw_axis


def process_ary_axes(ary, axes):
    """Process input array and axes to ensure input core dims are the last ones.

    Parameters
    ----------
    ary : array_like
    axes : int or sequence of int
    """
    if axes is None:
        axes = list(range(ary.ndim))
    if isinstance(axes, int | np.integer):
        axes = [axes]
    axes = [int(ax) if ax >= 0 else ary.ndim + int(ax) for ax in axes]
    reordered_axes = [i for i in range(ary.ndim) if i not in axes] + list(axes)
    ary = np.transpose(ary, axes=reordered_axes)
    return ary, np.arange(-len(axes), 0, dtype=int)


def _warn_insufficient_draws(pareto_k, usable, n_draws):
    """Warn once if some usable observations got an undefined Pareto k."""
    undefined = np.isnan(pareto_k) & usable
    if np.any(undefined):
        warnings.warn(
            f"{n_draws} draws are too few to fit a generalized Pareto distribution to the "
            f"importance weights of {np.sum(undefined)} observation(s). Their Pareto k is "
            "undefined and the weights were not smoothed.",
            InsufficientDrawsWarning,
            stacklevel=3,
        )


class BaseArray(_ParetoBase):
    """Class with numpy+scipy only functions that take array inputs.

    Notes
    -----
    If a new dimension is created by the function it must be added at the end of the array.
    Otherwise the functions won't be compatible with :func:`xarray.apply_ufunc`.
    """

    def psislw(self, ary, r_eff=1, axis=-1, **kwargs):
        """Compute log weights for Pareto-smoothed importance sampling (PSIS) method.

        Parameters
        ----------
        ary : array-like
            Pointwise log likelihood values.
        r_eff : float, default 1
        axis : int, sequence of int or None, default -1
            Sample axes.
        **kwargs
            ``tail_fraction``, ``tail_scale`` and ``min_tail_draws``.

        Returns
        -------
        log_weights : array-like
            Same shape as `ary` but `axis` dimensions moved to the end
        khat : array-like
            Shape of `ary` minus dimensions indicated in `axis`
        """
        ary, axes = process_ary_axes(np.asarray(ary, dtype=float), axis)
        core_shape = tuple(ary.shape[i] for i in axes)
        psl_ufunc = make_ufunc(self._psislw, n_output=2, n_dims=len(axes), ravel=False)
        log_weights, khat = psl_ufunc(ary, r_eff=r_eff, out_shape=[core_shape, ()], **kwargs)
        usable = np.all(np.isfinite(log_weights), axis=tuple(axes))
        _warn_insufficient_draws(khat, usable, int(np.prod(core_shape)))
        return log_weights, khat

    def pareto_khat(self, ary, chain_axis=-2, draw_axis=-1, r_eff=1, **kwargs):
        """Compute the Pareto shape diagnostic of the PSIS weights.

        Parameters
        ----------
        ary : array-like
            Pointwise log likelihood values.
        chain_axis : int or None, default -2
        draw_axis : int, default -1
        r_eff : float, default 1
        """
        ary, chain_axis, draw_axis = process_chain_none(
            np.asarray(ary, dtype=float), chain_axis, draw_axis
        )
        _, khat = self.psislw(ary, r_eff=r_eff, axis=[chain_axis, draw_axis], **kwargs)
        return khat

    def loo(self, ary, chain_axis=-2, draw_axis=-1, reff=1, **kwargs):
        """Compute Pareto-smoothed importance sampling leave-one-out cross-validation (PSIS-LOO-CV).

        Parameters
        ----------
        ary : array-like
        chain_axis : int or None, default -2
        draw_axis : int, default -1
        reff : float, default 1

        Returns
        -------
        elpd_i : array-like
        pareto_k : array-like
        p_loo_i : array-like
        """
        ary, chain_axis, draw_axis = process_chain_none(
            np.asarray(ary, dtype=float), chain_axis, draw_axis
        )
        ary, axes = process_ary_axes(ary, [chain_axis, draw_axis])
        n_draws = ary.shape[-2] * ary.shape[-1]

        loo_ufunc = make_ufunc(self._loo, n_output=3, n_dims=len(axes))
        elpd_i, khat, p_loo_i = loo_ufunc(ary, r_eff=reff, **kwargs)
        _warn_insufficient_draws(khat, np.isfinite(elpd_i), n_draws)
        return elpd_i, khat, p_loo_i


array_stats = BaseArray()
