"""Stats-utility functions for psisloo."""

import logging

import numpy as np

__all__ = ["make_ufunc", "elpd_se", "nonfinite_positions"]

_log = logging.getLogger(__name__)


def make_ufunc(func, n_dims=1, n_output=1, ravel=True):
    """Make ufunc from a function taking 1D array input.

    Parameters
    ----------
    func : callable
    n_dims : int, optional
        Number of core dimensions not broadcasted. Dimensions are skipped from the end.
        At minimum n_dims > 0.
    n_output : int, optional
        Select number of results returned by `func`.
        If n_output > 1, ufunc returns a tuple of objects else returns an object.
    ravel : bool, optional
        If true, ravel the core dimensions before calling `func`.

    Returns
    -------
    callable
        ufunc wrapper for `func`. It accepts an ``out_shape`` keyword with the shape
        of the core dimensions of each output, ``()`` for scalar outputs.
    """
    if n_dims < 1:
        raise TypeError("n_dims must be one or higher.")

    def _ufunc(ary, *args, out_shape=None, **kwargs):
        element_shape = ary.shape[:-n_dims]
        if out_shape is None:
            out_shape = [()] * n_output
        out = tuple(np.empty((*element_shape, *shape)) for shape in out_shape)
        for idx in np.ndindex(element_shape):
            ary_idx = ary[idx].ravel() if ravel else ary[idx]
            results = func(ary_idx, *args, **kwargs)
            if n_output == 1:
                results = (results,)
            for i, res in enumerate(results):
                out[i][idx] = np.asarray(res)
        if n_output == 1:
            return out[0]
        return out

    _ufunc.__doc__ = f"Batched version of {getattr(func, '__name__', 'func')}."
    return _ufunc


def elpd_se(elpd_i):
    """Standard error of a sum of pointwise values, ``sqrt(n) * sd(elpd_i)``.

    The sample standard deviation is used. A single value has zero standard error.
    Non-finite inputs propagate as NaN.
    """
    values = np.ravel(np.asarray(elpd_i, dtype=float))
    n_points = values.size
    if n_points < 2:
        return 0.0 if n_points == 1 and np.isfinite(values[0]) else np.nan
    return float(np.sqrt(n_points) * np.std(values, ddof=1))


def nonfinite_positions(ary):
    """Return flat positions of the non-finite elements in `ary`."""
    positions = np.flatnonzero(~np.isfinite(np.asarray(ary, dtype=float)))
    if positions.size:
        _log.debug("Found %d non-finite values at positions %s", positions.size, positions)
    return positions.tolist()
