"""Validator functions for common arguments."""

from arviz_base import rcParams


def validate_dims(dims):
    """Validate `dims` argument.

    Uses the default in rcParams and ensures the returned object is a list.

    Parameters
    ----------
    dims : str, sequence of hashable, or None

    Returns
    -------
    list
    """
    if dims is None:
        dims = rcParams["data.sample_dims"]
    if isinstance(dims, str):
        dims = [dims]
    return list(dims)


def validate_dims_chain_draw_axis(dims):
    """Validate `dims` argument for functions that use chain_axis and draw_axis.

    In such cases, dims can have length 1 or 2 depending on there being a chain dimension.

    Returns
    -------
    list
        List of dimensions
    int or None
        Positional index for chain dimension
    int
        Positional index for draw dimension
    """
    dims = validate_dims(dims)
    draw_axis = -1
    if len(dims) == 1:
        chain_axis = None
    elif len(dims) == 2:
        chain_axis = -2
    else:
        raise ValueError("dims can only have 1 or 2 elements")
    return dims, chain_axis, draw_axis


def validate_k_thresholds(ok_k, bad_k):
    """Validate the Pareto k thresholds that split observations into reliability classes."""
    if not ok_k <= bad_k:
        raise ValueError(f"ok_k ({ok_k}) must not be larger than bad_k ({bad_k})")
    return ok_k, bad_k


def validate_config(config):
    """Validate the fields of a :class:`~psisloo.config.PSISConfig`."""
    validate_k_thresholds(config.ok_k, config.bad_k)
    if not 0 < config.tail_fraction < 1:
        raise ValueError(
            f"tail_fraction should be in the interval (0, 1) but got {config.tail_fraction}"
        )
    if config.tail_scale <= 0:
        raise ValueError(f"tail_scale must be positive but got {config.tail_scale}")
    if config.min_tail_draws < 2:
        raise ValueError(f"min_tail_draws must be at least 2 but got {config.min_tail_draws}")
    if config.r_eff <= 0:
        raise ValueError(f"r_eff must be positive but got {config.r_eff}")
    if config.refit_workers < 1:
        raise ValueError(f"refit_workers must be at least 1 but got {config.refit_workers}")
    return config
