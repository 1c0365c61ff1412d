"""Defaults for the PSIS-LOO computations.

Global settings shared with the rest of the ArviZ ecosystem (pointwise output,
sample dimensions, comparison method) are read from :data:`arviz_base.rcParams`.
The knobs specific to Pareto smoothing and the reliability gate live in
:class:`PSISConfig`.
"""

from contextlib import contextmanager
from dataclasses import dataclass, replace

from psisloo.validate import validate_config

__all__ = ["PSISConfig", "get_config", "set_config", "config_context"]


@dataclass(frozen=True)
class PSISConfig:
    """Tunable constants of Pareto-smoothed importance sampling LOO.

    Attributes
    ----------
    ok_k : float
        Pareto shape values below ``ok_k`` are considered reliable.
    bad_k : float
        Pareto shape values at or above ``bad_k`` are considered unreliable.
        Values in ``[ok_k, bad_k)`` are borderline.
    tail_fraction : float
        Largest fraction of the draws used for the generalized Pareto fit.
    tail_scale : float
        The tail never holds more than ``tail_scale * sqrt(S / r_eff)`` draws.
    min_tail_draws : int
        Minimum tail size for which a Pareto fit is attempted.
    r_eff : float
        Default relative MCMC efficiency (``ess / S``).
    refit_workers : int
        Default number of concurrent exact refits in :func:`~psisloo.reloo`.
    """

    ok_k: float = 0.5
    bad_k: float = 0.7
    tail_fraction: float = 0.2
    tail_scale: float = 3.0
    min_tail_draws: int = 5
    r_eff: float = 1.0
    refit_workers: int = 1

    def __post_init__(self):
        """Validate field values."""
        validate_config(self)

    @property
    def tail_kwargs(self):
        """Keyword arguments understood by the smoothing functions."""
        return {
            "tail_fraction": self.tail_fraction,
            "tail_scale": self.tail_scale,
            "min_tail_draws": self.min_tail_draws,
        }


_config = PSISConfig()


def get_config(config=None):
    """Return `config` if given, the process wide defaults otherwise."""
    if config is None:
        return _config
    if not isinstance(config, PSISConfig):
        raise TypeError(f"config must be a PSISConfig instance, got {type(config).__name__}")
    return config


def set_config(**kwargs):
    """Update the process wide defaults and return the previous ones.

    Examples
    --------
    Use a stricter reliability threshold from now on:

    .. code-block:: python

        from psisloo import set_config
        set_config(bad_k=0.5)
    """
    global _config  # pylint: disable=global-statement
    previous = _config
    _config = replace(_config, **kwargs)
    return previous


@contextmanager
def config_context(**kwargs):
    """Temporarily override the defaults inside a ``with`` block."""
    previous = set_config(**kwargs)
    try:
        yield _config
    finally:
        set_config(**vars(previous))
