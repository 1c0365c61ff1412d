"""Warnings and exceptions raised by psisloo."""

__all__ = [
    "InsufficientDrawsWarning",
    "NonFiniteLikelihoodWarning",
    "ParetoKWarning",
    "RefitFailureWarning",
    "MismatchedObservationsError",
    "RefitCancelledError",
]


class InsufficientDrawsWarning(UserWarning):
    """Too few draws to fit a generalized Pareto distribution to the weight tail."""


class NonFiniteLikelihoodWarning(UserWarning):
    """Some pointwise log likelihood values are NaN or infinite."""


class ParetoKWarning(UserWarning):
    """Some Pareto shape values are above the reliability threshold."""


class RefitFailureWarning(UserWarning):
    """An exact leave-one-out refit raised or returned a non-finite value."""


class MismatchedObservationsError(ValueError):
    """Models can't be compared observation by observation."""


class RefitCancelledError(RuntimeError):
    """A refit sweep was cancelled before finishing."""
