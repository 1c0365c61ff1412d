"""Pareto-smoothed importance sampling LOO (PSIS-LOO-CV), exact refits and model comparison."""

from psisloo.loo.loo import loo, loo_i
from psisloo.loo.wrapper import SamplingWrapper
from psisloo.loo.reloo import reloo
from psisloo.loo.compare import ComparisonResult, compare, elpd_diff, _calculate_ics

__all__ = [
    "loo",
    "loo_i",
    "reloo",
    "SamplingWrapper",
    "compare",
    "elpd_diff",
    "ComparisonResult",
]
