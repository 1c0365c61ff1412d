# pylint: disable=wildcard-import
"""Pareto-smoothed importance sampling leave-one-out cross-validation."""

from psisloo.errors import *
from psisloo.config import PSISConfig, config_context, get_config, set_config
from psisloo.utils import *
from psisloo.accessors import *
from psisloo.base import array_stats, dataarray_stats
from psisloo.loo import (
    ComparisonResult,
    SamplingWrapper,
    compare,
    elpd_diff,
    loo,
    loo_i,
    reloo,
)

__version__ = "0.1.0"
