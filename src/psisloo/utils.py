"""psisloo general utility functions and result containers."""

from collections import namedtuple
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from xarray import DataArray

__all__ = [
    "CATEGORIES",
    "ELPDData",
    "PointwiseEstimate",
    "classify_pareto_k",
    "get_log_likelihood",
]

CATEGORIES = ("reliable", "borderline", "unreliable", "failed")

PointwiseEstimate = namedtuple(
    "PointwiseEstimate", ["index", "elpd", "se", "pareto_k", "category"]
)


def get_log_likelihood(idata, var_name=None):
    """Retrieve the log likelihood dataarray of a given variable."""
    if not hasattr(idata, "log_likelihood"):
        raise TypeError("log likelihood not found in inference data object")
    if var_name is None:
        var_names = list(idata.log_likelihood.data_vars)
        if len(var_names) > 1:
            raise TypeError(
                f"Found several log likelihood arrays {var_names}, var_name cannot be None"
            )
        return idata.log_likelihood[var_names[0]]
    try:
        log_likelihood = idata.log_likelihood[var_name]
    except KeyError as err:
        raise TypeError(f"No log likelihood data named {var_name} found") from err
    return log_likelihood


def classify_pareto_k(pareto_k, elpd_i=None, ok_k=0.5, bad_k=0.7):
    """Assign a reliability category to each observation.

    Parameters
    ----------
    pareto_k : array-like
    elpd_i : array-like, optional
        Observations whose elpd_i is not finite are classified as ``"failed"``.
    ok_k, bad_k : float
        ``k < ok_k`` is reliable, ``ok_k <= k < bad_k`` borderline and
        ``k >= bad_k`` unreliable. Undefined (NaN) k values are unreliable.

    Returns
    -------
    ndarray of str
        Same shape as `pareto_k`.
    """
    k_values = np.asarray(pareto_k, dtype=float)
    categories = np.full(k_values.shape, "unreliable", dtype=object)
    with np.errstate(invalid="ignore"):
        categories[k_values < ok_k] = "reliable"
        categories[(k_values >= ok_k) & (k_values < bad_k)] = "borderline"
    if elpd_i is not None:
        categories[~np.isfinite(np.asarray(elpd_i, dtype=float))] = "failed"
    return categories


BASE_FMT = """Computed from {{n_samples}} posterior samples and \
{{n_points}} observations log-likelihood matrix.

{{0:{0}}} Estimate       SE
elpd_{{kind}} {{ic_value:8.2f}}  {{ic_se:7.2f}}
p_{{kind:{1}}} {{p_value:8.2f}}        -"""
POINTWISE_LOO_FMT = """------

Pareto k diagnostic values:
                           {{0:>{0}}} {{1:>6}}
(-Inf, {{10:.2f}})  (reliable)   {{2:{0}d}} {{6:6.1f}}%
 [{{10:.2f}}, {{11:.2f}}) (borderline) {{3:{0}d}} {{7:6.1f}}%
 [{{11:.2f}}, Inf)  (unreliable) {{4:{0}d}} {{8:6.1f}}%
 failed                    {{5:{0}d}} {{9:6.1f}}%
"""


@dataclass
class ELPDData:  # pylint: disable=too-many-instance-attributes
    """Class to contain the data from elpd information criterion like loo.

    ``elpd``, ``se`` and ``p`` are NaN when some pointwise value is not finite,
    in which case ``failed_indices`` holds their flat positions.
    """

    kind: str
    elpd: float
    se: float
    p: float
    n_samples: int
    n_data_points: int
    scale: str
    warning: bool
    good_k: float
    elpd_i: DataArray = None
    pareto_k: DataArray = None
    p_loo_i: DataArray = None
    log_weights: DataArray = None
    ok_k: float = 0.5
    refitted: DataArray = None
    failed_indices: list = field(default_factory=list)
    counts: dict = None

    def __post_init__(self):
        """Compute reliability counts from the pointwise values if not given."""
        if self.counts is None and self.pareto_k is not None:
            self.counts = self.category_counts()

    @property
    def reduced_trust(self):
        """True if some observation is unreliable or failed."""
        return bool(self.warning) or bool(self.failed_indices)

    def categories(self):
        """Reliability category of each observation, flattened in observation order."""
        if self.pareto_k is None:
            raise ValueError("Pointwise values are needed. Recalculate with pointwise=True.")
        elpd_i = None if self.elpd_i is None else self.elpd_i.values.ravel()
        return classify_pareto_k(
            self.pareto_k.values.ravel(), elpd_i, ok_k=self.ok_k, bad_k=self.good_k
        )

    def category_counts(self):
        """Count observations in each reliability category."""
        if self.pareto_k is None:
            if self.counts is None:
                raise ValueError("Pointwise values are needed. Recalculate with pointwise=True.")
            return dict(self.counts)
        categories = self.categories()
        return {cat: int(np.sum(categories == cat)) for cat in CATEGORIES}

    def estimates(self):
        """Return one :class:`PointwiseEstimate` per observation, in observation order."""
        categories = self.categories()
        return [
            PointwiseEstimate(idx, float(elpd), np.nan, float(k), cat)
            for idx, (elpd, k, cat) in enumerate(
                zip(self.elpd_i.values.ravel(), self.pareto_k.values.ravel(), categories)
            )
        ]

    def to_dataframe(self):
        """Per-observation table with elpd_i, p_loo_i, pareto_k, category and refitted."""
        if self.elpd_i is None:
            raise ValueError("Pointwise values are needed. Recalculate with pointwise=True.")
        if self.elpd_i.ndim:
            table = pd.DataFrame({"elpd_i": self.elpd_i.to_series()})
        else:
            table = pd.DataFrame({"elpd_i": [self.elpd_i.item()]})
        n_points = len(table)
        table["p_loo_i"] = (
            np.full(n_points, np.nan) if self.p_loo_i is None else self.p_loo_i.values.ravel()
        )
        table["pareto_k"] = self.pareto_k.values.ravel()
        table["category"] = self.categories()
        table["refitted"] = (
            np.zeros(n_points, dtype=bool)
            if self.refitted is None
            else self.refitted.values.ravel().astype(bool)
        )
        return table

    def __str__(self):
        """Print elpd data in a user friendly way."""
        kind = self.kind
        padding = len("elpd") + len(kind) + 1
        base = BASE_FMT.format(padding, padding - 2)
        base = base.format(
            "",
            kind=kind,
            n_samples=self.n_samples,
            n_points=self.n_data_points,
            ic_value=self.elpd,
            ic_se=self.se,
            p_value=self.p,
        )

        if self.failed_indices:
            base += (
                f"\n\nelpd_{kind} is undefined, non-finite pointwise values at observations "
                f"{list(self.failed_indices)}."
            )
        elif self.p_loo_i is not None and np.isnan(self.p):
            missing = np.flatnonzero(~np.isfinite(self.p_loo_i.values.ravel())).tolist()
            base += (
                f"\n\np_{kind} is undefined, the full-data lppd of observations {missing} "
                "is unknown."
            )
        if self.warning:
            base += "\n\nThere has been a warning during the calculation. Please check the results."

        if self.counts is not None:
            counts = [self.counts[cat] for cat in CATEGORIES]
            total = max(sum(counts), 1)
            extended = POINTWISE_LOO_FMT.format(max(4, len(str(max(counts)))))
            extended = extended.format(
                "Count",
                "Pct.",
                *counts,
                *(np.array(counts) / total * 100),
                self.ok_k,
                self.good_k,
            )
            base = "\n".join([base, extended])

        if self.refitted is not None and self.refitted.values.any():
            base += (
                f"\n{int(self.refitted.values.sum())} observation(s) replaced by exact "
                "leave-one-out refits."
            )
        return base

    def __repr__(self):
        """Alias to ``__str__``."""
        return self.__str__()

    def __getitem__(self, key):
        """Define getitem magic method."""
        return getattr(self, key)
