"""Pareto smoothed importance sampling.

Everything here acts on a single observation, i.e. on a 1D array holding one
value per posterior draw, and only depends on NumPy and SciPy.
See Vehtari et al., 2024 (https://doi.org/10.48550/arXiv.1507.02646)
"""

import numpy as np
from scipy.special import logsumexp


class _ParetoBase:
    """Class with numpy+scipy only PSIS functions."""

    @staticmethod
    def _get_ps_tails(n_draws, r_eff=1, tail_fraction=0.2, tail_scale=3.0):
        """Number of largest importance ratios used to fit the generalized Pareto distribution."""
        n_draws_tail = int(
            np.ceil(min(tail_fraction * n_draws, tail_scale * np.sqrt(n_draws / r_eff)))
        )
        # at least one draw has to stay below the threshold
        return min(n_draws_tail, n_draws - 1)

    def _psislw(self, ary, r_eff=1, **kwargs):
        """Compute PSIS log weights from the pointwise log likelihood of one observation.

        Parameters
        ----------
        ary : array
            Log likelihood values, one per draw. Any shape, it is flattened.
        r_eff : float, optional
            Relative efficiency. Effective sample size divided the number of samples.
        **kwargs
            Passed to :meth:`_psis_smooth`.

        Returns
        -------
        log_weights : array
            Normalized smoothed log weights, same shape as `ary`.
        khat : float
            Estimated Pareto shape parameter.
        """
        ary = np.asarray(ary, dtype=float)
        log_weights, khat = self._psis_smooth(-ary.ravel(), r_eff=r_eff, **kwargs)
        return log_weights.reshape(ary.shape), khat

    def _psis_smooth(
        self, log_ratios, r_eff=1, tail_fraction=0.2, tail_scale=3.0, min_tail_draws=5
    ):
        """Pareto smooth and normalize importance log ratios.

        The input is never modified. Returns normalized log weights and the
        Pareto shape estimate ``khat``:

        * NaN weights and NaN ``khat`` if some ratio is not finite.
        * uniform weights and ``khat = 0`` if all ratios are equal.
        * unsmoothed weights and NaN ``khat`` if the tail would hold fewer
          than `min_tail_draws` draws.
        * unsmoothed weights and ``khat = inf`` if the tail fit fails.
        """
        log_ratios = np.array(log_ratios, dtype=float).ravel()
        n_draws = log_ratios.size

        if not np.all(np.isfinite(log_ratios)):
            return np.full(n_draws, np.nan), np.nan

        log_ratios -= np.max(log_ratios)
        if np.all(log_ratios == 0):
            return np.full(n_draws, -np.log(n_draws)), 0.0

        n_draws_tail = self._get_ps_tails(n_draws, r_eff, tail_fraction, tail_scale)
        if n_draws_tail < min_tail_draws:
            khat = np.nan
        else:
            log_ratios, khat = self._ps_tail(log_ratios, n_draws, n_draws_tail)

        log_ratios -= logsumexp(log_ratios)
        return log_ratios, khat

    def _ps_tail(self, log_ratios, n_draws, n_draws_tail):
        """Replace the right tail of `log_ratios` by generalized Pareto quantiles.

        `log_ratios` must have its maximum at 0. It is modified in place.
        """
        tail_ids = np.arange(n_draws - n_draws_tail, n_draws, dtype=int)
        ordered = np.argsort(log_ratios)
        draws_tail = log_ratios[ordered[tail_ids]]
        cutoff = log_ratios[ordered[tail_ids[0] - 1]]  # largest value smaller than tail values
        max_tail = draws_tail[-1]

        if max_tail - draws_tail[0] < np.finfo(float).tiny:
            return log_ratios, 0.0

        exp_cutoff = np.exp(cutoff)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            khat, sigma = self._gpdfit(np.exp(draws_tail) - exp_cutoff)
            if not np.isfinite(khat):
                return log_ratios, np.inf
            probs = np.arange(0.5, n_draws_tail) / n_draws_tail
            smoothed = np.log(self._gpinv(probs, khat, sigma, exp_cutoff))

        if not np.all(np.isfinite(smoothed)):
            return log_ratios, np.inf

        smoothed[smoothed > max_tail] = max_tail
        log_ratios[ordered[tail_ids]] = smoothed
        return log_ratios, khat

    @staticmethod
    def _gpdfit(ary):
        """Estimate the parameters for the Generalized Pareto Distribution (GPD).

        Empirical Bayes estimate for the parameters (kappa, sigma) of the generalized Pareto
        distribution given the data, following Zhang and Stephens (2009).

        The fit uses a prior for kappa to stabilize estimates for very small (effective)
        sample sizes. The weakly informative prior is a Gaussian centered at 0.5.

        Parameters
        ----------
        ary: array
            sorted 1D array of positive exceedances over the threshold

        Returns
        -------
        kappa: float
            estimated shape parameter
        sigma: float
            estimated scale parameter
        """
        prior_bs = 3
        prior_k = 10
        n_tail = len(ary)
        n_grid = 30 + int(n_tail**0.5)

        theta_grid = 1 - np.sqrt(n_grid / (np.arange(1, n_grid + 1, dtype=float) - 0.5))
        theta_grid /= prior_bs * ary[int(n_tail / 4 + 0.5) - 1]
        theta_grid += 1 / ary[-1]

        k_grid = np.log1p(-theta_grid[:, None] * ary).mean(axis=1)
        log_lik_grid = n_tail * (np.log(-(theta_grid / k_grid)) - k_grid - 1)
        weights = 1 / np.exp(log_lik_grid - log_lik_grid[:, None]).sum(axis=1)

        # drop grid points with negligible weight
        keep = weights >= 10 * np.finfo(float).eps
        weights = weights[keep] / weights[keep].sum()

        theta = np.sum(theta_grid[keep] * weights)
        kappa = np.log1p(-theta * ary).mean()
        sigma = -kappa / theta
        kappa = (n_tail * kappa + prior_k * 0.5) / (n_tail + prior_k)

        return kappa, sigma

    @staticmethod
    def _gpinv(probs, kappa, sigma, mu):
        """Quantile function for generalized pareto distribution."""
        if sigma <= 0:
            return np.full_like(probs, np.nan)
        if kappa == 0:
            return mu - sigma * np.log1p(-probs)
        return mu + sigma * np.expm1(-kappa * np.log1p(-probs)) / kappa

    @staticmethod
    def _elpd_from_weights(log_lik, log_weights):
        """Compute elpd_i and p_loo_i of one observation from its log weights."""
        log_lik = np.ravel(log_lik)
        log_weights = np.ravel(log_weights)
        if not (np.all(np.isfinite(log_lik)) and np.all(np.isfinite(log_weights))):
            return np.nan, np.nan
        elpd_i = logsumexp(log_weights + log_lik)
        lppd_i = logsumexp(log_lik) - np.log(log_lik.size)
        return elpd_i, lppd_i - elpd_i

    def _loo(self, ary, r_eff=1, **kwargs):
        """Compute elpd_i, Pareto k and p_loo_i of one observation."""
        ary = np.ravel(ary)
        log_weights, khat = self._psis_smooth(-ary, r_eff=r_eff, **kwargs)
        elpd_i, p_loo_i = self._elpd_from_weights(ary, log_weights)
        return elpd_i, khat, p_loo_i
