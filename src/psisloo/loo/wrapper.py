"""Base class for sampling wrappers."""

import numpy as np
from scipy.special import logsumexp as _logsumexp
from xarray_einstats.stats import logsumexp

from psisloo.loo.helper_loo import _prepare_loo_inputs

__all__ = ["SamplingWrapper"]


class SamplingWrapper:
    """Class wrapping sampling routines for its usage via psisloo.

    Using a common class, all inference backends can be supported in psisloo. Hence, statistical
    functions requiring refitting like :func:`~psisloo.reloo` can be performed regardless of
    the library used to fit the model.

    A subclass implements ``sel_observations``, ``sample``, ``get_inference_data`` and
    ``log_likelihood__i``, or overrides :meth:`refit_excluding` directly.

    Parameters
    ----------
    model
        The model object used for sampling.
    data : DataTree or InferenceData, optional
        Fitted model. It is used by :meth:`log_likelihood` to provide the full-data log
        likelihood.
    log_lik_var_name : str, optional
        Name of the log likelihood variable in ``data``.
    sample_kwargs : dict, optional
        Sampling kwargs are stored as class attributes for their usage in the ``sample``
        method.
    idata_kwargs : dict, optional
        kwargs are stored as class attributes to be used in the ``get_inference_data`` method.

    Warnings
    --------
    Sampling wrappers are an experimental feature in a very early stage. Please use them
    with caution.

    Examples
    --------
    A wrapper around a model with a closed form posterior:

    .. code-block:: python

        class ConjugateWrapper(SamplingWrapper):
            def sel_observations(self, idx):
                return np.delete(self.model.y, idx), self.model.y[idx]

            def sample(self, modified_observed_data):
                return self.model.fit(modified_observed_data)

            def get_inference_data(self, fitted_model):
                return fitted_model.to_datatree()

            def log_likelihood__i(self, excluded_obs, idata__i):
                return self.model.log_lik(excluded_obs, idata__i.posterior)
    """

    def __init__(
        self,
        model,
        data=None,
        log_lik_var_name=None,
        sample_kwargs=None,
        idata_kwargs=None,
        sample_dims=None,
    ):
        self.model = model
        self.data = data
        self.log_lik_var_name = log_lik_var_name
        self.sample_kwargs = {} if sample_kwargs is None else sample_kwargs
        self.idata_kwargs = {} if idata_kwargs is None else idata_kwargs
        self.sample_dims = sample_dims

    def sel_observations(self, idx):
        """Get a subset of the observations to be used in refitting.

        Parameters
        ----------
        idx : int or dict
            Flat position, or mapping of labels, of the observation to exclude.

        Returns
        -------
        modified_observed_data
            Observed data without the excluded observation, in the format expected
            by ``sample``.
        excluded_observed_data
            The excluded observation, in the format expected by ``log_likelihood__i``.
        """
        raise NotImplementedError("sel_observations method must be implemented for each subclass")

    def sample(self, modified_observed_data):
        """Sample ``self.model`` on the ``modified_observed_data`` subset."""
        raise NotImplementedError("sample method must be implemented for each subclass")

    def get_inference_data(self, fitted_model):
        """Convert the ``fitted_model`` to a DataTree."""
        raise NotImplementedError("get_inference_data method must be implemented for each subclass")

    def log_likelihood__i(self, excluded_obs, idata__i):
        r"""Get the log likelihood samples :math:`\log p_{post(-i)}(y_i)`.

        Calculate the log likelihood of the data contained in excluded_obs using the
        model fitted with this data excluded.

        Returns
        -------
        DataArray
            Log likelihood of the excluded observation, with the sample dimensions only.
        """
        raise NotImplementedError("log_likelihood__i method must be implemented for each subclass")

    def log_likelihood(self):
        """Return the pointwise log likelihood of the full-data fit."""
        if self.data is None:
            raise ValueError("A fitted model must be passed as data to get its log likelihood")
        loo_inputs = _prepare_loo_inputs(self.data, self.log_lik_var_name, self.sample_dims)
        return loo_inputs.log_likelihood

    def refit_excluding(self, idx):
        r"""Refit without observation `idx` and return its log predictive density.

        The value is :math:`\log \frac{1}{S} \sum_s p(y_i \mid \theta^{(s)}_{-i})`
        where the draws come from the fit excluding observation `idx`.

        Returns
        -------
        float
        """
        modified_observed_data, excluded_obs = self.sel_observations(idx)
        fitted_model = self.sample(modified_observed_data)
        idata__i = self.get_inference_data(fitted_model)
        log_lik__i = self.log_likelihood__i(excluded_obs, idata__i)
        if hasattr(log_lik__i, "dims"):
            return logsumexp(log_lik__i, b=1 / log_lik__i.size, dims=list(log_lik__i.dims)).item()
        log_lik__i = np.asarray(log_lik__i, dtype=float).ravel()
        return float(_logsumexp(log_lik__i, b=1 / log_lik__i.size))

    def check_implemented_methods(self, methods):
        """Check that all methods listed are implemented.

        Not all functions that require refitting need to have all the methods implemented in
        order to work properly. This function should be used before using the SamplingWrapper and
        its subclasses to get informative error messages.

        Parameters
        ----------
        methods : list
            Check all elements in methods list.

        Returns
        -------
        list
            List containing the not implemented methods.
        """
        supported_methods = [
            "sel_observations",
            "sample",
            "get_inference_data",
            "log_likelihood__i",
            "refit_excluding",
        ]
        bad_methods = [method for method in methods if method not in supported_methods]
        if bad_methods:
            raise ValueError(
                f"Not all method(s) in {bad_methods} supported. "
                f"Supported methods in SamplingWrapper subclasses are:{supported_methods}"
            )

        return [
            method
            for method in methods
            if getattr(type(self), method) is getattr(SamplingWrapper, method)
        ]
