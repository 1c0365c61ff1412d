"""PSIS computational functions in NumPy.

Functions implemented in this folder should only depend on NumPy and SciPy,
except for the ``dataarray`` layer which wraps them with :func:`xarray.apply_ufunc`.
"""

from psisloo.base.array import array_stats
from psisloo.base.dataarray import dataarray_stats
