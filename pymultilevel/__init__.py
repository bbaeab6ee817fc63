"""
PyMultilevel: Bayesian multilevel models for Python.

Fits brms-style regression models (population- and group-level effects,
a choice of response families, priors per parameter class) by building a
PyMC model and sampling it with NUTS.

Submodules:
    brm: Model description, fitting and posterior post-processing
    core: Exceptions, result envelope, data container, validators
"""

__version__ = "0.1.0"
__author__ = "Hai-Shuo"
__email__ = "contact@sgcx.org"

from pymultilevel import brm
from pymultilevel.core.datasource import DataSource
from pymultilevel.core.exceptions import (
    InvalidSpecification,
    ConvergenceWarning,
    SamplerDivergenceWarning,
)

__all__ = [
    "__version__",
    "brm",
    "DataSource",
    "InvalidSpecification",
    "ConvergenceWarning",
    "SamplerDivergenceWarning",
]
