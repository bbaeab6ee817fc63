"""
Sampling backends for brm().

Available backends:
    PyMCBackend: PyMC's NUTS, or an external NUTS implementation
        (numpyro, blackjax, nutpie) driven through PyMC
"""

from pymultilevel.brm.backends.pymc import PyMCBackend

__all__ = [
    "PyMCBackend",
]
