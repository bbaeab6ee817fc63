"""
Core infrastructure for PyMultilevel.

This module provides shared abstractions and utilities used by the model
fitting sub-package.

Key components:
    protocols: SamplerBackend protocol
    result: Generic Result[P] envelope
    exceptions: Exception and warning hierarchy
    validation: Input validators
    datasource: Named-column dataset container
    compute: Timing
"""

from pymultilevel.core.protocols import SamplerBackend
from pymultilevel.core.result import Result
from pymultilevel.core.datasource import DataSource
from pymultilevel.core.exceptions import (
    PyMultilevelError,
    ValidationError,
    DimensionError,
    InvalidSpecification,
    SamplerError,
    ConvergenceWarning,
    SamplerDivergenceWarning,
)

__all__ = [
    # Protocols
    "SamplerBackend",
    # Containers
    "Result",
    "DataSource",
    # Exceptions
    "PyMultilevelError",
    "ValidationError",
    "DimensionError",
    "InvalidSpecification",
    "SamplerError",
    # Warnings
    "ConvergenceWarning",
    "SamplerDivergenceWarning",
]
