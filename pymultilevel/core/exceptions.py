"""
Exception and warning hierarchy for PyMultilevel.

All exceptions inherit from PyMultilevelError to allow catching any
library-specific error. Non-fatal sampler diagnostics are warnings, not
exceptions: they are emitted through the warnings module and also attached
to the fit result.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""


class PyMultilevelError(Exception):
    """Base exception for all PyMultilevel errors."""
    pass


class ValidationError(PyMultilevelError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when dataset columns have different lengths or when an array
    does not have the expected shape.
    """
    pass


class InvalidSpecification(ValidationError):
    """
    A model request cannot be turned into a probabilistic program.

    Raised before any sampling begins: a referenced column is absent, a
    response modifier or prior class is not recognized, a prior is scoped
    to a parameter that does not exist, a prior distribution string cannot
    be compiled, or the sampler control is inconsistent.

    Attributes:
        field: The part of the request that failed ('data', 'modifiers',
            'priors', 'groups', 'control', 'family', ...), if known
        value: The offending value, if known
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: object | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.value = value


class SamplerError(PyMultilevelError):
    """
    The sampling backend failed to produce draws.

    Attributes:
        backend: Name of the backend that failed
    """

    def __init__(self, message: str, backend: str | None = None):
        super().__init__(message)
        self.backend = backend


class ConvergenceWarning(UserWarning):
    """
    Posterior draws may not be trustworthy.

    Emitted when R-hat exceeds its threshold or transitions saturate the
    maximum tree depth. The fit still completes; the caller is expected to
    adjust the sampler control or priors and refit.
    """
    pass


class SamplerDivergenceWarning(ConvergenceWarning):
    """
    The sampler reported divergent transitions after warmup.

    Attributes:
        n_divergent: Number of divergent post-warmup transitions
        n_draws: Total number of post-warmup transitions
    """

    def __init__(self, message: str, n_divergent: int = 0, n_draws: int = 0):
        super().__init__(message)
        self.n_divergent = n_divergent
        self.n_draws = n_draws
