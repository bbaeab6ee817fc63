"""
Generic result container for all PyMultilevel computations.

The Result class provides a standardized envelope that domain-specific
results use. This enables shared tooling for timing, reproducibility and
diagnostics while allowing each domain to define its own parameter payload.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (sampler, chains, divergences)
    - timing is optional (don't burden unit tests)
    - warnings carry non-fatal sampler diagnostics
    - Immutable (frozen=True) for reproducibility
"""

import platform
from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

import numpy as np

P = TypeVar('P')  # Parameter payload type


def _default_provenance() -> dict[str, str]:
    """Version metadata recorded on every result."""
    from pymultilevel import __version__

    return {
        'pymultilevel_version': __version__,
        'numpy_version': np.__version__,
        'python_version': platform.python_version(),
    }


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for statistical computations.

    Type Parameters:
        P: The domain-specific parameter payload type

    Attributes:
        params: Domain-specific payload (posterior draws, summaries, ...)
        info: Structured metadata (sampler, chains, draws, divergences)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the backend that produced this result
        warnings: Non-fatal issues encountered during computation
        provenance: Library versions used to produce the result

    Examples:
        >>> Result(
        ...     params=BrmParams(...),
        ...     info={'sampler': 'nuts', 'chains': 4, 'n_divergent': 0},
        ...     timing={'total_seconds': 12.5, 'sampling': 11.9},
        ...     backend_name='pymc_nuts'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)
    provenance: dict[str, str] = field(default_factory=_default_provenance)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
