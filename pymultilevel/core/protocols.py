"""
Core protocols for PyMultilevel.

These define structural interfaces that implementations must satisfy.
We use Protocol (structural typing) rather than ABC (nominal typing) so a
user can plug in their own sampling backend without inheriting from
anything in this package.

Design Principles:
    - Minimal contracts: prescribe only what's truly universal
    - The sampling engine is an external collaborator; the protocol only
      fixes the shape of the call
"""

from typing import Protocol, Any, runtime_checkable


@runtime_checkable
class SamplerBackend(Protocol):
    """
    Protocol for sampling backends.

    A backend takes a compiled probabilistic model and a sampler control
    and returns posterior draws as an ArviZ InferenceData with at least
    the ``posterior``, ``sample_stats`` and ``log_likelihood`` groups.

    Backends are stateless: all configuration is passed at construction
    time or through the control object. This makes them easy to test and
    swap.
    """

    @property
    def name(self) -> str:
        """
        Backend identifier.

        Convention: '{engine}_{algorithm}'
        Examples: 'pymc_nuts', 'numpyro_nuts'
        """
        ...

    def sample(self, model: Any, control: Any) -> Any:
        """
        Draw from the posterior of ``model``.

        Args:
            model: The compiled model (a ``pymc.Model``)
            control: SamplerControl with iterations, warmup, chains,
                adaptation target and tree depth

        Returns:
            arviz.InferenceData

        Raises:
            SamplerError: If the engine fails to produce draws
        """
        ...

    def sample_prior(self, model: Any, control: Any) -> Any:
        """
        Draw from the prior of ``model``.

        Returns:
            arviz.InferenceData with a ``prior`` group
        """
        ...
