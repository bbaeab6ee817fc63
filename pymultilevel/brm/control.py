"""
Sampler control for brm().
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass

from pymultilevel.core.exceptions import InvalidSpecification, ValidationError
from pymultilevel.core.validation import check_open_unit_interval, check_positive_int


@dataclass(frozen=True)
class SamplerControl:
    """Settings passed to the sampling backend.

    Attributes:
        iter: Total iterations per chain, warmup included.
        warmup: Warmup (tuning) iterations per chain. Must be strictly
            below iter: warmup == iter would leave no post-warmup draws
            to summarize, so it is rejected.
        chains: Number of Markov chains.
        adapt_delta: Target acceptance rate of step-size adaptation, in (0, 1).
        max_treedepth: Maximum NUTS tree depth.
        seed: Random seed, or None.
        cores: Chains run in parallel on this many cores (None: engine default).
        prob: Credible mass of the intervals reported by summaries.
        divergence_threshold: Warn when more divergent transitions occur.
        rhat_threshold: Warn when a parameter's R-hat exceeds this.
        sample_prior: Also draw from the prior (needed for point
            hypotheses). All priors must then be proper.
    """
    iter: int = 2000
    warmup: int = 1000
    chains: int = 4
    adapt_delta: float = 0.8
    max_treedepth: int = 10
    seed: int | None = None
    cores: int | None = None
    prob: float = 0.95
    divergence_threshold: int = 0
    rhat_threshold: float = 1.05
    sample_prior: bool = False

    def __post_init__(self):
        try:
            check_positive_int(self.iter, 'iter')
            check_positive_int(self.warmup, 'warmup', allow_zero=True)
            check_positive_int(self.chains, 'chains')
            check_open_unit_interval(self.adapt_delta, 'adapt_delta')
            check_positive_int(self.max_treedepth, 'max_treedepth')
            check_open_unit_interval(self.prob, 'prob')
            check_positive_int(self.divergence_threshold, 'divergence_threshold',
                               allow_zero=True)
            if self.seed is not None:
                check_positive_int(self.seed, 'seed', allow_zero=True)
            if self.cores is not None:
                check_positive_int(self.cores, 'cores')
        except ValidationError as e:
            raise InvalidSpecification(f"SamplerControl: {e}", field='control') from e

        if self.warmup >= self.iter:
            raise InvalidSpecification(
                f"SamplerControl: warmup ({self.warmup}) must be below iter "
                f"({self.iter}) so that post-warmup draws remain",
                field='control', value=(self.iter, self.warmup),
            )
        if (isinstance(self.rhat_threshold, bool)
                or not isinstance(self.rhat_threshold, numbers.Real)
                or self.rhat_threshold <= 1.0):
            raise InvalidSpecification(
                f"SamplerControl: rhat_threshold must be a number above 1, "
                f"got {self.rhat_threshold!r}",
                field='control', value=self.rhat_threshold,
            )

    @property
    def draws(self) -> int:
        """Post-warmup draws per chain."""
        return self.iter - self.warmup

    @property
    def total_draws(self) -> int:
        """Post-warmup draws over all chains."""
        return self.chains * self.draws
