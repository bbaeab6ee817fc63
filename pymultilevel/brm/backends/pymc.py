"""
PyMC sampling backend.

Runs the No-U-Turn sampler on a compiled PyMC model. With the default
nuts_sampler='pymc' PyMC's own NUTS is used; 'numpyro', 'blackjax' and
'nutpie' hand the model to those engines through pm.sample().
"""

from __future__ import annotations

import logging
from typing import Any

import pymc as pm
from pymc.exceptions import SamplingError

from pymultilevel.core.exceptions import SamplerError

logger = logging.getLogger(__name__)

_NUTS_SAMPLERS = ('pymc', 'numpyro', 'blackjax', 'nutpie')

#: Keyword under which each external engine takes the maximum tree depth
_TREE_DEPTH_KEYWORD = {
    'numpyro': 'max_tree_depth',
    'blackjax': 'max_num_doublings',
    'nutpie': 'maxdepth',
}


class PyMCBackend:
    """
    Backend running NUTS through pymc.sample().

    Implements the SamplerBackend protocol.
    """

    def __init__(self, nuts_sampler: str = 'pymc', progressbar: bool = False):
        if nuts_sampler not in _NUTS_SAMPLERS:
            raise ValueError(
                f"nuts_sampler must be one of {_NUTS_SAMPLERS}, got {nuts_sampler!r}"
            )
        self.nuts_sampler = nuts_sampler
        self.progressbar = progressbar

    @property
    def name(self) -> str:
        return f"{self.nuts_sampler}_nuts"

    def sample_kwargs(self, control: Any) -> dict[str, Any]:
        """Keyword arguments of pm.sample() for a SamplerControl."""
        kwargs: dict[str, Any] = {
            'draws': control.draws,
            'tune': control.warmup,
            'chains': control.chains,
            'cores': control.cores,
            'random_seed': control.seed,
            'nuts_sampler': self.nuts_sampler,
            'progressbar': self.progressbar,
            'idata_kwargs': {'log_likelihood': True},
            'compute_convergence_checks': False,
        }
        if self.nuts_sampler == 'pymc':
            kwargs['nuts'] = {
                'target_accept': control.adapt_delta,
                'max_treedepth': control.max_treedepth,
            }
            return kwargs

        kwargs['target_accept'] = control.adapt_delta
        depth = {_TREE_DEPTH_KEYWORD[self.nuts_sampler]: control.max_treedepth}
        if self.nuts_sampler == 'nutpie':
            kwargs['nuts_sampler_kwargs'] = depth
        else:
            # JAX engines take NUTS settings through pymc's nuts_kwargs
            kwargs['nuts_sampler_kwargs'] = {'nuts_kwargs': depth}
        return kwargs

    def sample(self, model: pm.Model, control: Any) -> Any:
        """Draw control.draws post-warmup iterations from each chain.

        Returns:
            arviz.InferenceData with posterior, sample_stats and
            log_likelihood groups.

        Raises:
            SamplerError: If PyMC fails to sample (e.g. a bad initial point).
        """
        kwargs = self.sample_kwargs(control)
        logger.info(
            "sampling %d chains: %d warmup + %d draws (%s)",
            control.chains, control.warmup, control.draws, self.name,
        )
        try:
            with model:
                return pm.sample(**kwargs)
        except SamplingError as e:
            raise SamplerError(str(e), backend=self.name) from e

    def sample_prior(self, model: pm.Model, control: Any) -> Any:
        """Draw control.total_draws samples of the parameters from their priors.

        The observed response is not drawn, so families without a random
        generator (custom families) can be used.

        Returns:
            arviz.InferenceData with a prior group.
        """
        var_names = [v.name for v in model.free_RVs + model.deterministics]
        logger.info("drawing %d prior samples", control.total_draws)
        with model:
            return pm.sample_prior_predictive(
                control.total_draws, var_names=var_names, random_seed=control.seed,
            )
