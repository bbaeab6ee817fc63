"""
Common data types for brm() fits.

Contains the frozen parameter payload that goes inside the Result[P]
envelope. The payload is a pure data container; mappings are stored
read-only.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from pymultilevel.brm._posterior import ParameterSummary
from pymultilevel.brm.control import SamplerControl
from pymultilevel.brm.design import BrmDesign
from pymultilevel.brm.priors import ResolvedPrior


@dataclass(frozen=True)
class BrmParams:
    """
    Parameter payload for a fitted Bayesian multilevel model.

    Carries the posterior draws together with everything needed to
    summarize them, recompute predictions, and compare fits.
    """
    # Draws
    idata: Any                                 # arviz.InferenceData
    prior_idata: Any | None                    # prior draws when sample_prior=True

    # Per-parameter posterior summary, vector parameters expanded
    summary: tuple[ParameterSummary, ...]
    parameter_names: tuple[str, ...]           # posterior variables summarized

    # Model
    model: Any                                 # compiled pymc.Model
    design: BrmDesign
    family: Any                                # Family
    priors: tuple[ResolvedPrior, ...]
    control: SamplerControl

    # Data
    n_obs: int
    n_groups: Mapping[str, int]                # grouping factor → number of levels
    data_fingerprint: str

    def __post_init__(self):
        object.__setattr__(self, 'n_groups', MappingProxyType(dict(self.n_groups)))
