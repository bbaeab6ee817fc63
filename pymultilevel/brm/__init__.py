"""
Bayesian multilevel models in the style of brms.

Public API:
    brm(): fit a model and return a BrmSolution
    ModelSpec: response, modifiers, population and group-level terms
    GroupTerm: a group-level term (coefs | group)
    trials, cens, se, trunc, cat: response modifiers
    prior(), PriorSpec, get_prior(): prior statements
    SamplerControl: iterations, warmup, chains, adaptation
    custom_family(): user-defined response distribution
    BrmSolution: result wrapper with summary(), fixef(), ranef(), ...
    loo(), waic(), loo_compare(): information criteria
    hypothesis(): linear hypotheses with evidence ratios
"""

from pymultilevel.brm.design import (
    ModelSpec,
    GroupTerm,
    Modifier,
    trials,
    cens,
    se,
    trunc,
    cat,
)
from pymultilevel.brm.families import Family, custom_family, resolve_family
from pymultilevel.brm.priors import PriorSpec, prior, get_prior
from pymultilevel.brm.control import SamplerControl
from pymultilevel.brm.solvers import brm
from pymultilevel.brm.solution import BrmSolution
from pymultilevel.brm.criteria import loo, waic, loo_compare
from pymultilevel.brm.hypothesis import hypothesis

__all__ = [
    "brm",
    "BrmSolution",
    "ModelSpec",
    "GroupTerm",
    "Modifier",
    "trials",
    "cens",
    "se",
    "trunc",
    "cat",
    "Family",
    "custom_family",
    "resolve_family",
    "PriorSpec",
    "prior",
    "get_prior",
    "SamplerControl",
    "loo",
    "waic",
    "loo_compare",
    "hypothesis",
]
