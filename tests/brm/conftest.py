"""
Shared fixtures for brm tests.

Fake fits are assembled from posterior draws generated with numpy and
wrapped with arviz.from_dict, so summaries, criteria and hypotheses can be
tested without running the sampler.
"""

import arviz as az
import numpy as np
import pytest
from scipy import stats

from pymultilevel.brm._common import BrmParams
from pymultilevel.brm._posterior import diagnose, summarize
from pymultilevel.brm.control import SamplerControl
from pymultilevel.brm.design import BrmDesign, GroupTerm, ModelSpec
from pymultilevel.brm.families import resolve_family
from pymultilevel.brm.priors import parameter_slots, resolve_priors
from pymultilevel.brm.solution import BrmSolution
from pymultilevel.core.datasource import DataSource
from pymultilevel.core.result import Result

CHAINS = 2
DRAWS = 250


def assemble_fit(design, family, posterior, *, log_lik=None, prior=None,
                 sample_stats=None, priors=(), control=None):
    """Wrap hand-made draws in a BrmSolution the way brm() does."""
    if control is None:
        control = SamplerControl(iter=2 * DRAWS, warmup=DRAWS, chains=CHAINS)
    if sample_stats is None:
        sample_stats = {'diverging': np.zeros((CHAINS, DRAWS), dtype=bool)}

    idata = az.from_dict(
        posterior=posterior,
        log_likelihood={'y': log_lik} if log_lik is not None else None,
        sample_stats=sample_stats,
    )
    prior_idata = az.from_dict(prior=prior) if prior is not None else None

    names = [k for k in posterior if not k.startswith(('z_', 'r_'))]
    rows = summarize(idata, names, control.prob)
    messages = diagnose(idata, rows, control)
    resolved = resolve_priors(list(priors), parameter_slots(design, family), family)

    params = BrmParams(
        idata=idata,
        prior_idata=prior_idata,
        summary=rows,
        parameter_names=tuple(names),
        model=None,
        design=design,
        family=family,
        priors=tuple(resolved),
        control=control,
        n_obs=design.n,
        n_groups={b.group: b.n_levels for b in design.blocks},
        data_fingerprint=design.fingerprint,
    )
    return BrmSolution(Result(
        params=params,
        info={'family': family.name, 'chains': control.chains},
        timing=None,
        backend_name='fake_nuts',
        warnings=messages,
    ))


def gaussian_draws(design, gen, *, slope=0.5, slope_sd=0.05):
    """Posterior-like draws for y ~ x + (1 | g) and their log-likelihood."""
    shape = (CHAINS, DRAWS)
    block = design.blocks[0]
    b0 = gen.normal(1.0, 0.05, size=shape)
    b1 = gen.normal(slope, slope_sd, size=shape)
    sd = np.abs(gen.normal(0.5, 0.05, size=shape))
    sigma = np.abs(gen.normal(0.3, 0.02, size=shape))
    r = gen.normal(0.0, 0.1, size=shape + (block.n_levels, 1))

    mu = (b0[..., None] + b1[..., None] * design.X[:, 1]
          + r[:, :, block.index, 0])
    log_lik = stats.norm.logpdf(design.y, loc=mu, scale=sigma[..., None])

    posterior = {
        'b_Intercept': b0,
        'b_x': b1,
        'sd_g_Intercept': sd,
        'sigma': sigma,
        'r_g': r,
    }
    return posterior, log_lik


@pytest.fixture
def gaussian_design(gaussian_data):
    spec = ModelSpec('y', population=['x'], groups=[GroupTerm('g')])
    family = resolve_family('gaussian')
    return BrmDesign.validate(spec, DataSource.from_dict(gaussian_data), family), family


@pytest.fixture
def gaussian_fit(gaussian_design):
    """Fake fit of y ~ x + (1 | g) with a Gaussian likelihood."""
    design, family = gaussian_design
    posterior, log_lik = gaussian_draws(design, np.random.default_rng(3))
    return assemble_fit(design, family, posterior, log_lik=log_lik)


@pytest.fixture
def make_fit():
    """Factory assembling a BrmSolution from hand-made draws."""
    return assemble_fit


@pytest.fixture
def make_gaussian_draws():
    return gaussian_draws
