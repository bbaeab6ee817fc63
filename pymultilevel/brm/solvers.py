"""
Public API for Bayesian multilevel models.

brm() validates a model description, builds the corresponding PyMC model,
samples its posterior with NUTS, and wraps the draws and their summaries
in an immutable BrmSolution.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Sequence

from pymultilevel.brm._common import BrmParams
from pymultilevel.brm._model import build_model
from pymultilevel.brm._posterior import diagnose, summarize
from pymultilevel.brm.backends.pymc import PyMCBackend
from pymultilevel.brm.control import SamplerControl
from pymultilevel.brm.design import BrmDesign, ModelSpec
from pymultilevel.brm.families import Family, resolve_family
from pymultilevel.brm.priors import PriorSpec, check_priors, parameter_slots, resolve_priors
from pymultilevel.brm.solution import BrmSolution
from pymultilevel.core.compute.timing import Timer
from pymultilevel.core.datasource import DataSource
from pymultilevel.core.exceptions import InvalidSpecification
from pymultilevel.core.protocols import SamplerBackend
from pymultilevel.core.result import Result

logger = logging.getLogger(__name__)


def brm(
    spec: ModelSpec,
    data: Any,
    family: str | Family = 'gaussian',
    priors: Sequence[PriorSpec] | None = None,
    control: SamplerControl | None = None,
    *,
    link: str | None = None,
    backend: str | SamplerBackend = 'pymc',
    **control_kwargs: Any,
) -> BrmSolution:
    """
    Fit a Bayesian multilevel model.

    Everything that can be checked without sampling is checked first:
    columns, modifiers, group-level coefficients, prior classes and
    scopes, distribution strings and sampler control. Any problem raises
    InvalidSpecification before the backend is called.

    Sampler diagnostics (divergent transitions, tree-depth saturation,
    high R-hat) do not raise; they are emitted with warnings.warn and
    recorded on the result.

    Args:
        spec: Model description.
        data: Mapping of column name to values, pandas DataFrame,
            DataSource, or path to a CSV/TSV file.
        family: Family name ('gaussian', 'student', 'lognormal', 'gamma',
            'bernoulli', 'binomial', 'poisson', 'negbinomial',
            'cumulative', 'acat') or a Family instance (including one
            made with custom_family()).
        priors: Prior statements; parameters without one get the
            default (flat; lkj(1) for correlations).
        control: Sampler settings. Defaults to SamplerControl().
        link: Link function for a family given by name.
        backend: 'pymc' (default), 'numpyro', 'blackjax', 'nutpie', or
            any object implementing SamplerBackend.
        **control_kwargs: Overrides of individual SamplerControl fields,
            e.g. chains=2, seed=1.

    Returns:
        BrmSolution

    Raises:
        InvalidSpecification: If the model cannot be fit as described.
        SamplerError: If the backend fails to produce draws.

    Example:
        >>> fit = brm(
        ...     ModelSpec('incidence', modifiers=[trials('size')],
        ...               population=['period'], groups=[GroupTerm('herd')]),
        ...     cbpp, family='binomial', seed=1,
        ... )
        >>> print(fit.summary())
    """
    timer = Timer()
    timer.start()

    with timer.section('validation'):
        if not isinstance(spec, ModelSpec):
            raise InvalidSpecification(
                f"spec must be a ModelSpec, got {type(spec).__name__}", field='spec'
            )
        fam = resolve_family(family, link)
        control = _resolve_control(control, control_kwargs)
        priors = check_priors(list(priors or ()), fam)
        sampler = _get_backend(backend)
        ds = DataSource.build(data)
        design = BrmDesign.validate(spec, ds, fam)

    with timer.section('compile'):
        resolved = resolve_priors(priors, parameter_slots(design, fam), fam)
        if control.sample_prior:
            flat = [r.parameter for r in resolved if r.is_flat]
            if flat:
                raise InvalidSpecification(
                    f"sample_prior=True needs proper priors; flat priors on {flat}",
                    field='priors', value=flat,
                )
        model, names = build_model(design, fam, resolved)

    logger.info(
        "fitting %s model: %d observations, %d parameters",
        fam.name, design.n, len(names),
    )

    with timer.section('sampling'):
        idata = sampler.sample(model, control)

    prior_idata = None
    if control.sample_prior:
        with timer.section('prior_sampling'):
            prior_idata = sampler.sample_prior(model, control)

    with timer.section('summary'):
        rows = summarize(idata, names, control.prob)
        messages = diagnose(idata, rows, control)

    timer.stop()

    params = BrmParams(
        idata=idata,
        prior_idata=prior_idata,
        summary=rows,
        parameter_names=tuple(names),
        model=model,
        design=design,
        family=fam,
        priors=tuple(resolved),
        control=control,
        n_obs=design.n,
        n_groups={b.group: b.n_levels for b in design.blocks},
        data_fingerprint=design.fingerprint,
    )

    result = Result(
        params=params,
        info={
            'family': fam.name,
            'link': fam.link.name,
            'chains': control.chains,
            'iter': control.iter,
            'warmup': control.warmup,
            'total_draws': control.total_draws,
            'seed': control.seed,
        },
        timing=timer.result(),
        backend_name=sampler.name,
        warnings=messages,
    )

    return BrmSolution(result)


def _resolve_control(control: SamplerControl | None, overrides: dict[str, Any]) -> SamplerControl:
    if control is None:
        control = SamplerControl()
    elif not isinstance(control, SamplerControl):
        raise InvalidSpecification(
            f"control must be a SamplerControl, got {type(control).__name__}",
            field='control',
        )
    if overrides:
        valid = {f.name for f in dataclasses.fields(SamplerControl)}
        unknown = sorted(set(overrides) - valid)
        if unknown:
            raise InvalidSpecification(
                f"Unknown sampler control option(s) {unknown}. Valid: {sorted(valid)}",
                field='control', value=unknown,
            )
        control = dataclasses.replace(control, **overrides)
    return control


def _get_backend(choice: str | SamplerBackend) -> SamplerBackend:
    """
    Select and instantiate the sampling backend.

    Raises:
        InvalidSpecification: If the backend is unknown.
    """
    if isinstance(choice, str):
        if choice == 'pymc':
            return PyMCBackend()
        if choice in ('numpyro', 'blackjax', 'nutpie'):
            return PyMCBackend(nuts_sampler=choice)
        raise InvalidSpecification(f"Unknown backend: {choice!r}", field='backend')
    if isinstance(choice, SamplerBackend):
        return choice
    raise InvalidSpecification(
        f"backend must be a name or a SamplerBackend, got {type(choice).__name__}",
        field='backend',
    )
