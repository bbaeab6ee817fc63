"""
Prior specification and resolution.

A prior is a distribution string attached to a parameter class and,
optionally, to one coefficient and/or one grouping factor:

    prior('normal(0, 5)', class_='b')                  # every b_* coefficient
    prior('normal(0, 1)', class_='b', coef='period2')  # only b_period2
    prior('cauchy(0, 2)', class_='sd', group='herd')   # every sd_herd_*
    prior('lkj(2)', class_='cor')                      # all correlations

Resolution picks, for each parameter, the most specific prior that
applies: coefficient-scoped beats group-scoped beats class-wide. A
parameter without a user prior gets the default, which is flat (an
improper uniform density over the parameter's support) for every class
except 'cor', whose default is lkj(1).

Distribution strings use brms/Stan names and are translated to PyMC:

    normal(mu, sigma)        student_t(nu, mu, sigma)   cauchy(mu, sigma)
    logistic(mu, s)          exponential(rate)          gamma(alpha, beta)
    inv_gamma(alpha, beta)   lognormal(mu, sigma)       weibull(alpha, sigma)
    beta(a, b)               uniform(lower, upper)      lkj(eta)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import numpy as np
import pandas as pd
import pymc as pm

from pymultilevel.core.exceptions import InvalidSpecification

#: Parameter classes every model may use; custom families add their own
BASE_CLASSES = ('b', 'Intercept', 'sd', 'cor', 'sigma', 'nu', 'shape', 'phi', 'delta')

_PRIOR_PATTERN = re.compile(r'^\s*([a-z_]+)\s*\(([^()]*)\)\s*$')

_INF = math.inf


# =====================================================================
# User-facing prior specification
# =====================================================================

@dataclass(frozen=True)
class PriorSpec:
    """One prior statement.

    Attributes:
        prior: Distribution string, e.g. 'normal(0, 5)'. Empty means flat.
        class_: Parameter class ('b', 'Intercept', 'sd', 'cor', 'sigma', ...).
        coef: Restrict to one coefficient of the class.
        group: Restrict to one grouping factor (classes 'sd' and 'cor').
        lb: Lower bound of the parameter (class 'b' only).
        ub: Upper bound of the parameter (class 'b' only).
    """
    prior: str = ''
    class_: str = 'b'
    coef: str | None = None
    group: str | None = None
    lb: float | None = None
    ub: float | None = None

    @property
    def scope(self) -> tuple[str, str | None, str | None]:
        return (self.class_, self.coef, self.group)


def prior(
    prior: str = '',
    class_: str = 'b',
    coef: str | None = None,
    group: str | None = None,
    lb: float | None = None,
    ub: float | None = None,
) -> PriorSpec:
    """Create a PriorSpec.

    Example:
        >>> prior('normal(0, 10)', class_='b', coef='age')
        PriorSpec(prior='normal(0, 10)', class_='b', coef='age', group=None, lb=None, ub=None)
    """
    if coef == '1':
        coef = 'Intercept'
    return PriorSpec(prior=prior, class_=class_, coef=coef, group=group, lb=lb, ub=ub)


# =====================================================================
# Distribution strings
# =====================================================================

@dataclass(frozen=True)
class _DistInfo:
    """How a distribution name maps to PyMC."""
    n_args: int
    build: Callable[[tuple[float, ...]], tuple[Any, dict[str, float]]]
    support: Callable[[tuple[float, ...]], tuple[float, float]]


def _real(args):
    return (-_INF, _INF)


def _positive(args):
    return (0.0, _INF)


_DISTRIBUTIONS: dict[str, _DistInfo] = {
    'normal': _DistInfo(2, lambda a: (pm.Normal, {'mu': a[0], 'sigma': a[1]}), _real),
    'student_t': _DistInfo(
        3, lambda a: (pm.StudentT, {'nu': a[0], 'mu': a[1], 'sigma': a[2]}), _real
    ),
    'cauchy': _DistInfo(2, lambda a: (pm.Cauchy, {'alpha': a[0], 'beta': a[1]}), _real),
    'logistic': _DistInfo(2, lambda a: (pm.Logistic, {'mu': a[0], 's': a[1]}), _real),
    'exponential': _DistInfo(1, lambda a: (pm.Exponential, {'lam': a[0]}), _positive),
    'gamma': _DistInfo(2, lambda a: (pm.Gamma, {'alpha': a[0], 'beta': a[1]}), _positive),
    'inv_gamma': _DistInfo(
        2, lambda a: (pm.InverseGamma, {'alpha': a[0], 'beta': a[1]}), _positive
    ),
    'lognormal': _DistInfo(
        2, lambda a: (pm.LogNormal, {'mu': a[0], 'sigma': a[1]}), _positive
    ),
    'weibull': _DistInfo(2, lambda a: (pm.Weibull, {'alpha': a[0], 'beta': a[1]}), _positive),
    'beta': _DistInfo(2, lambda a: (pm.Beta, {'alpha': a[0], 'beta': a[1]}), lambda a: (0.0, 1.0)),
    'uniform': _DistInfo(
        2, lambda a: (pm.Uniform, {'lower': a[0], 'upper': a[1]}), lambda a: (a[0], a[1])
    ),
}

_CORRELATION_DISTRIBUTIONS = ('lkj',)


@dataclass(frozen=True)
class ParsedPrior:
    """A distribution string split into its name and numeric arguments."""
    name: str
    args: tuple[float, ...]

    def __str__(self) -> str:
        return f"{self.name}({', '.join(f'{a:g}' for a in self.args)})"


def parse_prior(text: str) -> ParsedPrior | None:
    """Parse a distribution string. Returns None for a flat prior ('').

    Raises:
        InvalidSpecification: If the name is unknown, the argument count is
            wrong, or an argument is not a number.
    """
    if text is None or not text.strip():
        return None

    match = _PRIOR_PATTERN.match(text)
    if match is None:
        raise InvalidSpecification(
            f"Prior {text!r} is not a distribution string like 'normal(0, 1)'",
            field='prior', value=text,
        )
    name, raw_args = match.groups()

    if name in _CORRELATION_DISTRIBUTIONS:
        n_args = 1
    elif name in _DISTRIBUTIONS:
        n_args = _DISTRIBUTIONS[name].n_args
    else:
        known = ', '.join(sorted([*_DISTRIBUTIONS, *_CORRELATION_DISTRIBUTIONS]))
        raise InvalidSpecification(
            f"Prior distribution {name!r} is not recognized. Known: {known}",
            field='prior', value=text,
        )

    pieces = [p.strip() for p in raw_args.split(',')] if raw_args.strip() else []
    if len(pieces) != n_args:
        raise InvalidSpecification(
            f"Prior {text!r}: {name} takes {n_args} argument(s), got {len(pieces)}",
            field='prior', value=text,
        )
    try:
        args = tuple(float(p) for p in pieces)
    except ValueError:
        raise InvalidSpecification(
            f"Prior {text!r}: arguments must be numbers", field='prior', value=text,
        ) from None
    if not all(np.isfinite(args)):
        raise InvalidSpecification(
            f"Prior {text!r}: arguments must be finite", field='prior', value=text,
        )
    return ParsedPrior(name, args)


# =====================================================================
# Parameter slots
# =====================================================================

@dataclass(frozen=True)
class ParameterSlot:
    """A model parameter that takes a prior.

    Attributes:
        name: Parameter name as reported in summaries, e.g. 'b_period2'.
        class_: Prior class.
        coef: Coefficient the parameter belongs to, if any.
        group: Grouping factor the parameter belongs to, if any.
        lower: Lower bound of the parameter's support.
        upper: Upper bound of the parameter's support.
        ordered: Vector of increasing ordinal thresholds.
    """
    name: str
    class_: str
    coef: str | None = None
    group: str | None = None
    lower: float | None = None
    upper: float | None = None
    ordered: bool = False


def parameter_slots(design: Any, family: Any) -> list[ParameterSlot]:
    """List every parameter of the model that takes a prior, in model order."""
    slots: list[ParameterSlot] = []

    if family.ordinal:
        if design.spec.threshold == 'equidistant':
            slots.append(ParameterSlot('b_Intercept', 'Intercept'))
            slots.append(ParameterSlot('delta', 'delta', lower=0.0))
        else:
            slots.append(ParameterSlot('b_Intercept', 'Intercept', ordered=True))
    elif design.has_intercept:
        slots.append(ParameterSlot('b_Intercept', 'Intercept'))

    for coef in design.coef_names:
        if coef != 'Intercept':
            slots.append(ParameterSlot(f"b_{coef}", 'b', coef=coef))
    for coef in design.cs_names:
        slots.append(ParameterSlot(f"bcs_{coef}", 'b', coef=coef))

    for block in design.blocks:
        for coef in block.coefs:
            slots.append(ParameterSlot(
                f"sd_{block.group}_{coef}", 'sd', coef=coef, group=block.group,
                lower=0.0,
            ))
        if block.correlated:
            slots.append(ParameterSlot(f"cor_{block.group}", 'cor', group=block.group))

    for dpar in family.dpars:
        if dpar.name == 'sigma' and 'se' in design.modifier_data and not design.se_sigma:
            continue
        slots.append(ParameterSlot(dpar.name, dpar.name, lower=dpar.lower, upper=dpar.upper))

    return slots


# =====================================================================
# Resolution
# =====================================================================

@dataclass(frozen=True)
class ResolvedPrior:
    """The prior a parameter ends up with.

    Attributes:
        parameter: Parameter name.
        class_: Prior class.
        coef: Coefficient, if any.
        group: Grouping factor, if any.
        prior: Distribution string ('' when flat).
        source: 'user' or 'default'.
        lower: Effective lower bound.
        upper: Effective upper bound.
        parsed: Parsed distribution, None when flat.
        ordered: Vector of increasing ordinal thresholds.
    """
    parameter: str
    class_: str
    coef: str | None
    group: str | None
    prior: str
    source: str
    lower: float | None
    upper: float | None
    parsed: ParsedPrior | None
    ordered: bool = False

    @property
    def is_flat(self) -> bool:
        return self.parsed is None

    def create(self, name: str, shape: int | None = None, **kwargs: Any) -> Any:
        """Create the parameter's random variable in the current PyMC model.

        Flat priors become pm.Flat / pm.HalfFlat, or a bounded flat
        density through an interval transform. Proper priors whose support
        extends past the parameter's bounds are truncated to them.
        """
        lower, upper = self.lower, self.upper
        has_lower = lower is not None and np.isfinite(lower)
        has_upper = upper is not None and np.isfinite(upper)

        if self.parsed is None:
            if not has_lower and not has_upper:
                return pm.Flat(name, shape=shape, **kwargs)
            if has_lower and not has_upper and lower == 0:
                return pm.HalfFlat(name, shape=shape, **kwargs)
            if has_lower and has_upper:
                return pm.Uniform(name, lower=lower, upper=upper, shape=shape, **kwargs)
            start = lower + 1.0 if has_lower else upper - 1.0
            transform = pm.distributions.transforms.Interval(
                lower if has_lower else None, upper if has_upper else None
            )
            initval = start if shape is None else np.full(shape, start)
            return pm.Flat(name, shape=shape, transform=transform, initval=initval, **kwargs)

        info = _DISTRIBUTIONS[self.parsed.name]
        dist_cls, dist_kwargs = info.build(self.parsed.args)
        support_lo, support_hi = info.support(self.parsed.args)
        truncate = (has_lower and lower > support_lo) or (has_upper and upper < support_hi)
        if not truncate:
            return dist_cls(name, shape=shape, **dist_kwargs, **kwargs)
        return pm.Truncated(
            name,
            dist_cls.dist(shape=shape, **dist_kwargs),
            lower=lower if has_lower else None,
            upper=upper if has_upper else None,
            **kwargs,
        )


def _matches(spec: PriorSpec, slot: ParameterSlot) -> bool:
    if spec.class_ != slot.class_:
        return False
    if spec.coef is not None and spec.coef != slot.coef:
        return False
    if spec.group is not None and spec.group != slot.group:
        return False
    return True


def _specificity(spec: PriorSpec) -> int:
    return (2 if spec.coef is not None else 0) + (1 if spec.group is not None else 0)


def recognized_classes(family: Any) -> tuple[str, ...]:
    """Prior classes accepted for a family: the base classes plus its dpars."""
    extra = tuple(d for d in family.dpar_names if d not in BASE_CLASSES)
    return BASE_CLASSES + extra


def check_priors(priors: Sequence[PriorSpec], family: Any) -> list[PriorSpec]:
    """Check prior statements that need no data: class and duplicates.

    Raises:
        InvalidSpecification: On an unrecognized class, a duplicated
            statement, or bounds given for a class other than 'b'.
    """
    classes = recognized_classes(family)
    checked: list[PriorSpec] = []
    seen: set[tuple] = set()
    for spec in priors:
        if not isinstance(spec, PriorSpec):
            raise InvalidSpecification(
                f"priors must be PriorSpec objects, got {type(spec).__name__}",
                field='priors', value=spec,
            )
        if spec.class_ not in classes:
            raise InvalidSpecification(
                f"Prior class {spec.class_!r} is not recognized for family "
                f"{family.name!r}. Valid classes: {', '.join(classes)}",
                field='priors', value=spec.class_,
            )
        if spec.scope in seen:
            raise InvalidSpecification(
                f"Duplicate prior for class={spec.class_!r}, coef={spec.coef!r}, "
                f"group={spec.group!r}",
                field='priors', value=spec.scope,
            )
        if (spec.lb is not None or spec.ub is not None) and spec.class_ != 'b':
            raise InvalidSpecification(
                f"Bounds lb/ub are only allowed for class 'b', got class {spec.class_!r}",
                field='priors', value=spec.class_,
            )
        seen.add(spec.scope)
        checked.append(spec)
    return checked


def resolve_priors(
    priors: Sequence[PriorSpec],
    slots: Sequence[ParameterSlot],
    family: Any,
) -> list[ResolvedPrior]:
    """Assign one prior to every parameter slot.

    Raises:
        InvalidSpecification: On an unrecognized class, a prior that
            matches no parameter of the model, an unparsable distribution
            string, or a distribution used for the wrong class.
    """
    priors = check_priors(priors, family)

    for spec in priors:
        if not any(_matches(spec, slot) for slot in slots):
            scope = ', '.join(
                f"{k}={v!r}" for k, v in (('coef', spec.coef), ('group', spec.group))
                if v is not None
            )
            raise InvalidSpecification(
                f"Prior for class {spec.class_!r}"
                + (f" ({scope})" if scope else '')
                + " does not match any parameter of this model",
                field='priors', value=spec.scope,
            )

    resolved = []
    for slot in slots:
        candidates = [s for s in priors if _matches(s, slot)]
        chosen = max(candidates, key=_specificity) if candidates else None

        if chosen is None:
            text = 'lkj(1)' if slot.class_ == 'cor' else ''
            source = 'default'
            lower, upper = slot.lower, slot.upper
        else:
            text = chosen.prior
            source = 'user'
            lower = chosen.lb if chosen.lb is not None else slot.lower
            upper = chosen.ub if chosen.ub is not None else slot.upper
            if lower is not None and upper is not None and lower >= upper:
                raise InvalidSpecification(
                    f"Prior bounds for {slot.name}: lb ({lower}) must be below ub ({upper})",
                    field='priors', value=(lower, upper),
                )

        parsed = parse_prior(text)
        _check_distribution_class(parsed, slot, text)

        resolved.append(ResolvedPrior(
            parameter=slot.name,
            class_=slot.class_,
            coef=slot.coef,
            group=slot.group,
            prior=text,
            source=source,
            lower=lower,
            upper=upper,
            parsed=parsed,
            ordered=slot.ordered,
        ))
    return resolved


def _check_distribution_class(parsed: ParsedPrior | None, slot: ParameterSlot, text: str):
    if slot.class_ == 'cor':
        if parsed is None or parsed.name != 'lkj':
            raise InvalidSpecification(
                f"Correlation priors must be lkj(eta), got {text!r}",
                field='priors', value=text,
            )
        if parsed.args[0] <= 0:
            raise InvalidSpecification(
                f"lkj(eta) needs eta > 0, got {text!r}", field='priors', value=text,
            )
        return
    if parsed is None:
        return
    if parsed.name == 'lkj':
        raise InvalidSpecification(
            f"lkj() is only valid for class 'cor', not {slot.class_!r}",
            field='priors', value=text,
        )
    if slot.ordered:
        lo, hi = _DISTRIBUTIONS[parsed.name].support(parsed.args)
        if np.isfinite(lo) or np.isfinite(hi):
            raise InvalidSpecification(
                f"Ordinal thresholds need a prior on the whole real line, got {text!r}",
                field='priors', value=text,
            )


def prior_table(resolved: Sequence[ResolvedPrior]) -> pd.DataFrame:
    """Resolved priors as a DataFrame, one row per parameter."""
    return pd.DataFrame(
        [
            {
                'parameter': r.parameter,
                'prior': r.prior if r.prior else '(flat)',
                'class': r.class_,
                'coef': r.coef or '',
                'group': r.group or '',
                'lb': r.lower,
                'ub': r.upper,
                'source': r.source,
            }
            for r in resolved
        ],
        columns=['parameter', 'prior', 'class', 'coef', 'group', 'lb', 'ub', 'source'],
    )


def get_prior(spec: Any, data: Any, family: Any = 'gaussian', link: str | None = None) -> pd.DataFrame:
    """List the parameters of a model and their default priors.

    Use it to see which class, coef and group values a prior() statement
    can target before fitting.

    Example:
        >>> get_prior(ModelSpec('y', population=['x'], groups=[GroupTerm('g')]), df)
    """
    from pymultilevel.brm.design import BrmDesign
    from pymultilevel.brm.families import resolve_family
    from pymultilevel.core.datasource import DataSource

    fam = resolve_family(family, link)
    design = BrmDesign.validate(spec, DataSource.build(data), fam)
    return prior_table(resolve_priors([], parameter_slots(design, fam), fam))
