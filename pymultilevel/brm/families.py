"""
Response families and link functions.

Each Family defines:
- The response distribution, built as a PyMC observed variable
- A default link function g(μ) and the links it accepts
- Its distributional parameters (sigma, nu, shape, ...) and their bounds
- Which response modifiers it understands (trials, se, cens, trunc, cat)
- A response check run before the model is built
- The posterior expected response E[y | η] for fitted values

Each Link defines:
- g(μ) → η on numpy arrays
- g⁻¹(η) → μ on numpy arrays (post-processing of draws)
- g⁻¹(η) → μ on PyTensor tensors (model building)

Families are named as in brms: gaussian, student, lognormal, gamma,
bernoulli, binomial, poisson, negbinomial, cumulative, acat.
custom_family() wraps a user-supplied log density.

References:
    Bürkner, P.-C. (2017). brms: An R Package for Bayesian Multilevel
    Models Using Stan. Journal of Statistical Software, 80(1), 1-28.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import numpy as np
import pymc as pm
from numpy.typing import NDArray
from scipy import special, stats

from pymultilevel.core.exceptions import InvalidSpecification


# =====================================================================
# Link functions
# =====================================================================

class Link(ABC):
    """Abstract link function g(μ) mapping mean to linear predictor."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def link(self, mu: NDArray) -> NDArray:
        """g(μ) → η."""
        ...

    @abstractmethod
    def linkinv(self, eta: NDArray) -> NDArray:
        """g⁻¹(η) → μ."""
        ...

    @abstractmethod
    def linkinv_tensor(self, eta: Any) -> Any:
        """g⁻¹(η) → μ on a PyTensor variable."""
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class IdentityLink(Link):
    """Identity link: g(μ) = μ."""

    @property
    def name(self) -> str:
        return 'identity'

    def link(self, mu: NDArray) -> NDArray:
        return np.array(mu, copy=True)

    def linkinv(self, eta: NDArray) -> NDArray:
        return np.array(eta, copy=True)

    def linkinv_tensor(self, eta: Any) -> Any:
        return eta


class LogitLink(Link):
    """Logit link: g(μ) = log(μ/(1-μ))."""

    @property
    def name(self) -> str:
        return 'logit'

    def link(self, mu: NDArray) -> NDArray:
        mu = np.clip(mu, 1e-10, 1 - 1e-10)
        return special.logit(mu)

    def linkinv(self, eta: NDArray) -> NDArray:
        return special.expit(eta)

    def linkinv_tensor(self, eta: Any) -> Any:
        return pm.math.invlogit(eta)


class LogLink(Link):
    """Log link: g(μ) = log(μ)."""

    @property
    def name(self) -> str:
        return 'log'

    def link(self, mu: NDArray) -> NDArray:
        return np.log(np.maximum(mu, 1e-10))

    def linkinv(self, eta: NDArray) -> NDArray:
        # Clip to prevent overflow
        return np.exp(np.clip(eta, -500, 500))

    def linkinv_tensor(self, eta: Any) -> Any:
        return pm.math.exp(eta)


class ProbitLink(Link):
    """Probit link: g(μ) = Φ⁻¹(μ)."""

    @property
    def name(self) -> str:
        return 'probit'

    def link(self, mu: NDArray) -> NDArray:
        mu = np.clip(mu, 1e-10, 1 - 1e-10)
        return stats.norm.ppf(mu)

    def linkinv(self, eta: NDArray) -> NDArray:
        return stats.norm.cdf(eta)

    def linkinv_tensor(self, eta: Any) -> Any:
        return pm.math.invprobit(eta)


class InverseLink(Link):
    """Inverse link: g(μ) = 1/μ."""

    @property
    def name(self) -> str:
        return 'inverse'

    def link(self, mu: NDArray) -> NDArray:
        return 1.0 / np.maximum(mu, 1e-10)

    def linkinv(self, eta: NDArray) -> NDArray:
        return 1.0 / np.maximum(eta, 1e-10)

    def linkinv_tensor(self, eta: Any) -> Any:
        return 1.0 / eta


_LINK_CLASSES: dict[str, type[Link]] = {
    'identity': IdentityLink,
    'logit': LogitLink,
    'log': LogLink,
    'probit': ProbitLink,
    'inverse': InverseLink,
}


def resolve_link(link: str | Link) -> Link:
    """Resolve a link argument to a Link instance."""
    if isinstance(link, Link):
        return link
    if isinstance(link, str):
        cls = _LINK_CLASSES.get(link.lower())
        if cls is None:
            valid = ', '.join(sorted(_LINK_CLASSES))
            raise InvalidSpecification(
                f"Unknown link: {link!r}. Valid links: {valid}",
                field='family', value=link,
            )
        return cls()
    raise TypeError(f"link must be str or Link, got {type(link).__name__}")


# =====================================================================
# Distributional parameters
# =====================================================================

@dataclass(frozen=True)
class DparSpec:
    """A family parameter other than the mean.

    Attributes:
        name: Parameter name, also its prior class (e.g. 'sigma').
        lower: Lower bound of its support, or None.
        upper: Upper bound of its support, or None.
    """
    name: str
    lower: float | None = None
    upper: float | None = None


# =====================================================================
# Family base class
# =====================================================================

class Family(ABC):
    """
    Response distribution with a link function.

    Subclasses implement _distribution(), which returns the PyMC
    distribution class and its keyword arguments for a given linear
    predictor. observe() wraps that distribution with censoring or
    truncation when the design asks for it.
    """

    #: Distributional parameters besides the mean
    dpars: tuple[DparSpec, ...] = ()
    #: Response modifiers this family accepts
    modifiers: frozenset[str] = frozenset()
    #: Ordinal families use thresholds instead of an intercept
    ordinal: bool = False
    #: Whether category-specific effects are allowed
    supports_cs: bool = False
    #: Whether the response must be integer-valued
    discrete: bool = False

    def __init__(self, link: str | Link | None = None):
        if link is None:
            self._link = resolve_link(self._valid_links[0])
        else:
            self._link = resolve_link(link)
        if self._link.name not in self._valid_links:
            raise InvalidSpecification(
                f"Link {self._link.name!r} is not available for family "
                f"{self.name!r}. Valid links: {', '.join(self._valid_links)}",
                field='family', value=self._link.name,
            )

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def _valid_links(self) -> tuple[str, ...]:
        """Accepted link names; the first is the default."""
        ...

    @property
    def link(self) -> Link:
        return self._link

    @property
    def dpar_names(self) -> tuple[str, ...]:
        return tuple(d.name for d in self.dpars)

    # --- Response checks ---

    def check_response(
        self,
        y: NDArray,
        modifier_data: Mapping[str, NDArray],
        n_cat: int | None = None,
    ) -> None:
        """Raise InvalidSpecification if y is not valid for this family."""
        if self.discrete and not np.all(np.equal(np.mod(y, 1), 0)):
            raise InvalidSpecification(
                f"Family {self.name!r} requires an integer response",
                field='response',
            )

    # --- Model building ---

    @abstractmethod
    def _distribution(
        self, eta: Any, aux: Mapping[str, Any], design: Any
    ) -> tuple[type, dict[str, Any]]:
        """PyMC distribution class and keyword arguments given η."""
        ...

    def observe(self, name: str, eta: Any, aux: Mapping[str, Any], design: Any) -> Any:
        """Register the response as an observed variable in the current model."""
        dist_cls, kwargs = self._distribution(eta, aux, design)
        y = design.y.astype(np.int64) if self.discrete else design.y

        if design.trunc is not None:
            lower, upper = design.trunc
            return pm.Truncated(
                name, dist_cls.dist(**kwargs), lower=lower, upper=upper,
                observed=y,
            )

        cens = design.modifier_data.get('cens')
        if cens is not None:
            lower = np.where(cens == -1, design.y, -np.inf)
            upper = np.where(cens == 1, design.y, np.inf)
            return pm.Censored(
                name, dist_cls.dist(**kwargs), lower=lower, upper=upper,
                observed=y,
            )

        return dist_cls(name, observed=y, **kwargs)

    # --- Post-processing ---

    def mean(self, eta: NDArray, aux: Mapping[str, NDArray], design: Any) -> NDArray:
        """Posterior expected response E[y | η], draws × observations."""
        return self.link.linkinv(eta)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(link={self._link.name!r})"


def _column(aux: Mapping[str, NDArray], name: str) -> NDArray:
    """Per-draw scalar parameter as a column for broadcasting over observations."""
    return np.asarray(aux[name])[:, None]


# =====================================================================
# Continuous families
# =====================================================================

class Gaussian(Family):
    """Gaussian family. Default link: identity.

    With an se() modifier, sigma is either replaced by the known standard
    errors (sigma=False, as in meta-analysis) or combined with them as
    sqrt(sigma² + se²).
    """

    dpars = (DparSpec('sigma', lower=0.0),)
    modifiers = frozenset({'se', 'cens', 'trunc'})

    @property
    def name(self) -> str:
        return 'gaussian'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('identity', 'log', 'inverse')

    def _scale(self, aux: Mapping[str, Any], design: Any) -> Any:
        se = design.modifier_data.get('se')
        if se is None:
            return aux['sigma']
        if not design.se_sigma:
            return se
        return pm.math.sqrt(aux['sigma'] ** 2 + se ** 2)

    def _distribution(self, eta, aux, design):
        return pm.Normal, {'mu': self.link.linkinv_tensor(eta),
                           'sigma': self._scale(aux, design)}


class Student(Gaussian):
    """Student-t family. Default link: identity. Degrees of freedom nu > 1."""

    dpars = (DparSpec('sigma', lower=0.0), DparSpec('nu', lower=1.0))

    @property
    def name(self) -> str:
        return 'student'

    def _distribution(self, eta, aux, design):
        return pm.StudentT, {'nu': aux['nu'],
                             'mu': self.link.linkinv_tensor(eta),
                             'sigma': self._scale(aux, design)}


class LogNormal(Family):
    """Lognormal family; the linear predictor is the mean of log(y)."""

    dpars = (DparSpec('sigma', lower=0.0),)
    modifiers = frozenset({'cens', 'trunc'})

    @property
    def name(self) -> str:
        return 'lognormal'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('identity',)

    def check_response(self, y, modifier_data, n_cat=None):
        if np.any(y <= 0):
            raise InvalidSpecification(
                "Family 'lognormal' requires a positive response", field='response'
            )

    def _distribution(self, eta, aux, design):
        return pm.LogNormal, {'mu': eta, 'sigma': aux['sigma']}

    def mean(self, eta, aux, design):
        return np.exp(eta + 0.5 * _column(aux, 'sigma') ** 2)


class Gamma(Family):
    """Gamma family parameterized by mean and shape. Default link: log."""

    dpars = (DparSpec('shape', lower=0.0),)
    modifiers = frozenset({'cens', 'trunc'})

    @property
    def name(self) -> str:
        return 'gamma'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('log', 'identity', 'inverse')

    def check_response(self, y, modifier_data, n_cat=None):
        if np.any(y <= 0):
            raise InvalidSpecification(
                "Family 'gamma' requires a positive response", field='response'
            )

    def _distribution(self, eta, aux, design):
        mu = self.link.linkinv_tensor(eta)
        return pm.Gamma, {'alpha': aux['shape'], 'beta': aux['shape'] / mu}


# =====================================================================
# Discrete families
# =====================================================================

class Bernoulli(Family):
    """Bernoulli family for 0/1 responses. Default link: logit."""

    discrete = True

    @property
    def name(self) -> str:
        return 'bernoulli'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('logit', 'probit')

    def check_response(self, y, modifier_data, n_cat=None):
        if not np.all(np.isin(y, (0.0, 1.0))):
            raise InvalidSpecification(
                "Family 'bernoulli' requires a 0/1 response", field='response'
            )

    def _distribution(self, eta, aux, design):
        if self.link.name == 'logit':
            return pm.Bernoulli, {'logit_p': eta}
        return pm.Bernoulli, {'p': self.link.linkinv_tensor(eta)}


class Binomial(Family):
    """Binomial family; number of trials comes from the trials() modifier."""

    discrete = True
    modifiers = frozenset({'trials'})

    @property
    def name(self) -> str:
        return 'binomial'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('logit', 'probit')

    def check_response(self, y, modifier_data, n_cat=None):
        super().check_response(y, modifier_data, n_cat)
        trials = modifier_data.get('trials')
        if trials is None:
            raise InvalidSpecification(
                "Family 'binomial' requires a trials() modifier giving the "
                "number of trials per observation",
                field='modifiers', value='trials',
            )
        if np.any(y < 0) or np.any(y > trials):
            raise InvalidSpecification(
                "Binomial response must lie between 0 and the number of trials",
                field='response',
            )

    def _distribution(self, eta, aux, design):
        n = design.modifier_data['trials'].astype(np.int64)
        if self.link.name == 'logit':
            return pm.Binomial, {'n': n, 'logit_p': eta}
        return pm.Binomial, {'n': n, 'p': self.link.linkinv_tensor(eta)}

    def mean(self, eta, aux, design):
        return self.link.linkinv(eta) * design.modifier_data['trials']


class Poisson(Family):
    """Poisson family. Default link: log."""

    discrete = True
    modifiers = frozenset({'cens', 'trunc'})

    @property
    def name(self) -> str:
        return 'poisson'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('log', 'identity')

    def check_response(self, y, modifier_data, n_cat=None):
        super().check_response(y, modifier_data, n_cat)
        if np.any(y < 0):
            raise InvalidSpecification(
                f"Family {self.name!r} requires a non-negative response",
                field='response',
            )

    def _distribution(self, eta, aux, design):
        return pm.Poisson, {'mu': self.link.linkinv_tensor(eta)}


class NegBinomial(Poisson):
    """Negative binomial family with mean mu and shape (overdispersion)."""

    dpars = (DparSpec('shape', lower=0.0),)

    @property
    def name(self) -> str:
        return 'negbinomial'

    def _distribution(self, eta, aux, design):
        return pm.NegativeBinomial, {'mu': self.link.linkinv_tensor(eta),
                                     'alpha': aux['shape']}


# =====================================================================
# Ordinal families
# =====================================================================

class _Ordinal(Family):
    """Shared behaviour of ordinal families: responses are 1..K."""

    ordinal = True
    discrete = True
    modifiers = frozenset({'cat'})

    def check_response(self, y, modifier_data, n_cat=None):
        super().check_response(y, modifier_data, n_cat)
        if n_cat is None or n_cat < 2:
            raise InvalidSpecification(
                f"Ordinal family {self.name!r} needs at least 2 categories",
                field='response',
            )
        if np.any(y < 1) or np.any(y > n_cat):
            raise InvalidSpecification(
                f"Ordinal response must be coded 1..{n_cat}", field='response'
            )

    def _distribution(self, eta, aux, design):
        raise NotImplementedError("ordinal families build their likelihood in observe()")

    def mean(self, eta, aux, design):
        raise InvalidSpecification(
            f"Expected values are not defined for ordinal family {self.name!r}",
            field='family',
        )


class Cumulative(_Ordinal):
    """Cumulative ordinal model: P(y ≤ k) = F(τ_k − η)."""

    @property
    def name(self) -> str:
        return 'cumulative'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('logit', 'probit')

    def observe(self, name, eta, aux, design):
        y0 = design.y.astype(np.int64) - 1
        if self.link.name == 'logit':
            return pm.OrderedLogistic(
                name, eta=eta, cutpoints=aux['thresholds'],
                compute_p=False, observed=y0,
            )
        return pm.OrderedProbit(
            name, eta=eta, cutpoints=aux['thresholds'], sigma=1.0,
            compute_p=False, observed=y0,
        )


class Acat(_Ordinal):
    """Adjacent-category ordinal model.

    log(P(y = k+1) / P(y = k)) = η + η_cs[k] − τ_k, which allows
    category-specific effects η_cs.
    """

    supports_cs = True

    @property
    def name(self) -> str:
        return 'acat'

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return ('logit',)

    def observe(self, name, eta, aux, design):
        steps = eta[:, None] - aux['thresholds'][None, :]
        eta_cs = aux.get('eta_cs')
        if eta_cs is not None:
            steps = steps + eta_cs
        zeros = pm.math.zeros_like(steps[:, :1])
        logits = pm.math.concatenate([zeros, pm.math.cumsum(steps, axis=1)], axis=1)
        y0 = design.y.astype(np.int64) - 1
        return pm.Categorical(name, logit_p=logits, observed=y0)


# =====================================================================
# User-defined families
# =====================================================================

class CustomFamily(Family):
    """
    Family defined by a user-supplied log density.

    The first distributional parameter is the mean and receives the linear
    predictor through the first link. The remaining parameters are
    estimated with priors of their own class. ``vars`` names response
    modifiers whose data are passed to ``logp`` after the parameters.

    Construct with custom_family(), not directly.
    """

    def __init__(
        self,
        name: str,
        dpars: tuple[str, ...],
        links: tuple[str, ...],
        lb: tuple[float | None, ...],
        ub: tuple[float | None, ...],
        logp: Callable[..., Any],
        type: str,
        vars: tuple[str, ...],
    ):
        self._name = name
        self._links = links
        self.dpars = tuple(
            DparSpec(d, lower=lo, upper=hi)
            for d, lo, hi in zip(dpars[1:], lb[1:], ub[1:])
        )
        self.modifiers = frozenset(vars) | frozenset({'cens', 'trunc'})
        self.discrete = type == 'int'
        self.logp = logp
        self.vars = vars
        super().__init__(links[0])

    @property
    def name(self) -> str:
        return self._name

    @property
    def _valid_links(self) -> tuple[str, ...]:
        return (self._links[0],)

    def check_response(self, y, modifier_data, n_cat=None):
        super().check_response(y, modifier_data, n_cat)
        missing = [v for v in self.vars if v not in modifier_data]
        if missing:
            raise InvalidSpecification(
                f"Custom family {self.name!r} needs response modifiers {missing}",
                field='modifiers', value=missing,
            )

    def _params(self, eta, aux, design) -> list[Any]:
        params = [self.link.linkinv_tensor(eta)]
        params.extend(aux[d.name] for d in self.dpars)
        params.extend(design.modifier_data[v] for v in self.vars)
        return params

    def _distribution(self, eta, aux, design):
        raise NotImplementedError("custom families build their likelihood in observe()")

    def observe(self, name, eta, aux, design):
        dtype = 'int64' if self.discrete else 'floatX'
        y = design.y.astype(np.int64) if self.discrete else design.y
        params = self._params(eta, aux, design)

        if design.trunc is not None or 'cens' in design.modifier_data:
            raise InvalidSpecification(
                f"Custom family {self.name!r} does not support cens() or trunc()",
                field='modifiers',
            )
        return pm.CustomDist(name, *params, logp=self.logp, dtype=dtype, observed=y)


def custom_family(
    name: str,
    dpars: tuple[str, ...] | list[str] = ('mu',),
    links: tuple[str, ...] | list[str] = ('identity',),
    lb: tuple[float | None, ...] | list[float | None] | None = None,
    ub: tuple[float | None, ...] | list[float | None] | None = None,
    logp: Callable[..., Any] | None = None,
    type: str = 'real',
    vars: tuple[str, ...] | list[str] = (),
) -> CustomFamily:
    """Define a custom response distribution.

    Args:
        name: Family name, used in summaries.
        dpars: Distributional parameter names. The first must be 'mu'.
        links: One link per parameter; only the first (the link of mu) is
            used, the others are accepted for symmetry with dpars.
        lb: Lower bounds per parameter (None for unbounded).
        ub: Upper bounds per parameter (None for unbounded).
        logp: Log density ``logp(value, mu, *other_dpars, *vars)``
            written with PyMC / PyTensor operations.
        type: 'int' for discrete responses, 'real' for continuous ones.
        vars: Names of response modifiers whose data are passed to logp,
            e.g. ('trials',).

    Returns:
        CustomFamily usable as the ``family`` argument of brm().

    Example:
        >>> def beta_binomial_logp(y, mu, phi, trials):
        ...     return pm.logp(
        ...         pm.BetaBinomial.dist(n=trials, alpha=mu * phi,
        ...                              beta=(1 - mu) * phi), y)
        >>> beta_binomial2 = custom_family(
        ...     'beta_binomial2', dpars=('mu', 'phi'), links=('logit', 'log'),
        ...     lb=(0, 0), ub=(1, None), logp=beta_binomial_logp,
        ...     type='int', vars=('trials',))
    """
    dpars = tuple(dpars)
    links = tuple(links)
    if not dpars or dpars[0] != 'mu':
        raise InvalidSpecification(
            f"custom_family: first distributional parameter must be 'mu', got {dpars}",
            field='family', value=dpars,
        )
    if len(set(dpars)) != len(dpars):
        raise InvalidSpecification(
            f"custom_family: duplicate parameter names in {dpars}", field='family'
        )
    if len(links) != len(dpars):
        raise InvalidSpecification(
            f"custom_family: need one link per parameter, got {len(links)} "
            f"links for {len(dpars)} parameters",
            field='family',
        )
    lb = tuple(lb) if lb is not None else (None,) * len(dpars)
    ub = tuple(ub) if ub is not None else (None,) * len(dpars)
    if len(lb) != len(dpars) or len(ub) != len(dpars):
        raise InvalidSpecification(
            "custom_family: lb and ub must have one entry per parameter",
            field='family',
        )
    if type not in ('int', 'real'):
        raise InvalidSpecification(
            f"custom_family: type must be 'int' or 'real', got {type!r}",
            field='family', value=type,
        )
    if logp is None:
        raise InvalidSpecification(
            "custom_family: a logp function is required", field='family'
        )
    return CustomFamily(name, dpars, links, lb, ub, logp, type, tuple(vars))


# =====================================================================
# Family name → class mapping + resolver
# =====================================================================

_FAMILY_CLASSES: dict[str, type[Family]] = {
    'gaussian': Gaussian,
    'normal': Gaussian,
    'student': Student,
    'lognormal': LogNormal,
    'gamma': Gamma,
    'bernoulli': Bernoulli,
    'binomial': Binomial,
    'poisson': Poisson,
    'negbinomial': NegBinomial,
    'cumulative': Cumulative,
    'acat': Acat,
}


def resolve_family(family: str | Family, link: str | None = None) -> Family:
    """Resolve a family argument to a Family instance.

    Args:
        family: Either a string name ('gaussian', 'binomial', ...) or a
            Family instance (passed through).
        link: Optional link name for string families.

    Raises:
        InvalidSpecification: If the name or link is not recognized.
        TypeError: If argument is neither string nor Family.
    """
    if isinstance(family, Family):
        return family
    if isinstance(family, str):
        cls = _FAMILY_CLASSES.get(family.lower())
        if cls is None:
            valid = ', '.join(
                sorted(k for k in _FAMILY_CLASSES.keys() if k != 'normal')
            )
            raise InvalidSpecification(
                f"Unknown family: {family!r}. Valid families: {valid}",
                field='family', value=family,
            )
        return cls(link)
    raise TypeError(f"family must be str or Family, got {type(family).__name__}")
