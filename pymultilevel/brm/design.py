"""
Model description and design validation for brm().

ModelSpec describes a multilevel model with structured objects instead of
a formula string:

    ModelSpec(
        response='incidence',
        modifiers=[trials('size')],
        population=['period'],
        groups=[GroupTerm('herd')],
    )

is the equivalent of ``incidence | trials(size) ~ period + (1 | herd)``.

BrmDesign validates a ModelSpec against a dataset and a family and
organizes the numeric inputs of the model: the response, the
population-level design matrix, category-specific columns, one block per
grouping factor and the data of the response modifiers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pymultilevel.core.datasource import DataSource
from pymultilevel.core.exceptions import InvalidSpecification, ValidationError
from pymultilevel.core.validation import check_array, check_finite

#: Response modifiers understood by brm()
RECOGNIZED_MODIFIERS = ('trials', 'cens', 'se', 'trunc', 'cat')

THRESHOLD_MODES = ('flexible', 'equidistant')

_CENS_CODES = {
    'left': -1, 'none': 0, 'right': 1,
    '-1': -1, '0': 0, '1': 1,
}


# =====================================================================
# Model description
# =====================================================================

@dataclass(frozen=True)
class Modifier:
    """A response modifier such as trials(size) or trunc(lb=0).

    Attributes:
        name: One of 'trials', 'cens', 'se', 'trunc', 'cat'.
        column: Data column the modifier reads, if any.
        options: Extra arguments ('lb'/'ub' for trunc, 'sigma' for se,
            'n' for cat).
    """
    name: str
    column: str | None = None
    options: dict[str, Any] = field(default_factory=dict)


def trials(column: str) -> Modifier:
    """Number of binomial trials per observation."""
    return Modifier('trials', column)


def cens(column: str) -> Modifier:
    """Censoring indicator column: 'left', 'none', 'right' (or -1, 0, 1)."""
    return Modifier('cens', column)


def se(column: str, sigma: bool = False) -> Modifier:
    """Known standard errors of the response.

    With sigma=False the residual SD is fixed to the standard errors;
    with sigma=True a residual SD is estimated in addition.
    """
    return Modifier('se', column, {'sigma': bool(sigma)})


def trunc(lb: float | None = None, ub: float | None = None) -> Modifier:
    """Truncation bounds of the response distribution."""
    return Modifier('trunc', None, {'lb': lb, 'ub': ub})


def cat(n: int) -> Modifier:
    """Number of categories of an ordinal response."""
    return Modifier('cat', None, {'n': n})


@dataclass(frozen=True)
class GroupTerm:
    """A group-level term ``(coefs | group)``.

    Attributes:
        group: Name of the grouping column.
        coefs: Varying coefficients. '1' and 'Intercept' both mean the
            intercept; other entries must be numeric data columns.
        correlated: Estimate correlations between the coefficients
            (``|``) or not (``||``).
    """
    group: str
    coefs: tuple[str, ...] = ('1',)
    correlated: bool = True

    def __post_init__(self):
        coefs = (self.coefs,) if isinstance(self.coefs, str) else tuple(self.coefs)
        coefs = tuple('Intercept' if c in ('1', 'Intercept') else c for c in coefs)
        if not coefs:
            raise InvalidSpecification(
                f"Group term for '{self.group}' has no coefficients",
                field='groups', value=self.group,
            )
        if len(set(coefs)) != len(coefs):
            raise InvalidSpecification(
                f"Group term for '{self.group}' repeats a coefficient: {coefs}",
                field='groups', value=coefs,
            )
        object.__setattr__(self, 'coefs', coefs)


@dataclass(frozen=True)
class ModelSpec:
    """Structured description of a multilevel regression model.

    Attributes:
        response: Name of the response column.
        population: Population-level predictor columns. Numeric columns
            enter as they are, other columns are dummy coded against their
            first (sorted) level.
        intercept: Include a population-level intercept.
        groups: Group-level terms.
        modifiers: Response modifiers, at most one per name.
        cs: Population predictors with category-specific effects
            (ordinal 'acat' family only).
        threshold: Ordinal threshold mode, 'flexible' or 'equidistant'.
    """
    response: str
    population: tuple[str, ...] = ()
    intercept: bool = True
    groups: tuple[GroupTerm, ...] = ()
    modifiers: tuple[Modifier, ...] = ()
    cs: tuple[str, ...] = ()
    threshold: str = 'flexible'

    def __post_init__(self):
        for attr in ('population', 'groups', 'modifiers', 'cs'):
            value = getattr(self, attr)
            if isinstance(value, (str, GroupTerm, Modifier)):
                value = (value,)
            object.__setattr__(self, attr, tuple(value))

        seen = set()
        for mod in self.modifiers:
            if not isinstance(mod, Modifier):
                raise InvalidSpecification(
                    f"modifiers must be Modifier objects, got {type(mod).__name__}",
                    field='modifiers', value=mod,
                )
            if mod.name not in RECOGNIZED_MODIFIERS:
                raise InvalidSpecification(
                    f"Unknown response modifier {mod.name!r}. "
                    f"Recognized: {', '.join(RECOGNIZED_MODIFIERS)}",
                    field='modifiers', value=mod.name,
                )
            if mod.name in seen:
                raise InvalidSpecification(
                    f"Response modifier {mod.name!r} given more than once",
                    field='modifiers', value=mod.name,
                )
            seen.add(mod.name)

        for term in self.groups:
            if not isinstance(term, GroupTerm):
                raise InvalidSpecification(
                    f"groups must be GroupTerm objects, got {type(term).__name__}",
                    field='groups', value=term,
                )
        names = [t.group for t in self.groups]
        dup = sorted({g for g in names if names.count(g) > 1})
        if dup:
            raise InvalidSpecification(
                f"Grouping factor(s) {dup} appear in more than one term; "
                f"list all coefficients of a factor in one GroupTerm",
                field='groups', value=dup,
            )

        if self.threshold not in THRESHOLD_MODES:
            raise InvalidSpecification(
                f"threshold must be one of {THRESHOLD_MODES}, got {self.threshold!r}",
                field='threshold', value=self.threshold,
            )

        unknown_cs = [c for c in self.cs if c not in self.population]
        if unknown_cs:
            raise InvalidSpecification(
                f"Category-specific terms {unknown_cs} are not population terms",
                field='cs', value=unknown_cs,
            )

    def modifier(self, name: str) -> Modifier | None:
        for mod in self.modifiers:
            if mod.name == name:
                return mod
        return None

    def columns(self) -> list[str]:
        """All data columns the model reads, in first-use order."""
        cols = [self.response]
        cols.extend(m.column for m in self.modifiers if m.column is not None)
        cols.extend(self.population)
        for term in self.groups:
            cols.append(term.group)
            cols.extend(c for c in term.coefs if c != 'Intercept')
        return list(dict.fromkeys(cols))


# =====================================================================
# Validated design
# =====================================================================

@dataclass(frozen=True)
class GroupBlock:
    """Numeric inputs of one grouping factor.

    Attributes:
        group: Grouping column name.
        coefs: Varying coefficient names.
        levels: Sorted unique group labels (J,).
        index: Level index of each observation (n,).
        Z: Group-level design matrix (n, q).
        correlated: Whether coefficient correlations are estimated.
    """
    group: str
    coefs: tuple[str, ...]
    levels: NDArray
    index: NDArray
    Z: NDArray
    correlated: bool

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def n_coefs(self) -> int:
        return len(self.coefs)


@dataclass(frozen=True)
class BrmDesign:
    """Validated design for a brm() fit.

    Attributes:
        spec: The ModelSpec this design was built from.
        y: Response vector (n,).
        X: Population-level design matrix (n, p), intercept column first
            when present.
        coef_names: Column names of X.
        X_cs: Category-specific design matrix (n, p_cs).
        cs_names: Column names of X_cs.
        blocks: One GroupBlock per group term.
        modifier_data: Per-observation data of trials, se and cens.
        se_sigma: Estimate sigma in addition to known standard errors.
        trunc: (lower, upper) truncation bounds, or None.
        n_cat: Number of response categories (ordinal families).
        n: Number of observations.
        fingerprint: Content hash of the dataset.
    """
    spec: ModelSpec
    y: NDArray
    X: NDArray
    coef_names: tuple[str, ...]
    X_cs: NDArray
    cs_names: tuple[str, ...]
    blocks: tuple[GroupBlock, ...]
    modifier_data: dict[str, NDArray]
    se_sigma: bool
    trunc: tuple[float | None, float | None] | None
    n_cat: int | None
    n: int
    fingerprint: str

    @property
    def p(self) -> int:
        return self.X.shape[1]

    @property
    def has_intercept(self) -> bool:
        return 'Intercept' in self.coef_names

    def block(self, group: str) -> GroupBlock:
        for b in self.blocks:
            if b.group == group:
                return b
        raise KeyError(f"No group-level term for '{group}'")

    @staticmethod
    def validate(spec: ModelSpec, data: DataSource, family: Any) -> 'BrmDesign':
        """Validate a model description against data and family.

        Args:
            spec: Model description.
            data: Dataset holding every column the model reads.
            family: Resolved Family instance.

        Returns:
            Validated BrmDesign.

        Raises:
            InvalidSpecification: On a missing column, a modifier the
                family does not support, censoring combined with
                truncation, an unresolvable group-level coefficient,
                category-specific effects on a family without them, or a
                response the family cannot model.
        """
        missing = [c for c in spec.columns() if c not in data]
        if missing:
            raise InvalidSpecification(
                f"Column(s) {missing} not found in data. "
                f"Available: {sorted(data.keys())}",
                field='data', value=missing,
            )

        for mod in spec.modifiers:
            if mod.name not in family.modifiers:
                raise InvalidSpecification(
                    f"Response modifier {mod.name!r} is not supported by "
                    f"family {family.name!r}",
                    field='modifiers', value=mod.name,
                )

        if spec.modifier('cens') is not None and spec.modifier('trunc') is not None:
            raise InvalidSpecification(
                "Response modifiers 'cens' and 'trunc' cannot be combined",
                field='modifiers', value=('cens', 'trunc'),
            )

        if spec.cs and not family.supports_cs:
            raise InvalidSpecification(
                f"Category-specific effects are not supported by family "
                f"{family.name!r}; use family 'acat'",
                field='cs', value=spec.cs,
            )

        n = data.n_observations
        if n < 1:
            raise InvalidSpecification("data has no observations", field='data')

        y = _numeric(data, spec.response, 'response')

        # Population-level effects
        columns: list[NDArray] = []
        names: list[str] = []
        sources: list[str] = []
        if spec.intercept and not family.ordinal:
            columns.append(np.ones(n))
            names.append('Intercept')
            sources.append('Intercept')
        for term in spec.population:
            for name, col in _encode(data, term):
                columns.append(col)
                names.append(name)
                sources.append(term)

        is_cs = np.array([s in spec.cs for s in sources], dtype=bool)
        full = np.column_stack(columns) if columns else np.empty((n, 0))
        X = full[:, ~is_cs] if columns else full
        X_cs = full[:, is_cs] if columns else np.empty((n, 0))
        coef_names = tuple(nm for nm, c in zip(names, is_cs) if not c)
        cs_names = tuple(nm for nm, c in zip(names, is_cs) if c)

        if not np.all(np.isfinite(X)):
            raise InvalidSpecification(
                "Population-level predictors contain non-finite values",
                field='population',
            )

        blocks = tuple(_group_block(data, term, n) for term in spec.groups)

        # Response modifiers
        modifier_data: dict[str, NDArray] = {}
        se_sigma = True
        trunc_bounds = None
        n_cat = None
        for mod in spec.modifiers:
            if mod.name == 'trials':
                t = _numeric(data, mod.column, 'trials')
                if np.any(t < 0) or not np.all(np.equal(np.mod(t, 1), 0)):
                    raise InvalidSpecification(
                        f"trials column '{mod.column}' must hold non-negative integers",
                        field='modifiers', value=mod.column,
                    )
                modifier_data['trials'] = t
            elif mod.name == 'se':
                s = _numeric(data, mod.column, 'se')
                if np.any(s <= 0):
                    raise InvalidSpecification(
                        f"se column '{mod.column}' must be positive",
                        field='modifiers', value=mod.column,
                    )
                modifier_data['se'] = s
                se_sigma = bool(mod.options.get('sigma', False))
            elif mod.name == 'cens':
                modifier_data['cens'] = _cens_codes(data[mod.column], mod.column)
            elif mod.name == 'trunc':
                trunc_bounds = _trunc_bounds(mod, y)
            elif mod.name == 'cat':
                n_cat = mod.options.get('n')
                if not isinstance(n_cat, (int, np.integer)) or n_cat < 2:
                    raise InvalidSpecification(
                        f"cat(n) needs an integer n >= 2, got {n_cat!r}",
                        field='modifiers', value=n_cat,
                    )
                n_cat = int(n_cat)

        if family.ordinal and n_cat is None:
            n_cat = int(np.max(y))

        family.check_response(y, modifier_data, n_cat)

        return BrmDesign(
            spec=spec,
            y=y,
            X=X,
            coef_names=coef_names,
            X_cs=X_cs,
            cs_names=cs_names,
            blocks=blocks,
            modifier_data=modifier_data,
            se_sigma=se_sigma,
            trunc=trunc_bounds,
            n_cat=n_cat,
            n=n,
            fingerprint=data.fingerprint(),
        )


# =====================================================================
# Helpers
# =====================================================================

def _numeric(data: DataSource, column: str, role: str) -> NDArray:
    if not data.is_numeric(column):
        raise InvalidSpecification(
            f"{role} column '{column}' must be numeric, got dtype {data[column].dtype}",
            field=role, value=column,
        )
    label = f"{role} column '{column}'"
    try:
        values = check_array(data[column], label)
        check_finite(values, label)
    except ValidationError as e:
        raise InvalidSpecification(str(e), field=role, value=column) from e
    return values.astype(np.float64)


def _encode(data: DataSource, term: str) -> list[tuple[str, NDArray]]:
    """Numeric columns pass through; others become treatment dummies."""
    if data.is_numeric(term):
        return [(term, _numeric(data, term, 'population'))]
    labels = np.asarray(data[term]).astype(str)
    levels = np.unique(labels)
    if len(levels) < 2:
        raise InvalidSpecification(
            f"Categorical predictor '{term}' has a single level",
            field='population', value=term,
        )
    return [
        (f"{term}{level}", (labels == level).astype(np.float64))
        for level in levels[1:]
    ]


def _group_block(data: DataSource, term: GroupTerm, n: int) -> GroupBlock:
    labels = np.asarray(data[term.group]).astype(str)
    levels, index = np.unique(labels, return_inverse=True)
    if len(levels) < 2:
        raise InvalidSpecification(
            f"Grouping factor '{term.group}' has only {len(levels)} level; "
            f"need at least 2",
            field='groups', value=term.group,
        )

    cols = []
    for coef in term.coefs:
        if coef == 'Intercept':
            cols.append(np.ones(n))
        elif data.is_numeric(coef):
            cols.append(_numeric(data, coef, 'groups'))
        else:
            raise InvalidSpecification(
                f"Group-level coefficient '{coef}' of '{term.group}' cannot be "
                f"resolved: it must be '1'/'Intercept' or a numeric column",
                field='groups', value=coef,
            )

    return GroupBlock(
        group=term.group,
        coefs=term.coefs,
        levels=levels,
        index=index.astype(np.int64),
        Z=np.column_stack(cols),
        correlated=term.correlated and len(term.coefs) > 1,
    )


def _cens_codes(values: NDArray, column: str) -> NDArray:
    keys = [str(int(v)) if isinstance(v, (bool, np.bool_)) else str(v) for v in values]
    keys = [k[:-2] if k.endswith('.0') else k for k in keys]
    unknown = sorted({k for k in keys if k not in _CENS_CODES})
    if unknown:
        raise InvalidSpecification(
            f"cens column '{column}' has unsupported codes {unknown}; "
            f"use 'left', 'none', 'right' or -1, 0, 1",
            field='modifiers', value=unknown,
        )
    return np.array([_CENS_CODES[k] for k in keys], dtype=np.int64)


def _trunc_bounds(mod: Modifier, y: NDArray) -> tuple[float | None, float | None]:
    lb = mod.options.get('lb')
    ub = mod.options.get('ub')
    if lb is None and ub is None:
        raise InvalidSpecification(
            "trunc() needs at least one of lb, ub", field='modifiers'
        )
    if lb is not None and ub is not None and lb >= ub:
        raise InvalidSpecification(
            f"trunc(): lb ({lb}) must be below ub ({ub})",
            field='modifiers', value=(lb, ub),
        )
    if (lb is not None and np.any(y < lb)) or (ub is not None and np.any(y > ub)):
        raise InvalidSpecification(
            f"Response lies outside the truncation bounds [{lb}, {ub}]",
            field='modifiers', value=(lb, ub),
        )
    return (lb, ub)
