"""
Information criteria and model comparison.

loo() and waic() estimate the expected log pointwise predictive density
(ELPD) of a fit with Pareto-smoothed importance-sampling leave-one-out
cross-validation and the widely applicable information criterion, both
computed by ArviZ from the pointwise log-likelihood stored with the
draws.

loo_compare() ranks fits by ELPD. For each fit the difference to the
best one and its standard error are computed from the pointwise values:

    elpd_diff = Σ_i (elpd_i − elpd_best,i)
    se_diff   = sqrt(n · var(elpd_i − elpd_best,i))

References:
    Vehtari, A., Gelman, A., & Gabry, J. (2017). Practical Bayesian model
    evaluation using leave-one-out cross-validation and WAIC. Statistics
    and Computing, 27, 1413-1432.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import arviz as az
import numpy as np
import pandas as pd
from numpy.typing import NDArray

from pymultilevel.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_CRITERIA = ('loo', 'waic')


@dataclass(frozen=True)
class InformationCriterion:
    """ELPD estimate of one fit.

    Attributes:
        criterion: 'loo' or 'waic'.
        elpd: Estimated expected log pointwise predictive density.
        se: Standard error of elpd.
        p: Effective number of parameters.
        pointwise: Pointwise elpd contributions (n,).
        pareto_k: Pareto shape diagnostics per observation (loo only).
        warning: True when ArviZ flagged the estimate as unreliable.
    """
    criterion: str
    elpd: float
    se: float
    p: float
    pointwise: NDArray
    pareto_k: NDArray | None = None
    warning: bool = False

    @property
    def ic(self) -> float:
        """The criterion on the deviance scale, -2 · elpd."""
        return -2.0 * self.elpd

    @property
    def n_obs(self) -> int:
        return len(self.pointwise)

    def __str__(self) -> str:
        name = self.criterion
        lines = [
            f"Computed from {self.n_obs} observations",
            f"{'':<10s} {'Estimate':>9s} {'SE':>7s}",
            f"{'elpd_' + name:<10s} {self.elpd:9.1f} {self.se:7.1f}",
            f"{'p_' + name:<10s} {self.p:9.1f}",
            f"{name + 'ic' if name == 'loo' else name:<10s} {self.ic:9.1f} {2 * self.se:7.1f}",
        ]
        if self.pareto_k is not None:
            n_bad = int(np.sum(self.pareto_k > 0.7))
            if n_bad:
                lines.append(
                    f"Warning: {n_bad} observation(s) with a Pareto k above 0.7"
                )
        return '\n'.join(lines)


def loo(fit: Any, **kwargs: Any) -> InformationCriterion:
    """PSIS leave-one-out cross-validation of a fit.

    Args:
        fit: BrmSolution.
        **kwargs: Passed to arviz.loo (e.g. reff).
    """
    res = az.loo(fit.idata, pointwise=True, **kwargs)
    return InformationCriterion(
        criterion='loo',
        elpd=float(res['elpd_loo']),
        se=float(res['se']),
        p=float(res['p_loo']),
        pointwise=np.asarray(res['loo_i']).ravel(),
        pareto_k=np.asarray(res['pareto_k']).ravel(),
        warning=bool(res['warning']),
    )


def waic(fit: Any, **kwargs: Any) -> InformationCriterion:
    """Widely applicable information criterion of a fit."""
    res = az.waic(fit.idata, pointwise=True, **kwargs)
    return InformationCriterion(
        criterion='waic',
        elpd=float(res['elpd_waic']),
        se=float(res['se']),
        p=float(res['p_waic']),
        pointwise=np.asarray(res['waic_i']).ravel(),
        warning=bool(res['warning']),
    )


def loo_compare(
    *fits: Any,
    criterion: str = 'loo',
    names: list[str] | None = None,
) -> pd.DataFrame:
    """Compare fits of the same data by their ELPD.

    Args:
        *fits: Two or more BrmSolution objects fit on the same dataset.
        criterion: 'loo' or 'waic'.
        names: Row labels; defaults to 'model1', 'model2', ...

    Returns:
        DataFrame sorted from best to worst with columns elpd_diff,
        se_diff, elpd_<criterion>, se_elpd_<criterion> and p_<criterion>.
        The best fit has elpd_diff = se_diff = 0.

    Raises:
        ValidationError: On fewer than two fits, an unknown criterion,
            or fits that were not made on the same data.
    """
    if criterion not in _CRITERIA:
        raise ValidationError(
            f"criterion must be one of {_CRITERIA}, got {criterion!r}"
        )
    if len(fits) < 2:
        raise ValidationError(f"loo_compare needs at least 2 fits, got {len(fits)}")
    if names is None:
        names = [f"model{i + 1}" for i in range(len(fits))]
    if len(names) != len(fits):
        raise ValidationError(
            f"names has {len(names)} entries for {len(fits)} fits"
        )

    reference = fits[0].params.data_fingerprint
    for name, fit in zip(names, fits):
        if fit.params.data_fingerprint != reference:
            raise ValidationError(
                f"{name} was not fit on the same data as {names[0]}; "
                f"information criteria are only comparable on identical data"
            )
        if fit.n_obs != fits[0].n_obs:
            raise ValidationError(
                f"{name} has {fit.n_obs} observations, {names[0]} has {fits[0].n_obs}"
            )

    compute = loo if criterion == 'loo' else waic
    scores = [compute(fit) for fit in fits]
    best = int(np.argmax([s.elpd for s in scores]))
    n = scores[best].n_obs

    rows = []
    for name, score in zip(names, scores):
        diff = score.pointwise - scores[best].pointwise
        se_diff = float(np.sqrt(n * np.var(diff, ddof=1))) if n > 1 else 0.0
        rows.append({
            'model': name,
            'elpd_diff': float(diff.sum()),
            'se_diff': se_diff,
            f'elpd_{criterion}': score.elpd,
            f'se_elpd_{criterion}': score.se,
            f'p_{criterion}': score.p,
        })

    table = pd.DataFrame(rows).set_index('model')
    table = table.sort_values('elpd_diff', ascending=False, kind='stable')
    logger.debug("compared %d fits by %s", len(fits), criterion)
    return table
