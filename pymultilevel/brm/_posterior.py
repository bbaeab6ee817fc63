"""
Posterior draws: per-parameter summaries and sampler diagnostics.

Summaries use equal-tailed credible intervals and the rank-normalized
bulk/tail ESS and R-hat of Vehtari et al. (2021) as implemented in ArviZ.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Sequence

import arviz as az
import numpy as np
from numpy.typing import NDArray

from pymultilevel.core.exceptions import ConvergenceWarning, SamplerDivergenceWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParameterSummary:
    """Summary of one scalar parameter's posterior.

    Attributes:
        parameter: Parameter name; vector parameters are expanded to
            'name[k]' with 1-based k.
        mean: Posterior mean.
        sd: Posterior standard deviation.
        lower: Lower bound of the central credible interval.
        upper: Upper bound of the central credible interval.
        ess_bulk: Bulk effective sample size.
        ess_tail: Tail effective sample size.
        rhat: Rank-normalized split R-hat.
    """
    parameter: str
    mean: float
    sd: float
    lower: float
    upper: float
    ess_bulk: float
    ess_tail: float
    rhat: float


def draws_matrix(values: NDArray) -> list[tuple[str, NDArray]]:
    """Split (chain, draw, *shape) draws into (suffix, (chain, draw)) pieces."""
    values = np.asarray(values, dtype=np.float64)
    if values.ndim == 2:
        return [('', values)]
    flat = values.reshape(values.shape[0], values.shape[1], -1)
    return [(f"[{k + 1}]", flat[:, :, k]) for k in range(flat.shape[2])]


def summarize_draws(name: str, draws: NDArray, prob: float) -> ParameterSummary:
    """Summarize one scalar parameter from its (chain, draw) array."""
    n_total = draws.size
    flat = draws.ravel()
    tail = (1.0 - prob) / 2.0
    lower, upper = np.quantile(flat, [tail, 1.0 - tail])

    if np.ptp(flat) == 0:
        ess_bulk = ess_tail = rhat = np.nan
    else:
        ess_bulk = min(float(az.ess(draws, method='bulk')), n_total)
        ess_tail = min(float(az.ess(draws, method='tail')), n_total)
        rhat = float(az.rhat(draws))

    return ParameterSummary(
        parameter=name,
        mean=float(flat.mean()),
        sd=float(flat.std(ddof=1)) if n_total > 1 else np.nan,
        lower=float(lower),
        upper=float(upper),
        ess_bulk=ess_bulk,
        ess_tail=ess_tail,
        rhat=rhat,
    )


def summarize(idata: Any, names: Sequence[str], prob: float) -> tuple[ParameterSummary, ...]:
    """Summaries for the named posterior variables, vectors expanded."""
    rows = []
    for name in names:
        for suffix, draws in draws_matrix(idata.posterior[name].values):
            rows.append(summarize_draws(f"{name}{suffix}", draws, prob))
    return tuple(rows)


def diagnose(
    idata: Any,
    rows: Sequence[ParameterSummary],
    control: Any,
) -> tuple[str, ...]:
    """Check sampler diagnostics, warn, and return the warning messages.

    Emits SamplerDivergenceWarning when divergent transitions exceed
    control.divergence_threshold, and ConvergenceWarning when transitions
    hit the maximum tree depth or a parameter's R-hat exceeds
    control.rhat_threshold.
    """
    messages: list[str] = []
    stats = getattr(idata, 'sample_stats', None)
    n_draws = control.total_draws

    if stats is not None and 'diverging' in stats:
        n_div = int(np.asarray(stats['diverging'].values).sum())
        if n_div > control.divergence_threshold:
            msg = (
                f"There were {n_div} divergent transitions after warmup "
                f"(out of {n_draws}). Increase adapt_delta above "
                f"{control.adapt_delta} or reparameterize the model."
            )
            warnings.warn(
                SamplerDivergenceWarning(msg, n_divergent=n_div, n_draws=n_draws),
                stacklevel=3,
            )
            messages.append(msg)

    if stats is not None:
        n_depth = 0
        if 'reached_max_treedepth' in stats:
            n_depth = int(np.asarray(stats['reached_max_treedepth'].values).sum())
        elif 'tree_depth' in stats:
            n_depth = int((np.asarray(stats['tree_depth'].values) >= control.max_treedepth).sum())
        if n_depth > 0:
            msg = (
                f"{n_depth} transitions after warmup exceeded the maximum "
                f"tree depth of {control.max_treedepth}. Increase max_treedepth."
            )
            warnings.warn(msg, ConvergenceWarning, stacklevel=3)
            messages.append(msg)

    high = [r.parameter for r in rows
            if np.isfinite(r.rhat) and r.rhat > control.rhat_threshold]
    if high:
        msg = (
            f"R-hat above {control.rhat_threshold} for {len(high)} parameter(s): "
            f"{', '.join(high)}. The chains have not mixed; run more "
            f"iterations or use more informative priors."
        )
        warnings.warn(msg, ConvergenceWarning, stacklevel=3)
        messages.append(msg)

    for msg in messages:
        logger.info("sampler diagnostic: %s", msg)
    return tuple(messages)
