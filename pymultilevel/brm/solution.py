"""
Solution wrapper for brm() fits.

BrmSolution wraps Result[BrmParams] and provides a brms-style summary,
property accessors for draws and diagnostics, and the derived read-only
operations: fixef(), ranef(), fitted(), prior_summary(), model_code(),
loo(), waic() and hypothesis().
"""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from pymultilevel.brm._common import BrmParams
from pymultilevel.brm._posterior import ParameterSummary
from pymultilevel.brm.priors import prior_table
from pymultilevel.core.result import Result

_STATS = ('Estimate', 'Est.Error')


def _interval_labels(prob: float) -> tuple[str, str]:
    pct = f"{prob * 100:g}"
    return (f"l-{pct}% CI", f"u-{pct}% CI")


def _quantile_labels(prob: float) -> tuple[str, str]:
    tail = (1.0 - prob) / 2.0
    return (f"Q{tail * 100:g}", f"Q{(1.0 - tail) * 100:g}")


def stacked_draws(idata: Any, name: str) -> NDArray:
    """Posterior draws of one variable with chains stacked: (S, *shape)."""
    values = np.asarray(idata.posterior[name].values, dtype=np.float64)
    return values.reshape((-1,) + values.shape[2:])


class BrmSolution:
    """Solution wrapper for a fitted Bayesian multilevel model.

    The fit is immutable: every method reads the stored draws and returns
    new objects.
    """

    def __init__(self, _result: Result[BrmParams]):
        self._result = _result

    @property
    def params(self) -> BrmParams:
        return self._result.params

    # --- Draws and model ---

    @property
    def idata(self) -> Any:
        """Posterior draws as arviz.InferenceData."""
        return self.params.idata

    @property
    def prior_idata(self) -> Any | None:
        """Prior draws (only when fit with sample_prior=True)."""
        return self.params.prior_idata

    @property
    def model(self) -> Any:
        """The compiled pymc.Model."""
        return self.params.model

    @property
    def design(self):
        return self.params.design

    @property
    def family(self):
        return self.params.family

    @property
    def control(self):
        return self.params.control

    @property
    def n_obs(self) -> int:
        return self.params.n_obs

    @property
    def n_groups(self) -> Mapping[str, int]:
        return self.params.n_groups

    # --- Diagnostics ---

    @property
    def warnings(self) -> tuple[str, ...]:
        """Sampler diagnostics raised during the fit."""
        return self._result.warnings

    @property
    def timing(self) -> dict[str, float] | None:
        return self._result.timing

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def info(self) -> dict[str, Any]:
        return self._result.info

    @property
    def parameters(self) -> tuple[str, ...]:
        """Names of all summarized parameters, vectors expanded."""
        return tuple(r.parameter for r in self.params.summary)

    @property
    def rhat(self) -> dict[str, float]:
        return {r.parameter: r.rhat for r in self.params.summary}

    @property
    def ess_bulk(self) -> dict[str, float]:
        return {r.parameter: r.ess_bulk for r in self.params.summary}

    @property
    def ess_tail(self) -> dict[str, float]:
        return {r.parameter: r.ess_tail for r in self.params.summary}

    @property
    def converged(self) -> bool:
        """True when no sampler diagnostic was raised."""
        return not self._result.warnings

    def draws(self, name: str) -> NDArray:
        """Posterior draws of a variable, chains stacked: (S, *shape)."""
        return stacked_draws(self.idata, name)

    # --- Tables ---

    def summary_table(self) -> pd.DataFrame:
        """Per-parameter summary as a DataFrame indexed by parameter name."""
        lo, hi = _interval_labels(self.control.prob)
        return pd.DataFrame(
            [
                [r.mean, r.sd, r.lower, r.upper, r.rhat, r.ess_bulk, r.ess_tail]
                for r in self.params.summary
            ],
            index=pd.Index(self.parameters, name='parameter'),
            columns=[*_STATS, lo, hi, 'Rhat', 'Bulk_ESS', 'Tail_ESS'],
        )

    def fixef(self) -> pd.DataFrame:
        """Population-level effects: Estimate, Est.Error and quantiles.

        Ordinal thresholds appear as Intercept[k] and category-specific
        effects as <coef>[k].
        """
        lo, hi = _quantile_labels(self.control.prob)
        rows, index = [], []
        for r in self.params.summary:
            if r.parameter.startswith('b_'):
                index.append(r.parameter[2:])
            elif r.parameter.startswith('bcs_'):
                index.append(r.parameter[4:])
            else:
                continue
            rows.append([r.mean, r.sd, r.lower, r.upper])
        return pd.DataFrame(rows, index=index, columns=[*_STATS, lo, hi])

    def ranef(self) -> dict[str, dict[str, pd.DataFrame]]:
        """Group-level effects per grouping factor and coefficient.

        Returns:
            {group: {coef: DataFrame indexed by level with Estimate,
            Est.Error and quantile columns}}
        """
        prob = self.control.prob
        tail = (1.0 - prob) / 2.0
        lo, hi = _quantile_labels(prob)
        out: dict[str, dict[str, pd.DataFrame]] = {}
        for block in self.design.blocks:
            r = self.draws(f"r_{block.group}")          # (S, J, q)
            per_coef = {}
            for k, coef in enumerate(block.coefs):
                d = r[:, :, k]
                q_lo, q_hi = np.quantile(d, [tail, 1.0 - tail], axis=0)
                per_coef[coef] = pd.DataFrame(
                    {
                        'Estimate': d.mean(axis=0),
                        'Est.Error': d.std(axis=0, ddof=1),
                        lo: q_lo,
                        hi: q_hi,
                    },
                    index=pd.Index(block.levels, name=block.group),
                )
            out[block.group] = per_coef
        return out

    def fitted(self, summary: bool = True) -> pd.DataFrame | NDArray:
        """Posterior expected response E[y] for each observation.

        Args:
            summary: Return per-observation summaries (True) or the
                draws matrix (S, n) (False).

        Raises:
            InvalidSpecification: For ordinal families, whose expected
                response is not defined.
        """
        design = self.design
        family = self.family
        idata = self.idata

        eta = np.zeros((1, design.n))
        if design.coef_names:
            b = np.column_stack([self.draws(f"b_{c}") for c in design.coef_names])
            eta = b @ design.X.T
        for block in design.blocks:
            r = self.draws(f"r_{block.group}")
            eta = eta + np.einsum('snq,nq->sn', r[:, block.index, :], block.Z)

        aux = {
            d.name: stacked_draws(idata, d.name)
            for d in family.dpars
            if d.name in idata.posterior
        }
        mu = family.mean(eta, aux, design)
        if not summary:
            return mu

        prob = self.control.prob
        tail = (1.0 - prob) / 2.0
        lo, hi = _quantile_labels(prob)
        q_lo, q_hi = np.quantile(mu, [tail, 1.0 - tail], axis=0)
        return pd.DataFrame({
            'Estimate': mu.mean(axis=0),
            'Est.Error': mu.std(axis=0, ddof=1),
            lo: q_lo,
            hi: q_hi,
        })

    def prior_summary(self) -> pd.DataFrame:
        """The prior used for each parameter and where it came from."""
        return prior_table(self.params.priors)

    def model_code(self) -> str:
        """Text listing of the compiled PyMC model."""
        from pymc.printing import str_for_model

        return str_for_model(self.model, formatting='plain')

    # --- Derived operations ---

    def loo(self, **kwargs):
        from pymultilevel.brm.criteria import loo
        return loo(self, **kwargs)

    def waic(self, **kwargs):
        from pymultilevel.brm.criteria import waic
        return waic(self, **kwargs)

    def hypothesis(self, hypothesis, **kwargs):
        from pymultilevel.brm.hypothesis import hypothesis as _hypothesis
        return _hypothesis(self, hypothesis, **kwargs)

    # --- Summary ---

    def _sections(self) -> tuple[list[tuple[str, ParameterSummary]],
                                 dict[str, list[tuple[str, ParameterSummary]]],
                                 list[tuple[str, ParameterSummary]]]:
        group_labels: dict[str, tuple[str, str]] = {}
        for block in self.design.blocks:
            g = block.group
            for i, c in enumerate(block.coefs):
                group_labels[f"sd_{g}_{c}"] = (g, f"sd({c})")
                for c2 in block.coefs[i + 1:]:
                    group_labels[f"cor_{g}_{c}_{c2}"] = (g, f"cor({c},{c2})")

        population = []
        groups: dict[str, list[tuple[str, ParameterSummary]]] = {
            b.group: [] for b in self.design.blocks
        }
        further = []
        for r in self.params.summary:
            if r.parameter in group_labels:
                g, label = group_labels[r.parameter]
                groups[g].append((label, r))
            elif r.parameter.startswith('b_'):
                population.append((r.parameter[2:], r))
            elif r.parameter.startswith('bcs_'):
                population.append((r.parameter[4:], r))
            else:
                further.append((r.parameter, r))
        return population, groups, further

    def _table(self, rows: list[tuple[str, ParameterSummary]]) -> list[str]:
        lo, hi = _interval_labels(self.control.prob)
        width = max([len(label) for label, _ in rows] + [1])
        lines = [
            f"{'':<{width}s} {'Estimate':>8s} {'Est.Error':>9s} {lo:>8s} "
            f"{hi:>8s} {'Rhat':>5s} {'Bulk_ESS':>8s} {'Tail_ESS':>8s}"
        ]
        for label, r in rows:
            lines.append(
                f"{label:<{width}s} {r.mean:8.2f} {r.sd:9.2f} {r.lower:8.2f} "
                f"{r.upper:8.2f} {r.rhat:5.2f} {_fmt_ess(r.ess_bulk):>8s} "
                f"{_fmt_ess(r.ess_tail):>8s}"
            )
        return lines

    def summary(self) -> str:
        """brms-style summary of the fit."""
        params = self.params
        control = params.control
        family = params.family

        links = f"mu = {family.link.name}"
        for d in family.dpars:
            if d.name in params.parameter_names:
                links += f"; {d.name} = identity"

        lines = [
            f" Family: {family.name}",
            f"  Links: {links}",
            f"   Data: (Number of observations: {params.n_obs})",
            f"  Draws: {control.chains} chains, each with iter = {control.iter}; "
            f"warmup = {control.warmup}; thin = 1;",
            f"         total post-warmup draws = {control.total_draws}",
            "",
        ]

        population, groups, further = self._sections()

        if groups:
            lines.append("Multilevel Hyperparameters:")
            for g, rows in groups.items():
                lines.append(f"~{g} (Number of levels: {params.n_groups[g]})")
                lines.extend(self._table(rows))
                lines.append("")

        if population:
            lines.append("Regression Coefficients:")
            lines.extend(self._table(population))
            lines.append("")

        if further:
            lines.append("Further Distributional Parameters:")
            lines.extend(self._table(further))
            lines.append("")

        lines.append(
            "Draws were sampled using NUTS "
            f"({self._result.backend_name}). For each parameter, Bulk_ESS"
        )
        lines.append(
            "and Tail_ESS are effective sample size measures, and Rhat is the "
            "potential"
        )
        lines.append(
            "scale reduction factor on split chains (at convergence, Rhat = 1)."
        )

        if self.warnings:
            lines.append("")
            for msg in self.warnings:
                lines.append(f"Warning: {msg}")

        return '\n'.join(lines)

    def __repr__(self) -> str:
        return (
            f"BrmSolution(family={self.family.name}, "
            f"n={self.n_obs}, "
            f"parameters={len(self.params.summary)}, "
            f"draws={self.control.total_draws})"
        )


def _fmt_ess(value: float) -> str:
    if not np.isfinite(value):
        return 'NA'
    return f"{int(round(value))}"
