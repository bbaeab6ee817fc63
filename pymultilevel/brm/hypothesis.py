"""
Linear hypotheses on posterior draws.

A hypothesis is written in terms of parameter names with the class (and
group) prefix left out:

    hypothesis(fit, "period2 - period3 < 0")                      # b_period2, b_period3
    hypothesis(fit, "Intercept - age > 0", class_='sd', group='patient')
                                                                  # sd_patient_Intercept, ...

Each side may use + - * / ** , numbers and exp/log/sqrt/abs. The
hypothesis H is evaluated on every posterior draw of lhs − rhs.

For one-sided hypotheses (< or >) the evidence ratio is the posterior
odds P(H) / P(not H) and the credible interval is one-sided. For point
hypotheses (=) it is the Savage-Dickey density ratio p(0 | y) / p(0) of
the posterior and prior densities at zero, which needs prior draws
(fit with sample_prior=True); without them it is NaN.
"""

from __future__ import annotations

import ast
import operator
import re
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats

from pymultilevel.core.exceptions import ValidationError

_SPLIT = re.compile(r'^(?P<lhs>[^<>=]+)(?P<op><|>|=)(?P<rhs>[^<>=]+)$')
_NAME = re.compile(r'(?<![\w.\]])([A-Za-z_][A-Za-z0-9_.]*(?:\[\d+\])?)')
_INDEXED = re.compile(r'^(?P<base>.+)\[(?P<k>\d+)\]$')

_BINARY = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
}
_UNARY = {ast.USub: operator.neg, ast.UAdd: operator.pos}
_FUNCTIONS = {'exp': np.exp, 'log': np.log, 'sqrt': np.sqrt, 'abs': np.abs}


@dataclass(frozen=True)
class HypothesisTest:
    """Result of one hypothesis.

    Attributes:
        hypothesis: Normalized hypothesis, e.g. '(Intercept-age) > 0'.
        estimate: Posterior mean of lhs − rhs.
        est_error: Posterior SD of lhs − rhs.
        ci_lower: Lower credible bound (-inf for '<').
        ci_upper: Upper credible bound (+inf for '>').
        evid_ratio: Evidence ratio in favour of the hypothesis.
        post_prob: Posterior probability of the hypothesis.
        star: True when the credible interval excludes zero.
        samples: Posterior draws of lhs − rhs.
        prior_samples: Prior draws of lhs − rhs, if available.
    """
    hypothesis: str
    estimate: float
    est_error: float
    ci_lower: float
    ci_upper: float
    evid_ratio: float
    post_prob: float
    star: bool
    samples: NDArray
    prior_samples: NDArray | None = None


@dataclass(frozen=True)
class HypothesisResult:
    """All hypotheses evaluated in one call."""
    tests: tuple[HypothesisTest, ...]
    alpha: float
    class_: str
    group: str | None

    def table(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    'Hypothesis': t.hypothesis,
                    'Estimate': t.estimate,
                    'Est.Error': t.est_error,
                    'CI.Lower': t.ci_lower,
                    'CI.Upper': t.ci_upper,
                    'Evid.Ratio': t.evid_ratio,
                    'Post.Prob': t.post_prob,
                    'Star': '*' if t.star else '',
                }
                for t in self.tests
            ]
        )

    def __getitem__(self, i: int) -> HypothesisTest:
        return self.tests[i]

    def __len__(self) -> int:
        return len(self.tests)

    def __str__(self) -> str:
        width = max(len(t.hypothesis) for t in self.tests)
        lines = [
            f"Hypothesis Tests for class {self.class_}"
            + (f" (group {self.group})" if self.group else '') + ":",
            f"  {'Hypothesis':<{width}s} {'Estimate':>8s} {'Est.Error':>9s} "
            f"{'CI.Lower':>8s} {'CI.Upper':>8s} {'Evid.Ratio':>10s} "
            f"{'Post.Prob':>9s} {'Star':>4s}",
        ]
        for t in self.tests:
            lines.append(
                f"  {t.hypothesis:<{width}s} {t.estimate:8.2f} {t.est_error:9.2f} "
                f"{t.ci_lower:8.2f} {t.ci_upper:8.2f} {t.evid_ratio:10.2f} "
                f"{t.post_prob:9.2f} {'*' if t.star else '':>4s}"
            )
        lines.append("---")
        lines.append(
            f"'CI': {100 * (1 - 2 * self.alpha):g}%-CI for one-sided and "
            f"{100 * (1 - self.alpha):g}%-CI for two-sided hypotheses."
        )
        lines.append("'*': For one-sided hypotheses, the posterior probability exceeds "
                     f"{100 * (1 - self.alpha):g}%;")
        lines.append("for two-sided hypotheses, the value tested against lies outside "
                     f"the {100 * (1 - self.alpha):g}%-CI.")
        lines.append("Posterior probabilities of point hypotheses assume equal prior "
                     "probabilities.")
        return '\n'.join(lines)


def _evaluate(node: ast.AST, env: dict[str, NDArray]) -> Any:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body, env)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return float(node.value)
    if isinstance(node, ast.Name) and node.id in env:
        return env[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
        return _BINARY[type(node.op)](_evaluate(node.left, env), _evaluate(node.right, env))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
        return _UNARY[type(node.op)](_evaluate(node.operand, env))
    if (isinstance(node, ast.Call) and isinstance(node.func, ast.Name)
            and node.func.id in _FUNCTIONS and len(node.args) == 1 and not node.keywords):
        return _FUNCTIONS[node.func.id](_evaluate(node.args[0], env))
    raise ValidationError(
        f"hypothesis: unsupported expression element {ast.dump(node)}"
    )


def _lookup(group_data: Any, name: str) -> NDArray | None:
    """Draws of a scalar parameter from an InferenceData group, chains stacked."""
    if group_data is None:
        return None
    match = _INDEXED.match(name)
    base, k = (match['base'], int(match['k'])) if match else (name, None)
    if base not in group_data:
        return None
    values = np.asarray(group_data[base].values, dtype=np.float64)
    values = values.reshape((-1,) + values.shape[2:])
    if k is None:
        if values.ndim != 1:
            raise ValidationError(
                f"hypothesis: parameter '{base}' is a vector; index it as {base}[k]"
            )
        return values
    if values.ndim != 2 or not 1 <= k <= values.shape[1]:
        raise ValidationError(f"hypothesis: '{name}' is out of range")
    return values[:, k - 1]


def _prefix(class_: str | None, group: str | None) -> str:
    parts = [p for p in (class_, group) if p]
    return ''.join(f"{p}_" for p in parts)


def _compile(expr: str, prefix: str) -> tuple[ast.Expression, dict[str, str]]:
    """Replace parameter names with placeholders and parse the expression."""
    names: dict[str, str] = {}

    def substitute(match: re.Match) -> str:
        token = match.group(1)
        rest = expr[match.end():].lstrip()
        if token in _FUNCTIONS and rest.startswith('('):
            return token
        key = names.setdefault(prefix + token, f"__p{len(names)}")
        return key

    text = _NAME.sub(substitute, expr)
    try:
        tree = ast.parse(text, mode='eval')
    except SyntaxError as e:
        raise ValidationError(f"hypothesis: cannot parse {expr!r}: {e.msg}") from None
    return tree, names


def _sides(group_data: Any, tree: ast.Expression, names: dict[str, str]) -> NDArray | None:
    env = {}
    for full, key in names.items():
        draws = _lookup(group_data, full)
        if draws is None:
            return None
        env[key] = draws
    return np.asarray(_evaluate(tree, env), dtype=np.float64)


def _savage_dickey(samples: NDArray, prior_samples: NDArray | None) -> float:
    """p(0 | y) / p(0) estimated with Gaussian kernel densities."""
    if prior_samples is None or np.ptp(prior_samples) == 0 or np.ptp(samples) == 0:
        return np.nan
    posterior_density = stats.gaussian_kde(samples)(0.0)[0]
    prior_density = stats.gaussian_kde(prior_samples)(0.0)[0]
    if prior_density == 0:
        return np.inf
    return float(posterior_density / prior_density)


def _odds(p: float) -> float:
    if p >= 1.0:
        return np.inf
    return p / (1.0 - p)


def hypothesis(
    fit: Any,
    hypothesis: str | Sequence[str],
    class_: str | None = 'b',
    group: str | None = None,
    alpha: float = 0.05,
) -> HypothesisResult:
    """Evaluate one or more hypotheses on the posterior of a fit.

    Args:
        fit: BrmSolution.
        hypothesis: Hypothesis string(s) of the form 'lhs < rhs',
            'lhs > rhs' or 'lhs = rhs'.
        class_: Prefix class of the names used ('b', 'sd', 'cor', ...).
            None or '' uses the names as written.
        group: Grouping factor, prefixed after the class (e.g. 'sd' with
            group 'patient' turns 'age' into 'sd_patient_age').
        alpha: Two-sided intervals cover 1 − alpha; one-sided bounds are
            the alpha (for >) or 1 − alpha (for <) quantile.

    Returns:
        HypothesisResult; str() gives the brms-style table.

    Raises:
        ValidationError: If a hypothesis cannot be parsed or names a
            parameter the fit does not have.
    """
    if not 0.0 < alpha < 0.5:
        raise ValidationError(f"hypothesis: alpha must be in (0, 0.5), got {alpha}")
    if isinstance(hypothesis, str):
        hypothesis = [hypothesis]

    posterior = fit.idata.posterior
    prior_idata = getattr(fit, 'prior_idata', None)
    prior = getattr(prior_idata, 'prior', None) if prior_idata is not None else None
    prefix = _prefix(class_, group)

    tests = []
    for h in hypothesis:
        match = _SPLIT.match(h.strip())
        if match is None:
            raise ValidationError(
                f"hypothesis: {h!r} must contain exactly one of '<', '>', '='"
            )
        lhs, op, rhs = match['lhs'].strip(), match['op'], match['rhs'].strip()
        expr = f"({lhs}) - ({rhs})"
        tree, names = _compile(expr, prefix)

        samples = _sides(posterior, tree, names)
        if samples is None:
            missing = [n for n in names if _lookup(posterior, n) is None]
            raise ValidationError(
                f"hypothesis: parameter(s) {missing} not found in the fit. "
                f"Available: {sorted(posterior.data_vars)}"
            )
        samples = np.broadcast_to(samples, (posterior.sizes['chain'] * posterior.sizes['draw'],))
        prior_samples = _sides(prior, tree, names) if prior is not None else None

        if op == '=':
            lower, upper = np.quantile(samples, [alpha / 2, 1 - alpha / 2])
            evid_ratio = _savage_dickey(samples, prior_samples)
            if np.isnan(evid_ratio):
                post_prob = np.nan
            elif np.isinf(evid_ratio):
                post_prob = 1.0
            else:
                post_prob = evid_ratio / (1.0 + evid_ratio)
            star = not (lower <= 0.0 <= upper)
        elif op == '<':
            lower, upper = -np.inf, float(np.quantile(samples, 1 - alpha))
            post_prob = float(np.mean(samples < 0))
            evid_ratio = _odds(post_prob)
            star = upper < 0.0
        else:
            lower, upper = float(np.quantile(samples, alpha)), np.inf
            post_prob = float(np.mean(samples > 0))
            evid_ratio = _odds(post_prob)
            star = lower > 0.0

        rhs_text = '0' if rhs in ('0', '0.0') else f"({rhs})"
        label = f"({lhs}) {op} 0" if rhs_text == '0' else f"({lhs})-{rhs_text} {op} 0"
        tests.append(HypothesisTest(
            hypothesis=label,
            estimate=float(samples.mean()),
            est_error=float(samples.std(ddof=1)),
            ci_lower=float(lower),
            ci_upper=float(upper),
            evid_ratio=float(evid_ratio),
            post_prob=float(post_prob),
            star=bool(star),
            samples=np.array(samples),
            prior_samples=prior_samples,
        ))

    return HypothesisResult(
        tests=tuple(tests), alpha=alpha, class_=class_ or '', group=group,
    )
