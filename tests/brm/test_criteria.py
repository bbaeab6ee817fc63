"""
Tests for information criteria and model comparison.

Validates:
    - loo / waic return finite ELPD estimates with pointwise values
    - loo_compare: a fit compared with itself differs by exactly zero
    - loo_compare: ordering, elpd_diff as the sum of pointwise
      differences and se_diff = sqrt(n * var(diff))
    - loo_compare rejects fits of different data and bad arguments
"""

import numpy as np
import pytest

from pymultilevel.brm.criteria import InformationCriterion, loo, loo_compare, waic
from pymultilevel.brm.design import BrmDesign, GroupTerm, ModelSpec
from pymultilevel.brm.families import resolve_family
from pymultilevel.core.datasource import DataSource
from pymultilevel.core.exceptions import ValidationError


@pytest.fixture
def worse_fit(gaussian_design, make_fit, make_gaussian_draws):
    """Same data, slope pulled to zero: a poorer predictive model."""
    design, family = gaussian_design
    posterior, log_lik = make_gaussian_draws(
        design, np.random.default_rng(11), slope=0.0, slope_sd=0.01
    )
    return make_fit(design, family, posterior, log_lik=log_lik)


# ═══════════════════════════════════════════════════════════════════════
# Single-fit criteria
# ═══════════════════════════════════════════════════════════════════════


class TestLoo:

    def test_fields(self, gaussian_fit):
        res = loo(gaussian_fit)
        assert isinstance(res, InformationCriterion)
        assert res.criterion == 'loo'
        assert np.isfinite(res.elpd)
        assert res.se > 0
        assert res.n_obs == 30
        assert res.pareto_k.shape == (30,)
        assert res.ic == pytest.approx(-2 * res.elpd)

    def test_pointwise_sum_to_elpd(self, gaussian_fit):
        res = loo(gaussian_fit)
        assert res.pointwise.sum() == pytest.approx(res.elpd)

    def test_method_on_solution(self, gaussian_fit):
        assert gaussian_fit.loo().elpd == pytest.approx(loo(gaussian_fit).elpd)

    def test_str(self, gaussian_fit):
        text = str(loo(gaussian_fit))
        assert "Computed from 30 observations" in text
        assert "elpd_loo" in text
        assert "looic" in text


class TestWaic:

    def test_fields(self, gaussian_fit):
        res = waic(gaussian_fit)
        assert res.criterion == 'waic'
        assert res.pareto_k is None
        assert res.pointwise.sum() == pytest.approx(res.elpd)
        assert res.p > 0


# ═══════════════════════════════════════════════════════════════════════
# loo_compare
# ═══════════════════════════════════════════════════════════════════════


class TestLooCompare:

    def test_self_comparison_is_zero(self, gaussian_fit):
        table = loo_compare(gaussian_fit, gaussian_fit)
        np.testing.assert_array_equal(table['elpd_diff'], [0.0, 0.0])
        np.testing.assert_array_equal(table['se_diff'], [0.0, 0.0])

    def test_better_fit_first(self, gaussian_fit, worse_fit):
        table = loo_compare(worse_fit, gaussian_fit, names=['flat_slope', 'slope'])
        assert list(table.index) == ['slope', 'flat_slope']
        assert table.loc['slope', 'elpd_diff'] == 0.0
        assert table.loc['flat_slope', 'elpd_diff'] < 0.0

    def test_diff_and_se_from_pointwise(self, gaussian_fit, worse_fit):
        table = loo_compare(gaussian_fit, worse_fit)
        a, b = loo(gaussian_fit), loo(worse_fit)
        diff = b.pointwise - a.pointwise
        assert table.loc['model2', 'elpd_diff'] == pytest.approx(diff.sum())
        assert table.loc['model2', 'se_diff'] == pytest.approx(
            np.sqrt(len(diff) * np.var(diff, ddof=1))
        )
        assert table.loc['model1', 'elpd_loo'] == pytest.approx(a.elpd)

    def test_waic_columns(self, gaussian_fit, worse_fit):
        table = loo_compare(gaussian_fit, worse_fit, criterion='waic')
        assert list(table.columns) == [
            'elpd_diff', 'se_diff', 'elpd_waic', 'se_elpd_waic', 'p_waic',
        ]

    def test_different_data_rejected(self, gaussian_fit, gaussian_data, make_fit,
                                     make_gaussian_draws):
        data = dict(gaussian_data, y=np.asarray(gaussian_data['y']) + 1.0)
        family = resolve_family('gaussian')
        design = BrmDesign.validate(
            ModelSpec('y', population=['x'], groups=[GroupTerm('g')]),
            DataSource.from_dict(data), family,
        )
        posterior, log_lik = make_gaussian_draws(design, np.random.default_rng(5))
        other = make_fit(design, family, posterior, log_lik=log_lik)
        with pytest.raises(ValidationError, match="not fit on the same data"):
            loo_compare(gaussian_fit, other)

    def test_needs_two_fits(self, gaussian_fit):
        with pytest.raises(ValidationError, match="at least 2 fits"):
            loo_compare(gaussian_fit)

    def test_unknown_criterion(self, gaussian_fit):
        with pytest.raises(ValidationError, match="criterion must be one of"):
            loo_compare(gaussian_fit, gaussian_fit, criterion='aic')

    def test_names_length(self, gaussian_fit):
        with pytest.raises(ValidationError, match="names has 1 entries"):
            loo_compare(gaussian_fit, gaussian_fit, names=['only'])
