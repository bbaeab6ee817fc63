"""
Tests for model description and design validation.

Validates:
    - ModelSpec normalization and the errors it raises on construction
    - GroupTerm coefficient handling ('1' is the intercept)
    - BrmDesign.validate: missing columns, modifiers per family,
      population coding, group blocks, modifier data, ordinal categories
"""

import numpy as np
import pytest

from pymultilevel.brm.design import (
    BrmDesign,
    GroupTerm,
    Modifier,
    ModelSpec,
    cat,
    cens,
    se,
    trials,
    trunc,
)
from pymultilevel.brm.families import resolve_family
from pymultilevel.core.datasource import DataSource
from pymultilevel.core.exceptions import InvalidSpecification


def _validate(spec, data, family='gaussian'):
    return BrmDesign.validate(spec, DataSource.build(data), resolve_family(family))


# ═══════════════════════════════════════════════════════════════════════
# ModelSpec / GroupTerm
# ═══════════════════════════════════════════════════════════════════════


class TestGroupTerm:

    def test_one_means_intercept(self):
        assert GroupTerm('herd').coefs == ('Intercept',)
        assert GroupTerm('patient', coefs=['1', 'age']).coefs == ('Intercept', 'age')

    def test_string_coef(self):
        assert GroupTerm('patient', coefs='age').coefs == ('age',)

    def test_empty_coefs(self):
        with pytest.raises(InvalidSpecification, match="no coefficients"):
            GroupTerm('herd', coefs=())

    def test_duplicate_coefs(self):
        with pytest.raises(InvalidSpecification, match="repeats"):
            GroupTerm('herd', coefs=('1', 'Intercept'))


class TestModelSpec:

    def test_sequences_become_tuples(self):
        spec = ModelSpec('y', population=['x'], groups=[GroupTerm('g')],
                         modifiers=[trials('n')])
        assert spec.population == ('x',)
        assert isinstance(spec.groups, tuple)
        assert spec.modifier('trials').column == 'n'
        assert spec.modifier('cens') is None

    def test_single_values_wrapped(self):
        spec = ModelSpec('y', population='x', groups=GroupTerm('g'))
        assert spec.population == ('x',)
        assert spec.groups == (GroupTerm('g'),)

    def test_unknown_modifier(self):
        with pytest.raises(InvalidSpecification, match="Unknown response modifier") as exc:
            ModelSpec('y', modifiers=[Modifier('weights', 'w')])
        assert exc.value.field == 'modifiers'
        assert exc.value.value == 'weights'

    def test_duplicate_modifier(self):
        with pytest.raises(InvalidSpecification, match="more than once"):
            ModelSpec('y', modifiers=[trials('n'), trials('m')])

    def test_group_factor_in_two_terms(self):
        with pytest.raises(InvalidSpecification, match="more than one term"):
            ModelSpec('y', groups=[GroupTerm('g'), GroupTerm('g', coefs=('x',))])

    def test_bad_threshold(self):
        with pytest.raises(InvalidSpecification, match="threshold"):
            ModelSpec('y', threshold='sratio')

    def test_cs_must_be_population_term(self):
        with pytest.raises(InvalidSpecification, match="not population terms"):
            ModelSpec('y', population=['x'], cs=['z'])

    def test_columns_in_first_use_order(self):
        spec = ModelSpec(
            'incidence', population=['period'], modifiers=[trials('size')],
            groups=[GroupTerm('herd', coefs=('1', 'period'))],
        )
        assert spec.columns() == ['incidence', 'size', 'period', 'herd']


# ═══════════════════════════════════════════════════════════════════════
# BrmDesign.validate
# ═══════════════════════════════════════════════════════════════════════


class TestValidateColumns:

    def test_missing_column(self, gaussian_data):
        with pytest.raises(InvalidSpecification, match=r"\['z'\] not found") as exc:
            _validate(ModelSpec('y', population=['z']), gaussian_data)
        assert exc.value.field == 'data'

    def test_missing_group_column(self, gaussian_data):
        with pytest.raises(InvalidSpecification, match="not found"):
            _validate(ModelSpec('y', groups=[GroupTerm('school')]), gaussian_data)

    def test_non_numeric_response(self, gaussian_data):
        with pytest.raises(InvalidSpecification, match="must be numeric"):
            _validate(ModelSpec('g'), gaussian_data)

    def test_non_finite_response(self, gaussian_data):
        data = dict(gaussian_data)
        data['y'] = np.where(np.arange(30) == 0, np.nan, data['y'])
        with pytest.raises(InvalidSpecification, match="non-finite"):
            _validate(ModelSpec('y'), data)


class TestPopulationEffects:

    def test_intercept_and_numeric(self, gaussian_data):
        design = _validate(ModelSpec('y', population=['x']), gaussian_data)
        assert design.coef_names == ('Intercept', 'x')
        np.testing.assert_array_equal(design.X[:, 0], 1.0)
        np.testing.assert_allclose(design.X[:, 1], gaussian_data['x'])
        assert design.has_intercept
        assert design.p == 2

    def test_no_intercept(self, gaussian_data):
        design = _validate(ModelSpec('y', population=['x'], intercept=False), gaussian_data)
        assert design.coef_names == ('x',)
        assert not design.has_intercept

    def test_categorical_dummy_coding(self, gaussian_data):
        design = _validate(ModelSpec('y', population=['treat']), gaussian_data)
        assert design.coef_names == ('Intercept', 'treatb', 'treatc')
        np.testing.assert_array_equal(
            design.X[:3, 1:], [[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]
        )

    def test_single_level_categorical(self, gaussian_data):
        data = dict(gaussian_data, treat=np.repeat('a', 30))
        with pytest.raises(InvalidSpecification, match="single level"):
            _validate(ModelSpec('y', population=['treat']), data)

    def test_numeric_period_gives_one_coefficient(self, cbpp):
        spec = ModelSpec('incidence', modifiers=[trials('size')],
                         population=['period'], groups=[GroupTerm('herd')])
        design = _validate(spec, cbpp, 'binomial')
        assert [c for c in design.coef_names if c.startswith('period')] == ['period']


class TestGroupBlocks:

    def test_intercept_block(self, gaussian_data):
        design = _validate(ModelSpec('y', groups=[GroupTerm('g')]), gaussian_data)
        block = design.block('g')
        assert block.n_levels == 6
        assert block.n_coefs == 1
        assert block.Z.shape == (30, 1)
        assert not block.correlated
        np.testing.assert_array_equal(block.levels[block.index], gaussian_data['g'])

    def test_slope_block_correlated(self, gaussian_data):
        design = _validate(
            ModelSpec('y', groups=[GroupTerm('g', coefs=('1', 'x'))]), gaussian_data
        )
        block = design.block('g')
        assert block.coefs == ('Intercept', 'x')
        assert block.correlated
        np.testing.assert_allclose(block.Z[:, 1], gaussian_data['x'])

    def test_uncorrelated_slope_block(self, gaussian_data):
        design = _validate(
            ModelSpec('y', groups=[GroupTerm('g', coefs=('1', 'x'), correlated=False)]),
            gaussian_data,
        )
        assert not design.block('g').correlated

    def test_unresolvable_coefficient(self, gaussian_data):
        with pytest.raises(InvalidSpecification, match="cannot be resolved") as exc:
            _validate(ModelSpec('y', groups=[GroupTerm('g', coefs=('treat',))]),
                      gaussian_data)
        assert exc.value.field == 'groups'

    def test_single_level_group(self, gaussian_data):
        data = dict(gaussian_data, g=np.repeat('only', 30))
        with pytest.raises(InvalidSpecification, match="need at least 2"):
            _validate(ModelSpec('y', groups=[GroupTerm('g')]), data)

    def test_unknown_block(self, gaussian_data):
        design = _validate(ModelSpec('y', groups=[GroupTerm('g')]), gaussian_data)
        with pytest.raises(KeyError):
            design.block('herd')


class TestModifiers:

    def test_trials(self, cbpp):
        spec = ModelSpec('incidence', modifiers=[trials('size')])
        design = _validate(spec, cbpp, 'binomial')
        np.testing.assert_array_equal(design.modifier_data['trials'], cbpp['size'])

    def test_modifier_not_supported_by_family(self, cbpp):
        spec = ModelSpec('incidence', modifiers=[trials('size')])
        with pytest.raises(InvalidSpecification, match="not supported by family 'poisson'"):
            _validate(spec, cbpp, 'poisson')

    def test_binomial_needs_trials(self, cbpp):
        with pytest.raises(InvalidSpecification, match="requires a trials"):
            _validate(ModelSpec('incidence'), cbpp, 'binomial')

    def test_response_above_trials(self, cbpp):
        data = dict(cbpp, incidence=np.asarray(cbpp['size']) + 1)
        with pytest.raises(InvalidSpecification, match="between 0 and the number of trials"):
            _validate(ModelSpec('incidence', modifiers=[trials('size')]), data, 'binomial')

    def test_se_fixed_sigma(self, gaussian_data):
        data = dict(gaussian_data, sei=np.full(30, 0.2))
        design = _validate(ModelSpec('y', modifiers=[se('sei')]), data)
        np.testing.assert_allclose(design.modifier_data['se'], 0.2)
        assert not design.se_sigma

    def test_se_must_be_positive(self, gaussian_data):
        data = dict(gaussian_data, sei=np.zeros(30))
        with pytest.raises(InvalidSpecification, match="must be positive"):
            _validate(ModelSpec('y', modifiers=[se('sei', sigma=True)]), data)

    def test_cens_codes(self, gaussian_data):
        codes = np.array((['left', 'none', 'right'] * 10))
        data = dict(gaussian_data, censored=codes)
        design = _validate(ModelSpec('y', modifiers=[cens('censored')]), data)
        np.testing.assert_array_equal(design.modifier_data['cens'][:3], [-1, 0, 1])

    def test_cens_numeric_codes(self, gaussian_data):
        data = dict(gaussian_data, censored=np.tile([0.0, 1.0, -1.0], 10))
        design = _validate(ModelSpec('y', modifiers=[cens('censored')]), data)
        np.testing.assert_array_equal(design.modifier_data['cens'][:3], [0, 1, -1])

    def test_cens_unknown_code(self, gaussian_data):
        data = dict(gaussian_data, censored=np.repeat('interval', 30))
        with pytest.raises(InvalidSpecification, match="unsupported codes"):
            _validate(ModelSpec('y', modifiers=[cens('censored')]), data)

    def test_trunc_bounds(self, gaussian_data):
        lb = float(np.min(gaussian_data['y'])) - 1.0
        design = _validate(ModelSpec('y', modifiers=[trunc(lb=lb)]), gaussian_data)
        assert design.trunc == (lb, None)

    def test_trunc_needs_a_bound(self, gaussian_data):
        with pytest.raises(InvalidSpecification, match="at least one of lb, ub"):
            _validate(ModelSpec('y', modifiers=[trunc()]), gaussian_data)

    def test_response_outside_trunc(self, gaussian_data):
        with pytest.raises(InvalidSpecification, match="outside the truncation bounds"):
            _validate(ModelSpec('y', modifiers=[trunc(ub=0.0)]), gaussian_data)

    def test_cens_with_trunc_rejected(self, gaussian_data):
        lb = float(np.min(gaussian_data['y'])) - 1.0
        data = dict(gaussian_data, censored=np.repeat('none', 30))
        spec = ModelSpec('y', modifiers=[cens('censored'), trunc(lb=lb)])
        with pytest.raises(InvalidSpecification, match="cannot be combined"):
            _validate(spec, data)


class TestOrdinal:

    def test_categories_from_response(self, ordinal_data):
        design = _validate(ModelSpec('rating', population=['x']), ordinal_data, 'cumulative')
        assert design.n_cat == 4
        assert design.coef_names == ('x',)

    def test_categories_from_cat(self, ordinal_data):
        design = _validate(
            ModelSpec('rating', population=['x'], modifiers=[cat(5)]),
            ordinal_data, 'cumulative',
        )
        assert design.n_cat == 5

    def test_response_above_cat(self, ordinal_data):
        with pytest.raises(InvalidSpecification, match="coded 1..3"):
            _validate(ModelSpec('rating', modifiers=[cat(3)]), ordinal_data, 'cumulative')

    def test_cs_split_for_acat(self, ordinal_data):
        design = _validate(
            ModelSpec('rating', population=['x'], cs=['x']), ordinal_data, 'acat'
        )
        assert design.coef_names == ()
        assert design.cs_names == ('x',)
        assert design.X_cs.shape == (40, 1)

    def test_cs_rejected_for_cumulative(self, ordinal_data):
        with pytest.raises(InvalidSpecification, match="use family 'acat'"):
            _validate(ModelSpec('rating', population=['x'], cs=['x']),
                      ordinal_data, 'cumulative')


class TestFingerprint:

    def test_design_carries_data_fingerprint(self, gaussian_data):
        ds = DataSource.from_dict(gaussian_data)
        design = BrmDesign.validate(ModelSpec('y'), ds, resolve_family('gaussian'))
        assert design.fingerprint == ds.fingerprint()
        assert design.n == 30
