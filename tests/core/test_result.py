"""
Tests for the Result[P] envelope.

Validates:
    - Generic type parameter works with arbitrary payload types
    - Frozen immutability
    - Default factories (warnings, provenance)
    - has_warning() method
    - Provenance metadata contains expected version keys
"""

from dataclasses import FrozenInstanceError, dataclass

import pytest

from pymultilevel.core.result import Result, _default_provenance


# ═══════════════════════════════════════════════════════════════════════
# Test payload types
# ═══════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class FakeParams:
    """Minimal payload for testing."""
    draws: int


@dataclass(frozen=True)
class MultiFieldParams:
    """Payload with multiple fields."""
    alpha: float
    beta: float
    name: str


# ═══════════════════════════════════════════════════════════════════════
# Construction and field access
# ═══════════════════════════════════════════════════════════════════════


class TestResultConstruction:
    """Result can be created with any payload type."""

    def test_basic_creation(self):
        params = FakeParams(draws=42)
        result = Result(
            params=params,
            info={"family": "gaussian"},
            timing={"total_seconds": 0.01},
            backend_name="pymc_nuts",
        )
        assert result.params.draws == 42
        assert result.info["family"] == "gaussian"
        assert result.timing["total_seconds"] == 0.01
        assert result.backend_name == "pymc_nuts"

    def test_multi_field_params(self):
        params = MultiFieldParams(alpha=0.5, beta=1.5, name="test")
        result = Result(
            params=params,
            info={},
            timing=None,
            backend_name="numpyro_nuts",
        )
        assert result.params.alpha == 0.5
        assert result.params.beta == 1.5
        assert result.params.name == "test"

    def test_timing_none(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
        )
        assert result.timing is None

    def test_timing_with_breakdown(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing={"total_seconds": 1.0, "compile": 0.6, "sampling": 0.4},
            backend_name="pymc_nuts",
        )
        assert result.timing["compile"] == 0.6
        assert result.timing["sampling"] == 0.4

    def test_info_dict_arbitrary_keys(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={"chains": 4, "total_draws": 4000, "family": "binomial"},
            timing=None,
            backend_name="pymc_nuts",
        )
        assert result.info["chains"] == 4
        assert result.info["total_draws"] == 4000


# ═══════════════════════════════════════════════════════════════════════
# Default factories
# ═══════════════════════════════════════════════════════════════════════


class TestDefaults:
    """Default values for warnings and provenance."""

    def test_warnings_default_empty(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
        )
        assert result.warnings == ()
        assert isinstance(result.warnings, tuple)

    def test_warnings_explicit(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
            warnings=("R-hat above 1.05 for 1 parameter(s): sigma", "3 divergent transitions"),
        )
        assert len(result.warnings) == 2
        assert "3 divergent transitions" in result.warnings

    def test_provenance_auto_generated(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
        )
        assert "pymultilevel_version" in result.provenance
        assert "numpy_version" in result.provenance

    def test_provenance_explicit_override(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
            provenance={"custom": "metadata"},
        )
        assert result.provenance == {"custom": "metadata"}
        assert "pymultilevel_version" not in result.provenance


# ═══════════════════════════════════════════════════════════════════════
# Immutability
# ═══════════════════════════════════════════════════════════════════════


class TestImmutability:
    """Result is frozen: attributes cannot be reassigned."""

    def test_cannot_set_params(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
        )
        with pytest.raises(FrozenInstanceError):
            result.params = FakeParams(draws=2000)

    def test_cannot_set_backend_name(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
        )
        with pytest.raises(FrozenInstanceError):
            result.backend_name = "numpyro_nuts"

    def test_cannot_set_warnings(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
        )
        with pytest.raises(FrozenInstanceError):
            result.warnings = ("new warning",)

    def test_cannot_set_timing(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing={"total_seconds": 0.5},
            backend_name="pymc_nuts",
        )
        with pytest.raises(FrozenInstanceError):
            result.timing = None


# ═══════════════════════════════════════════════════════════════════════
# has_warning()
# ═══════════════════════════════════════════════════════════════════════


class TestHasWarning:
    """has_warning() checks for substring in any warning."""

    def test_no_warnings_returns_false(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
        )
        assert result.has_warning("anything") is False

    def test_exact_match(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
            warnings=("R-hat above 1.05",),
        )
        assert result.has_warning("R-hat above 1.05") is True

    def test_substring_match(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
            warnings=("R-hat above 1.05 for 2 parameter(s)",),
        )
        assert result.has_warning("R-hat") is True
        assert result.has_warning("2 parameter(s)") is True

    def test_no_match(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
            warnings=("R-hat above 1.05",),
        )
        assert result.has_warning("divergence") is False

    def test_multiple_warnings(self):
        result = Result(
            params=FakeParams(draws=1000),
            info={},
            timing=None,
            backend_name="pymc_nuts",
            warnings=("There were 12 divergent transitions", "exceeded the maximum tree depth"),
        )
        assert result.has_warning("divergent") is True
        assert result.has_warning("tree depth") is True
        assert result.has_warning("R-hat") is False


# ═══════════════════════════════════════════════════════════════════════
# _default_provenance()
# ═══════════════════════════════════════════════════════════════════════


class TestDefaultProvenance:
    """_default_provenance() generates version metadata."""

    def test_contains_pymultilevel_version(self):
        prov = _default_provenance()
        assert "pymultilevel_version" in prov
        assert isinstance(prov["pymultilevel_version"], str)

    def test_contains_numpy_version(self):
        prov = _default_provenance()
        assert "numpy_version" in prov
        assert isinstance(prov["numpy_version"], str)

    def test_returns_dict(self):
        prov = _default_provenance()
        assert isinstance(prov, dict)

    def test_independent_copies(self):
        """Each call returns a new dict."""
        prov1 = _default_provenance()
        prov2 = _default_provenance()
        assert prov1 is not prov2
        assert prov1 == prov2

    def test_contains_python_version(self):
        prov = _default_provenance()
        assert prov["python_version"].count(".") == 2
