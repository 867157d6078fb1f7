"""
Tests for multivariate normal orthant probabilities.
"""

import threading

import pytest
import numpy as np
from scipy import special

from trialsim import IntegrationParams, pmvnorm, ConfigurationError, DegenerateStatisticError
from trialsim.analysis.mvn import MAXPTS_PER_DIMENSION


def equicorrelated(k, rho):
    """Equicorrelation matrix."""
    return np.full((k, k), rho) + (1 - rho) * np.eye(k)


class TestPmvnorm:
    """Tests for pmvnorm."""

    def test_univariate_exact(self):
        """Test k = 1 is the normal cdf."""
        result = pmvnorm([1.3], [[1.0]])
        assert result.value == pytest.approx(special.ndtr(1.3))
        assert result.error == 0.0
        assert result.converged

    def test_independent(self):
        """Test independent components give the product of normal cdfs."""
        upper = np.array([0.5, 1.0, -0.2])
        result = pmvnorm(upper, np.eye(3))
        assert result.value == pytest.approx(np.prod(special.ndtr(upper)), abs=1e-8)

    def test_bivariate_orthant(self):
        """Test the bivariate orthant probability 1/4 + asin(rho) / (2 pi)."""
        result = pmvnorm([0.0, 0.0], equicorrelated(2, 0.5))
        assert result.value == pytest.approx(1 / 3, abs=1e-4)
        assert result.status == "converged"

    def test_trivariate_orthant(self):
        """Test the trivariate orthant probability 1/8 + sum(asin(rho)) / (4 pi)."""
        result = pmvnorm([0.0, 0.0, 0.0], equicorrelated(3, 0.5))
        assert result.value == pytest.approx(0.25, abs=1e-4)

    def test_infinite_limits(self):
        """Test infinite limits."""
        assert pmvnorm([-np.inf, 1.0], equicorrelated(2, 0.3)).value == 0.0
        assert pmvnorm([np.inf, np.inf], equicorrelated(2, 0.3)).value == 1.0
        result = pmvnorm([np.inf, 0.7], equicorrelated(2, 0.3))
        assert result.value == pytest.approx(special.ndtr(0.7))

    def test_perfect_correlation(self):
        """Test perfectly correlated components collapse to the smaller limit."""
        result = pmvnorm([1.0, 0.4], np.ones((2, 2)))
        assert result.value == pytest.approx(special.ndtr(0.4))

    def test_deterministic(self):
        """Test the same seed gives the same estimate."""
        corr = equicorrelated(4, 0.6)
        r1 = pmvnorm([1.0, 1.5, 2.0, 0.5], corr, IntegrationParams(seed=3))
        r2 = pmvnorm([1.0, 1.5, 2.0, 0.5], corr, IntegrationParams(seed=3))
        assert r1 == r2

    def test_singular_semidefinite(self):
        """Test a component that is a combination of two others."""
        r = np.sqrt(0.5)
        # Z3 = (Z1 + Z2) / sqrt(2), so Z1 <= 0 and Z2 <= 0 imply Z3 <= 0
        corr = np.array([
            [1.0, 0.0, r],
            [0.0, 1.0, r],
            [r, r, 1.0],
        ])
        result = pmvnorm([0.0, 0.0, 0.0], corr)
        assert result.value == pytest.approx(0.25, abs=1e-6)
        assert result.converged

    def test_singular_binding_constraint(self):
        """Test a dependent component whose limit cuts the region."""
        r = np.sqrt(0.5)
        corr = np.array([
            [1.0, 0.0, r],
            [0.0, 1.0, r],
            [r, r, 1.0],
        ])
        # P(Z1 <= 5, Z2 <= 5, Z3 <= 0) is P(Z3 <= 0) up to a negligible tail
        result = pmvnorm([5.0, 5.0, 0.0], corr)
        assert result.value == pytest.approx(0.5, abs=1e-4)

    def test_ordering_invariant(self):
        """Test permuting the variables leaves the probability unchanged."""
        corr = np.array([
            [1.0, 0.6, 0.3],
            [0.6, 1.0, 0.5],
            [0.3, 0.5, 1.0],
        ])
        upper = np.array([1.5, 0.2, 0.9])
        perm = [2, 0, 1]
        r1 = pmvnorm(upper, corr)
        r2 = pmvnorm(upper[perm], corr[np.ix_(perm, perm)])
        assert r1.value == pytest.approx(r2.value, abs=1e-4)

    def test_not_positive_semidefinite(self):
        """Test an invalid correlation matrix is a degenerate statistic."""
        corr = np.array([
            [1.0, 0.9, -0.9],
            [0.9, 1.0, 0.9],
            [-0.9, 0.9, 1.0],
        ])
        with pytest.raises(DegenerateStatisticError, match="positive semi-definite"):
            pmvnorm([1.0, 1.0, 1.0], corr)

    def test_shape_mismatch(self):
        """Test the correlation matrix must match the limits."""
        with pytest.raises(ConfigurationError, match="corr"):
            pmvnorm([1.0, 1.0], np.eye(3))


class TestIntegrationLimits:
    """Tests for the integration budget, timeout and cancellation."""

    @pytest.fixture
    def hard_problem(self):
        """Correlated problem with an unreachable tolerance."""
        return np.array([0.3, 0.8, 1.2, 0.1]), equicorrelated(4, 0.4)

    def test_maxpts(self, hard_problem):
        """Test running out of evaluations is reported and warned."""
        upper, corr = hard_problem
        with pytest.warns(UserWarning, match="above tolerance"):
            result = pmvnorm(upper, corr, IntegrationParams(abseps=1e-14, maxpts=2000))
        assert result.status == "maxpts"
        assert not result.converged
        assert result.n_evaluations <= 2000
        assert 0 <= result.value <= 1

    def test_timeout(self, hard_problem):
        """Test a timeout surfaces in the result."""
        upper, corr = hard_problem
        result = pmvnorm(upper, corr, IntegrationParams(abseps=1e-14, timeout=1e-9))
        assert result.status == "timeout"
        assert result.error > 1e-14

    def test_cancelled(self, hard_problem):
        """Test a set cancel event stops the integration."""
        upper, corr = hard_problem
        cancel = threading.Event()
        cancel.set()
        result = pmvnorm(upper, corr, IntegrationParams(abseps=1e-14), cancel_event=cancel)
        assert result.status == "cancelled"
        assert result.n_evaluations > 0

    def test_default_budget_scales_with_dimension(self, hard_problem):
        """Test the default evaluation budget grows with the dimension."""
        upper, corr = hard_problem
        assert IntegrationParams().maxpts is None
        result = pmvnorm(upper, corr, IntegrationParams(abseps=1e-14, timeout=1e-9))
        assert result.n_evaluations <= MAXPTS_PER_DIMENSION * 4

    def test_invalid_params(self):
        """Test integration parameters are validated."""
        with pytest.raises(ConfigurationError):
            IntegrationParams(abseps=0, releps=0)
        with pytest.raises(ConfigurationError, match="maxpts"):
            IntegrationParams(maxpts=0)
        with pytest.raises(ConfigurationError, match="n_shifts"):
            IntegrationParams(n_shifts=1)
        with pytest.raises(ConfigurationError, match="timeout"):
            IntegrationParams(timeout=0)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
