"""
Multivariate normal probabilities for the MaxCombo test.

P(Z_1 <= b_1, ..., Z_k <= b_k) for a standard multivariate normal with
correlation matrix R, computed with Genz's separation-of-variables transform
and randomized rank-1 lattice rules, after reordering the variables so the
most constraining ones come first. The lattice grows until the error
estimate meets the tolerance, the evaluation budget is spent, a timeout
passes or the caller cancels; the result always says which of these ended
the integration.
"""

import time
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy import special

from ..exceptions import ConfigurationError, DegenerateStatisticError

# Error estimate is this many standard errors of the shift-averaged estimate
ERROR_MULTIPLIER = 3.5

# Correlations this close to 1 are treated as identical variables
PERFECT_CORRELATION = 1 - 1e-12

# Conditional variances at or below this are treated as zero
SINGULAR_VARIANCE = 1e-10

# Default evaluation budget per dimension
MAXPTS_PER_DIMENSION = 1_000_000

_TINY = 1e-300


@dataclass(frozen=True)
class IntegrationParams:
    """
    Accuracy and budget for the multivariate normal integration.

    Attributes:
        abseps: Absolute error tolerance
        releps: Relative error tolerance
        maxpts: Maximum number of integrand evaluations (None for
            MAXPTS_PER_DIMENSION times the dimension)
        n_shifts: Number of random lattice shifts used for the error estimate
        timeout: Wall-clock limit in seconds (None for no limit)
        seed: Seed for the lattice shifts
    """
    abseps: float = 1e-5
    releps: float = 0.0
    maxpts: Optional[int] = None
    n_shifts: int = 12
    timeout: Optional[float] = None
    seed: int = 0

    def __post_init__(self):
        if self.abseps < 0 or self.releps < 0:
            raise ConfigurationError("abseps and releps must be non-negative")
        if self.abseps == 0 and self.releps == 0:
            raise ConfigurationError("one of abseps and releps must be positive")
        if self.maxpts is not None and self.maxpts < 1:
            raise ConfigurationError(f"maxpts: must be positive, got {self.maxpts}")
        if self.n_shifts < 2:
            raise ConfigurationError(f"n_shifts: at least 2 shifts are needed, got {self.n_shifts}")
        if self.timeout is not None and not self.timeout > 0:
            raise ConfigurationError(f"timeout: must be positive, got {self.timeout}")


@dataclass(frozen=True)
class MVNResult:
    """
    Outcome of a multivariate normal integration.

    ``status`` is "converged", "maxpts", "timeout" or "cancelled"; anything
    but "converged" means ``error`` is above the requested tolerance.
    """
    value: float
    error: float
    n_evaluations: int
    status: str

    @property
    def converged(self) -> bool:
        return self.status == "converged"


def _primes(n: int) -> NDArray[np.int64]:
    if n == 0:
        return np.zeros(0, dtype=np.int64)
    limit = max(15, int(n * (np.log(n) + np.log(np.log(n + 1)) + 2)))
    sieve = np.ones(limit + 1, dtype=bool)
    sieve[:2] = False
    for i in range(2, int(limit ** 0.5) + 1):
        if sieve[i]:
            sieve[i * i::i] = False
    return np.flatnonzero(sieve)[:n]


def _reduce(upper: NDArray[np.float64], corr: NDArray[np.float64]):
    """Drop unconstrained coordinates and merge perfectly correlated ones."""
    keep = []
    upper = upper.copy()
    for i in range(len(upper)):
        if upper[i] == np.inf:
            continue
        for j in keep:
            if corr[i, j] >= PERFECT_CORRELATION:
                upper[j] = min(upper[j], upper[i])
                break
        else:
            keep.append(i)
    keep = np.array(keep, dtype=int)
    return upper[keep], corr[np.ix_(keep, keep)]


def _prioritised_cholesky(upper: NDArray[np.float64], corr: NDArray[np.float64]):
    """
    Cholesky factor of ``corr`` with Genz-Bretz variable prioritisation.

    At each step the remaining variable with the smallest expected conditional
    probability is factorised next. A variable whose conditional variance is
    below SINGULAR_VARIANCE is an exact linear function of the ones before it;
    it gets a zero pivot and, since conditional variances only shrink, ends up
    after every regular variable.

    Returns:
        The reordered limits and the lower triangular factor
    """
    k = len(upper)
    upper = upper.copy()
    corr = corr.copy()
    chol = np.zeros((k, k))
    # expected value of each factorised variable given its truncation
    y = np.zeros(k)
    for i in range(k):
        cond_var = np.diag(corr)[i:] - np.sum(chol[i:, :i] ** 2, axis=1)
        regular = cond_var > SINGULAR_VARIANCE
        if not regular.any():
            break
        sd = np.sqrt(np.where(regular, cond_var, 1.0))
        prob = special.ndtr((upper[i:] - chol[i:, :i] @ y[:i]) / sd)
        j = i + int(np.argmin(np.where(regular, prob, np.inf)))
        if j != i:
            upper[[i, j]] = upper[[j, i]]
            corr[[i, j], :] = corr[[j, i], :]
            corr[:, [i, j]] = corr[:, [j, i]]
            chol[[i, j], :] = chol[[j, i], :]
            cond_var[[0, j - i]] = cond_var[[j - i, 0]]

        chol[i, i] = np.sqrt(cond_var[0])
        chol[i + 1:, i] = (corr[i + 1:, i] - chol[i + 1:, :i] @ chol[i, :i]) / chol[i, i]
        a = (upper[i] - chol[i, :i] @ y[:i]) / chol[i, i]
        y[i] = -np.exp(-0.5 * a * a) / np.sqrt(2 * np.pi) / max(special.ndtr(a), _TINY)
    return upper, chol


def _integrand(w: NDArray[np.float64], upper: NDArray[np.float64], chol: NDArray[np.float64]) -> NDArray[np.float64]:
    """Genz transform evaluated at points ``w`` in the unit cube of dimension k - 1."""
    k = len(upper)
    n = w.shape[0]
    f = np.ones(n)
    y = np.zeros((n, k))
    for i in range(k):
        shifted = upper[i] - y[:, :i] @ chol[i, :i]
        if chol[i, i] > 0:
            e = special.ndtr(shifted / chol[i, i])
            if i < k - 1:
                y[:, i] = special.ndtri(np.clip(w[:, i] * e, _TINY, 1 - 1e-16))
        else:
            # zero pivot: the variable is fixed by the earlier ones
            e = (shifted >= 0).astype(float)
        f *= e
    return f


def pmvnorm(
    upper,
    corr,
    params: Optional[IntegrationParams] = None,
    cancel_event=None,
) -> MVNResult:
    """
    Lower orthant probability of a standard multivariate normal.

    A singular but positive semi-definite matrix is fine: a variable that is a
    linear combination of others enters as an indicator constraint.

    Args:
        upper: Upper integration limits b (may include +/- inf)
        corr: Correlation matrix
        params: Accuracy and budget settings
        cancel_event: Object with an ``is_set()`` method (e.g. a
            ``threading.Event``); when set, integration stops and the
            current estimate is returned with status "cancelled"

    Returns:
        MVNResult with the probability and its error estimate

    Raises:
        DegenerateStatisticError: if the correlation matrix is not positive
            semi-definite
    """
    if params is None:
        params = IntegrationParams()
    upper = np.atleast_1d(np.asarray(upper, dtype=float))
    corr = np.atleast_2d(np.asarray(corr, dtype=float))
    k = len(upper)
    if corr.shape != (k, k):
        raise ConfigurationError(f"corr: expected a {k}x{k} matrix, got shape {corr.shape}")
    if np.any(np.isnan(upper)) or np.any(np.isnan(corr)):
        raise DegenerateStatisticError("pmvnorm: limits or correlations are NaN")

    if np.any(upper == -np.inf):
        return MVNResult(0.0, 0.0, 0, "converged")

    upper, corr = _reduce(upper, corr)
    k = len(upper)
    if k == 0:
        return MVNResult(1.0, 0.0, 0, "converged")
    if k == 1:
        return MVNResult(float(special.ndtr(upper[0])), 0.0, 1, "converged")

    if np.linalg.eigvalsh(corr).min() < -1e-8:
        raise DegenerateStatisticError("pmvnorm: correlation matrix is not positive semi-definite")
    upper, chol = _prioritised_cholesky(upper, corr)
    maxpts = params.maxpts if params.maxpts is not None else MAXPTS_PER_DIMENSION * k

    rng = np.random.default_rng(params.seed)
    generator = np.sqrt(_primes(k - 1)) % 1.0
    start = time.monotonic()

    estimate, variance = 0.0, np.inf
    n_evaluations = 0
    n_points = 64
    status = "maxpts"
    while True:
        per_point = 2 * params.n_shifts
        n_points = min(n_points, (maxpts - n_evaluations) // per_point)
        if n_points < 1:
            status = "maxpts"
            break

        lattice = np.outer(np.arange(1, n_points + 1), generator)
        shift_means = np.empty(params.n_shifts)
        for j in range(params.n_shifts):
            x = (lattice + rng.random(k - 1)) % 1.0
            # Baker's transform with antithetic pairs
            w = np.abs(2 * x - 1)
            shift_means[j] = 0.5 * (_integrand(w, upper, chol) + _integrand(1 - w, upper, chol)).mean()
        n_evaluations += n_points * per_point

        batch_estimate = shift_means.mean()
        batch_variance = shift_means.var(ddof=1) / params.n_shifts
        if batch_variance == 0 or variance == np.inf:
            estimate, variance = batch_estimate, batch_variance
        elif variance > 0:
            w_new = variance / (variance + batch_variance)
            estimate = estimate + w_new * (batch_estimate - estimate)
            variance = variance * batch_variance / (variance + batch_variance)

        error = ERROR_MULTIPLIER * np.sqrt(variance)
        if error <= max(params.abseps, params.releps * abs(estimate)):
            status = "converged"
            break
        if cancel_event is not None and cancel_event.is_set():
            status = "cancelled"
            break
        if params.timeout is not None and time.monotonic() - start > params.timeout:
            status = "timeout"
            break
        n_points *= 2

    error = float(ERROR_MULTIPLIER * np.sqrt(variance)) if np.isfinite(variance) else np.inf
    if status == "maxpts":
        warnings.warn(
            f"pmvnorm: error estimate {error:.2e} above tolerance after {n_evaluations} evaluations"
        )
    return MVNResult(float(np.clip(estimate, 0.0, 1.0)), error, n_evaluations, status)
