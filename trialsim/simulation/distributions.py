"""
Piecewise exponential random variates.

Failure, dropout and enrollment times are all drawn by the same device:
unit exponential draws are treated as values of the cumulative hazard and
mapped back to time by inverting the piecewise linear cumulative hazard.
Failure and dropout times use one independent draw per subject; enrollment
times use the running sum of draws, i.e. the arrival times of a
nonhomogeneous Poisson process.
"""

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from ..exceptions import ConfigurationError
from .rates import RateTable, RateTableLike, as_rate_table


def _check_periods(durations, rates) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    durations = np.atleast_1d(np.asarray(durations, dtype=float))
    rates = np.atleast_1d(np.asarray(rates, dtype=float))
    if len(durations) != len(rates):
        raise ConfigurationError("durations and rates must have the same length")
    if len(durations) == 0:
        raise ConfigurationError("at least one period is required")
    if np.any(np.isnan(durations)) or np.any(durations < 0):
        raise ConfigurationError("durations must be non-negative")
    if not np.all(np.isfinite(durations[:-1])):
        raise ConfigurationError("only the final period may have infinite duration")
    if not np.all(np.isfinite(rates)) or np.any(rates < 0):
        raise ConfigurationError("rates must be finite and non-negative")
    return durations, rates


def inverse_cumulative_hazard(
    cum_hazard: NDArray[np.float64],
    durations: NDArray[np.float64],
    rates: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Map cumulative hazard values to times for a piecewise constant hazard.

    Within period i starting at time t0 with cumulative hazard H0 and rate r,
    H maps to t0 + (H - H0) / r. Zero-rate periods accumulate no hazard, so
    no value lands inside them. The final period is extended indefinitely;
    values beyond the hazard accumulated before a zero final rate are
    returned as infinity.

    Args:
        cum_hazard: Cumulative hazard values (non-negative, may be infinite)
        durations: Period durations
        rates: Period rates

    Returns:
        Array of times, same shape as ``cum_hazard``
    """
    durations, rates = _check_periods(durations, rates)
    h = np.asarray(cum_hazard, dtype=float)

    # The final period's duration is ignored; it is extended on demand
    starts = np.concatenate([[0.0], np.cumsum(durations[:-1])])
    h_starts = np.concatenate([[0.0], np.cumsum(durations[:-1] * rates[:-1])])

    # Period index: number of period ends (excluding the final one) at or below h.
    # A period reached this way always has a positive rate unless it is the last.
    idx = np.searchsorted(h_starts[1:], h, side="right")

    rate = rates[idx]
    with np.errstate(divide="ignore", invalid="ignore"):
        times = starts[idx] + (h - h_starts[idx]) / rate
    times = np.where(rate > 0, times, np.inf)
    return np.where(np.isinf(h), np.inf, times)


def rpwexp(
    n: int,
    rates: RateTableLike,
    rng: np.random.Generator | None = None,
) -> NDArray[np.float64]:
    """
    Generate piecewise exponential failure (or dropout) times.

    Args:
        n: Number of observations to generate
        rates: Single-group rate table (columns duration, rate)
        rng: Random number generator

    Returns:
        Array of ``n`` times; infinite where the hazard is exhausted

    Example
    -------
    >>> fail_rate = pd.DataFrame({"duration": [3, 100], "rate": [0.077, 0.039]})
    >>> times = rpwexp(100, fail_rate, np.random.default_rng(1))
    """
    durations, rates = _single_group(rates, "fail_rate")
    return rpwexp_periods(n, durations, rates, rng)


def rpwexp_periods(
    n: int,
    durations,
    rates,
    rng: np.random.Generator | None = None,
) -> NDArray[np.float64]:
    """:func:`rpwexp` for bare duration/rate arrays."""
    if n < 0:
        raise ConfigurationError(f"n: must be non-negative, got {n}")
    if rng is None:
        rng = np.random.default_rng()
    durations, rates = _check_periods(durations, rates)
    if n == 0:
        return np.zeros(0)
    return inverse_cumulative_hazard(rng.exponential(size=n), durations, rates)


def rpwexp_enroll(
    n: int,
    enroll_rate: RateTableLike,
    rng: np.random.Generator | None = None,
) -> NDArray[np.float64]:
    """
    Generate piecewise constant rate enrollment (arrival) times.

    Arrivals follow a Poisson process whose rate is piecewise constant in
    calendar time. The final rate is extended until ``n`` subjects arrive;
    if it is zero, arrivals that never happen are infinite.

    Args:
        n: Number of subjects to enroll
        enroll_rate: Enrollment rate table (columns duration, rate)
        rng: Random number generator

    Returns:
        Non-decreasing array of ``n`` enrollment times
    """
    if n < 0:
        raise ConfigurationError(f"n: must be non-negative, got {n}")
    if rng is None:
        rng = np.random.default_rng()
    durations, rates = _single_group(enroll_rate, "enroll_rate")
    if n == 0:
        return np.zeros(0)
    return inverse_cumulative_hazard(np.cumsum(rng.exponential(size=n)), durations, rates)


def _single_group(rates: RateTableLike, name: str) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    table = as_rate_table(rates, name)
    if len(table.groups) != 1:
        raise ConfigurationError(
            f"{name}: expected a single group of periods, got {len(table.groups)}"
        )
    stratum, treatment = table.groups[0]
    return table.select(stratum, treatment)


@dataclass(frozen=True)
class PiecewiseExponential:
    """
    Piecewise exponential distribution for survival times.

    The hazard is constant within consecutive intervals; the last interval
    extends to infinity whatever its stated duration.

    Attributes:
        durations: Duration of each interval
        hazard_rates: Hazard rate in each interval
    """
    durations: tuple[float, ...]
    hazard_rates: tuple[float, ...]
    _starts: NDArray[np.float64] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        durations, rates = _check_periods(self.durations, self.hazard_rates)
        object.__setattr__(self, "durations", tuple(durations))
        object.__setattr__(self, "hazard_rates", tuple(rates))
        object.__setattr__(self, "_starts", np.concatenate([[0.0], np.cumsum(durations[:-1])]))

    @classmethod
    def from_rate_table(cls, table: RateTable, stratum=None, treatment=None) -> "PiecewiseExponential":
        durations, rates = table.select(stratum, treatment)
        return cls(tuple(durations), tuple(rates))

    @classmethod
    def with_delayed_effect(
        cls,
        control_median: float,
        treatment_hr: float,
        delay_duration: float,
    ) -> tuple["PiecewiseExponential", "PiecewiseExponential"]:
        """
        Create control and treatment distributions with delayed treatment effect.

        Args:
            control_median: Median survival for control arm
            treatment_hr: Hazard ratio for treatment effect (after delay)
            delay_duration: Duration of delay before treatment effect begins

        Returns:
            Tuple of (control_distribution, treatment_distribution)
        """
        control_hazard = np.log(2) / control_median
        control = cls(durations=(np.inf,), hazard_rates=(control_hazard,))
        treatment = cls(
            durations=(delay_duration, np.inf),
            hazard_rates=(control_hazard, control_hazard * treatment_hr),
        )
        return control, treatment

    def sample(self, n: int, rng: np.random.Generator | None = None) -> NDArray[np.float64]:
        """Draw ``n`` survival times."""
        return rpwexp_periods(n, self.durations, self.hazard_rates, rng)

    def cumulative_hazard(self, t: float | NDArray[np.float64]) -> float | NDArray[np.float64]:
        """Cumulative hazard H(t)."""
        t = np.asarray(t, dtype=float)
        scalar_input = t.ndim == 0
        t = np.atleast_1d(t)

        rates = np.asarray(self.hazard_rates)
        ends = np.concatenate([self._starts[1:], [np.inf]])
        exposure = np.clip(t[:, None], self._starts, ends) - self._starts
        # 0 * inf exposure in a zero-rate final period contributes nothing
        with np.errstate(invalid="ignore"):
            contrib = np.where(rates > 0, exposure * rates, 0.0)
        hazard = contrib.sum(axis=1)

        if scalar_input:
            return float(hazard[0])
        return hazard

    def survival_function(self, t: float | NDArray[np.float64]) -> float | NDArray[np.float64]:
        """
        Calculate survival probability at time t.

        Args:
            t: Time point(s) to evaluate

        Returns:
            Survival probability S(t) = exp(-H(t))
        """
        return np.exp(-self.cumulative_hazard(t))

    def hazard_function(self, t: float | NDArray[np.float64]) -> float | NDArray[np.float64]:
        """Hazard rate h(t); right-continuous at period boundaries."""
        t = np.asarray(t, dtype=float)
        scalar_input = t.ndim == 0
        t = np.atleast_1d(t)

        idx = np.searchsorted(self._starts, t, side="right") - 1
        hazard = np.asarray(self.hazard_rates)[np.clip(idx, 0, None)]
        hazard = np.where(t < 0, 0.0, hazard)

        if scalar_input:
            return float(hazard[0])
        return hazard
