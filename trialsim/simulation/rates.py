"""
Piecewise constant rate tables.

A rate table holds duration/rate pairs for one or more (stratum, treatment)
groups. Within a group the periods are contiguous and numbered from 1; the
final period is extended indefinitely by the variate generators.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ..exceptions import ConfigurationError

GroupKey = tuple[Optional[str], Optional[str]]


@dataclass(frozen=True)
class RatePeriod:
    """
    One period of a piecewise constant rate function.

    Attributes:
        duration: Length of the period (the last period of a group is extended)
        rate: Events (or arrivals) per unit time during the period
        stratum: Stratum the period applies to; None applies to every stratum
        treatment: Treatment the period applies to; None applies to every arm
        period: 1-based position of the period within its group
    """
    duration: float
    rate: float
    stratum: Optional[str] = None
    treatment: Optional[str] = None
    period: int = 1

    @property
    def key(self) -> GroupKey:
        return (self.stratum, self.treatment)


@dataclass(frozen=True)
class RateTable:
    """
    Immutable piecewise constant rate function, possibly grouped by
    stratum and treatment.

    Build one with :meth:`from_frame` or :func:`define_enroll_rate`; the
    constructor validates period numbering, durations and rates.
    """
    periods: tuple[RatePeriod, ...]

    def __post_init__(self):
        periods = tuple(self.periods)
        if len(periods) == 0:
            raise ConfigurationError("rate table must have at least one period")

        by_group: dict[GroupKey, list[RatePeriod]] = {}
        for p in periods:
            by_group.setdefault(p.key, []).append(p)

        ordered = []
        for key, group in by_group.items():
            group = sorted(group, key=lambda p: p.period)
            label = _group_label(key)
            numbers = [p.period for p in group]
            if numbers != list(range(1, len(group) + 1)):
                raise ConfigurationError(
                    f"period: periods for {label} must be contiguous and start at 1, got {numbers}"
                )
            for i, p in enumerate(group):
                if not np.isfinite(p.rate) or p.rate < 0:
                    raise ConfigurationError(f"rate: invalid rate {p.rate} for {label}")
                if np.isnan(p.duration) or p.duration < 0:
                    raise ConfigurationError(f"duration: invalid duration {p.duration} for {label}")
                if i < len(group) - 1 and not np.isfinite(p.duration):
                    raise ConfigurationError(
                        f"duration: only the final period of {label} may have infinite duration"
                    )
            ordered.extend(group)

        object.__setattr__(self, "periods", tuple(ordered))

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "RateTable":
        """
        Build a rate table from a DataFrame.

        Required columns are ``duration`` and ``rate``. Optional ``stratum`` and
        ``treatment`` columns key the groups; an optional ``period`` column gives
        the period number, otherwise rows are numbered in order within a group.
        """
        for col in ("duration", "rate"):
            if col not in frame.columns:
                raise ConfigurationError(f"{col}: missing required column in rate table")

        strata = frame["stratum"] if "stratum" in frame.columns else [None] * len(frame)
        treatments = frame["treatment"] if "treatment" in frame.columns else [None] * len(frame)

        counters: dict[GroupKey, int] = {}
        periods = []
        for i, (stratum, treatment) in enumerate(zip(strata, treatments)):
            stratum = None if pd.isna(stratum) else str(stratum)
            treatment = None if pd.isna(treatment) else str(treatment)
            key = (stratum, treatment)
            counters[key] = counters.get(key, 0) + 1
            if "period" in frame.columns:
                period = int(frame["period"].iloc[i])
            else:
                period = counters[key]
            periods.append(RatePeriod(
                duration=float(frame["duration"].iloc[i]),
                rate=float(frame["rate"].iloc[i]),
                stratum=stratum,
                treatment=treatment,
                period=period,
            ))
        return cls(periods=tuple(periods))

    def to_frame(self) -> pd.DataFrame:
        """Return the table as a DataFrame (a copy; the table stays immutable)."""
        return pd.DataFrame({
            "stratum": [p.stratum for p in self.periods],
            "treatment": [p.treatment for p in self.periods],
            "period": [p.period for p in self.periods],
            "duration": [p.duration for p in self.periods],
            "rate": [p.rate for p in self.periods],
        })

    @property
    def groups(self) -> list[GroupKey]:
        """(stratum, treatment) keys in table order."""
        return list(dict.fromkeys(p.key for p in self.periods))

    def has_group(self, stratum: Optional[str] = None, treatment: Optional[str] = None) -> bool:
        return len(self._matching(stratum, treatment)) == 1

    def select(
        self,
        stratum: Optional[str] = None,
        treatment: Optional[str] = None,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Durations and rates that apply to a stratum/treatment combination.

        Groups without a stratum (or treatment) key match any stratum (or
        treatment).

        Raises:
            ConfigurationError: if no group, or more than one group, applies
        """
        matches = self._matching(stratum, treatment)
        if len(matches) == 0:
            raise ConfigurationError(
                f"rate table has no periods for {_group_label((stratum, treatment))}"
            )
        if len(matches) > 1:
            labels = ", ".join(_group_label(k) for k in matches)
            raise ConfigurationError(
                f"rate table is ambiguous for {_group_label((stratum, treatment))}: {labels}"
            )
        key = matches[0]
        group = [p for p in self.periods if p.key == key]
        return (
            np.array([p.duration for p in group], dtype=float),
            np.array([p.rate for p in group], dtype=float),
        )

    def _matching(self, stratum: Optional[str], treatment: Optional[str]) -> list[GroupKey]:
        return [
            (s, t) for s, t in self.groups
            if (s is None or s == stratum) and (t is None or t == treatment)
        ]

    def __len__(self) -> int:
        return len(self.periods)


RateTableLike = Union[RateTable, pd.DataFrame]


def as_rate_table(rates: RateTableLike, name: str = "rate table") -> RateTable:
    """Coerce a DataFrame to a RateTable; RateTables pass through unchanged."""
    if isinstance(rates, RateTable):
        return rates
    if isinstance(rates, pd.DataFrame):
        try:
            return RateTable.from_frame(rates)
        except ConfigurationError as e:
            raise ConfigurationError(f"{name}: {e}") from e
    raise ConfigurationError(f"{name}: expected a RateTable or DataFrame, got {type(rates).__name__}")


def define_enroll_rate(
    duration: Sequence[float],
    rate: Sequence[float],
    stratum: Optional[Sequence[str]] = None,
) -> RateTable:
    """
    Define a piecewise constant enrollment rate.

    Args:
        duration: Duration of each enrollment period
        rate: Enrollment rate (subjects per time unit) in each period
        stratum: Optional stratum for each period

    Returns:
        RateTable keyed by stratum (if given)
    """
    duration = list(np.atleast_1d(duration))
    rate = list(np.atleast_1d(rate))
    if len(duration) != len(rate):
        raise ConfigurationError("duration and rate must have the same length")
    frame = pd.DataFrame({"duration": duration, "rate": rate})
    if stratum is not None:
        frame["stratum"] = _broadcast(stratum, len(frame), "stratum", object)
    return RateTable.from_frame(frame)


def define_fail_rate(
    duration: Sequence[float],
    fail_rate: Union[float, Sequence[float]],
    dropout_rate: Union[float, Sequence[float]] = 0.0,
    hr: Union[float, Sequence[float]] = 1.0,
    stratum: Union[str, Sequence[str]] = "All",
) -> pd.DataFrame:
    """
    Define failure and dropout rates with an embedded hazard ratio.

    The result is a design table with columns stratum, duration, fail_rate,
    hr and dropout_rate; :func:`to_sim_pw_surv` expands it into per-arm
    failure and dropout RateTables.
    """
    duration = np.atleast_1d(np.asarray(duration, dtype=float))
    n = len(duration)
    frame = pd.DataFrame({
        "stratum": _broadcast(stratum, n, "stratum", object),
        "duration": duration,
        "fail_rate": _broadcast(fail_rate, n, "fail_rate", float),
        "hr": _broadcast(hr, n, "hr", float),
        "dropout_rate": _broadcast(dropout_rate, n, "dropout_rate", float),
    })
    if (frame["hr"] < 0).any():
        raise ConfigurationError("hr: hazard ratios must be non-negative")
    return frame


def to_sim_pw_surv(
    fail_rate: pd.DataFrame,
    control: str = "control",
    experimental: str = "experimental",
) -> tuple[RateTable, RateTable]:
    """
    Convert a design failure table into simulation failure and dropout tables.

    The control arm uses ``fail_rate``; the experimental arm uses
    ``fail_rate * hr``. Dropout rates are the same in both arms.

    Args:
        fail_rate: Table from :func:`define_fail_rate` (columns duration,
            fail_rate and optionally stratum, hr, dropout_rate)
        control: Label of the control arm
        experimental: Label of the experimental arm

    Returns:
        Tuple of (failure RateTable, dropout RateTable)
    """
    for col in ("duration", "fail_rate"):
        if col not in fail_rate.columns:
            raise ConfigurationError(f"{col}: missing required column in fail_rate")

    n = len(fail_rate)
    strata = fail_rate["stratum"].astype(str).tolist() if "stratum" in fail_rate.columns else ["All"] * n
    hr = fail_rate["hr"].to_numpy(dtype=float) if "hr" in fail_rate.columns else np.ones(n)
    dropout = (
        fail_rate["dropout_rate"].to_numpy(dtype=float)
        if "dropout_rate" in fail_rate.columns else np.zeros(n)
    )
    duration = fail_rate["duration"].to_numpy(dtype=float)
    base = fail_rate["fail_rate"].to_numpy(dtype=float)

    fail_periods, dropout_periods = [], []
    counters: dict[str, int] = {}
    for i in range(n):
        s = strata[i]
        counters[s] = counters.get(s, 0) + 1
        for arm, rate in ((control, base[i]), (experimental, base[i] * hr[i])):
            fail_periods.append(RatePeriod(duration[i], rate, s, arm, counters[s]))
            dropout_periods.append(RatePeriod(duration[i], dropout[i], s, arm, counters[s]))

    return RateTable(tuple(fail_periods)), RateTable(tuple(dropout_periods))


def _group_label(key: GroupKey) -> str:
    stratum, treatment = key
    parts = []
    if stratum is not None:
        parts.append(f"stratum={stratum!r}")
    if treatment is not None:
        parts.append(f"treatment={treatment!r}")
    return ", ".join(parts) if parts else "all subjects"


def _broadcast(values, n: int, name: str, dtype) -> NDArray:
    try:
        return np.array(np.broadcast_to(np.asarray(values, dtype=dtype), n))
    except ValueError as e:
        raise ConfigurationError(f"{name}: expected a scalar or {n} values") from e
