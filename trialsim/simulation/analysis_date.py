"""
Analysis timing rules.

An analysis rule combines several conditions (planned calendar time, event
counts, enrollment plus follow-up, time since the previous analysis); the
analysis happens when all configured conditions are met, i.e. at the latest
of their dates. Event-driven dates can be capped so that a slow event
accrual does not delay the analysis indefinitely.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from ..exceptions import ConfigurationError
from .cutting import get_cut_date_by_event


def _as_pairs(counts: Optional[Mapping[str, int]], name: str) -> Optional[tuple[tuple[str, int], ...]]:
    if counts is None:
        return None
    pairs = tuple((str(k), int(v)) for k, v in dict(counts).items())
    if len(pairs) == 0:
        raise ConfigurationError(f"{name}: at least one stratum is required")
    if any(v < 1 for _, v in pairs):
        raise ConfigurationError(f"{name}: counts must be positive integers")
    return pairs


@dataclass(frozen=True)
class AnalysisCut:
    """
    Rule mapping a simulated trial to the calendar date of one analysis.

    Attributes:
        planned_calendar_time: Earliest calendar time for the analysis
        target_event_overall: Event count to wait for across all strata
        target_event_per_stratum: Event count to wait for in each stratum
        max_extension_for_target_event: Latest date the event conditions may push to
        min_time_after_previous_analysis: Minimum gap after the previous analysis
        min_n_overall: Number of enrolled subjects to wait for
        min_n_per_stratum: Number of enrolled subjects to wait for in each stratum
        min_followup: Follow-up required after the ``min_n`` enrollment
    """
    planned_calendar_time: Optional[float] = None
    target_event_overall: Optional[int] = None
    target_event_per_stratum: Optional[tuple[tuple[str, int], ...]] = None
    max_extension_for_target_event: Optional[float] = None
    min_time_after_previous_analysis: Optional[float] = None
    min_n_overall: Optional[int] = None
    min_n_per_stratum: Optional[tuple[tuple[str, int], ...]] = None
    min_followup: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "target_event_per_stratum",
                           _as_pairs(self.target_event_per_stratum, "target_event_per_stratum"))
        object.__setattr__(self, "min_n_per_stratum",
                           _as_pairs(self.min_n_per_stratum, "min_n_per_stratum"))

        if all(v is None for v in (
            self.planned_calendar_time, self.target_event_overall,
            self.target_event_per_stratum, self.min_time_after_previous_analysis,
            self.min_n_overall, self.min_n_per_stratum,
        )):
            raise ConfigurationError("analysis cut: at least one condition must be specified")

        if self.target_event_overall is not None and (
            int(self.target_event_overall) != self.target_event_overall or self.target_event_overall < 1
        ):
            raise ConfigurationError("target_event_overall: must be a positive integer")
        if self.min_n_overall is not None and (
            int(self.min_n_overall) != self.min_n_overall or self.min_n_overall < 1
        ):
            raise ConfigurationError("min_n_overall: must be a positive integer")
        for name in ("planned_calendar_time", "min_time_after_previous_analysis", "min_followup"):
            value = getattr(self, name)
            if value is not None and (np.isnan(value) or value < 0):
                raise ConfigurationError(f"{name}: must be non-negative")

        cap = self.max_extension_for_target_event
        if cap is not None:
            if self.target_event_overall is None and self.target_event_per_stratum is None:
                raise ConfigurationError(
                    "max_extension_for_target_event: requires target_event_overall or target_event_per_stratum"
                )
            if self.planned_calendar_time is not None and cap < self.planned_calendar_time:
                raise ConfigurationError(
                    "max_extension_for_target_event: must not be earlier than planned_calendar_time"
                )
        if self.min_followup is not None and self.min_n_overall is None and self.min_n_per_stratum is None:
            raise ConfigurationError("min_followup: requires min_n_overall or min_n_per_stratum")

    def __call__(self, data: pd.DataFrame, previous_analysis_date: float = 0.0) -> float:
        return self.cut_date(data, previous_analysis_date)

    def cut_date(self, data: pd.DataFrame, previous_analysis_date: float = 0.0) -> float:
        """
        Calendar date of the analysis for a simulated trial.

        Args:
            data: Full (uncut) trial data from :func:`sim_pw_surv`
            previous_analysis_date: Cut date of the previous analysis

        Returns:
            The latest of the dates implied by the configured conditions
        """
        dates = []

        if self.planned_calendar_time is not None:
            dates.append(float(self.planned_calendar_time))

        event_dates = []
        if self.target_event_overall is not None:
            event_dates.append(get_cut_date_by_event(data, self.target_event_overall))
        if self.target_event_per_stratum is not None:
            event_dates.append(max(
                get_cut_date_by_event(_stratum_rows(data, s, "target_event_per_stratum"), count)
                for s, count in self.target_event_per_stratum
            ))
        if self.max_extension_for_target_event is not None:
            event_dates = [min(d, float(self.max_extension_for_target_event)) for d in event_dates]
        dates.extend(event_dates)

        if self.min_time_after_previous_analysis is not None:
            dates.append(float(previous_analysis_date) + float(self.min_time_after_previous_analysis))

        followup = 0.0 if self.min_followup is None else float(self.min_followup)
        if self.min_n_overall is not None:
            enroll = _sorted_enrollment(data)
            if self.min_n_overall > len(enroll):
                raise ConfigurationError(
                    f"min_n_overall: {self.min_n_overall} exceeds the {len(enroll)} enrolled subjects"
                )
            dates.append(float(enroll[self.min_n_overall - 1]) + followup)
        if self.min_n_per_stratum is not None:
            stratum_dates = []
            for s, count in self.min_n_per_stratum:
                enroll = _sorted_enrollment(_stratum_rows(data, s, "min_n_per_stratum"))
                if len(enroll) == 0:
                    raise ConfigurationError(f"min_n_per_stratum: no enrolled subjects in stratum {s!r}")
                # A stratum that never reaches its target waits for its last enrollment
                stratum_dates.append(float(enroll[min(count, len(enroll)) - 1]) + followup)
            dates.append(max(stratum_dates))

        return max(dates)


def _stratum_rows(data: pd.DataFrame, stratum: str, name: str) -> pd.DataFrame:
    rows = data[data["stratum"].astype(str) == stratum]
    if len(rows) == 0:
        raise ConfigurationError(f"{name}: no subjects in stratum {stratum!r}")
    return rows


def _sorted_enrollment(data: pd.DataFrame) -> np.ndarray:
    enroll = np.sort(data["enroll_time"].to_numpy(dtype=float))
    return enroll[np.isfinite(enroll)]


def create_cut(**kwargs) -> AnalysisCut:
    """
    Create an analysis cut rule for use with :func:`sim_gs_n`.

    Keyword arguments are the fields of :class:`AnalysisCut`; per-stratum
    targets may be given as ``{stratum: count}`` mappings.

    Example
    -------
    >>> ia1 = create_cut(planned_calendar_time=20, target_event_overall=100,
    ...                  max_extension_for_target_event=24,
    ...                  min_n_overall=200, min_followup=20)
    """
    return AnalysisCut(**kwargs)


def get_analysis_date(
    data: pd.DataFrame,
    planned_calendar_time: Optional[float] = None,
    target_event_overall: Optional[int] = None,
    target_event_per_stratum: Optional[Mapping[str, int]] = None,
    max_extension_for_target_event: Optional[float] = None,
    previous_analysis_date: float = 0.0,
    min_time_after_previous_analysis: Optional[float] = None,
    min_n_overall: Optional[int] = None,
    min_n_per_stratum: Optional[Mapping[str, int]] = None,
    min_followup: Optional[float] = None,
) -> float:
    """Evaluate an analysis rule once; see :class:`AnalysisCut`."""
    rule = AnalysisCut(
        planned_calendar_time=planned_calendar_time,
        target_event_overall=target_event_overall,
        target_event_per_stratum=target_event_per_stratum,
        max_extension_for_target_event=max_extension_for_target_event,
        min_time_after_previous_analysis=min_time_after_previous_analysis,
        min_n_overall=min_n_overall,
        min_n_per_stratum=min_n_per_stratum,
        min_followup=min_followup,
    )
    return rule.cut_date(data, previous_analysis_date)
