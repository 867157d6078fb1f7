"""
Data cutting: derive analysis datasets from ongoing trial data.

A cut keeps subjects enrolled by the cut date and censors their follow-up
there. Cut frames keep ``cte``/``fail`` consistent with the censored values,
so a cut frame can itself be cut again.
"""

import numpy as np
import pandas as pd

from ..exceptions import ConfigurationError

REQUIRED_COLUMNS = ("stratum", "treatment", "enroll_time", "cte", "fail")

CUT_COLUMNS = ["id", "stratum", "treatment", "enroll_time", "tte", "event", "cte", "fail"]


def _check_trial_data(data: pd.DataFrame) -> None:
    missing = [col for col in REQUIRED_COLUMNS if col not in data.columns]
    if missing:
        raise ConfigurationError(f"data: missing required columns {missing}")


def cut_data_by_date(data: pd.DataFrame, cut_date: float) -> pd.DataFrame:
    """
    Cut trial data at a calendar date for analysis.

    Args:
        data: Trial data from :func:`sim_pw_surv` (or an earlier cut)
        cut_date: Calendar date for data cutoff

    Returns:
        DataFrame of subjects enrolled by ``cut_date`` with time on study
        (``tte``) and event indicator (``event``) as observed at the cut
    """
    _check_trial_data(data)
    cut_date = float(cut_date)

    enrolled = data["enroll_time"].to_numpy(dtype=float)
    result = data[np.isfinite(enrolled) & (enrolled <= cut_date)]
    cte = np.minimum(result["cte"].to_numpy(dtype=float), cut_date)
    event = ((result["fail"] == 1) & (result["cte"] <= cut_date)).astype(int).to_numpy()
    ids = result["id"].to_numpy() if "id" in result.columns else np.arange(1, len(result) + 1)

    return pd.DataFrame({
        "id": ids,
        "stratum": result["stratum"].to_numpy(),
        "treatment": result["treatment"].to_numpy(),
        "enroll_time": result["enroll_time"].to_numpy(dtype=float),
        "tte": cte - result["enroll_time"].to_numpy(dtype=float),
        "event": event,
        "cte": cte,
        "fail": event,
    }, columns=CUT_COLUMNS)


def get_cut_date_by_event(data: pd.DataFrame, event: int) -> float:
    """
    Get the calendar date at which a target event count is reached.

    The date is the ``event``-th smallest calendar event time, so subjects
    tied with it are all counted at that date. If fewer events ever occur,
    the latest finite terminal time is returned, which keeps all data.

    Args:
        data: Trial data from :func:`sim_pw_surv`
        event: Target event count

    Returns:
        Calendar cut date (``inf`` if the data has no finite terminal time)
    """
    _check_trial_data(data)
    if int(event) != event or event < 1:
        raise ConfigurationError(f"event: target event count must be a positive integer, got {event}")
    event = int(event)

    event_times = np.sort(data.loc[data["fail"] == 1, "cte"].to_numpy(dtype=float))
    event_times = event_times[np.isfinite(event_times)]
    if len(event_times) >= event:
        return float(event_times[event - 1])

    terminal = data["cte"].to_numpy(dtype=float)
    terminal = terminal[np.isfinite(terminal)]
    return float(terminal.max()) if len(terminal) > 0 else np.inf


def cut_data_by_event(data: pd.DataFrame, event: int) -> pd.DataFrame:
    """
    Cut trial data when a target number of events is reached.

    Ties at the cut date are all included, so the realized event count can
    exceed ``event``.

    Args:
        data: Trial data from :func:`sim_pw_surv`
        event: Target event count

    Returns:
        Cut data as from :func:`cut_data_by_date`
    """
    return cut_data_by_date(data, get_cut_date_by_event(data, event))
