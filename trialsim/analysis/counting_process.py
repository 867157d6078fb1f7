"""
Counting process format for log-rank type tests.

For each stratum and each distinct event time the counting process holds
the number of events and subjects at risk overall and in the treatment arm,
the left-continuous pooled Kaplan-Meier estimate, and the hypergeometric
mean and variance of treatment-arm events under the null hypothesis.
"""

import numpy as np
import pandas as pd

from ..exceptions import ConfigurationError

COUNTING_PROCESS_COLUMNS = [
    "stratum", "tte", "event_total", "event_trt", "n_risk_total", "n_risk_trt",
    "s", "o_minus_e", "var_o_minus_e",
]


def counting_process(data: pd.DataFrame, arm: str = "experimental") -> pd.DataFrame:
    """
    Convert cut survival data to counting process format.

    Ties are handled the Breslow way: all events at one time are counted
    together. Times where either arm has nobody at risk carry no information
    about the treatment comparison and are left out.

    Args:
        data: Cut data with columns [stratum, treatment, tte, event]
        arm: Treatment label of the experimental arm; every other label is
            pooled as control
          (a cut with no subject on ``arm`` gives an empty frame)

    Returns:
        DataFrame ordered by stratum and time with columns
        [stratum, tte, event_total, event_trt, n_risk_total, n_risk_trt,
        s, o_minus_e, var_o_minus_e]
    """
    missing = [col for col in ("stratum", "treatment", "tte", "event") if col not in data.columns]
    if missing:
        raise ConfigurationError(f"data: missing required columns {missing}")

    frames = []
    for stratum, group in data.groupby("stratum", sort=True):
        frame = _stratum_counting_process(
            group["tte"].to_numpy(dtype=float),
            group["event"].to_numpy() == 1,
            group["treatment"].to_numpy() == arm,
        )
        if len(frame) > 0:
            frame.insert(0, "stratum", stratum)
            frames.append(frame)

    if not frames:
        return pd.DataFrame({col: [] for col in COUNTING_PROCESS_COLUMNS})
    return pd.concat(frames, ignore_index=True)[COUNTING_PROCESS_COLUMNS]


def _stratum_counting_process(tte: np.ndarray, event: np.ndarray, trt: np.ndarray) -> pd.DataFrame:
    times = np.unique(tte[event])
    if len(times) == 0:
        return pd.DataFrame()

    order = np.argsort(tte, kind="stable")
    tte_sorted = tte[order]
    # Number of treatment subjects at or after each sorted position
    trt_from = np.concatenate([np.cumsum(trt[order][::-1])[::-1], [0]])

    first = np.searchsorted(tte_sorted, times, side="left")
    n_risk_total = len(tte) - first
    n_risk_trt = trt_from[first].astype(int)

    pos = np.searchsorted(times, tte[event])
    event_total = np.bincount(pos, minlength=len(times))
    event_trt = np.bincount(pos, weights=trt[event].astype(float), minlength=len(times)).astype(int)

    # Pooled Kaplan-Meier just before each event time
    s = np.concatenate([[1.0], np.cumprod(1 - event_total / n_risk_total)[:-1]])

    # At-risk counts only decrease, so the dropped times form a tail
    keep = (n_risk_trt > 0) & (n_risk_trt < n_risk_total)
    n = n_risk_total[keep].astype(float)
    n_trt = n_risk_trt[keep].astype(float)
    d = event_total[keep].astype(float)
    d_trt = event_trt[keep]

    with np.errstate(divide="ignore", invalid="ignore"):
        var = np.where(
            n > 1,
            d * (n - d) * n_trt * (n - n_trt) / (n ** 2 * (n - 1)),
            0.0,
        )

    return pd.DataFrame({
        "tte": times[keep],
        "event_total": event_total[keep],
        "event_trt": d_trt,
        "n_risk_total": n_risk_total[keep],
        "n_risk_trt": n_risk_trt[keep],
        "s": s[keep],
        "o_minus_e": d_trt - d * n_trt / n,
        "var_o_minus_e": var,
    })
