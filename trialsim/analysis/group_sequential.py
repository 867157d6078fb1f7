"""
Group sequential trial simulation.

Each replicate simulates one trial, then for every analysis cut rule in turn
finds the cut date, cuts the data and runs that analysis' test. Replicates
are independent: replicate ``sim_id`` uses its own generator seeded with
``seed + sim_id``, and a failure in one replicate stops only that replicate.
"""

import warnings
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..exceptions import ConfigurationError, TrialSimError
from ..simulation.analysis_date import create_cut
from ..simulation.cutting import cut_data_by_date
from ..simulation.rates import RateTableLike, define_enroll_rate, define_fail_rate, to_sim_pw_surv
from ..simulation.survival import StratumLike, TrialConfig
from .statistical_tests import wlr

TestFunction = Callable[[pd.DataFrame], Any]
CutRule = Callable[..., float]

# Failures recorded against a replicate instead of aborting the run
REPLICATE_ERRORS = (TrialSimError, ValueError, ArithmeticError, np.linalg.LinAlgError)

RESULT_COLUMNS = ["sim_id", "analysis", "cut_date", "n", "event", "event_trt"]


@dataclass(frozen=True)
class Uniform:
    """The same test at every analysis."""
    test: TestFunction

    def resolve(self, n_analyses: int) -> list[TestFunction]:
        return [self.test] * n_analyses


@dataclass(frozen=True)
class PerAnalysis:
    """One test per analysis, in analysis order."""
    tests: tuple[TestFunction, ...]

    def __post_init__(self):
        object.__setattr__(self, "tests", tuple(self.tests))

    def resolve(self, n_analyses: int) -> list[TestFunction]:
        if len(self.tests) != n_analyses:
            raise ConfigurationError(
                f"test: {len(self.tests)} tests given for {n_analyses} analyses"
            )
        return list(self.tests)


TestPlan = Union[Uniform, PerAnalysis, TestFunction, Sequence[TestFunction]]


def resolve_tests(test: Optional[TestPlan], n_analyses: int) -> list[TestFunction]:
    """Turn a test plan into exactly one test per analysis."""
    if test is None:
        test = Uniform(wlr)
    elif callable(test) and not isinstance(test, (Uniform, PerAnalysis)):
        test = Uniform(test)
    elif not isinstance(test, (Uniform, PerAnalysis)):
        test = PerAnalysis(tuple(test))

    tests = test.resolve(n_analyses)
    for i, t in enumerate(tests, start=1):
        if not callable(t):
            raise ConfigurationError(f"test: test for analysis {i} is not callable")
    return tests


def _flatten(output: Any, prefix: str = "") -> dict[str, Any]:
    """Flatten a test result into result-row columns."""
    if hasattr(output, "to_dict"):
        output = output.to_dict()
    if isinstance(output, Mapping):
        row = {}
        for key, value in output.items():
            name = f"{prefix}{key}"
            if hasattr(value, "to_dict") or isinstance(value, Mapping):
                row.update(_flatten(value, f"{name}_"))
            else:
                row[name] = value
        return row
    return {prefix.rstrip("_") or "statistic": output}


def simulate_replicate(
    sim_id: int,
    config: TrialConfig,
    cuts: Sequence[CutRule],
    tests: Sequence[TestFunction],
    seed: int,
    arm: str = "experimental",
) -> list[dict[str, Any]]:
    """
    Simulate one trial and analyse it at every cut.

    Args:
        sim_id: 1-based replicate number; the generator is seeded with
            ``seed + sim_id``
        config: Trial configuration
        cuts: Analysis cut rules, called as ``cut(data, previous_analysis_date)``
        tests: Test for each analysis (same length as ``cuts``)
        seed: Base seed of the simulation run
        arm: Experimental arm label, used for the event_trt count

    Returns:
        One dict per completed analysis. If a step fails, the failing
        analysis is recorded with its ``error`` message and later analyses
        are skipped.
    """
    rows = []
    analysis = 1
    cut_date = np.nan
    try:
        data = config.simulate(np.random.default_rng(seed + sim_id))
        previous = 0.0
        for analysis, (cut, test) in enumerate(zip(cuts, tests), start=1):
            cut_date = np.nan
            cut_date = float(cut(data, previous))
            cut_data = cut_data_by_date(data, cut_date)
            events = cut_data["event"].to_numpy() == 1

            row = {
                "sim_id": sim_id,
                "analysis": analysis,
                "cut_date": cut_date,
                "n": len(cut_data),
                "event": int(events.sum()),
                "event_trt": int((events & (cut_data["treatment"] == arm).to_numpy()).sum()),
            }
            row.update(_flatten(test(cut_data)))
            row["error"] = None
            rows.append(row)
            previous = cut_date
    except REPLICATE_ERRORS as e:
        warnings.warn(f"Simulation {sim_id} stopped at analysis {analysis}: {e}")
        rows.append({
            "sim_id": sim_id,
            "analysis": analysis,
            "cut_date": cut_date,
            "error": f"{type(e).__name__}: {e}",
        })
    return rows


def sim_gs_n(
    n_sim: int = 1000,
    sample_size: int = 500,
    stratum: StratumLike = None,
    enroll_rate: Optional[RateTableLike] = None,
    fail_rate: Optional[RateTableLike] = None,
    dropout_rate: Optional[RateTableLike] = None,
    block: Sequence[str] = ("experimental", "control") * 2,
    test: Optional[TestPlan] = None,
    cut: Optional[Sequence[CutRule]] = None,
    total_duration: Optional[float] = None,
    seed: int = 2024,
) -> pd.DataFrame:
    """
    Simulate group sequential designs with fixed sample size.

    Parameters
    ----------
    n_sim : int
        Number of simulated trials
    sample_size : int
        Number of subjects per trial
    stratum : pd.DataFrame or mapping, optional
        Stratum distribution (columns stratum, p); defaults to one stratum "All"
    enroll_rate : RateTable or pd.DataFrame, optional
        Enrollment rates; defaults to ``define_enroll_rate([2, 2, 10], [3, 6, 9])``
    fail_rate : pd.DataFrame or RateTable, optional
        Either a design table from :func:`define_fail_rate` (with fail_rate,
        hr and dropout_rate columns) or a simulation failure RateTable keyed by
        stratum and treatment. Defaults to a delayed-effect design with median
        control survival 9 then 18 and hazard ratio 0.9 then 0.6 after month 3.
    dropout_rate : RateTable or pd.DataFrame, optional
        Dropout rates; overrides the dropout rates embedded in a design table
    block : list of str
        Block randomization pattern
    test : callable, list of callables, Uniform or PerAnalysis
        Test run on each cut; a single test is used for every analysis,
        a list gives one test per analysis. Defaults to the logrank test.
    cut : list of callables
        Analysis cut rules from :func:`create_cut`, in analysis order
    total_duration : float, optional
        When ``cut`` is not given, a single analysis at this calendar time
    seed : int
        Base seed; replicate ``i`` (1-based) uses ``seed + i``

    Returns
    -------
    pd.DataFrame with one row per replicate and analysis: sim_id, analysis,
    cut_date, n, event, event_trt, the test output columns and error

    Example
    -------
    >>> ia = create_cut(target_event_overall=150)
    >>> fa = create_cut(planned_calendar_time=36, min_time_after_previous_analysis=6)
    >>> sim_gs_n(n_sim=100, sample_size=400, cut=[ia, fa],
    ...          test=create_test(maxcombo, rho=[0, 0], gamma=[0, 0.5]))
    """
    if int(n_sim) != n_sim or n_sim < 1:
        raise ConfigurationError(f"n_sim: must be a positive integer, got {n_sim}")
    if cut is None:
        if total_duration is None:
            raise ConfigurationError("cut: at least one analysis cut (or total_duration) is required")
        cut = [create_cut(planned_calendar_time=total_duration)]
    cuts = list(cut)
    if len(cuts) == 0:
        raise ConfigurationError("cut: at least one analysis cut is required")
    for i, c in enumerate(cuts, start=1):
        if not callable(c):
            raise ConfigurationError(f"cut: analysis {i} cut rule is not callable")
    tests = resolve_tests(test, len(cuts))

    if enroll_rate is None:
        enroll_rate = define_enroll_rate(duration=[2, 2, 10], rate=[3, 6, 9])
    if fail_rate is None:
        fail_rate = define_fail_rate(
            duration=[3, 100],
            fail_rate=np.log(2) / np.array([9, 18]),
            hr=[0.9, 0.6],
            dropout_rate=0.001,
        )
    if isinstance(fail_rate, pd.DataFrame) and "fail_rate" in fail_rate.columns:
        fail_rate, embedded_dropout = to_sim_pw_surv(fail_rate)
        if dropout_rate is None:
            dropout_rate = embedded_dropout

    config = TrialConfig.create(
        n=sample_size,
        stratum=stratum,
        block=block,
        enroll_rate=enroll_rate,
        fail_rate=fail_rate,
        dropout_rate=dropout_rate,
    )

    rows = []
    for sim_id in range(1, int(n_sim) + 1):
        rows.extend(simulate_replicate(sim_id, config, cuts, tests, seed))

    result = pd.DataFrame(rows)
    columns = RESULT_COLUMNS + [c for c in result.columns if c not in RESULT_COLUMNS and c != "error"]
    return result.reindex(columns=columns + ["error"])
