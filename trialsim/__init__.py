"""
Simulation of Time-to-Event Randomized Clinical Trials

Simulates stratified trials with piecewise constant enrollment, failure and
dropout rates, cuts the data by calendar date or event count, and evaluates
weighted logrank and MaxCombo tests across group sequential analyses.
"""

__version__ = "0.1.0"

from .exceptions import TrialSimError, ConfigurationError, DegenerateStatisticError
from .simulation import (
    RateTable, define_enroll_rate, define_fail_rate, to_sim_pw_surv,
    rpwexp, rpwexp_enroll, PiecewiseExponential,
    randomize_by_fixed_block, TrialConfig, sim_pw_surv,
    cut_data_by_date, cut_data_by_event, get_cut_date_by_event,
    AnalysisCut, create_cut, get_analysis_date,
)
from .analysis import (
    counting_process, fh, mb, early_zero, WeightFunction,
    IntegrationParams, pmvnorm,
    WLRResult, MaxComboResult, weighted_logrank, wlr, maxcombo_test, maxcombo,
    create_test, multitest,
    Uniform, PerAnalysis, simulate_replicate, sim_gs_n,
)

__all__ = [
    "TrialSimError", "ConfigurationError", "DegenerateStatisticError",
    "RateTable", "define_enroll_rate", "define_fail_rate", "to_sim_pw_surv",
    "rpwexp", "rpwexp_enroll", "PiecewiseExponential",
    "randomize_by_fixed_block", "TrialConfig", "sim_pw_surv",
    "cut_data_by_date", "cut_data_by_event", "get_cut_date_by_event",
    "AnalysisCut", "create_cut", "get_analysis_date",
    "counting_process", "fh", "mb", "early_zero", "WeightFunction",
    "IntegrationParams", "pmvnorm",
    "WLRResult", "MaxComboResult", "weighted_logrank", "wlr", "maxcombo_test", "maxcombo",
    "create_test", "multitest",
    "Uniform", "PerAnalysis", "simulate_replicate", "sim_gs_n",
]
