from .rates import RateTable, RatePeriod, define_enroll_rate, define_fail_rate, to_sim_pw_surv
from .distributions import PiecewiseExponential, rpwexp, rpwexp_enroll
from .survival import randomize_by_fixed_block, TrialConfig, sim_pw_surv
from .cutting import cut_data_by_date, cut_data_by_event, get_cut_date_by_event
from .analysis_date import AnalysisCut, create_cut, get_analysis_date

__all__ = [
    "RateTable",
    "RatePeriod",
    "define_enroll_rate",
    "define_fail_rate",
    "to_sim_pw_surv",
    "PiecewiseExponential",
    "rpwexp",
    "rpwexp_enroll",
    "randomize_by_fixed_block",
    "TrialConfig",
    "sim_pw_surv",
    "cut_data_by_date",
    "cut_data_by_event",
    "get_cut_date_by_event",
    "AnalysisCut",
    "create_cut",
    "get_analysis_date",
]
