from .counting_process import counting_process
from .weights import WeightFunction, FlemingHarrington, MagirrBurman, EarlyZero, fh, mb, early_zero
from .mvn import IntegrationParams, MVNResult, pmvnorm
from .statistical_tests import (
    WLRResult,
    MaxComboResult,
    weighted_logrank,
    wlr,
    maxcombo_test,
    maxcombo,
    create_test,
    multitest,
)
from .group_sequential import Uniform, PerAnalysis, simulate_replicate, sim_gs_n

__all__ = [
    "counting_process",
    "WeightFunction",
    "FlemingHarrington",
    "MagirrBurman",
    "EarlyZero",
    "fh",
    "mb",
    "early_zero",
    "IntegrationParams",
    "MVNResult",
    "pmvnorm",
    "WLRResult",
    "MaxComboResult",
    "weighted_logrank",
    "wlr",
    "maxcombo_test",
    "maxcombo",
    "create_test",
    "multitest",
    "Uniform",
    "PerAnalysis",
    "simulate_replicate",
    "sim_gs_n",
]
