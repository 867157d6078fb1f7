"""
Exceptions raised by trialsim.

Configuration errors depend only on the call; degenerate statistics depend
on the simulated data and are reported separately so that a simulation
driver can tell them apart.
"""


class TrialSimError(Exception):
    """Base class for trialsim errors."""


class ConfigurationError(TrialSimError, ValueError):
    """Malformed or inconsistent inputs (rate tables, strata, cuts, tests)."""


class DegenerateStatisticError(TrialSimError, ArithmeticError):
    """A test statistic is undefined for the data at hand."""
