"""
Weight functions for weighted logrank tests.

Every weight is a function ``weight(s, t)`` of the left-continuous pooled
Kaplan-Meier estimate ``s`` and the event time ``t``. Build them with
:func:`fh`, :func:`mb` and :func:`early_zero`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ..exceptions import ConfigurationError


class WeightFunction(ABC):
    """Weight applied to each row of a counting process."""

    @abstractmethod
    def weight(self, s: NDArray[np.float64], t: NDArray[np.float64]) -> NDArray[np.float64]:
        """Weights for survival values ``s`` at event times ``t``."""

    @property
    @abstractmethod
    def label(self) -> str:
        ...

    def apply(self, counting_process: pd.DataFrame) -> NDArray[np.float64]:
        """Weights for every row of a counting process."""
        s = counting_process["s"].to_numpy(dtype=float)
        t = counting_process["tte"].to_numpy(dtype=float)
        return np.broadcast_to(np.asarray(self.weight(s, t), dtype=float), s.shape).copy()


@dataclass(frozen=True)
class FlemingHarrington(WeightFunction):
    """
    Fleming-Harrington weight ``s^rho * (1 - s)^gamma``.

    rho > 0 emphasises early differences, gamma > 0 late differences;
    rho = gamma = 0 gives the logrank test.
    """
    rho: float = 0.0
    gamma: float = 0.0

    def __post_init__(self):
        if self.rho < 0 or self.gamma < 0:
            raise ConfigurationError(f"fh: rho and gamma must be non-negative, got ({self.rho}, {self.gamma})")

    def weight(self, s, t):
        return s ** self.rho * (1 - s) ** self.gamma

    @property
    def label(self) -> str:
        return f"FH(rho={self.rho:g}, gamma={self.gamma:g})"


@dataclass(frozen=True)
class MagirrBurman(WeightFunction):
    """
    Modestly weighted logrank weight ``min(w_max, 1 / S(min(t, delay)))``.

    S is the pooled left-continuous Kaplan-Meier estimate within each
    stratum; after ``delay`` the weight stays at its value at the last event
    time not later than ``delay``.
    """
    delay: float = 4.0
    w_max: float = np.inf

    def __post_init__(self):
        if self.delay < 0:
            raise ConfigurationError(f"mb: delay must be non-negative, got {self.delay}")
        if not self.w_max > 0:
            raise ConfigurationError(f"mb: w_max must be positive, got {self.w_max}")

    def weight(self, s, t):
        # s here is already S(min(t, delay))
        return np.minimum(self.w_max, 1 / s)

    def apply(self, counting_process: pd.DataFrame) -> NDArray[np.float64]:
        s = counting_process["s"].to_numpy(dtype=float)
        t = counting_process["tte"].to_numpy(dtype=float)
        strata = counting_process["stratum"].to_numpy()

        s_delay = s.copy()
        for stratum in pd.unique(strata):
            in_stratum = strata == stratum
            early = in_stratum & (t <= self.delay)
            s_at_delay = s[early][np.argmax(t[early])] if early.any() else 1.0
            s_delay[in_stratum & (t > self.delay)] = s_at_delay
        return np.asarray(self.weight(s_delay, t), dtype=float)

    @property
    def label(self) -> str:
        return f"MB(delay={self.delay:g}, max_weight={self.w_max:g})"


@dataclass(frozen=True)
class EarlyZero(WeightFunction):
    """Weight 0 before ``early_period`` and 1 afterwards."""
    early_period: float

    def __post_init__(self):
        if self.early_period < 0:
            raise ConfigurationError(f"early_zero: early_period must be non-negative, got {self.early_period}")

    def weight(self, s, t):
        return np.where(t < self.early_period, 0.0, 1.0)

    @property
    def label(self) -> str:
        return f"EarlyZero(early_period={self.early_period:g})"


def fh(rho: float = 0.0, gamma: float = 0.0) -> FlemingHarrington:
    """Fleming-Harrington weight; ``fh()`` is the unweighted logrank."""
    return FlemingHarrington(rho=float(rho), gamma=float(gamma))


def mb(delay: float = 4.0, w_max: float = np.inf) -> MagirrBurman:
    """Magirr-Burman modestly weighted logrank weight."""
    return MagirrBurman(delay=float(delay), w_max=float(w_max))


def early_zero(early_period: float) -> EarlyZero:
    """Weight that ignores events in the first ``early_period`` time units."""
    return EarlyZero(early_period=float(early_period))
