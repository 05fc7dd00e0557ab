import math
from typing import Iterable

import numpy as np


class MathTools:
    """Provides essential mathematical utilities for workout calculations."""

    BRZ_INTERCEPT: float = 1.0278
    BRZ_SLOPE: float = 0.0278

    @staticmethod
    def round_half_up(value: float) -> int:
        """Round to the nearest integer with halves rounded up."""
        return int(math.floor(value + 0.5))

    @classmethod
    def brzycki_1rm(cls, weight: float, reps: int) -> float:
        """Return the estimated one-rep max using the Brzycki formula.

        A single rep is its own maximum. Every other rep count, zero
        included, goes through the formula unchanged.
        """
        if reps == 1:
            return float(weight)
        return weight / (cls.BRZ_INTERCEPT - cls.BRZ_SLOPE * reps)

    @staticmethod
    def volume(sets: Iterable[tuple[int, float]]) -> float:
        """Compute training volume as the sum of reps times weight."""
        vol = 0.0
        for reps, weight in sets:
            vol += reps * weight
        return vol

    @staticmethod
    def mean_and_std(values: Iterable[float]) -> tuple[float, float]:
        """Return the mean and population standard deviation of ``values``."""
        data = list(values)
        if not data:
            return 0.0, 0.0
        arr = np.array(data, dtype=float)
        return float(np.mean(arr)), float(np.std(arr))

    @classmethod
    def coefficient_of_variation(cls, values: Iterable[float]) -> float:
        """Return the coefficient of variation for ``values``."""
        data = list(values)
        if len(data) < 2:
            return 0.0
        mean, std = cls.mean_and_std(data)
        if mean <= 0:
            return 0.0
        return std / mean
