import datetime
from typing import Iterable, Optional
import numpy as np


class MathTools:
    """Numerical helpers shared by the metrics and analytics services."""

    EPLEY_DIVISOR: float = 30.0

    @classmethod
    def epley_1rm(cls, weight: float, reps: int) -> float:
        """Return the estimated one-rep max using the Epley formula."""
        if reps < 0:
            raise ValueError("reps must be non-negative")
        return weight * (1 + reps / cls.EPLEY_DIVISOR)

    @staticmethod
    def volume(sets: Iterable[tuple[Optional[int], Optional[float]]]) -> float:
        """Sum of reps times weight; pairs missing either value add nothing."""
        vol = 0.0
        for reps, weight in sets:
            if reps is None or weight is None:
                continue
            vol += reps * weight
        return vol

    @staticmethod
    def mean(values: Iterable[float]) -> float:
        """Arithmetic mean, ``0.0`` for an empty input."""
        arr = np.array(list(values), dtype=float)
        if arr.size == 0:
            return 0.0
        return float(arr.mean())

    @staticmethod
    def coefficient_of_variation(values: Iterable[float]) -> float:
        """Return the population coefficient of variation in percent."""
        arr = np.array(list(values), dtype=float)
        if arr.size == 0:
            return 0.0
        mean = float(arr.mean())
        if mean <= 0:
            return 0.0
        return float(arr.std()) / mean * 100

    @staticmethod
    def percentage(part: float, whole: float) -> float:
        if whole == 0:
            raise ZeroDivisionError("whole must not be zero")
        return part / whole * 100

    @staticmethod
    def sessions_per_week(
        sessions: int, start: datetime.date, end: datetime.date
    ) -> float:
        """Average training frequency over the inclusive date range."""
        days = (end - start).days + 1
        if days <= 0:
            raise ValueError("end must not precede start")
        return sessions / days * 7

    @staticmethod
    def format_duration(seconds: int) -> str:
        """Render ``seconds`` as ``m:ss``."""
        minutes, secs = divmod(int(seconds), 60)
        return f"{minutes}:{secs:02d}"
