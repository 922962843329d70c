from __future__ import annotations

from typing import Optional, Protocol

from src.config import get_settings


class FareEstimator(Protocol):
    def estimate(self, origin_point: str, duration_minutes: float) -> float:
        ...


class FlatRateFareEstimator:
    """Base fare plus a per-minute rate, regardless of pickup zone."""

    def __init__(self, base: Optional[float] = None, per_minute: Optional[float] = None):
        settings = get_settings()
        self.base = settings.fare_base if base is None else base
        self.per_minute = settings.fare_per_minute if per_minute is None else per_minute

    def estimate(self, origin_point: str, duration_minutes: float) -> float:
        return round(self.base + self.per_minute * max(duration_minutes, 0), 2)
