"""Price and timing rules.

Everything here is pure given the injected clock, so the engine's decisions
can be tested without a chain.
"""
from __future__ import annotations

import math
import time
from decimal import Decimal
from typing import Callable, Optional

from .config import RentalSettings

SECONDS_PER_DAY = 86400


class PricingPolicy:
    """Decides when a listing is over or stale and how to move its price."""

    def __init__(self, settings: RentalSettings, now: Callable[[], float] = time.time):
        self._increase = settings.price_increase_factor
        self._decrease = settings.price_decrease_factor
        self.min_price_for_decrease = settings.min_price_for_decrease
        self.quick_rental_minutes = settings.quick_rental_minutes
        self.price_drop_days = settings.price_drop_days
        self._now = now

    def now(self) -> int:
        return int(self._now())

    def is_expired(self, end_time: int) -> bool:
        # An end time of 0 means the loan never started
        if not end_time:
            return False
        return self._now() > end_time

    def is_stale_listing(self, listed_at: Optional[int], days: Optional[int] = None) -> bool:
        if listed_at is None:
            return False
        if days is None:
            days = self.price_drop_days
        return self._now() - listed_at > days * SECONDS_PER_DAY

    def was_rented_quickly(
        self,
        listed_at: Optional[int],
        starting_time: Optional[int],
        minutes: Optional[int] = None,
    ) -> bool:
        """True when the loan started within ``minutes`` of being listed."""
        if not listed_at or not starting_time:
            return False
        if minutes is None:
            minutes = self.quick_rental_minutes
        return starting_time - listed_at < minutes * 60

    def increase(self, price: int) -> int:
        return math.ceil(Decimal(price) * self._increase)

    def decrease(self, price: int) -> int:
        return math.floor(Decimal(price) * self._decrease)

    def can_decrease(self, price: int) -> bool:
        return price > self.min_price_for_decrease
