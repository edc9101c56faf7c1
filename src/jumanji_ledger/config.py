"""
Runtime Configuration

Everything is read from environment variables, with café defaults:
30 SAR per person for the first hour and for each extra hour.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .core.pricing import (
    DEFAULT_CURRENCY,
    DEFAULT_EXTRA_HOUR_PRICE,
    DEFAULT_FIRST_HOUR_PRICE,
    PriceSchedule,
)


@dataclass
class BillingConfig:
    """Billing defaults used when a session has no promotion attached."""
    default_first_hour_price: float = DEFAULT_FIRST_HOUR_PRICE
    default_extra_hour_price: float = DEFAULT_EXTRA_HOUR_PRICE
    currency: str = DEFAULT_CURRENCY
    settlement_tolerance: float = 0.01  # Max drift between tender and computed bill

    @property
    def default_schedule(self) -> PriceSchedule:
        return PriceSchedule(
            first_hour_price=self.default_first_hour_price,
            extra_hour_price=self.default_extra_hour_price,
            currency=self.currency,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BillingConfig":
        env = os.environ if environ is None else environ
        config = cls(
            default_first_hour_price=float(env.get("DEFAULT_FIRST_HOUR_PRICE", DEFAULT_FIRST_HOUR_PRICE)),
            default_extra_hour_price=float(env.get("DEFAULT_EXTRA_HOUR_PRICE", DEFAULT_EXTRA_HOUR_PRICE)),
            currency=env.get("CURRENCY", DEFAULT_CURRENCY),
            settlement_tolerance=float(env.get("SETTLEMENT_TOLERANCE", 0.01)),
        )
        if config.default_first_hour_price < 0 or config.default_extra_hour_price < 0:
            raise ValueError("Default prices cannot be negative")
        return config
