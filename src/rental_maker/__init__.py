"""rental-maker: keeps an NFT lending wallet listed for rent on-chain."""
from __future__ import annotations

from .config import RentalSettings, load_settings
from .engine import ReconciliationEngine, classify
from .exceptions import (
    ChainIdMismatchError,
    ConfigurationError,
    HealthCheckError,
    MarketplaceError,
    NotFoundError,
    RentalMakerError,
    StoreError,
    TransactionFailedError,
)
from .models import Action, ListingResult, LoanSnapshot, LoanState, ReconcileOutcome, RentalRecord
from .pricing import PricingPolicy
from .runner import PassReport, RentalRunner, build_runner
from .store import TrackingStore

__version__ = "0.1.0"

__all__ = [
    "Action",
    "ChainIdMismatchError",
    "ConfigurationError",
    "HealthCheckError",
    "ListingResult",
    "LoanSnapshot",
    "LoanState",
    "MarketplaceError",
    "NotFoundError",
    "PassReport",
    "PricingPolicy",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "RentalMakerError",
    "RentalRecord",
    "RentalRunner",
    "RentalSettings",
    "StoreError",
    "TrackingStore",
    "TransactionFailedError",
    "build_runner",
    "classify",
    "load_settings",
]
