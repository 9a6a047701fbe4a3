"""Domain types shared by the store, the chain reader and the engine."""
from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Persisted key names, kept compatible with existing rental_prices.json files
_PRICE = "price"
_COLLECTION = "nftAddress"
_LOAN_ID = "loanId"
_BUNDLE_UUID = "bundleUUID"
_LISTED_AT = "timestamp"
_KNOWN_KEYS = frozenset((_PRICE, _COLLECTION, _LOAN_ID, _BUNDLE_UUID, _LISTED_AT))


def _whole(value: Any) -> int:
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"not a finite number: {value!r}")
    return int(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return _whole(value)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive address comparison; empty never matches."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


@dataclass
class RentalRecord:
    """Local belief about one owned asset."""
    token_id: int
    price: int
    collection_address: str = ""  # "" until resolved by an ownership check
    loan_id: Optional[int] = None
    bundle_uuid: Optional[str] = None
    listed_at: Optional[int] = None  # unix seconds of the last successful listing
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_active_loan(self) -> bool:
        return self.loan_id is not None

    @property
    def collection_known(self) -> bool:
        return bool(self.collection_address)

    def mark_listed(self, listing: "ListingResult", price: int, listed_at: int) -> None:
        """Record a successful on-chain listing."""
        self.price = price
        self.loan_id = listing.loan_id
        self.bundle_uuid = listing.correlation_token
        self.listed_at = listed_at

    def clear_loan(self) -> None:
        """Forget the on-chain loan; price history and listing time are kept."""
        self.loan_id = None
        self.bundle_uuid = None

    @classmethod
    def from_stored(cls, token_id: int, value: Any) -> Optional["RentalRecord"]:
        """Decode one persisted entry.

        Accepts the legacy shape (a bare price number) and the structured
        shape. Returns None for anything else so the caller can keep the raw
        value untouched.
        """
        if isinstance(value, bool):
            return None
        if isinstance(value, numbers.Real):
            try:
                return cls(token_id=token_id, price=_whole(value))
            except (ValueError, OverflowError):
                return None
        if isinstance(value, dict) and _PRICE in value:
            try:
                return cls(
                    token_id=token_id,
                    price=_whole(value[_PRICE]),
                    collection_address=value.get(_COLLECTION) or "",
                    loan_id=_optional_int(value.get(_LOAN_ID)),
                    bundle_uuid=value.get(_BUNDLE_UUID) or None,
                    listed_at=_optional_int(value.get(_LISTED_AT)),
                    extra={k: v for k, v in value.items() if k not in _KNOWN_KEYS},
                )
            except (TypeError, ValueError, OverflowError):
                return None
        return None

    def to_stored(self) -> Dict[str, Any]:
        """Encode to the persisted shape."""
        data: Dict[str, Any] = dict(self.extra)
        data[_PRICE] = self.price
        data[_COLLECTION] = self.collection_address
        if self.loan_id is not None:
            data[_LOAN_ID] = self.loan_id
        if self.bundle_uuid:
            data[_BUNDLE_UUID] = self.bundle_uuid
        if self.listed_at is not None:
            data[_LISTED_AT] = self.listed_at
        return data


@dataclass(frozen=True)
class LoanSnapshot:
    """On-chain loan state as read from the ledger."""
    owner: str
    loanee: str
    upfront_fee: int
    starting_time: int
    end_time: int
    bundle_uuid: str
    canceled: bool
    percentage_rewards: int = 0
    time_period: int = 0
    claimer: int = 0
    reserved_to: str = ZERO_ADDRESS

    @property
    def is_rented(self) -> bool:
        return bool(self.loanee) and self.loanee.lower() != ZERO_ADDRESS

    @classmethod
    def from_contract(cls, values: Any) -> "LoanSnapshot":
        """Build from the ``loanItems`` getter output (positional)."""
        (
            owner,
            loanee,
            upfront_fee,
            percentage_rewards,
            time_period,
            claimer,
            starting_time,
            end_time,
            reserved_to,
            bundle_uuid,
            canceled,
        ) = values
        return cls(
            owner=owner,
            loanee=loanee,
            upfront_fee=int(upfront_fee),
            starting_time=int(starting_time),
            end_time=int(end_time),
            bundle_uuid=bundle_uuid,
            canceled=bool(canceled),
            percentage_rewards=int(percentage_rewards),
            time_period=int(time_period),
            claimer=int(claimer),
            reserved_to=reserved_to,
        )


@dataclass(frozen=True)
class ListingResult:
    """A listing that was created and confirmed on-chain."""
    loan_id: int
    correlation_token: str
    tx_hash: str


class LoanState(str, Enum):
    """Reconciliation state of one asset."""
    UNTRACKED = "untracked"  # held in the wallet, absent from the store
    NO_ACTIVE_LOAN = "no_active_loan"
    MISSING = "missing"  # loan id unknown to the ledger
    CANCELED = "canceled"
    TRANSFERRED = "transferred"  # loan owner is no longer this wallet
    RENTED = "rented"
    EXPIRED = "expired"
    STALE = "stale"
    QUIET = "quiet"

    @property
    def drops_loan(self) -> bool:
        return self in (LoanState.MISSING, LoanState.CANCELED, LoanState.TRANSFERRED)


class Action(str, Enum):
    """What a reconciliation step did."""
    NONE = "none"
    LISTED = "listed"
    RELISTED = "relisted"
    CLEARED = "cleared"
    SKIPPED = "skipped"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class ReconcileOutcome:
    """Result of handling one asset during a pass."""
    token_id: int
    state: Optional[LoanState]  # None when the record could not be classified
    action: Action = Action.NONE
    flagged: bool = False  # local state found stale relative to the chain
    detail: str = ""
    loan_id: Optional[int] = None
    price: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "state": self.state.value if self.state else None,
            "action": self.action.value,
            "flagged": self.flagged,
            "detail": self.detail,
            "loan_id": self.loan_id,
            "price": self.price,
        }
