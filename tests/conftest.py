"""
Shared fixtures and chain fakes for rental-maker tests.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from web3 import Web3

from rental_maker.config import DEFAULT_COLLECTIONS, RentalSettings
from rental_maker.exceptions import NotFoundError
from rental_maker.models import ZERO_ADDRESS, ListingResult, LoanSnapshot
from rental_maker.pricing import PricingPolicy

NOW = 1_700_000_000
WALLET = "0xaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaAaA"
OTHER = "0x2222222222222222222222222222222222222222"
RENTER = "0x3333333333333333333333333333333333333333"
NFT, VOXIE = (Web3.to_checksum_address(a) for a in DEFAULT_COLLECTIONS)


def make_snapshot(
    owner: str = WALLET,
    loanee: str = ZERO_ADDRESS,
    starting_time: int = 0,
    end_time: int = 0,
    canceled: bool = False,
    bundle_uuid: str = "uuid",
) -> LoanSnapshot:
    return LoanSnapshot(
        owner=owner,
        loanee=loanee,
        upfront_fee=5 * 10**18,
        starting_time=starting_time,
        end_time=end_time,
        bundle_uuid=bundle_uuid,
        canceled=canceled,
    )


class FakeReader:
    """In-memory stand-in for ChainStateReader."""

    def __init__(self):
        self.healthy = True
        self.owners: Dict[Tuple[str, int], str] = {}
        self.loans: Dict[int, LoanSnapshot] = {}
        self.loan_errors: Dict[int, Exception] = {}
        # (collection, token) -> sequence of answers; the last one repeats
        self.bundled: Dict[Tuple[str, int], List[bool]] = {}
        self.holdings: Dict[str, List[int]] = {}
        self.holding_errors: Dict[str, Exception] = {}
        self.bundled_checks: List[Tuple[str, int]] = []
        self.health_checks: List[Optional[int]] = []

    def own(self, collection: str, token_id: int, owner: str = WALLET) -> None:
        self.owners[(collection.lower(), token_id)] = owner

    def hold(self, collection: str, *token_ids: int) -> None:
        self.holdings[collection.lower()] = list(token_ids)
        for token_id in token_ids:
            self.own(collection, token_id)

    def set_bundled(self, collection: str, token_id: int, *answers: bool) -> None:
        self.bundled[(collection.lower(), token_id)] = list(answers)

    async def owner_of(self, collection: str, token_id: int) -> str:
        owner = self.owners.get((collection.lower(), token_id))
        if owner is None:
            raise NotFoundError("token", token_id)
        return owner

    async def loan_snapshot(self, loan_id: int) -> LoanSnapshot:
        if loan_id in self.loan_errors:
            raise self.loan_errors[loan_id]
        snapshot = self.loans.get(loan_id)
        if snapshot is None:
            raise NotFoundError("loan", loan_id)
        return snapshot

    async def is_bundled(self, collection: str, token_id: int) -> bool:
        key = (collection.lower(), token_id)
        self.bundled_checks.append(key)
        answers = self.bundled.get(key)
        if not answers:
            return False
        if len(answers) > 1:
            return answers.pop(0)
        return answers[0]

    async def enumerate_holdings(self, collection: str, owner: str) -> List[int]:
        if collection.lower() in self.holding_errors:
            raise self.holding_errors[collection.lower()]
        return list(self.holdings.get(collection.lower(), []))

    async def locate(self, token_id: int, candidates: Sequence[str]):
        for collection in candidates:
            try:
                return collection, await self.owner_of(collection, token_id)
            except NotFoundError:
                continue
        return None

    async def check_health(self, expected_chain_id: Optional[int] = None) -> bool:
        self.health_checks.append(expected_chain_id)
        return self.healthy


class FakeSubmitter:
    """Records calls; listings succeed with increasing loan ids unless told otherwise."""

    def __init__(self, next_loan_id: int = 100):
        self.next_loan_id = next_loan_id
        self.cancel_result = True
        self.create_result = True
        self.cancels: List[int] = []
        self.creates: List[Tuple[List[str], List[int], int]] = []

    async def cancel(self, loan_id: int) -> bool:
        self.cancels.append(loan_id)
        return self.cancel_result

    async def create_listing(
        self, collections: Sequence[str], token_ids: Sequence[int], price: int
    ) -> Optional[ListingResult]:
        self.creates.append((list(collections), list(token_ids), price))
        if not self.create_result:
            return None
        loan_id = self.next_loan_id
        self.next_loan_id += 1
        return ListingResult(loan_id=loan_id, correlation_token=f"token{loan_id}", tx_hash=f"0x{loan_id:064x}")


class Sleeper:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def settings(tmp_path) -> RentalSettings:
    return RentalSettings(
        store_path=tmp_path / "rental_prices.json",
        retry_delay_seconds=0.5,
        confirmation_poll_seconds=1.0,
        confirmation_timeout_seconds=3.0,
        unbundle_poll_seconds=3.0,
        unbundle_timeout_seconds=45.0,
        relist_settle_seconds=2.0,
        listing_delay_seconds=5.0,
        _env_file=None,
    )


@pytest.fixture
def clock():
    return lambda: float(NOW)


@pytest.fixture
def pricing(settings, clock) -> PricingPolicy:
    return PricingPolicy(settings, now=clock)


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def submitter() -> FakeSubmitter:
    return FakeSubmitter()


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()
