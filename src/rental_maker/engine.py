"""
Reconciliation of tracked records against on-chain loan state.

``classify`` is a pure function from (record, snapshot) to a ``LoanState``;
``ReconciliationEngine`` dispatches each state to its handler. Drift between
the store and the chain is always resolved toward the chain.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Set

from .config import RentalSettings
from .exceptions import NotFoundError
from .logging_config import asset_context
from .models import (
    Action,
    ListingResult,
    LoanSnapshot,
    LoanState,
    ReconcileOutcome,
    RentalRecord,
    same_address,
)
from .pricing import PricingPolicy
from .store import TrackingStore

logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    async def loan_snapshot(self, loan_id: int) -> LoanSnapshot: ...


class Submitter(Protocol):
    async def cancel(self, loan_id: int) -> bool: ...

    async def create_listing(
        self, collections: Sequence[str], token_ids: Sequence[int], price: int
    ) -> Optional[ListingResult]: ...


def classify(
    record: RentalRecord,
    snapshot: Optional[LoanSnapshot],
    wallet: str,
    pricing: PricingPolicy,
) -> LoanState:
    """Decide what state a record is in. ``snapshot`` is None when the loan is unknown."""
    if not record.has_active_loan:
        return LoanState.NO_ACTIVE_LOAN
    if snapshot is None:
        return LoanState.MISSING
    if snapshot.canceled:
        return LoanState.CANCELED
    if not same_address(snapshot.owner, wallet):
        return LoanState.TRANSFERRED
    # Expiry wins over rented and stale
    if pricing.is_expired(snapshot.end_time):
        return LoanState.EXPIRED
    if snapshot.is_rented:
        return LoanState.RENTED
    if pricing.is_stale_listing(record.listed_at) and pricing.can_decrease(record.price):
        return LoanState.STALE
    return LoanState.QUIET


class ReconciliationEngine:
    """Walks the store and brings each record in line with the chain."""

    def __init__(
        self,
        reader: Any,
        submitter: Submitter,
        pricing: PricingPolicy,
        settings: RentalSettings,
        wallet: str,
        snapshots: Optional[SnapshotSource] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.reader = reader
        self.submitter = submitter
        self.pricing = pricing
        self.settings = settings
        self.wallet = wallet
        # Loan snapshots come from the chain unless another source is given
        self.snapshots: SnapshotSource = snapshots or reader
        self._sleep = sleep
        # Token ids discovery must leave alone this pass
        self.attempted: Set[int] = set()

    async def reconcile_all(self, store: TrackingStore) -> List[ReconcileOutcome]:
        """Reconcile every record, one at a time, in store order."""
        self.attempted = set()
        outcomes = []
        for record in store.records():
            outcomes.append(await self.reconcile(record))
        return outcomes

    async def reconcile(self, record: RentalRecord) -> ReconcileOutcome:
        with asset_context(record.token_id, record.loan_id):
            try:
                return await self._reconcile(record)
            except Exception as e:
                logger.error(
                    f"Error reconciling token #{record.token_id} (loan {record.loan_id}): {e}",
                    exc_info=True,
                )
                return ReconcileOutcome(
                    token_id=record.token_id,
                    state=None,
                    action=Action.ERROR,
                    detail=str(e),
                    loan_id=record.loan_id,
                    price=record.price,
                )

    async def _reconcile(self, record: RentalRecord) -> ReconcileOutcome:
        snapshot = None
        if record.has_active_loan:
            try:
                snapshot = await self.snapshots.loan_snapshot(record.loan_id)
            except NotFoundError:
                logger.info(f"Loan #{record.loan_id} not found on-chain")

        state = classify(record, snapshot, self.wallet, self.pricing)
        logger.debug(f"Token #{record.token_id} classified as {state.value}")

        if state == LoanState.NO_ACTIVE_LOAN:
            return await self._list_unlisted(record)

        if state.drops_loan:
            logger.warning(
                f"Loan #{record.loan_id} for token #{record.token_id} is {state.value}, clearing local loan"
            )
            stale_loan = record.loan_id
            record.clear_loan()
            self.attempted.add(record.token_id)
            return ReconcileOutcome(
                token_id=record.token_id,
                state=state,
                action=Action.CLEARED,
                flagged=True,
                loan_id=stale_loan,
                price=record.price,
            )

        if state == LoanState.EXPIRED:
            price = record.price
            starting_time = snapshot.starting_time if snapshot.is_rented else None
            if self.pricing.was_rented_quickly(record.listed_at, starting_time):
                price = self.pricing.increase(record.price)
                logger.info(f"Token #{record.token_id} was rented quickly, raising price {record.price} -> {price}")
            return await self._relist(record, state, price)

        if state == LoanState.STALE:
            price = self.pricing.decrease(record.price)
            logger.info(
                f"Token #{record.token_id} listed for over {self.pricing.price_drop_days} days, "
                f"dropping price {record.price} -> {price}"
            )
            return await self._relist(record, state, price)

        # RENTED, QUIET
        return ReconcileOutcome(
            token_id=record.token_id, state=state, loan_id=record.loan_id, price=record.price
        )

    async def _list_unlisted(self, record: RentalRecord) -> ReconcileOutcome:
        state = LoanState.NO_ACTIVE_LOAN
        if record.collection_known:
            candidates: Sequence[str] = (record.collection_address,)
        else:
            candidates = self.settings.collections

        located = await self.reader.locate(record.token_id, candidates)
        if located is None or not same_address(located[1], self.wallet):
            logger.info(f"Token #{record.token_id} is not held by this wallet, keeping its price history")
            return ReconcileOutcome(
                token_id=record.token_id, state=state, action=Action.SKIPPED,
                detail="not owned", price=record.price,
            )

        collection = located[0]
        record.collection_address = collection

        if await self.reader.is_bundled(collection, record.token_id):
            logger.warning(
                f"Token #{record.token_id} is already bundled on-chain but has no local loan; "
                f"local store may be out of sync"
            )
            self.attempted.add(record.token_id)
            return ReconcileOutcome(
                token_id=record.token_id, state=state, action=Action.SKIPPED,
                flagged=True, detail="already bundled", price=record.price,
            )

        self.attempted.add(record.token_id)
        listing = await self.submitter.create_listing([collection], [record.token_id], record.price)
        if listing is None:
            logger.error(f"Could not list token #{record.token_id}, will retry next pass")
            return ReconcileOutcome(
                token_id=record.token_id, state=state, action=Action.FAILED,
                detail="create listing failed", price=record.price,
            )

        record.mark_listed(listing, record.price, self.pricing.now())
        logger.info(f"Listed token #{record.token_id} at {record.price} as loan #{listing.loan_id}")
        return ReconcileOutcome(
            token_id=record.token_id, state=state, action=Action.LISTED,
            loan_id=listing.loan_id, price=record.price,
        )

    async def _relist(self, record: RentalRecord, state: LoanState, price: int) -> ReconcileOutcome:
        """Cancel, wait for the asset to unlock, then list again at ``price``."""
        old_loan = record.loan_id
        self.attempted.add(record.token_id)

        def failed(detail: str) -> ReconcileOutcome:
            record.clear_loan()
            return ReconcileOutcome(
                token_id=record.token_id, state=state, action=Action.FAILED,
                detail=detail, loan_id=old_loan, price=record.price,
            )

        collection = await self._resolve_collection(record)
        if collection is None:
            return failed("collection unknown")

        if not await self.submitter.cancel(old_loan):
            logger.error(f"Could not cancel loan #{old_loan} for token #{record.token_id}")
            return failed("cancel failed")

        if not await self._wait_until_unbundled(collection, record.token_id):
            logger.error(f"Token #{record.token_id} still bundled after cancel, skipping relist this pass")
            return failed("unbundle not confirmed")

        await self._sleep(self.settings.relist_settle_seconds)

        listing = await self.submitter.create_listing([collection], [record.token_id], price)
        if listing is None:
            logger.error(f"Relist of token #{record.token_id} at {price} failed")
            return failed("relist failed")

        record.mark_listed(listing, price, self.pricing.now())
        logger.info(f"Relisted token #{record.token_id} at {price} as loan #{listing.loan_id} (was #{old_loan})")
        return ReconcileOutcome(
            token_id=record.token_id, state=state, action=Action.RELISTED,
            loan_id=listing.loan_id, price=price,
        )

    async def _resolve_collection(self, record: RentalRecord) -> Optional[str]:
        if record.collection_known:
            return record.collection_address
        located = await self.reader.locate(record.token_id, self.settings.collections)
        if located is None:
            logger.error(f"Cannot find a collection for token #{record.token_id}")
            return None
        record.collection_address = located[0]
        return located[0]

    async def _wait_until_unbundled(self, collection: str, token_id: int) -> bool:
        timeout = self.settings.unbundle_timeout_seconds
        poll = self.settings.unbundle_poll_seconds
        polls = max(1, math.ceil(timeout / poll)) if poll > 0 else 1

        logger.info(f"Waiting for token #{token_id} to be unbundled")
        for _ in range(polls):
            try:
                if not await self.reader.is_bundled(collection, token_id):
                    logger.info(f"Token #{token_id} is unbundled")
                    return True
            except Exception as e:
                logger.warning(f"Bundled check for token #{token_id} failed, will retry: {e}")
            await self._sleep(poll)

        logger.error(f"Timeout after {timeout}s waiting for token #{token_id} to be unbundled")
        return False
