"""Finds wallet holdings that the store does not account for and lists them."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from .config import RentalSettings
from .logging_config import asset_context
from .models import Action, LoanState, ReconcileOutcome, RentalRecord, same_address
from .pricing import PricingPolicy
from .store import TrackingStore

logger = logging.getLogger(__name__)


class DiscoveryScanner:
    """Enumerates each configured collection and lists untracked tokens."""

    def __init__(
        self,
        reader: Any,
        submitter: Any,
        pricing: PricingPolicy,
        settings: RentalSettings,
        wallet: str,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.reader = reader
        self.submitter = submitter
        self.pricing = pricing
        self.settings = settings
        self.wallet = wallet
        self._sleep = sleep

    @staticmethod
    def needs_listing(existing: Optional[RentalRecord], collection: str) -> bool:
        """Untracked, tracked without a loan, or tracked under another collection."""
        if existing is None or not existing.has_active_loan:
            return True
        return not same_address(existing.collection_address, collection)

    async def scan(self, store: TrackingStore, skip: Iterable[int] = ()) -> List[ReconcileOutcome]:
        skip = set(skip)
        outcomes: List[ReconcileOutcome] = []

        for collection in self.settings.collections:
            logger.info(f"Scanning {collection} for untracked tokens")
            try:
                token_ids = await self.reader.enumerate_holdings(collection, self.wallet)
            except Exception as e:
                logger.error(f"Could not enumerate holdings of {collection}: {e}", exc_info=True)
                continue

            for token_id in token_ids:
                if token_id in skip:
                    logger.debug(f"Token #{token_id} already handled this pass")
                    continue
                existing = store.get(token_id)
                if not self.needs_listing(existing, collection):
                    continue
                with asset_context(token_id):
                    outcome = await self._list_discovered(store, collection, token_id, existing)
                if outcome is not None:
                    outcomes.append(outcome)

        return outcomes

    async def _list_discovered(
        self,
        store: TrackingStore,
        collection: str,
        token_id: int,
        existing: Optional[RentalRecord],
    ) -> Optional[ReconcileOutcome]:
        state = LoanState.UNTRACKED if existing is None else LoanState.NO_ACTIVE_LOAN
        try:
            bundled = await self.reader.is_bundled(collection, token_id)
        except Exception as e:
            logger.error(f"Bundled check failed for token #{token_id}: {e}")
            return ReconcileOutcome(token_id=token_id, state=state, action=Action.ERROR, detail=str(e))

        if bundled:
            logger.warning(
                f"Token #{token_id} in {collection} is already bundled on-chain; "
                f"local store may be out of sync"
            )
            return ReconcileOutcome(
                token_id=token_id, state=state, action=Action.SKIPPED,
                flagged=True, detail="already bundled",
            )

        price = self.settings.default_rental_price
        if existing is not None and existing.price > 0:
            price = existing.price

        logger.info(f"Listing discovered token #{token_id} from {collection} at {price}")
        listing = await self.submitter.create_listing([collection], [token_id], price)
        if listing is None:
            logger.error(f"Failed to list discovered token #{token_id}")
            outcome = ReconcileOutcome(
                token_id=token_id, state=state, action=Action.FAILED,
                detail="create listing failed", price=price,
            )
        else:
            record = RentalRecord(
                token_id=token_id,
                price=price,
                collection_address=collection,
                extra=dict(existing.extra) if existing is not None else {},
            )
            record.mark_listed(listing, price, self.pricing.now())
            store.put(record)
            outcome = ReconcileOutcome(
                token_id=token_id, state=state, action=Action.LISTED,
                loan_id=listing.loan_id, price=price,
            )

        await self._sleep(self.settings.listing_delay_seconds)
        return outcome
