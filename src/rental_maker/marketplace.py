"""Loan snapshots from the marketplace's rental-management API.

Serves the same ``loan_snapshot`` call as the chain reader from one HTTP
fetch per pass, which spares a contract read per tracked loan.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import MarketplaceError, NotFoundError
from .models import ZERO_ADDRESS, LoanSnapshot

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def _int_or_zero(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(value)


def snapshot_from_rental(rental: Dict[str, Any]) -> LoanSnapshot:
    """Map one ``rentals`` entry to a LoanSnapshot."""
    return LoanSnapshot(
        owner=rental.get("owner") or ZERO_ADDRESS,
        loanee=rental.get("loanee") or ZERO_ADDRESS,
        upfront_fee=_int_or_zero(rental.get("upfrontFee")),
        starting_time=_int_or_zero(rental.get("startingTime")),
        end_time=_int_or_zero(rental.get("endTime")),
        bundle_uuid=rental.get("bundleUUID") or "",
        canceled=bool(rental.get("cancelled")),
        percentage_rewards=_int_or_zero(rental.get("percentageRewards")),
        time_period=_int_or_zero(rental.get("timePeriod")),
        claimer=_int_or_zero(rental.get("claimer")),
        reserved_to=rental.get("reservedTo") or ZERO_ADDRESS,
    )


class MarketplaceLoanSource:
    """Caches the wallet's loans as reported by the marketplace API."""

    def __init__(
        self,
        base_url: str,
        wallet: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.wallet = wallet
        self.timeout = timeout
        self._transport = transport
        self._loans: Dict[int, LoanSnapshot] = {}

    async def refresh(self) -> int:
        """Fetch the wallet's loans. Returns how many were cached.

        Raises:
            MarketplaceError: on HTTP failure or an unexpected payload
        """
        loans: Dict[int, LoanSnapshot] = {}
        skip = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            while True:
                rentals = await self._fetch_page(client, skip)
                for rental in rentals:
                    try:
                        loans[int(rental["loanId"])] = snapshot_from_rental(rental)
                    except (KeyError, TypeError, ValueError) as e:
                        logger.warning(f"Skipping malformed marketplace rental: {e}")
                if len(rentals) < PAGE_SIZE:
                    break
                skip += PAGE_SIZE

        self._loans = loans
        logger.info(f"Marketplace reports {len(loans)} loans for {self.wallet}")
        return len(loans)

    async def _fetch_page(self, client: httpx.AsyncClient, skip: int) -> List[Any]:
        params = {"first": PAGE_SIZE, "skip": skip, "walletAddress": self.wallet.lower()}
        try:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MarketplaceError(f"Marketplace request failed: {e}", details={"skip": skip}) from e

        rentals = payload.get("rentals") if isinstance(payload, dict) else None
        if not isinstance(rentals, list):
            raise MarketplaceError("Marketplace response has no rentals list", details={"skip": skip})
        return rentals

    async def loan_snapshot(self, loan_id: int) -> LoanSnapshot:
        snapshot = self._loans.get(loan_id)
        if snapshot is None:
            raise NotFoundError("loan", loan_id, details={"source": "marketplace"})
        return snapshot
