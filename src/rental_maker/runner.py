"""
One reconciliation pass, end to end.

    health gate -> load store -> reconcile tracked records
                -> discover untracked holdings -> save store

Pass-level problems (unhealthy node, unreadable store) skip the pass without
touching anything. Problems after the store is loaded are logged, the store
is saved as far as it got, and the pass reports the error.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware

from .abi import load_loan_abi
from .chain_reader import ChainStateReader
from .config import RentalSettings
from .discovery import DiscoveryScanner
from .engine import ReconciliationEngine, SnapshotSource
from .exceptions import ConfigurationError, MarketplaceError, StoreError
from .logging_config import LogContext, generate_pass_id
from .marketplace import MarketplaceLoanSource
from .models import Action, ReconcileOutcome
from .pricing import PricingPolicy
from .store import TrackingStore
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


@dataclass
class PassReport:
    """Summary of one pass."""
    pass_id: str
    started_at: float
    finished_at: Optional[float] = None
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    outcomes: List[ReconcileOutcome] = field(default_factory=list)

    def _count(self, *actions: Action) -> int:
        return sum(1 for o in self.outcomes if o.action in actions)

    @property
    def listed(self) -> int:
        return self._count(Action.LISTED)

    @property
    def relisted(self) -> int:
        return self._count(Action.RELISTED)

    @property
    def cleared(self) -> int:
        return self._count(Action.CLEARED)

    @property
    def failed(self) -> int:
        return self._count(Action.FAILED, Action.ERROR)

    @property
    def flagged(self) -> int:
        return sum(1 for o in self.outcomes if o.flagged)

    def skip(self, reason: str) -> "PassReport":
        self.skipped = True
        self.skip_reason = reason
        self.finished_at = time.time()
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pass_id": self.pass_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "error": self.error,
            "summary": {
                "listed": self.listed,
                "relisted": self.relisted,
                "cleared": self.cleared,
                "flagged": self.flagged,
                "failed": self.failed,
            },
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class RentalRunner:
    """Runs passes for one wallet. Passes must not overlap."""

    def __init__(
        self,
        settings: RentalSettings,
        reader: Any,
        submitter: Any,
        store: TrackingStore,
        wallet: str,
        marketplace: Optional[MarketplaceLoanSource] = None,
        pricing: Optional[PricingPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.reader = reader
        self.submitter = submitter
        self.store = store
        self.wallet = wallet
        self.marketplace = marketplace
        self.pricing = pricing or PricingPolicy(settings)
        self._sleep = sleep
        self.discovery = DiscoveryScanner(reader, submitter, self.pricing, settings, wallet, sleep=sleep)

    async def _snapshot_source(self) -> Optional[SnapshotSource]:
        """Marketplace cache when enabled and reachable, else None (chain reads)."""
        if self.marketplace is None:
            return None
        try:
            await self.marketplace.refresh()
        except MarketplaceError as e:
            logger.warning(f"{e.message}; reading loan state from chain this pass")
            return None
        return self.marketplace

    async def run_pass(self) -> PassReport:
        pass_id = generate_pass_id()
        report = PassReport(pass_id=pass_id, started_at=time.time())

        with LogContext(pass_id=pass_id):
            logger.info(f"Starting pass for wallet {self.wallet}")

            if not self.wallet:
                logger.error("No signer wallet configured, skipping pass")
                return report.skip("no signer")
            if not await self.reader.check_health(self.settings.chain_id):
                logger.error("Health check failed, skipping pass")
                return report.skip("unhealthy")

            try:
                self.store.load()
            except StoreError as e:
                logger.error(f"Skipping pass: {e.message}", extra={"error_code": e.error_code, "details": e.details})
                return report.skip("store unreadable")

            try:
                engine = ReconciliationEngine(
                    self.reader,
                    self.submitter,
                    self.pricing,
                    self.settings,
                    self.wallet,
                    snapshots=await self._snapshot_source(),
                    sleep=self._sleep,
                )
                report.outcomes.extend(await engine.reconcile_all(self.store))
                report.outcomes.extend(await self.discovery.scan(self.store, skip=engine.attempted))
            except Exception as e:
                logger.error(f"Pass aborted: {e}", exc_info=True)
                report.error = str(e)

            try:
                self.store.save()
            except StoreError as e:
                logger.error(f"Could not persist store: {e.message}", extra={"error_code": e.error_code, "details": e.details})
                report.error = report.error or e.message

            report.finished_at = time.time()
            logger.info(
                f"Pass finished: {report.listed} listed, {report.relisted} relisted, "
                f"{report.cleared} cleared, {report.flagged} flagged, {report.failed} failed"
            )
        return report


def build_runner(settings: RentalSettings) -> RentalRunner:
    """Wire web3, the signer and every component from settings."""
    if settings.private_key is None:
        raise ConfigurationError("PRIVATE_KEY is not set")
    try:
        account = Account.from_key(settings.private_key.get_secret_value())
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid private key: {e}") from e

    w3 = AsyncWeb3(AsyncHTTPProvider(settings.rpc_url))
    if settings.poa_middleware:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    loan_contract = w3.eth.contract(
        address=settings.loan_contract_address,
        abi=load_loan_abi(settings.loan_abi_path),
    )

    marketplace = None
    if settings.prefer_marketplace:
        marketplace = MarketplaceLoanSource(
            settings.marketplace_url,
            account.address,
            timeout=settings.marketplace_timeout_seconds,
        )

    logger.info(f"Signer {account.address}, loan contract {settings.loan_contract_address}")
    return RentalRunner(
        settings=settings,
        reader=ChainStateReader(w3, loan_contract),
        submitter=TransactionSubmitter(w3, account, loan_contract, settings),
        store=TrackingStore(settings.store_path),
        wallet=account.address,
        marketplace=marketplace,
    )
