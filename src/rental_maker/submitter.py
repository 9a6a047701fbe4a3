"""
Signed transaction lifecycle for the loan contract.

Each attempt:
1. Bids EIP-1559 fees (2 x base fee + tip, scaled by ``fee_multiplier``)
2. Estimates gas and pads it by ``gas_limit_multiplier``
3. Signs locally and broadcasts the raw transaction
4. Polls until ``confirmation_blocks`` confirmations, with one manual
   receipt fetch if the wait times out
5. Requires a status-1 receipt (and, for listings, a creation event)

Failed attempts are retried after a fixed delay. Callers only ever see
``True``/``False`` or a ``ListingResult``/``None``.
"""
from __future__ import annotations

import asyncio
import logging
import math
import uuid
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple, TypeVar

from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, TransactionNotFound

from .abi import LOAN_CREATED_EVENT
from .config import RentalSettings
from .exceptions import TransactionFailedError
from .models import ZERO_ADDRESS, ListingResult
from .receipts import find_loan_id, receipt_succeeded

logger = logging.getLogger(__name__)

T = TypeVar("T")

# JSON-RPC codes seen from congested or rate-limited Polygon nodes
TRANSIENT_RPC_CODES = frozenset((-32000, -32005, -32064))

# createLoanableItem constants
REWARD_PERCENTAGE = 0
CLAIMER_MODE = 1


def _rpc_error_code(error: BaseException) -> Optional[int]:
    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "rpc_response", None)
    if isinstance(response, dict) and isinstance(response.get("error"), dict):
        return response["error"].get("code")
    if error.args and isinstance(error.args[0], dict):
        return error.args[0].get("code")
    return None


def is_transient_error(error: BaseException) -> bool:
    """Timeouts and node-side congestion errors."""
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, TimeExhausted)):
        return True
    if _rpc_error_code(error) in TRANSIENT_RPC_CODES:
        return True
    return "timeout" in str(error).lower()


class TransactionSubmitter:
    """Submits cancel and create-listing transactions for one signer."""

    def __init__(
        self,
        w3: AsyncWeb3,
        account: Any,
        loan_contract: Any,
        settings: RentalSettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.w3 = w3
        self.account = account
        self.loan_contract = loan_contract
        self.settings = settings
        self._sleep = sleep

    @property
    def address(self) -> str:
        return self.account.address

    async def cancel(self, loan_id: int) -> bool:
        """Cancel a loan. Returns True once the cancellation is confirmed."""

        async def attempt(n: int) -> bool:
            fn = self.loan_contract.functions.cancelLoan(loan_id)
            await self._submit(fn, f"cancel loan #{loan_id}")
            logger.info(f"Loan #{loan_id} canceled")
            return True

        return bool(await self._with_retries(f"cancel loan #{loan_id}", attempt))

    async def create_listing(
        self,
        collections: Sequence[str],
        token_ids: Sequence[int],
        price: int,
    ) -> Optional[ListingResult]:
        """List tokens for rent at ``price`` whole units of the fee token."""
        addresses = [AsyncWeb3.to_checksum_address(c) for c in collections]
        ids = [int(t) for t in token_ids]
        upfront_fee = price * 10 ** self.settings.price_decimals

        async def attempt(n: int) -> ListingResult:
            correlation_token = uuid.uuid4().hex
            fn = self.loan_contract.functions.createLoanableItem(
                addresses,
                ids,
                upfront_fee,
                REWARD_PERCENTAGE,
                self.settings.rental_duration_seconds,
                ZERO_ADDRESS,
                CLAIMER_MODE,
                correlation_token,
            )
            receipt, tx_hash = await self._submit(
                fn, f"create listing {correlation_token} for tokens {ids} at {price}"
            )

            event = getattr(self.loan_contract.events, LOAN_CREATED_EVENT)()
            loan_id = find_loan_id(event, receipt.get("logs") or [], self.loan_contract.address)
            if loan_id is None:
                raise TransactionFailedError(
                    f"No {LOAN_CREATED_EVENT} event in receipt for {correlation_token}",
                    tx_hash=tx_hash,
                )
            logger.info(f"Created loan #{loan_id} for tokens {ids} (uuid {correlation_token})")
            return ListingResult(loan_id=loan_id, correlation_token=correlation_token, tx_hash=tx_hash)

        return await self._with_retries(f"create listing for tokens {ids}", attempt)

    async def _with_retries(
        self,
        label: str,
        attempt: Callable[[int], Awaitable[T]],
    ) -> Optional[T]:
        max_attempts = self.settings.max_retry_attempts
        delay = self.settings.retry_delay_seconds

        for n in range(1, max_attempts + 1):
            try:
                return await attempt(n)
            except TransactionFailedError as e:
                logger.error(f"{label} failed (attempt {n}/{max_attempts}): {e.message}")
            except Exception as e:
                if is_transient_error(e):
                    logger.warning(f"{label} hit a transient error (attempt {n}/{max_attempts}): {e}")
                else:
                    logger.error(f"{label} failed (attempt {n}/{max_attempts}): {e}", exc_info=True)

            if n < max_attempts:
                logger.info(f"Retry {n + 1}/{max_attempts} for {label} in {delay}s")
                await self._sleep(delay)

        logger.error(f"Giving up on {label} after {max_attempts} attempts")
        return None

    async def _submit(self, fn: Any, label: str) -> Tuple[Mapping[str, Any], str]:
        """Sign, send and confirm one contract call. Returns (receipt, tx_hash)."""
        sender = self.account.address
        fees = await self._fee_params()
        estimated = await fn.estimate_gas({"from": sender})
        gas_limit = int(Decimal(estimated) * self.settings.gas_limit_multiplier)
        nonce = await self.w3.eth.get_transaction_count(sender, "pending")

        tx = await fn.build_transaction({
            "from": sender,
            "nonce": nonce,
            "gas": gas_limit,
            **fees,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = AsyncWeb3.to_hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info(f"Sent {label}: {tx_hash} (gas {gas_limit}, nonce {nonce})")

        try:
            receipt = await self._wait_for_confirmation(tx_hash)
        except TimeoutError:
            logger.warning(f"Timed out waiting for {tx_hash}, fetching receipt manually")
            receipt = await self._get_receipt(tx_hash)

        if not receipt_succeeded(receipt):
            status = receipt.get("status") if receipt else None
            raise TransactionFailedError(
                f"Transaction for {label} did not succeed (status {status})",
                tx_hash=tx_hash,
            )
        return receipt, tx_hash

    async def _fee_params(self) -> Dict[str, int]:
        """Network-suggested EIP-1559 fees, scaled by ``fee_multiplier``."""
        block = await self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas") or 0
        priority_fee = await self.w3.eth.max_priority_fee
        multiplier = self.settings.fee_multiplier
        return {
            "maxFeePerGas": (2 * base_fee + priority_fee) * multiplier,
            "maxPriorityFeePerGas": priority_fee * multiplier,
        }

    async def _get_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        try:
            return await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def _wait_for_confirmation(self, tx_hash: str) -> Mapping[str, Any]:
        """Poll until the receipt has enough confirmations.

        A reverted receipt is returned immediately.

        Raises:
            TimeoutError: if not confirmed within ``confirmation_timeout_seconds``
        """
        required = self.settings.confirmation_blocks
        poll = self.settings.confirmation_poll_seconds
        timeout = self.settings.confirmation_timeout_seconds
        polls = max(1, math.ceil(timeout / poll)) if poll > 0 else 1

        for _ in range(polls):
            receipt = await self._get_receipt(tx_hash)
            if receipt is not None:
                if receipt.get("status") != 1:
                    return receipt
                current_block = await self.w3.eth.block_number
                confirmations = current_block - receipt["blockNumber"] + 1
                if confirmations >= required:
                    logger.info(f"Transaction {tx_hash} confirmed with {confirmations} confirmations")
                    return receipt
                logger.debug(f"Transaction {tx_hash} has {confirmations} confirmations, waiting for {required}")
            await self._sleep(poll)

        raise TimeoutError(f"Transaction {tx_hash} not confirmed after {timeout}s")
