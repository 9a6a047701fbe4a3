"""Read-only queries against the loan contract and the NFT collections."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from .abi import ERC721_ABI
from .exceptions import ChainIdMismatchError, NotFoundError
from .models import ZERO_ADDRESS, LoanSnapshot

logger = logging.getLogger(__name__)

# Contract-level rejections: the call reached the contract and it said no
_REJECTED = (ContractLogicError, BadFunctionCallOutput)


class ChainStateReader:
    """
    Thin async wrapper over the view functions the bot needs.

    Contract rejections are mapped to ``NotFoundError``; transport failures
    propagate so the caller can tell "does not exist" from "could not ask".
    """

    def __init__(self, w3: AsyncWeb3, loan_contract: Any):
        self.w3 = w3
        self.loan_contract = loan_contract
        self._collections: Dict[str, Any] = {}

    def _collection(self, address: str) -> Any:
        key = address.lower()
        contract = self._collections.get(key)
        if contract is None:
            contract = self.w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(address),
                abi=ERC721_ABI,
            )
            self._collections[key] = contract
        return contract

    async def owner_of(self, collection: str, token_id: int) -> str:
        try:
            return await self._collection(collection).functions.ownerOf(token_id).call()
        except _REJECTED as e:
            raise NotFoundError(
                "token", token_id, details={"collection": collection, "reason": str(e)}
            ) from e

    async def loan_snapshot(self, loan_id: int) -> LoanSnapshot:
        try:
            values = await self.loan_contract.functions.loanItems(loan_id).call()
        except _REJECTED as e:
            raise NotFoundError("loan", loan_id, details={"reason": str(e)}) from e

        snapshot = LoanSnapshot.from_contract(values)
        # Unknown ids read back as the zeroed struct
        if snapshot.owner.lower() == ZERO_ADDRESS:
            raise NotFoundError("loan", loan_id)
        return snapshot

    async def is_bundled(self, collection: str, token_id: int) -> bool:
        address = AsyncWeb3.to_checksum_address(collection)
        return bool(await self.loan_contract.functions.isBundled(address, token_id).call())

    async def enumerate_holdings(self, collection: str, owner: str) -> List[int]:
        """Token ids of ``collection`` held by ``owner``, highest index first."""
        contract = self._collection(collection)
        owner = AsyncWeb3.to_checksum_address(owner)
        balance = await contract.functions.balanceOf(owner).call()
        logger.info(f"Wallet holds {balance} tokens of {collection}")

        token_ids: List[int] = []
        for index in range(balance - 1, -1, -1):
            try:
                token_ids.append(await contract.functions.tokenOfOwnerByIndex(owner, index).call())
            except Exception as e:
                logger.warning(f"Skipping index {index} of {collection}: {e}")
        return token_ids

    async def locate(
        self,
        token_id: int,
        candidates: Iterable[str],
    ) -> Optional[Tuple[str, str]]:
        """Find the first candidate collection where ``token_id`` exists.

        Returns:
            (collection, owner) or None if no candidate knows the token
        """
        for collection in candidates:
            try:
                owner = await self.owner_of(collection, token_id)
            except NotFoundError:
                logger.debug(f"Token {token_id} not in {collection}")
                continue
            return collection, owner
        return None

    async def check_health(self, expected_chain_id: Optional[int] = None) -> bool:
        """True when the node answers and reports the expected chain."""
        try:
            if not await self.w3.is_connected():
                logger.error("RPC node is not reachable")
                return False
            chain_id = await self.w3.eth.chain_id
            if expected_chain_id is not None and chain_id != expected_chain_id:
                raise ChainIdMismatchError(expected=expected_chain_id, received=chain_id)
            block = await self.w3.eth.block_number
        except ChainIdMismatchError as e:
            logger.error(f"{e.message}. Refusing to trade on the wrong network")
            return False
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

        logger.info(f"RPC healthy: chain {chain_id}, block {block}")
        return True
