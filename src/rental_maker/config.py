"""Settings for the rental market-maker.

One ``RentalSettings`` instance is built at process start and handed to
every component explicitly; nothing reads configuration from globals.
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

# Voxies lending contract and the two ERC-721 collections it lends (Polygon)
DEFAULT_LOAN_CONTRACT = "0x564edcE4FAa31e48421100a9Da7B8EB4A38b3654"
DEFAULT_COLLECTIONS = (
    "0x8F8E18DbEbb8CA4fc2Bc7e3425FcdFd5264E33E8",
    "0xfbe3AB0cbFbD17d06bdD73aA3F55aaf038720F59",
)


class RentalSettings(BaseSettings):
    """Immutable configuration for one rental-maker process."""

    model_config = SettingsConfigDict(
        env_prefix="RENTAL_MAKER_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    # Chain
    rpc_url: str = Field(
        default="https://polygon-rpc.com/",
        validation_alias=AliasChoices("RENTAL_MAKER_RPC_URL", "RPC_URL"),
    )
    chain_id: Optional[int] = 137
    poa_middleware: bool = True
    private_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("RENTAL_MAKER_PRIVATE_KEY", "PRIVATE_KEY"),
    )

    # Contracts
    loan_contract_address: str = DEFAULT_LOAN_CONTRACT
    collection_addresses: str = ",".join(DEFAULT_COLLECTIONS)
    loan_abi_path: Optional[Path] = None

    # Tracking store
    store_path: Path = Path("rental_prices.json")

    # Transaction lifecycle
    fee_multiplier: int = 2
    gas_limit_multiplier: Decimal = Decimal("2")
    confirmation_blocks: int = 5
    confirmation_timeout_seconds: float = 300.0
    confirmation_poll_seconds: float = 2.0
    max_retry_attempts: int = 3
    retry_delay_seconds: float = 5.0

    # Listing parameters
    rental_duration_seconds: int = 604800  # 7 days
    price_decimals: int = 18
    default_rental_price: int = 5

    # Pricing policy
    price_increase_factor: Decimal = Decimal("1.1")
    price_decrease_factor: Decimal = Decimal("0.9")
    min_price_for_decrease: int = 3
    quick_rental_minutes: int = 180
    price_drop_days: int = 3

    # Pacing
    unbundle_timeout_seconds: float = 45.0
    unbundle_poll_seconds: float = 3.0
    relist_settle_seconds: float = 2.0
    listing_delay_seconds: float = 5.0

    # Scheduling
    cron_schedule: str = "0 */6 * * *"

    # Marketplace aggregation API
    marketplace_url: str = "https://market.voxies.io/api/marketplace/management/for-rent"
    marketplace_timeout_seconds: float = 30.0
    prefer_marketplace: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("loan_contract_address")
    @classmethod
    def checksum_loan_contract(cls, v: str) -> str:
        return Web3.to_checksum_address(v)

    @field_validator("collection_addresses")
    @classmethod
    def checksum_collections(cls, v: str) -> str:
        """Accept a comma-separated list and normalise each entry."""
        addresses = [a.strip() for a in v.split(",") if a.strip()]
        if not addresses:
            raise ValueError("at least one collection address is required")
        return ",".join(Web3.to_checksum_address(a) for a in addresses)

    @field_validator("fee_multiplier", "max_retry_attempts", "confirmation_blocks")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @property
    def collections(self) -> Tuple[str, ...]:
        """Checksummed collection addresses, probe order preserved."""
        return tuple(self.collection_addresses.split(","))


@lru_cache
def load_settings(env_file: str | None = None) -> RentalSettings:
    """Load RentalSettings once per process.

    Without ``env_file`` the default ``.env`` in the working directory is read.
    """
    if env_file is None:
        return RentalSettings()
    return RentalSettings(_env_file=Path(env_file))
