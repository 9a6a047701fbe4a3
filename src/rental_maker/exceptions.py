"""Exception hierarchy for rental-maker.

All rental-maker exceptions inherit from RentalMakerError, enabling:
- One ``except`` clause at the pass boundary
- Structured log payloads via ``to_dict()``
- Machine-readable error codes in pass reports

Chain failures for a single asset are handled inside the engine and the
submitter; only pass-level problems (unreadable store, unhealthy node,
bad configuration) are expected to reach the runner.
"""
from __future__ import annotations

from typing import Any, Optional


class RentalMakerError(Exception):
    """Base exception for all rental-maker errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "STORE_ERROR")
        details: Optional additional context
    """

    error_code: str = "RENTAL_MAKER_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a loggable dictionary."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(RentalMakerError):
    """Settings are missing or inconsistent."""

    error_code = "CONFIGURATION_ERROR"


class NotFoundError(RentalMakerError):
    """A token or loan does not exist where it was looked up."""

    error_code = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} '{resource_id}' not found"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = str(resource_id)
        super().__init__(message, details=details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class StoreError(RentalMakerError):
    """The tracking store could not be read or written."""

    error_code = "STORE_ERROR"

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if path:
            details["path"] = path
        super().__init__(message, details=details)


class HealthCheckError(RentalMakerError):
    """The ledger node or signer identity is unavailable."""

    error_code = "HEALTH_CHECK_FAILED"


class ChainIdMismatchError(HealthCheckError):
    """Connected node reports a different chain than configured."""

    error_code = "CHAIN_ID_MISMATCH"

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            f"Chain ID mismatch: expected {expected}, got {received}",
            details={"expected": expected, "received": received},
        )
        self.expected = expected
        self.received = received


class TransactionFailedError(RentalMakerError):
    """A submitted transaction reverted or produced no usable result."""

    error_code = "TRANSACTION_FAILED"

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(message, details=details)
        self.tx_hash = tx_hash


class MarketplaceError(RentalMakerError):
    """The marketplace aggregation API returned an unusable response."""

    error_code = "MARKETPLACE_ERROR"
