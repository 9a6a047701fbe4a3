"""Receipt inspection helpers."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from web3.exceptions import InvalidEventABI, LogTopicError, MismatchedABI

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (MismatchedABI, LogTopicError, InvalidEventABI)


def receipt_succeeded(receipt: Optional[Mapping[str, Any]]) -> bool:
    """A receipt counts only if it exists and has status 1."""
    if not receipt:
        return False
    return receipt.get("status") == 1


def find_loan_id(event: Any, logs: Iterable[Mapping[str, Any]], contract_address: str) -> Optional[int]:
    """Return the loan id from the first matching creation event in ``logs``.

    Logs from other contracts and logs that do not decode as ``event`` are
    skipped. ``event`` is a bound web3 event, e.g.
    ``loan_contract.events.LoanableItemCreated()``.
    """
    for log in logs:
        if str(log.get("address", "")).lower() != contract_address.lower():
            continue
        try:
            decoded = event.process_log(log)
        except _DECODE_ERRORS:
            logger.debug(f"Log {log.get('logIndex')} is not a loan creation event")
            continue
        args = decoded["args"]
        if "loanId" in args:
            return int(args["loanId"])
        return int(next(iter(args.values())))
    return None
