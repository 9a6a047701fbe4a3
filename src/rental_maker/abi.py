"""Contract ABIs used by the rental-maker.

Only the members the bot calls are declared. A full loan-contract ABI can be
supplied with ``RENTAL_MAKER_LOAN_ABI_PATH``; it must contain the same names.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Optional

from .exceptions import ConfigurationError

LOAN_CREATED_EVENT = "LoanableItemCreated"

LOAN_ABI = json.loads('''[
    {"inputs":[{"internalType":"address[]","name":"nftAddresses","type":"address[]"},
               {"internalType":"uint256[]","name":"nftIds","type":"uint256[]"},
               {"internalType":"uint256","name":"upfrontFee","type":"uint256"},
               {"internalType":"uint8","name":"percentageRewards","type":"uint8"},
               {"internalType":"uint256","name":"timePeriod","type":"uint256"},
               {"internalType":"address","name":"reservedTo","type":"address"},
               {"internalType":"uint8","name":"claimer","type":"uint8"},
               {"internalType":"string","name":"bundleUUID","type":"string"}],
     "name":"createLoanableItem","outputs":[],
     "stateMutability":"nonpayable","type":"function"},
    {"inputs":[{"internalType":"uint256","name":"loanId","type":"uint256"}],
     "name":"cancelLoan","outputs":[],
     "stateMutability":"nonpayable","type":"function"},
    {"inputs":[{"internalType":"address","name":"nftAddress","type":"address"},
               {"internalType":"uint256","name":"tokenId","type":"uint256"}],
     "name":"isBundled","outputs":[{"internalType":"bool","name":"","type":"bool"}],
     "stateMutability":"view","type":"function"},
    {"inputs":[{"internalType":"uint256","name":"","type":"uint256"}],
     "name":"loanItems","outputs":[
        {"internalType":"address","name":"owner","type":"address"},
        {"internalType":"address","name":"loanee","type":"address"},
        {"internalType":"uint256","name":"upfrontFee","type":"uint256"},
        {"internalType":"uint8","name":"percentageRewards","type":"uint8"},
        {"internalType":"uint256","name":"timePeriod","type":"uint256"},
        {"internalType":"uint8","name":"claimer","type":"uint8"},
        {"internalType":"uint256","name":"startingTime","type":"uint256"},
        {"internalType":"uint256","name":"endTime","type":"uint256"},
        {"internalType":"address","name":"reservedTo","type":"address"},
        {"internalType":"string","name":"bundleUUID","type":"string"},
        {"internalType":"bool","name":"canceled","type":"bool"}],
     "stateMutability":"view","type":"function"},
    {"anonymous":false,"inputs":[
        {"indexed":true,"internalType":"uint256","name":"loanId","type":"uint256"},
        {"indexed":true,"internalType":"address","name":"owner","type":"address"},
        {"indexed":false,"internalType":"string","name":"bundleUUID","type":"string"}],
     "name":"LoanableItemCreated","type":"event"}
]''')

ERC721_ABI = json.loads('''[
    {"inputs":[{"internalType":"address","name":"owner","type":"address"}],
     "name":"balanceOf","outputs":[{"internalType":"uint256","name":"","type":"uint256"}],
     "stateMutability":"view","type":"function"},
    {"inputs":[{"internalType":"uint256","name":"tokenId","type":"uint256"}],
     "name":"ownerOf","outputs":[{"internalType":"address","name":"","type":"address"}],
     "stateMutability":"view","type":"function"},
    {"inputs":[{"internalType":"address","name":"owner","type":"address"},
               {"internalType":"uint256","name":"index","type":"uint256"}],
     "name":"tokenOfOwnerByIndex","outputs":[{"internalType":"uint256","name":"","type":"uint256"}],
     "stateMutability":"view","type":"function"}
]''')

_REQUIRED_LOAN_MEMBERS = ("createLoanableItem", "cancelLoan", "isBundled", "loanItems", LOAN_CREATED_EVENT)


def load_loan_abi(path: Optional[Path] = None) -> List[Any]:
    """Return the loan-contract ABI, from ``path`` when given."""
    if path is None:
        return LOAN_ABI

    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read loan ABI from {path}: {e}") from e

    # Hardhat/Foundry artifacts wrap the ABI
    if isinstance(data, dict):
        data = data.get("abi")
    if not isinstance(data, list):
        raise ConfigurationError(f"Loan ABI at {path} is not a list")

    names = {entry.get("name") for entry in data if isinstance(entry, dict)}
    missing = [name for name in _REQUIRED_LOAN_MEMBERS if name not in names]
    if missing:
        raise ConfigurationError(
            f"Loan ABI at {path} lacks {', '.join(missing)}",
            details={"missing": missing},
        )
    return data
