"""
Tests for the transaction submitter.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import ContractLogicError, TransactionNotFound

from rental_maker.models import ZERO_ADDRESS
from rental_maker.submitter import TransactionSubmitter, is_transient_error

from conftest import NFT, WALLET

LOAN_CONTRACT = "0x564edcE4FAa31e48421100a9Da7B8EB4A38b3654"
TX_HASH = bytes.fromhex("ab" * 32)


class FakeEth:
    """Async eth namespace with just what the submitter touches."""

    def __init__(self, receipt=None):
        self.get_block = AsyncMock(return_value={"baseFeePerGas": 100})
        self.get_transaction_count = AsyncMock(return_value=7)
        self.send_raw_transaction = AsyncMock(return_value=TX_HASH)
        self.get_transaction_receipt = AsyncMock(return_value=receipt)
        self.priority_fee = 30
        self.current_block = 110

    async def _priority(self):
        return self.priority_fee

    async def _block(self):
        return self.current_block

    @property
    def max_priority_fee(self):
        return self._priority()

    @property
    def block_number(self):
        return self._block()


def success_receipt(logs=None):
    if logs is None:
        logs = [{"address": LOAN_CONTRACT, "logIndex": 0, "topics": [], "data": b""}]
    return {"status": 1, "blockNumber": 100, "logs": logs}


@pytest.fixture
def eth():
    return FakeEth(receipt=success_receipt())


@pytest.fixture
def contract_fn():
    fn = MagicMock()
    fn.estimate_gas = AsyncMock(return_value=100_000)
    fn.build_transaction = AsyncMock(side_effect=lambda tx: dict(tx))
    return fn


@pytest.fixture
def loan_contract(contract_fn):
    contract = MagicMock()
    contract.address = LOAN_CONTRACT
    contract.functions.createLoanableItem.return_value = contract_fn
    contract.functions.cancelLoan.return_value = contract_fn
    contract.events.LoanableItemCreated.return_value.process_log.return_value = {"args": {"loanId": 77}}
    return contract


@pytest.fixture
def account():
    account = MagicMock()
    account.address = WALLET
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"\x01\x02")
    return account


@pytest.fixture
def tx_submitter(eth, account, loan_contract, settings, sleeper):
    w3 = MagicMock()
    w3.eth = eth
    return TransactionSubmitter(w3, account, loan_contract, settings, sleep=sleeper)


class TestCreateListing:
    """createLoanableItem lifecycle."""

    @pytest.mark.asyncio
    async def test_success(self, tx_submitter, loan_contract, contract_fn, account, eth):
        result = await tx_submitter.create_listing([NFT], [42], 6)

        assert result.loan_id == 77
        assert result.tx_hash == "0x" + "ab" * 32
        assert len(result.correlation_token) == 32
        assert "-" not in result.correlation_token

        args = loan_contract.functions.createLoanableItem.call_args.args
        assert args == ([NFT], [42], 6 * 10**18, 0, 604800, ZERO_ADDRESS, 1, result.correlation_token)

        tx = contract_fn.build_transaction.call_args.args[0]
        assert tx["from"] == WALLET
        assert tx["nonce"] == 7
        assert tx["gas"] == 200_000
        assert tx["maxFeePerGas"] == (2 * 100 + 30) * 2
        assert tx["maxPriorityFeePerGas"] == 60
        eth.get_transaction_count.assert_awaited_with(WALLET, "pending")
        eth.send_raw_transaction.assert_awaited_once_with(b"\x01\x02")

    @pytest.mark.asyncio
    async def test_each_attempt_gets_fresh_token(self, tx_submitter, loan_contract, eth):
        eth.get_transaction_receipt.side_effect = [
            {"status": 0, "blockNumber": 100, "logs": []},
            success_receipt(),
        ]

        result = await tx_submitter.create_listing([NFT], [42], 6)

        assert result.loan_id == 77
        calls = loan_contract.functions.createLoanableItem.call_args_list
        assert len(calls) == 2
        assert calls[0].args[7] != calls[1].args[7]
        assert calls[1].args[7] == result.correlation_token

    @pytest.mark.asyncio
    async def test_missing_event_exhausts_retries(self, tx_submitter, eth, contract_fn, sleeper):
        eth.get_transaction_receipt.return_value = success_receipt(logs=[])

        assert await tx_submitter.create_listing([NFT], [42], 6) is None
        assert contract_fn.build_transaction.await_count == 3
        assert sleeper.calls == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_logs_from_other_contracts_are_ignored(self, tx_submitter, eth, loan_contract):
        eth.get_transaction_receipt.return_value = success_receipt(
            logs=[{"address": NFT, "logIndex": 0, "topics": [], "data": b""}]
        )

        assert await tx_submitter.create_listing([NFT], [42], 6) is None
        loan_contract.events.LoanableItemCreated.return_value.process_log.assert_not_called()

    @pytest.mark.asyncio
    async def test_revert_during_estimate_never_raises(self, tx_submitter, contract_fn, sleeper):
        contract_fn.estimate_gas.side_effect = ContractLogicError("execution reverted")

        assert await tx_submitter.create_listing([NFT], [42], 6) is None
        assert contract_fn.estimate_gas.await_count == 3
        contract_fn.build_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_wait_timeout_falls_back_to_manual_fetch(self, tx_submitter, eth, sleeper):
        # Never reaches five confirmations while polling
        eth.current_block = 100

        result = await tx_submitter.create_listing([NFT], [42], 6)

        assert result.loan_id == 77
        # three polls then one manual fetch
        assert eth.get_transaction_receipt.await_count == 4
        assert sleeper.calls == [1.0, 1.0, 1.0]

    @pytest.mark.asyncio
    async def test_no_receipt_is_a_failed_attempt(self, tx_submitter, eth, contract_fn):
        eth.get_transaction_receipt.side_effect = TransactionNotFound("not found")

        assert await tx_submitter.create_listing([NFT], [42], 6) is None
        assert eth.send_raw_transaction.await_count == 3


class TestCancel:
    """cancelLoan lifecycle."""

    @pytest.mark.asyncio
    async def test_success(self, tx_submitter, loan_contract):
        assert await tx_submitter.cancel(7) is True
        loan_contract.functions.cancelLoan.assert_called_with(7)

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, tx_submitter, eth):
        eth.send_raw_transaction.side_effect = [TimeoutError("request timeout"), TX_HASH]

        assert await tx_submitter.cancel(7) is True
        assert eth.send_raw_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_returns_false(self, tx_submitter, eth):
        eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 100, "logs": []}

        assert await tx_submitter.cancel(7) is False
        assert eth.send_raw_transaction.await_count == 3


class RPCCodeError(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


class TestTransientErrors:
    """Classification of retryable node errors."""

    def test_timeout_types(self):
        assert is_transient_error(TimeoutError()) is True

    def test_timeout_in_message(self):
        assert is_transient_error(RuntimeError("Gateway Timeout")) is True

    @pytest.mark.parametrize("code", [-32000, -32005, -32064])
    def test_rpc_codes(self, code):
        assert is_transient_error(RPCCodeError("busy", code)) is True

    def test_error_dict_argument(self):
        assert is_transient_error(ValueError({"code": -32064, "message": "busy"})) is True

    def test_other_errors(self):
        assert is_transient_error(ValueError("nonce too low")) is False
        assert is_transient_error(RPCCodeError("bad", -32602)) is False
