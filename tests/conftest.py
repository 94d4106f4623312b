"""
Shared fakes for the test suite

FakeRpc stands in for the Soroban RPC node. It decodes the contract call in
each transaction and runs it against FakeContract, an in-memory model of the
LumiLend pool contract that fails with the same error codes.
"""

import asyncio
import copy
from typing import Dict, List, Optional

import pytest
from stellar_sdk import Account, Keypair, StrKey, TransactionEnvelope, scval

from protocols.base import LedgerRpc, SimulationResult, StatusResult, SubmitResult, TxStatus
from protocols.codec import address_to_str
from protocols.errors import AccountNotFound
from protocols.lumilend import LumiLendPool
from protocols.wallet import KeypairWallet
from utils.store import InMemoryStore

NETWORK_PASSPHRASE = "Test SDF Network ; September 2015"
CONTRACT_ID = StrKey.encode_contract(b"\x07" * 32)
SIMULATION_SOURCE = Keypair.from_raw_ed25519_seed(b"\x01" * 32).public_key
DAY = 86400


class ContractFailure(Exception):
    def __init__(self, code: int):
        self.code = code
        super().__init__(f"HostError: Error(Contract, #{code})")


class FakeContract:
    """In-memory model of the pool contract, amounts in stroops"""

    def __init__(self, interest_rate_bps: int = 500, now: int = 1_700_000_000):
        self.total_deposited = 0
        self.total_lent = 0
        self.interest_rate_bps = interest_rate_bps
        self.now = now
        self.lenders: Dict[str, dict] = {}
        self.loans: Dict[int, dict] = {}
        self.active: Dict[str, int] = {}
        self.next_loan_id = 1

    def add_loan(self, borrower: str, principal: int, status: str = "Active", loan_id: Optional[int] = None) -> int:
        loan_id = loan_id or self.next_loan_id
        self.next_loan_id = max(self.next_loan_id, loan_id + 1)
        self.loans[loan_id] = {
            'borrower': borrower,
            'principal': principal,
            'interest_owed': principal * self.interest_rate_bps // 10000,
            'due_timestamp': self.now + 14 * DAY,
            'status': status,
        }
        if status == "Active":
            self.active[borrower] = loan_id
        return loan_id

    # Read calls return native values
    def get_pool_stats(self):
        return {
            'total_deposited': self.total_deposited,
            'total_lent': self.total_lent,
            'available': self.total_deposited - self.total_lent,
            'interest_rate_bps': self.interest_rate_bps,
        }

    def get_lender_info(self, lender):
        return self.lenders.get(lender, {'amount': 0, 'deposit_timestamp': 0})

    def get_loan(self, loan_id):
        if loan_id not in self.loans:
            raise ContractFailure(5)
        return self.loans[loan_id]

    # Write calls
    def deposit(self, from_, amount):
        if amount <= 0:
            raise ContractFailure(3)
        self.total_deposited += amount
        record = self.lenders.setdefault(from_, {'amount': 0, 'deposit_timestamp': self.now})
        record['amount'] += amount
        record['deposit_timestamp'] = self.now

    def withdraw(self, from_, amount):
        record = self.lenders.get(from_, {'amount': 0})
        if amount <= 0 or record['amount'] < amount:
            raise ContractFailure(3)
        if self.total_deposited - self.total_lent < amount:
            raise ContractFailure(2)
        self.total_deposited -= amount
        record['amount'] -= amount

    def request_loan(self, from_, amount, duration_days):
        if from_ in self.active:
            raise ContractFailure(4)
        if self.total_deposited - self.total_lent < amount:
            raise ContractFailure(2)
        loan_id = self.add_loan(from_, amount)
        self.loans[loan_id]['due_timestamp'] = self.now + duration_days * DAY
        self.total_lent += amount
        return loan_id

    def repay_loan(self, from_, loan_id):
        loan = self.get_loan(loan_id)
        if loan['borrower'] != from_:
            raise ContractFailure(9)
        if loan['status'] != "Active":
            raise ContractFailure(6)
        loan['status'] = "Repaid"
        self.active.pop(from_, None)
        self.total_lent -= loan['principal']
        self.total_deposited += loan['interest_owed']

    def liquidate_defaulted(self, loan_id):
        loan = self.get_loan(loan_id)
        if loan['status'] != "Active":
            raise ContractFailure(6)
        if self.now <= loan['due_timestamp']:
            raise ContractFailure(8)
        loan['status'] = "Defaulted"
        self.active.pop(loan['borrower'], None)
        self.total_deposited -= loan['principal']
        self.total_lent -= loan['principal']


def encode_result(function_name: str, value):
    """Encode a FakeContract result the way the real contract returns it"""
    if value is None:
        return scval.to_void()
    if function_name == 'get_pool_stats':
        return scval.to_struct({
            'available': scval.to_int128(value['available']),
            'interest_rate_bps': scval.to_uint32(value['interest_rate_bps']),
            'total_deposited': scval.to_int128(value['total_deposited']),
            'total_lent': scval.to_int128(value['total_lent']),
        })
    if function_name == 'get_lender_info':
        return scval.to_struct({
            'amount': scval.to_int128(value['amount']),
            'deposit_timestamp': scval.to_uint64(value['deposit_timestamp']),
        })
    if function_name == 'get_loan':
        return scval.to_struct({
            'borrower': scval.to_address(value['borrower']),
            'due_timestamp': scval.to_uint64(value['due_timestamp']),
            'interest_owed': scval.to_int128(value['interest_owed']),
            'principal': scval.to_int128(value['principal']),
            'status': scval.to_enum(value['status'], None),
        })
    if function_name == 'request_loan':
        return scval.to_uint64(value)
    raise AssertionError(f"unexpected result for {function_name}")


def decode_call(tx: TransactionEnvelope):
    invoke = tx.transaction.operations[0].host_function.invoke_contract
    function_name = invoke.function_name.sc_symbol.decode()
    args = []
    for arg in invoke.args:
        native = scval.to_native(arg)
        args.append(address_to_str(native) if not isinstance(native, int) else native)
    return function_name, args


class FakeRpc(LedgerRpc):
    def __init__(self, contract: Optional[FakeContract] = None):
        self.contract = contract or FakeContract()
        self.sequences: Dict[str, int] = {}
        self.balances: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.submitted: List[TransactionEnvelope] = []
        # Statuses reported by get_status, consumed in order; the last one repeats.
        # An exception in the list is raised instead of returned
        self.statuses: List[TxStatus] = [TxStatus.SUCCESS]
        self.submit_error: Optional[str] = None
        self.simulate_error: Optional[str] = None
        self.fail_reads: bool = False
        self._results: Dict[str, object] = {}

    def fund(self, address: str, balance: str = "100.0000000", sequence: int = 1000):
        self.sequences[address] = sequence
        self.balances[address] = balance

    async def load_account(self, address):
        self.calls.append(('load_account', address))
        if address not in self.sequences:
            raise AccountNotFound(address)
        return Account(address, self.sequences[address])

    async def get_native_balance(self, address):
        self.calls.append(('get_native_balance', address))
        if self.fail_reads:
            raise ConnectionError("horizon unreachable")
        return self.balances.get(address)

    async def simulate(self, tx):
        function_name, args = decode_call(tx)
        self.calls.append(('simulate', function_name, tuple(args)))
        if self.fail_reads:
            raise ConnectionError("rpc unreachable")
        if self.simulate_error is not None:
            return SimulationResult(success=False, error=self.simulate_error)
        try:
            value = self._dry_run(function_name, args)
        except ContractFailure as e:
            return SimulationResult(success=False, error=f"{e}\n\nEvent log (newest first): ...")
        return SimulationResult(success=True, return_value=encode_result(function_name, value), min_resource_fee=12345)

    def _dry_run(self, function_name, args):
        # Reads have no side effects; writes are only checked, not applied
        if function_name.startswith('get_'):
            return getattr(self.contract, function_name)(*args)
        snapshot = _snapshot(self.contract)
        try:
            return getattr(self.contract, function_name)(*args)
        finally:
            _restore(self.contract, snapshot)

    async def assemble(self, tx, simulation):
        self.calls.append(('assemble',))
        return tx

    async def submit(self, tx):
        function_name, args = decode_call(tx)
        self.calls.append(('submit', function_name, tuple(args)))
        self.submitted.append(tx)
        tx_hash = tx.hash_hex()
        if self.submit_error is not None:
            return SubmitResult(hash=tx_hash, error=self.submit_error)
        self.sequences[tx.transaction.source.account_id] += 1
        value = getattr(self.contract, function_name)(*args)
        self._results[tx_hash] = encode_result(function_name, value)
        return SubmitResult(hash=tx_hash)

    async def get_status(self, tx_hash):
        self.calls.append(('get_status', tx_hash))
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        if status == TxStatus.SUCCESS:
            return StatusResult(status=status, return_value=self._results.get(tx_hash))
        return StatusResult(status=status)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


def _snapshot(contract: FakeContract):
    return copy.deepcopy(contract.__dict__)


def _restore(contract: FakeContract, snapshot):
    contract.__dict__.clear()
    contract.__dict__.update(snapshot)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Replaces asyncio.sleep; records delays and moves a FakeClock forward"""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class HangingWallet(KeypairWallet):
    """Wallet whose signing prompt is never answered"""

    def __init__(self, secret: str):
        super().__init__(secret)
        self.prompted = asyncio.Event()

    async def sign(self, tx_xdr, network_passphrase):
        self.prompted.set()
        await asyncio.Event().wait()


@pytest.fixture
def keypair():
    return Keypair.random()


@pytest.fixture
def borrower(keypair):
    return keypair.public_key


@pytest.fixture
def contract():
    return FakeContract()


@pytest.fixture
def rpc(contract, borrower):
    rpc = FakeRpc(contract)
    rpc.fund(borrower)
    return rpc


@pytest.fixture
def wallet(keypair):
    return KeypairWallet(keypair.secret)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def pool(rpc, wallet, store, sleep):
    return LumiLendPool(
        rpc=rpc,
        wallet=wallet,
        contract_id=CONTRACT_ID,
        network_passphrase=NETWORK_PASSPHRASE,
        simulation_source=SIMULATION_SOURCE,
        store=store,
        poll_interval=2.0,
        sleep=sleep,
    )
