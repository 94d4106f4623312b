import asyncio
from decimal import Decimal

from stellar_sdk import Keypair

from protocols.codec import Loan, LoanStatus
from protocols.errors import SimulationRejected
from protocols.loan_locator import HINT_KEY, LoanLocator
from utils.store import InMemoryStore

ALICE = Keypair.random().public_key
BOB = Keypair.random().public_key


def loan(loan_id, borrower, status=LoanStatus.ACTIVE):
    return Loan(
        loan_id=loan_id,
        borrower=borrower,
        principal=Decimal("20"),
        interest_owed=Decimal("1"),
        due_timestamp=1_700_000_000,
        status=status,
    )


class FakeLoans:
    """fetch_loan stand-in that records every probed id"""

    def __init__(self, *loans, failing=()):
        self.loans = {item.loan_id: item for item in loans}
        self.failing = set(failing)
        self.probed = []

    async def __call__(self, loan_id):
        self.probed.append(loan_id)
        if loan_id in self.failing:
            raise ConnectionError("rpc unreachable")
        if loan_id not in self.loans:
            raise SimulationRejected.from_payload("HostError: Error(Contract, #5)")
        return self.loans[loan_id]


def locate(locator, borrower):
    return asyncio.run(locator.locate_active_loan(borrower))


class TestHint:
    def test_valid_hint_skips_the_scan(self):
        fetch = FakeLoans(loan(7, ALICE))
        store = InMemoryStore({HINT_KEY.format(address=ALICE): "7"})

        found = locate(LoanLocator(fetch, store), ALICE)

        assert found.loan_id == 7
        assert fetch.probed == [7]

    def test_stale_hint_is_cleared_then_scanned(self):
        fetch = FakeLoans(loan(1, ALICE, LoanStatus.REPAID), loan(3, ALICE))
        store = InMemoryStore({HINT_KEY.format(address=ALICE): "1"})

        found = locate(LoanLocator(fetch, store, scan_limit=5), ALICE)

        assert found.loan_id == 3
        assert store.get(HINT_KEY.format(address=ALICE)) == "3"

    def test_stale_hint_without_other_loan(self):
        fetch = FakeLoans(loan(1, ALICE, LoanStatus.DEFAULTED))
        store = InMemoryStore({HINT_KEY.format(address=ALICE): "1"})

        assert locate(LoanLocator(fetch, store, scan_limit=3), ALICE) is None
        assert store.get(HINT_KEY.format(address=ALICE)) is None

    def test_hint_for_someone_else_falls_back_to_scan(self):
        fetch = FakeLoans(loan(1, BOB), loan(2, ALICE))
        store = InMemoryStore({HINT_KEY.format(address=ALICE): "1"})

        found = locate(LoanLocator(fetch, store, scan_limit=5), ALICE)

        assert found.loan_id == 2
        assert store.get(HINT_KEY.format(address=ALICE)) == "2"

    def test_malformed_hint_is_dropped(self):
        fetch = FakeLoans()
        store = InMemoryStore({HINT_KEY.format(address=ALICE): "not-a-number"})

        assert locate(LoanLocator(fetch, store, scan_limit=2), ALICE) is None
        assert store.get(HINT_KEY.format(address=ALICE)) is None
        assert fetch.probed == [1, 2]


class TestScan:
    def test_scan_persists_the_found_id(self):
        fetch = FakeLoans(loan(1, BOB), loan(2, ALICE, LoanStatus.REPAID), loan(4, ALICE))
        store = InMemoryStore()

        found = locate(LoanLocator(fetch, store, scan_limit=20), ALICE)

        assert found.loan_id == 4
        assert fetch.probed == [1, 2, 3, 4]
        assert store.get(HINT_KEY.format(address=ALICE)) == "4"

    def test_probe_failures_are_skipped(self):
        fetch = FakeLoans(loan(3, ALICE), failing={1, 2})

        found = locate(LoanLocator(fetch, InMemoryStore(), scan_limit=5), ALICE)

        assert found.loan_id == 3

    def test_loans_beyond_the_limit_are_not_found(self):
        fetch = FakeLoans(loan(21, ALICE))
        store = InMemoryStore()

        assert locate(LoanLocator(fetch, store, scan_limit=20), ALICE) is None
        assert fetch.probed == list(range(1, 21))
        assert store.get(HINT_KEY.format(address=ALICE)) is None

    def test_hint_reaches_past_the_limit(self):
        fetch = FakeLoans(loan(21, ALICE))
        locator = LoanLocator(fetch, InMemoryStore(), scan_limit=20)
        locator.remember(ALICE, 21)

        assert locate(locator, ALICE).loan_id == 21
        assert fetch.probed == [21]
