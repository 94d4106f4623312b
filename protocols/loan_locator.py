"""
Active loan recovery

The pool contract has no "loans by borrower" query. The locator keeps a
``borrower -> loan_id`` hint in a local key-value store and falls back to
probing loan ids ``1..scan_limit`` when the hint is missing or wrong.

Known limitation: loans with an id above ``scan_limit`` are never found by
the scan. Only the hint written when the loan was taken out from this
client can point at them.
"""

import logging
from typing import Awaitable, Callable, Optional

from .base import KeyValueStore
from .codec import Loan, LoanStatus

logger = logging.getLogger(__name__)

HINT_KEY = "lumilend_loan_{address}"

LoanFetcher = Callable[[int], Awaitable[Optional[Loan]]]


class LoanLocator:
    def __init__(self, fetch_loan: LoanFetcher, store: KeyValueStore, scan_limit: int = 20):
        """
        Args:
            fetch_loan: Coroutine returning the loan for an id, None if absent
            store: Where borrower hints are persisted
            scan_limit: Highest loan id probed by the fallback scan
        """
        self.fetch_loan = fetch_loan
        self.store = store
        self.scan_limit = scan_limit

    def _hint_key(self, borrower: str) -> str:
        return HINT_KEY.format(address=borrower)

    def hinted_loan_id(self, borrower: str) -> Optional[int]:
        raw = self.store.get(self._hint_key(borrower))
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Discarding malformed loan hint {raw!r} for {borrower}")
            self.forget(borrower)
            return None

    def remember(self, borrower: str, loan_id: int) -> None:
        self.store.set(self._hint_key(borrower), str(int(loan_id)))

    def forget(self, borrower: str) -> None:
        self.store.delete(self._hint_key(borrower))

    async def _probe(self, loan_id: int) -> Optional[Loan]:
        try:
            return await self.fetch_loan(loan_id)
        except Exception as e:
            logger.debug(f"Probe of loan {loan_id} failed: {e}")
            return None

    async def locate_active_loan(self, borrower: str) -> Optional[Loan]:
        """Find the borrower's active loan, or None"""
        loan_id = self.hinted_loan_id(borrower)
        if loan_id is not None:
            loan = await self._probe(loan_id)
            if loan is not None and loan.borrower == borrower:
                if loan.status is LoanStatus.ACTIVE:
                    return loan
                # Repaid or defaulted since the hint was written
                logger.info(f"Loan {loan_id} of {borrower} is {loan.status.value}; clearing hint")
                self.forget(borrower)
            else:
                logger.info(f"Loan hint {loan_id} for {borrower} does not match; scanning")

        loan = await self._scan(borrower)
        if loan is not None:
            self.remember(borrower, loan.loan_id)
        return loan

    async def _scan(self, borrower: str) -> Optional[Loan]:
        for loan_id in range(1, self.scan_limit + 1):
            loan = await self._probe(loan_id)
            if loan is not None and loan.borrower == borrower and loan.status is LoanStatus.ACTIVE:
                logger.info(f"Recovered active loan {loan_id} for {borrower}")
                return loan
        logger.debug(f"No active loan for {borrower} among ids 1..{self.scan_limit}")
        return None
