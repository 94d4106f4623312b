import asyncio
import logging
import time
from typing import Any, Callable, List, Optional

from utils.store import InMemoryStore
from utils.validation import parse_amount, validate_deposit, validate_loan_request
from .base import KeyValueStore, LedgerRpc, Wallet
from .codec import (
    Amount,
    LenderInfo,
    Loan,
    PoolStats,
    decode_lender_info,
    decode_loan,
    decode_pool_stats,
    encode_address,
    encode_amount,
    encode_u32,
    encode_u64,
)
from .errors import LumiLendError, WalletUnavailable
from .loan_locator import LoanLocator
from .pipeline import TransactionPipeline, TransactionResult, load_pending, simulate_read

logger = logging.getLogger(__name__)

class LumiLendPool:
    """Client for the LumiLend pool contract

    Writes go through a fresh TransactionPipeline each time; reads are
    simulated from a fixed source account so they need no wallet.
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        wallet: Wallet,
        contract_id: str,
        network_passphrase: str,
        simulation_source: str,
        store: Optional[KeyValueStore] = None,
        base_fee: int = 100,
        tx_timeout: int = 30,
        poll_interval: float = 2.0,
        poll_timeout: Optional[float] = None,
        scan_limit: int = 20,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.rpc = rpc
        self.wallet = wallet
        self.contract_id = contract_id
        self.network_passphrase = network_passphrase
        self.simulation_source = simulation_source
        self.store = store if store is not None else InMemoryStore()
        self.base_fee = base_fee
        self.tx_timeout = tx_timeout
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout or None
        self.sleep = sleep
        self.clock = clock

        self.locator = LoanLocator(self.get_loan, self.store, scan_limit)
        self.last_pipeline: Optional[TransactionPipeline] = None
        self.confirmed_handlers: List[Callable[[str, TransactionResult], None]] = []

    def add_confirmed_handler(self, callback: Callable[[str, TransactionResult], None]):
        """Register callback(address, result) run after every confirmed write"""
        self.confirmed_handlers.append(callback)

    def new_pipeline(self) -> TransactionPipeline:
        return TransactionPipeline(
            rpc=self.rpc,
            wallet=self.wallet,
            contract_id=self.contract_id,
            network_passphrase=self.network_passphrase,
            base_fee=self.base_fee,
            tx_timeout=self.tx_timeout,
            poll_interval=self.poll_interval,
            pending_store=self.store,
            sleep=self.sleep,
            clock=self.clock,
        )

    async def wallet_address(self) -> str:
        try:
            return await self.wallet.get_address()
        except LumiLendError:
            raise
        except Exception as e:
            raise WalletUnavailable(f"Wallet issue: {e}") from e

    async def _invoke(self, source: str, function_name: str, *args) -> TransactionResult:
        if not self.contract_id:
            raise LumiLendError("CONTRACT_ID is not configured")
        pipeline = self.new_pipeline()
        self.last_pipeline = pipeline
        result = await pipeline.run(source, function_name, args, timeout=self.poll_timeout)
        self._notify_confirmed(source, result)
        return result

    def _notify_confirmed(self, address: str, result: TransactionResult) -> None:
        for callback in self.confirmed_handlers:
            try:
                callback(address, result)
            except Exception as e:
                logger.error(f"Confirmed handler failed: {e}")

    async def _read(self, function_name: str, *args) -> Any:
        return await simulate_read(
            self.rpc,
            self.simulation_source,
            self.contract_id,
            function_name,
            args,
            self.network_passphrase,
            self.base_fee,
            self.tx_timeout,
        )

    # ============================================================
    # READ-ONLY FUNCTIONS
    # ============================================================

    async def get_pool_stats(self) -> PoolStats:
        return decode_pool_stats(await self._read('get_pool_stats'))

    async def get_lender_info(self, address: str) -> LenderInfo:
        return decode_lender_info(await self._read('get_lender_info', encode_address(address)))

    async def get_loan(self, loan_id: int) -> Loan:
        """
        Get loan details

        Raises:
            SimulationRejected: code LOAN_NOT_FOUND when the id does not exist
        """
        native = await self._read('get_loan', encode_u64(loan_id))
        return decode_loan(loan_id, native)

    # ============================================================
    # WRITE FUNCTIONS - Lenders
    # ============================================================

    async def deposit(self, amount: Amount) -> TransactionResult:
        """
        Deposit XLM into the pool

        Args:
            amount: Amount of XLM to deposit

        Returns:
            TransactionResult of the confirmed transaction
        """
        value = validate_deposit(amount)
        address = await self.wallet_address()
        logger.info(f"Depositing {value} XLM to pool from {address}")

        result = await self._invoke(address, 'deposit', encode_address(address), encode_amount(value))
        logger.info(f"Deposited {value} XLM (tx: {result.hash})")
        return result

    async def withdraw(self, amount: Amount) -> TransactionResult:
        """Withdraw XLM previously deposited by the connected wallet"""
        value = parse_amount(amount)
        address = await self.wallet_address()
        logger.info(f"Withdrawing {value} XLM from pool to {address}")

        result = await self._invoke(address, 'withdraw', encode_address(address), encode_amount(value))
        logger.info(f"Withdrew {value} XLM (tx: {result.hash})")
        return result

    # ============================================================
    # WRITE FUNCTIONS - Borrowers
    # ============================================================

    async def request_loan(self, amount: Amount, duration_days: int) -> TransactionResult:
        """
        Borrow from the pool

        Args:
            amount: Loan principal in XLM
            duration_days: Days until the loan is due

        Returns:
            TransactionResult whose return_value is the new loan id
        """
        value = validate_loan_request(amount, duration_days)
        address = await self.wallet_address()
        logger.info(f"Requesting {value} XLM loan for {duration_days} days from {address}")

        result = await self._invoke(
            address,
            'request_loan',
            encode_address(address),
            encode_amount(value),
            encode_u32(duration_days),
        )
        if result.return_value is not None:
            self.locator.remember(address, int(result.return_value))
        logger.info(f"Loan {result.return_value} opened (tx: {result.hash})")
        return result

    async def repay_loan(self, loan_id: Optional[int] = None) -> TransactionResult:
        """
        Repay a loan in full (principal + interest)

        Args:
            loan_id: Loan to repay; defaults to the wallet's active loan
        """
        address = await self.wallet_address()
        if loan_id is None:
            loan = await self.locator.locate_active_loan(address)
            if loan is None:
                raise LumiLendError(f"No active loan found for {address}")
            loan_id = loan.loan_id

        logger.info(f"Repaying loan {loan_id} from {address}")
        result = await self._invoke(address, 'repay_loan', encode_address(address), encode_u64(loan_id))
        self.locator.forget(address)
        logger.info(f"Loan {loan_id} repaid (tx: {result.hash})")
        return result

    async def liquidate_defaulted(self, loan_id: int) -> TransactionResult:
        """Mark an overdue loan as defaulted; any account may call this"""
        address = await self.wallet_address()
        logger.info(f"Liquidating loan {loan_id}")
        result = await self._invoke(address, 'liquidate_defaulted', encode_u64(loan_id))
        logger.info(f"Loan {loan_id} marked defaulted (tx: {result.hash})")
        return result

    # ============================================================
    # RECOVERY
    # ============================================================

    async def resume_pending(self) -> Optional[TransactionResult]:
        """Finish polling a write that was submitted before a restart, if any"""
        address = await self.wallet_address()
        record = load_pending(self.store, address)
        if record is None:
            return None

        logger.info(f"Resuming {record.get('function')} transaction {record['hash']}")
        pipeline = self.new_pipeline()
        self.last_pipeline = pipeline
        result = await pipeline.resume(
            record['hash'],
            source=address,
            function_name=record.get('function') or 'resume',
            timeout=self.poll_timeout,
        )
        if record.get("function") == "request_loan" and result.return_value is not None:
            self.locator.remember(address, int(result.return_value))
        elif record.get("function") == "repay_loan":
            self.locator.forget(address)
        self._notify_confirmed(address, result)
        return result
