"""
Transaction pipeline for contract invocations

One ``TransactionPipeline`` instance drives a single write through

    BUILDING -> SIMULATED -> AWAITING_SIGNATURE -> SUBMITTED -> POLLING
             -> CONFIRMED | REJECTED | FAILED | TIMED_OUT

A failed simulation halts the pipeline in SIMULATED: nothing is signed and
nothing reaches the network. Only the final status polling is retried; by
then the transaction is already queued and will resolve one way or another.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from stellar_sdk import Account, TransactionBuilder, TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr

from .base import KeyValueStore, LedgerRpc, StatusResult, TxStatus, Wallet
from .codec import decode_native
from .errors import (
    AccountNotFound,
    LedgerFailed,
    LumiLendError,
    PollingTimedOut,
    SimulationRejected,
    SubmissionFailed,
    UserRejected,
)

logger = logging.getLogger(__name__)

PENDING_KEY = "lumilend_pending_{address}"


class TxState(str, Enum):
    BUILDING = "Building"
    SIMULATED = "Simulated"
    AWAITING_SIGNATURE = "AwaitingSignature"
    SUBMITTED = "Submitted"
    POLLING = "Polling"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


TERMINAL_STATES = {TxState.CONFIRMED, TxState.REJECTED, TxState.FAILED, TxState.TIMED_OUT}


@dataclass
class TransactionResult:
    hash: str
    return_value: Any = None


def build_invoke_transaction(
    account: Account,
    contract_id: str,
    function_name: str,
    args: Sequence[stellar_xdr.SCVal],
    network_passphrase: str,
    base_fee: int = 100,
    tx_timeout: int = 30
) -> TransactionEnvelope:
    """Build an unsigned contract invocation from the given account"""
    return (
        TransactionBuilder(
            source_account=account,
            network_passphrase=network_passphrase,
            base_fee=base_fee,
        )
        .append_invoke_contract_function_op(
            contract_id=contract_id,
            function_name=function_name,
            parameters=list(args),
        )
        .set_timeout(tx_timeout)
        .build()
    )


async def simulate_read(
    rpc: LedgerRpc,
    source: str,
    contract_id: str,
    function_name: str,
    args: Sequence[stellar_xdr.SCVal],
    network_passphrase: str,
    base_fee: int = 100,
    tx_timeout: int = 30
) -> Any:
    """Run a read-only contract call through simulation and decode its result

    The source only needs to exist for sequence bookkeeping; an unknown
    source is replaced by a zero-sequence placeholder since simulation never
    checks it.

    Raises:
        SimulationRejected: the call failed during the dry run
    """
    try:
        account = await rpc.load_account(source)
    except AccountNotFound:
        account = Account(source, 0)

    tx = build_invoke_transaction(
        account, contract_id, function_name, args, network_passphrase, base_fee, tx_timeout
    )
    try:
        simulation = await rpc.simulate(tx)
    except Exception as e:
        raise SimulationRejected(raw=str(e)) from e

    if not simulation.success:
        raise SimulationRejected.from_payload(simulation.error)
    return decode_native(simulation.return_value)


class TransactionPipeline:
    """Drives one contract write from build to a terminal ledger outcome"""

    def __init__(
        self,
        rpc: LedgerRpc,
        wallet: Wallet,
        contract_id: str,
        network_passphrase: str,
        base_fee: int = 100,
        tx_timeout: int = 30,
        poll_interval: float = 2.0,
        pending_store: Optional[KeyValueStore] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.rpc = rpc
        self.wallet = wallet
        self.contract_id = contract_id
        self.network_passphrase = network_passphrase
        self.base_fee = base_fee
        self.tx_timeout = tx_timeout
        self.poll_interval = poll_interval
        self.pending_store = pending_store
        self.sleep = sleep
        self.clock = clock

        self.state: Optional[TxState] = None
        self.history: List[TxState] = []
        self.function_name: Optional[str] = None
        self.source: Optional[str] = None
        self.tx_hash: Optional[str] = None
        self.error: Optional[Exception] = None
        self.min_resource_fee: int = 0

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES or self.error is not None

    def _transition(self, state: TxState) -> None:
        self.state = state
        self.history.append(state)
        logger.info(f"[{self.function_name}] {state.value}" + (f" ({self.tx_hash})" if self.tx_hash else ""))

    def _halt(self, error: Exception, state: Optional[TxState] = None) -> Exception:
        """Record the failure; the pipeline stays in its current state unless one is given"""
        if state is not None:
            self._transition(state)
        self.error = error
        logger.error(f"[{self.function_name}] halted in {self.state.value}: {error}")
        return error

    def _claim(self, function_name: str) -> None:
        if self.state is not None:
            raise RuntimeError("A TransactionPipeline runs once; create a new one per action")
        self.function_name = function_name

    async def run(
        self,
        source: str,
        function_name: str,
        args: Sequence[stellar_xdr.SCVal],
        timeout: Optional[float] = None
    ) -> TransactionResult:
        """
        Build, simulate, sign, submit and confirm one contract call

        Args:
            source: Signer's public key (also the fee payer)
            function_name: Contract function to invoke
            args: Encoded contract arguments
            timeout: Optional limit in seconds for status polling

        Returns:
            TransactionResult with the hash and decoded return value

        Raises:
            AccountNotFound, SimulationRejected, UserRejected,
            SubmissionFailed, LedgerFailed, PollingTimedOut
        """
        self._claim(function_name)
        self.source = source

        # 1. Build against a freshly loaded sequence number
        self._transition(TxState.BUILDING)
        try:
            account = await self.rpc.load_account(source)
        except AccountNotFound as e:
            raise self._halt(e, TxState.FAILED)
        tx = build_invoke_transaction(
            account, self.contract_id, function_name, args,
            self.network_passphrase, self.base_fee, self.tx_timeout
        )

        # 2. Dry run; a rejection stops here before anything is signed
        self._transition(TxState.SIMULATED)
        try:
            simulation = await self.rpc.simulate(tx)
        except Exception as e:
            raise self._halt(SimulationRejected(raw=str(e))) from e
        if not simulation.success:
            raise self._halt(SimulationRejected.from_payload(simulation.error))
        self.min_resource_fee = simulation.min_resource_fee

        # 3. Merge footprint and fee, then wait for the wallet
        try:
            prepared = await self.rpc.assemble(tx, simulation)
        except Exception as e:
            raise self._halt(SubmissionFailed(f"Could not assemble transaction: {e}"), TxState.FAILED) from e

        self._transition(TxState.AWAITING_SIGNATURE)
        try:
            signed_xdr = await self.wallet.sign(prepared.to_xdr(), self.network_passphrase)
        except UserRejected as e:
            raise self._halt(e, TxState.REJECTED)
        except asyncio.CancelledError:
            self._halt(UserRejected("Signing request was dismissed"), TxState.REJECTED)
            raise
        except LumiLendError as e:
            raise self._halt(e, TxState.FAILED)

        # 4. Submit exactly once
        try:
            signed = TransactionEnvelope.from_xdr(signed_xdr, self.network_passphrase)
        except Exception as e:
            raise self._halt(SubmissionFailed(f"Wallet returned a malformed transaction: {e}"), TxState.FAILED) from e

        try:
            submitted = await self.rpc.submit(signed)
        except Exception as e:
            raise self._halt(SubmissionFailed(f"Transaction failed during submission: {e}"), TxState.FAILED) from e
        if submitted.error:
            self.tx_hash = submitted.hash or None
            raise self._halt(SubmissionFailed(f"Transaction failed during submission: {submitted.error}"), TxState.FAILED)

        self.tx_hash = submitted.hash
        self._transition(TxState.SUBMITTED)
        self._remember_pending()

        # 5. Poll until the ledger reports a terminal status
        return await self._poll(timeout)

    async def resume(
        self,
        tx_hash: str,
        source: Optional[str] = None,
        function_name: str = "resume",
        timeout: Optional[float] = None
    ) -> TransactionResult:
        """Resume polling a transaction submitted by an earlier run"""
        self._claim(function_name)
        self.source = source
        self.tx_hash = tx_hash
        self._transition(TxState.SUBMITTED)
        return await self._poll(timeout)

    async def _poll(self, timeout: Optional[float]) -> TransactionResult:
        self._transition(TxState.POLLING)
        started = self.clock()

        response = await self._status()
        while response.status == TxStatus.NOT_FOUND:
            waited = self.clock() - started
            if timeout and waited >= timeout:
                raise self._halt(PollingTimedOut(self.tx_hash, waited), TxState.TIMED_OUT)
            await self.sleep(self.poll_interval)
            response = await self._status()

        self._forget_pending()
        if response.status == TxStatus.SUCCESS:
            self._transition(TxState.CONFIRMED)
            return TransactionResult(
                hash=self.tx_hash,
                return_value=decode_native(response.return_value),
            )
        raise self._halt(LedgerFailed(self.tx_hash, response.status.value), TxState.FAILED)

    async def _status(self) -> StatusResult:
        """One status lookup; a failed lookup counts as not seen yet"""
        try:
            return await self.rpc.get_status(self.tx_hash)
        except Exception as e:
            logger.warning(f"Status lookup for {self.tx_hash} failed, will retry: {e}")
            return StatusResult(status=TxStatus.NOT_FOUND)

    def _remember_pending(self) -> None:
        if self.pending_store is None or not self.source:
            return
        record = json.dumps({'hash': self.tx_hash, 'function': self.function_name})
        self.pending_store.set(PENDING_KEY.format(address=self.source), record)

    def _forget_pending(self) -> None:
        if self.pending_store is None or not self.source:
            return
        self.pending_store.delete(PENDING_KEY.format(address=self.source))


def load_pending(store: KeyValueStore, address: str) -> Optional[dict]:
    """Return the {'hash', 'function'} record of an unresolved submission, if any"""
    raw = store.get(PENDING_KEY.format(address=address))
    if not raw:
        return None
    try:
        record = json.loads(raw)
    except ValueError:
        logger.warning(f"Dropping unreadable pending record for {address}")
        store.delete(PENDING_KEY.format(address=address))
        return None
    if not isinstance(record, dict) or 'hash' not in record:
        store.delete(PENDING_KEY.format(address=address))
        return None
    return record
