from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from stellar_sdk import Account, TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr


class TxStatus(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class SimulationResult:
    success: bool
    return_value: Optional[stellar_xdr.SCVal] = None
    error: Optional[str] = None
    min_resource_fee: int = 0
    # Raw node response, needed again when assembling the transaction
    raw: Any = field(default=None, repr=False)


@dataclass
class SubmitResult:
    hash: str
    error: Optional[str] = None


@dataclass
class StatusResult:
    status: TxStatus
    return_value: Optional[stellar_xdr.SCVal] = None


class LedgerRpc(ABC):
    @abstractmethod
    async def load_account(self, address: str) -> Account:
        """Load the account with its current sequence number

        Raises AccountNotFound if the address has no ledger entry
        """
        pass

    @abstractmethod
    async def simulate(self, tx: TransactionEnvelope) -> SimulationResult:
        """Dry-run a transaction against current network state"""
        pass

    @abstractmethod
    async def assemble(self, tx: TransactionEnvelope, simulation: SimulationResult) -> TransactionEnvelope:
        """Merge the simulated footprint and resource fee into the transaction"""
        pass

    @abstractmethod
    async def submit(self, tx: TransactionEnvelope) -> SubmitResult:
        """Submit a signed transaction"""
        pass

    @abstractmethod
    async def get_status(self, tx_hash: str) -> StatusResult:
        """Look up a submitted transaction by hash"""
        pass

    @abstractmethod
    async def get_native_balance(self, address: str) -> Optional[str]:
        """Native XLM balance of an account, None if it does not exist"""
        pass


class Wallet(ABC):
    @abstractmethod
    async def get_address(self) -> str:
        """Public key of the connected account

        Raises WalletUnavailable when nothing is connected
        """
        pass

    @abstractmethod
    async def sign(self, tx_xdr: str, network_passphrase: str) -> str:
        """Sign a base64 transaction envelope and return the signed envelope

        Raises UserRejected if the request is dismissed
        """
        pass


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass
