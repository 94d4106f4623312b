"""
Error types for the LumiLend client.

Write-path failures are raised as one of the ``LumiLendError`` subclasses
below. Contract failures reported during simulation are parsed once into a
``ContractErrorCode`` so callers never match on payload text themselves.
"""

import re
from enum import IntEnum
from typing import Optional


class ContractErrorCode(IntEnum):
    """Error codes returned by the LumiLend pool contract"""
    ALREADY_INITIALIZED = 1
    INSUFFICIENT_POOL_LIQUIDITY = 2
    INSUFFICIENT_BALANCE = 3
    LOAN_ALREADY_ACTIVE = 4
    LOAN_NOT_FOUND = 5
    LOAN_NOT_ACTIVE = 6
    REPAYMENT_TOO_LOW = 7
    NOT_YET_DEFAULTED = 8
    UNAUTHORIZED = 9


CONTRACT_ERROR_MESSAGES = {
    ContractErrorCode.ALREADY_INITIALIZED: "Pool is already initialized.",
    ContractErrorCode.INSUFFICIENT_POOL_LIQUIDITY: "Insufficient pool liquidity.",
    ContractErrorCode.INSUFFICIENT_BALANCE: "Insufficient balance.",
    ContractErrorCode.LOAN_ALREADY_ACTIVE: "An active loan already exists. Repay it before borrowing again.",
    ContractErrorCode.LOAN_NOT_FOUND: "Loan not found.",
    ContractErrorCode.LOAN_NOT_ACTIVE: "Loan is not active.",
    ContractErrorCode.REPAYMENT_TOO_LOW: "Repayment amount is too low.",
    ContractErrorCode.NOT_YET_DEFAULTED: "Loan has not defaulted yet.",
    ContractErrorCode.UNAUTHORIZED: "Not authorized for this loan.",
}

# Host errors render as e.g. "HostError: Error(Contract, #2)"
_CONTRACT_ERROR_RE = re.compile(r"Error\(Contract,\s*#(\d+)\)")


class Unrecognized:
    """A simulation failure whose payload carries no known contract code"""

    def __init__(self, raw: str):
        self.raw = raw

    def __eq__(self, other):
        return isinstance(other, Unrecognized) and other.raw == self.raw

    def __repr__(self):
        return f"Unrecognized({self.raw!r})"


def parse_contract_error(payload: Optional[str]):
    """
    Parse a simulation error payload into a contract error code

    Returns:
        ContractErrorCode for known codes, Unrecognized(raw) otherwise
    """
    raw = payload or ""
    match = _CONTRACT_ERROR_RE.search(raw)
    if match:
        try:
            return ContractErrorCode(int(match.group(1)))
        except ValueError:
            pass
    return Unrecognized(raw)


class LumiLendError(Exception):
    """Base class for all client errors"""


class WalletUnavailable(LumiLendError):
    """No wallet is connected or it could not provide an address"""


class AccountNotFound(LumiLendError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Account {address} not found on the network. Please fund it.")


class SimulationRejected(LumiLendError):
    """The dry run failed; nothing was signed or submitted"""

    def __init__(self, code: Optional[ContractErrorCode] = None, raw: str = ""):
        self.code = code
        self.raw = raw
        if code is not None:
            message = CONTRACT_ERROR_MESSAGES[code]
        else:
            message = f"Simulation rejected by node: {raw}" if raw else "Simulation rejected by node."
        super().__init__(message)

    @classmethod
    def from_payload(cls, payload: Optional[str]) -> "SimulationRejected":
        parsed = parse_contract_error(payload)
        if isinstance(parsed, ContractErrorCode):
            return cls(code=parsed, raw=payload or "")
        return cls(code=None, raw=parsed.raw)


class SubmissionFailed(LumiLendError):
    """The transaction could not be assembled or the node refused it"""


class LedgerFailed(LumiLendError):
    """The transaction was included but failed; the fee was spent"""

    def __init__(self, tx_hash: str, status: str):
        self.tx_hash = tx_hash
        self.status = status
        super().__init__(f"Transaction {tx_hash} failed on ledger (status: {status}).")


class UserRejected(LumiLendError):
    """The signing request was dismissed in the wallet"""


class PollingTimedOut(LumiLendError):
    """Polling gave up before a terminal status; the outcome is unknown"""

    def __init__(self, tx_hash: str, waited: float):
        self.tx_hash = tx_hash
        self.waited = waited
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {waited:.0f}s; its outcome is unknown."
        )


class ValidationError(ValueError):
    """User input rejected before any network call"""
