"""
Conversion between native values and the contract's wire format

Typed ScVal encoding is done by ``stellar_sdk.scval``; this module scales
amounts to and from stroops and turns decoded contract records into the
client's dataclasses.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Union

from stellar_sdk import Address, scval, xdr as stellar_xdr

from .config.networks import STROOP_DECIMALS

STROOPS_PER_XLM = 10 ** STROOP_DECIMALS
SECONDS_PER_DAY = 86400

Amount = Union[Decimal, int, float, str]


def to_stroops(amount: Amount) -> int:
    """Convert an XLM amount to integer stroops (x 10^7)

    Raises:
        ValueError: negative amounts or more than 7 fractional digits
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    if value < 0:
        raise ValueError(f"Amount must not be negative: {amount}")

    scaled = value.scaleb(STROOP_DECIMALS)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {STROOP_DECIMALS} fractional digits")
    return int(scaled)


def from_stroops(stroops: int) -> Decimal:
    """Convert integer stroops to an XLM amount with 7 fractional digits"""
    return Decimal(int(stroops)).scaleb(-STROOP_DECIMALS)


def format_xlm(amount: Amount, places: int = 2) -> str:
    """Format an amount for display, e.g. 1234.5 -> '1,234.50'"""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount or 0))
    return f"{value:,.{places}f}"


def format_hash(tx_hash: Optional[str]) -> str:
    """Shorten a hash or address to 'abcdef...uvwxyz'"""
    if not tx_hash:
        return ""
    return f"{tx_hash[:6]}...{tx_hash[-6:]}"


# ============================================================
# ScVal encoding
# ============================================================

def encode_address(address: str) -> stellar_xdr.SCVal:
    return scval.to_address(address)


def encode_amount(amount: Amount) -> stellar_xdr.SCVal:
    """Encode an XLM amount as the contract's i128 stroop value"""
    return scval.to_int128(to_stroops(amount))


def encode_u32(value: int) -> stellar_xdr.SCVal:
    return scval.to_uint32(int(value))


def encode_u64(value: int) -> stellar_xdr.SCVal:
    return scval.to_uint64(int(value))


def decode_native(value: Optional[stellar_xdr.SCVal]) -> Any:
    """Decode a returned ScVal into Python values (None stays None)"""
    if value is None:
        return None
    return scval.to_native(value)


def address_to_str(value: Any) -> str:
    if isinstance(value, Address):
        return value.address
    return str(value)


# ============================================================
# Contract records
# ============================================================

class LoanStatus(Enum):
    ACTIVE = "Active"
    REPAID = "Repaid"
    DEFAULTED = "Defaulted"

    @classmethod
    def from_native(cls, value: Any) -> "LoanStatus":
        """Normalize a decoded status

        The contract enum decodes either as a keyed variant (``['Active']``)
        or as a bare ordinal (``0``) depending on how it was written.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, (list, tuple)) and len(value) > 0:
            value = value[0]
        if isinstance(value, bytes):
            value = value.decode()
        if isinstance(value, int) and not isinstance(value, bool):
            members = list(cls)
            if 0 <= value < len(members):
                return members[value]
        elif isinstance(value, str):
            for member in cls:
                if value.lower() in (member.value.lower(), member.name.lower()):
                    return member
        raise ValueError(f"Unknown loan status: {value!r}")


@dataclass
class PoolStats:
    total_deposited: Decimal
    total_lent: Decimal
    available: Decimal
    interest_rate_bps: int

    @property
    def utilization(self) -> Decimal:
        """Share of deposits currently lent out (0 when the pool is empty)"""
        if self.total_deposited == 0:
            return Decimal(0)
        return self.total_lent / self.total_deposited


@dataclass
class LenderInfo:
    amount: Decimal
    deposit_timestamp: int


@dataclass
class Loan:
    loan_id: int
    borrower: str
    principal: Decimal
    interest_owed: Decimal
    due_timestamp: int
    status: LoanStatus

    @property
    def total_due(self) -> Decimal:
        return self.principal + self.interest_owed

    @property
    def is_active(self) -> bool:
        return self.status is LoanStatus.ACTIVE

    def is_overdue(self, now: float) -> bool:
        return self.is_active and now > self.due_timestamp

    def days_remaining(self, now: float) -> int:
        """Whole days left until the due date, never negative"""
        seconds = self.due_timestamp - now
        if seconds <= 0:
            return 0
        return math.ceil(seconds / SECONDS_PER_DAY)


def decode_pool_stats(native: Dict[str, Any]) -> PoolStats:
    return PoolStats(
        total_deposited=from_stroops(native['total_deposited']),
        total_lent=from_stroops(native['total_lent']),
        available=from_stroops(native['available']),
        interest_rate_bps=int(native['interest_rate_bps']),
    )


def decode_lender_info(native: Dict[str, Any]) -> LenderInfo:
    return LenderInfo(
        amount=from_stroops(native['amount']),
        deposit_timestamp=int(native['deposit_timestamp']),
    )


def decode_loan(loan_id: int, native: Dict[str, Any]) -> Loan:
    return Loan(
        loan_id=int(loan_id),
        borrower=address_to_str(native['borrower']),
        principal=from_stroops(native['principal']),
        interest_owed=from_stroops(native['interest_owed']),
        due_timestamp=int(native['due_timestamp']),
        status=LoanStatus.from_native(native['status']),
    )
