import logging
from decimal import Decimal
from typing import Any, Dict

from protocols.codec import Amount, SECONDS_PER_DAY, from_stroops, to_stroops

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10000

def calculate_interest(principal: Amount, rate_bps: int) -> Decimal:
    """Flat interest owed on a loan, as the pool contract computes it

    The contract works on integer stroops: interest = principal * bps / 10000,
    truncated toward zero.

    Args:
        principal: Loan principal in XLM
        rate_bps: Pool interest rate in basis points (500 = 5%)

    Returns:
        Interest in XLM
    """
    principal_stroops = to_stroops(principal)
    return from_stroops(principal_stroops * int(rate_bps) // BPS_DENOMINATOR)


def calculate_total_due(principal: Amount, rate_bps: int) -> Decimal:
    return from_stroops(to_stroops(principal)) + calculate_interest(principal, rate_bps)


def calculate_due_timestamp(start_timestamp: int, duration_days: int) -> int:
    return int(start_timestamp) + int(duration_days) * SECONDS_PER_DAY


def calculate_lender_share(lender_amount: Decimal, total_deposited: Decimal) -> Decimal:
    """Lender's fraction of the pool (0 for an empty pool)"""
    if total_deposited <= 0:
        return Decimal(0)
    return lender_amount / total_deposited


def preview_loan(principal: Amount, rate_bps: int, duration_days: int, now: int) -> Dict[str, Any]:
    """
    Summarize a loan before it is requested

    Returns:
        {
            'principal': Decimal,
            'interest_owed': Decimal,
            'total_due': Decimal,
            'due_timestamp': int,
            'rate_pct': Decimal  # flat rate in percent
        }
    """
    interest = calculate_interest(principal, rate_bps)
    principal_xlm = from_stroops(to_stroops(principal))
    return {
        'principal': principal_xlm,
        'interest_owed': interest,
        'total_due': principal_xlm + interest,
        'due_timestamp': calculate_due_timestamp(now, duration_days),
        'rate_pct': Decimal(int(rate_bps)) / Decimal(100),
    }
