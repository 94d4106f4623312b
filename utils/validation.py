from decimal import Decimal, InvalidOperation
from typing import Optional

from stellar_sdk import StrKey

from protocols.codec import Amount, to_stroops
from protocols.config.networks import ACCOUNT_RESERVE_XLM
from protocols.errors import ValidationError

MIN_LOAN_XLM = Decimal("5")
MAX_LOAN_XLM = Decimal("100")
MIN_LOAN_DAYS = 7
MAX_LOAN_DAYS = 90
MIN_DEPOSIT_XLM = Decimal("1")
MAX_MEMO_BYTES = 28


def parse_amount(value: Amount, label: str = "Amount") -> Decimal:
    """Parse a user-supplied amount; it must be positive and fit the stroop scale"""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{label} is required.")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{label} must be a number.")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{label} must be greater than zero.")
    try:
        to_stroops(amount)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return amount


def spendable(balance: Optional[Amount]) -> Decimal:
    """Balance minus the XLM kept back for the account reserve and fees"""
    value = Decimal(str(balance or 0)) - ACCOUNT_RESERVE_XLM
    return value if value > 0 else Decimal(0)


def validate_loan_request(amount: Amount, duration_days: int, available: Optional[Amount] = None) -> Decimal:
    value = parse_amount(amount, "Loan amount")
    if value < MIN_LOAN_XLM:
        raise ValidationError(f"Minimum loan amount is {MIN_LOAN_XLM} XLM.")
    if value > MAX_LOAN_XLM:
        raise ValidationError(f"Maximum loan amount is {MAX_LOAN_XLM} XLM.")
    if available is not None and value > Decimal(str(available)):
        raise ValidationError(f"Pool only has {available} XLM available.")

    try:
        days = int(duration_days)
    except (TypeError, ValueError):
        raise ValidationError("Loan duration is required.")
    if days < MIN_LOAN_DAYS:
        raise ValidationError(f"Minimum duration is {MIN_LOAN_DAYS} days.")
    if days > MAX_LOAN_DAYS:
        raise ValidationError(f"Maximum duration is {MAX_LOAN_DAYS} days.")
    return value


def validate_deposit(amount: Amount, balance: Optional[Amount] = None) -> Decimal:
    value = parse_amount(amount, "Deposit amount")
    if value < MIN_DEPOSIT_XLM:
        raise ValidationError(f"Minimum deposit is {MIN_DEPOSIT_XLM:.2f} XLM")
    if balance is not None and value > spendable(balance):
        raise ValidationError(f"Insufficient balance. You have {spendable(balance):.2f} XLM available.")
    return value


def validate_payment(
    destination: str,
    amount: Amount,
    memo: Optional[str] = None,
    balance: Optional[Amount] = None
) -> Decimal:
    if not destination:
        raise ValidationError("Recipient address is required.")
    if not StrKey.is_valid_ed25519_public_key(destination):
        raise ValidationError("Invalid Stellar address. Must start with G and be 56 characters.")

    value = parse_amount(amount)
    if balance is not None and value > spendable(balance):
        raise ValidationError(
            f"Maximum is {spendable(balance):.2f} XLM. "
            f"{ACCOUNT_RESERVE_XLM} XLM reserved for account minimum balance."
        )

    if memo and len(memo.encode('utf-8')) > MAX_MEMO_BYTES:
        raise ValidationError(f"Memo must be {MAX_MEMO_BYTES} characters or less.")
    return value
