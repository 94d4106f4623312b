import json
import logging
from typing import Any, Dict, Optional

from stellar_sdk import Asset, TransactionBuilder, TransactionEnvelope
from stellar_sdk.exceptions import BadRequestError, NotFoundError

from utils.validation import validate_payment
from .base import Wallet
from .codec import Amount
from .errors import AccountNotFound, SubmissionFailed
from .pipeline import TransactionResult

logger = logging.getLogger(__name__)


def parse_horizon_error(extras: Optional[Dict[str, Any]]) -> str:
    """Turn Horizon's result codes into a message a user can act on"""
    result_codes = (extras or {}).get('result_codes')
    if not result_codes:
        return "Transaction failed."

    operations = result_codes.get('operations') or []
    transaction = result_codes.get('transaction') or ""
    if 'op_no_destination' in operations:
        return "Recipient account does not exist on testnet. They need to be funded first."
    if 'op_underfunded' in operations:
        return "Insufficient XLM balance for this transaction."
    if 'tx_bad_auth' in transaction:
        return "Transaction signature is invalid."
    return f"Transaction failed: {json.dumps(result_codes)}"


class PaymentSender:
    """Native XLM payments, submitted through Horizon

    Horizon only answers a submission once the transaction is in a ledger,
    so there is no separate polling step here.
    """

    def __init__(
        self,
        horizon,
        wallet: Wallet,
        network_passphrase: str,
        base_fee: int = 100,
        tx_timeout: int = 30
    ):
        self.horizon = horizon
        self.wallet = wallet
        self.network_passphrase = network_passphrase
        self.base_fee = base_fee
        self.tx_timeout = tx_timeout

    async def send_payment(
        self,
        destination: str,
        amount: Amount,
        memo: Optional[str] = None,
        balance: Optional[Amount] = None
    ) -> TransactionResult:
        """
        Send XLM to another account

        Args:
            destination: Recipient public key (G...)
            amount: Amount of XLM
            memo: Optional text memo (max 28 bytes)
            balance: Sender's current balance, checked against the reserve when given

        Returns:
            TransactionResult with the payment hash
        """
        value = validate_payment(destination, amount, memo, balance)
        source = await self.wallet.get_address()

        try:
            account = await self.horizon.load_account(source)
        except NotFoundError as e:
            raise AccountNotFound(source) from e

        builder = TransactionBuilder(
            source_account=account,
            network_passphrase=self.network_passphrase,
            base_fee=self.base_fee,
        ).append_payment_op(
            destination=destination,
            asset=Asset.native(),
            amount=str(value),
        )
        if memo:
            builder.add_text_memo(memo)
        tx = builder.set_timeout(self.tx_timeout).build()

        logger.info(f"Sending {value} XLM from {source} to {destination}")
        signed_xdr = await self.wallet.sign(tx.to_xdr(), self.network_passphrase)
        signed = TransactionEnvelope.from_xdr(signed_xdr, self.network_passphrase)

        try:
            response = await self.horizon.submit_transaction(signed)
        except BadRequestError as e:
            message = parse_horizon_error(e.extras)
            logger.error(f"Payment rejected: {message}")
            raise SubmissionFailed(message) from e
        except Exception as e:
            raise SubmissionFailed(f"Transaction failed during submission: {e}") from e

        tx_hash = response.get('hash') if isinstance(response, dict) else None
        logger.info(f"Payment confirmed (tx: {tx_hash})")
        return TransactionResult(hash=tx_hash or signed.hash_hex())
