import logging
from typing import Optional

from stellar_sdk import Keypair, TransactionEnvelope
from stellar_sdk.exceptions import Ed25519SecretSeedInvalidError

from .base import Wallet
from .errors import UserRejected, WalletUnavailable

logger = logging.getLogger(__name__)

class KeypairWallet(Wallet):
    """Signs locally with a secret seed (e.g. WALLET_PVT_KEY from .env)

    An optional ``approve`` callback is asked before every signature; a
    falsy answer counts as the user dismissing the request.
    """

    def __init__(self, secret: Optional[str], approve=None):
        self.keypair: Optional[Keypair] = None
        self.approve = approve
        if secret:
            try:
                self.keypair = Keypair.from_secret(secret.strip())
            except Ed25519SecretSeedInvalidError as e:
                raise WalletUnavailable(f"Invalid wallet secret: {e}") from e
            logger.info(f"Wallet connected: {self.keypair.public_key}")

    async def get_address(self) -> str:
        if self.keypair is None:
            raise WalletUnavailable("Wallet not connected")
        return self.keypair.public_key

    async def sign(self, tx_xdr: str, network_passphrase: str) -> str:
        if self.keypair is None:
            raise WalletUnavailable("Wallet not connected")
        envelope = TransactionEnvelope.from_xdr(tx_xdr, network_passphrase)
        if self.approve is not None and not await self.approve(envelope):
            raise UserRejected("Signing request was rejected")
        envelope.sign(self.keypair)
        return envelope.to_xdr()
