import asyncio
import json

import pytest
from stellar_sdk import Account, Keypair
from stellar_sdk.client.response import Response
from stellar_sdk.exceptions import BadRequestError, NotFoundError

from protocols.errors import AccountNotFound, SubmissionFailed, ValidationError
from protocols.payments import PaymentSender, parse_horizon_error
from protocols.wallet import KeypairWallet
from tests.conftest import NETWORK_PASSPHRASE


def horizon_response(status_code, body):
    return Response(
        status_code=status_code,
        text=json.dumps(body),
        headers={},
        url="https://horizon-testnet.stellar.org/transactions",
    )


class FakeHorizon:
    def __init__(self, funded=()):
        self.funded = set(funded)
        self.submitted = []
        self.reject_with = None

    async def load_account(self, account_id):
        if account_id not in self.funded:
            raise NotFoundError(horizon_response(404, {'title': 'Resource Missing'}))
        return Account(account_id, 500)

    async def submit_transaction(self, envelope):
        self.submitted.append(envelope)
        if self.reject_with is not None:
            raise BadRequestError(horizon_response(400, {
                'title': 'Transaction Failed',
                'extras': {'result_codes': self.reject_with},
            }))
        return {'hash': envelope.hash_hex(), 'successful': True}


@pytest.fixture
def sender_keypair():
    return Keypair.random()


@pytest.fixture
def horizon(sender_keypair):
    return FakeHorizon(funded={sender_keypair.public_key})


@pytest.fixture
def sender(horizon, sender_keypair):
    return PaymentSender(horizon, KeypairWallet(sender_keypair.secret), NETWORK_PASSPHRASE)


class TestSendPayment:
    def test_payment_with_memo(self, sender, horizon, sender_keypair):
        recipient = Keypair.random().public_key

        result = asyncio.run(sender.send_payment(recipient, "12.5", memo="rent", balance="100"))

        envelope = horizon.submitted[0]
        assert result.hash == envelope.hash_hex()
        operation = envelope.transaction.operations[0]
        assert operation.destination.account_id == recipient
        assert operation.amount == "12.5"
        assert envelope.transaction.memo.memo_text == b"rent"
        assert envelope.transaction.source.account_id == sender_keypair.public_key

    def test_invalid_recipient_never_submits(self, sender, horizon):
        with pytest.raises(ValidationError):
            asyncio.run(sender.send_payment("GBAD", "1"))
        assert horizon.submitted == []

    def test_unfunded_sender(self, horizon):
        stranger = Keypair.random()
        sender = PaymentSender(horizon, KeypairWallet(stranger.secret), NETWORK_PASSPHRASE)

        with pytest.raises(AccountNotFound):
            asyncio.run(sender.send_payment(Keypair.random().public_key, "1"))

    def test_missing_destination_is_explained(self, sender, horizon):
        horizon.reject_with = {'transaction': 'tx_failed', 'operations': ['op_no_destination']}

        with pytest.raises(SubmissionFailed, match="need to be funded first"):
            asyncio.run(sender.send_payment(Keypair.random().public_key, "1"))


class TestParseHorizonError:
    def test_known_codes(self):
        assert "Insufficient XLM" in parse_horizon_error(
            {'result_codes': {'transaction': 'tx_failed', 'operations': ['op_underfunded']}}
        )
        assert parse_horizon_error(
            {'result_codes': {'transaction': 'tx_bad_auth'}}
        ) == "Transaction signature is invalid."

    def test_unknown_codes_are_echoed(self):
        message = parse_horizon_error({'result_codes': {'transaction': 'tx_too_late'}})
        assert message.startswith("Transaction failed: ")
        assert "tx_too_late" in message

    def test_no_extras(self):
        assert parse_horizon_error(None) == "Transaction failed."
