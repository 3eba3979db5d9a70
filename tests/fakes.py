"""Test doubles shared by the handler tests."""

import json
from unittest.mock import AsyncMock

from app.schemas.core import Account, DefaultWallet, OfframpQuote, Payee, TokenBalance, TransferResult, WalletBalance
from app.services.copperx_service import CopperxService


class FakeTransport:
    """Chat transport that records every outbound message."""

    def __init__(self):
        self.messages = []
        self.answered = []
        self.remembered = {}

    async def send_message(self, user_id, text, keyboard=None):
        self.messages.append(("send", user_id, text, keyboard))
        return {"ok": True}

    async def edit_message(self, user_id, text, keyboard=None):
        self.messages.append(("edit", user_id, text, keyboard))
        return {"ok": True}

    async def answer_callback_query(self, callback_query_id, text=""):
        self.answered.append(callback_query_id)
        return True

    def remember_message(self, user_id, message_id):
        self.remembered[user_id] = message_id

    @property
    def last_text(self):
        return self.messages[-1][2]

    @property
    def last_actions(self):
        keyboard = self.messages[-1][3] or []
        return [button.action for row in keyboard for button in row]


class FakeAuth:
    """Auth service where login is a set membership."""

    def __init__(self, *logged_in):
        self.logged_in = set(logged_in)
        self.closed = False

    async def is_authenticated(self, user_id):
        return user_id in self.logged_in

    async def get_auth_headers(self, user_id):
        return {"Authorization": f"Bearer token-{user_id}"}

    def close(self):
        self.closed = True


def make_copperx():
    """Copperx client mock with sensible default answers."""
    copperx = AsyncMock(spec=CopperxService)
    copperx.get_payees.return_value = []
    copperx.get_wallet_balances.return_value = [
        WalletBalance(wallet_id="w1", balances=[TokenBalance(symbol="USDC", amount="12.345678")]),
    ]
    copperx.get_default_wallet.return_value = DefaultWallet(id="w1")
    copperx.get_accounts.return_value = []
    copperx.get_transfers.return_value = []
    copperx.save_payee.return_value = True
    copperx.send_transfer.return_value = TransferResult(id="t1", status="pending")
    copperx.withdraw_to_wallet.return_value = TransferResult(id="t2", status="pending")
    copperx.execute_offramp.return_value = TransferResult(id="t3", status="initiated")
    return copperx


def make_payee(email="alice@example.com", nickname="alice"):
    return Payee(id="p1", email=email, nick_name=nickname)


def make_account(account_id, status="verified", account_type="bank_account"):
    return Account.model_validate({
        "id": account_id,
        "type": account_type,
        "status": status,
        "bankAccount": {"bankName": "HDFC Bank", "bankAccountNumber": "0012345678"},
    })


def make_quote(to_amount=9900000000, rate="83.5", total_fee=10000000, min_amount=5000000000):
    payload = {
        "toAmount": to_amount,
        "rate": rate,
        "totalFee": total_fee,
        "minAmount": min_amount,
        "toCurrency": "INR",
    }
    return OfframpQuote.model_validate({
        "quotePayload": json.dumps(payload),
        "quoteSignature": "signature-abc",
        "arrivalTimeMessage": "1-3 business days",
    })
