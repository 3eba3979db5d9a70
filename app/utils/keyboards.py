"""Inline keyboards shared by the bot handlers."""

from typing import Iterable, List

from app.schemas.core import Account, Button, Keyboard, Payee

MAIN_MENU = "main_menu"
CONFIRM = "confirm"
CANCEL = "cancel"

# Telegram rejects callback data longer than 64 bytes
MAX_ACTION_BYTES = 64


def _fits(action: str) -> bool:
    return len(action.encode("utf-8")) <= MAX_ACTION_BYTES


def back_to_menu_keyboard() -> Keyboard:
    return [[Button(text="« Back to Menu", action=MAIN_MENU)]]


def confirmation_keyboard() -> Keyboard:
    return [[Button(text="✅ Confirm", action=CONFIRM), Button(text="❌ Cancel", action=CANCEL)]]


def login_keyboard() -> Keyboard:
    return [[Button(text="🔐 Login", action="login")]]


def main_menu_keyboard() -> Keyboard:
    return [
        [Button(text="📧 Send to Email", action="email_transfer")],
        [Button(text="🔄 Send to Wallet", action="wallet_transfer")],
        [Button(text="🏦 Withdraw to Bank", action="bank_withdrawal")],
        [Button(text="📊 Recent Transfers", action="transfers")],
    ]


def transfers_keyboard() -> Keyboard:
    return [
        [Button(text="📊 View Transfers", action="transfers")],
        [Button(text="« Back to Menu", action=MAIN_MENU)],
    ]


def payee_keyboard(payees: Iterable[Payee]) -> Keyboard:
    """Saved payees first, then add-new and back."""
    rows: List[List[Button]] = []
    for payee in payees:
        action = f"select_payee:{payee.email}"
        if _fits(action):
            rows.append([Button(text=payee.label, action=action)])
    rows.append([Button(text="➕ Add New Recipient", action="add_new_recipient")])
    rows.extend(back_to_menu_keyboard())
    return rows


def bank_account_keyboard(accounts: Iterable[Account]) -> Keyboard:
    rows: List[List[Button]] = []
    for account in accounts:
        action = f"select_bank:{account.id}"
        if _fits(action):
            rows.append([Button(text=account.label, action=action)])
    rows.extend(back_to_menu_keyboard())
    return rows


def no_bank_accounts_keyboard() -> Keyboard:
    return [
        [Button(text="➕ Add Bank Account", action="add_bank")],
        [Button(text="« Back to Menu", action=MAIN_MENU)],
    ]
