#!/usr/bin/env python3
"""
Transfer Handler - drives the send-to-email, send-to-wallet and bank
withdrawal conversations.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Tuple

from app.agents.conversation_state import (
    BankStep,
    ConversationState,
    EmailStep,
    FlowKind,
    FlowState,
    FlowStep,
    WalletStep,
    utcnow,
)
from app.schemas.core import Keyboard
from app.services.auth_service import AuthService
from app.services.copperx_service import CopperxAPIError, CopperxService
from app.utils.config import settings
from app.utils.keyboards import (
    back_to_menu_keyboard,
    bank_account_keyboard,
    confirmation_keyboard,
    login_keyboard,
    main_menu_keyboard,
    no_bank_accounts_keyboard,
    payee_keyboard,
    transfers_keyboard,
)
from app.utils.logger import get_logger
from app.utils.response_utils import ResponseFormatter, formatter as default_formatter
from app.utils.validators import is_valid_email, is_valid_wallet_address, validate_amount

logger = get_logger("transfer_handler")

LOGIN_REQUIRED = (
    "🔒 This feature requires login!\n\n"
    "Please use /login to connect your account first"
)
BUSY = "⏳ Still working on your previous request. Please wait a moment."
TRANSFER_FAILED = (
    "❌ Transfer failed.\n\n"
    "Please try again or contact support if the issue persists"
)

StepHandler = Callable[[FlowState, str], Awaitable[None]]


class TransferHandler:
    """Per-user transfer state machine.

    ``transport`` is the chat side: ``send_message(user_id, text, keyboard)``
    and ``edit_message(user_id, text, keyboard)``. Every handled event emits
    exactly one message through it.
    """

    def __init__(
        self,
        copperx: CopperxService,
        auth: AuthService,
        transport,
        states: Optional[ConversationState] = None,
        formatter: Optional[ResponseFormatter] = None,
    ):
        self.copperx = copperx
        self.auth = auth
        self.transport = transport
        self.states = states if states is not None else ConversationState()
        self.formatter = formatter or default_formatter
        self._step_handlers: Dict[Tuple[FlowKind, FlowStep], StepHandler] = {
            (FlowKind.EMAIL_TRANSFER, EmailStep.RECIPIENT): self._handle_email_recipient,
            (FlowKind.EMAIL_TRANSFER, EmailStep.NEW_RECIPIENT): self._handle_email_recipient,
            (FlowKind.EMAIL_TRANSFER, EmailStep.AMOUNT): self._handle_email_amount,
            (FlowKind.EMAIL_TRANSFER, EmailStep.CONFIRMATION): self._handle_transfer_confirmation,
            (FlowKind.WALLET_TRANSFER, WalletStep.RECIPIENT): self._handle_wallet_recipient,
            (FlowKind.WALLET_TRANSFER, WalletStep.AMOUNT): self._handle_wallet_amount,
            (FlowKind.WALLET_TRANSFER, WalletStep.CONFIRMATION): self._handle_transfer_confirmation,
            (FlowKind.BANK_WITHDRAWAL, BankStep.BANK_SELECTION): self._handle_bank_selection_text,
            (FlowKind.BANK_WITHDRAWAL, BankStep.AMOUNT_AND_QUOTE): self._handle_bank_amount,
            (FlowKind.BANK_WITHDRAWAL, BankStep.CONFIRMATION): self._handle_bank_confirmation,
        }

    # ------------------------------------------------------------------
    # Messaging and locking helpers
    # ------------------------------------------------------------------
    async def _send(self, user_id: str, text: str, keyboard: Optional[Keyboard] = None):
        await self.transport.send_message(user_id, text, keyboard)

    async def _edit(self, user_id: str, text: str, keyboard: Optional[Keyboard] = None):
        await self.transport.edit_message(user_id, text, keyboard)

    async def _run_exclusive(self, user_id: str, operation: Callable[..., Awaitable[None]], *args) -> bool:
        """Run ``operation`` holding the user's lock; a second concurrent event is turned away."""
        if self.states.is_busy(user_id):
            logger.info(f"Rejected concurrent input for user {user_id}")
            await self._send(user_id, BUSY)
            return False

        async with self.states.lock_for(user_id):
            try:
                await operation(user_id, *args)
            except Exception as e:
                logger.exception(f"Transfer flow error for user {user_id}: {e}")
                self.states.clear_state(user_id)
                await self._send(user_id, TRANSFER_FAILED, back_to_menu_keyboard())
        return True

    async def _logged_in(self, user_id: str) -> bool:
        if await self.auth.is_authenticated(user_id):
            return True
        await self._send(user_id, LOGIN_REQUIRED, login_keyboard())
        return False

    async def _default_wallet_balance(self, user_id: str) -> Optional[str]:
        """Two-decimal balance lines of the default wallet; None when they cannot be fetched."""
        try:
            wallets, default_wallet = await asyncio.gather(
                self.copperx.get_wallet_balances(user_id),
                self.copperx.get_default_wallet(user_id),
            )
        except CopperxAPIError as e:
            logger.warning(f"Could not fetch default wallet balance for user {user_id}: {e.message}")
            return None
        return self.formatter.format_default_wallet_balance(wallets, default_wallet.id)

    def _quote_expired(self, state: FlowState) -> bool:
        if settings.quote_ttl_seconds <= 0 or state.quote_fetched_at is None:
            return False
        return utcnow() - state.quote_fetched_at > timedelta(seconds=settings.quote_ttl_seconds)

    # ------------------------------------------------------------------
    # Flow entry
    # ------------------------------------------------------------------
    async def begin_email_transfer(self, user_id: str):
        await self._run_exclusive(user_id, self._start_email_transfer)

    async def _start_email_transfer(self, user_id: str):
        if not await self._logged_in(user_id):
            return

        try:
            payees = await self.copperx.get_payees(user_id)
        except CopperxAPIError as e:
            logger.warning(f"Error fetching payees for user {user_id}: {e.message}")
            payees = None

        self.states.save_state(
            FlowState(user_id=user_id, flow_kind=FlowKind.EMAIL_TRANSFER, step=EmailStep.RECIPIENT)
        )

        if payees is None:
            await self._send(
                user_id,
                "📧 *Send to Email*\n\nPlease enter the recipient's email address:",
                back_to_menu_keyboard(),
            )
            return

        message = "📧 *Send to Email*\n\n"
        if payees:
            message += "Select a saved recipient or add a new one:"
        else:
            message += "You don't have any saved recipients yet. Add a new one:"
        await self._send(user_id, message, payee_keyboard(payees))

    async def begin_wallet_transfer(self, user_id: str):
        await self._run_exclusive(user_id, self._start_wallet_transfer)

    async def _start_wallet_transfer(self, user_id: str):
        if not await self._logged_in(user_id):
            return

        try:
            balances = self.formatter.format_balances(await self.copperx.get_wallet_balances(user_id))
        except CopperxAPIError as e:
            logger.warning(f"Error fetching balances for user {user_id}: {e.message}")
            balances = ""

        self.states.save_state(
            FlowState(user_id=user_id, flow_kind=FlowKind.WALLET_TRANSFER, step=WalletStep.RECIPIENT)
        )

        message = "🔄 *External Wallet Transfer*\n\n"
        if balances:
            message += f"Available balances:\n{balances}\n\n"
        message += "Please enter the recipient's wallet address:"
        await self._send(user_id, message, back_to_menu_keyboard())

    async def begin_bank_withdrawal(self, user_id: str):
        await self._run_exclusive(user_id, self._start_bank_withdrawal)

    async def _start_bank_withdrawal(self, user_id: str):
        if not await self._logged_in(user_id):
            return

        balance_text = await self._default_wallet_balance(user_id)

        try:
            accounts = await self.copperx.get_accounts(user_id)
        except CopperxAPIError as e:
            logger.warning(f"Error fetching accounts for user {user_id}: {e.message}")
            self.states.clear_state(user_id)
            await self._send(
                user_id,
                "❌ Couldn't load your bank accounts.\n\n"
                "Please try again or contact support if the issue persists",
                back_to_menu_keyboard(),
            )
            return

        verified = [a for a in accounts if a.is_bank_account and a.is_verified]
        if not verified:
            self.states.clear_state(user_id)
            await self._send(
                user_id,
                "🏦 No bank accounts found.\n\nPlease add a bank account first.",
                no_bank_accounts_keyboard(),
            )
            return

        self.states.save_state(
            FlowState(
                user_id=user_id,
                flow_kind=FlowKind.BANK_WITHDRAWAL,
                step=BankStep.BANK_SELECTION,
                bank_account_ids=[a.id for a in verified],
            )
        )

        message = "🏦 *Bank Withdrawal*\n\n"
        if balance_text:
            message += f"💰 *Available Balance:*\n{balance_text}\n\n"
        message += "Select a bank account for withdrawal:"
        await self._send(user_id, message, bank_account_keyboard(verified))

    # ------------------------------------------------------------------
    # Selection sub-operations (button presses)
    # ------------------------------------------------------------------
    async def select_saved_recipient(self, user_id: str, email: str):
        await self._run_exclusive(user_id, self._select_saved_recipient, email)

    async def _select_saved_recipient(self, user_id: str, email: str):
        if not await self._logged_in(user_id):
            return
        if not is_valid_email(email):
            await self._send(user_id, "❌ Invalid email address. Please try again:", back_to_menu_keyboard())
            return

        balance_text = await self._default_wallet_balance(user_id)
        self.states.save_state(
            FlowState(
                user_id=user_id,
                flow_kind=FlowKind.EMAIL_TRANSFER,
                step=EmailStep.AMOUNT,
                recipient=email,
            )
        )

        message = f"📧 *Send to Email*\n\nRecipient: {email}\n\n"
        if balance_text:
            message += f"💰 *Available Balance:*\n{balance_text}\n\n"
        message += "Please enter the amount you want to send:"
        await self._edit(user_id, message, back_to_menu_keyboard())

    async def select_bank_account(self, user_id: str, bank_account_id: str):
        await self._run_exclusive(user_id, self._select_bank_account, bank_account_id)

    async def _select_bank_account(self, user_id: str, bank_account_id: str):
        if not await self._logged_in(user_id):
            return

        state = self.states.get_state(user_id)
        if state is None or state.flow_kind != FlowKind.BANK_WITHDRAWAL:
            await self._send(
                user_id,
                "🏦 That selection is no longer active.\n\nPlease start the withdrawal again with /withdraw",
                back_to_menu_keyboard(),
            )
            return
        if bank_account_id not in state.bank_account_ids:
            logger.warning(f"User {user_id} selected a bank account that was not offered")
            await self._send(user_id, "❌ Unknown bank account. Please pick one from the list.", back_to_menu_keyboard())
            return

        self.states.save_state(
            FlowState(
                user_id=user_id,
                flow_kind=FlowKind.BANK_WITHDRAWAL,
                step=BankStep.AMOUNT_AND_QUOTE,
                bank_account_id=bank_account_id,
                bank_account_ids=state.bank_account_ids,
            )
        )
        await self._send(
            user_id,
            "💰 Please enter the amount you want to withdraw (e.g., '100'):",
            back_to_menu_keyboard(),
        )

    async def add_new_recipient(self, user_id: str):
        await self._run_exclusive(user_id, self._add_new_recipient)

    async def _add_new_recipient(self, user_id: str):
        if not await self._logged_in(user_id):
            return

        self.states.save_state(
            FlowState(user_id=user_id, flow_kind=FlowKind.EMAIL_TRANSFER, step=EmailStep.NEW_RECIPIENT)
        )
        await self._edit(
            user_id,
            "📧 *Add New Recipient*\n\nPlease enter the recipient's email address:",
            back_to_menu_keyboard(),
        )

    def abandon_flow(self, user_id: str) -> bool:
        """Drop the user's flow unless a request for it is still running."""
        if self.states.is_busy(user_id):
            return False
        return self.states.clear_state(user_id)

    # ------------------------------------------------------------------
    # Universal input dispatch
    # ------------------------------------------------------------------
    async def handle_input(self, user_id: str, text: str) -> bool:
        """Advance the user's active flow with ``text``.

        Returns False, without sending anything, when the user has no flow.
        """
        state = self.states.get_state(user_id)
        if state is None:
            return False

        if not self.states.is_busy(user_id) and self.states.is_state_expired(state):
            self.states.clear_state(user_id)
            await self._send(
                user_id,
                "⌛ Your previous transfer session expired. Please start again.",
                main_menu_keyboard(),
            )
            return True

        await self._run_exclusive(user_id, self._dispatch, text)
        return True

    async def _dispatch(self, user_id: str, text: str):
        # Re-read under the lock: the flow may have ended while we waited
        state = self.states.get_state(user_id)
        if state is None:
            return
        handler = self._step_handlers[(state.flow_kind, state.step)]
        await handler(state, text.strip())

    # Email transfer

    async def _handle_email_recipient(self, state: FlowState, text: str):
        user_id = state.user_id
        if not is_valid_email(text):
            await self._send(user_id, "❌ Invalid email address. Please try again:", back_to_menu_keyboard())
            return

        warning = ""
        try:
            await self.copperx.save_payee(user_id, text, text.split("@")[0])
        except CopperxAPIError as e:
            logger.warning(f"Could not save payee for user {user_id}: {e.message}")
            warning = "⚠️ Could not save the recipient, but you can still proceed with the transfer.\n\n"

        balance_text = await self._default_wallet_balance(user_id)
        self.states.save_state(state.advance(recipient=text, step=EmailStep.AMOUNT))

        message = f"{warning}📧 Recipient: {text}\n\n"
        if balance_text:
            message += f"💰 *Available Balance:*\n{balance_text}\n\n"
        message += "Please enter the amount you want to send:"
        await self._send(user_id, message, back_to_menu_keyboard())

    async def _handle_email_amount(self, state: FlowState, text: str):
        user_id = state.user_id
        minimum = settings.email_transfer_min_amount
        symbol = settings.default_symbol
        is_valid, amount, error = validate_amount(text, minimum)
        if error == "format":
            await self._send(user_id, '❌ Invalid amount format. Please use format: "100"', back_to_menu_keyboard())
            return
        if error == "minimum":
            await self._send(
                user_id,
                f"❌ Minimum amount for transfers is {minimum} {symbol}.\n\nPlease enter a larger amount:",
                back_to_menu_keyboard(),
            )
            return

        next_state = state.advance(
            amount=format(amount, "f"),
            symbol=symbol,
            awaiting_confirmation=True,
            step=EmailStep.CONFIRMATION,
        )
        self.states.save_state(next_state)
        await self._send_confirmation(next_state)

    # Wallet transfer

    async def _handle_wallet_recipient(self, state: FlowState, text: str):
        user_id = state.user_id
        if not is_valid_wallet_address(text):
            await self._send(
                user_id,
                "❌ Invalid wallet address.\n\nPlease enter a valid wallet address starting with '0x'",
                back_to_menu_keyboard(),
            )
            return

        self.states.save_state(state.advance(recipient=text, step=WalletStep.AMOUNT))
        await self._send(user_id, "💰 Please enter the amount you want to send:", back_to_menu_keyboard())

    async def _handle_wallet_amount(self, state: FlowState, text: str):
        user_id = state.user_id
        is_valid, amount, error = validate_amount(text)
        if not is_valid:
            await self._send(user_id, '❌ Invalid format.\n\nPlease use format: "100"', back_to_menu_keyboard())
            return

        next_state = state.advance(
            amount=format(amount, "f"),
            symbol=settings.default_symbol,
            awaiting_confirmation=True,
            step=WalletStep.CONFIRMATION,
        )
        self.states.save_state(next_state)
        await self._send_confirmation(next_state)

    async def _send_confirmation(self, state: FlowState):
        is_wallet = state.flow_kind == FlowKind.WALLET_TRANSFER
        recipient = f"`{state.recipient}`" if is_wallet else state.recipient
        message = (
            "⚠️ *Please Confirm Transfer*\n\n"
            f"To: {recipient}\n"
            f"Amount: {state.amount} {state.symbol}\n"
        )
        if is_wallet:
            message += (
                "\nPurpose: Self Transfer\n\n"
                "⚠️ *Important:*\n"
                "• Make sure the recipient address is correct\n"
                "• Verify the network matches the recipient\n"
                "• Transfers cannot be reversed\n"
            )
        await self._send(state.user_id, message, confirmation_keyboard())

    async def _handle_transfer_confirmation(self, state: FlowState, text: str):
        """Single-shot: the flow ends whatever the answer."""
        user_id = state.user_id
        try:
            if text.lower() != "confirm":
                await self._send(user_id, "❌ Transfer cancelled.", back_to_menu_keyboard())
                return

            amount = Decimal(state.amount)
            try:
                if state.flow_kind == FlowKind.EMAIL_TRANSFER:
                    await self.copperx.send_transfer(user_id, state.recipient, amount, state.symbol)
                else:
                    await self.copperx.withdraw_to_wallet(user_id, state.recipient, amount, state.symbol)
            except CopperxAPIError as e:
                logger.error(f"Transfer failed for user {user_id}: {e.message}")
                await self._send(user_id, TRANSFER_FAILED, back_to_menu_keyboard())
                return

            logger.info(f"{state.flow_kind.value} of {state.amount} {state.symbol} submitted for user {user_id}")
            await self._send(
                user_id,
                "✅ Transfer initiated successfully!\n\nYou can track the status in your recent transfers.",
                transfers_keyboard(),
            )
        finally:
            self.states.clear_state(user_id)

    # Bank withdrawal

    async def _handle_bank_selection_text(self, state: FlowState, text: str):
        await self._send(
            state.user_id,
            "🏦 Please select a bank account from the list above.",
            back_to_menu_keyboard(),
        )

    async def _handle_bank_amount(self, state: FlowState, text: str):
        user_id = state.user_id
        minimum = settings.bank_withdrawal_min_amount
        symbol = settings.default_symbol
        tokens = text.split()
        is_valid, amount, error = validate_amount(tokens[0] if tokens else "", minimum)
        if error == "format":
            await self._send(user_id, "❌ Invalid format.\n\nPlease use format: '100'", back_to_menu_keyboard())
            return
        if error == "minimum":
            await self._send(
                user_id,
                f"❌ Minimum amount for bank withdrawals is {minimum} {symbol}.\n\nPlease enter a larger amount:",
                back_to_menu_keyboard(),
            )
            return

        try:
            quote = await self.copperx.get_offramp_quote(user_id, amount, state.bank_account_id, symbol)
        except CopperxAPIError as e:
            logger.error(f"Error getting quote for user {user_id}: {e.message}")
            self.states.clear_state(user_id)
            await self._send(
                user_id,
                "❌ Failed to get withdrawal quote.\n\n"
                "Please try again or contact support if the issue persists",
                back_to_menu_keyboard(),
            )
            return

        self.states.save_state(
            state.advance(
                amount=format(amount, "f"),
                symbol=symbol,
                quote=quote,
                quote_fetched_at=utcnow(),
                awaiting_confirmation=True,
                step=BankStep.CONFIRMATION,
            )
        )
        await self._send(user_id, self.formatter.format_quote(quote, amount, symbol), confirmation_keyboard())

    async def _handle_bank_confirmation(self, state: FlowState, text: str):
        """Single-shot: the stored quote is used at most once."""
        user_id = state.user_id
        try:
            if text.lower() != "confirm":
                await self._send(user_id, "❌ Withdrawal cancelled.", back_to_menu_keyboard())
                return

            if self._quote_expired(state):
                logger.info(f"Stale quote rejected for user {user_id}")
                await self._send(
                    user_id,
                    "⌛ This quote has expired.\n\nPlease start the withdrawal again to get a fresh quote.",
                    back_to_menu_keyboard(),
                )
                return

            try:
                await self.copperx.execute_offramp(user_id, state.quote)
            except CopperxAPIError as e:
                logger.error(f"Error processing withdrawal for user {user_id}: {e.message}")
                await self._send(
                    user_id,
                    "❌ Withdrawal failed.\n\n"
                    "Please try again or contact support if the issue persists",
                    back_to_menu_keyboard(),
                )
                return

            logger.info(f"Withdrawal of {state.amount} {state.symbol} submitted for user {user_id}")
            await self._send(
                user_id,
                "✅ Withdrawal initiated successfully!\n\nYou can track the status in your recent transfers.",
                transfers_keyboard(),
            )
        finally:
            self.states.clear_state(user_id)
