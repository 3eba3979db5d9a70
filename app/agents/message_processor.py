#!/usr/bin/env python3
"""
Message Processor Module
Turns Telegram updates into inbound events and routes commands, button
presses and free text to the right handler.
"""

from typing import Any, Dict, Optional

from app.agents.history_handler import HistoryHandler
from app.agents.login_handler import LoginHandler
from app.agents.transfer_handler import TransferHandler
from app.schemas.core import InboundEvent
from app.services.auth_service import AuthService
from app.services.copperx_service import CopperxService
from app.utils.keyboards import CANCEL, CONFIRM, MAIN_MENU, main_menu_keyboard
from app.utils.logger import get_logger

logger = get_logger("message_processor")

WELCOME = (
    "👋 *Welcome to the Copperx Transfer Bot!*\n\n"
    "Send USDC by email, to an external wallet, or withdraw to your bank.\n\n"
    "What would you like to do?"
)
UNKNOWN_INPUT = "🤔 I didn't understand that.\n\nUse /menu to see what I can do."


def parse_update(update: Dict[str, Any]) -> Optional[InboundEvent]:
    """Normalize a Telegram update; returns None for update kinds the bot ignores."""
    callback = update.get("callback_query")
    if callback:
        message = callback.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id") or (callback.get("from") or {}).get("id")
        if chat_id is None:
            return None
        return InboundEvent(
            user_id=str(chat_id),
            action=callback.get("data") or "",
            callback_id=callback.get("id"),
            message_id=message.get("message_id"),
            raw=update,
        )

    message = update.get("message") or {}
    chat_id = (message.get("chat") or {}).get("id")
    text = message.get("text")
    if chat_id is None or text is None:
        return None
    return InboundEvent(user_id=str(chat_id), text=text, raw=update)


class MessageProcessor:
    """Routes inbound events to the transfer, history and login handlers."""

    def __init__(self, copperx: CopperxService, auth: AuthService, transport, transfers: Optional[TransferHandler] = None):
        self.auth = auth
        self.transport = transport
        self.transfers = transfers or TransferHandler(copperx, auth, transport)
        self.history = HistoryHandler(copperx, auth, transport)
        self.login = LoginHandler(auth, transport)
        self.commands = {
            "/start": self.show_menu,
            "/menu": self.show_menu,
            "/send_to_email": self.transfers.begin_email_transfer,
            "/send_to_wallet": self.transfers.begin_wallet_transfer,
            "/withdraw": self.transfers.begin_bank_withdrawal,
            "/transfers": self.history.list_recent_transfers,
            "/login": self.login.start,
            "/logout": self.login.logout,
            "/cancel": self.cancel,
        }
        self.actions = {
            "email_transfer": self.transfers.begin_email_transfer,
            "wallet_transfer": self.transfers.begin_wallet_transfer,
            "bank_withdrawal": self.transfers.begin_bank_withdrawal,
            "add_new_recipient": self.transfers.add_new_recipient,
            "transfers": self.history.list_recent_transfers,
            "login": self.login.start,
            "add_bank": self.add_bank_guidance,
            MAIN_MENU: self.show_menu,
        }

    async def process_update(self, update: Dict[str, Any]) -> None:
        event = parse_update(update)
        if event is None:
            logger.debug(f"Ignoring update {update.get('update_id')}")
            return
        await self.process_event(event)

    async def process_event(self, event: InboundEvent) -> None:
        if event.is_action:
            await self._handle_action(event)
        else:
            await self._handle_text(event.user_id, event.text or "")

    async def _handle_action(self, event: InboundEvent):
        user_id, action = event.user_id, event.action or ""
        if event.callback_id and hasattr(self.transport, "answer_callback_query"):
            await self.transport.answer_callback_query(event.callback_id)
        if event.message_id is not None and hasattr(self.transport, "remember_message"):
            self.transport.remember_message(user_id, event.message_id)

        logger.info(f"Action '{action}' from user {user_id}")
        if action.startswith("select_payee:"):
            await self.transfers.select_saved_recipient(user_id, action.split(":", 1)[1])
        elif action.startswith("select_bank:"):
            await self.transfers.select_bank_account(user_id, action.split(":", 1)[1])
        elif action in (CONFIRM, CANCEL):
            # Confirmation buttons answer the pending step like typed text
            if not await self.transfers.handle_input(user_id, action):
                await self.transport.send_message(user_id, "Nothing to confirm right now.", main_menu_keyboard())
        elif action in self.actions:
            await self.actions[action](user_id)
        else:
            logger.warning(f"Unknown action '{action}' from user {user_id}")
            await self.transport.send_message(user_id, UNKNOWN_INPUT, main_menu_keyboard())

    async def _handle_text(self, user_id: str, text: str):
        command = text.strip().split(maxsplit=1)[0].split("@", 1)[0].lower() if text.strip() else ""
        if command in self.commands:
            logger.info(f"Command {command} from user {user_id}")
            if command != "/login":
                self.login.abandon(user_id)
            await self.commands[command](user_id)
            return

        if await self.login.handle_input(user_id, text):
            return
        if await self.transfers.handle_input(user_id, text):
            return
        await self.transport.send_message(user_id, UNKNOWN_INPUT, main_menu_keyboard())

    async def show_menu(self, user_id: str):
        self.transfers.abandon_flow(user_id)
        self.login.abandon(user_id)
        await self.transport.send_message(user_id, WELCOME, main_menu_keyboard())

    async def cancel(self, user_id: str):
        if self.transfers.abandon_flow(user_id):
            await self.transport.send_message(user_id, "❌ Operation cancelled.", main_menu_keyboard())
        elif self.transfers.states.is_busy(user_id):
            await self.transport.send_message(user_id, "⏳ Still working on your previous request. Please wait a moment.")
        else:
            await self.transport.send_message(user_id, "Nothing to cancel.", main_menu_keyboard())

    def close(self):
        """Release the session store; called once the bot stops taking updates."""
        self.auth.close()

    async def add_bank_guidance(self, user_id: str):
        await self.transport.send_message(
            user_id,
            "🏦 To add a bank account, open the Copperx app and add it under *Bank Accounts*.\n\n"
            "Once it is verified, use /withdraw to withdraw to it.",
            main_menu_keyboard(),
        )


def create_message_processor(transport=None) -> MessageProcessor:
    """Wire the Copperx client, session store and chat transport into a processor."""
    from app.services.telegram_service import TelegramService
    from app.utils.mongodb_manager import MongoDBManager

    auth = AuthService(store=MongoDBManager())
    copperx = CopperxService(auth=auth)
    return MessageProcessor(copperx, auth, transport or TelegramService())
