#!/usr/bin/env python3
"""
History Handler Module
Read-only view of the user's recent transfers.
"""

from typing import List

from app.schemas.core import TransferRecord
from app.services.auth_service import AuthService
from app.services.copperx_service import CopperxAPIError, CopperxService
from app.utils.keyboards import back_to_menu_keyboard, login_keyboard
from app.utils.logger import get_logger
from app.utils.response_utils import formatter

logger = get_logger("history_handler")

EMPTY_HISTORY = "📊 No transfers found.\n\nUse /send_to_email or /withdraw to make your first transfer."
HISTORY_FOOTER = "Use /send_to_email to send via email or /withdraw for bank withdrawals."
# The view always shows at most this many entries, whatever page size is fetched
HISTORY_DISPLAY_LIMIT = 10


class HistoryHandler:
    """Lists recent transfers. Never reads or writes transfer flow state."""

    def __init__(self, copperx: CopperxService, auth: AuthService, transport):
        self.copperx = copperx
        self.auth = auth
        self.transport = transport

    def newest_first(self, records: List[TransferRecord]) -> List[TransferRecord]:
        records = sorted(records, key=lambda r: r.created_at, reverse=True)
        return records[:HISTORY_DISPLAY_LIMIT]

    def render(self, records: List[TransferRecord]) -> str:
        if not records:
            return EMPTY_HISTORY
        entries = [formatter.format_transfer(record) for record in self.newest_first(records)]
        return "📊 *Recent Transfers*\n\n" + "\n\n".join(entries) + f"\n\n{HISTORY_FOOTER}"

    async def list_recent_transfers(self, user_id: str):
        if not await self.auth.is_authenticated(user_id):
            await self.transport.send_message(
                user_id,
                "🔒 This feature requires login!\n\nPlease use /login to connect your account first",
                login_keyboard(),
            )
            return

        try:
            records = await self.copperx.get_transfers(user_id)
        except CopperxAPIError as e:
            logger.error(f"Error fetching transfers for user {user_id}: {e.message}")
            await self.transport.send_message(
                user_id,
                "❌ Failed to fetch transfers.\n\nPlease try again later.",
                back_to_menu_keyboard(),
            )
            return

        logger.info(f"Showing {min(len(records), HISTORY_DISPLAY_LIMIT)} transfers to user {user_id}")
        await self.transport.send_message(user_id, self.render(records), back_to_menu_keyboard())
