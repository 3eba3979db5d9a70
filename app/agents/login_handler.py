#!/usr/bin/env python3
"""
Login Handler Module
Two-step email OTP login: ask for the email, then for the emailed code.
"""

from typing import Dict, Optional

from app.services.auth_service import AuthService
from app.services.copperx_service import CopperxAPIError
from app.utils.keyboards import back_to_menu_keyboard, login_keyboard, main_menu_keyboard
from app.utils.logger import get_logger
from app.utils.validators import is_valid_email

logger = get_logger("login_handler")

AWAITING_EMAIL = "email"
AWAITING_OTP = "otp"


class LoginHandler:
    """Tracks users who are part-way through logging in."""

    def __init__(self, auth: AuthService, transport):
        self.auth = auth
        self.transport = transport
        self.pending: Dict[str, Dict[str, Optional[str]]] = {}

    def is_logging_in(self, user_id: str) -> bool:
        return user_id in self.pending

    def abandon(self, user_id: str) -> bool:
        return self.pending.pop(user_id, None) is not None

    async def start(self, user_id: str):
        if await self.auth.is_authenticated(user_id):
            await self.transport.send_message(
                user_id,
                "✅ You're already logged in.\n\nUse /logout to switch accounts.",
                main_menu_keyboard(),
            )
            return

        self.pending[user_id] = {"step": AWAITING_EMAIL, "email": None, "sid": None}
        await self.transport.send_message(
            user_id,
            "🔐 *Login to Copperx*\n\nPlease enter your Copperx email address:",
            back_to_menu_keyboard(),
        )

    async def handle_input(self, user_id: str, text: str) -> bool:
        """Consume ``text`` when the user is logging in; returns False otherwise."""
        pending = self.pending.get(user_id)
        if pending is None:
            return False

        text = text.strip()
        if pending["step"] == AWAITING_EMAIL:
            await self._handle_email(user_id, text)
        else:
            await self._handle_otp(user_id, text, pending)
        return True

    async def _handle_email(self, user_id: str, email: str):
        if not is_valid_email(email):
            await self.transport.send_message(
                user_id, "❌ Invalid email address. Please try again:", back_to_menu_keyboard()
            )
            return

        try:
            sid = await self.auth.request_email_otp(email)
        except CopperxAPIError as e:
            logger.error(f"OTP request failed for user {user_id}: {e.message}")
            self.pending.pop(user_id, None)
            await self.transport.send_message(
                user_id, "❌ Failed to send the login code.\n\nPlease try /login again.", login_keyboard()
            )
            return

        self.pending[user_id] = {"step": AWAITING_OTP, "email": email, "sid": sid}
        await self.transport.send_message(
            user_id,
            f"📨 A login code was sent to {email}.\n\nPlease enter the code:",
            back_to_menu_keyboard(),
        )

    async def _handle_otp(self, user_id: str, otp: str, pending: Dict[str, Optional[str]]):
        self.pending.pop(user_id, None)
        try:
            session = await self.auth.authenticate_email_otp(user_id, pending["email"], otp, pending["sid"])
        except CopperxAPIError as e:
            logger.warning(f"OTP authentication failed for user {user_id}: {e.message}")
            await self.transport.send_message(
                user_id, "❌ Invalid or expired code.\n\nPlease try /login again.", login_keyboard()
            )
            return

        greeting = f", {session.name}" if session.name else ""
        await self.transport.send_message(
            user_id,
            f"✅ Logged in successfully{greeting}!\n\nWhat would you like to do?",
            main_menu_keyboard(),
        )

    async def logout(self, user_id: str):
        self.pending.pop(user_id, None)
        await self.auth.logout(user_id)
        await self.transport.send_message(user_id, "👋 You have been logged out.", login_keyboard())
