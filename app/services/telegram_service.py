"""
Telegram Bot API service for the chat interface.
Uses HTTPS requests to api.telegram.org; no heavy SDK required.
"""

import httpx
from collections import OrderedDict
from typing import Dict, Any, Optional, List, Tuple
from app.schemas.core import Keyboard
from app.utils.logger import get_logger
from app.utils.config import settings

logger = get_logger("telegram_service")

PARSE_MODE = "Markdown"
# Chats whose last message id is kept for editing; the least recently used is dropped first
MAX_TRACKED_CHATS = 10000


def to_reply_markup(keyboard: Optional[Keyboard]) -> Optional[Dict[str, Any]]:
    if not keyboard:
        return None
    return {
        "inline_keyboard": [
            [{"text": button.text, "callback_data": button.action} for button in row]
            for row in keyboard
        ]
    }


class TelegramService:
    """Telegram Bot API service: send and edit messages, acknowledge button presses, poll updates."""

    def __init__(self, token: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = (token if token is not None else settings.telegram_bot_token).strip()
        self._base_url = f"https://api.telegram.org/bot{self.token}" if self.token else ""
        self._transport = transport
        # Last message the bot sent to each chat, target of edit_message
        self._last_message_ids: "OrderedDict[str, int]" = OrderedDict()
        if not self.token:
            logger.warning("TELEGRAM_BOT_TOKEN not configured; Telegram chat interface disabled")

    def _enabled(self) -> bool:
        return bool(self._base_url)

    async def _call(self, method: str, payload: Dict[str, Any], timeout: float = 30.0) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            r = await client.post(f"{self._base_url}/{method}", json=payload)
            return r.json()

    async def _call_formatted(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Call with Markdown; resend as plain text if Telegram cannot parse the entities."""
        data = await self._call(method, dict(payload, parse_mode=PARSE_MODE))
        if not data.get("ok") and "parse entities" in str(data.get("description", "")):
            logger.debug(f"Telegram {method} markdown rejected, sending plain text")
            data = await self._call(method, payload)
        return data

    async def send_message(self, chat_id: str, text: str, keyboard: Optional[Keyboard] = None) -> Dict[str, Any]:
        """Send a text message, optionally with inline choice buttons."""
        if not self._enabled():
            return {"ok": False, "error": "Telegram bot token not configured"}
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text[:4096]}
        markup = to_reply_markup(keyboard)
        if markup:
            payload["reply_markup"] = markup
        try:
            data = await self._call_formatted("sendMessage", payload)
            if data.get("ok"):
                message_id = (data.get("result") or {}).get("message_id")
                if message_id is not None:
                    self.remember_message(chat_id, message_id)
            else:
                logger.error(f"Telegram sendMessage failed: {data}")
            return data
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram send_message error: {e}")
            return {"ok": False, "error": str(e)}

    async def edit_message(
        self,
        chat_id: str,
        text: str,
        keyboard: Optional[Keyboard] = None,
        message_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Edit the last message sent to the chat; sends a new one when there is nothing to edit."""
        if not self._enabled():
            return {"ok": False, "error": "Telegram bot token not configured"}
        message_id = message_id or self._last_message_ids.get(str(chat_id))
        if message_id is None:
            return await self.send_message(chat_id, text, keyboard)

        payload: Dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": text[:4096]}
        markup = to_reply_markup(keyboard)
        if markup:
            payload["reply_markup"] = markup
        try:
            data = await self._call_formatted("editMessageText", payload)
            if not data.get("ok"):
                logger.warning(f"Telegram editMessageText failed, sending new message: {data}")
                return await self.send_message(chat_id, text, keyboard)
            return data
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram edit_message error: {e}")
            return {"ok": False, "error": str(e)}

    def remember_message(self, chat_id: str, message_id: int) -> None:
        """Record the message the next edit in this chat targets (last sent or button pressed)."""
        key = str(chat_id)
        self._last_message_ids[key] = message_id
        self._last_message_ids.move_to_end(key)
        while len(self._last_message_ids) > MAX_TRACKED_CHATS:
            self._last_message_ids.popitem(last=False)

    async def answer_callback_query(self, callback_query_id: str, text: str = "") -> bool:
        """Stop the loading spinner on a pressed button."""
        if not self._enabled():
            return False
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text[:200]
        try:
            data = await self._call("answerCallbackQuery", payload, timeout=10.0)
            return bool(data.get("ok"))
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Telegram answerCallbackQuery error: {e}")
            return False

    async def get_webhook_info(self) -> Dict[str, Any]:
        """Return getWebhookInfo result. If result.url is set, getUpdates will not receive updates."""
        if not self._enabled():
            return {}
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                r = await client.get(f"{self._base_url}/getWebhookInfo")
                data = r.json()
                return data.get("result", {}) if data.get("ok") else {}
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Telegram getWebhookInfo error: {e}")
            return {}

    async def delete_webhook(self) -> bool:
        """Remove webhook so getUpdates (long polling) can receive updates. Returns True on success."""
        if not self._enabled():
            return False
        try:
            data = await self._call("deleteWebhook", {}, timeout=10.0)
            ok = data.get("ok", False)
            if ok:
                logger.info("Telegram webhook removed; long polling can receive updates.")
            return ok
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Telegram deleteWebhook error: {e}")
            return False

    async def get_updates(
        self, offset: Optional[int] = None, timeout: int = 25
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Long polling: get updates from Telegram. Returns (list of updates, next_offset).
        Use next_offset for the next get_updates call so updates are not repeated.
        """
        if not self._enabled():
            return [], offset or 0
        try:
            params: Dict[str, Any] = {"timeout": timeout, "allowed_updates": '["message","callback_query"]'}
            if offset is not None:
                params["offset"] = offset
            async with httpx.AsyncClient(timeout=timeout + 5, transport=self._transport) as client:
                r = await client.get(f"{self._base_url}/getUpdates", params=params)
                data = r.json()
                if not data.get("ok"):
                    logger.warning(f"Telegram getUpdates failed: {data}")
                    return [], offset or 0
                results = data.get("result") or []
                next_offset = offset or 0
                if results:
                    next_offset = max(u.get("update_id", 0) for u in results) + 1
                return results, next_offset
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Telegram get_updates error: {e}")
            return [], offset or 0
