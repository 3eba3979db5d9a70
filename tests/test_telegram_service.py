#!/usr/bin/env python3
"""
Telegram transport tests against an in-process httpx transport.
"""

import json
import unittest
from unittest.mock import patch

import httpx

from app.schemas.core import Button
from app.services.telegram_service import TelegramService, to_reply_markup


class TestTelegramService(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.calls = []
        self.responses = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content) if request.content else {}
        self.calls.append((method, payload))
        queue = self.responses.get(method) or [{"ok": True, "result": {"message_id": 77}}]
        body = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(200, json=body)

    def service(self):
        return TelegramService(token="123:abc", transport=httpx.MockTransport(self.handler))

    def test_reply_markup(self):
        markup = to_reply_markup([[Button(text="✅ Confirm", action="confirm")]])
        self.assertEqual(markup, {"inline_keyboard": [[{"text": "✅ Confirm", "callback_data": "confirm"}]]})
        self.assertIsNone(to_reply_markup(None))

    async def test_edit_targets_last_sent_message(self):
        telegram = self.service()

        await telegram.send_message("42", "hello", [[Button(text="Menu", action="main_menu")]])
        await telegram.edit_message("42", "updated")

        self.assertEqual(self.calls[0][0], "sendMessage")
        self.assertEqual(self.calls[0][1]["reply_markup"]["inline_keyboard"][0][0]["callback_data"], "main_menu")
        self.assertEqual(self.calls[1][0], "editMessageText")
        self.assertEqual(self.calls[1][1]["message_id"], 77)

    async def test_edit_without_history_sends(self):
        telegram = self.service()

        await telegram.edit_message("42", "hello")

        self.assertEqual([c[0] for c in self.calls], ["sendMessage"])

    async def test_tracked_chats_are_capped(self):
        telegram = self.service()

        with patch("app.services.telegram_service.MAX_TRACKED_CHATS", 2):
            for chat_id in ("1", "2", "3"):
                await telegram.send_message(chat_id, "hello")
            telegram.remember_message("2", 90)
            telegram.remember_message("4", 91)

        self.assertEqual(list(telegram._last_message_ids), ["2", "4"])
        self.calls.clear()
        await telegram.edit_message("1", "hello again")
        self.assertEqual([c[0] for c in self.calls], ["sendMessage"])

    async def test_markdown_rejection_falls_back_to_plain_text(self):
        self.responses["sendMessage"] = [
            {"ok": False, "description": "Bad Request: can't parse entities"},
            {"ok": True, "result": {"message_id": 5}},
        ]
        telegram = self.service()

        result = await telegram.send_message("42", "a_b*c")

        self.assertTrue(result["ok"])
        self.assertEqual(self.calls[0][1]["parse_mode"], "Markdown")
        self.assertNotIn("parse_mode", self.calls[1][1])

    async def test_disabled_without_token(self):
        telegram = TelegramService(token="", transport=httpx.MockTransport(self.handler))

        result = await telegram.send_message("42", "hello")

        self.assertFalse(result["ok"])
        self.assertEqual(self.calls, [])


if __name__ == "__main__":
    unittest.main()
