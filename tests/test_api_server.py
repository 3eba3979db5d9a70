#!/usr/bin/env python3
"""
Webhook server tests through FastAPI's test client.
"""

import unittest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

import api_server
from app.services.copperx_service import CopperxAPIError
from app.utils.config import settings

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


class TestWebhook(unittest.TestCase):

    def setUp(self):
        self.client = TestClient(api_server.app)
        patcher = patch.multiple(settings, telegram_bot_token="123:abc", telegram_webhook_secret="s3cret")
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_health(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertIn("active_flows", response.json())

    def test_wrong_secret_is_forbidden(self):
        with patch.object(api_server.processor, "process_update", AsyncMock()) as process:
            response = self.client.post("/telegram/webhook", json={"update_id": 1}, headers={SECRET_HEADER: "nope"})

        self.assertEqual(response.status_code, 403)
        process.assert_not_awaited()

    def test_api_error_still_acknowledges_update(self):
        failing = AsyncMock(side_effect=CopperxAPIError("down", status_code=503))
        with patch.object(api_server.processor, "process_update", failing):
            response = self.client.post("/telegram/webhook", json={"update_id": 1}, headers={SECRET_HEADER: "s3cret"})

        self.assertEqual(response.status_code, 200)
        failing.assert_awaited_once_with({"update_id": 1})

    def test_no_copperx_specific_error_handler(self):
        self.assertNotIn(CopperxAPIError, api_server.app.exception_handlers)


if __name__ == "__main__":
    unittest.main()
