#!/usr/bin/env python3
"""
Tests for the recent transfers view.
"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from app.agents.history_handler import EMPTY_HISTORY, HISTORY_DISPLAY_LIMIT, HISTORY_FOOTER, HistoryHandler
from app.schemas.core import TransferRecord
from app.services.copperx_service import CopperxAPIError
from app.utils.config import settings
from tests.fakes import FakeAuth, FakeTransport, make_copperx

USER = "2002"
START = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def record(index):
    return TransferRecord(
        id=f"t{index}",
        type="send",
        amount=100_000_000 * (index + 1),
        status="success",
        created_at=START + timedelta(days=index),
    )


class TestHistoryHandler(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.copperx = make_copperx()
        self.transport = FakeTransport()
        self.handler = HistoryHandler(self.copperx, FakeAuth(USER), self.transport)

    def test_newest_first_and_truncated(self):
        records = [record(i) for i in range(12)]

        shown = self.handler.newest_first(records)

        self.assertEqual(len(shown), 10)
        self.assertEqual(shown[0].id, "t11")
        self.assertEqual(shown[-1].id, "t2")

    def test_display_limit_ignores_fetch_page_size(self):
        records = [record(i) for i in range(30)]

        with patch.object(settings, "transfer_history_page_size", 25):
            shown = self.handler.newest_first(records)

        self.assertEqual(len(shown), HISTORY_DISPLAY_LIMIT)
        self.assertEqual(shown[0].id, "t29")

    async def test_lists_transfers(self):
        self.copperx.get_transfers.return_value = [record(0), record(1)]

        await self.handler.list_recent_transfers(USER)

        text = self.transport.last_text
        self.assertTrue(text.startswith("📊 *Recent Transfers*"))
        self.assertLess(text.index("2.00 USDC"), text.index("1.00 USDC"))
        self.assertTrue(text.endswith(HISTORY_FOOTER))
        self.assertEqual(len(self.transport.messages), 1)

    async def test_empty_history(self):
        await self.handler.list_recent_transfers(USER)
        self.assertEqual(self.transport.last_text, EMPTY_HISTORY)

    async def test_fetch_failure(self):
        self.copperx.get_transfers.side_effect = CopperxAPIError("down", status_code=502)

        await self.handler.list_recent_transfers(USER)

        self.assertIn("Failed to fetch transfers", self.transport.last_text)

    async def test_requires_login(self):
        await self.handler.list_recent_transfers("someone-else")

        self.assertIn("requires login", self.transport.last_text)
        self.copperx.get_transfers.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
