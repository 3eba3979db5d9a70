#!/usr/bin/env python3
"""
Session handling tests for AuthService with in-memory and stored sessions.
"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from cryptography.fernet import Fernet

from app.schemas.core import AuthResponse, AuthSession, OtpRequestResponse
from app.services.auth_service import AuthError, AuthService
from app.services.copperx_service import CopperxService

class TestAuthService(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.api = AsyncMock(spec=CopperxService)
        self.auth = AuthService(api=self.api)

    async def test_login_stores_session(self):
        self.api.request_email_otp.return_value = OtpRequestResponse(sid="sid-1")
        self.api.authenticate_email_otp.return_value = AuthResponse.model_validate({
            "accessToken": "tok",
            "accessTokenId": "tok-id",
            "expireAt": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
            "user": {"email": "a@b.co", "firstName": "Ada", "lastName": "Lovelace"},
        })

        sid = await self.auth.request_email_otp("a@b.co")
        session = await self.auth.authenticate_email_otp("u1", "a@b.co", "123456", sid)

        self.api.authenticate_email_otp.assert_awaited_once_with("a@b.co", "123456", "sid-1")
        self.assertEqual(session.name, "Ada Lovelace")
        self.assertTrue(await self.auth.is_authenticated("u1"))
        self.assertEqual(await self.auth.get_auth_headers("u1"), {"Authorization": "Bearer tok"})

    async def test_expired_session_is_dropped(self):
        await self.auth.save_session(AuthSession(
            user_id="u1",
            access_token="tok",
            expire_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        ))

        self.assertFalse(await self.auth.is_authenticated("u1"))
        with self.assertRaises(AuthError):
            await self.auth.get_auth_headers("u1")

    async def test_logout(self):
        await self.auth.save_session(AuthSession(
            user_id="u1",
            access_token="tok",
            expire_at=datetime.now(timezone.utc) + timedelta(hours=1),
        ))

        await self.auth.logout("u1")

        self.assertFalse(await self.auth.is_authenticated("u1"))


class FakeSessionStore:
    """Session store that keeps the documents it is given."""

    def __init__(self):
        self.docs = {}
        self.closed = False

    def is_connected(self):
        return True

    async def save_session(self, user_id, session):
        self.docs[user_id] = dict(session)
        return True

    async def get_session(self, user_id):
        doc = self.docs.get(user_id)
        return dict(doc) if doc else None

    async def delete_session(self, user_id):
        return self.docs.pop(user_id, None) is not None

    def close(self):
        self.closed = True

class TestStoredSessions(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store = FakeSessionStore()
        self.key = Fernet.generate_key().decode()
        self.auth = AuthService(store=self.store, api=AsyncMock(spec=CopperxService), encryption_key=self.key)
        self.session = AuthSession(
            user_id="u1",
            access_token="raw-bearer-token",
            expire_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    async def test_token_is_encrypted_at_rest(self):
        await self.auth.save_session(self.session)

        doc = self.store.docs["u1"]
        self.assertNotIn("raw-bearer-token", repr(doc))
        self.assertEqual(Fernet(self.key).decrypt(doc["access_token"].encode()), b"raw-bearer-token")
        self.assertEqual(await self.auth.get_auth_headers("u1"), {"Authorization": "Bearer raw-bearer-token"})

    async def test_session_under_another_key_requires_login(self):
        await self.auth.save_session(self.session)
        rotated = AuthService(
            store=self.store, api=AsyncMock(spec=CopperxService), encryption_key=Fernet.generate_key().decode()
        )

        with self.assertRaises(AuthError):
            await rotated.get_auth_headers("u1")
        self.assertNotIn("u1", self.store.docs)

    def test_close_releases_store(self):
        self.auth.close()

        self.assertTrue(self.store.closed)


if __name__ == "__main__":
    unittest.main()
