"""
Auth Service
Email-OTP login against Copperx and per-user session lookup.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from app.schemas.core import AuthSession
from app.services.copperx_service import CopperxAPIError, CopperxService
from app.utils.config import settings
from app.utils.logger import get_logger
from app.utils.mongodb_manager import MongoDBManager

logger = get_logger("auth_service")


class AuthError(CopperxAPIError):
    """Raised when a user has no usable session."""

    def __init__(self, message: str = "User is not logged in"):
        super().__init__(message, status_code=401)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuthService:
    """Stores Copperx sessions per chat user.

    Sessions live in MongoDB when it is configured, otherwise in process
    memory. Access tokens are Fernet-encrypted before they are stored and
    decrypted only to build request headers.
    """

    def __init__(
        self,
        store: Optional[MongoDBManager] = None,
        api: Optional[CopperxService] = None,
        encryption_key: Optional[str] = None,
    ):
        self.store = store
        self.api = api or CopperxService()
        self._sessions: Dict[str, AuthSession] = {}
        key = encryption_key if encryption_key is not None else settings.session_encryption_key
        if not key:
            logger.warning("SESSION_ENCRYPTION_KEY not configured; using a per-process key")
            key = Fernet.generate_key().decode()
        self._fernet = Fernet(key)

    def _persistent(self) -> bool:
        return self.store is not None and self.store.is_connected()

    async def _load(self, user_id: str) -> Optional[AuthSession]:
        if self._persistent():
            doc = await self.store.get_session(user_id)
            return AuthSession.model_validate(doc) if doc else None
        return self._sessions.get(user_id)

    async def save_session(self, session: AuthSession) -> None:
        encrypted = self._fernet.encrypt(session.access_token.encode()).decode()
        stored = session.model_copy(update={"access_token": encrypted})
        if self._persistent():
            await self.store.save_session(stored.user_id, stored.model_dump())
        else:
            self._sessions[stored.user_id] = stored

    async def is_authenticated(self, user_id: str) -> bool:
        """True when the user has a session whose token has not expired."""
        session = await self._load(user_id)
        if session is None:
            return False

        if datetime.now(timezone.utc) > _as_utc(session.expire_at):
            logger.info(f"Session expired for user {user_id}")
            await self.logout(user_id)
            return False

        return True

    async def get_auth_headers(self, user_id: str) -> Dict[str, str]:
        session = await self._load(user_id)
        if session is None:
            raise AuthError()
        try:
            token = self._fernet.decrypt(session.access_token.encode()).decode()
        except InvalidToken:
            # Written under another key; the user has to log in again
            logger.warning(f"Stored session for user {user_id} cannot be decrypted")
            await self.logout(user_id)
            raise AuthError("Session is no longer valid, please log in again")
        return {"Authorization": f"Bearer {token}"}

    async def request_email_otp(self, email: str) -> str:
        """Send a login code to ``email`` and return the OTP session id."""
        response = await self.api.request_email_otp(email)
        return response.sid

    async def authenticate_email_otp(self, user_id: str, email: str, otp: str, sid: str) -> AuthSession:
        """Verify the code and store the resulting session."""
        response = await self.api.authenticate_email_otp(email, otp, sid)
        session = AuthSession(
            user_id=user_id,
            access_token=response.access_token,
            access_token_id=response.access_token_id,
            expire_at=response.expire_at,
            email=response.user.email or email,
            name=response.user.full_name or None,
        )
        await self.save_session(session)
        logger.info(f"User {user_id} logged in")
        return session

    async def logout(self, user_id: str) -> None:
        if self._persistent():
            await self.store.delete_session(user_id)
        self._sessions.pop(user_id, None)
        logger.info(f"Cleared session for user {user_id}")

    def close(self) -> None:
        """Release the session store connection."""
        if self.store is not None:
            self.store.close()
