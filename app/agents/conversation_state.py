"""
Conversation State Management Module
Per-user transfer flow records and the table that holds them.
"""

import asyncio
import enum
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, model_validator
from app.schemas.core import OfframpQuote
from app.utils.config import settings
from app.utils.logger import get_logger

logger = get_logger("conversation_state")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowKind(str, enum.Enum):
    EMAIL_TRANSFER = "email_transfer"
    WALLET_TRANSFER = "wallet_transfer"
    BANK_WITHDRAWAL = "bank_withdrawal"


class EmailStep(str, enum.Enum):
    RECIPIENT = "recipient"
    NEW_RECIPIENT = "new_recipient"
    AMOUNT = "amount"
    CONFIRMATION = "confirmation"


class WalletStep(str, enum.Enum):
    RECIPIENT = "recipient"
    AMOUNT = "amount"
    CONFIRMATION = "confirmation"


class BankStep(str, enum.Enum):
    BANK_SELECTION = "bank_selection"
    AMOUNT_AND_QUOTE = "amount_and_quote"
    CONFIRMATION = "confirmation"


FlowStep = Union[EmailStep, WalletStep, BankStep]

STEPS_BY_KIND = {
    FlowKind.EMAIL_TRANSFER: EmailStep,
    FlowKind.WALLET_TRANSFER: WalletStep,
    FlowKind.BANK_WITHDRAWAL: BankStep,
}


class FlowState(BaseModel):
    """One user's progress through a transfer flow.

    Records are frozen: every transition builds a new record with
    ``advance()`` and stores it back in the table.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Chat user ID")
    flow_kind: FlowKind = Field(..., description="Which flow is active")
    step: FlowStep = Field(..., description="Pending step within the flow")
    recipient: Optional[str] = Field(None, description="Email or wallet address")
    amount: Optional[str] = Field(None, description="Validated amount, decimal string")
    symbol: Optional[str] = Field(None, description="Asset ticker")
    bank_account_id: Optional[str] = Field(None, description="Selected bank account")
    bank_account_ids: List[str] = Field(default_factory=list, description="Bank accounts offered at entry")
    quote: Optional[OfframpQuote] = Field(None, description="Quote awaiting confirmation")
    quote_fetched_at: Optional[datetime] = Field(None)
    awaiting_confirmation: bool = Field(False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_consistency(self):
        if not isinstance(self.step, STEPS_BY_KIND[self.flow_kind]):
            raise ValueError(f"Step {self.step!r} does not belong to {self.flow_kind.value}")
        if self.quote is not None and not (
            self.flow_kind == FlowKind.BANK_WITHDRAWAL and self.awaiting_confirmation
        ):
            raise ValueError("A quote is only held while a bank withdrawal awaits confirmation")
        if (
            self.flow_kind == FlowKind.BANK_WITHDRAWAL
            and self.step != BankStep.BANK_SELECTION
            and not self.bank_account_id
        ):
            raise ValueError("A bank account must be selected before the amount step")
        return self

    def advance(self, **changes) -> "FlowState":
        """Return the next record; the current one is left untouched."""
        changes.setdefault("updated_at", utcnow())
        return self.model_validate(self.model_copy(update=changes).model_dump())


class ConversationState:
    """Process-local table of active flows, one per user, with per-user locks."""

    def __init__(self, idle_timeout_minutes: Optional[int] = None):
        self.active_states: Dict[str, FlowState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        minutes = idle_timeout_minutes if idle_timeout_minutes is not None else settings.flow_idle_timeout_minutes
        self.idle_timeout = timedelta(minutes=minutes)

    def __len__(self) -> int:
        return len(self.active_states)

    def get_state(self, user_id: str) -> Optional[FlowState]:
        """Get the active flow for a user, if any."""
        return self.active_states.get(user_id)

    def save_state(self, state: FlowState) -> FlowState:
        """Store a flow record, replacing whatever the user had before."""
        previous = self.active_states.get(state.user_id)
        if previous is not None and previous.flow_kind != state.flow_kind:
            logger.debug(
                f"Replacing {previous.flow_kind.value} flow with {state.flow_kind.value} for user {state.user_id}"
            )
        self.active_states[state.user_id] = state
        logger.debug(f"Saved flow state for user {state.user_id}: {state.flow_kind.value}/{state.step.value}")
        return state

    def clear_state(self, user_id: str) -> bool:
        """Drop the user's flow. Returns True when there was one."""
        removed = self.active_states.pop(user_id, None) is not None
        lock = self._locks.get(user_id)
        if lock is not None and not lock.locked():
            del self._locks[user_id]
        if removed:
            logger.debug(f"Cleared flow state for user {user_id}")
        return removed

    def has_active_state(self, user_id: str) -> bool:
        return user_id in self.active_states

    def lock_for(self, user_id: str) -> asyncio.Lock:
        """The lock guarding read-modify-write of one user's flow."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def is_busy(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    def is_state_expired(self, state: FlowState, now: Optional[datetime] = None) -> bool:
        """Check if a flow has been idle longer than the configured timeout."""
        if self.idle_timeout <= timedelta(0):
            return False
        now = now or utcnow()
        return now - state.updated_at > self.idle_timeout

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Remove idle flows. Flows with a request in progress are left alone."""
        expired = [
            user_id
            for user_id, state in self.active_states.items()
            if self.is_state_expired(state, now) and not self.is_busy(user_id)
        ]
        for user_id in expired:
            self.clear_state(user_id)
        for user_id in [u for u, lock in self._locks.items() if not lock.locked() and u not in self.active_states]:
            del self._locks[user_id]
        if expired:
            logger.info(f"Expired {len(expired)} idle transfer flow(s)")
        return len(expired)

    async def run_sweeper(self, interval_seconds: Optional[int] = None) -> None:
        """Periodically drop idle flows until cancelled."""
        interval = interval_seconds or settings.flow_sweep_interval_seconds
        logger.info(f"Flow expiry sweeper running every {interval}s (idle timeout {self.idle_timeout})")
        while True:
            await asyncio.sleep(interval)
            self.sweep_expired()
