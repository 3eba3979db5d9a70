#!/usr/bin/env python3
"""
Tests for flow records and the per-user state table.
"""

import unittest
from datetime import timedelta

from pydantic import ValidationError

from app.agents.conversation_state import (
    BankStep,
    ConversationState,
    EmailStep,
    FlowKind,
    FlowState,
    WalletStep,
    utcnow,
)
from tests.fakes import make_quote


def email_state(user_id="u1", **changes):
    return FlowState(user_id=user_id, flow_kind=FlowKind.EMAIL_TRANSFER, step=EmailStep.RECIPIENT, **changes)


class TestFlowState(unittest.TestCase):

    def test_step_must_belong_to_flow(self):
        with self.assertRaises(ValidationError):
            FlowState(user_id="u1", flow_kind=FlowKind.WALLET_TRANSFER, step=BankStep.BANK_SELECTION)

    def test_quote_only_while_bank_withdrawal_awaits_confirmation(self):
        with self.assertRaises(ValidationError):
            FlowState(
                user_id="u1",
                flow_kind=FlowKind.BANK_WITHDRAWAL,
                step=BankStep.AMOUNT_AND_QUOTE,
                bank_account_id="acc",
                quote=make_quote(),
            )

    def test_amount_step_needs_bank_account(self):
        with self.assertRaises(ValidationError):
            FlowState(user_id="u1", flow_kind=FlowKind.BANK_WITHDRAWAL, step=BankStep.AMOUNT_AND_QUOTE)

    def test_records_are_immutable(self):
        state = email_state()
        with self.assertRaises(ValidationError):
            state.recipient = "a@b.co"

    def test_advance_builds_new_record(self):
        state = email_state()
        advanced = state.advance(recipient="a@b.co", step=EmailStep.AMOUNT)

        self.assertIsNone(state.recipient)
        self.assertEqual(state.step, EmailStep.RECIPIENT)
        self.assertEqual(advanced.recipient, "a@b.co")
        self.assertEqual(advanced.step, EmailStep.AMOUNT)
        self.assertGreaterEqual(advanced.updated_at, state.updated_at)
        self.assertEqual(advanced.created_at, state.created_at)

    def test_advance_validates(self):
        with self.assertRaises(ValidationError):
            email_state().advance(step=WalletStep.CONFIRMATION)

    def test_advance_keeps_quote_terms(self):
        state = FlowState(
            user_id="u1",
            flow_kind=FlowKind.BANK_WITHDRAWAL,
            step=BankStep.AMOUNT_AND_QUOTE,
            bank_account_id="acc",
        ).advance(quote=make_quote(), awaiting_confirmation=True, step=BankStep.CONFIRMATION)

        self.assertEqual(state.quote.terms.to_amount, 9900000000)


class TestConversationState(unittest.TestCase):

    def setUp(self):
        self.states = ConversationState(idle_timeout_minutes=30)

    def test_one_flow_per_user(self):
        self.states.save_state(email_state())
        self.states.save_state(FlowState(user_id="u1", flow_kind=FlowKind.WALLET_TRANSFER, step=WalletStep.RECIPIENT))

        self.assertEqual(len(self.states), 1)
        self.assertEqual(self.states.get_state("u1").flow_kind, FlowKind.WALLET_TRANSFER)

    def test_clear_state(self):
        self.states.save_state(email_state())

        self.assertTrue(self.states.clear_state("u1"))
        self.assertFalse(self.states.has_active_state("u1"))
        self.assertFalse(self.states.clear_state("u1"))

    def test_expiry(self):
        now = utcnow()
        state = email_state()

        self.assertFalse(self.states.is_state_expired(state, now + timedelta(minutes=29)))
        self.assertTrue(self.states.is_state_expired(state, now + timedelta(minutes=31)))

    def test_zero_timeout_never_expires(self):
        states = ConversationState(idle_timeout_minutes=0)
        self.assertFalse(states.is_state_expired(email_state(), utcnow() + timedelta(days=3)))

    def test_sweep_removes_idle_flows(self):
        self.states.save_state(email_state("idle", updated_at=utcnow() - timedelta(hours=1)))
        self.states.save_state(email_state("active"))

        removed = self.states.sweep_expired()

        self.assertEqual(removed, 1)
        self.assertIsNone(self.states.get_state("idle"))
        self.assertIsNotNone(self.states.get_state("active"))


class TestConversationStateLocks(unittest.IsolatedAsyncioTestCase):

    async def test_sweep_skips_busy_users(self):
        states = ConversationState(idle_timeout_minutes=30)
        states.save_state(email_state("u1", updated_at=utcnow() - timedelta(hours=1)))

        async with states.lock_for("u1"):
            self.assertTrue(states.is_busy("u1"))
            self.assertEqual(states.sweep_expired(), 0)

        self.assertFalse(states.is_busy("u1"))
        self.assertEqual(states.sweep_expired(), 1)

    async def test_lock_is_per_user(self):
        states = ConversationState()
        self.assertIs(states.lock_for("u1"), states.lock_for("u1"))
        self.assertIsNot(states.lock_for("u1"), states.lock_for("u2"))


if __name__ == "__main__":
    unittest.main()
