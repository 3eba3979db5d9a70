"""
Response utilities shared by the transfer flows and the history view:
balance lines, quote summaries, transfer history entries.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.schemas.core import OfframpQuote, TransferRecord, WalletBalance
from app.utils.amount_converter import AmountConverter

NO_DEFAULT_BALANCE = "No balance found in default wallet"

PENDING_STATUSES = ("pending", "initiated", "processing")

TYPE_EMOJIS = {
    "deposit": "📥",
    "withdraw": "📤",
    "send": "➡️",
    "receive": "⬅️",
}


class ResponseFormatter:
    """Text formatting for balances, quotes and transfers."""

    def format_balances(self, wallets: List[WalletBalance]) -> str:
        """Every token of every wallet, six decimals."""
        lines = []
        for wallet in wallets:
            for balance in wallet.balances:
                lines.append(f"• {balance.symbol}: {AmountConverter.quantize(balance.amount, 6)}")
        return "\n".join(lines)

    def format_default_wallet_balance(self, wallets: List[WalletBalance], default_wallet_id: Optional[str]) -> str:
        """Tokens of the default wallet only, two decimals."""
        wallet = next((w for w in wallets if w.wallet_id == default_wallet_id), None)
        if wallet is None:
            return NO_DEFAULT_BALANCE
        return "\n".join(
            f"• {balance.symbol}: {AmountConverter.quantize(balance.amount, 2)}"
            for balance in wallet.balances
        )

    def format_quote(self, quote: OfframpQuote, amount: Decimal, symbol: str) -> str:
        terms = quote.terms
        if terms is None:
            raise ValueError("Quote terms were not decoded")

        lines = [
            "💱 *Withdrawal Quote*",
            "",
            f"Amount: {amount:f} {symbol}",
            f"You'll Receive: {AmountConverter.format_fixed_point(terms.to_amount, symbol)}",
            f"Exchange Rate: 1 {symbol} = {AmountConverter.quantize(terms.rate, 2)} {terms.to_currency}",
            f"Fee: {AmountConverter.format_fixed_point(terms.total_fee, symbol)}",
        ]
        if quote.arrival_time_message:
            lines.append(f"Arrival Time: {quote.arrival_time_message}")

        lines += ["", "⚠️ *Important:*", "• This quote is valid for a limited time"]
        if quote.lower_bound is not None:
            lines.append(f"• Minimum amount: {AmountConverter.format_fixed_point(quote.lower_bound, symbol)}")
        if quote.upper_bound is not None:
            lines.append(f"• Maximum amount: {AmountConverter.format_fixed_point(quote.upper_bound, symbol)}")
        lines += ["", "Would you like to proceed with this withdrawal?"]
        return "\n".join(lines)

    def type_emoji(self, transfer_type: str) -> str:
        return TYPE_EMOJIS.get((transfer_type or "").lower(), "💸")

    def status_glyph(self, status: str) -> str:
        status = (status or "pending").lower()
        if status == "success":
            return "✅"
        if status in PENDING_STATUSES:
            return "⏳"
        return "❌"

    def type_label(self, record: TransferRecord) -> str:
        """Off-ramp when the money left to a bank, the record's own type otherwise."""
        if record.destination.bank_name:
            return "Off-Ramp"
        return (record.type or "transfer").upper()

    def format_timestamp(self, value: datetime) -> str:
        """e.g. ``March 5, 2025, 02:30 PM``."""
        return f"{value:%B} {value.day}, {value.year}, {value:%I:%M %p}"

    def format_transfer(self, record: TransferRecord) -> str:
        lines = [
            f"{self.type_emoji(record.type)} *{self.type_label(record)}*",
            f"Amount: {AmountConverter.format_fixed_point(record.amount, record.symbol)}",
            f"To: {record.destination.label}",
            f"Status: {self.status_glyph(record.status)}",
            f"Date: {self.format_timestamp(record.created_at)}",
        ]
        if record.hash:
            lines.append(f"Hash: `{record.hash}`")
        return "\n".join(lines)


formatter = ResponseFormatter()
