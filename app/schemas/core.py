"""
Core Pydantic schemas for the Copperx transfer bot.
Every Copperx response is decoded into one of these models at the API boundary.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, ValidationError, field_validator, model_validator


class CopperxModel(BaseModel):
    """Base model: camelCase wire names, snake_case attributes, unknown fields ignored."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# Wallet Schemas
class TokenBalance(CopperxModel):
    """Balance of one token inside a wallet."""
    symbol: str = Field(..., description="Token ticker")
    amount: Decimal = Field(
        ...,
        validation_alias=AliasChoices("balance", "amount"),
        description="Balance in whole units",
    )


class WalletBalance(CopperxModel):
    """Balances held by a single wallet."""
    wallet_id: str = Field(..., alias="walletId", description="Wallet ID")
    balances: List[TokenBalance] = Field(default_factory=list)


class DefaultWallet(CopperxModel):
    """Default wallet reference."""
    id: str = Field(..., description="Wallet ID")


# Payee Schemas
class Payee(CopperxModel):
    """Saved transfer recipient."""
    id: Optional[str] = Field(None, description="Payee ID")
    email: str = Field(..., description="Payee email")
    nick_name: Optional[str] = Field(None, alias="nickName", description="Nickname chosen by the user")
    display_name: Optional[str] = Field(None, alias="displayName", description="Display name")

    @property
    def label(self) -> str:
        return self.display_name or self.nick_name or self.email


# Account Schemas
class BankDetails(CopperxModel):
    """Bank details attached to a bank account."""
    bank_name: str = Field(..., alias="bankName", description="Bank name")
    bank_account_number: str = Field("", alias="bankAccountNumber", description="Account number")

    @property
    def masked_number(self) -> str:
        return self.bank_account_number[-4:]


class Account(CopperxModel):
    """Account linked to the user (bank account, wallet, ...)."""
    id: str = Field(..., description="Account ID")
    type: str = Field(..., description="Account type, e.g. bank_account")
    status: str = Field("", description="Verification status")
    bank_details: Optional[BankDetails] = Field(
        None,
        validation_alias=AliasChoices("bankAccount", "bankDetails"),
    )

    @property
    def is_bank_account(self) -> bool:
        return self.type == "bank_account"

    @property
    def is_verified(self) -> bool:
        return self.status == "verified"

    @property
    def label(self) -> str:
        if self.bank_details:
            return f"{self.bank_details.bank_name} ({self.bank_details.masked_number})"
        return self.id


# Transfer Schemas
class TransferDestination(CopperxModel):
    """Where a transfer went."""
    bank_name: Optional[str] = Field(None, alias="bankName")
    wallet_address: Optional[str] = Field(None, alias="walletAddress")
    payee_email: Optional[str] = Field(None, alias="payeeEmail")

    @property
    def label(self) -> str:
        return self.wallet_address or self.bank_name or self.payee_email or "N/A"


class TransferRecord(CopperxModel):
    """One entry of the transfer history."""
    id: Optional[str] = Field(None, description="Transfer ID")
    type: str = Field("", description="Transfer type tag")
    amount: int = Field(..., description="Amount in 8-decimal fixed point")
    symbol: str = Field("USDC", validation_alias=AliasChoices("symbol", "currency"))
    status: str = Field("pending", description="Transfer status")
    created_at: datetime = Field(..., alias="createdAt")
    hash: Optional[str] = Field(None, validation_alias=AliasChoices("hash", "transactionHash"))
    recipient: Optional[str] = Field(None)
    destination: TransferDestination = Field(
        default_factory=TransferDestination,
        validation_alias=AliasChoices("destinationAccount", "destination"),
    )

    @field_validator("symbol", "status", mode="before")
    @classmethod
    def default_when_null(cls, v, info):
        if v is None:
            return "USDC" if info.field_name == "symbol" else "pending"
        return v

    @field_validator("destination", mode="before")
    @classmethod
    def empty_destination(cls, v):
        return v if v is not None else {}


class TransferResult(CopperxModel):
    """Acknowledgement returned when a transfer is submitted."""
    id: Optional[str] = Field(None, description="Transfer ID")
    status: Optional[str] = Field(None, description="Initial status")


# Quote Schemas
class QuoteTerms(CopperxModel):
    """Numeric terms embedded in a quote payload."""
    to_amount: int = Field(..., alias="toAmount", description="Amount received, fixed point")
    rate: Decimal = Field(..., description="Exchange rate to the destination currency")
    total_fee: int = Field(..., alias="totalFee", description="Fee, fixed point")
    min_amount: Optional[int] = Field(None, alias="minAmount")
    max_amount: Optional[int] = Field(None, alias="maxAmount")
    to_currency: str = Field("INR", alias="toCurrency")


class OfframpQuote(CopperxModel):
    """Signed off-ramp quote. ``terms`` is decoded from ``quote_payload`` on validation."""
    quote_payload: str = Field(..., alias="quotePayload")
    quote_signature: str = Field(..., alias="quoteSignature")
    arrival_time_message: str = Field("", alias="arrivalTimeMessage")
    min_amount: Optional[int] = Field(None, alias="minAmount")
    max_amount: Optional[int] = Field(None, alias="maxAmount")
    terms: Optional[QuoteTerms] = Field(None, exclude=True)

    @model_validator(mode="after")
    def decode_payload(self):
        try:
            payload = json.loads(self.quote_payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"quotePayload is not valid JSON: {e}")
        try:
            self.terms = QuoteTerms.model_validate(payload)
        except ValidationError as e:
            raise ValueError(f"quotePayload is missing quote terms: {e}")
        return self

    @property
    def lower_bound(self) -> Optional[int]:
        return self.terms.min_amount if self.terms and self.terms.min_amount is not None else self.min_amount

    @property
    def upper_bound(self) -> Optional[int]:
        return self.terms.max_amount if self.terms and self.terms.max_amount is not None else self.max_amount


# Auth Schemas
class OtpRequestResponse(CopperxModel):
    """Response to an email OTP request."""
    sid: str = Field(..., description="OTP session id")


class UserProfile(CopperxModel):
    """Copperx user profile."""
    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class AuthResponse(CopperxModel):
    """Response to a successful OTP authentication."""
    access_token: str = Field(..., alias="accessToken")
    access_token_id: Optional[str] = Field(None, alias="accessTokenId")
    expire_at: datetime = Field(..., alias="expireAt")
    user: UserProfile = Field(default_factory=UserProfile)


class AuthSession(BaseModel):
    """Stored login session for a chat user."""
    user_id: str = Field(..., description="Chat user ID")
    access_token: str = Field(..., description="Copperx bearer token")
    access_token_id: Optional[str] = Field(None)
    expire_at: datetime = Field(..., description="Token expiry")
    email: Optional[str] = Field(None)
    name: Optional[str] = Field(None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# Chat Schemas
class Button(BaseModel):
    """Inline choice button; ``action`` is delivered back as callback data."""
    text: str = Field(..., description="Button label")
    action: str = Field(..., description="Callback action name")


Keyboard = List[List[Button]]


class InboundEvent(BaseModel):
    """Normalized inbound chat event: a text message or a button press."""
    user_id: str = Field(..., description="Chat user ID")
    text: Optional[str] = Field(None, description="Message text")
    action: Optional[str] = Field(None, description="Callback data of a pressed button")
    callback_id: Optional[str] = Field(None, description="Callback query ID to acknowledge")
    message_id: Optional[int] = Field(None, description="Message the button belongs to")
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def is_action(self) -> bool:
        return self.action is not None
