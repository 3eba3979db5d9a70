"""Copperx API Service for wallets, payees, quotes and transfers."""

import httpx
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, TypeVar
from pydantic import BaseModel, TypeAdapter, ValidationError
from app.schemas.core import (
    Account,
    AuthResponse,
    DefaultWallet,
    OfframpQuote,
    OtpRequestResponse,
    Payee,
    TransferRecord,
    TransferResult,
    WalletBalance,
)
from app.utils.amount_converter import AmountConverter
from app.utils.logger import get_logger
from app.utils.config import settings

logger = get_logger("copperx_service")

ModelT = TypeVar("ModelT", bound=BaseModel)


class CopperxAPIError(Exception):
    """Custom exception for Copperx API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Optional[Any] = None):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data
        super().__init__(self.message)


def _error_message(response_data: Any, default: str) -> str:
    if isinstance(response_data, dict):
        message = response_data.get("message") or response_data.get("error")
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
        if message:
            return str(message)
    return default


def _unwrap_list(response_data: Any) -> Any:
    """Paginated endpoints answer ``{"data": [...]}``, others a bare list."""
    if isinstance(response_data, dict) and "data" in response_data:
        return response_data["data"]
    return response_data


class CopperxService:
    """Service class for interacting with the Copperx API.

    ``auth`` must provide ``get_auth_headers(user_id)``; requests made on
    behalf of a user carry that user's bearer token. There are no automatic
    retries: every failure surfaces as ``CopperxAPIError``.
    """

    def __init__(
        self,
        auth=None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth = auth
        self.base_url = (base_url or settings.copperx_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.copperx_api_timeout
        self._transport = transport

        if not self.base_url:
            logger.warning("⚠️  COPPERX_API_BASE_URL not configured; Copperx API calls will fail")

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        user_id: Optional[str] = None,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Any:
        """Make one HTTP request to the Copperx API and return the decoded JSON body."""
        url = f"{self.base_url}{endpoint}"
        headers = {"Content-Type": "application/json"}
        if user_id is not None:
            if self.auth is None:
                raise CopperxAPIError("No auth provider configured", status_code=401)
            headers.update(await self.auth.get_auth_headers(user_id))

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    json=data,
                    params=params,
                )
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {endpoint} timed out after {self.timeout}s")
            raise CopperxAPIError(f"Request timed out: {e}")
        except httpx.RequestError as e:
            logger.warning(f"Network error on {method} {endpoint}: {e}")
            raise CopperxAPIError(f"Network error: {e}")

        logger.info(f"{method} {endpoint} - Status: {response.status_code}")

        if not response.content:
            response_data: Any = {}
        else:
            try:
                response_data = response.json()
            except ValueError as json_error:
                logger.error(f"Invalid JSON response: {json_error}")
                raise CopperxAPIError(
                    message="Invalid JSON response from Copperx API",
                    status_code=response.status_code,
                )

        if response.status_code >= 400:
            error_message = _error_message(response_data, f"Request failed with status {response.status_code}")
            logger.error(f"Copperx error on {method} {endpoint}: {error_message}")
            raise CopperxAPIError(
                message=error_message,
                status_code=response.status_code,
                response_data=response_data,
            )

        return response_data

    def _decode(self, model: Type[ModelT], response_data: Any) -> ModelT:
        try:
            return model.model_validate(response_data)
        except ValidationError as e:
            logger.error(f"Unexpected {model.__name__} payload: {e}")
            raise CopperxAPIError(f"Unexpected response from Copperx API: {model.__name__}", response_data=response_data)

    def _decode_list(self, model: Type[ModelT], response_data: Any) -> List[ModelT]:
        try:
            return TypeAdapter(List[model]).validate_python(_unwrap_list(response_data))  # type: ignore[valid-type]
        except ValidationError as e:
            logger.error(f"Unexpected {model.__name__} list payload: {e}")
            raise CopperxAPIError(f"Unexpected response from Copperx API: {model.__name__} list", response_data=response_data)

    # Wallet Methods

    async def get_wallet_balances(self, user_id: str) -> List[WalletBalance]:
        """Get balances of every wallet the user owns."""
        logger.info(f"Fetching wallet balances for user {user_id}")
        response = await self._make_request("GET", "/api/wallets/balances", user_id)
        return self._decode_list(WalletBalance, response)

    async def get_default_wallet(self, user_id: str) -> DefaultWallet:
        """Get the user's default wallet."""
        logger.info(f"Fetching default wallet for user {user_id}")
        response = await self._make_request("GET", "/api/wallets/default", user_id)
        return self._decode(DefaultWallet, response)

    # Payee Methods

    async def get_payees(self, user_id: str, page: int = 1, limit: int = 10) -> List[Payee]:
        """Get saved recipients."""
        logger.info(f"Fetching payees for user {user_id} - Page {page}")
        response = await self._make_request(
            "GET",
            "/api/payees",
            user_id,
            params={"page": str(page), "limit": str(limit)},
        )
        return self._decode_list(Payee, response)

    async def save_payee(self, user_id: str, email: str, nickname: Optional[str] = None) -> bool:
        """Save a recipient for later transfers."""
        logger.info(f"Saving payee for user {user_id}")
        await self._make_request(
            "POST",
            "/api/payees",
            user_id,
            data={"email": email, "nickName": nickname or email.split("@")[0]},
        )
        return True

    # Account Methods

    async def get_accounts(self, user_id: str) -> List[Account]:
        """Get all linked accounts (bank accounts, wallets...)."""
        logger.info(f"Fetching accounts for user {user_id}")
        response = await self._make_request("GET", "/api/accounts", user_id)
        return self._decode_list(Account, response)

    # Transfer Methods

    async def get_transfers(self, user_id: str, page: int = 1, limit: Optional[int] = None) -> List[TransferRecord]:
        """Get one page of the user's transfer history."""
        limit = limit or settings.transfer_history_page_size
        logger.info(f"Fetching transfers for user {user_id} - Page {page}")
        response = await self._make_request(
            "GET",
            "/api/transfers",
            user_id,
            params={"page": str(page), "limit": str(limit)},
        )
        return self._decode_list(TransferRecord, response)

    async def get_offramp_quote(
        self,
        user_id: str,
        amount: Decimal,
        bank_account_id: str,
        currency: str = "USDC",
    ) -> OfframpQuote:
        """Request a signed off-ramp quote for a bank withdrawal."""
        logger.info(f"Requesting off-ramp quote of {amount} {currency} for user {user_id}")
        response = await self._make_request(
            "POST",
            "/api/quotes/offramp",
            user_id,
            data={
                "amount": str(AmountConverter.to_fixed_point(amount)),
                "currency": currency,
                "sourceCountry": "none",
                "destinationCountry": "ind",
                "onlyRemittance": True,
                "preferredBankAccountId": bank_account_id,
            },
        )
        return self._decode(OfframpQuote, response)

    async def execute_offramp(self, user_id: str, quote: OfframpQuote) -> TransferResult:
        """Submit a previously fetched quote for execution."""
        logger.info(f"Executing off-ramp for user {user_id}")
        response = await self._make_request(
            "POST",
            "/api/transfers/offramp",
            user_id,
            data={
                "quotePayload": quote.quote_payload,
                "quoteSignature": quote.quote_signature,
            },
        )
        return self._decode(TransferResult, response)

    async def send_transfer(self, user_id: str, email: str, amount: Decimal, currency: str = "USDC") -> TransferResult:
        """Send funds to an email address."""
        logger.info(f"Sending {amount} {currency} to email for user {user_id}")
        response = await self._make_request(
            "POST",
            "/api/transfers/send",
            user_id,
            data={
                "email": email,
                "amount": str(AmountConverter.to_fixed_point(amount)),
                "purposeCode": "self",
                "currency": currency,
            },
        )
        return self._decode(TransferResult, response)

    async def withdraw_to_wallet(
        self, user_id: str, wallet_address: str, amount: Decimal, currency: str = "USDC"
    ) -> TransferResult:
        """Send funds to an external wallet address."""
        logger.info(f"Withdrawing {amount} {currency} to external wallet for user {user_id}")
        response = await self._make_request(
            "POST",
            "/api/transfers/wallet-withdraw",
            user_id,
            data={
                "walletAddress": wallet_address,
                "amount": str(AmountConverter.to_fixed_point(amount)),
                "purposeCode": "self",
                "currency": currency,
            },
        )
        return self._decode(TransferResult, response)

    # Auth Methods

    async def request_email_otp(self, email: str) -> OtpRequestResponse:
        """Ask Copperx to email a one-time login code."""
        logger.info("Requesting email OTP")
        response = await self._make_request(
            "POST",
            "/api/auth/email-otp/request",
            data={"email": email},
        )
        return self._decode(OtpRequestResponse, response)

    async def authenticate_email_otp(self, email: str, otp: str, sid: str) -> AuthResponse:
        """Exchange an emailed code for an access token."""
        logger.info("Authenticating email OTP")
        response = await self._make_request(
            "POST",
            "/api/auth/email-otp/authenticate",
            data={"email": email, "otp": otp, "sid": sid},
        )
        return self._decode(AuthResponse, response)
