"""
Chain service client for on-chain transfer verification and withdrawals.

The chain service is an opaque collaborator that wraps the blockchain RPC.
The ledger only ever:
- Verifies that a transfer hash exists on chain (funding)
- Submits a withdrawal and records the hash it returns
Settlement of either arrives later through the signed webhook.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TransferVerification:
    """What the chain reports about a transfer hash."""

    transaction_hash: str
    status: str  # pending, confirmed, failed, not_found
    block_number: Optional[int] = None

    @property
    def seen_on_chain(self) -> bool:
        return self.status in ("pending", "confirmed")


@dataclass
class WithdrawalSubmission:
    """Result of submitting a withdrawal."""

    transaction_hash: str
    status: str  # submitted, pending


class ChainServiceError(Exception):
    """Chain service unreachable or returned an error."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


class ChainClient:
    """Async client for the chain service HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise ValueError("CHAIN_SERVICE_URL is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict = None,
    ) -> dict:
        """Make an async request to the chain service."""
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    json=json_data,
                )
        except httpx.RequestError as exc:
            logger.error("Chain service unreachable: %s", exc)
            raise ChainServiceError(f"Chain service unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            logger.error("Chain service error: %s - %s", response.status_code, data)
            raise ChainServiceError(
                message=data.get("message", "Unknown chain service error"),
                status_code=response.status_code,
                response_data=data,
            )
        return data

    async def verify_transfer(self, transaction_hash: str) -> TransferVerification:
        """
        Look up a transfer by hash.

        A hash the chain has never seen is reported as ``not_found`` rather
        than raised, so callers can decide whether that is fatal.
        """
        try:
            data = await self._request("GET", f"/transfers/{transaction_hash}")
        except ChainServiceError as exc:
            if exc.status_code == 404:
                return TransferVerification(transaction_hash, status="not_found")
            raise

        return TransferVerification(
            transaction_hash=data.get("transaction_hash", transaction_hash),
            status=data.get("status", "pending"),
            block_number=data.get("block_number"),
        )

    async def submit_withdrawal(
        self,
        *,
        reference: str,
        amount: Decimal,
        currency: str,
        to_wallet: str,
    ) -> WithdrawalSubmission:
        """
        Ask the chain service to send funds to ``to_wallet``.

        Args:
            reference: Ledger transaction id, used by the chain service to
                de-duplicate retries.
            amount: Amount in the currency's native unit.
        """
        data = await self._request(
            "POST",
            "/withdrawals",
            json_data={
                "reference": reference,
                "amount": str(amount),
                "currency": currency,
                "to_wallet": to_wallet,
            },
        )
        transaction_hash = data.get("transaction_hash")
        if not transaction_hash:
            raise ChainServiceError(
                "Chain service did not return a transaction hash", response_data=data
            )
        return WithdrawalSubmission(
            transaction_hash=transaction_hash,
            status=data.get("status", "submitted"),
        )


def get_chain_client() -> Optional[ChainClient]:
    """FastAPI dependency: a ChainClient, or None when no chain service is set."""
    settings = get_settings()
    if not settings.CHAIN_SERVICE_URL:
        return None
    return ChainClient(
        settings.CHAIN_SERVICE_URL,
        api_key=settings.CHAIN_SERVICE_API_KEY,
        timeout=settings.CHAIN_SERVICE_TIMEOUT,
    )
