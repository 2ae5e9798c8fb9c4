"""
PayMongo REST client
Payment links (create / retrieve) over httpx
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException, status

from app.core.config import get_settings
from app.services.billing.financials import to_centavos, from_centavos

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class PaymongoConfig:
    """Gateway credentials and endpoint"""
    secret_key: str
    base_url: str = "https://api.paymongo.com/v1"
    timeout: float = 30.0


@dataclass
class PaymentLink:
    """The parts of a PayMongo link resource this service uses"""
    link_id: str
    reference_number: Optional[str]
    checkout_url: str
    status: str
    amount: Decimal
    payments: list
    description: Optional[str] = None
    metadata: Optional[dict] = None

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "PaymentLink":
        attributes = resource.get("attributes") or {}
        return cls(
            link_id=resource.get("id"),
            reference_number=attributes.get("reference_number"),
            checkout_url=attributes.get("checkout_url"),
            status=attributes.get("status") or "unpaid",
            amount=from_centavos(attributes.get("amount") or 0),
            payments=attributes.get("payments") or [],
            description=attributes.get("description"),
            metadata=attributes.get("metadata") or {},
        )


class PaymongoClient:
    """
    Thin async wrapper over the PayMongo links API.

    Example:
        client = PaymongoClient(PaymongoConfig(secret_key="sk_test_..."))
        link = await client.create_link(Decimal("1020.00"), "Invoice #12", {"invoice_id": 12})
    """

    def __init__(
        self,
        config: PaymongoConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        url = f"{self.config.base_url.rstrip('/')}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout,
                auth=(self.config.secret_key, ""),
                transport=self.transport
            ) as client:
                response = await client.request(method, url, json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.error(f"PayMongo timeout on {method} {path}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Payment gateway timed out"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"PayMongo request failed on {method} {path}: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Payment gateway request failed: {str(e)}"
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            errors = body.get("errors") or []
            message = errors[0].get("detail") if errors else None
            message = message or f"PayMongo returned HTTP {response.status_code}"
            logger.error(f"PayMongo rejected {method} {path}: {message}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=message
            )

        return body

    async def create_link(
        self,
        amount: Decimal,
        description: str,
        metadata: Optional[dict] = None,
        remarks: Optional[str] = None
    ) -> PaymentLink:
        """amount is the total to charge, convenience fee included"""
        attributes: Dict[str, Any] = {
            "amount": to_centavos(amount),
            "description": description,
        }
        if remarks:
            attributes["remarks"] = remarks
        if metadata:
            attributes["metadata"] = metadata

        body = await self._request("POST", "/links", json={"data": {"attributes": attributes}})
        link = PaymentLink.from_resource(body.get("data") or {})
        logger.info(f"PayMongo link {link.link_id} created for {amount}")
        return link

    async def get_link(self, link_id: str) -> PaymentLink:
        body = await self._request("GET", f"/links/{link_id}")
        return PaymentLink.from_resource(body.get("data") or {})


def get_paymongo_client() -> PaymongoClient:
    """FastAPI dependency; 503 when no secret key is configured"""
    if not settings.paymongo_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Online payments are not configured"
        )
    return PaymongoClient(
        PaymongoConfig(
            secret_key=settings.PAYMONGO_SECRET_KEY,
            base_url=settings.PAYMONGO_BASE_URL,
            timeout=settings.PAYMONGO_TIMEOUT_SECONDS,
        )
    )


def get_optional_paymongo_client() -> Optional[PaymongoClient]:
    """Like get_paymongo_client, but None instead of 503 when unconfigured"""
    if not settings.paymongo_configured:
        return None
    return get_paymongo_client()
