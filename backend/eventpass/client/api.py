"""
Async HTTP client for the EventPass API.

One coroutine per endpoint, each returning the shared pydantic schemas.
Transport failures and unreadable bodies surface as ``NetworkError``; error
responses are mapped onto the taxonomy in ``eventpass.client.errors``.
"""
import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from eventpass.client.errors import NetworkError, error_from_response
from eventpass.config import settings
from eventpass.schemas.event import EventCreate, EventCreated, EventDetail
from eventpass.schemas.payment import ForceVerifyResponse, PaymentStatusResponse
from eventpass.schemas.recurrence import InstancePage
from eventpass.schemas.ticket import (
    CheckInResponse,
    CheckInStats,
    QRPayload,
    QRTokenResponse,
    RegisterResponse,
    RegistrationOut,
    UnregisterResponse,
)
from eventpass.schemas.user import UserCreate, UserOut

logger = logging.getLogger(__name__)


class EventPassClient:
    """
    HTTP client bound to one acting user.

    Args:
        user_id: ID of the user every request acts as
        base_url: API base URL (defaults to ``settings.API_BASE_URL``)
        timeout: Request timeout in seconds
        transport: Optional httpx transport (e.g. ``httpx.ASGITransport`` in tests)
    """

    def __init__(
        self,
        user_id: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_id = user_id
        self.base_url = base_url or settings.API_BASE_URL
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "EventPassClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        act_as_user: bool = True,
    ) -> Any:
        query = dict(params or {})
        if act_as_user:
            query["actor_user_id"] = self.user_id
        client = await self._get_client()
        try:
            response = await client.request(method, path, params=query, json=json)
        except httpx.TransportError as e:
            logger.warning("Transport error calling %s %s: %s", method, path, e)
            raise NetworkError() from e

        if response.is_error:
            error = error_from_response(response)
            logger.info("%s %s -> %s %s", method, path, response.status_code, error.code.value)
            raise error
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError("Malformed response from server", status_code=response.status_code) from e

    # ===========================================
    # Users
    # ===========================================

    async def create_user(self, display_name: str, email: Optional[str] = None) -> UserOut:
        body = UserCreate(display_name=display_name, email=email).to_wire()
        return UserOut.model_validate(await self._request("POST", "/api/users/", json=body, act_as_user=False))

    # ===========================================
    # Events and instances
    # ===========================================

    async def create_event(self, payload: EventCreate) -> EventCreated:
        return EventCreated.model_validate(
            await self._request("POST", "/api/events/", json=payload.to_wire())
        )

    async def get_event(self, event_id: str) -> EventDetail:
        """Event with the caller's registration and organizer flag."""
        return EventDetail.model_validate(await self._request("GET", f"/api/events/{event_id}"))

    async def get_instances(
        self,
        event_id: str,
        limit: int,
        start_date: Optional[datetime] = None,
    ) -> InstancePage:
        params: dict[str, Any] = {"limit": limit}
        if start_date is not None:
            params["startDate"] = start_date.isoformat()
        return InstancePage.model_validate(
            await self._request("GET", f"/api/events/{event_id}/instances", params=params)
        )

    # ===========================================
    # Registration
    # ===========================================

    async def register(
        self,
        event_id: str,
        instance_id: Optional[str] = None,
        special_requests: str = "",
    ) -> RegisterResponse:
        body = {"instanceId": instance_id, "specialRequests": special_requests}
        return RegisterResponse.model_validate(
            await self._request("POST", f"/api/events/{event_id}/register", json=body)
        )

    async def unregister(self, event_id: str, instance_id: Optional[str] = None) -> UnregisterResponse:
        return UnregisterResponse.model_validate(
            await self._request("POST", f"/api/events/{event_id}/unregister", json={"instanceId": instance_id})
        )

    # ===========================================
    # Payments
    # ===========================================

    async def registration_payment_status(self, event_id: str, registration_id: str) -> PaymentStatusResponse:
        return PaymentStatusResponse.model_validate(
            await self._request("GET", f"/api/registrations/{event_id}/{registration_id}/payment-status")
        )

    async def event_payment_status(self, event_id: str) -> PaymentStatusResponse:
        return PaymentStatusResponse.model_validate(
            await self._request("GET", f"/api/events/{event_id}/payment-status")
        )

    async def force_verify(self, reference: str) -> ForceVerifyResponse:
        return ForceVerifyResponse.model_validate(
            await self._request("POST", f"/api/payments/{reference}/force-verify")
        )

    # ===========================================
    # Tickets and check-in
    # ===========================================

    async def list_tickets(self, event_id: Optional[str] = None) -> list[RegistrationOut]:
        params = {"event_id": event_id} if event_id else None
        data = await self._request("GET", "/api/tickets/", params=params)
        return [RegistrationOut.model_validate(item) for item in data]

    async def issue_qr(self, ticket_id: str) -> QRTokenResponse:
        return QRTokenResponse.model_validate(await self._request("POST", f"/api/tickets/{ticket_id}/qr"))

    async def check_in(self, event_id: str, payload: QRPayload) -> CheckInResponse:
        return CheckInResponse.model_validate(
            await self._request("POST", f"/api/events/{event_id}/checkin", json=payload.to_wire())
        )

    async def checkin_stats(self, event_id: str) -> CheckInStats:
        return CheckInStats.model_validate(await self._request("GET", f"/api/events/{event_id}/checkin/stats"))
