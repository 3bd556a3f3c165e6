"""
Async client for the MotivAI product API.

Every call goes through the TokenAuthenticator, successful ``{success, data,
message}`` envelopes are unwrapped to ``data`` and failures are normalized to
``NetworkUnavailable`` / ``ServerError``.
"""
from typing import Any, Callable, Dict, List, Optional

import httpx

from motivai.client.auth import IdentityProvider, TokenAuthenticator
from motivai.core.config import settings
from motivai.core.errors import NetworkUnavailable, ServerError
import logging

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Une erreur est survenue"


def extract_error_message(payload: Any) -> str:
    """
    Pick the user-facing message out of an error body.

    Order: ``error`` (string, or ``error.message``), then ``message``.
    """
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return DEFAULT_ERROR_MESSAGE


def unwrap_envelope(payload: Any) -> Any:
    if isinstance(payload, dict) and "success" in payload and "data" in payload:
        return payload["data"]
    return payload


class ApiClient:
    """
    Authenticated client for the product API.

    Usage:
        async with ApiClient(identity_provider=provider) as api:
            subscription = await api.get_current_subscription()
    """

    def __init__(
        self,
        identity_provider: Optional[IdentityProvider] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        on_session_expired: Optional[Callable[[], Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.authenticator = None
        if identity_provider is not None:
            self.authenticator = TokenAuthenticator(
                identity_provider,
                on_session_expired=on_session_expired,
            )

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.api_timeout_seconds,
            headers={"Content-Type": "application/json"},
            auth=self.authenticator,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request and return the unwrapped payload.

        Raises:
            AuthExpired: Credential could not be refreshed
            NetworkUnavailable: No response was received
            ServerError: 4xx/5xx response
        """
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Network error on {method} {path}: {str(e)}")
            raise NetworkUnavailable() from e

        payload: Any = None
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text

        if response.status_code >= 400:
            message = extract_error_message(payload)
            logger.error(f"API error {response.status_code} on {method} {path}: {message}")
            raise ServerError(message, response.status_code, payload)

        return unwrap_envelope(payload)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, data: Dict[str, Any]) -> Any:
        return await self.request("POST", "/users", json=data)

    async def get_user(self, uid: str) -> Any:
        return await self.request("GET", f"/users/{uid}")

    async def get_me(self) -> Any:
        return await self.request("GET", "/users/me")

    async def update_me(self, data: Dict[str, Any]) -> Any:
        return await self.request("PUT", "/users/me", json=data)

    async def delete_me(self) -> Any:
        return await self.request("DELETE", "/users/me")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def get_notifications(self) -> Any:
        return await self.request("GET", "/notifications")

    async def mark_notification_read(self, notification_id: str) -> Any:
        return await self.request("PATCH", f"/notifications/{notification_id}/read")

    async def mark_all_notifications_read(self) -> Any:
        return await self.request("PATCH", "/notifications/read-all")

    async def delete_notification(self, notification_id: str) -> Any:
        return await self.request("DELETE", f"/notifications/{notification_id}")

    async def clear_notifications(self) -> Any:
        return await self.request("DELETE", "/notifications")

    # ------------------------------------------------------------------
    # CVs
    # ------------------------------------------------------------------

    async def list_cvs(self) -> List[Any]:
        return await self.request("GET", "/cvs")

    async def get_cv(self, cv_id: str) -> Any:
        return await self.request("GET", f"/cvs/{cv_id}")

    async def create_cv(self, data: Dict[str, Any]) -> Any:
        return await self.request("POST", "/cvs", json=data)

    async def update_cv(self, cv_id: str, data: Dict[str, Any]) -> Any:
        return await self.request("PUT", f"/cvs/{cv_id}", json=data)

    async def delete_cv(self, cv_id: str) -> Any:
        return await self.request("DELETE", f"/cvs/{cv_id}")

    async def analyze_cv(self, cv_id: str) -> Any:
        return await self.request("POST", f"/cvs/{cv_id}/analyze")

    # ------------------------------------------------------------------
    # Letters
    # ------------------------------------------------------------------

    async def list_letters(self) -> List[Any]:
        return await self.request("GET", "/letters")

    async def get_letter(self, letter_id: str) -> Any:
        return await self.request("GET", f"/letters/{letter_id}")

    async def create_letter(self, data: Dict[str, Any]) -> Any:
        return await self.request("POST", "/letters", json=data)

    async def update_letter(self, letter_id: str, data: Dict[str, Any]) -> Any:
        return await self.request("PUT", f"/letters/{letter_id}", json=data)

    async def delete_letter(self, letter_id: str) -> Any:
        return await self.request("DELETE", f"/letters/{letter_id}")

    async def analyze_letter(self, letter_id: str) -> Any:
        return await self.request("POST", f"/letters/{letter_id}/analyze")

    async def generate_letter(self, data: Dict[str, Any]) -> Any:
        return await self.request("POST", "/letters/generate", json=data)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def get_current_subscription(self) -> Any:
        return await self.request("GET", "/subscriptions/current")

    async def get_plans(self) -> List[Any]:
        return await self.request("GET", "/subscriptions/plans")

    async def get_ai_usage_limit(self) -> Any:
        return await self.request("GET", "/subscriptions/ai-usage-limit")

    async def increment_ai_usage(self) -> Any:
        return await self.request("POST", "/subscriptions/increment-ai-usage")
