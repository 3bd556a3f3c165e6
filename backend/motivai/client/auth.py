"""
Bearer-token authentication for outbound API calls.

Provides:
- IdentityProvider: protocol for the session/credential source.
- TokenAuthenticator: httpx auth flow attaching the bearer credential,
  refreshing it once on 401 and coalescing concurrent refreshes.
- FirebaseIdentityProvider: Firebase ID tokens refreshed through the
  securetoken REST endpoint (or the local auth emulator).
"""
import asyncio
import inspect
import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

import httpx

from motivai.core.config import settings
from motivai.core.errors import AuthExpired
import logging

logger = logging.getLogger(__name__)

# Refresh a cached ID token this many seconds before it actually expires
TOKEN_EXPIRY_MARGIN_SECONDS = 300


class IdentityProvider(Protocol):
    """Source of the signed-in user's bearer credential."""

    def has_session(self) -> bool:
        ...

    async def get_current_credential(self, force_refresh: bool = False) -> Optional[str]:
        ...

    async def refresh_credential(self) -> str:
        ...

    async def sign_out(self) -> None:
        ...


class TokenAuthenticator(httpx.Auth):
    """
    Attach ``Authorization: Bearer <token>`` to every request.

    - Sensitive paths always get a freshly minted credential.
    - A 401 triggers one forced refresh and one retry of the request.
    - A second 401, or a failed refresh, raises ``AuthExpired`` after signing
      the user out and calling ``on_session_expired``.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        sensitive_paths: Optional[Iterable[str]] = None,
        on_session_expired: Optional[Callable[[], Any]] = None,
    ):
        self.provider = provider
        self.sensitive_paths = list(sensitive_paths if sensitive_paths is not None else settings.sensitive_paths)
        self.on_session_expired = on_session_expired
        self._refresh_future: Optional[asyncio.Future] = None

    def is_sensitive(self, request: httpx.Request) -> bool:
        path = request.url.path
        return any(sensitive in path for sensitive in self.sensitive_paths)

    def sync_auth_flow(self, request: httpx.Request):
        raise RuntimeError("TokenAuthenticator can only be used with httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request):
        if self.provider.has_session():
            try:
                token = await self.provider.get_current_credential(force_refresh=self.is_sensitive(request))
            except Exception as e:
                # Send anyway; the server answers 401 and the retry path takes over
                logger.warning(f"Could not get credential for {request.url.path}: {str(e)}")
                token = None
            if token:
                request.headers["Authorization"] = f"Bearer {token}"

        response = yield request

        if response.status_code != 401 or not self.provider.has_session():
            return

        logger.info(f"401 on {request.url.path}, refreshing credential")
        try:
            token = await self.refresh()
        except Exception as e:
            logger.warning(f"Credential refresh failed: {str(e)}")
            await self._expire_session()
            raise AuthExpired() from e

        request.headers["Authorization"] = f"Bearer {token}"
        response = yield request

        if response.status_code == 401:
            logger.warning(f"Still unauthorized after refresh on {request.url.path}")
            await self._expire_session()
            raise AuthExpired()

    async def refresh(self) -> str:
        """
        Force-refresh the credential.

        Callers arriving while a refresh is in flight wait for that refresh
        instead of starting their own.
        """
        if self._refresh_future is not None:
            return await asyncio.shield(self._refresh_future)

        future = asyncio.get_running_loop().create_future()
        self._refresh_future = future
        try:
            token = await self.provider.refresh_credential()
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure is not reported at GC
            future.exception()
            raise
        else:
            future.set_result(token)
            return token
        finally:
            # Refresh interrupted by cancellation: release the waiters
            if not future.done():
                future.cancel()
            self._refresh_future = None

    async def _expire_session(self) -> None:
        try:
            await self.provider.sign_out()
        except Exception as e:
            logger.error(f"Sign-out after session expiry failed: {str(e)}", exc_info=True)

        if self.on_session_expired is not None:
            result = self.on_session_expired()
            if inspect.isawaitable(result):
                await result


class FirebaseIdentityProvider:
    """
    Firebase session backed by a refresh token.

    The ID token is cached with its expiry and refreshed through
    ``securetoken.googleapis.com`` (or the auth emulator when enabled).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        refresh_token: Optional[str] = None,
        id_token: Optional[str] = None,
        expires_at: float = 0.0,
        use_emulator: Optional[bool] = None,
        emulator_host: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key if api_key is not None else settings.firebase_api_key
        self.refresh_token = refresh_token
        self.id_token = id_token
        self.expires_at = expires_at
        self.uid: Optional[str] = None
        self.use_emulator = settings.use_emulator if use_emulator is None else use_emulator
        self.emulator_host = emulator_host or settings.firebase_auth_emulator_host
        self.clock = clock
        self._transport = transport

    def _url(self, host: str, path: str) -> str:
        if self.use_emulator:
            return f"http://{self.emulator_host}/{host}{path}"
        return f"https://{host}{path}"

    @property
    def token_url(self) -> str:
        return self._url("securetoken.googleapis.com", "/v1/token")

    @property
    def sign_in_url(self) -> str:
        return self._url("identitytoolkit.googleapis.com", "/v1/accounts:signInWithPassword")

    async def _post(self, url: str, **kwargs) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            response = await client.post(url, params={"key": self.api_key}, **kwargs)

        if response.status_code != 200:
            try:
                reason = response.json().get("error", {}).get("message")
            except ValueError:
                reason = response.text
            logger.warning(f"Firebase auth call failed ({response.status_code}): {reason}")
            raise AuthExpired()

        return response.json()

    def has_session(self) -> bool:
        return bool(self.refresh_token)

    async def sign_in_with_password(self, email: str, password: str) -> str:
        """Open a session with email/password credentials; returns the ID token."""
        data = await self._post(
            self.sign_in_url,
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        self.id_token = data["idToken"]
        self.refresh_token = data["refreshToken"]
        self.expires_at = self.clock() + int(data.get("expiresIn", 3600))
        self.uid = data.get("localId")
        logger.info(f"Signed in as {self.uid}")
        return self.id_token

    async def get_current_credential(self, force_refresh: bool = False) -> Optional[str]:
        if not self.has_session():
            return None

        stale = self.clock() >= self.expires_at - TOKEN_EXPIRY_MARGIN_SECONDS
        if force_refresh or not self.id_token or stale:
            return await self.refresh_credential()
        return self.id_token

    async def refresh_credential(self) -> str:
        if not self.refresh_token:
            raise AuthExpired()

        data = await self._post(
            self.token_url,
            data={"grant_type": "refresh_token", "refresh_token": self.refresh_token},
        )
        self.id_token = data["id_token"]
        self.refresh_token = data.get("refresh_token", self.refresh_token)
        self.expires_at = self.clock() + int(data.get("expires_in", 3600))
        self.uid = data.get("user_id", self.uid)
        logger.debug(f"ID token refreshed for {self.uid}")
        return self.id_token

    async def sign_out(self) -> None:
        self.id_token = None
        self.refresh_token = None
        self.expires_at = 0.0
        logger.info(f"Signed out {self.uid}")
        self.uid = None
