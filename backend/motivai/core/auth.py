"""
Authentication utilities for Firebase-issued ID tokens.

Provides:
- FirebaseTokenVerifier: verifies and decodes Firebase ID tokens using JWKS.
- get_current_user: FastAPI dependency that returns the current User.

Supports two modes controlled by settings.firebase_token_verification:
- Strict mode (True): full signature / issuer / audience verification.
- Relaxed mode (False, or the auth emulator): parse token without signature
  verification (dev only).
"""
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from motivai.core.config import settings
from motivai.db.base import get_db
from motivai.models import User

import logging

logger = logging.getLogger(__name__)

FIREBASE_JWKS_URL = (
    "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
)

bearer_scheme = HTTPBearer(auto_error=False)


class FirebaseTokenVerifier:
    """Verify Firebase ID tokens using Google's JWKS."""

    def __init__(self, project_id: Optional[str] = None) -> None:
        self.project_id = project_id or settings.firebase_project_id

    @property
    def strict(self) -> bool:
        return settings.firebase_token_verification and not settings.use_emulator

    @staticmethod
    @lru_cache(maxsize=1)
    def _get_jwks(jwks_url: str = FIREBASE_JWKS_URL) -> Dict[str, Any]:
        """
        Fetch the securetoken JWKS and cache the result.

        Returns:
            JWKS payload as a dict.
        """
        try:
            with httpx.Client(timeout=5.0) as client:
                response = client.get(jwks_url)
            response.raise_for_status()
        except Exception as exc:  # noqa: BLE001
            detail = "Unable to fetch Firebase JWKS"
            if settings.debug:
                detail = f"{detail}: {exc}"
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=detail,
            ) from exc

        data = response.json()
        if "keys" not in data:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Invalid JWKS payload from Firebase",
            )
        return data

    @staticmethod
    def _get_signing_key(jwks: Dict[str, Any], kid: str) -> Dict[str, Any]:
        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Signing key not found for token",
        )

    def verify_and_decode(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a Firebase ID token.

        In strict mode this validates:
        - Signature using the securetoken JWKS (RS256).
        - Issuer (iss) equal to https://securetoken.google.com/<project_id>.
        - Audience (aud) equal to the project id.

        In relaxed mode, it parses claims without verifying the signature.

        Returns:
            Decoded claims as a dictionary.
        """
        try:
            unverified_header = jwt.get_unverified_header(token)
            unverified_claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authorization token",
            ) from exc

        if not self.strict:
            return unverified_claims

        kid = unverified_header.get("kid")
        if not kid:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token: missing key id",
            )
        signing_key = self._get_signing_key(self._get_jwks(), kid)

        try:
            claims = jwt.decode(
                token,
                signing_key,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=f"https://securetoken.google.com/{self.project_id}",
            )
        except JWTError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired authorization token",
            ) from exc

        return claims


firebase_verifier = FirebaseTokenVerifier()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the current authenticated user from a Firebase ID token.

    - Expects Authorization: Bearer <token> header.
    - Maps the Firebase uid (sub / user_id) to the local User id.
    - Lazily creates a User row on first login.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    if credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication scheme",
        )

    claims = firebase_verifier.verify_and_decode(credentials.credentials)

    uid = claims.get("sub") or claims.get("user_id")
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing subject",
        )

    user = db.get(User, uid)

    # Lazy-create user on first login
    if not user:
        user = User(
            id=uid,
            email=claims.get("email") or f"{uid}@example.invalid",
            display_name=claims.get("name"),
            is_active=True,
        )
        db.add(user)
        logger.info(f"Created user {uid} on first login")

    user.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(user)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return user
