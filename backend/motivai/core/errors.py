"""
Error taxonomy shared by the API client, the subscription lifecycle and the
HTTP layer.

Every error carries an HTTP-ish status and serializes to the normalized
``{"message": ..., "status": ...}`` shape surfaced to callers.
"""
from typing import Any, Dict, List, Optional


class MotivaiError(Exception):
    """Base class for all application errors."""

    status: int = 500
    error_type: str = "INTERNAL_ERROR"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "status": self.status}


class AuthExpired(MotivaiError):
    """Raised when the bearer credential could not be refreshed."""

    status = 401
    error_type = "AUTH_EXPIRED"

    def __init__(self, message: str = "Session expirée, veuillez vous reconnecter"):
        super().__init__(message)


class NetworkUnavailable(MotivaiError):
    """Raised when no response was received at all."""

    status = 0
    error_type = "NETWORK_UNAVAILABLE"

    def __init__(self, message: str = "Erreur de connexion. Vérifiez votre connexion internet."):
        super().__init__(message)


class ServerError(MotivaiError):
    """4xx/5xx response; the server-supplied message is kept verbatim."""

    error_type = "SERVER_ERROR"

    def __init__(self, message: str, status: int, payload: Any = None):
        super().__init__(message, status=status)
        self.payload = payload


class ValidationError(MotivaiError):
    """Local precondition failure."""

    status = 400
    error_type = "VALIDATION_ERROR"


class SubscriptionValidationError(ValidationError):
    """Validation failed; carries every issue found, nothing was written."""

    def __init__(self, issues: List[Any]):
        self.issues = list(issues)
        messages = ", ".join(issue.message for issue in self.issues)
        super().__init__(f"Données d'abonnement invalides: {messages}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["details"] = [issue.model_dump() for issue in self.issues]
        return data


class QuotaExceeded(MotivaiError):
    """Raised when a plan's usage quota has been reached."""

    status = 403
    error_type = "QUOTA_EXCEEDED"

    def __init__(self, quota_type: str, used: int, limit: Optional[int]):
        self.quota_type = quota_type
        self.used = used
        self.limit = limit
        super().__init__(f"Limite d'utilisation de l'IA atteinte ({used}/{limit})")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"quota_type": self.quota_type, "used": self.used, "limit": self.limit})
        return data


class NotFoundError(MotivaiError):
    status = 404
    error_type = "NOT_FOUND"


class ForbiddenError(MotivaiError):
    status = 403
    error_type = "FORBIDDEN"


class ConflictError(MotivaiError):
    """Concurrent writers kept winning the compare-and-set."""

    status = 409
    error_type = "CONFLICT"
