"""
Error taxonomy of the OIDC access engine.

Every kind is its own class with a stable ``code``; callers branch on the
class (or the code), never on the message.
"""

from typing import Any, Dict, List, Optional

from shared.errors import (
    AccessLayerException,
    AuthenticationError,
    AuthorizationError,
    ExternalServiceError,
)


class ProviderCommunicationError(ExternalServiceError):
    """A provider call failed at the transport level or returned non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None,
                 endpoint: Optional[str] = None):
        self.upstream_status = status_code
        self.detail = detail
        self.endpoint = endpoint
        super().__init__(
            "identity-provider",
            message,
            details={"status_code": status_code, "detail": detail, "endpoint": endpoint},
            code="PROVIDER_COMMUNICATION_ERROR",
        )


class IdTokenInvalid(AccessLayerException):
    """ID token could not be decrypted, verified or bound to its flow."""

    status_code = 401

    def __init__(self, message: str = "Invalid ID token", details: Optional[Dict[str, Any]] = None):
        super().__init__("ID_TOKEN_INVALID", message, details)


class AccessTokenError(AccessLayerException):
    """Base class for access token failures."""

    status_code = 401


class AccessTokenInvalid(AccessTokenError):
    """Malformed access token or failed signature/issuer check."""

    def __init__(self, message: str = "Invalid access token", details: Optional[Dict[str, Any]] = None):
        super().__init__("ACCESS_TOKEN_INVALID", message, details)


class AccessTokenExpired(AccessTokenError):
    """Structurally valid access token past its expiry."""

    def __init__(self, message: str = "Access token expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("ACCESS_TOKEN_EXPIRED", message, details)


class AccessTokenPolicyError(AccessTokenError):
    """Valid access token failing a scope, ACR or permission requirement."""

    status_code = 403


class AccessTokenMissingScope(AccessTokenPolicyError):

    def __init__(self, required: List[str], granted: List[str]):
        self.required = required
        self.granted = granted
        super().__init__(
            "ACCESS_TOKEN_MISSING_SCOPE",
            "Access token is missing a required scope",
            {"required_scope": required, "granted_scope": granted},
        )


class AccessTokenACRTooLow(AccessTokenPolicyError):

    def __init__(self, required: Any, actual: Any):
        self.required = required
        self.actual = actual
        super().__init__(
            "ACCESS_TOKEN_ACR_TOO_LOW",
            "Access token authentication level is too low",
            {"required_acr": str(getattr(required, "value", required)),
             "actual_acr": str(getattr(actual, "value", actual))},
        )


class AccessTokenMissingPermission(AccessTokenPolicyError):

    def __init__(self, required: List[str], granted: List[str]):
        self.required = required
        self.granted = granted
        super().__init__(
            "ACCESS_TOKEN_MISSING_PERMISSION",
            "Access token is missing a required permission",
            {"required_permissions": required, "granted_permissions": granted},
        )


class Unauthorized(AuthenticationError):
    """No usable token, or the token failed structural/expiry validation."""

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="UNAUTHORIZED")


class Forbidden(AuthorizationError):
    """Valid token that does not meet the route's policy."""

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="FORBIDDEN")
