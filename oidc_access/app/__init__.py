"""
OIDC access engine.

Client-side engine for an external OpenID Connect provider. It drives the
authorization code flow, validates ID and access tokens, and decides per
request whether a caller is authenticated and authorized:

- app.discovery: Discovery document and JWKS resolver with explicit cache policy.
- app.validation: Token codec (JWE unwrap, JWS verification, hash binding).
- app.client: OIDC client operations against the provider.
- app.authenticator: Request authentication state machine and token getters.
- app.cache: User-info cache contract and in-memory implementation.
- app.adapters: FastAPI dependencies.

Design notes:
- Module import performs no network calls; all IO happens in explicit
  awaited operations.
- Use the shared/ utilities for logging, metrics, config and errors.
- No session state is persisted; tokens are handed back to the caller.
"""

from .authenticator import (
    RequestAuthenticator,
    TokenGetter,
    authorization_bearer_getter,
    cookie_getter,
)
from .cache import InMemoryUserInfoCache, UserInfoCache
from .client import OIDCClient
from .errors import (
    AccessTokenACRTooLow,
    AccessTokenError,
    AccessTokenExpired,
    AccessTokenInvalid,
    AccessTokenMissingPermission,
    AccessTokenMissingScope,
    AccessTokenPolicyError,
    Forbidden,
    IdTokenInvalid,
    ProviderCommunicationError,
    Unauthorized,
)
from .models import (
    ACR,
    AccessTokenInfo,
    AuthenticateRequestResult,
    KeySet,
    ProviderMetadata,
    TokenResponse,
    UserInfo,
)
from .pkce import get_code_challenge, get_code_verifier

__all__ = [
    "ACR",
    "AccessTokenACRTooLow",
    "AccessTokenError",
    "AccessTokenExpired",
    "AccessTokenInfo",
    "AccessTokenInvalid",
    "AccessTokenMissingPermission",
    "AccessTokenMissingScope",
    "AccessTokenPolicyError",
    "AuthenticateRequestResult",
    "Forbidden",
    "IdTokenInvalid",
    "InMemoryUserInfoCache",
    "KeySet",
    "OIDCClient",
    "ProviderCommunicationError",
    "ProviderMetadata",
    "RequestAuthenticator",
    "TokenGetter",
    "TokenResponse",
    "Unauthorized",
    "UserInfo",
    "UserInfoCache",
    "authorization_bearer_getter",
    "cookie_getter",
    "get_code_challenge",
    "get_code_verifier",
]
