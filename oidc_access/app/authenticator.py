"""
Request authentication for framework adapters.

Flow per request::

    start -> token extracted -> token validated -> policy checked -> authenticated
    (no token / invalid / expired)            -> Unauthorized
    (scope, ACR or permission not met)         -> Forbidden
"""

import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union

from shared.logging import clear_user_context, get_logger, set_user_context
from shared.metrics import OIDCMetrics, get_metrics
from .cache import UserInfoCache
from .client import OIDCClient
from .errors import AccessTokenPolicyError, AccessTokenError, Forbidden, Unauthorized
from .models import ACR, AccessTokenInfo, AuthenticateRequestResult, UserInfo

TokenGetter = Callable[[Any], Union[Optional[str], Awaitable[Optional[str]]]]


def _get_header(request: Any, name: str) -> Optional[str]:
    """Read a header from a Starlette request or a plain mapping."""
    headers = getattr(request, "headers", None)
    if headers is None and isinstance(request, dict):
        headers = request.get("headers")
    if headers is None:
        return None

    value = headers.get(name)
    if value is None and isinstance(headers, dict):
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return value


def authorization_bearer_getter(request: Any) -> Optional[str]:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    authorization = _get_header(request, "Authorization")
    if not authorization:
        return None

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def cookie_getter(cookie_name: str) -> TokenGetter:
    """Build a getter that reads the token from the named cookie."""

    def _getter(request: Any) -> Optional[str]:
        cookies = getattr(request, "cookies", None)
        if cookies is None and isinstance(request, dict):
            cookies = request.get("cookies")
        if not cookies:
            return None
        return cookies.get(cookie_name) or None

    return _getter


class RequestAuthenticator:
    """Decides whether a request is authenticated and authorized."""

    def __init__(
        self,
        client: OIDCClient,
        token_getter: TokenGetter,
        userinfo_cache: Optional[UserInfoCache] = None,
        *,
        metrics: Optional[OIDCMetrics] = None,
    ) -> None:
        self.client = client
        self.token_getter = token_getter
        self.userinfo_cache = userinfo_cache
        self.metrics = metrics or get_metrics()
        self.logger = get_logger("oidc.authenticator")

    async def _extract_token(self, request: Any) -> Optional[str]:
        token = self.token_getter(request)
        if inspect.isawaitable(token):
            token = await token
        return token

    async def authenticate(
        self,
        request: Any,
        *,
        optional: bool = False,
        scope: Optional[List[str]] = None,
        acr: Optional[ACR] = None,
        permissions: Optional[List[str]] = None,
        refresh: bool = False,
        fetch_user: bool = True,
    ) -> AuthenticateRequestResult:
        """Authenticate ``request`` or raise Unauthorized / Forbidden.

        With ``optional`` a request without a token yields an empty result;
        a token that is present is still validated. ``refresh`` bypasses the
        user-info cache. ``fetch_user=False`` skips profile resolution.
        """
        # Only a successful authentication binds a subject
        clear_user_context()
        token = await self._extract_token(request)
        if token is None:
            if optional:
                self.metrics.record_authentication("anonymous")
                return AuthenticateRequestResult()
            self.metrics.record_authentication("unauthorized")
            raise Unauthorized("No access token found in request")

        try:
            info = await self.client.validate_access_token(token, scope, acr, permissions)
        except AccessTokenPolicyError as e:
            self.metrics.record_authentication("forbidden")
            raise Forbidden(e.message, {"reason": e.code, **e.details}) from e
        except AccessTokenError as e:
            self.metrics.record_authentication("unauthorized")
            raise Unauthorized(e.message, {"reason": e.code}) from e

        set_user_context(info.id)

        user: Optional[UserInfo] = None
        if fetch_user:
            user = await self.get_user_info(info, refresh=refresh)

        self.metrics.record_authentication("authenticated")
        self.logger.debug("Request authenticated", sub=info.id, scope=info.scope, acr=info.acr.value)
        return AuthenticateRequestResult(user=user, access_token_info=info)

    async def get_user_info(self, info: AccessTokenInfo, *, refresh: bool = False) -> UserInfo:
        """Resolve the profile of a validated token's subject, cache first."""
        if self.userinfo_cache is not None and not refresh:
            cached = await self.userinfo_cache.get(info.id)
            if cached is not None:
                return cached

        user = await self.client.fetch_user_info(info.access_token)
        if self.userinfo_cache is not None:
            await self.userinfo_cache.set(info.id, user)
        return user

    def authenticated(
        self,
        *,
        optional: bool = False,
        scope: Optional[List[str]] = None,
        acr: Optional[ACR] = None,
        permissions: Optional[List[str]] = None,
        refresh: bool = False,
        fetch_user: bool = True,
    ) -> Callable[[Any], Awaitable[AuthenticateRequestResult]]:
        """Bind authentication parameters once, for use per request."""

        async def _authenticate(request: Any) -> AuthenticateRequestResult:
            return await self.authenticate(
                request,
                optional=optional,
                scope=scope,
                acr=acr,
                permissions=permissions,
                refresh=refresh,
                fetch_user=fetch_user,
            )

        return _authenticate
