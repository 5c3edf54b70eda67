"""
FastAPI dependencies on top of the request authenticator.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import HTTPException, Request

from shared.logging import get_logger
from ..authenticator import RequestAuthenticator
from ..errors import Forbidden, Unauthorized
from ..models import ACR, AccessTokenInfo, AuthenticateRequestResult


class FastAPIAuth:
    """Maps Unauthorized to 401 and Forbidden to 403 for FastAPI routes."""

    def __init__(self, authenticator: RequestAuthenticator):
        self.authenticator = authenticator
        self.logger = get_logger("oidc.adapters.fastapi")

    def authenticated(
        self,
        *,
        optional: bool = False,
        scope: Optional[List[str]] = None,
        acr: Optional[ACR] = None,
        permissions: Optional[List[str]] = None,
        refresh: bool = False,
        fetch_user: bool = True,
    ) -> Callable[[Request], Awaitable[AuthenticateRequestResult]]:
        """Dependency returning the full authentication result."""
        authenticate = self.authenticator.authenticated(
            optional=optional,
            scope=scope,
            acr=acr,
            permissions=permissions,
            refresh=refresh,
            fetch_user=fetch_user,
        )

        async def _dependency(request: Request) -> AuthenticateRequestResult:
            try:
                result = await authenticate(request)
            except Unauthorized as e:
                self.logger.info("Unauthorized request", path=request.url.path, reason=e.details.get("reason"))
                raise HTTPException(
                    status_code=401,
                    detail=e.message,
                    headers={"WWW-Authenticate": "Bearer"},
                ) from e
            except Forbidden as e:
                self.logger.info("Forbidden request", path=request.url.path, reason=e.details.get("reason"))
                raise HTTPException(status_code=403, detail=e.message) from e

            request.state.access_token_info = result.access_token_info
            request.state.user = result.user
            return result

        return _dependency

    def access_token_info(self, **parameters: Any) -> Callable[[Request], Awaitable[Optional[AccessTokenInfo]]]:
        """Dependency returning only the validated access token info."""
        parameters.setdefault("fetch_user", False)
        dependency = self.authenticated(**parameters)

        async def _access_token_info(request: Request) -> Optional[AccessTokenInfo]:
            return (await dependency(request)).access_token_info

        return _access_token_info

    def current_user(self, **parameters: Any) -> Callable[[Request], Awaitable[Optional[Dict[str, Any]]]]:
        """Dependency returning the authenticated user's profile."""
        dependency = self.authenticated(**parameters)

        async def _current_user(request: Request) -> Optional[Dict[str, Any]]:
            return (await dependency(request)).user

        return _current_user
