"""
OIDC client for the upstream identity provider.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

import httpx

from shared.config import OIDCSettings
from shared.logging import get_logger
from shared.metrics import OIDCMetrics, get_metrics
from .discovery import ProviderResolver
from .discovery.resolver import DEFAULT_REFRESH_INTERVAL
from .errors import (
    AccessTokenACRTooLow,
    AccessTokenError,
    AccessTokenInvalid,
    AccessTokenMissingPermission,
    AccessTokenMissingScope,
    IdTokenInvalid,
)
from .models import ACR, AccessTokenInfo, KeySet, TokenResponse, UserInfo
from .pkce import CodeChallengeMethod
from .transport import provider_request
from .validation import TokenCodec
from .validation.codec import DecryptionKey


class OIDCClient:
    """Authorization code flow, token validation and userinfo for one client.

    The client owns its resolver and codec. It never retries and never
    persists tokens; both are the caller's concern.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: Optional[str] = None,
        *,
        encryption_key: Optional[DecryptionKey] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        verify: bool = True,
        metadata_ttl: Optional[float] = None,
        jwks_refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        algorithms: Optional[Sequence[str]] = None,
        metrics: Optional[OIDCMetrics] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.encryption_key = encryption_key
        self.metrics = metrics or get_metrics()
        self.logger = get_logger("oidc.client")

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout, verify=verify)
        self.resolver = ProviderResolver(
            self.base_url,
            self._http_client,
            ttl=metadata_ttl,
            refresh_interval=jwks_refresh_interval,
            metrics=self.metrics,
        )
        self.codec = TokenCodec(algorithms)

    @classmethod
    def from_settings(cls, settings: OIDCSettings, **kwargs: Any) -> "OIDCClient":
        """Build a client from OIDC_* settings."""
        return cls(
            settings.base_url,
            settings.client_id,
            settings.client_secret,
            encryption_key=settings.encryption_key,
            timeout=settings.http_timeout,
            verify=settings.verify_ssl,
            metadata_ttl=settings.metadata_ttl,
            jwks_refresh_interval=settings.jwks_refresh_interval,
            **kwargs,
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> "OIDCClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _keys_for(self, kid: Optional[str]) -> KeySet:
        """Current key set, refetched once if it lacks ``kid``."""
        keys = await self.resolver.resolve_keys()
        if kid is not None and kid not in keys:
            await self.resolver.get_signing_key(kid)
            keys = await self.resolver.resolve_keys()
        return keys

    async def build_authorization_url(
        self,
        redirect_uri: str,
        *,
        state: Optional[str] = None,
        scope: Optional[List[str]] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[CodeChallengeMethod] = None,
        lang: Optional[str] = None,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> str:
        """Build the URL the user agent is redirected to for login."""
        metadata = await self.resolver.resolve_metadata()

        params: List[Tuple[str, str]] = [
            ("response_type", "code"),
            ("client_id", self.client_id),
            ("redirect_uri", redirect_uri),
        ]
        if state is not None:
            params.append(("state", state))
        if scope is not None:
            params.append(("scope", " ".join(scope)))
        if code_challenge is not None and code_challenge_method is not None:
            params.append(("code_challenge", code_challenge))
            params.append(("code_challenge_method", code_challenge_method))
        if lang is not None:
            params.append(("lang", lang))
        if extra_params is not None:
            params.extend(extra_params.items())

        return f"{metadata.authorization_endpoint}?{urlencode(params)}"

    async def exchange_code_for_tokens(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> Tuple[TokenResponse, UserInfo]:
        """Trade an authorization code for tokens and the ID token's claims."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier is not None:
            data["code_verifier"] = code_verifier

        token_response = await self._token_request(data)
        userinfo = await self._decode_id_token(
            token_response.id_token, code=code, access_token=token_response.access_token
        )
        self.logger.info("Authorization code exchanged", sub=userinfo.get("sub"))
        return token_response, userinfo

    async def refresh_tokens(
        self,
        refresh_token: str,
        scope: Optional[List[str]] = None,
    ) -> Tuple[TokenResponse, UserInfo]:
        """Obtain fresh tokens with a refresh token."""
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        if scope is not None:
            data["scope"] = " ".join(scope)

        token_response = await self._token_request(data)
        userinfo = await self._decode_id_token(
            token_response.id_token, access_token=token_response.access_token
        )
        self.logger.info("Tokens refreshed", sub=userinfo.get("sub"))
        return token_response, userinfo

    async def _token_request(self, data: Dict[str, str]) -> TokenResponse:
        metadata = await self.resolver.resolve_metadata()
        data = {**data, "client_id": self.client_id}
        if self.client_secret is not None:
            data["client_secret"] = self.client_secret

        payload = await provider_request(
            self._http_client, "token", "POST", metadata.token_endpoint,
            data=data, metrics=self.metrics,
        )
        try:
            return TokenResponse.model_validate(payload)
        except ValueError as e:
            raise IdTokenInvalid("Token response is missing tokens", {"error": str(e)}) from e

    async def _decode_id_token(
        self,
        id_token: str,
        *,
        code: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> UserInfo:
        """Validate the ID token and its binding to the code and access token."""
        metadata = await self.resolver.resolve_metadata()
        try:
            signed_token = self.codec.decrypt_id_token(id_token, self.encryption_key)
            header = self.codec.unverified_header(signed_token)
            keys = await self._keys_for(self.codec.key_id(signed_token, IdTokenInvalid))
            claims = self.codec.verify_id_token(
                signed_token,
                metadata,
                keys,
                audience=self.client_id,
                issuer=metadata.issuer or self.base_url,
            )

            algorithm = header.get("alg", "RS256")
            for claim_name, reference in (("c_hash", code), ("at_hash", access_token)):
                if reference is None:
                    continue
                if not self.codec.check_hash_binding(claims, claim_name, reference, algorithm):
                    raise IdTokenInvalid(f"ID token {claim_name} does not match", {"claim": claim_name})
        except IdTokenInvalid as e:
            self.metrics.record_token_validation("id_token", e.code)
            self.logger.warning("ID token rejected", error=e.message)
            raise

        self.metrics.record_token_validation("id_token", "ok")
        return claims

    async def validate_access_token(
        self,
        access_token: str,
        required_scope: Optional[List[str]] = None,
        required_acr: Optional[ACR] = None,
        required_permissions: Optional[List[str]] = None,
    ) -> AccessTokenInfo:
        """Validate an access token and enforce scope, ACR and permissions.

        Checks run in order and the first failure is raised: invalid,
        expired, missing scope, ACR too low, missing permission.
        """
        try:
            metadata = await self.resolver.resolve_metadata()
            keys = await self._keys_for(self.codec.key_id(access_token, AccessTokenInvalid))
            info = self.codec.verify_access_token(
                access_token, metadata, keys, issuer=metadata.issuer or self.base_url
            )

            if required_scope is not None:
                missing = [s for s in required_scope if s not in info.scope]
                if missing:
                    raise AccessTokenMissingScope(missing, info.scope)

            if required_acr is not None and info.acr < required_acr:
                raise AccessTokenACRTooLow(required_acr, info.acr)

            if required_permissions is not None:
                granted = set(info.permissions)
                missing = [p for p in required_permissions if p not in granted]
                if missing:
                    raise AccessTokenMissingPermission(missing, info.permissions)
        except AccessTokenError as e:
            self.metrics.record_token_validation("access_token", e.code)
            self.logger.info("Access token rejected", error_code=e.code, details=e.details)
            raise

        self.metrics.record_token_validation("access_token", "ok")
        return info

    async def fetch_user_info(self, access_token: str) -> UserInfo:
        """Fetch the subject's profile from the userinfo endpoint."""
        metadata = await self.resolver.resolve_metadata()
        return await provider_request(
            self._http_client, "userinfo", "GET", metadata.userinfo_endpoint,
            headers=self._bearer(access_token), metrics=self.metrics,
        )

    async def update_profile(self, access_token: str, data: Dict[str, Any]) -> UserInfo:
        """Update the authenticated user's profile."""
        return await self._self_service("profile", "PATCH", "/api/profile", access_token, data)

    async def change_password(self, access_token: str, new_password: str) -> UserInfo:
        """Change the authenticated user's password."""
        return await self._self_service(
            "password", "PATCH", "/api/password", access_token, {"password": new_password}
        )

    async def email_change(self, access_token: str, email: str) -> UserInfo:
        """Request an email change; the provider sends a verification code."""
        return await self._self_service(
            "email_change", "PATCH", "/api/email/change", access_token, {"email": email}
        )

    async def email_verify(self, access_token: str, code: str) -> UserInfo:
        """Confirm an email change with the code the user received."""
        return await self._self_service(
            "email_verify", "POST", "/api/email/verify", access_token, {"code": code}
        )

    async def _self_service(
        self, endpoint: str, method: str, path: str, access_token: str, body: Dict[str, Any]
    ) -> UserInfo:
        return await provider_request(
            self._http_client, endpoint, method, f"{self.base_url}{path}",
            json=body, headers=self._bearer(access_token), metrics=self.metrics,
        )

    async def build_logout_url(self, redirect_uri: str) -> str:
        """Build the provider logout URL that redirects back to ``redirect_uri``."""
        await self.resolver.resolve_metadata()
        return f"{self.base_url}/logout?{urlencode({'redirect_uri': redirect_uri})}"

    @staticmethod
    def _bearer(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}
