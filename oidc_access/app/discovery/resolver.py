"""
Provider discovery and JWKS resolver.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import httpx
from cachetools import TTLCache

from shared.logging import get_logger
from shared.metrics import OIDCMetrics
from ..errors import ProviderCommunicationError
from ..models import KeySet, ProviderMetadata
from ..transport import provider_request

DEFAULT_REFRESH_INTERVAL = 30.0
REFETCHED_KIDS_MAXSIZE = 1024


class ProviderResolver:
    """Owned cache of the provider's discovery document and signing keys.

    With ``ttl=None`` both documents are kept until ``invalidate()`` is
    called; otherwise the next lookup after ``ttl`` seconds refetches them.
    Tokens naming an unknown kid force a JWKS refetch, rate limited by
    ``refresh_interval``.
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient,
        *,
        ttl: Optional[float] = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        metrics: Optional[OIDCMetrics] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.ttl = ttl
        self.refresh_interval = refresh_interval
        self.metrics = metrics
        self.logger = get_logger("oidc.discovery")

        self._http_client = http_client
        self._metadata: Optional[ProviderMetadata] = None
        self._metadata_fetched_at: float = 0.0
        self._keys: Optional[KeySet] = None
        self._keys_fetched_at: float = 0.0
        # Key ids that recently triggered a refetch, bounded and expiring
        self._refetched_kids: TTLCache = TTLCache(
            maxsize=REFETCHED_KIDS_MAXSIZE, ttl=refresh_interval, timer=lambda: time.monotonic()
        )
        self._last_forced_refresh: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def discovery_url(self) -> str:
        return f"{self.base_url}/.well-known/openid-configuration"

    def _is_fresh(self, fetched_at: float) -> bool:
        return self.ttl is None or (time.monotonic() - fetched_at) < self.ttl

    async def resolve_metadata(self) -> ProviderMetadata:
        """Return the discovery document, fetching it on first use."""
        if self._metadata is not None and self._is_fresh(self._metadata_fetched_at):
            return self._metadata

        async with self._lock:
            if self._metadata is not None and self._is_fresh(self._metadata_fetched_at):
                return self._metadata

            payload = await provider_request(
                self._http_client, "discovery", "GET", self.discovery_url, metrics=self.metrics
            )
            try:
                metadata = ProviderMetadata.model_validate(payload)
            except ValueError as e:
                raise ProviderCommunicationError(
                    "Discovery document is missing required endpoints",
                    detail=str(e),
                    endpoint="discovery",
                ) from e

            self._metadata = metadata
            self._metadata_fetched_at = time.monotonic()
            self.logger.info("Provider metadata resolved", base_url=self.base_url)
            return metadata

    async def resolve_keys(self) -> KeySet:
        """Return the provider's signing keys, fetching them on first use."""
        if self._keys is not None and self._is_fresh(self._keys_fetched_at):
            return self._keys

        metadata = await self.resolve_metadata()
        async with self._lock:
            if self._keys is not None and self._is_fresh(self._keys_fetched_at):
                return self._keys
            return await self._fetch_keys(metadata)

    async def _fetch_keys(self, metadata: ProviderMetadata) -> KeySet:
        """Fetch the JWKS; callers hold the lock."""
        payload = await provider_request(
            self._http_client, "jwks", "GET", metadata.jwks_uri, metrics=self.metrics
        )
        try:
            keys = KeySet.from_jwks(payload)
        except ValueError as e:
            raise ProviderCommunicationError(str(e), endpoint="jwks") from e

        self._keys = keys
        self._keys_fetched_at = time.monotonic()
        self.logger.info("JWKS refreshed", keys_count=len(keys), kids=keys.kids)
        return keys

    async def get_signing_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """Return the JWK for ``kid``, refetching the JWKS if the id is unknown.

        A kid triggers at most one refetch per ``refresh_interval``, and no
        two forced refetches happen closer together than that interval.
        """
        if not isinstance(kid, str):
            return None

        keys = await self.resolve_keys()
        key = keys.get(kid)
        if key is not None:
            return key

        metadata = await self.resolve_metadata()
        async with self._lock:
            if self._keys is not None and kid in self._keys:
                return self._keys.get(kid)
            if kid in self._refetched_kids:
                self.logger.warning("Signing key not found", kid=kid)
                return None
            now = time.monotonic()
            if (
                self._last_forced_refresh is not None
                and now - self._last_forced_refresh < self.refresh_interval
            ):
                self.logger.warning("Signing key not found, refetch throttled", kid=kid)
                return None

            self._refetched_kids[kid] = now
            self._last_forced_refresh = now
            previous_kids = set(self._keys.kids) if self._keys is not None else set()
            self.logger.info("Unknown key id, refetching JWKS", kid=kid)
            keys = await self._fetch_keys(metadata)
            if set(keys.kids) != previous_kids:
                # Published keys changed; earlier misses may resolve now
                self._refetched_kids.clear()

        key = keys.get(kid)
        if key is None:
            self.logger.warning("Signing key not found after refetch", kid=kid)
        return key

    def invalidate(self) -> None:
        """Drop cached metadata and keys; the next lookup refetches both."""
        self._metadata = None
        self._metadata_fetched_at = 0.0
        self._keys = None
        self._keys_fetched_at = 0.0
        self._refetched_kids.clear()
        self._last_forced_refresh = None
        self.logger.info("Provider cache invalidated", base_url=self.base_url)
