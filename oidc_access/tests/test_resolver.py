"""
Unit tests for ProviderResolver.
"""

import asyncio

import pytest
from unittest.mock import patch

from prometheus_client import CollectorRegistry

from oidc_access.app.discovery import ProviderResolver
from oidc_access.app.discovery.resolver import REFETCHED_KIDS_MAXSIZE
from oidc_access.app.errors import ProviderCommunicationError
from shared.metrics import OIDCMetrics
from shared.test_helpers import BASE_URL, MockIdentityProvider, TestKeys

DISCOVERY_PATH = "/.well-known/openid-configuration"
JWKS_PATH = "/.well-known/jwks.json"


@pytest.fixture(scope="module")
def keys():
    """Key material shared by the module."""
    return TestKeys.generate()


class TestProviderResolver:
    """Test cases for ProviderResolver."""

    @pytest.fixture
    def provider(self, keys):
        """Mock identity provider."""
        return MockIdentityProvider(keys)

    @pytest.fixture
    def metrics(self):
        """Metrics bound to an isolated registry."""
        return OIDCMetrics(CollectorRegistry())

    @pytest.fixture
    def resolver(self, provider, metrics):
        """Resolver without expiry."""
        return ProviderResolver(BASE_URL, provider.http_client(), metrics=metrics)

    @pytest.mark.asyncio
    async def test_resolve_metadata(self, resolver):
        """Test the discovery document is parsed."""
        metadata = await resolver.resolve_metadata()

        assert metadata.issuer == BASE_URL
        assert metadata.authorization_endpoint == f"{BASE_URL}/authorize"
        assert metadata.token_endpoint == f"{BASE_URL}/token"
        assert metadata.jwks_uri == f"{BASE_URL}{JWKS_PATH}"

    @pytest.mark.asyncio
    async def test_resolve_metadata_memoized(self, resolver, provider):
        """Test discovery is fetched once for repeated lookups."""
        first = await resolver.resolve_metadata()
        second = await resolver.resolve_metadata()

        assert first is second
        assert len(provider.calls_to(DISCOVERY_PATH)) == 1

    @pytest.mark.asyncio
    async def test_resolve_keys_memoized(self, resolver, provider, keys):
        """Test JWKS is fetched once and indexed by kid."""
        key_set = await resolver.resolve_keys()
        await resolver.resolve_keys()

        assert key_set.kids == [keys.kid]
        assert len(provider.calls_to(JWKS_PATH)) == 1

    @pytest.mark.asyncio
    async def test_ttl_expiry_refetches(self, provider, metrics):
        """Test documents older than the ttl are refetched."""
        resolver = ProviderResolver(BASE_URL, provider.http_client(), ttl=60, metrics=metrics)

        with patch("oidc_access.app.discovery.resolver.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            await resolver.resolve_keys()

            mock_time.monotonic.return_value = 1059.0
            await resolver.resolve_keys()
            assert len(provider.calls_to(DISCOVERY_PATH)) == 1
            assert len(provider.calls_to(JWKS_PATH)) == 1

            mock_time.monotonic.return_value = 1061.0
            await resolver.resolve_keys()

        assert len(provider.calls_to(DISCOVERY_PATH)) == 2
        assert len(provider.calls_to(JWKS_PATH)) == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, resolver, provider):
        """Test invalidate forces both documents to be refetched."""
        await resolver.resolve_keys()
        resolver.invalidate()
        await resolver.resolve_keys()

        assert len(provider.calls_to(DISCOVERY_PATH)) == 2
        assert len(provider.calls_to(JWKS_PATH)) == 2

    @pytest.mark.asyncio
    async def test_get_signing_key_known(self, resolver, provider, keys):
        """Test a known kid is served from cache."""
        key = await resolver.get_signing_key(keys.kid)

        assert key == keys.signature_public_jwk
        assert len(provider.calls_to(JWKS_PATH)) == 1

    @pytest.mark.asyncio
    async def test_get_signing_key_rotated(self, resolver, provider, keys):
        """Test an unknown kid triggers a refetch that finds the rotated key."""
        await resolver.resolve_keys()

        rotated = dict(keys.signature_public_jwk, kid="signature-key-2")
        provider.set_route("GET", JWKS_PATH, 200, {"keys": [keys.signature_public_jwk, rotated]})

        key = await resolver.get_signing_key("signature-key-2")

        assert key == rotated
        assert len(provider.calls_to(JWKS_PATH)) == 2

    @pytest.mark.asyncio
    async def test_get_signing_key_unknown_refetched_once(self, resolver, provider):
        """Test an unknown kid refetches at most once."""
        assert await resolver.get_signing_key("unknown-key") is None
        assert await resolver.get_signing_key("unknown-key") is None
        assert await resolver.get_signing_key("unknown-key") is None

        # Initial fetch plus a single refetch
        assert len(provider.calls_to(JWKS_PATH)) == 2

    @pytest.mark.asyncio
    async def test_forged_kids_throttled(self, resolver, provider):
        """Test a burst of distinct unknown kids costs a single refetch."""
        for i in range(200):
            assert await resolver.get_signing_key(f"forged-{i}") is None

        assert len(provider.calls_to(JWKS_PATH)) == 2
        assert len(resolver._refetched_kids) == 1

    @pytest.mark.asyncio
    async def test_refetched_kids_bounded(self, provider, metrics):
        """Test the memory of refetched kids never exceeds its bound."""
        resolver = ProviderResolver(BASE_URL, provider.http_client(), refresh_interval=3600, metrics=metrics)

        for i in range(REFETCHED_KIDS_MAXSIZE + 50):
            # Lift the refetch throttle so every kid is remembered
            resolver._last_forced_refresh = None
            await resolver.get_signing_key(f"forged-{i}")

        assert len(resolver._refetched_kids) == REFETCHED_KIDS_MAXSIZE

    @pytest.mark.asyncio
    async def test_key_published_after_first_miss(self, resolver, provider, keys):
        """Test a kid missed before publication resolves once the interval elapses."""
        rotated = dict(keys.signature_public_jwk, kid="signature-key-2")

        with patch("oidc_access.app.discovery.resolver.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            assert await resolver.get_signing_key("signature-key-2") is None

            provider.set_route("GET", JWKS_PATH, 200, {"keys": [keys.signature_public_jwk, rotated]})

            mock_time.monotonic.return_value = 1010.0
            assert await resolver.get_signing_key("signature-key-2") is None

            mock_time.monotonic.return_value = 1031.0
            assert await resolver.get_signing_key("signature-key-2") == rotated

        assert len(provider.calls_to(JWKS_PATH)) == 3

    @pytest.mark.asyncio
    async def test_changed_key_set_forgets_misses(self, resolver, provider, keys):
        """Test a refetch that changes the published keys clears earlier misses."""
        with patch("oidc_access.app.discovery.resolver.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            await resolver.get_signing_key("signature-key-2")
            assert "signature-key-2" in resolver._refetched_kids

            rotated = dict(keys.signature_public_jwk, kid="signature-key-3")
            provider.set_route("GET", JWKS_PATH, 200, {"keys": [keys.signature_public_jwk, rotated]})

            mock_time.monotonic.return_value = 1015.0
            resolver._last_forced_refresh = None
            assert await resolver.get_signing_key("signature-key-3") == rotated

            assert len(resolver._refetched_kids) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kid", [["signature-key-1"], {"kid": "signature-key-1"}, 7])
    async def test_non_string_kid(self, resolver, provider, kid):
        """Test a malformed kid is never looked up or remembered."""
        assert await resolver.get_signing_key(kid) is None

        assert provider.calls_to(JWKS_PATH) == []
        assert len(resolver._refetched_kids) == 0

    @pytest.mark.asyncio
    async def test_concurrent_population(self, resolver, provider):
        """Test racing lookups share one discovery fetch and one JWKS fetch."""
        results = await asyncio.gather(
            *[resolver.resolve_metadata() for _ in range(5)],
            *[resolver.resolve_keys() for _ in range(5)],
        )

        metadata, key_sets = results[:5], results[5:]
        assert all(m is metadata[0] for m in metadata)
        assert all(k is key_sets[0] for k in key_sets)
        assert len(provider.calls_to(DISCOVERY_PATH)) == 1
        assert len(provider.calls_to(JWKS_PATH)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_unknown_kid(self, resolver, provider):
        """Test racing lookups of one unknown kid share a single refetch."""
        results = await asyncio.gather(*[resolver.get_signing_key("unknown-key") for _ in range(5)])

        assert results == [None] * 5
        assert len(provider.calls_to(DISCOVERY_PATH)) == 1
        assert len(provider.calls_to(JWKS_PATH)) == 2

    @pytest.mark.asyncio
    async def test_discovery_error_status(self, resolver, provider):
        """Test a non-2xx discovery response raises ProviderCommunicationError."""
        provider.set_route("GET", DISCOVERY_PATH, 503, {"detail": "Service unavailable"})

        with pytest.raises(ProviderCommunicationError) as exc_info:
            await resolver.resolve_metadata()

        assert exc_info.value.upstream_status == 503
        assert exc_info.value.detail == "Service unavailable"
        assert exc_info.value.endpoint == "discovery"

    @pytest.mark.asyncio
    async def test_discovery_missing_endpoints(self, resolver, provider):
        """Test an incomplete discovery document is rejected."""
        provider.set_route("GET", DISCOVERY_PATH, 200, {"issuer": BASE_URL})

        with pytest.raises(ProviderCommunicationError):
            await resolver.resolve_metadata()

    @pytest.mark.asyncio
    async def test_jwks_without_keys(self, resolver, provider):
        """Test a JWKS document without a keys array is rejected."""
        provider.set_route("GET", JWKS_PATH, 200, {"not_keys": []})

        with pytest.raises(ProviderCommunicationError) as exc_info:
            await resolver.resolve_keys()

        assert exc_info.value.endpoint == "jwks"

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, resolver, provider):
        """Test a failed discovery fetch is retried on the next lookup."""
        provider.set_route("GET", DISCOVERY_PATH, 500, {"detail": "boom"})
        with pytest.raises(ProviderCommunicationError):
            await resolver.resolve_metadata()

        provider.set_route("GET", DISCOVERY_PATH, 200, {
            "issuer": BASE_URL,
            "authorization_endpoint": f"{BASE_URL}/authorize",
            "token_endpoint": f"{BASE_URL}/token",
            "userinfo_endpoint": f"{BASE_URL}/userinfo",
            "jwks_uri": f"{BASE_URL}{JWKS_PATH}",
        })
        metadata = await resolver.resolve_metadata()

        assert metadata.token_endpoint == f"{BASE_URL}/token"

    @pytest.mark.asyncio
    async def test_provider_calls_recorded(self, resolver, metrics):
        """Test each provider call is counted by endpoint and status."""
        await resolver.resolve_keys()

        counter = metrics.get_metric("provider_requests_total")
        assert counter.labels(endpoint="discovery", status="200")._value.get() == 1
        assert counter.labels(endpoint="jwks", status="200")._value.get() == 1
