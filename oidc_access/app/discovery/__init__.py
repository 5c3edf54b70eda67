"""
Discovery package.

Contains the resolver that fetches and caches the provider's OpenID
discovery document and JSON Web Key Set.

Key points:
- Both documents are fetched lazily and kept for the resolver's lifetime,
  unless a TTL is configured or the host calls ``invalidate()``.
- A token naming an unknown key id triggers at most one JWKS refetch per
  key id.
- Failures surface as ProviderCommunicationError; nothing is retried.
"""

from .resolver import ProviderResolver

__all__ = ["ProviderResolver"]
