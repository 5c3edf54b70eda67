"""
Token validation package.

Provides the codec used by the OIDC client to validate JWTs issued by the
upstream identity provider:

- Unwrapping encrypted (JWE) ID tokens with the configured key.
- Verifying signature, issuer, audience and expiry against the JWKS.
- Checking the ``at_hash`` / ``c_hash`` binding claims.
- Projecting access token claims into AccessTokenInfo.

Only standard JOSE/JWT behaviour is assumed so the provider can be
switched with configuration.
"""

from .codec import TokenCodec, is_encrypted

__all__ = ["TokenCodec", "is_encrypted"]
