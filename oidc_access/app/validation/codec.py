"""
Token codec: decrypts, verifies and decodes ID tokens and access tokens.
"""

import hashlib
import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, Union

from jose import jwe, jwt
from jose.exceptions import JOSEError
from jose.utils import calculate_at_hash

from shared.errors import AccessLayerException
from shared.logging import get_logger
from ..errors import AccessTokenExpired, AccessTokenInvalid, IdTokenInvalid
from ..models import ACR, AccessTokenInfo, KeySet, ProviderMetadata

DEFAULT_ALGORITHMS = ["RS256", "RS384", "RS512"]

_HASH_BY_BITS: Dict[str, Callable[..., Any]] = {
    "256": hashlib.sha256,
    "384": hashlib.sha384,
    "512": hashlib.sha512,
}

DecryptionKey = Union[str, Dict[str, Any]]


def is_encrypted(raw_token: str) -> bool:
    """JWE compact serialization has five segments, JWS has three."""
    return raw_token.count(".") == 4


class TokenCodec:
    """Stateless verifier for provider-issued JWTs."""

    def __init__(self, algorithms: Optional[Sequence[str]] = None):
        self.algorithms = list(algorithms or DEFAULT_ALGORITHMS)
        self.logger = get_logger("oidc.codec")

    def unverified_header(self, raw_token: str) -> Dict[str, Any]:
        """Return the JWS header, or an empty dict when it cannot be read."""
        try:
            return jwt.get_unverified_header(raw_token)
        except JOSEError:
            return {}

    def decrypt_id_token(self, raw_token: str, decryption_key: Optional[DecryptionKey]) -> str:
        """Unwrap a JWE envelope; signed-only tokens pass through unchanged."""
        if not is_encrypted(raw_token):
            return raw_token

        if decryption_key is None:
            raise IdTokenInvalid("ID token is encrypted but no encryption key is configured")

        try:
            key = json.loads(decryption_key) if isinstance(decryption_key, str) else decryption_key
            plaintext = jwe.decrypt(raw_token, key)
        except (JOSEError, ValueError, KeyError, TypeError) as e:
            raise IdTokenInvalid("ID token could not be decrypted", {"error": str(e)}) from e
        if plaintext is None:
            raise IdTokenInvalid("ID token could not be decrypted")

        return plaintext.decode("utf-8")

    def key_id(self, raw_token: str, error_class: Type[AccessLayerException] = AccessTokenInvalid) -> Optional[str]:
        """Header kid; a kid that is present but not a string marks the token malformed."""
        kid = self.unverified_header(raw_token).get("kid")
        if kid is not None and not isinstance(kid, str):
            raise error_class("Token header kid must be a string", {"kid_type": type(kid).__name__})
        return kid

    def _verification_key(
        self, raw_token: str, keys: KeySet, error_class: Type[AccessLayerException]
    ) -> Optional[Dict[str, Any]]:
        """Pick the JWK named by the header kid; without a kid try the whole set."""
        kid = self.key_id(raw_token, error_class)
        if kid is None:
            return {"keys": list(keys)}
        return keys.get(kid)

    def verify_id_token(
        self,
        raw_token: str,
        metadata: ProviderMetadata,
        keys: KeySet,
        decryption_key: Optional[DecryptionKey] = None,
        *,
        audience: str,
        issuer: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Decrypt if needed, then check signature, issuer, audience and expiry."""
        signed_token = self.decrypt_id_token(raw_token, decryption_key)

        key = self._verification_key(signed_token, keys, IdTokenInvalid)
        if key is None:
            raise IdTokenInvalid("Signing key not found for ID token")

        expected_issuer = issuer or metadata.issuer
        try:
            claims = jwt.decode(
                signed_token,
                key,
                algorithms=self.algorithms,
                audience=audience,
                issuer=expected_issuer,
                options={
                    "verify_iss": expected_issuer is not None,
                    "verify_at_hash": False,
                    "require_exp": True,
                    "require_sub": True,
                },
            )
        except (JOSEError, ValueError, TypeError) as e:
            self.logger.warning("ID token verification failed", error=str(e))
            raise IdTokenInvalid("ID token verification failed", {"error": str(e)}) from e

        return claims

    def check_hash_binding(
        self,
        claims: Dict[str, Any],
        claim_name: str,
        reference_value: str,
        algorithm: str = "RS256",
    ) -> bool:
        """Compare ``claims[claim_name]`` with the left-half hash of the reference.

        An absent claim means the flow does not bind this value.
        """
        if claim_name not in claims:
            return True

        hash_alg = _HASH_BY_BITS.get(algorithm[-3:])
        if hash_alg is None:
            return False

        return claims[claim_name] == calculate_at_hash(reference_value, hash_alg)

    def verify_access_token(
        self,
        raw_token: str,
        metadata: ProviderMetadata,
        keys: KeySet,
        *,
        issuer: Optional[str] = None,
    ) -> AccessTokenInfo:
        """Check signature, issuer, claim shape and expiry, in that order."""
        key = self._verification_key(raw_token, keys, AccessTokenInvalid)
        if key is None:
            raise AccessTokenInvalid("Signing key not found for access token")

        expected_issuer = issuer or metadata.issuer
        try:
            claims = jwt.decode(
                raw_token,
                key,
                algorithms=self.algorithms,
                issuer=expected_issuer,
                options={
                    "verify_iss": expected_issuer is not None,
                    "verify_aud": False,
                    "verify_exp": False,
                    "require_exp": True,
                },
            )
        except (JOSEError, ValueError, TypeError) as e:
            raise AccessTokenInvalid("Access token verification failed", {"error": str(e)}) from e

        info = self._project(claims, raw_token)

        exp = claims["exp"]
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise AccessTokenInvalid("Access token has a malformed exp claim")
        if exp <= time.time():
            raise AccessTokenExpired(details={"exp": exp})

        return info

    def _project(self, claims: Dict[str, Any], raw_token: str) -> AccessTokenInfo:
        """Shape verified claims into AccessTokenInfo."""
        try:
            subject = claims["sub"]
            scope = claims["scope"]
            acr = ACR(claims["acr"])
            permissions = claims["permissions"]
        except (KeyError, ValueError) as e:
            raise AccessTokenInvalid("Access token is missing required claims", {"error": str(e)}) from e

        if not isinstance(subject, str) or not isinstance(scope, str):
            raise AccessTokenInvalid("Access token has malformed sub or scope claims")
        if not isinstance(permissions, list) or not all(isinstance(p, str) for p in permissions):
            raise AccessTokenInvalid("Access token has a malformed permissions claim")

        scopes: List[str] = scope.split()
        return AccessTokenInfo(
            id=subject,
            scope=scopes,
            acr=acr,
            permissions=permissions,
            access_token=raw_token,
        )
