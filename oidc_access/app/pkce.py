"""
PKCE (RFC 7636) helpers for the authorization code flow.
"""

import base64
import hashlib
import secrets
from typing import Literal

CodeChallengeMethod = Literal["plain", "S256"]


def get_code_verifier() -> str:
    """Generate a random code verifier (86 URL-safe characters)."""
    return secrets.token_urlsafe(64)


def get_code_challenge(code_verifier: str, method: CodeChallengeMethod = "S256") -> str:
    """Derive the code challenge sent with the authorization request."""
    if method == "plain":
        return code_verifier
    if method == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    raise ValueError(f"Unsupported code challenge method: {method}")
