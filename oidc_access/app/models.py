"""
Data model shared by the resolver, codec, client and authenticator.
"""

from enum import Enum
from typing import Dict, Any, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict


UserInfo = Dict[str, Any]


class ACR(str, Enum):
    """Authentication Context Class Reference levels, totally ordered."""

    LEVEL_ZERO = "0"
    LEVEL_ONE = "1"
    LEVEL_TWO = "2"

    @property
    def level(self) -> int:
        return int(self.value)

    def __lt__(self, other):
        if isinstance(other, ACR):
            return self.level < other.level
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, ACR):
            return self.level <= other.level
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, ACR):
            return self.level > other.level
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, ACR):
            return self.level >= other.level
        return NotImplemented


class ProviderMetadata(BaseModel):
    """Subset of the OpenID discovery document used by the engine."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    issuer: Optional[str] = None


class KeySet:
    """Public signing keys of the provider, indexed by key id."""

    def __init__(self, keys: List[Dict[str, Any]]):
        self._keys: Dict[str, Dict[str, Any]] = {}
        for key in keys:
            kid = key.get("kid")
            if isinstance(kid, str):
                self._keys[kid] = key

    @classmethod
    def from_jwks(cls, payload: Dict[str, Any]) -> "KeySet":
        keys = payload.get("keys")
        if not isinstance(keys, list):
            raise ValueError("JWKS response missing 'keys' array")
        return cls([key for key in keys if isinstance(key, dict)])

    def get(self, kid: str) -> Optional[Dict[str, Any]]:
        return self._keys.get(kid)

    @property
    def kids(self) -> List[str]:
        return list(self._keys)

    def __contains__(self, kid: object) -> bool:
        return kid in self._keys

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._keys)


class TokenResponse(BaseModel):
    """Token endpoint response; never persisted by the engine."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    id_token: str
    token_type: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None


class AccessTokenInfo(BaseModel):
    """Validated projection of an access token."""

    model_config = ConfigDict(frozen=True)

    id: str
    scope: List[str]
    acr: ACR
    permissions: List[str]
    access_token: str


class AuthenticateRequestResult(BaseModel):
    """Outcome of a successful (or optional and anonymous) authentication."""

    user: Optional[UserInfo] = None
    access_token_info: Optional[AccessTokenInfo] = None
