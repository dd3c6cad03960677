"""Value types passed between providers, the token manager and the store"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_SCOPE_SPLIT = re.compile(r"[\s,]+")


def parse_scopes(raw) -> List[str]:
    """Split a provider scope string on commas or whitespace, keeping order"""
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        items = raw
    else:
        items = _SCOPE_SPLIT.split(str(raw))
    seen = []
    for scope in items:
        if scope and scope not in seen:
            seen.append(scope)
    return seen


@dataclass(frozen=True)
class CredentialRef:
    user_id: str
    platform: str
    platform_account_id: Optional[str] = None

    @property
    def lock_key(self) -> str:
        return f"{self.user_id}:{self.platform}:{self.platform_account_id or ''}"


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_expires_in: Optional[int] = None
    scopes: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "TokenSet":
        """Normalise a standard OAuth 2.0 token response"""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_in=_as_int(data.get("expires_in")),
            refresh_expires_in=_as_int(data.get("refresh_expires_in") or data.get("refresh_token_expires_in")),
            scopes=parse_scopes(data.get("scope")),
            raw=data,
        )


@dataclass
class Identity:
    account_id: Optional[str]
    account_name: Optional[str] = None
    display_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _as_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)
