"""
Stateless Jira connection sessions.

The browser holds the sealed session (the "connection id"); the server keeps
nothing. A session carries the access token, the optional refresh token, the
absolute expiry in epoch milliseconds and the Atlassian cloud id it is bound to.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .crypto import seal, unseal


def now_ms() -> int:
    return int(time.time() * 1000)


def _expires_in_ms(token: Dict[str, Any]) -> int:
    try:
        return int(token.get("expires_in") or 0) * 1000
    except (TypeError, ValueError):
        # unparseable lifetime: treat the token as already due for refresh
        return 0


@dataclass(frozen=True)
class JiraSession:
    access_token: str
    refresh_token: Optional[str]
    expires_at_ms: int
    cloud_id: str

    @classmethod
    def from_token_response(cls, token: Dict[str, Any], cloud_id: str, now: Optional[int] = None) -> "JiraSession":
        now = now_ms() if now is None else now
        return cls(
            access_token=str(token.get("access_token") or ""),
            refresh_token=(str(token["refresh_token"]) if token.get("refresh_token") else None),
            expires_at_ms=now + _expires_in_ms(token),
            cloud_id=str(cloud_id),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"at": self.access_token, "rt": self.refresh_token, "exp": self.expires_at_ms, "cid": self.cloud_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["JiraSession"]:
        at = data.get("at")
        cid = data.get("cid")
        if not at or not cid:
            return None
        try:
            exp = int(data.get("exp") or 0)
        except (TypeError, ValueError):
            exp = 0
        rt = data.get("rt")
        return cls(access_token=str(at), refresh_token=(str(rt) if rt else None), expires_at_ms=exp, cloud_id=str(cid))

    def to_connection_id(self) -> str:
        return seal(self.to_dict())

    @classmethod
    def from_connection_id(cls, connection_id: str) -> Optional["JiraSession"]:
        data = unseal(connection_id or "")
        if data is None:
            return None
        return cls.from_dict(data)

    def needs_refresh(self, now: Optional[int] = None, skew_seconds: int = 300) -> bool:
        now = now_ms() if now is None else now
        return bool(self.refresh_token) and now > self.expires_at_ms - skew_seconds * 1000

    def with_refreshed_tokens(self, token: Dict[str, Any], now: Optional[int] = None) -> "JiraSession":
        now = now_ms() if now is None else now
        # Atlassian rotates refresh tokens; keep the old one if the response omits it
        return replace(
            self,
            access_token=str(token.get("access_token") or self.access_token),
            refresh_token=(str(token["refresh_token"]) if token.get("refresh_token") else self.refresh_token),
            expires_at_ms=now + _expires_in_ms(token),
        )
