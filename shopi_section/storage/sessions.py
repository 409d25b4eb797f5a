from __future__ import annotations

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone

from .json_store import JsonStore

SESSIONS_COLLECTION = "sessions"


def offline_session_id(shop: str) -> str:
    return f"offline_{shop}"


def parse_scopes(value) -> set[str]:
    if not value:
        return set()
    if isinstance(value, str):
        value = value.split(",")
    return {str(s).strip() for s in value if str(s).strip()}


def _expand_implied(scopes: set[str]) -> set[str]:
    # write_x implies read_x on the platform side
    out = set(scopes)
    for s in scopes:
        if s.startswith("write_"):
            out.add("read_" + s[len("write_"):])
        elif s.startswith("unauthenticated_write_"):
            out.add("unauthenticated_read_" + s[len("unauthenticated_write_"):])
    return out


@dataclass
class ShopSession:
    """Offline access token for one shop, as stored locally."""

    shop: str
    access_token: str
    scope: str = ""
    id: str = ""
    is_online: bool = False
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __post_init__(self):
        if not self.id:
            self.id = offline_session_id(self.shop)

    @property
    def scopes(self) -> set[str]:
        return parse_scopes(self.scope)

    def covers(self, required) -> bool:
        return parse_scopes(required) <= _expand_implied(self.scopes)

    def token_hint(self) -> str:
        return (self.access_token or "")[:6] + "..."

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ShopSession":
        return cls(
            shop=str(data.get("shop") or ""),
            access_token=str(data.get("access_token") or ""),
            scope=str(data.get("scope") or ""),
            id=str(data.get("id") or ""),
            is_online=bool(data.get("is_online", False)),
            created_at=str(data.get("created_at") or ""),
        )


class SessionStorage:
    def __init__(self, store: JsonStore):
        self.store = store

    def store_session(self, session: ShopSession) -> ShopSession:
        self.store.upsert(SESSIONS_COLLECTION, session.id, session.to_dict())
        return session

    def load_session(self, shop: str) -> ShopSession | None:
        raw = self.store.get(SESSIONS_COLLECTION, offline_session_id(shop))
        if not raw or not raw.get("access_token"):
            return None
        return ShopSession.from_dict(raw)

    def find_sessions_by_shop(self, shop: str) -> list[ShopSession]:
        return [
            ShopSession.from_dict(raw)
            for raw in self.store.list(SESSIONS_COLLECTION)
            if raw.get("shop") == shop
        ]

    def delete_session(self, shop: str) -> int:
        return self.store.delete_where(SESSIONS_COLLECTION, lambda raw: raw.get("shop") == shop)
