from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 27017
DEFAULT_COLLECTION = "sessions"
DEFAULT_EXPIRATION_SECONDS = 60 * 60 * 24 * 14  # 2 weeks

UPDATED_AT_FIELD = "updatedAt"


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass(frozen=True, slots=True)
class ConnectionDescriptor:
    host: str
    port: int
    db_name: str
    collection: str
    credentials: Optional[Credentials]
    ttl_seconds: int
    tls: bool
    auto_reconnect: bool
    client_options: dict[str, Any] = field(default_factory=dict)
    handle: Any = None
    source: str = "defaults"

    @property
    def reuses_handle(self) -> bool:
        return self.handle is not None


@dataclass(slots=True)
class SessionRecord:
    id: str
    blob: str
    updated_at: datetime

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "SessionRecord":
        return cls(
            id=document["_id"],
            blob=document.get("blob"),
            updated_at=document.get(UPDATED_AT_FIELD),
        )

    def to_document(self) -> dict[str, Any]:
        return {"_id": self.id, "blob": self.blob, UPDATED_AT_FIELD: self.updated_at}
