"""Viewer accounting models and collaborator protocols."""

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field


def channel_for_live(live_id: str) -> str:
    """Media channel used by a live session."""
    return f"live_{live_id}"


class ViewerSession(BaseModel):
    """Live session as seen by viewer accounting."""

    live_id: str
    channel: str
    host_identity: str | None = None
    viewer_count: int = Field(default=0, ge=0)
    is_live: bool = False
    started_at: datetime | None = None
    ended_at: datetime | None = None


class ViewerCounterStore(Protocol):
    """Atomic, non-negative per-session counter."""

    async def increment(self, live_id: str) -> int: ...

    async def decrement(self, live_id: str) -> int: ...

    async def set_count(self, live_id: str, count: int) -> int: ...


class LiveSessionStore(Protocol):
    """Live sessions owned by the persistence layer."""

    async def get_live(self, live_id: str) -> ViewerSession | None: ...

    async def start_live(self, live_id: str, *, host_identity: str | None = None) -> ViewerSession: ...

    async def end_live(self, live_id: str) -> ViewerSession: ...
