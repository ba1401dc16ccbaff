from datetime import datetime

from pydantic import BaseModel, Field

from .credential import CredentialOut


class ViewerJoinIn(BaseModel):
    live_id: str = Field(description="Live session to join")


class ViewerLeaveIn(BaseModel):
    live_id: str = Field(description="Live session to leave")


class ViewerJoinOut(BaseModel):
    live_id: str
    channel: str
    viewer_count: int
    counted: bool = Field(description="Whether this join is counted as a viewer")
    credential: CredentialOut


class ViewerLeaveOut(BaseModel):
    live_id: str
    counted: bool


class HostStartIn(BaseModel):
    duration: int | None = Field(default=None, description="Validity of the host credential in seconds")


class HostStartOut(BaseModel):
    live_id: str
    channel: str
    started_at: datetime | None
    credential: CredentialOut


class HostEndIn(BaseModel):
    live_id: str = Field(description="Live session to end")


class HostEndOut(BaseModel):
    live_id: str
    viewer_count: int
    ended_at: datetime | None


class HostViewerCountIn(BaseModel):
    live_id: str
    viewer_count: int = Field(ge=0, description="Viewer count observed by the host")


class HostViewerCountOut(BaseModel):
    live_id: str
    viewer_count: int
