"""Session host endpoints; every route requires an authenticated host."""

from fastapi import APIRouter

from live_access.api.v1.dependency import IssuanceServiceDep, RequiredIdentity
from live_access.api.v1.schemas.base import ApiOut
from live_access.api.v1.schemas.credential import CredentialOut
from live_access.api.v1.schemas.session import (
    HostEndIn,
    HostEndOut,
    HostStartIn,
    HostStartOut,
    HostViewerCountIn,
    HostViewerCountOut,
)

router = APIRouter(prefix="/session/host")


@router.post("/start")
async def start_live(
    body: HostStartIn,
    service: IssuanceServiceDep,
    identity: RequiredIdentity,
) -> ApiOut[HostStartOut]:
    """Start a live session hosted by the caller.

    Returns the new session and a publisher credential for its channel.
    """
    started = await service.start_live(identity, body.duration)
    return ApiOut[HostStartOut](
        results=HostStartOut(
            live_id=started.session.live_id,
            channel=started.session.channel,
            started_at=started.session.started_at,
            credential=CredentialOut.from_credential(started.credential),
        )
    )


@router.post("/end")
async def end_live(
    body: HostEndIn,
    service: IssuanceServiceDep,
    identity: RequiredIdentity,
) -> ApiOut[HostEndOut]:
    """End a live session.

    Raises:
        403: Caller is not the host
        404: Session not found
    """
    ended = await service.end_live(body.live_id, identity)
    return ApiOut[HostEndOut](
        results=HostEndOut(live_id=ended.live_id, viewer_count=ended.viewer_count, ended_at=ended.ended_at)
    )


@router.post("/viewer_count")
async def reconcile_viewer_count(
    body: HostViewerCountIn,
    service: IssuanceServiceDep,
    identity: RequiredIdentity,
) -> ApiOut[HostViewerCountOut]:
    await service.reconcile_viewers(body.live_id, identity, body.viewer_count)
    return ApiOut[HostViewerCountOut](
        results=HostViewerCountOut(live_id=body.live_id, viewer_count=body.viewer_count)
    )
