"""Session viewer endpoints for public/unauthenticated access."""

from fastapi import APIRouter, BackgroundTasks

from live_access.api.v1.dependency import ClientKey, IssuanceServiceDep, OptionalIdentity
from live_access.api.v1.schemas.base import ApiOut
from live_access.api.v1.schemas.credential import CredentialOut
from live_access.api.v1.schemas.session import (
    ViewerJoinIn,
    ViewerJoinOut,
    ViewerLeaveIn,
    ViewerLeaveOut,
)

router = APIRouter(prefix="/session/viewer")


@router.post("/join")
async def join_live(
    body: ViewerJoinIn,
    service: IssuanceServiceDep,
    identity: OptionalIdentity,
    client_key: ClientKey,
    background_tasks: BackgroundTasks,
) -> ApiOut[ViewerJoinOut]:
    """Join a live session as a viewer.

    Returns a subscriber credential for the session channel. Authenticated
    viewers are counted after the response is sent.

    Raises:
        404: Session not found or not live
    """
    joined = await service.join_live(
        body.live_id,
        identity,
        rate_key=identity or client_key,
        defer=background_tasks.add_task,
    )
    return ApiOut[ViewerJoinOut](
        results=ViewerJoinOut(
            live_id=joined.session.live_id,
            channel=joined.session.channel,
            viewer_count=joined.session.viewer_count,
            counted=joined.counted,
            credential=CredentialOut.from_credential(joined.credential),
        )
    )


@router.post("/leave")
async def leave_live(
    body: ViewerLeaveIn,
    service: IssuanceServiceDep,
    identity: OptionalIdentity,
    background_tasks: BackgroundTasks,
) -> ApiOut[ViewerLeaveOut]:
    counted = await service.leave_live(body.live_id, identity, defer=background_tasks.add_task)
    return ApiOut[ViewerLeaveOut](results=ViewerLeaveOut(live_id=body.live_id, counted=counted))
