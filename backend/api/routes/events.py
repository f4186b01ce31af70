from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from api.deps import ClinicianDep
from core.config import settings
from services.notification_service import stream_events

router = APIRouter()


@router.get("/stream")
async def clinician_event_stream(user: ClinicianDep):
    return StreamingResponse(
        stream_events(user.id, keepalive_seconds=settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
