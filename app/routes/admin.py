from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from app.broker_sync import replay_dlq

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/dlq/replay")
async def dlq_replay(limit: int = Query(default=100, ge=1, le=1000)) -> JSONResponse:
    """
    Replay broker notifications from the DLQ (SQS or Redis) to the main queue.
    Each DLQ message is re-queued with attempts reset and removed from the DLQ.
    Returns number of messages replayed.
    """
    replayed = await replay_dlq(limit=limit)
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "replayed": replayed},
    )
