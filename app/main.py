import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from app.config import settings
from app.db import close_pool, get_pool, init_schema
from app.errors import StatusLifecycleError
from app.metrics import get_metrics_bytes, get_metrics_content_type, sqs_queue_messages_in_flight, sqs_queue_messages_waiting
from app.redis_client import close_redis, get_redis
from app.routes import admin, orders
from app.sqs_client import get_queue_depth

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_redis()
    await init_schema(await get_pool())
    yield
    await close_pool()
    await close_redis()


app = FastAPI(title="Order Status Lifecycle", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(admin.router)


@app.exception_handler(StatusLifecycleError)
async def status_lifecycle_error_handler(request: Request, exc: StatusLifecycleError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: status transitions, broker notifications, SQS queue depth (when using SQS)."""
    if settings.sqs_queue_url:
        try:
            waiting, in_flight = await get_queue_depth()
            sqs_queue_messages_waiting.set(waiting)
            sqs_queue_messages_in_flight.set(in_flight)
        except Exception:
            logger.warning("Could not read SQS queue depth", exc_info=True)
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
