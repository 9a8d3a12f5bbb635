import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from orderdesk.config import settings
from orderdesk.errors import OrderDeskError
from orderdesk.metrics import get_metrics_bytes, get_metrics_content_type
from orderdesk.redis_client import close_redis, get_redis
from orderdesk.routes import auth, orders, users
from orderdesk.store import close_store, get_store

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_redis()
    await get_store()
    logger.info("Store backend=%s ready", settings.store_backend)
    yield
    await close_store()
    await close_redis()


app = FastAPI(title="Order Desk", lifespan=lifespan)
app.include_router(auth.router)
app.include_router(orders.router)
app.include_router(users.router)


@app.exception_handler(OrderDeskError)
async def order_desk_error(request: Request, exc: OrderDeskError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else first.get("msg", "invalid request")
    return JSONResponse(status_code=400, content={"error": "InvalidInput", "msg": message})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal", "msg": "Server error"})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: orders created, transitions, assignments, publish failures."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
