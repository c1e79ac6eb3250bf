import logging
import uuid

from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import Response

from .routers.events import router as events_router
from .routers.health import router as health_router
from .routers.webhooks import router as webhooks_router
from .routers.workflows import router as workflows_router
from .settings import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="AutoFlow API", version="0.1.0")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next) -> Response:  # type: ignore[override]
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    return response


app.include_router(health_router)
app.include_router(events_router)
app.include_router(workflows_router)
app.include_router(webhooks_router)
