from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.inbox import router as inbox_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.telemetry import setup_otel
from app.websocket.router import router as ws_router

app = FastAPI(title="Omnidesk Inbox API")

configure_logging()
setup_otel(app)
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)

app.include_router(inbox_router)
app.include_router(ws_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health", include_in_schema=False)
def health_check_head():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
async def _start_websocket_manager():
    from app.websocket.manager import get_connection_manager

    manager = get_connection_manager()
    await manager.connect()


@app.on_event("shutdown")
async def _stop_websocket_manager():
    from app.websocket.manager import get_connection_manager

    manager = get_connection_manager()
    await manager.disconnect()
