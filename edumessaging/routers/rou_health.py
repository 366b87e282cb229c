import time
from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from edumessaging.configuration.database import StoreConnection, get_store
from edumessaging.schemas.sch_envelope import ok, fail

router = APIRouter(tags=["Health"])

SERVICE_NAME = "Education Messages System"
SERVICE_VERSION = "1.0.0"
STARTED_AT = time.monotonic()

def _uptime() -> str:
    uptime = int(time.monotonic() - STARTED_AT)
    return f"{uptime // 60}m {uptime % 60}s"

@router.get("/health")
def health(store: StoreConnection = Depends(get_store)):
    """
    Liveness plus store connectivity.

    Returns 503 while the message store cannot be reached.
    """
    database = store.health_check()
    data = {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "uptime": _uptime(),
        "database": database
    }
    if not database["connected"]:
        return JSONResponse(
            status_code=503,
            content=jsonable_encoder(fail("Message store unavailable", data))
        )
    return ok(dict(data, status="operational"), f"{SERVICE_NAME} is running")

@router.get("/")
def root():
    return ok({
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "uptime": _uptime(),
        "endpoints": {
            "health": "/health",
            "messages": "/api/messages",
            "admin": "/api/messages/admin",
            "conversations": "/api/messages/conversation"
        }
    }, f"{SERVICE_NAME} API")
