from contextlib import asynccontextmanager
from fastapi import FastAPI
from edumessaging.routers import rou_message, rou_health
from edumessaging.configuration.config import Config
from edumessaging.configuration.database import StoreConnection
from edumessaging.configuration.handlers import register_exception_handlers
from edumessaging.configuration.monitor import instrument_fastapi, logger
from edumessaging.validators.val_errors import ServiceUnavailableError

@asynccontextmanager
async def lifespan(app: FastAPI):
    store = StoreConnection()
    app.state.store = store
    # The server starts even if the store is down; requests reconnect lazily
    try:
        store.connect()
    except ServiceUnavailableError as e:
        logger.warning(f"Message store not reachable at startup: {e.detail}")
    yield
    store.close()

def create_app() -> FastAPI:
    app = FastAPI(
        title="Education Messages API",
        description="Messaging between students, schools and administrators about education programs",
        version="1.0.0",
        lifespan=lifespan
    )

    register_exception_handlers(app)

    app.include_router(rou_health.router)
    app.include_router(rou_message.router, prefix="/api")

    # Instrument app with Azure Monitor
    instrument_fastapi(app)
    return app

app = create_app()

if __name__ == '__main__':
    import uvicorn
    uvicorn.run(app, host='0.0.0.0', port=Config.PORT)
