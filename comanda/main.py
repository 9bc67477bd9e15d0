import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from comanda.core.config import CONVERSATION_STORE, ENV, INACTIVITY_SWEEP_SECONDS, SIMULATOR_ENABLED
from comanda.core.database import init_db
from comanda.core.logging_setup import configure_logging
from comanda.deps import build_engine
from comanda.middleware.observability import ObservabilityMiddleware
from comanda.routers.simulator import router as simulator_router
from comanda.routers.webhook import router as webhook_router
from comanda.services.inactivity import InactivitySweeper

configure_logging()

logger = logging.getLogger(__name__)


def _startup_tasks(app: FastAPI) -> None:
    try:
        if CONVERSATION_STORE == "sql":
            init_db()
        app.state.engine = build_engine()
    except Exception:
        logger.exception("startup failed")
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup_tasks(app)
    sweeper_task = None
    if INACTIVITY_SWEEP_SECONDS > 0:
        engine = app.state.engine
        sweeper = InactivitySweeper(engine, engine.store, interval_seconds=INACTIVITY_SWEEP_SECONDS)
        sweeper_task = asyncio.create_task(sweeper.run_forever())
    logger.info("comanda started env=%s store=%s", ENV, CONVERSATION_STORE)
    yield
    if sweeper_task is not None:
        sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper_task


app = FastAPI(
    title="Comanda Pay API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(ObservabilityMiddleware)

# Routers
app.include_router(webhook_router)
if SIMULATOR_ENABLED:
    app.include_router(simulator_router)
else:
    logger.info("[SIMULATOR] Disabled via SIMULATOR_ENABLED=false")


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
