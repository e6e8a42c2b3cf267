import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from bookwell.api.v1.router import api_router
from bookwell.core.config import settings
from bookwell.core.database import async_session
from bookwell.core.errors import SchedulingError
from bookwell.core.seed import seed_demo_participants
from bookwell.services.collaborators import build_collaborators
from bookwell.services.sweeper import DeadlineSweeper
from bookwell.services.ticker import Ticker
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


def build_ticker(sweeper: DeadlineSweeper, clock) -> Ticker:
    """Register every sweeper scan at its configured cadence."""
    ticker = Ticker(clock=clock, poll_interval=settings.TICKER_POLL_SECONDS)
    jitter = settings.SWEEP_JITTER_SECONDS
    ticker.add_task("expire_unconfirmed", settings.CONFIRMATION_SWEEP_SECONDS, sweeper.expire_unconfirmed, jitter)
    ticker.add_task("expire_unpaid", settings.PAYMENT_SWEEP_SECONDS, sweeper.expire_unpaid, jitter)
    ticker.add_task("complete_ended", settings.COMPLETION_SWEEP_SECONDS, sweeper.complete_ended, jitter)
    ticker.add_task("send_reminders", settings.REMINDER_SWEEP_SECONDS, sweeper.send_reminders, jitter)
    return ticker


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    collaborators = build_collaborators(settings)
    app.state.collaborators = collaborators

    if settings.SEED_DEMO_DATA:
        await seed_demo_participants()

    ticker = None
    if settings.SWEEPER_ENABLED:
        sweeper = DeadlineSweeper(async_session, collaborators, settings)
        ticker = build_ticker(sweeper, collaborators.clock)
        await ticker.start()

    yield

    if ticker is not None:
        await ticker.stop()
    await collaborators.effects.drain()


app = FastAPI(
    title="Bookwell API",
    description="Appointment scheduling and lifecycle engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.code},
    )


app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "bookwell-api", "version": "0.1.0"}
